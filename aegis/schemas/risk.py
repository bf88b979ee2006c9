"""Pydantic schemas for the financial risk model: lookup tables, organization profile and computed impact."""

from pydantic import BaseModel, ConfigDict, Field


class RiskFactor(BaseModel):
    """Static breach-cost entry backing one category of finding."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    base_impact: float = Field(..., ge=0, description="Base dollar impact of one occurrence.")
    multiplier: float = Field(default=1.0, ge=0)
    likelihood: float = Field(..., ge=0, le=1, description="Probability of exploitation, 0-1.")
    time_to_remediate_days: int = Field(..., ge=0)
    source: str = Field(..., min_length=1, description="Citation for the numbers.")


class MultiplierEntry(BaseModel):
    """Industry or size multiplier with its citation."""

    model_config = ConfigDict(frozen=True)

    multiplier: float = Field(..., gt=0)
    source: str = Field(..., min_length=1)


class RiskModel(BaseModel):
    """
    Immutable bundle of every lookup table the aggregator uses.

    Built once at process start and passed explicitly; tests construct their own.
    """

    model_config = ConfigDict(frozen=True)

    factors: dict[str, RiskFactor]
    finding_type_map: dict[str, str] = Field(
        ...,
        description="Evidence type -> factor id. Unmapped types contribute nothing.",
    )
    industry_multipliers: dict[str, MultiplierEntry]
    size_multipliers: dict[str, MultiplierEntry]
    default_industry: str
    default_size: str
    likelihood_dampening: float = Field(default=0.3, gt=0, le=1)
    confidence_band: float = Field(default=0.3, ge=0, lt=1)


class OrganizationProfile(BaseModel):
    """What we know about the target organization; every field is optional."""

    industry: str | None = Field(default=None, description="e.g. healthcare, financial, retail.")
    employee_count: int | None = Field(default=None, ge=0)
    estimated_revenue: float | None = Field(default=None, ge=0, description="Annual revenue in USD.")
    has_customer_data: bool = False
    is_public_company: bool = False
    regulatory_scope: list[str] = Field(default_factory=list, description="e.g. GDPR, HIPAA, PCI-DSS.")


class FinancialImpactCalculation(BaseModel):
    """Deterministic financial exposure estimate with the citations behind every number."""

    model_config = ConfigDict(frozen=True)

    risk_factors: list[str]
    base_impact: float
    adjusted_impact: float
    industry: str
    industry_multiplier: float
    size_category: str
    size_multiplier: float
    total_likelihood: float
    expected_value: float
    confidence_interval: tuple[float, float]
    citations: list[str]
    methodology: str
