"""Pydantic schemas for component vulnerability correlation."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from aegis.schemas.evidence import SeverityLevel

VersionStatus = Literal["current", "outdated", "unknown"]


class NormalizedComponent(BaseModel):
    """A detected software component (package/version/ecosystem) used for vulnerability lookup."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1, description="Package or product name, e.g. apache httpd, lodash.")
    version: str | None = Field(default=None, description="Detected version as seen in the wild.")
    ecosystem: str | None = Field(default=None, description="Package ecosystem, e.g. npm, PyPI, Maven.")
    vendor: str | None = Field(default=None)
    cpe: str | None = Field(default=None, description="CPE 2.3 identifier, when known.")


class RawVulnerability(BaseModel):
    """One advisory as returned by a vulnerability source, before version matching and scoring."""

    model_config = {"extra": "ignore"}

    id: str = Field(..., min_length=1, description="CVE, GHSA or source-native identifier.")
    severity: str | None = Field(default=None, description="Source severity label, any case.")
    cvss_score: float | None = Field(default=None, ge=0, le=10)
    summary: str = Field(default="")
    published: datetime | None = None
    affected_range: str = Field(default="", description="Human-readable affected range, e.g. '>=2.4.0, <2.4.58'.")
    fixed_version: str | None = Field(default=None, description="First vendor-published fixed version.")
    package_name: str | None = None
    ecosystem: str | None = None
    cpe_matches: list[str] = Field(default_factory=list)
    cisa_kev: bool = Field(default=False, description="Listed in CISA Known Exploited Vulnerabilities.")
    epss_score: float | None = Field(default=None, ge=0, le=1)


class VulnerabilityMatch(BaseModel):
    """A vulnerability judged to apply to a component, with confidence and provenance."""

    id: str
    severity: SeverityLevel
    cvss_score: float | None = Field(default=None, ge=0, le=10)
    description: str = ""
    published: datetime | None = None
    affected_range: str = ""
    fixed_version: str | None = None
    confidence: int = Field(..., ge=0, le=100)
    match_reason: str
    source: str = Field(..., description="Name of the source that produced the match.")
    cisa_kev: bool = False
    epss_score: float | None = Field(default=None, ge=0, le=1)

    @field_validator("severity", mode="before")
    @classmethod
    def normalize_severity(cls, v: object) -> object:
        return v.strip().upper() if isinstance(v, str) else v


class ComponentVulnerabilityReport(BaseModel):
    """Every match for one component, the worst-case risk score and a freshness verdict."""

    component: NormalizedComponent
    vulnerabilities: list[VulnerabilityMatch] = Field(default_factory=list)
    risk_score: float = Field(..., ge=0, le=10)
    version_status: VersionStatus
    recommended_action: str
