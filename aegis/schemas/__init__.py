"""Pydantic request/response schemas."""

from aegis.schemas.evidence import (
    ArtifactInput,
    ArtifactRead,
    FindingRead,
    FindingSummary,
    SeverityLevel,
)
from aegis.schemas.health import HealthResponse
from aegis.schemas.risk import (
    FinancialImpactCalculation,
    MultiplierEntry,
    OrganizationProfile,
    RiskFactor,
    RiskModel,
)
from aegis.schemas.scan import (
    RiskAssessmentRead,
    ScanCreateRequest,
    ScanJob,
    ScanRead,
    ScanStatus,
)
from aegis.schemas.vulnerability import (
    ComponentVulnerabilityReport,
    NormalizedComponent,
    RawVulnerability,
    VulnerabilityMatch,
)

__all__ = [
    "ArtifactInput",
    "ArtifactRead",
    "ComponentVulnerabilityReport",
    "FinancialImpactCalculation",
    "FindingRead",
    "FindingSummary",
    "HealthResponse",
    "MultiplierEntry",
    "NormalizedComponent",
    "OrganizationProfile",
    "RawVulnerability",
    "RiskAssessmentRead",
    "RiskFactor",
    "RiskModel",
    "ScanCreateRequest",
    "ScanJob",
    "ScanRead",
    "ScanStatus",
    "SeverityLevel",
    "VulnerabilityMatch",
]
