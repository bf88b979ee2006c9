"""Pydantic schemas for scan jobs, scan lifecycle state and the scans API."""

from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator

from aegis.schemas.evidence import SeverityLevel
from aegis.schemas.risk import FinancialImpactCalculation, OrganizationProfile


class ScanStatus(str, Enum):
    """Lifecycle states of a scan. done and failed are terminal."""

    QUEUED = "queued"
    PROCESSING = "processing"
    MODULE_FAILED = "module_failed"
    GENERATING_REPORT = "generating_report"
    DONE = "done"
    FAILED = "failed"


TERMINAL_STATUSES: frozenset[ScanStatus] = frozenset({ScanStatus.DONE, ScanStatus.FAILED})


def _validate_domain(value: str) -> str:
    """Lowercase, strip scheme/path, and require at least one dot."""
    if not value or not value.strip():
        raise ValueError("domain must be non-empty")
    d = value.strip().lower()
    for prefix in ("https://", "http://"):
        if d.startswith(prefix):
            d = d[len(prefix):]
    d = d.split("/", 1)[0].rstrip(".")
    if "." not in d or " " in d:
        raise ValueError(f"domain must be a hostname like example.com, got {value!r}")
    return d


class ScanJob(BaseModel):
    """Unit of work on the queue: who to scan and what we know about them."""

    model_config = ConfigDict(extra="ignore")

    scan_id: str = Field(..., min_length=1, max_length=255)
    organization_name: str = Field(..., min_length=1, max_length=255)
    domain: str = Field(..., min_length=1, max_length=255)
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    profile: OrganizationProfile = Field(default_factory=OrganizationProfile)

    @field_validator("domain")
    @classmethod
    def validate_domain(cls, v: str) -> str:
        return _validate_domain(v)


class ScanCreateRequest(BaseModel):
    """Request body for enqueueing a new scan."""

    organization_name: str = Field(..., min_length=1, max_length=255)
    domain: str = Field(..., min_length=1, max_length=255)
    profile: OrganizationProfile = Field(default_factory=OrganizationProfile)

    @field_validator("domain")
    @classmethod
    def validate_domain(cls, v: str) -> str:
        return _validate_domain(v)


class ScanRead(BaseModel):
    """Persisted scan state as polled by clients."""

    model_config = ConfigDict(from_attributes=True)

    scan_id: str
    organization_name: str
    domain: str
    status: ScanStatus
    progress: int = Field(..., ge=0, le=100)
    current_task: str | None = None
    total_tasks: int
    error_message: str | None = None
    total_findings_count: int
    max_severity: SeverityLevel | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    completed_at: datetime | None = None
    run_id: str | None = None


class RiskAssessmentRead(BaseModel):
    """Stored financial impact for a completed scan plus its rendered justification."""

    scan_id: str
    calculation: FinancialImpactCalculation
    financial_range: str
    justification: str
