"""Pydantic schemas for scan evidence: artifacts written by tasks, findings derived from them, and aggregates."""

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Reusable severity levels for validation and type safety across schemas.
SeverityLevel = Literal["INFO", "LOW", "MEDIUM", "HIGH", "CRITICAL"]

# Higher rank = more severe. Used for max-severity aggregation and sorting.
SEVERITY_RANK: dict[str, int] = {
    "INFO": 0,
    "LOW": 1,
    "MEDIUM": 2,
    "HIGH": 3,
    "CRITICAL": 4,
}

# Artifact types written by the orchestrator itself rather than by a task.
SCAN_ERROR_TYPE = "scan_error"
SCAN_WARNING_TYPE = "scan_warning"
DIAGNOSTIC_TYPES: frozenset[str] = frozenset({SCAN_ERROR_TYPE, SCAN_WARNING_TYPE})

# Metadata keys every artifact must carry.
META_SCAN_ID = "scan_id"
META_TASK = "task"
# Optional: the orchestrator run that produced the artifact. Aggregates for a run filter on it.
META_RUN_ID = "run_id"


class ArtifactInput(BaseModel):
    """One piece of evidence as handed to the evidence store."""

    type: str = Field(
        ...,
        min_length=1,
        max_length=64,
        description="Open taxonomy, e.g. exposed-service, weak-tls, typo-domain.",
    )
    severity: SeverityLevel = Field(..., description="INFO, LOW, MEDIUM, HIGH or CRITICAL.")
    val_text: str = Field(..., min_length=1, description="Free-text value of the evidence.")
    src_url: str | None = Field(default=None, description="Where the evidence was observed.")
    sha256: str | None = Field(default=None, max_length=64, description="Content hash, if any.")
    mime: str | None = Field(default=None, max_length=100, description="Content MIME type, if any.")
    meta: dict[str, Any] = Field(
        default_factory=dict,
        description="Metadata bag; must include scan_id and task.",
    )

    @field_validator("severity", mode="before")
    @classmethod
    def normalize_severity(cls, v: object) -> object:
        return v.strip().upper() if isinstance(v, str) else v

    @field_validator("meta")
    @classmethod
    def validate_meta(cls, v: dict[str, Any]) -> dict[str, Any]:
        for key in (META_SCAN_ID, META_TASK):
            value = v.get(key)
            if not isinstance(value, str) or not value.strip():
                raise ValueError(f"meta must include a non-empty {key!r}")
        return v


class ArtifactRead(BaseModel):
    """Artifact as returned to API consumers."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    type: str
    severity: SeverityLevel
    val_text: str
    src_url: str | None = None
    task_name: str
    created_at: datetime | None = None


class FindingRead(BaseModel):
    """Finding joined with the type and severity of its parent artifact."""

    id: int
    artifact_id: int
    finding_type: str
    recommendation: str
    description: str
    artifact_type: str
    severity: SeverityLevel
    src_url: str | None = None
    created_at: datetime | None = None


class FindingSummary(BaseModel):
    """Per-type aggregate of a scan's evidence; input to the risk aggregator."""

    model_config = ConfigDict(frozen=True)

    type: str = Field(..., min_length=1)
    severity: SeverityLevel
    count: int = Field(default=1, ge=1)
