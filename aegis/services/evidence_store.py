"""Evidence store: append-only persistence for artifacts and findings, plus per-scan aggregates.

No deduplication happens here: two identical inserts produce two rows. Tasks that
want dedup must do it before calling insert.
"""

import logging

from sqlalchemy import ColumnElement, case, func, select
from sqlalchemy.orm import Session

from aegis.core.errors import DataIntegrityError
from aegis.models import Artifact, Finding
from aegis.schemas.evidence import (
    DIAGNOSTIC_TYPES,
    META_RUN_ID,
    META_SCAN_ID,
    META_TASK,
    SEVERITY_RANK,
    ArtifactInput,
    FindingRead,
    FindingSummary,
    SeverityLevel,
)

logger = logging.getLogger(__name__)

_RANK_TO_SEVERITY: dict[int, SeverityLevel] = {rank: sev for sev, rank in SEVERITY_RANK.items()}  # type: ignore[misc]

# SQL expression ranking an artifact's severity (unknown strings rank below INFO).
_SEVERITY_RANK_EXPR = case(
    *((Artifact.severity == sev, rank) for sev, rank in SEVERITY_RANK.items()),
    else_=-1,
)


def _is_error_artifact(artifact: ArtifactInput) -> bool:
    """Diagnostic artifacts (scan errors/warnings, meta.error) are excluded from evidence aggregates."""
    return artifact.type in DIAGNOSTIC_TYPES or bool(artifact.meta.get("error"))


def _evidence_of(scan_id: str, run_id: str | None) -> list[ColumnElement[bool]]:
    """WHERE clauses for a scan's non-error artifacts, narrowed to one run when run_id is given."""
    clauses = [Artifact.scan_id == scan_id, Artifact.is_error.is_(False)]
    if run_id is not None:
        clauses.append(Artifact.run_id == run_id)
    return clauses


class EvidenceStore:
    """Thin repository over the artifacts/findings tables. Each insert is committed immediately."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def insert_artifact(self, artifact: ArtifactInput) -> int:
        """Persist one artifact and return its id. meta must carry scan_id and task."""
        row = Artifact(
            type=artifact.type,
            val_text=artifact.val_text,
            severity=artifact.severity,
            src_url=artifact.src_url,
            sha256=artifact.sha256,
            mime=artifact.mime,
            meta=dict(artifact.meta),
            scan_id=artifact.meta[META_SCAN_ID],
            task_name=artifact.meta[META_TASK],
            run_id=artifact.meta.get(META_RUN_ID),
            is_error=_is_error_artifact(artifact),
        )
        self.session.add(row)
        self.session.flush()
        artifact_id = row.id
        self.session.commit()

        if artifact.type in DIAGNOSTIC_TYPES or artifact.severity == "CRITICAL":
            logger.info(
                "Inserted %s artifact: %s",
                artifact.type,
                artifact.val_text[:60],
                extra={"scan_id": row.scan_id, "artifact_id": artifact_id},
            )
        return artifact_id

    def insert_finding(
        self,
        artifact_id: int,
        finding_type: str,
        recommendation: str,
        description: str,
        repro_command: str | None = None,
    ) -> int:
        """
        Persist a finding for an existing artifact and return its id.

        Raises DataIntegrityError if artifact_id does not exist; that is always a bug upstream.
        """
        if self.session.get(Artifact, artifact_id) is None:
            raise DataIntegrityError(
                f"Finding {finding_type!r} references artifact {artifact_id}, which does not exist"
            )
        row = Finding(
            artifact_id=artifact_id,
            finding_type=finding_type,
            recommendation=recommendation,
            description=description,
            repro_command=repro_command,
        )
        self.session.add(row)
        self.session.flush()
        finding_id = row.id
        self.session.commit()
        return finding_id

    def count_artifacts(self, scan_id: str, run_id: str | None = None) -> int:
        """Count of non-error artifacts in the scan (or in one run of it)."""
        stmt = select(func.count(Artifact.id)).where(*_evidence_of(scan_id, run_id))
        return int(self.session.scalar(stmt) or 0)

    def max_severity(self, scan_id: str, run_id: str | None = None) -> SeverityLevel | None:
        """Highest severity among the scan's non-error artifacts, or None if there are none."""
        stmt = select(func.max(_SEVERITY_RANK_EXPR)).where(*_evidence_of(scan_id, run_id))
        rank = self.session.scalar(stmt)
        if rank is None or rank < 0:
            return None
        return _RANK_TO_SEVERITY[int(rank)]

    def count_with_source_by_task(self, scan_id: str, task_name: str, run_id: str | None = None) -> int:
        """Non-error artifacts from one task that carry a source URL (used by validation gates)."""
        stmt = select(func.count(Artifact.id)).where(
            *_evidence_of(scan_id, run_id),
            Artifact.task_name == task_name,
            Artifact.src_url.is_not(None),
            Artifact.src_url != "",
        )
        return int(self.session.scalar(stmt) or 0)

    def count_findings(self, scan_id: str, run_id: str | None = None) -> int:
        """Findings attached to the scan's non-error artifacts."""
        stmt = (
            select(func.count(Finding.id))
            .join(Artifact, Finding.artifact_id == Artifact.id)
            .where(*_evidence_of(scan_id, run_id))
        )
        return int(self.session.scalar(stmt) or 0)

    def list_artifacts(
        self, scan_id: str, artifact_type: str | None = None, run_id: str | None = None
    ) -> list[Artifact]:
        """Non-error artifacts in insertion order, optionally restricted to one type."""
        stmt = select(Artifact).where(*_evidence_of(scan_id, run_id))
        if artifact_type is not None:
            stmt = stmt.where(Artifact.type == artifact_type)
        return list(self.session.scalars(stmt.order_by(Artifact.id)))

    def list_findings(self, scan_id: str, run_id: str | None = None) -> list[FindingRead]:
        """Findings with their artifact's type and severity, most severe first, then newest."""
        stmt = (
            select(Finding, Artifact)
            .join(Artifact, Finding.artifact_id == Artifact.id)
            .where(*_evidence_of(scan_id, run_id))
            .order_by(_SEVERITY_RANK_EXPR.desc(), Finding.id.desc())
        )
        return [
            FindingRead(
                id=f.id,
                artifact_id=a.id,
                finding_type=f.finding_type,
                recommendation=f.recommendation,
                description=f.description,
                artifact_type=a.type,
                severity=a.severity,
                src_url=a.src_url,
                created_at=f.created_at,
            )
            for f, a in self.session.execute(stmt).all()
        ]

    def summarize_by_type(self, scan_id: str, run_id: str | None = None) -> list[FindingSummary]:
        """
        One summary per artifact type: count and worst severity.

        Ordered by the first appearance of each type so the result is stable for a given scan.
        Pass run_id to summarize only the evidence one orchestrator run collected.
        """
        stmt = (
            select(
                Artifact.type,
                func.count(Artifact.id),
                func.max(_SEVERITY_RANK_EXPR),
                func.min(Artifact.id),
            )
            .where(*_evidence_of(scan_id, run_id))
            .group_by(Artifact.type)
            .order_by(func.min(Artifact.id))
        )
        summaries: list[FindingSummary] = []
        for artifact_type, count, rank, _first_id in self.session.execute(stmt).all():
            severity = _RANK_TO_SEVERITY.get(int(rank) if rank is not None else -1, "INFO")
            summaries.append(FindingSummary(type=artifact_type, severity=severity, count=int(count)))
        return summaries
