"""Scan orchestration: run the ordered task list for one job and drive the Scan record to done or failed.

Task failures are isolated unless the task is in the critical set. After the task loop the
orchestrator applies the zero-evidence gate, correlates detected components, computes the
financial risk assessment and finalizes the scan. run_scan never raises for scan-level
failures; they are recorded on the Scan row and as scan_error artifacts.
"""

import logging
import math
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Protocol

from sqlalchemy import select
from sqlalchemy.orm import Session

from aegis.core.errors import (
    AegisError,
    CriticalTaskError,
    DataIntegrityError,
    TaskExecutionError,
    ZeroEvidenceError,
)
from aegis.models import RiskAssessment, Scan
from aegis.schemas.evidence import (
    META_RUN_ID,
    META_SCAN_ID,
    META_TASK,
    SCAN_ERROR_TYPE,
    SCAN_WARNING_TYPE,
    ArtifactInput,
    FindingRead,
    SeverityLevel,
)
from aegis.schemas.risk import FinancialImpactCalculation, RiskModel
from aegis.schemas.scan import TERMINAL_STATUSES, ScanJob, ScanStatus
from aegis.schemas.vulnerability import ComponentVulnerabilityReport, NormalizedComponent
from aegis.services import scan_state
from aegis.services.evidence_store import EvidenceStore
from aegis.services.risk_aggregator import (
    DEFAULT_RISK_MODEL,
    calculate_financial_impact,
    generate_financial_justification,
)
from aegis.tasks.base import TECH_COMPONENT_TYPE, ScanTask, TaskContext

if TYPE_CHECKING:
    from aegis.services.correlator import VulnerabilityCorrelator
    from aegis.services.queue import QueueState, ScanQueue

logger = logging.getLogger(__name__)

COMPONENT_VULNERABILITY_TYPE = "component-vulnerability"
CORRELATION_TASK_NAME = "vuln_correlation"
REPORT_TASK_NAME = "report"
ORCHESTRATOR_TASK_NAME = "orchestrator"
STALE_SCAN_MESSAGE = "Worker restart - scan interrupted"


@dataclass(frozen=True)
class OrchestratorConfig:
    """Immutable orchestration policy."""

    critical_tasks: frozenset[str] = field(default_factory=lambda: frozenset({"shodan"}))
    correlate_components: bool = True


class ReportGenerator(Protocol):
    """Optional hook that renders the final report once the risk assessment exists."""

    async def generate(
        self,
        scan: Scan,
        findings: list[FindingRead],
        calculation: FinancialImpactCalculation,
        justification: str,
    ) -> None: ...


def compute_progress(completed: int, total: int) -> int:
    """floor(completed / total * 100), 0 for an empty task list."""
    if total <= 0:
        return 0
    return min(100, math.floor(completed / total * 100))


def _now() -> datetime:
    return datetime.now(UTC)


class ScanOrchestrator:
    def __init__(
        self,
        session: Session,
        evidence: EvidenceStore,
        tasks: list[ScanTask],
        queue: "ScanQueue | None" = None,
        correlator: "VulnerabilityCorrelator | None" = None,
        risk_model: RiskModel = DEFAULT_RISK_MODEL,
        report_generator: ReportGenerator | None = None,
        config: OrchestratorConfig = OrchestratorConfig(),
    ) -> None:
        self.session = session
        self.evidence = evidence
        self.tasks = list(tasks)
        self.queue = queue
        self.correlator = correlator
        self.risk_model = risk_model
        self.report_generator = report_generator
        self.config = config
        self._run_id: str | None = None

    # --- state helpers -----------------------------------------------------

    def _transition(self, scan: Scan, event: scan_state.ScanEvent) -> None:
        scan.status = scan_state.apply(scan.status, event).value

    def _record_diagnostic(
        self,
        scan_id: str,
        task_name: str,
        message: str,
        artifact_type: str = SCAN_ERROR_TYPE,
        severity: SeverityLevel = "MEDIUM",
    ) -> int:
        return self.evidence.insert_artifact(
            ArtifactInput(
                type=artifact_type,
                severity=severity,
                val_text=message,
                meta={
                    META_SCAN_ID: scan_id,
                    META_TASK: task_name,
                    META_RUN_ID: self._run_id,
                    "error": message,
                },
            )
        )

    async def _queue_update(self, scan_id: str, state: "QueueState", message: str | None = None) -> None:
        """Best effort: the Scan row is the source of truth, the queue hash is advisory."""
        if self.queue is None:
            return
        try:
            await self.queue.update_status(scan_id, state, message)
        except Exception as e:
            logger.warning(
                "Queue status update failed",
                extra={"scan_id": scan_id, "state": state, "error": str(e)},
            )

    # --- phases ------------------------------------------------------------

    def _initialize(self, job: ScanJob) -> Scan:
        scan = self.session.get(Scan, job.scan_id)
        if scan is None:
            scan = Scan(
                scan_id=job.scan_id,
                organization_name=job.organization_name,
                domain=job.domain,
                status=ScanStatus.QUEUED.value,
            )
            self.session.add(scan)
        else:
            current = ScanStatus(scan.status)
            if current is not ScanStatus.QUEUED and current not in TERMINAL_STATUSES:
                # Re-delivered while the previous run never finished; close that run out first.
                logger.warning(
                    "Scan was left in a non-terminal status; restarting",
                    extra={"scan_id": job.scan_id, "status": current.value},
                )
                self._transition(scan, "fail")
            self._transition(scan, "reset")
            scan.organization_name = job.organization_name
            scan.domain = job.domain
        scan.progress = 0
        scan.total_tasks = len(self.tasks)
        scan.current_task = None
        scan.error_message = None
        scan.completed_at = None
        scan.total_findings_count = 0
        scan.max_severity = None
        scan.run_id = uuid.uuid4().hex
        self._run_id = scan.run_id
        self.session.commit()
        return scan

    async def _run_tasks(self, scan: Scan, job: ScanJob) -> int:
        """Run every task in order; return the sum of reported counts."""
        context = TaskContext(
            domain=job.domain,
            organization_name=job.organization_name,
            scan_id=job.scan_id,
            run_id=scan.run_id,
        )
        total = len(self.tasks)
        completed = 0
        reported = 0

        for task in self.tasks:
            if ScanStatus(scan.status) is ScanStatus.MODULE_FAILED:
                self._transition(scan, "task_resumed")
            scan.current_task = task.name
            scan.progress = max(scan.progress or 0, compute_progress(completed, total))
            self.session.commit()
            logger.info(
                "Running task",
                extra={"scan_id": job.scan_id, "task": task.name, "progress": scan.progress},
            )

            try:
                count = await task.run(context)
            except DataIntegrityError:
                raise
            except Exception as e:
                if task.name in self.config.critical_tasks:
                    raise CriticalTaskError(task.name, e) from e
                error = TaskExecutionError(task.name, e)
                logger.warning(
                    error.message,
                    extra={"scan_id": job.scan_id, "task": task.name, "error_type": type(e).__name__},
                )
                self.session.rollback()
                self._record_diagnostic(job.scan_id, task.name, error.message)
                self._transition(scan, "task_failed")
                scan.error_message = error.message
                self.session.commit()
                completed += 1
                continue

            reported += max(0, int(count or 0))
            completed += 1
            logger.info(
                "Task completed",
                extra={"scan_id": job.scan_id, "task": task.name, "count": count},
            )

        if ScanStatus(scan.status) is ScanStatus.MODULE_FAILED:
            self._transition(scan, "task_resumed")
            self.session.commit()
        return reported

    def _collect_components(self, scan_id: str) -> list[NormalizedComponent]:
        seen: dict[tuple[str, str | None, str | None], NormalizedComponent] = {}
        for artifact in self.evidence.list_artifacts(scan_id, TECH_COMPONENT_TYPE, run_id=self._run_id):
            meta = artifact.meta or {}
            name = meta.get("name")
            if not name:
                continue
            component = NormalizedComponent(
                name=name,
                version=meta.get("version"),
                ecosystem=meta.get("ecosystem"),
                vendor=meta.get("vendor"),
                cpe=meta.get("cpe"),
            )
            seen.setdefault((name.lower(), component.version, component.ecosystem), component)
        return list(seen.values())

    def _record_component_report(self, scan_id: str, report: ComponentVulnerabilityReport) -> None:
        component = report.component
        worst = report.vulnerabilities[0]
        label = f"{component.name}@{component.version}"
        artifact_id = self.evidence.insert_artifact(
            ArtifactInput(
                type=COMPONENT_VULNERABILITY_TYPE,
                severity=worst.severity,
                val_text=f"{label}: {len(report.vulnerabilities)} known vulnerabilities",
                meta={
                    META_SCAN_ID: scan_id,
                    META_TASK: CORRELATION_TASK_NAME,
                    META_RUN_ID: self._run_id,
                    "component": component.model_dump(),
                    "risk_score": report.risk_score,
                    "version_status": report.version_status,
                    "vulnerabilities": [m.model_dump(mode="json") for m in report.vulnerabilities],
                },
            )
        )
        self.evidence.insert_finding(
            artifact_id,
            "VULNERABLE_COMPONENT",
            report.recommended_action,
            f"{label} is affected by {', '.join(m.id for m in report.vulnerabilities[:10])}",
        )

    async def _correlate_components(self, scan: Scan) -> None:
        if self.correlator is None or not self.config.correlate_components:
            return
        try:
            components = self._collect_components(scan.scan_id)
            if not components:
                return
            reports = await self.correlator.correlate_many(components)
            for report in reports:
                if report.vulnerabilities:
                    self._record_component_report(scan.scan_id, report)
        except DataIntegrityError:
            raise
        except Exception as e:
            message = f"Component correlation failed: {e}"
            logger.warning(message, extra={"scan_id": scan.scan_id})
            self.session.rollback()
            self._record_diagnostic(scan.scan_id, CORRELATION_TASK_NAME, message, SCAN_WARNING_TYPE, "LOW")

    def _store_assessment(self, scan_id: str, calculation: FinancialImpactCalculation) -> None:
        self.session.merge(
            RiskAssessment(
                scan_id=scan_id,
                expected_value=calculation.expected_value,
                calculation=calculation.model_dump(mode="json"),
            )
        )
        self.session.commit()

    async def _build_report(self, scan: Scan, job: ScanJob) -> None:
        """Risk assessment and optional report rendering. Failures here never fail the scan."""
        try:
            summaries = self.evidence.summarize_by_type(job.scan_id, scan.run_id)
            calculation = calculate_financial_impact(summaries, job.profile, self.risk_model)
            self._store_assessment(job.scan_id, calculation)
            logger.info(
                "Risk assessment computed",
                extra={
                    "scan_id": job.scan_id,
                    "expected_value": calculation.expected_value,
                    "risk_factors": calculation.risk_factors,
                },
            )
            if self.report_generator is not None:
                justification = generate_financial_justification(calculation, self.risk_model)
                await self.report_generator.generate(
                    scan, self.evidence.list_findings(job.scan_id, scan.run_id), calculation, justification
                )
        except Exception as e:
            message = f"Report generation failed: {e}"
            logger.warning(message, extra={"scan_id": job.scan_id})
            self.session.rollback()
            self._record_diagnostic(job.scan_id, REPORT_TASK_NAME, message, SCAN_WARNING_TYPE, "LOW")

    def _finalize(self, scan: Scan) -> None:
        scan.total_findings_count = self.evidence.count_artifacts(scan.scan_id, scan.run_id)
        scan.max_severity = self.evidence.max_severity(scan.scan_id, scan.run_id)
        self._transition(scan, "complete")
        scan.progress = 100
        scan.current_task = None
        scan.completed_at = _now()
        self.session.commit()

    async def _fail(self, scan: Scan, scan_id: str, error: Exception) -> None:
        if isinstance(error, AegisError):
            message = error.message
            logger.error("Scan failed: %s", message, extra={"scan_id": scan_id})
        else:
            message = f"Unexpected error: {error}"
            logger.exception("Scan failed with unexpected error", extra={"scan_id": scan_id})

        self.session.rollback()
        try:
            if ScanStatus(scan.status) not in TERMINAL_STATUSES:
                self._transition(scan, "fail")
            scan.error_message = message
            scan.completed_at = _now()
            self.session.commit()
            self._record_diagnostic(
                scan_id, scan.current_task or ORCHESTRATOR_TASK_NAME, message, SCAN_ERROR_TYPE, "CRITICAL"
            )
        except Exception:
            self.session.rollback()
            logger.exception("Could not persist scan failure", extra={"scan_id": scan_id})
        await self._queue_update(scan_id, "failed", message)

    # --- entry point ---------------------------------------------------------

    async def run_scan(self, job: ScanJob) -> Scan:
        """Execute one scan end to end and return the final Scan row."""
        scan = self._initialize(job)
        logger.info(
            "Scan started",
            extra={"scan_id": job.scan_id, "domain": job.domain, "total_tasks": len(self.tasks)},
        )
        try:
            await self._queue_update(job.scan_id, "processing", "Scan started")
            self._transition(scan, "start")
            self.session.commit()

            reported = await self._run_tasks(scan, job)
            if reported == 0:
                raise ZeroEvidenceError("All tasks completed but reported zero findings")

            await self._correlate_components(scan)

            self._transition(scan, "begin_report")
            scan.current_task = REPORT_TASK_NAME
            self.session.commit()
            await self._build_report(scan, job)

            self._finalize(scan)
            await self._queue_update(job.scan_id, "done", "Scan completed")
            logger.info(
                "Scan completed",
                extra={
                    "scan_id": job.scan_id,
                    "total_findings_count": scan.total_findings_count,
                    "max_severity": scan.max_severity,
                },
            )
        except Exception as e:
            await self._fail(scan, job.scan_id, e)
        return scan


def fail_stale_scans(session: Session, older_than: timedelta, now: datetime | None = None) -> list[str]:
    """
    Mark non-terminal scans not updated within older_than as failed.

    Run at worker startup: anything still in flight at that point was orphaned by a previous
    worker process. Returns the ids of the scans it failed so the caller can update the queue.
    """
    cutoff = (now or _now()) - older_than
    stmt = select(Scan).where(
        Scan.status.not_in([s.value for s in TERMINAL_STATUSES]),
        Scan.updated_at < cutoff,
    )
    stale = list(session.scalars(stmt))
    for scan in stale:
        scan.status = scan_state.apply(scan.status, "fail").value
        scan.error_message = STALE_SCAN_MESSAGE
        scan.completed_at = now or _now()
    scan_ids = [s.scan_id for s in stale]
    if scan_ids:
        session.commit()
        logger.warning("Failed stale scans", extra={"count": len(scan_ids), "scan_ids": scan_ids})
    return scan_ids
