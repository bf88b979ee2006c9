"""Scans endpoints: enqueue a due-diligence scan and poll its state, findings and risk assessment."""

import logging
import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from aegis.core.database import get_db
from aegis.core.errors import ExternalServiceError
from aegis.models import RiskAssessment, Scan
from aegis.schemas.evidence import FindingRead
from aegis.schemas.risk import FinancialImpactCalculation
from aegis.schemas.scan import RiskAssessmentRead, ScanCreateRequest, ScanJob, ScanRead, ScanStatus
from aegis.services import scan_state
from aegis.services.evidence_store import EvidenceStore
from aegis.services.queue import RedisScanQueue, get_queue
from aegis.services.risk_aggregator import format_financial_range, generate_financial_justification
from aegis.tasks import DEFAULT_TASK_ORDER

logger = logging.getLogger(__name__)

router = APIRouter()


def _get_scan_or_404(db: Session, scan_id: str) -> Scan:
    scan = db.get(Scan, scan_id)
    if scan is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Scan {scan_id} not found.")
    return scan


def _insert_queued_scan(db: Session, scan_id: str, body: ScanCreateRequest) -> ScanRead:
    scan = Scan(
        scan_id=scan_id,
        organization_name=body.organization_name,
        domain=body.domain,
        status=ScanStatus.QUEUED.value,
        progress=0,
        total_tasks=len(DEFAULT_TASK_ORDER),
        total_findings_count=0,
    )
    db.add(scan)
    db.commit()
    db.refresh(scan)
    return ScanRead.model_validate(scan)


def _mark_enqueue_failed(db: Session, scan_id: str) -> None:
    scan = _get_scan_or_404(db, scan_id)
    scan.status = scan_state.apply(scan.status, "fail").value
    scan.error_message = "Could not enqueue scan"
    db.commit()


@router.post("", response_model=ScanRead, status_code=status.HTTP_201_CREATED)
async def create_scan(
    body: ScanCreateRequest,
    db: Annotated[Session, Depends(get_db)],
    queue: Annotated[RedisScanQueue, Depends(get_queue)],
) -> ScanRead:
    """
    Create a queued scan and hand it to the worker pool.

    Poll GET /scans/{scan_id} for progress. Returns 503 when the job queue is unreachable;
    the scan row is then marked failed so it does not linger as queued.
    """
    scan_id = uuid.uuid4().hex
    created = await run_in_threadpool(_insert_queued_scan, db, scan_id, body)

    job = ScanJob(
        scan_id=scan_id,
        organization_name=body.organization_name,
        domain=body.domain,
        profile=body.profile,
    )
    try:
        await queue.enqueue(job)
    except ExternalServiceError as e:
        # The app-level handler turns this into a 503.
        await run_in_threadpool(_mark_enqueue_failed, db, scan_id)
        logger.error("Enqueue failed", extra={"scan_id": scan_id, "error": e.message})
        raise

    return created


@router.get("/{scan_id}", response_model=ScanRead)
def get_scan(scan_id: str, db: Annotated[Session, Depends(get_db)]) -> ScanRead:
    """Current status, progress and summary counts for one scan."""
    return ScanRead.model_validate(_get_scan_or_404(db, scan_id))


@router.get("/{scan_id}/findings", response_model=list[FindingRead])
def get_scan_findings(scan_id: str, db: Annotated[Session, Depends(get_db)]) -> list[FindingRead]:
    """Findings from the scan's latest run with their artifact type and severity, most severe first."""
    scan = _get_scan_or_404(db, scan_id)
    return EvidenceStore(db).list_findings(scan_id, scan.run_id)


@router.get("/{scan_id}/risk", response_model=RiskAssessmentRead)
def get_scan_risk(scan_id: str, db: Annotated[Session, Depends(get_db)]) -> RiskAssessmentRead:
    """
    Financial risk assessment for a completed scan.

    409 if the scan failed; 404 if the scan does not exist or has no assessment yet.
    """
    scan = _get_scan_or_404(db, scan_id)
    if scan.status == ScanStatus.FAILED.value:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=scan.error_message or "Scan failed; no risk assessment available.",
        )
    assessment = db.get(RiskAssessment, scan_id)
    if assessment is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Risk assessment not available yet.",
        )
    calculation = FinancialImpactCalculation.model_validate(assessment.calculation)
    return RiskAssessmentRead(
        scan_id=scan_id,
        calculation=calculation,
        financial_range=format_financial_range(calculation),
        justification=generate_financial_justification(calculation),
    )
