"""
CLI entrypoint for the scan worker. Run one or more per deployment:

  python -m aegis.worker

Fails scans orphaned by a previous worker, then polls the queue and runs one scan at a time
until SIGINT/SIGTERM (the scan in progress is allowed to finish).
"""

import asyncio
import logging
import signal
import sys
from collections.abc import Sequence
from datetime import timedelta

from dotenv import load_dotenv

load_dotenv()

from aegis.core.backoff import backoff_from_settings
from aegis.core.config import Settings, get_settings
from aegis.core.database import session_scope
from aegis.core.errors import ExternalServiceError
from aegis.schemas.scan import ScanJob
from aegis.services.correlator import VulnerabilityCorrelator
from aegis.services.evidence_store import EvidenceStore
from aegis.services.orchestrator import STALE_SCAN_MESSAGE, ScanOrchestrator, fail_stale_scans
from aegis.services.queue import RedisScanQueue, ScanQueue
from aegis.services.vuln_sources import GitHubAdvisorySource, OSVSource
from aegis.tasks import build_tasks

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
    datefmt="%Y-%m-%dT%H:%M:%SZ",
)
logger = logging.getLogger(__name__)


def build_correlator(settings: Settings) -> VulnerabilityCorrelator:
    """OSV first so it wins identifier conflicts; GitHub advisories fill gaps."""
    backoff = backoff_from_settings(settings)
    token = settings.GITHUB_TOKEN.get_secret_value() if settings.GITHUB_TOKEN else None
    return VulnerabilityCorrelator(
        [
            OSVSource(backoff, timeout=settings.HTTP_TIMEOUT_SEC),
            GitHubAdvisorySource(token, backoff, timeout=settings.HTTP_TIMEOUT_SEC),
        ]
    )


async def process_job(job: ScanJob, queue: ScanQueue, settings: Settings) -> None:
    """Run one scan with its own database session."""
    with session_scope() as db:
        evidence = EvidenceStore(db)
        orchestrator = ScanOrchestrator(
            db,
            evidence,
            build_tasks(evidence, settings),
            queue=queue,
            correlator=build_correlator(settings),
        )
        scan = await orchestrator.run_scan(job)
        logger.info("Scan %s finished with status %s", scan.scan_id, scan.status)


async def run_worker(queue: ScanQueue, settings: Settings, stop: asyncio.Event) -> None:
    """Poll until stop is set. Loop errors are logged and followed by a back-off sleep."""
    while not stop.is_set():
        try:
            job = await queue.next_job()
            if job is None:
                await _sleep_or_stop(stop, settings.QUEUE_POLL_INTERVAL_SEC)
                continue
            logger.info("Processing scan %s for %s", job.scan_id, job.domain)
            await process_job(job, queue, settings)
        except Exception as e:
            logger.exception("Worker loop error: %s", e)
            await _sleep_or_stop(stop, settings.WORKER_ERROR_BACKOFF_SEC)
    logger.info("Worker stopped")


async def _sleep_or_stop(stop: asyncio.Event, seconds: float) -> None:
    try:
        await asyncio.wait_for(stop.wait(), timeout=seconds)
    except asyncio.TimeoutError:
        return


def cleanup_stale_scans(settings: Settings) -> list[str]:
    with session_scope() as db:
        return fail_stale_scans(db, timedelta(minutes=settings.STALE_SCAN_MINUTES))


async def publish_stale_failures(queue: ScanQueue, scan_ids: Sequence[str]) -> None:
    """Best effort: mirror the startup cleanup into each job's queue status hash."""
    for scan_id in scan_ids:
        try:
            await queue.update_status(scan_id, "failed", STALE_SCAN_MESSAGE)
        except ExternalServiceError as e:
            logger.warning("Could not mark stale scan %s failed in queue: %s", scan_id, e.message)


async def _main(settings: Settings, stale_scan_ids: Sequence[str] = ()) -> None:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    queue = RedisScanQueue.from_url(
        settings.REDIS_URL,
        queue_key=settings.QUEUE_KEY,
        lock_ttl_sec=settings.JOB_LOCK_TTL_SEC,
    )
    try:
        await publish_stale_failures(queue, stale_scan_ids)
        await run_worker(queue, settings, stop)
    finally:
        await queue.close()


def main() -> int:
    """Fail orphaned scans, then run the poll loop until signalled."""
    settings = get_settings()
    logging.getLogger().setLevel(settings.LOG_LEVEL)
    try:
        failed = cleanup_stale_scans(settings)
        logger.info("Stale scan cleanup completed: scans_failed=%s", len(failed))
        asyncio.run(_main(settings, failed))
        return 0
    except Exception as e:
        logger.exception("Worker failed: %s", e)
        return 1


if __name__ == "__main__":
    sys.exit(main())
