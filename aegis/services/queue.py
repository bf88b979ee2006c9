"""Redis-backed scan job queue with per-job locks and a status hash per job."""

import logging
import os
import socket
import time
from collections.abc import AsyncGenerator
from typing import Literal, Protocol

import redis.asyncio as aioredis
from pydantic import ValidationError
from redis.exceptions import RedisError

from aegis.core.config import get_settings
from aegis.core.errors import ExternalServiceError
from aegis.schemas.scan import ScanJob

logger = logging.getLogger(__name__)

QueueState = Literal["queued", "processing", "done", "failed"]

DEFAULT_QUEUE_KEY = "scan.jobs"
DEFAULT_LOCK_TTL_SEC = 1200


class ScanQueue(Protocol):
    """What the worker and orchestrator need from a job queue."""

    async def next_job(self) -> ScanJob | None: ...

    async def update_status(self, scan_id: str, state: QueueState, message: str | None = None) -> None: ...


def status_key(scan_id: str) -> str:
    return f"job:{scan_id}"


def lock_key(scan_id: str) -> str:
    return f"lock:job:{scan_id}"


class RedisScanQueue:
    """
    LPUSH to enqueue, RPOP to dequeue (FIFO). A dequeued job is claimed with
    SET lock:job:<id> NX EX <ttl>; if another worker holds the lock the job is
    pushed back and None returned. The lock is released when the job reaches
    done or failed.
    """

    def __init__(
        self,
        client: aioredis.Redis,
        queue_key: str = DEFAULT_QUEUE_KEY,
        lock_ttl_sec: int = DEFAULT_LOCK_TTL_SEC,
        worker_id: str | None = None,
    ) -> None:
        self.client = client
        self.queue_key = queue_key
        self.lock_ttl_sec = lock_ttl_sec
        self.worker_id = worker_id or f"{socket.gethostname()}-{os.getpid()}"

    @classmethod
    def from_url(cls, url: str, queue_key: str = DEFAULT_QUEUE_KEY, lock_ttl_sec: int = DEFAULT_LOCK_TTL_SEC) -> "RedisScanQueue":
        return cls(aioredis.from_url(url, decode_responses=True), queue_key=queue_key, lock_ttl_sec=lock_ttl_sec)

    async def enqueue(self, job: ScanJob) -> None:
        try:
            await self.client.lpush(self.queue_key, job.model_dump_json())
            await self.client.hset(
                status_key(job.scan_id),
                mapping={
                    "state": "queued",
                    "updated": str(int(time.time() * 1000)),
                    "message": "Scan queued and waiting for processing",
                },
            )
        except RedisError as e:
            raise ExternalServiceError("queue", f"enqueue failed: {e}", cause=e) from e
        logger.info("Enqueued scan", extra={"scan_id": job.scan_id, "domain": job.domain})

    async def next_job(self) -> ScanJob | None:
        """Pop and lock the oldest job, or return None if the queue is empty or the job is locked."""
        try:
            raw = await self.client.rpop(self.queue_key)
        except RedisError as e:
            raise ExternalServiceError("queue", f"dequeue failed: {e}", cause=e) from e
        if raw is None:
            return None

        try:
            job = ScanJob.model_validate_json(raw)
        except ValidationError as e:
            # Unparseable payloads are dropped; re-queuing them would poison the queue.
            logger.error("Discarding malformed job payload", extra={"payload": str(raw)[:200], "error": str(e)})
            return None

        try:
            locked = await self.client.set(lock_key(job.scan_id), self.worker_id, nx=True, ex=self.lock_ttl_sec)
            if not locked:
                logger.info("Job already locked by another worker; re-queuing", extra={"scan_id": job.scan_id})
                await self.client.lpush(self.queue_key, raw)
                return None
        except RedisError as e:
            raise ExternalServiceError("queue", f"lock failed for {job.scan_id}: {e}", cause=e) from e

        logger.info("Claimed job", extra={"scan_id": job.scan_id, "worker_id": self.worker_id})
        return job

    async def update_status(self, scan_id: str, state: QueueState, message: str | None = None) -> None:
        mapping = {"state": state, "updated": str(int(time.time() * 1000))}
        if message:
            mapping["message"] = message
        try:
            await self.client.hset(status_key(scan_id), mapping=mapping)
            if state in ("done", "failed"):
                await self.client.delete(lock_key(scan_id))
        except RedisError as e:
            raise ExternalServiceError("queue", f"status update failed for {scan_id}: {e}", cause=e) from e

    async def get_status(self, scan_id: str) -> dict[str, str] | None:
        try:
            status = await self.client.hgetall(status_key(scan_id))
        except RedisError as e:
            raise ExternalServiceError("queue", f"status read failed for {scan_id}: {e}", cause=e) from e
        return status or None

    async def ping(self) -> bool:
        try:
            return bool(await self.client.ping())
        except RedisError:
            return False

    async def close(self) -> None:
        await self.client.aclose()


async def get_queue() -> AsyncGenerator[RedisScanQueue, None]:
    """Dependency that yields a queue client and closes it when done."""
    settings = get_settings()
    queue = RedisScanQueue.from_url(
        settings.REDIS_URL,
        queue_key=settings.QUEUE_KEY,
        lock_ttl_sec=settings.JOB_LOCK_TTL_SEC,
    )
    try:
        yield queue
    finally:
        await queue.close()
