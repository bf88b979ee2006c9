"""Health check endpoint with database and queue connectivity checks."""

from typing import Annotated

from fastapi import APIRouter, Depends
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from aegis.core.config import settings
from aegis.core.database import check_db_connected, get_db
from aegis.schemas.health import HealthResponse
from aegis.services.queue import RedisScanQueue, get_queue

router = APIRouter()


@router.get("/", response_model=HealthResponse)
async def get_health(
    db: Annotated[Session, Depends(get_db)],
    queue: Annotated[RedisScanQueue, Depends(get_queue)],
) -> HealthResponse:
    """
    Return service health status plus database and queue connectivity.
    Used by load balancers and monitoring.
    """
    # The queue ping is async; the database check is a blocking driver call.
    db_status = "connected" if await run_in_threadpool(check_db_connected, db) else "disconnected"
    queue_status = "connected" if await queue.ping() else "disconnected"

    return HealthResponse(
        status="ok",
        environment=settings.APP_ENV,
        database=db_status,
        queue=queue_status,
    )
