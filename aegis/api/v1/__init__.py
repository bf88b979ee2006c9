"""API v1 routes."""

from fastapi import APIRouter

from aegis.api.v1 import health, scans

router = APIRouter()
router.include_router(health.router, prefix="/health", tags=["health"])
router.include_router(scans.router, prefix="/scans", tags=["scans"])
