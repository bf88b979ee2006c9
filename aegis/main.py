"""FastAPI application entrypoint: wiring, middleware and app-wide error mapping only."""

from dotenv import load_dotenv

load_dotenv()

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from aegis.api.v1 import router as v1_router
from aegis.core.config import settings
from aegis.core.errors import ExternalServiceError

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    logging.getLogger("aegis").setLevel(settings.LOG_LEVEL)
    logger.info("API starting", extra={"environment": settings.APP_ENV})
    yield


app = FastAPI(
    title="Aegis Diligence API",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.APP_ENV == "dev" else [],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(v1_router, prefix=settings.API_V1_PREFIX)


@app.exception_handler(ExternalServiceError)
async def external_service_error_handler(request: Request, exc: ExternalServiceError) -> JSONResponse:
    """A collaborator (queue, advisory source) is unreachable: 503 so clients retry later."""
    logger.warning(
        "External service unavailable",
        extra={"service": exc.service, "path": request.url.path, "error": exc.message},
    )
    return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content={"detail": exc.message})


@app.get("/")
def root() -> dict[str, str]:
    """Root route; minimal payload for discovery."""
    return {"message": "Aegis Diligence API", "scans": f"{settings.API_V1_PREFIX}/scans"}
