# =============================================================================
# FastAPI Application — Professional Connection Matching Engine
# =============================================================================
#
# Run locally:
#   uvicorn netmatch.main:app --reload
#
# Workers:
#   celery -A netmatch.workers.celery_app worker --loglevel=info
# =============================================================================

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from netmatch.api import matches
from netmatch.config import settings
from netmatch.db.engine import async_engine
from netmatch.models.responses import HealthResponse

# =============================================================================
# Logging Configuration
# =============================================================================

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting %s v%s", settings.app_name, settings.app_version)
    yield
    from netmatch.services.match_cache import wait_for_pending_writes

    # Let in-flight cache writes finish before the pool goes away
    await wait_for_pending_writes()
    await async_engine.dispose()
    logger.info("Shutdown complete")


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description=(
        "Recommends professional connections: deterministic weighted "
        "scoring plus an agentic retrieve-and-reason pipeline with a "
        "per-owner match cache."
    ),
    lifespan=lifespan,
)

app.include_router(matches.router)


@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health() -> HealthResponse:
    """Liveness check."""
    return HealthResponse(
        status="ok",
        version=settings.app_version,
        service=settings.app_name,
    )
