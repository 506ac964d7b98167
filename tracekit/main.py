"""TraceKit control API — FastAPI application entry point.

Run locally:
    uvicorn tracekit.main:app --port 8000
"""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI

from tracekit.config import get_settings
from tracekit.routers import health, tracking
from tracekit.service import TraceService

# ---------- Logging ----------

logging.basicConfig(
    level=getattr(logging, get_settings().log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
    stream=sys.stdout,
)
logger = logging.getLogger("tracekit")


# ---------- Lifespan ----------

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup / shutdown hooks."""
    settings = get_settings()
    logger.info("Starting %s v%s", settings.app_name, settings.app_version)
    service: TraceService | None = getattr(app.state, "service", None)
    if service is None:
        service = TraceService(settings=settings)
        app.state.service = service
    await service.start()
    yield
    await service.stop()
    logger.info("%s shut down", settings.app_name)


# ---------- App factory ----------

def create_app(service: TraceService | None = None) -> FastAPI:
    """Build the app.  Pass ``service`` to run against pre-built components."""
    settings = get_settings()

    app = FastAPI(
        title=f"{settings.app_name} API",
        description=(
            "Local control surface for the motion-driven location tracker: "
            "ingestion, pipeline state, uploads and history."
        ),
        version=settings.app_version,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )
    if service is not None:
        app.state.service = service

    # ---------- Health check (outside v1 prefix — always at /health) ----------
    app.include_router(health.router)

    # ---------- API v1 routes ----------
    v1_prefix = "/api/v1"

    app.include_router(tracking.router, prefix=v1_prefix)

    return app


app = create_app()
