"""Health check endpoint."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Request

from tracekit.config import get_settings

router = APIRouter(tags=["system"])
logger = logging.getLogger("tracekit.health")


@router.get("/health")
async def health_check(request: Request) -> dict:
    """Liveness probe. Returns 200 if the API process is up.

    Also reports whether the trace service is running and its ingestion
    lane is consuming.
    """
    settings = get_settings()
    service = getattr(request.app.state, "service", None)
    running = bool(service is not None and service.started and service.ingest.running)
    if not running:
        logger.warning("Health check: trace service not running")

    return {
        "status": "healthy" if running else "degraded",
        "version": settings.app_version,
        "service": "running" if running else "stopped",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
