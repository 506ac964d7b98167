"""Shared FastAPI dependencies injected into route handlers."""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, HTTPException, Request

from tracekit.service import TraceService


async def get_service(request: Request) -> TraceService:
    """Return the TraceService the lifespan attached to ``app.state``."""
    service: TraceService | None = getattr(request.app.state, "service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Trace service not running")
    return service


# Annotated shortcuts for route signatures
Service = Annotated[TraceService, Depends(get_service)]
