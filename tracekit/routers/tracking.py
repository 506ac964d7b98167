"""Control endpoints for the platform bridge and the UI.

The bridge pushes motion classifications and fixes and polls ``/state`` for
the sampling mode the duty cycle requested.  The UI reads the same state and
triggers uploads, the auto-upload toggle, the server test and the history
refresh.
"""

from __future__ import annotations

import logging
from dataclasses import asdict
from typing import Any

from fastapi import APIRouter, HTTPException

from tracekit.dependencies import Service
from tracekit.errors import TransientTransportError
from tracekit.models import (
    AutoUploadIn,
    AutoUploadOut,
    FixBatchIn,
    FixBatchOut,
    HistoryOut,
    MotionIn,
    PermissionIn,
    ServerStatusOut,
    StateOut,
    UploadResultOut,
)
from tracekit.service import TraceService

router = APIRouter(tags=["tracking"])
logger = logging.getLogger("tracekit.routers.tracking")


def _state(service: TraceService) -> dict:
    snapshot = service.status.snapshot().to_dict()
    mode = service.position_source.mode
    snapshot["mode"] = mode.value if mode is not None else None
    snapshot["auto_upload_enabled"] = service.scheduler.auto_upload_enabled
    return snapshot


# ---------- State ----------

@router.get("/state", response_model=StateOut)
async def get_state(service: Service) -> Any:
    return _state(service)


# ---------- Ingestion ----------

@router.post("/motion", response_model=StateOut)
async def push_motion(service: Service, body: MotionIn) -> Any:
    await service.ingest_motion(body.motion)
    return _state(service)


@router.post("/fixes", response_model=FixBatchOut, status_code=202)
async def push_fixes(service: Service, body: FixBatchIn) -> Any:
    await service.ingest_fixes(item.to_fix() for item in body.fixes)
    snapshot = service.status.snapshot()
    return {
        "received": len(body.fixes),
        "buffer_size": snapshot.buffer_size,
        "queued_buckets": snapshot.queued_buckets,
    }


@router.post("/permission", response_model=StateOut)
async def report_permission(service: Service, body: PermissionIn) -> Any:
    service.set_permission(body.granted)
    return _state(service)


# ---------- Sync ----------

@router.post("/upload", response_model=UploadResultOut)
async def upload_now(service: Service) -> Any:
    result = await service.upload_now()
    if result.status == "busy":
        raise HTTPException(status_code=409, detail=result.message)
    return asdict(result)


@router.put("/auto-upload", response_model=AutoUploadOut)
async def set_auto_upload(service: Service, body: AutoUploadIn) -> Any:
    service.set_auto_upload(body.enabled)
    return {
        "enabled": service.scheduler.auto_upload_enabled,
        "next_scheduled_upload": service.status.snapshot().next_scheduled_upload,
    }


@router.get("/server-status", response_model=ServerStatusOut)
async def server_status(service: Service) -> Any:
    try:
        detail = await service.check_server()
    except TransientTransportError as exc:
        logger.warning("Server connection test failed: %s", exc)
        return {"reachable": False, "error": str(exc)}
    return {"reachable": True, "detail": detail}


@router.post("/history/refresh", response_model=HistoryOut)
async def refresh_history(service: Service) -> Any:
    result = await service.refresh_history()
    if result is None:
        raise HTTPException(
            status_code=502,
            detail=service.status.snapshot().map_refresh_error or "Map refresh failed",
        )
    return {
        "status": result.status,
        "count": result.count,
        "lookback_hours": result.lookback_hours,
        "coordinates": [
            [c.timestamp, c.latitude, c.longitude, c.accuracy] for c in result.coordinates
        ],
    }
