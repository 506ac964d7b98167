"""Pydantic request/response schemas for the local control API."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from tracekit.tracking.base import Fix


class TraceBase(BaseModel):
    """Base model with shared config for all TraceKit schemas."""

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        str_strip_whitespace=True,
    )


# ---------- Ingestion ----------


class MotionIn(TraceBase):
    motion: str = Field(min_length=1)


class FixIn(TraceBase):
    timestamp: datetime
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    altitude: float = 0.0
    speed: float = -1.0
    horizontal_accuracy: float = Field(ge=0)
    vertical_accuracy: float = 0.0

    def to_fix(self) -> Fix:
        return Fix(**self.model_dump())


class FixBatchIn(TraceBase):
    fixes: list[FixIn] = Field(min_length=1)


class FixBatchOut(TraceBase):
    received: int
    buffer_size: int
    queued_buckets: int


class PermissionIn(TraceBase):
    granted: bool


class AutoUploadIn(TraceBase):
    enabled: bool


# ---------- State ----------


class StateOut(TraceBase):
    duty_state: str
    mode: str | None = None
    is_tracking: bool
    current_motion: str
    permission_error: str | None = None
    buffer_size: int
    queued_buckets: int
    last_point_at: datetime | None = None
    last_upload_attempt: datetime | None = None
    upload_error: str | None = None
    map_refresh_error: str | None = None
    is_uploading: bool
    next_scheduled_upload: datetime | None = None
    points_in_window: int
    auto_upload_enabled: bool


# ---------- Sync ----------


class BucketOutcomeOut(TraceBase):
    name: str
    start: datetime
    points_sent: int
    status: str
    error: str | None = None
    retry_count: int


class UploadResultOut(TraceBase):
    status: str
    uploaded: int
    failed: int
    points_sent: int
    last_error: str | None = None
    message: str | None = None
    outcomes: list[BucketOutcomeOut] = Field(default_factory=list)


class AutoUploadOut(TraceBase):
    enabled: bool
    next_scheduled_upload: datetime | None = None


class ServerStatusOut(TraceBase):
    reachable: bool
    detail: dict[str, Any] | None = None
    error: str | None = None


class HistoryOut(TraceBase):
    status: str
    count: int
    lookback_hours: int | None = None
    coordinates: list[list[Any]] = Field(default_factory=list)
