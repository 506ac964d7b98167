"""Canonical data models and collaborator interfaces for position capture.

``Fix`` is what a PositionSource produces; ``Point`` is a fix that passed the
accuracy gate and carries a motion tag.  Points are owned by exactly one
bucket and refer back to it only by ``bucket_id`` (the bucket's name).

MotionSource and PositionSource wrap the platform motion classifier and GPS
sampler.  They are leaf collaborators: the core only consumes the
interfaces below.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Callable

from tracekit.errors import PermissionRevoked

logger = logging.getLogger("tracekit.tracking")


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class MotionType(str, Enum):
    """Discrete motion classification emitted by the MotionSource."""

    STATIONARY = "stationary"
    WALKING = "walking"
    RUNNING = "running"
    CYCLING = "cycling"
    AUTOMOTIVE = "automotive"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: str | MotionType) -> MotionType:
        """Coerce a raw classification string, mapping unrecognised values to UNKNOWN."""
        if isinstance(value, MotionType):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            logger.debug("Unrecognised motion classification %r, treating as unknown", value)
            return cls.UNKNOWN


class PositionMode(str, Enum):
    """Sampling mode of the PositionSource."""

    SIGNIFICANT_CHANGE = "significant_change"  # low power
    CONTINUOUS = "continuous"                  # high resolution


# ---------------------------------------------------------------------------
# Position samples
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Fix:
    """Raw position fix from the PositionSource.

    Attributes:
        timestamp:           Time of the fix (timezone-aware, UTC preferred).
        latitude:            Degrees.
        longitude:           Degrees.
        altitude:            Meters above sea level.
        speed:               m/s; negative when the platform has no estimate.
        horizontal_accuracy: Radius of uncertainty in meters.
        vertical_accuracy:   Altitude uncertainty in meters.
    """

    timestamp: datetime
    latitude: float
    longitude: float
    altitude: float = 0.0
    speed: float = -1.0
    horizontal_accuracy: float = 0.0
    vertical_accuracy: float = 0.0


@dataclass
class Point:
    """An accepted position sample, owned by one bucket.

    Attributes:
        timestamp:           Time of the fix.
        latitude:            Degrees.
        longitude:           Degrees.
        altitude:            Meters.
        speed:               m/s.
        horizontal_accuracy: Meters.
        vertical_accuracy:   Meters.
        motion_type:         Motion classification at capture time.
        bucket_id:           Name of the owning bucket (lookup only, set on assign).
    """

    timestamp: datetime
    latitude: float
    longitude: float
    altitude: float
    speed: float
    horizontal_accuracy: float
    vertical_accuracy: float
    motion_type: str = MotionType.UNKNOWN.value
    bucket_id: str | None = None

    @classmethod
    def from_fix(cls, fix: Fix, motion_type: str | MotionType) -> Point:
        return cls(
            timestamp=fix.timestamp,
            latitude=fix.latitude,
            longitude=fix.longitude,
            altitude=fix.altitude,
            speed=fix.speed,
            horizontal_accuracy=fix.horizontal_accuracy,
            vertical_accuracy=fix.vertical_accuracy,
            motion_type=MotionType.parse(motion_type).value,
        )


# ---------------------------------------------------------------------------
# Collaborator interfaces
# ---------------------------------------------------------------------------


MotionListener = Callable[[MotionType], None]
FixListener = Callable[[Fix], None]


class MotionSource(ABC):
    """Emits discrete motion classifications."""

    @abstractmethod
    def start(self, on_motion: MotionListener) -> None:
        """Begin delivering classifications to ``on_motion``."""

    @abstractmethod
    def stop(self) -> None:
        """Stop delivering classifications."""


class PositionSource(ABC):
    """Emits raw fixes in either low-power or high-resolution mode.

    ``set_mode`` raises ``PermissionRevoked`` when location access has been
    denied by the platform.
    """

    @abstractmethod
    def set_mode(self, mode: PositionMode) -> None:
        """Switch the sampling mode."""

    @property
    @abstractmethod
    def mode(self) -> PositionMode | None:
        """Mode currently in effect (None before the first switch)."""


class BridgePositionSource(PositionSource):
    """PositionSource whose mode is read back by an external platform bridge.

    The bridge polls the local API for ``mode`` and pushes fixes in; this
    object only records what the controller requested.
    """

    def __init__(self) -> None:
        self._mode: PositionMode | None = None
        self._permission_denied = False

    @property
    def mode(self) -> PositionMode | None:
        return self._mode

    def set_permission(self, granted: bool) -> None:
        self._permission_denied = not granted

    def set_mode(self, mode: PositionMode) -> None:
        if self._permission_denied:
            raise PermissionRevoked("Location access denied by the platform")
        self._mode = mode
        logger.debug("Bridge position source mode -> %s", mode.value)


# ---------------------------------------------------------------------------
# Time helpers
# ---------------------------------------------------------------------------


def ensure_utc(value: datetime) -> datetime:
    """Return ``value`` as a UTC-aware datetime (naive values are assumed UTC)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utc_iso(value: datetime) -> str:
    """Format a datetime as ``YYYY-MM-DDTHH:MM:SSZ``."""
    return ensure_utc(value).strftime("%Y-%m-%dT%H:%M:%SZ")
