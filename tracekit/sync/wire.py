"""Wire format for uploads: one GeoJSON-like Feature per point.

Request body::

    {"locations": [
        {"type": "Feature",
         "geometry": {"type": "Point", "coordinates": [lon, lat]},
         "properties": {"speed": 1.2, "motion": ["walking"],
                        "timestamp": "2025-04-16T10:00:15Z", ...}},
        ...
    ]}
"""

from __future__ import annotations

import json
import math
from typing import Iterable

from tracekit.errors import MalformedPayloadError
from tracekit.tracking.base import MotionType, Point, utc_iso

DEFAULT_SPEED_ACCURACY = 0.07

# The device does not measure these; the server expects the sentinel values.
_COURSE_UNKNOWN = -1
_WIFI_UNKNOWN = "unknown"


def point_to_feature(point: Point, speed_accuracy: float = DEFAULT_SPEED_ACCURACY) -> dict:
    """Convert one point to its wire Feature.

    Raises:
        MalformedPayloadError: If a numeric field is not finite.
    """
    numeric = {
        "latitude": point.latitude,
        "longitude": point.longitude,
        "altitude": point.altitude,
        "speed": point.speed,
        "horizontal_accuracy": point.horizontal_accuracy,
        "vertical_accuracy": point.vertical_accuracy,
    }
    for name, value in numeric.items():
        try:
            finite = math.isfinite(float(value))
        except (TypeError, ValueError):
            finite = False
        if not finite:
            raise MalformedPayloadError(
                f"Point at {point.timestamp!s} has non-finite {name}: {value!r}"
            )

    try:
        timestamp = utc_iso(point.timestamp)
    except (AttributeError, ValueError, OverflowError) as exc:
        raise MalformedPayloadError(f"Bad point timestamp {point.timestamp!r}: {exc}") from exc

    return {
        "type": "Feature",
        "geometry": {
            "type": "Point",
            "coordinates": [float(point.longitude), float(point.latitude)],
        },
        "properties": {
            "speed": float(point.speed),
            "motion": [point.motion_type or MotionType.UNKNOWN.value],
            "timestamp": timestamp,
            "horizontal_accuracy": float(point.horizontal_accuracy),
            "vertical_accuracy": float(point.vertical_accuracy),
            "altitude": float(point.altitude),
            "course": _COURSE_UNKNOWN,
            "course_accuracy": _COURSE_UNKNOWN,
            "speed_accuracy": speed_accuracy,
            "wifi": _WIFI_UNKNOWN,
        },
    }


def build_payload(points: Iterable[Point], speed_accuracy: float = DEFAULT_SPEED_ACCURACY) -> dict:
    """Build the ``{"locations": [...]}`` request body."""
    return {"locations": [point_to_feature(p, speed_accuracy) for p in points]}


def encode_payload(points: Iterable[Point], speed_accuracy: float = DEFAULT_SPEED_ACCURACY) -> bytes:
    """Serialize points to the JSON request body.

    Raises:
        MalformedPayloadError: If any point cannot be represented.
    """
    payload = build_payload(points, speed_accuracy)
    try:
        return json.dumps(payload, allow_nan=False, separators=(",", ":")).encode("utf-8")
    except (TypeError, ValueError) as exc:
        raise MalformedPayloadError(f"Could not encode upload payload: {exc}") from exc
