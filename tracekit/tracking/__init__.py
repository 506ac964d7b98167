"""Position capture: motion-driven duty cycle, accuracy gate, ingestion lane.

Core modules:
    base          — Fix/Point models, MotionSource and PositionSource interfaces
    config_loader — Load/validate/hot-reload tracking_config.yaml
    duty_cycle    — Debounced Idle/Active state machine
    point_filter  — Horizontal-accuracy gate
    ingest        — Single-consumer mailbox serializing ingestion work
"""

from tracekit.tracking.base import (
    BridgePositionSource,
    Fix,
    MotionSource,
    MotionType,
    Point,
    PositionMode,
    PositionSource,
)
from tracekit.tracking.config_loader import TrackingConfig, get_tracking_config

__all__ = [
    "BridgePositionSource",
    "Fix",
    "MotionSource",
    "MotionType",
    "Point",
    "PositionMode",
    "PositionSource",
    "TrackingConfig",
    "get_tracking_config",
]
