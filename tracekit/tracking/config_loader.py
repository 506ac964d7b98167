"""Load, validate, and hot-reload the TraceKit tracking configuration.

The config lives in ``tracking_config.yaml`` alongside this module.  At startup
it is loaded once and cached.  Call ``reload_tracking_config()`` to re-read from
disk after the settings change — no restart required.

Usage::

    from tracekit.tracking.config_loader import get_tracking_config

    config = get_tracking_config()
    config.duty_cycle.required_motion_seconds   # 3.0
    config.is_moving("walking")                 # True
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from tracekit.tracking.base import MotionType

logger = logging.getLogger("tracekit.tracking.config")

# Path to the YAML file sitting next to this module
_CONFIG_PATH = Path(__file__).parent / "tracking_config.yaml"

DEFAULT_MOVING = ["walking", "running", "cycling", "automotive", "unknown"]


# ---------------------------------------------------------------------------
# Typed config sections
# ---------------------------------------------------------------------------


@dataclass
class DutyCycleConfig:
    """Debounce settings for the duty-cycle controller."""

    required_motion_seconds: float


@dataclass
class FilterConfig:
    """Accuracy gate settings."""

    max_horizontal_accuracy_m: float


@dataclass
class BucketConfig:
    """Time-window bucketing settings."""

    window_seconds: int


@dataclass
class UploadConfig:
    """Wire-format constants."""

    speed_accuracy: float


@dataclass
class ScheduleConfig:
    """Timer intervals."""

    heartbeat_interval_seconds: float


@dataclass
class HistoryConfig:
    """History (map) query parameters."""

    lookback_days: float
    max_distance_m: int


@dataclass
class TrackingConfig:
    """Complete, validated tracking configuration.

    Attributes:
        version:       Config schema version string.
        moving:        Motion classifications treated as "moving".
        duty_cycle:    Debounce settings.
        filter:        Accuracy gate.
        buckets:       Bucket window width.
        upload:        Wire-format constants.
        schedule:      Heartbeat interval.
        history:       History query parameters.
    """

    version: str
    moving: frozenset[MotionType]
    duty_cycle: DutyCycleConfig
    filter: FilterConfig
    buckets: BucketConfig
    upload: UploadConfig
    schedule: ScheduleConfig
    history: HistoryConfig
    _raw: dict = field(default_factory=dict, repr=False)

    def is_moving(self, motion: str | MotionType) -> bool:
        """Return True if a classification belongs to the moving set."""
        return MotionType.parse(motion) in self.moving


# ---------------------------------------------------------------------------
# Loader / validation
# ---------------------------------------------------------------------------


class ConfigValidationError(ValueError):
    """Raised when tracking_config.yaml fails validation."""


def _load_yaml(path: Path) -> dict:
    """Read and parse a YAML file.

    Raises:
        FileNotFoundError: If the file does not exist.
        ConfigValidationError: If the YAML is malformed.
    """
    if not path.exists():
        raise FileNotFoundError(f"Tracking config not found: {path}")

    with path.open("r", encoding="utf-8") as fh:
        try:
            return yaml.safe_load(fh) or {}
        except yaml.YAMLError as exc:
            raise ConfigValidationError(f"YAML parse error in {path}: {exc}") from exc


def _validate_and_build(raw: dict) -> TrackingConfig:
    """Validate the raw YAML dict and construct a TrackingConfig.

    Missing sections fall back to defaults; every invalid value is collected
    and reported in a single ConfigValidationError.
    """
    errors: list[str] = []

    def _number(section: dict, key: str, default: float, path: str) -> float:
        value = section.get(key, default)
        try:
            return float(value)
        except (TypeError, ValueError):
            errors.append(f"{path}.{key} must be a number, got {value!r}")
            return default

    def _section(name: str) -> dict[str, Any]:
        value = raw.get(name) or {}
        if not isinstance(value, dict):
            errors.append(f"'{name}' must be a mapping")
            return {}
        return value

    version = str(raw.get("version", "1.0"))

    # ── Motion classes ──
    motion_raw = _section("motion")
    moving_raw = motion_raw.get("moving", DEFAULT_MOVING)
    moving: set[MotionType] = set()
    if not isinstance(moving_raw, list):
        errors.append("motion.moving must be a list of classifications")
    else:
        valid = {m.value for m in MotionType}
        for item in moving_raw:
            if str(item) not in valid:
                errors.append(
                    f"motion.moving contains unknown classification {item!r} "
                    f"(expected one of {sorted(valid)})"
                )
                continue
            moving.add(MotionType(str(item)))
        if MotionType.STATIONARY in moving:
            errors.append("motion.moving must not contain 'stationary'")

    # ── Duty cycle ──
    dc_raw = _section("duty_cycle")
    required = _number(dc_raw, "required_motion_seconds", 3.0, "duty_cycle")
    if required < 0:
        errors.append(f"duty_cycle.required_motion_seconds = {required} must be >= 0")
    duty_cycle = DutyCycleConfig(required_motion_seconds=required)

    # ── Filter ──
    f_raw = _section("filter")
    max_acc = _number(f_raw, "max_horizontal_accuracy_m", 150.0, "filter")
    if max_acc <= 0:
        errors.append(f"filter.max_horizontal_accuracy_m = {max_acc} must be > 0")
    point_filter = FilterConfig(max_horizontal_accuracy_m=max_acc)

    # ── Buckets ──
    b_raw = _section("buckets")
    window = int(_number(b_raw, "window_seconds", 60, "buckets"))
    if window <= 0:
        errors.append(f"buckets.window_seconds = {window} must be > 0")
    buckets = BucketConfig(window_seconds=window)

    # ── Upload ──
    u_raw = _section("upload")
    upload = UploadConfig(speed_accuracy=_number(u_raw, "speed_accuracy", 0.07, "upload"))

    # ── Schedule ──
    s_raw = _section("schedule")
    heartbeat = _number(s_raw, "heartbeat_interval_seconds", 30.0, "schedule")
    if heartbeat <= 0:
        errors.append(f"schedule.heartbeat_interval_seconds = {heartbeat} must be > 0")
    schedule = ScheduleConfig(heartbeat_interval_seconds=heartbeat)

    # ── History ──
    h_raw = _section("history")
    lookback = _number(h_raw, "lookback_days", 1.0, "history")
    if lookback < 0:
        errors.append(f"history.lookback_days = {lookback} must be >= 0")
    history = HistoryConfig(
        lookback_days=lookback,
        max_distance_m=int(_number(h_raw, "max_distance_m", 100, "history")),
    )

    if errors:
        raise ConfigValidationError(
            f"tracking_config.yaml has {len(errors)} validation error(s):\n"
            + "\n".join(f"  • {e}" for e in errors)
        )

    return TrackingConfig(
        version=version,
        moving=frozenset(moving),
        duty_cycle=duty_cycle,
        filter=point_filter,
        buckets=buckets,
        upload=upload,
        schedule=schedule,
        history=history,
        _raw=raw,
    )


def load_tracking_config(path: Path | None = None) -> TrackingConfig:
    """Load and validate the tracking config from disk.

    Args:
        path: Override path to YAML. Uses the bundled tracking_config.yaml by default.

    Returns:
        Validated TrackingConfig instance.
    """
    target = path or _CONFIG_PATH
    raw = _load_yaml(target)
    config = _validate_and_build(raw)
    logger.info("Loaded tracking config v%s from %s", config.version, target)
    return config


# ---------------------------------------------------------------------------
# Global singleton with hot-reload support
# ---------------------------------------------------------------------------

_config: TrackingConfig | None = None
_config_lock = threading.Lock()


def get_tracking_config() -> TrackingConfig:
    """Return the global TrackingConfig, loading it on first call.

    Thread-safe.  Use ``reload_tracking_config()`` to refresh after YAML changes.
    """
    global _config
    if _config is None:
        with _config_lock:
            if _config is None:  # double-checked locking
                _config = load_tracking_config()
    return _config


def reload_tracking_config(path: Path | None = None) -> TrackingConfig:
    """Reload the tracking config from disk and replace the global instance.

    If validation fails, the old config is retained and the error is re-raised.

    Raises:
        ConfigValidationError: If the new config is invalid.
        FileNotFoundError:     If the config file is missing.
    """
    global _config
    new_config = load_tracking_config(path)  # validate before acquiring lock
    with _config_lock:
        old_version = _config.version if _config else "none"
        _config = new_config
    logger.info("Reloaded tracking config: %s → %s", old_version, new_config.version)
    return new_config
