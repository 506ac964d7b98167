"""Shared fixtures, fakes and helpers for TraceKit tests."""

from __future__ import annotations

import inspect
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable
from unittest.mock import AsyncMock, MagicMock

import pytest

from tracekit.errors import PermissionRevoked
from tracekit.services.sink import CoordinatesResult
from tracekit.status import StatusBoard
from tracekit.storage.buckets import InMemoryBucketRepository
from tracekit.storage.bucket_store import BucketStore
from tracekit.tracking.base import Fix, Point, PositionMode, PositionSource
from tracekit.tracking.config_loader import TrackingConfig, load_tracking_config
from tracekit.tracking.duty_cycle import DutyCycleController

# Minute-aligned reference time, so a 60s window starts exactly at T0
T0 = datetime(2025, 4, 16, 10, 0, 0, tzinfo=timezone.utc)


def at(seconds: float) -> datetime:
    return T0 + timedelta(seconds=seconds)


def make_fix(seconds: float = 0, accuracy: float = 5.0, **overrides: Any) -> Fix:
    values = dict(
        timestamp=at(seconds),
        latitude=52.52,
        longitude=13.405,
        altitude=34.0,
        speed=1.4,
        horizontal_accuracy=accuracy,
        vertical_accuracy=3.0,
    )
    values.update(overrides)
    return Fix(**values)


def make_point(seconds: float = 0, motion: str = "walking", **overrides: Any) -> Point:
    return Point.from_fix(make_fix(seconds, **overrides), motion)


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class ManualTimers:
    """TimerRegistry stand-in driven by ``advance()`` instead of the event loop.

    Coroutines returned by callbacks are collected in ``pending``; await
    ``drain()`` to run them.
    """

    def __init__(self, start: float = 0.0) -> None:
        self._now = start
        self._timers: dict[str, tuple[float, float | None, Callable[[], Any]]] = {}
        self.pending: list[Awaitable[Any]] = []

    def now(self) -> float:
        return self._now

    def arm(self, name: str, delay: float, callback: Callable[[], Any]) -> None:
        self._timers[name] = (self._now + max(0.0, delay), None, callback)

    def arm_repeating(self, name: str, interval: float, callback: Callable[[], Any]) -> None:
        self._timers[name] = (self._now + interval, interval, callback)

    def cancel(self, name: str) -> bool:
        return self._timers.pop(name, None) is not None

    def cancel_all(self) -> None:
        self._timers.clear()

    def is_armed(self, name: str) -> bool:
        return name in self._timers

    def delay_of(self, name: str) -> float:
        return self._timers[name][0] - self._now

    @property
    def names(self) -> list[str]:
        return sorted(self._timers)

    def advance(self, seconds: float) -> None:
        target = self._now + seconds
        while True:
            due = sorted((d, n) for n, (d, _, _) in self._timers.items() if d <= target)
            if not due:
                break
            when, name = due[0]
            _, interval, callback = self._timers.pop(name)
            self._now = when
            if interval is not None:
                self._timers[name] = (when + interval, interval, callback)
            result = callback()
            if inspect.isawaitable(result):
                self.pending.append(result)
        self._now = target

    async def drain(self) -> None:
        while self.pending:
            await self.pending.pop(0)


class RecordingPositionSource(PositionSource):
    """Position source that records every mode switch it receives."""

    def __init__(self) -> None:
        self._mode: PositionMode | None = None
        self.switches: list[PositionMode] = []
        self.denied = False

    @property
    def mode(self) -> PositionMode | None:
        return self._mode

    def set_mode(self, mode: PositionMode) -> None:
        if self.denied:
            raise PermissionRevoked("Location access denied")
        self._mode = mode
        self.switches.append(mode)


# ---------------------------------------------------------------------------
# Component fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def tracking_config() -> TrackingConfig:
    """Load the real tracking config for tests."""
    return load_tracking_config()


@pytest.fixture
def timers() -> ManualTimers:
    return ManualTimers()


@pytest.fixture
def status() -> StatusBoard:
    return StatusBoard()


@pytest.fixture
def position_source() -> RecordingPositionSource:
    return RecordingPositionSource()


@pytest.fixture
def controller(
    position_source: RecordingPositionSource,
    timers: ManualTimers,
    tracking_config: TrackingConfig,
    status: StatusBoard,
) -> DutyCycleController:
    ctrl = DutyCycleController(position_source, timers, config=tracking_config, status=status)
    ctrl.start()
    return ctrl


@pytest.fixture
def repository() -> InMemoryBucketRepository:
    return InMemoryBucketRepository()


@pytest.fixture
def bucket_store(repository: InMemoryBucketRepository, status: StatusBoard) -> BucketStore:
    return BucketStore(repository, window_seconds=60, status=status)


# ---------------------------------------------------------------------------
# Mock sink
# ---------------------------------------------------------------------------


@pytest.fixture
def mock_sink() -> MagicMock:
    """SinkClient stand-in whose endpoints all succeed."""
    sink = MagicMock()
    sink.upload = AsyncMock(return_value=None)
    sink.heartbeat = AsyncMock(return_value=None)
    sink.check_status = AsyncMock(return_value={"status": "ok"})
    sink.fetch_coordinates = AsyncMock(
        return_value=CoordinatesResult(status="success", count=0, lookback_hours=24)
    )
    sink.aclose = AsyncMock(return_value=None)
    return sink
