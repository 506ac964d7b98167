"""Heartbeat and midnight auto-upload scheduling.

Two independent timer classes:
    heartbeat       — POST /heartbeat every ``heartbeat_interval`` seconds
                      (default 30) plus once at start; failures are logged only
    midnight upload — at the next local midnight, run an upload cycle if any
                      buckets are queued, then re-arm for the following night

Both live in the shared TimerRegistry under fixed names, so re-arming always
replaces the previous handle.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Callable

from tracekit.errors import TransientTransportError
from tracekit.services.sink import SinkClient
from tracekit.status import StatusBoard
from tracekit.sync.timers import TimerRegistry
from tracekit.sync.uploader import UploadCoordinator, UploadResult

logger = logging.getLogger("tracekit.sync.scheduler")

HEARTBEAT_TIMER = "schedule.heartbeat"
INITIAL_HEARTBEAT_TIMER = "schedule.heartbeat.initial"
MIDNIGHT_TIMER = "schedule.midnight_upload"

DEFAULT_HEARTBEAT_INTERVAL = 30.0


def next_local_midnight(now: datetime, tz: tzinfo | None = None) -> datetime:
    """Return the first local midnight strictly after ``now``.

    Args:
        now: Current time (naive values are taken as system-local).
        tz:  Local zone; defaults to the system zone.
    """
    if tz is not None:
        local = now.astimezone(tz) if now.tzinfo else now.replace(tzinfo=tz)
        tomorrow: date = local.date() + timedelta(days=1)
        return datetime.combine(tomorrow, time.min, tzinfo=tz)
    local = now.astimezone()
    tomorrow = local.date() + timedelta(days=1)
    return datetime.combine(tomorrow, time.min).astimezone()


class ScheduleDriver:
    """Arms and cancels the heartbeat and midnight-upload timers.

    Args:
        coordinator:        Upload coordinator invoked at midnight.
        sink:               Trace server client (heartbeat).
        timers:             Shared timer registry.
        status:             Board with the queued-bucket count and next upload time.
        heartbeat_interval: Seconds between heartbeats.
        auto_upload:        Whether midnight upload starts enabled.
        heartbeat_enabled:  Whether start() arms the heartbeat.
        clock:              Returns the current wall-clock time.
        tz:                 Local zone for "midnight" (system zone if None).
    """

    def __init__(
        self,
        coordinator: UploadCoordinator,
        sink: SinkClient,
        timers: TimerRegistry,
        status: StatusBoard | None = None,
        heartbeat_interval: float = DEFAULT_HEARTBEAT_INTERVAL,
        auto_upload: bool = False,
        heartbeat_enabled: bool = True,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
        tz: tzinfo | None = None,
    ) -> None:
        self._coordinator = coordinator
        self._sink = sink
        self._timers = timers
        self._status = status or StatusBoard()
        self._heartbeat_interval = heartbeat_interval
        self._auto_upload = auto_upload
        self._heartbeat_enabled = heartbeat_enabled
        self._clock = clock
        self._tz = tz

    @property
    def auto_upload_enabled(self) -> bool:
        return self._auto_upload

    def start(self) -> None:
        if self._heartbeat_enabled:
            self.start_heartbeat()
        if self._auto_upload:
            self.arm_midnight_upload()

    def stop(self) -> None:
        for name in (INITIAL_HEARTBEAT_TIMER, HEARTBEAT_TIMER, MIDNIGHT_TIMER):
            self._timers.cancel(name)
        self._status.update(next_scheduled_upload=None)
        logger.info("Schedule timers cancelled")

    # ------------------------------------------------------------------
    # Heartbeat
    # ------------------------------------------------------------------

    def start_heartbeat(self) -> None:
        logger.info("Starting heartbeat timer (every %.0fs)", self._heartbeat_interval)
        self._timers.arm(INITIAL_HEARTBEAT_TIMER, 0.0, self.send_heartbeat)
        self._timers.arm_repeating(HEARTBEAT_TIMER, self._heartbeat_interval, self.send_heartbeat)

    async def send_heartbeat(self) -> bool:
        """Send one liveness ping.  Returns False on failure (never raises)."""
        try:
            await self._sink.heartbeat()
        except TransientTransportError as exc:
            logger.warning("Heartbeat failed: %s", exc)
            return False
        logger.info("Heartbeat sent successfully")
        return True

    # ------------------------------------------------------------------
    # Midnight auto-upload
    # ------------------------------------------------------------------

    def set_auto_upload(self, enabled: bool) -> None:
        """Enable (arm) or disable (cancel) the midnight upload."""
        self._auto_upload = enabled
        if enabled:
            self.arm_midnight_upload()
        else:
            self._timers.cancel(MIDNIGHT_TIMER)
            self._status.update(next_scheduled_upload=None)
            logger.info("Midnight auto-upload disabled")

    def arm_midnight_upload(self) -> datetime:
        """Arm (or re-arm) the midnight timer.  Returns the scheduled time."""
        now = self._clock()
        target = next_local_midnight(now, self._tz)
        delay = (target - now).total_seconds()
        self._timers.arm(MIDNIGHT_TIMER, delay, self._on_midnight)
        self._status.update(next_scheduled_upload=target)
        logger.info("Scheduled next auto-upload in %.1f hours", delay / 3600)
        return target

    async def _on_midnight(self) -> UploadResult | None:
        result = None
        try:
            if self._status.snapshot().queued_buckets > 0:
                logger.info("Starting scheduled midnight upload")
                result = await self._coordinator.run_upload_cycle()
        finally:
            if self._auto_upload:
                self.arm_midnight_upload()
        return result
