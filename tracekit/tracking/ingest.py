"""Ingestion lane: the single consumer of motion events and position fixes.

Sources only enqueue; one task drains the mailbox and runs the controller,
the accuracy gate and the bucket store strictly one event at a time.  Nothing
on this lane touches the network, so a slow upload never stalls capture.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from tracekit.errors import PermissionRevoked, StorageError, TraceError
from tracekit.storage.bucket_store import BucketStore
from tracekit.tracking.base import Fix, MotionSource, MotionType
from tracekit.tracking.duty_cycle import DutyCycleController
from tracekit.tracking.point_filter import PointFilter

logger = logging.getLogger("tracekit.tracking.ingest")


@dataclass(frozen=True)
class MotionEvent:
    motion: MotionType


@dataclass(frozen=True)
class FixEvent:
    fix: Fix


@dataclass
class IngestStats:
    """Running counters for the lane."""

    motion_events: int = 0
    fixes_received: int = 0
    fixes_rejected: int = 0
    points_stored: int = 0
    storage_errors: int = 0


_STOP = object()


class IngestionLane:
    """Serializes ingestion work through an asyncio mailbox.

    Usage::

        lane = IngestionLane(controller, point_filter, bucket_store)
        lane.start()
        lane.submit_motion("walking")
        lane.submit_fix(fix)
        await lane.join()
        await lane.stop()
    """

    def __init__(
        self,
        controller: DutyCycleController,
        point_filter: PointFilter,
        bucket_store: BucketStore,
    ) -> None:
        self.controller = controller
        self.point_filter = point_filter
        self.bucket_store = bucket_store
        self.stats = IngestStats()
        self._queue: asyncio.Queue = asyncio.Queue()
        self._task: asyncio.Task | None = None
        self._motion_sources: list[MotionSource] = []

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    # ------------------------------------------------------------------
    # Producers
    # ------------------------------------------------------------------

    def attach_motion_source(self, source: MotionSource) -> None:
        source.start(self.submit_motion)
        self._motion_sources.append(source)

    def submit_motion(self, motion: str | MotionType) -> None:
        self._queue.put_nowait(MotionEvent(MotionType.parse(motion)))

    def submit_fix(self, fix: Fix) -> None:
        self._queue.put_nowait(FixEvent(fix))

    # ------------------------------------------------------------------
    # Consumer
    # ------------------------------------------------------------------

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())
        logger.info("Ingestion lane started")

    async def join(self) -> None:
        """Wait until every queued event has been handled."""
        await self._queue.join()

    async def stop(self) -> None:
        for source in self._motion_sources:
            source.stop()
        self._motion_sources.clear()
        if self._task is None:
            return
        self._queue.put_nowait(_STOP)
        await self._task
        self._task = None
        logger.info("Ingestion lane stopped")

    async def _run(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                if event is _STOP:
                    return
                self.handle(event)
            finally:
                self._queue.task_done()

    def handle(self, event: MotionEvent | FixEvent) -> None:
        """Process one event.  Errors are attributed to the event and logged."""
        try:
            if isinstance(event, MotionEvent):
                self.stats.motion_events += 1
                self.controller.on_motion(event.motion)
            else:
                self._handle_fix(event.fix)
        except StorageError as exc:
            self.stats.storage_errors += 1
            logger.error("Error saving location: %s", exc)
        except PermissionRevoked as exc:
            self.controller.halt(str(exc))
        except TraceError as exc:
            logger.error("Ingestion error: %s", exc)
        except Exception:
            logger.exception("Unexpected ingestion failure for %r", event)

    def _handle_fix(self, fix: Fix) -> None:
        self.stats.fixes_received += 1
        motion = self.controller.current_motion or MotionType.UNKNOWN
        point = self.point_filter.apply(fix, motion)
        if point is None:
            self.stats.fixes_rejected += 1
            return
        self.bucket_store.assign(point)
        self.stats.points_stored += 1
