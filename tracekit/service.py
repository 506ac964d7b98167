"""Composition root: builds every pipeline component once and owns its lifecycle.

Usage::

    service = TraceService()
    await service.start()
    await service.ingest_motion("walking")
    await service.ingest_fixes([fix])
    await service.upload_now()
    await service.stop()
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable

from tracekit.config import Settings, get_settings
from tracekit.errors import StorageError
from tracekit.services.sink import CoordinatesResult, SinkClient
from tracekit.status import StatusBoard
from tracekit.storage.buckets import (
    AUTO_UPLOAD_PREFERENCE,
    LAST_UPLOAD_PREFERENCE,
    BucketRepository,
    InMemoryBucketRepository,
)
from tracekit.storage.bucket_store import BucketStore
from tracekit.storage.sqlite import SqliteBucketRepository
from tracekit.sync.history import HistoryQuery
from tracekit.sync.scheduler import ScheduleDriver
from tracekit.sync.timers import TimerRegistry
from tracekit.sync.uploader import UploadCoordinator, UploadResult
from tracekit.tracking.base import BridgePositionSource, Fix, MotionType, PositionSource
from tracekit.tracking.config_loader import (
    TrackingConfig,
    get_tracking_config,
    reload_tracking_config,
)
from tracekit.tracking.duty_cycle import DutyCycleController
from tracekit.tracking.ingest import FixEvent, IngestionLane, MotionEvent
from tracekit.tracking.point_filter import PointFilter

logger = logging.getLogger("tracekit.service")


def _build_repository(settings: Settings) -> BucketRepository:
    if settings.database_path:
        logger.info("Using SQLite bucket store at %s", settings.database_path)
        return SqliteBucketRepository(settings.database_path)
    logger.info("Using in-memory bucket store")
    return InMemoryBucketRepository()


class TraceService:
    """Wires the tracking, storage and sync layers together.

    Every collaborator can be injected; anything left out is built from
    ``Settings`` and the tracking config.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        tracking_config: TrackingConfig | None = None,
        repository: BucketRepository | None = None,
        sink: SinkClient | None = None,
        position_source: PositionSource | None = None,
        timers: TimerRegistry | None = None,
        status: StatusBoard | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.config = tracking_config or get_tracking_config()
        self.status = status or StatusBoard()
        self.timers = timers or TimerRegistry()
        self.position_source = position_source or BridgePositionSource()
        self.repository = repository or _build_repository(self.settings)
        self.sink = sink or SinkClient(
            base_url=self.settings.server_base_url,
            timeout=self.settings.request_timeout_seconds,
        )

        self.controller = DutyCycleController(
            self.position_source, self.timers, config=self.config, status=self.status
        )
        self.point_filter = PointFilter(self.config.filter.max_horizontal_accuracy_m)
        self.bucket_store = BucketStore(
            self.repository,
            window_seconds=self.config.buckets.window_seconds,
            status=self.status,
        )
        self.ingest = IngestionLane(self.controller, self.point_filter, self.bucket_store)
        self.uploader = UploadCoordinator(
            self.bucket_store,
            self.sink,
            status=self.status,
            speed_accuracy=self.config.upload.speed_accuracy,
        )
        self.scheduler = ScheduleDriver(
            self.uploader,
            self.sink,
            self.timers,
            status=self.status,
            heartbeat_interval=self.config.schedule.heartbeat_interval_seconds,
            auto_upload=self._stored_auto_upload(),
            heartbeat_enabled=self.settings.heartbeat_enabled,
        )
        self.history = HistoryQuery(
            self.sink,
            self.config.history,
            min_accuracy=self.config.filter.max_horizontal_accuracy_m,
            status=self.status,
        )
        self._restore_last_upload()
        self._started = False

    @property
    def started(self) -> bool:
        return self._started

    # ------------------------------------------------------------------
    # Persisted preferences
    # ------------------------------------------------------------------

    def _stored_auto_upload(self) -> bool:
        """The last toggle written to the store, else the settings default."""
        stored = self.repository.get_preference(AUTO_UPLOAD_PREFERENCE)
        if stored is None:
            return self.settings.auto_upload_enabled
        return stored == "true"

    def _restore_last_upload(self) -> None:
        stored = self.repository.get_preference(LAST_UPLOAD_PREFERENCE)
        if stored is None:
            return
        try:
            last_upload = datetime.fromisoformat(stored)
        except ValueError:
            logger.warning("Ignoring unreadable stored last upload time %r", stored)
            return
        self.status.update(last_upload_attempt=last_upload)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        if self._started:
            return
        self.controller.start()
        self.bucket_store.refresh_queued_count()
        self.ingest.start()
        self.scheduler.start()
        self._started = True
        logger.info("Trace service started")

    async def stop(self) -> None:
        """Cancel every timer, drain ingestion and release the sink and store.

        Callbacks already running (an upload in flight) finish or time out.
        """
        if not self._started:
            return
        self.scheduler.stop()
        self.controller.stop()
        self.timers.cancel_all()
        await self.ingest.stop()
        await self.timers.drain()
        await self.sink.aclose()
        self.repository.close()
        self._started = False
        logger.info("Trace service stopped")

    # ------------------------------------------------------------------
    # Ingestion entry points
    # ------------------------------------------------------------------

    async def ingest_motion(self, motion: str | MotionType) -> None:
        await self._dispatch([MotionEvent(MotionType.parse(motion))])

    async def ingest_fixes(self, fixes: Iterable[Fix]) -> None:
        await self._dispatch([FixEvent(fix) for fix in fixes])

    async def _dispatch(self, events: list[MotionEvent | FixEvent]) -> None:
        # Without a running lane the caller's task is the single consumer.
        if not self.ingest.running:
            for event in events:
                self.ingest.handle(event)
            return
        for event in events:
            if isinstance(event, MotionEvent):
                self.ingest.submit_motion(event.motion)
            else:
                self.ingest.submit_fix(event.fix)
        await self.ingest.join()

    def set_permission(self, granted: bool) -> None:
        """Record a platform permission change and halt or resume the controller."""
        if isinstance(self.position_source, BridgePositionSource):
            self.position_source.set_permission(granted)
        if granted:
            self.controller.resume()
        else:
            self.controller.halt("Location permission revoked")

    # ------------------------------------------------------------------
    # Sync entry points
    # ------------------------------------------------------------------

    async def upload_now(self) -> UploadResult:
        return await self.uploader.run_upload_cycle()

    def set_auto_upload(self, enabled: bool) -> None:
        """Toggle the midnight upload and remember the choice across restarts."""
        self.scheduler.set_auto_upload(enabled)
        try:
            self.repository.set_preference(AUTO_UPLOAD_PREFERENCE, "true" if enabled else "false")
        except StorageError as exc:
            logger.error("Could not persist auto-upload setting: %s", exc)

    async def check_server(self) -> dict:
        return await self.sink.check_status()

    async def refresh_history(self) -> CoordinatesResult | None:
        return await self.history.refresh()

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def apply_config(self, config: TrackingConfig) -> None:
        """Adopt a new tracking config where it can change at runtime.

        The bucket width is fixed for the life of the store; a changed
        ``window_seconds`` takes effect on the next start.
        """
        self.config = config
        self.controller.apply_config(config)
        self.point_filter.max_accuracy = config.filter.max_horizontal_accuracy_m
        self.history.apply_config(
            config.history, min_accuracy=config.filter.max_horizontal_accuracy_m
        )
        if config.buckets.window_seconds != self.bucket_store.window_seconds:
            logger.warning(
                "Bucket window change (%ds -> %ds) ignored until restart",
                self.bucket_store.window_seconds, config.buckets.window_seconds,
            )

    def reload_config(self) -> TrackingConfig:
        """Re-read tracking_config.yaml and apply it.  Keeps the old config on error."""
        config = reload_tracking_config()
        self.apply_config(config)
        return config
