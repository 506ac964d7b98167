"""Assign accepted points to fixed-width time buckets.

The store keeps a cached reference to the *current* bucket (the append
target).  A point inside the current window is appended directly; any other
point triggers a lookup-or-create against the repository keyed by window
start.  Lookup-or-create is a check-then-act sequence, so the whole of
``assign`` runs inside a single-writer critical section that also holds
when callers come from different threads.
"""

from __future__ import annotations

import logging
import math
import threading
from dataclasses import replace
from datetime import datetime, timedelta, timezone

from tracekit.status import StatusBoard
from tracekit.storage.buckets import Bucket, BucketRepository, UploadStatus, bucket_name
from tracekit.tracking.base import Point, ensure_utc

logger = logging.getLogger("tracekit.storage.bucket_store")


def window_bounds(timestamp: datetime, window_seconds: int) -> tuple[datetime, datetime]:
    """Return ``[start, end)`` of the window containing ``timestamp``.

    Windows are aligned to the Unix epoch, so a 60s window starts on the
    minute boundary.
    """
    epoch = ensure_utc(timestamp).timestamp()
    start_epoch = math.floor(epoch / window_seconds) * window_seconds
    start = datetime.fromtimestamp(start_epoch, tz=timezone.utc)
    return start, start + timedelta(seconds=window_seconds)


class BucketStore:
    """Owns bucket lifecycle on the ingestion side.

    Args:
        repository:     Durable bucket storage.
        window_seconds: Bucket width.
        status:         Board receiving buffer size, queued count and last point time.
    """

    def __init__(
        self,
        repository: BucketRepository,
        window_seconds: int = 60,
        status: StatusBoard | None = None,
    ) -> None:
        if window_seconds <= 0:
            raise ValueError("window_seconds must be > 0")
        self._repo = repository
        self._window = int(window_seconds)
        self._status = status or StatusBoard()
        self._current: Bucket | None = None
        self._lock = threading.RLock()

    @property
    def repository(self) -> BucketRepository:
        return self._repo

    @property
    def window_seconds(self) -> int:
        return self._window

    @property
    def current(self) -> Bucket | None:
        """Metadata of the current bucket (points are not included)."""
        with self._lock:
            return replace(self._current) if self._current else None

    @property
    def current_start(self) -> datetime | None:
        with self._lock:
            return self._current.start if self._current else None

    def is_current(self, start: datetime) -> bool:
        return self.current_start == start

    def assign(self, point: Point) -> Bucket:
        """Store ``point`` in the bucket whose window contains its timestamp.

        Returns:
            Metadata of the bucket the point landed in.

        Raises:
            StorageError: If the repository fails; counters are left untouched.
        """
        point.timestamp = ensure_utc(point.timestamp)
        start, end = window_bounds(point.timestamp, self._window)

        with self._lock:
            rolled_over = self._current is None or self._current.start != start
            target = self._lookup_or_create(start, end) if rolled_over else self._current
            count = self._repo.append_point(start, point)
            self._current = target
            bucket = replace(target)

        self._status.update(buffer_size=count, last_point_at=point.timestamp)
        if rolled_over:
            self.refresh_queued_count()
        return bucket

    def refresh_queued_count(self) -> int:
        """Recount queued (non-current, non-empty, not completed) buckets."""
        queued = self._repo.count_pending(exclude_start=self.current_start)
        self._status.update(queued_buckets=queued)
        return queued

    def _lookup_or_create(self, start: datetime, end: datetime) -> Bucket:
        existing = self._repo.get(start)
        if existing is not None:
            if existing.status is UploadStatus.COMPLETED:
                # A late point reopens a bucket that was already delivered.
                self._repo.set_status(start, UploadStatus.PENDING)
                existing.status = UploadStatus.PENDING
            logger.info(
                "Using existing bucket %s (%d points)", existing.name, existing.point_count
            )
            return replace(existing, points=[])

        created = self._repo.insert(
            Bucket(start=start, end=end, name=bucket_name(start))
        )
        logger.info("Created bucket %s", created.name)
        return replace(created, points=[])
