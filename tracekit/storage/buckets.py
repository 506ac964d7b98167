"""Bucket model and the repository interface for durable bucket storage.

A bucket is a fixed-width time window of points and the unit of upload and
retry.  The repository is an arena keyed by window start: buckets own their
points, and points only carry the bucket's name as a back-reference.

``InMemoryBucketRepository`` keeps the arena in process memory (tests and
ephemeral runs); ``SqliteBucketRepository`` in ``tracekit.storage.sqlite``
survives restarts.
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum

from tracekit.errors import StorageError
from tracekit.tracking.base import Point, utc_iso

logger = logging.getLogger("tracekit.storage")

AUTO_UPLOAD_PREFERENCE = "auto_upload_enabled"
LAST_UPLOAD_PREFERENCE = "last_upload_attempt"


class UploadStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"


def bucket_name(start: datetime) -> str:
    """Generated identifier for the bucket starting at ``start``."""
    return f"trace_{utc_iso(start)}.json"


@dataclass
class Bucket:
    """A ``[start, end)`` window of points.

    Attributes:
        start:        Inclusive window start (UTC).
        end:          Exclusive window end (UTC).
        name:         Generated identifier, e.g. ``trace_2025-04-16T10:00:00Z.json``.
        status:       Upload status.
        retry_count:  Failed upload attempts so far (observability only).
        last_attempt: Time of the last failed upload attempt.
        points:       Owned points in arrival order.
    """

    start: datetime
    end: datetime
    name: str
    status: UploadStatus = UploadStatus.PENDING
    retry_count: int = 0
    last_attempt: datetime | None = None
    points: list[Point] = field(default_factory=list)

    @property
    def point_count(self) -> int:
        return len(self.points)

    def contains(self, timestamp: datetime) -> bool:
        return self.start <= timestamp < self.end

    def snapshot(self) -> Bucket:
        """Copy whose point list can be read while the original keeps changing."""
        return replace(self, points=list(self.points))


class BucketRepository(ABC):
    """Durable bucket/point persistence.

    Every method raises ``StorageError`` on failure and leaves stored state
    unchanged in that case.  Implementations must be safe to call from more
    than one thread.
    """

    @abstractmethod
    def get(self, start: datetime) -> Bucket | None:
        """Return the bucket keyed by ``start`` (with its points), or None."""

    @abstractmethod
    def insert(self, bucket: Bucket) -> Bucket:
        """Insert a new, empty bucket.  If one exists for ``start``, return that one."""

    @abstractmethod
    def append_point(self, start: datetime, point: Point) -> int:
        """Append ``point`` to the bucket at ``start``.  Returns the new point count."""

    @abstractmethod
    def set_status(self, start: datetime, status: UploadStatus) -> None:
        """Overwrite the upload status of a bucket."""

    @abstractmethod
    def record_failure(self, start: datetime, attempted_at: datetime) -> int:
        """Increment retry count and set last attempt.  Returns the new retry count."""

    @abstractmethod
    def complete(self, start: datetime, sent_count: int) -> int:
        """Purge the first ``sent_count`` points after a confirmed upload.

        The bucket becomes ``completed`` when no points remain, otherwise it
        stays ``pending``.  Returns the number of points left.
        """

    @abstractmethod
    def pending(self, exclude_start: datetime | None = None) -> list[Bucket]:
        """Non-completed, non-empty buckets ordered by start, excluding ``exclude_start``."""

    @abstractmethod
    def count_pending(self, exclude_start: datetime | None = None) -> int:
        """Number of buckets ``pending()`` would return."""

    @abstractmethod
    def all(self) -> list[Bucket]:
        """Every bucket ordered by start."""

    @abstractmethod
    def get_preference(self, key: str) -> str | None:
        """Return a stored service preference, or None if never written."""

    @abstractmethod
    def set_preference(self, key: str, value: str) -> None:
        """Store a service preference (auto-upload toggle, last upload time)."""

    def close(self) -> None:
        """Release resources.  No-op by default."""


class InMemoryBucketRepository(BucketRepository):
    """Arena of buckets held in a dict keyed by window start."""

    def __init__(self) -> None:
        self._buckets: dict[datetime, Bucket] = {}
        self._preferences: dict[str, str] = {}
        self._lock = threading.RLock()

    def _require(self, start: datetime) -> Bucket:
        bucket = self._buckets.get(start)
        if bucket is None:
            raise StorageError(f"No bucket stored for window starting {utc_iso(start)}")
        return bucket

    def get(self, start: datetime) -> Bucket | None:
        with self._lock:
            bucket = self._buckets.get(start)
            return bucket.snapshot() if bucket else None

    def insert(self, bucket: Bucket) -> Bucket:
        with self._lock:
            existing = self._buckets.get(bucket.start)
            if existing is not None:
                return existing.snapshot()
            stored = bucket.snapshot()
            self._buckets[bucket.start] = stored
            return stored.snapshot()

    def append_point(self, start: datetime, point: Point) -> int:
        with self._lock:
            bucket = self._require(start)
            point.bucket_id = bucket.name
            bucket.points.append(point)
            return len(bucket.points)

    def set_status(self, start: datetime, status: UploadStatus) -> None:
        with self._lock:
            self._require(start).status = status

    def record_failure(self, start: datetime, attempted_at: datetime) -> int:
        with self._lock:
            bucket = self._require(start)
            bucket.retry_count += 1
            bucket.last_attempt = attempted_at
            return bucket.retry_count

    def complete(self, start: datetime, sent_count: int) -> int:
        with self._lock:
            bucket = self._require(start)
            del bucket.points[:sent_count]
            bucket.status = UploadStatus.PENDING if bucket.points else UploadStatus.COMPLETED
            return len(bucket.points)

    def pending(self, exclude_start: datetime | None = None) -> list[Bucket]:
        with self._lock:
            return [
                b.snapshot()
                for start, b in sorted(self._buckets.items())
                if b.status is not UploadStatus.COMPLETED
                and b.points
                and start != exclude_start
            ]

    def count_pending(self, exclude_start: datetime | None = None) -> int:
        with self._lock:
            return sum(
                1
                for start, b in self._buckets.items()
                if b.status is not UploadStatus.COMPLETED
                and b.points
                and start != exclude_start
            )

    def all(self) -> list[Bucket]:
        with self._lock:
            return [b.snapshot() for _, b in sorted(self._buckets.items())]

    def get_preference(self, key: str) -> str | None:
        with self._lock:
            return self._preferences.get(key)

    def set_preference(self, key: str, value: str) -> None:
        with self._lock:
            self._preferences[key] = value
