"""Upload cycle: move queued buckets to the sink, oldest first.

A cycle selects every bucket that is not completed, not current and has at
least one point, ordered by window start.  Each bucket is serialized, sent
and committed on its own:

- success → the sent points are purged and the bucket becomes ``completed``
- failure → retry count +1 and last attempt = now; points and status stay
  as they were, so the next cycle retries it

A failing bucket never stops the rest of the cycle.  Only one cycle runs at
a time; a second caller gets a ``busy`` result instead of waiting.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable

from tracekit.errors import (
    MalformedPayloadError,
    NoPendingDataError,
    StorageError,
    TransientTransportError,
)
from tracekit.services.sink import SinkClient
from tracekit.status import StatusBoard
from tracekit.storage.bucket_store import BucketStore
from tracekit.storage.buckets import LAST_UPLOAD_PREFERENCE, Bucket
from tracekit.sync.wire import DEFAULT_SPEED_ACCURACY, encode_payload

logger = logging.getLogger("tracekit.sync.uploader")


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class BucketOutcome:
    """What happened to one bucket during a cycle.

    Attributes:
        name:        Bucket identifier.
        start:       Window start.
        points_sent: Points included in the request (0 if skipped).
        status:      'uploaded', 'failed' or 'skipped'.
        error:       Error message for failures.
        retry_count: Retry count after the attempt.
    """

    name: str
    start: datetime
    points_sent: int = 0
    status: str = "uploaded"
    error: str | None = None
    retry_count: int = 0


@dataclass
class UploadResult:
    """Result of one upload cycle.

    Attributes:
        status:      'success', 'error', 'nothing_to_upload' or 'busy'.
        uploaded:    Buckets delivered.
        failed:      Buckets whose upload failed.
        points_sent: Points delivered.
        last_error:  Last error encountered, if any.
        message:     Informational message (e.g. nothing to upload).
        outcomes:    Per-bucket outcomes in visiting order.
    """

    status: str = "success"
    uploaded: int = 0
    failed: int = 0
    points_sent: int = 0
    last_error: str | None = None
    message: str | None = None
    outcomes: list[BucketOutcome] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.status in ("success", "nothing_to_upload")


class UploadCoordinator:
    """Runs upload cycles over the bucket store.

    Args:
        bucket_store:   Ingestion-side store (used to exclude the current bucket).
        sink:           Trace server client.
        status:         Board receiving queued count, errors and upload flags.
        speed_accuracy: Constant reported in every Feature.
        clock:          Returns "now" for retry bookkeeping.
    """

    def __init__(
        self,
        bucket_store: BucketStore,
        sink: SinkClient,
        status: StatusBoard | None = None,
        speed_accuracy: float = DEFAULT_SPEED_ACCURACY,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._store = bucket_store
        self._repo = bucket_store.repository
        self._sink = sink
        self._status = status or StatusBoard()
        self._speed_accuracy = speed_accuracy
        self._clock = clock
        self._lock = asyncio.Lock()

    @property
    def is_running(self) -> bool:
        return self._lock.locked()

    async def run_upload_cycle(self) -> UploadResult:
        """Upload every queued bucket once.  Never raises for per-bucket failures."""
        if self._lock.locked():
            logger.info("Upload cycle already in progress, skipping")
            return UploadResult(status="busy", message="Upload already in progress")

        async with self._lock:
            self._status.update(is_uploading=True, upload_error=None)
            try:
                return await self._run_cycle()
            finally:
                self._status.update(is_uploading=False)

    async def _run_cycle(self) -> UploadResult:
        logger.info("Starting upload of queued buckets")
        try:
            buckets = self._repo.pending(exclude_start=self._store.current_start)
        except StorageError as exc:
            logger.error("Could not list queued buckets: %s", exc)
            self._status.update(upload_error=str(exc))
            return UploadResult(status="error", last_error=str(exc))

        logger.info("Found %d buckets with points to upload", len(buckets))
        if not buckets:
            info = NoPendingDataError("No buckets ready for upload.")
            logger.info("No buckets to upload")
            return UploadResult(status="nothing_to_upload", message=str(info))

        result = UploadResult()
        for bucket in buckets:
            outcome = await self._upload_bucket(bucket)
            result.outcomes.append(outcome)
            if outcome.status == "uploaded":
                result.uploaded += 1
                result.points_sent += outcome.points_sent
            elif outcome.status == "failed":
                result.failed += 1
                result.last_error = outcome.error

        if result.last_error:
            result.status = "error"
            self._status.update(upload_error=result.last_error)
            logger.warning(
                "Upload cycle finished with errors: %d uploaded, %d failed (last: %s)",
                result.uploaded, result.failed, result.last_error,
            )
        else:
            finished = self._clock()
            self._status.update(last_upload_attempt=finished)
            try:
                self._repo.set_preference(LAST_UPLOAD_PREFERENCE, finished.isoformat())
            except StorageError as exc:
                logger.error("Could not persist last upload time: %s", exc)
            logger.info(
                "Successfully uploaded %d buckets (%d points)",
                result.uploaded, result.points_sent,
            )
        return result

    async def _upload_bucket(self, bucket: Bucket) -> BucketOutcome:
        outcome = BucketOutcome(
            name=bucket.name, start=bucket.start, retry_count=bucket.retry_count
        )
        if self._store.is_current(bucket.start):
            # Became the append target again since the cycle started.
            outcome.status = "skipped"
            return outcome

        sent = list(bucket.points)
        try:
            body = encode_payload(sent, self._speed_accuracy)
            await self._sink.upload(body)
        except (MalformedPayloadError, TransientTransportError) as exc:
            return self._record_failure(bucket, outcome, exc)

        try:
            remaining = self._repo.complete(bucket.start, len(sent))
        except StorageError as exc:
            logger.error("Uploaded %s but could not purge its points: %s", bucket.name, exc)
            outcome.status = "failed"
            outcome.error = str(exc)
            return outcome

        outcome.points_sent = len(sent)
        if remaining == 0:
            self._status.adjust("queued_buckets", -1)
            logger.info("Uploaded bucket %s (%d points)", bucket.name, len(sent))
        else:
            logger.info(
                "Uploaded %d points of %s, %d arrived during upload and stay queued",
                len(sent), bucket.name, remaining,
            )
        return outcome

    def _record_failure(
        self, bucket: Bucket, outcome: BucketOutcome, exc: Exception
    ) -> BucketOutcome:
        outcome.status = "failed"
        outcome.error = str(exc)
        try:
            outcome.retry_count = self._repo.record_failure(bucket.start, self._clock())
        except StorageError as store_exc:
            logger.error("Could not record failed attempt for %s: %s", bucket.name, store_exc)
        logger.warning(
            "Upload of %s failed (attempt %d): %s",
            bucket.name, outcome.retry_count, exc,
        )
        return outcome
