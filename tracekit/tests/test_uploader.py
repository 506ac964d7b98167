"""Tests for the upload cycle: ordering, retry bookkeeping and isolation."""

from __future__ import annotations

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from tracekit.errors import TransientTransportError
from tracekit.status import StatusBoard
from tracekit.storage.buckets import (
    LAST_UPLOAD_PREFERENCE,
    InMemoryBucketRepository,
    UploadStatus,
)
from tracekit.storage.bucket_store import BucketStore
from tracekit.sync.uploader import UploadCoordinator
from tracekit.tests.conftest import T0, at, make_point

NOW = at(3600)


@pytest.fixture
def coordinator(
    bucket_store: BucketStore, mock_sink: MagicMock, status: StatusBoard
) -> UploadCoordinator:
    return UploadCoordinator(bucket_store, mock_sink, status=status, clock=lambda: NOW)


def _fill(bucket_store: BucketStore, *seconds: float) -> None:
    for s in seconds:
        bucket_store.assign(make_point(s))


def _sent_timestamps(sink: MagicMock) -> list[list[str]]:
    batches = []
    for call in sink.upload.await_args_list:
        body = json.loads(call.args[0])
        batches.append([f["properties"]["timestamp"] for f in body["locations"]])
    return batches


class TestSuccessfulCycle:
    @pytest.mark.asyncio
    async def test_uploads_queued_buckets_oldest_first(
        self,
        coordinator: UploadCoordinator,
        bucket_store: BucketStore,
        repository: InMemoryBucketRepository,
        mock_sink: MagicMock,
        status: StatusBoard,
    ) -> None:
        _fill(bucket_store, 70, 10, 20, 130, 200)
        bucket_store.assign(make_point(250))  # current window: 240s

        result = await coordinator.run_upload_cycle()

        assert result.status == "success"
        assert result.uploaded == 4
        assert result.points_sent == 5
        assert _sent_timestamps(mock_sink) == [
            ["2025-04-16T10:00:10Z", "2025-04-16T10:00:20Z"],
            ["2025-04-16T10:01:10Z"],
            ["2025-04-16T10:02:10Z"],
            ["2025-04-16T10:03:20Z"],
        ]

        for start in (at(0), at(60), at(120), at(180)):
            bucket = repository.get(start)
            assert bucket.status is UploadStatus.COMPLETED
            assert bucket.point_count == 0
        assert repository.get(at(240)).point_count == 1
        assert status.snapshot().last_upload_attempt == NOW
        assert repository.get_preference(LAST_UPLOAD_PREFERENCE) == NOW.isoformat()
        assert status.snapshot().upload_error is None
        assert status.snapshot().is_uploading is False

    @pytest.mark.asyncio
    async def test_current_bucket_is_never_uploaded(
        self,
        coordinator: UploadCoordinator,
        bucket_store: BucketStore,
        mock_sink: MagicMock,
    ) -> None:
        _fill(bucket_store, 5, 10)

        result = await coordinator.run_upload_cycle()

        assert result.status == "nothing_to_upload"
        assert result.message == "No buckets ready for upload."
        mock_sink.upload.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_queued_count_drops_to_zero(
        self,
        coordinator: UploadCoordinator,
        bucket_store: BucketStore,
        status: StatusBoard,
    ) -> None:
        _fill(bucket_store, 10, 70, 130)
        assert status.snapshot().queued_buckets == 2

        await coordinator.run_upload_cycle()

        assert status.snapshot().queued_buckets == 0


class TestFailures:
    @pytest.mark.asyncio
    async def test_server_error_keeps_bucket_pending(
        self,
        coordinator: UploadCoordinator,
        bucket_store: BucketStore,
        repository: InMemoryBucketRepository,
        mock_sink: MagicMock,
        status: StatusBoard,
    ) -> None:
        _fill(bucket_store, 10, 20, 70)
        mock_sink.upload.side_effect = TransientTransportError(
            "Server error: HTTP 500", status_code=500
        )

        result = await coordinator.run_upload_cycle()

        assert result.status == "error"
        assert result.failed == 1
        bucket = repository.get(T0)
        assert bucket.status is UploadStatus.PENDING
        assert bucket.point_count == 2
        assert bucket.retry_count == 1
        assert bucket.last_attempt == NOW
        assert status.snapshot().upload_error == "Server error: HTTP 500"
        assert status.snapshot().last_upload_attempt is None
        assert repository.get_preference(LAST_UPLOAD_PREFERENCE) is None

    @pytest.mark.asyncio
    async def test_failure_does_not_stop_the_cycle(
        self,
        coordinator: UploadCoordinator,
        bucket_store: BucketStore,
        repository: InMemoryBucketRepository,
        mock_sink: MagicMock,
    ) -> None:
        _fill(bucket_store, 10, 70, 130, 190)
        mock_sink.upload.side_effect = [
            None,
            TransientTransportError("timed out"),
            None,
        ]

        result = await coordinator.run_upload_cycle()

        assert [o.status for o in result.outcomes] == ["uploaded", "failed", "uploaded"]
        assert repository.get(at(0)).status is UploadStatus.COMPLETED
        assert repository.get(at(60)).status is UploadStatus.PENDING
        assert repository.get(at(120)).status is UploadStatus.COMPLETED
        assert result.last_error == "timed out"

    @pytest.mark.asyncio
    async def test_retry_count_grows_without_limit(
        self,
        coordinator: UploadCoordinator,
        bucket_store: BucketStore,
        repository: InMemoryBucketRepository,
        mock_sink: MagicMock,
    ) -> None:
        _fill(bucket_store, 10, 70)
        mock_sink.upload.side_effect = TransientTransportError("offline")

        for _ in range(5):
            await coordinator.run_upload_cycle()

        assert repository.get(T0).retry_count == 5
        assert mock_sink.upload.await_count == 5

    @pytest.mark.asyncio
    async def test_unencodable_point_counts_as_failed_attempt(
        self,
        coordinator: UploadCoordinator,
        bucket_store: BucketStore,
        repository: InMemoryBucketRepository,
        mock_sink: MagicMock,
    ) -> None:
        bucket_store.assign(make_point(10, latitude=float("inf")))
        _fill(bucket_store, 70, 130)

        result = await coordinator.run_upload_cycle()

        assert [o.status for o in result.outcomes] == ["failed", "uploaded"]
        assert repository.get(T0).retry_count == 1
        assert mock_sink.upload.await_count == 1

    @pytest.mark.asyncio
    async def test_failure_then_success_completes_bucket(
        self,
        coordinator: UploadCoordinator,
        bucket_store: BucketStore,
        repository: InMemoryBucketRepository,
        mock_sink: MagicMock,
        status: StatusBoard,
    ) -> None:
        _fill(bucket_store, 10, 70)
        mock_sink.upload.side_effect = TransientTransportError("offline")
        await coordinator.run_upload_cycle()

        mock_sink.upload.side_effect = None
        result = await coordinator.run_upload_cycle()

        assert result.status == "success"
        assert repository.get(T0).status is UploadStatus.COMPLETED
        assert repository.get(T0).retry_count == 1
        assert status.snapshot().upload_error is None


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_point_arriving_during_upload_stays_queued(
        self,
        bucket_store: BucketStore,
        repository: InMemoryBucketRepository,
        mock_sink: MagicMock,
        status: StatusBoard,
    ) -> None:
        _fill(bucket_store, 10, 70)

        async def late_arrival(body: bytes) -> None:
            bucket_store.assign(make_point(30))  # back into the window being uploaded
            bucket_store.assign(make_point(130))

        mock_sink.upload = AsyncMock(side_effect=late_arrival)
        coordinator = UploadCoordinator(bucket_store, mock_sink, status=status)

        result = await coordinator.run_upload_cycle()

        assert result.points_sent == 1
        bucket = repository.get(T0)
        assert bucket.status is UploadStatus.PENDING
        assert [p.timestamp for p in bucket.points] == [at(30)]

    @pytest.mark.asyncio
    async def test_overlapping_cycle_reports_busy(
        self,
        bucket_store: BucketStore,
        mock_sink: MagicMock,
        status: StatusBoard,
    ) -> None:
        _fill(bucket_store, 10, 70)
        release = asyncio.Event()

        async def slow_upload(body: bytes) -> None:
            await release.wait()

        mock_sink.upload = AsyncMock(side_effect=slow_upload)
        coordinator = UploadCoordinator(bucket_store, mock_sink, status=status)

        first = asyncio.create_task(coordinator.run_upload_cycle())
        await asyncio.sleep(0)
        assert coordinator.is_running
        assert status.snapshot().is_uploading is True

        second = await coordinator.run_upload_cycle()
        assert second.status == "busy"

        release.set()
        assert (await first).status == "success"
        assert mock_sink.upload.await_count == 1
