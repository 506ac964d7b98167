"""Bucket storage for captured points.

Modules:
    buckets      — Bucket model, repository interface, in-memory arena
    sqlite       — SQLite-backed repository (survives restarts)
    bucket_store — Time-window assignment and current-bucket lifecycle
"""

from tracekit.storage.bucket_store import BucketStore, window_bounds
from tracekit.storage.buckets import (
    Bucket,
    BucketRepository,
    InMemoryBucketRepository,
    UploadStatus,
    bucket_name,
)
from tracekit.storage.sqlite import SqliteBucketRepository

__all__ = [
    "Bucket",
    "BucketRepository",
    "BucketStore",
    "InMemoryBucketRepository",
    "SqliteBucketRepository",
    "UploadStatus",
    "bucket_name",
    "window_bounds",
]
