"""SQLite-backed bucket repository.

Buckets and points survive restarts, so a window that was still buffering
when the process stopped is picked up again by the next run (the bucket
store reuses it instead of creating a second bucket for the same window).

One connection is shared by the ingestion and upload lanes; every call runs
under a re-entrant lock and inside its own transaction.
"""

from __future__ import annotations

import logging
import os
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator

from tracekit.errors import StorageError
from tracekit.storage.buckets import Bucket, BucketRepository, UploadStatus
from tracekit.tracking.base import Point, ensure_utc

logger = logging.getLogger("tracekit.storage.sqlite")

_SCHEMA_PATH = os.path.join(os.path.dirname(__file__), "schema.sql")


def get_connection(db_path: str) -> sqlite3.Connection:
    """
    Get a SQLite connection with foreign-keys enabled
    and rows returned as sqlite3.Row.
    """
    conn = sqlite3.connect(db_path, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON;")
    return conn


def init_db(db_path: str) -> sqlite3.Connection:
    """
    Initialize the database by running schema.sql, then return a live connection.
    """
    try:
        conn = get_connection(db_path)
        logger.info("Initializing bucket DB schema at %s", db_path)
        with open(_SCHEMA_PATH, "r", encoding="utf-8") as f:
            conn.executescript(f.read())
        conn.commit()
    except (sqlite3.Error, OSError) as exc:
        raise StorageError(f"Could not open bucket database {db_path}: {exc}") from exc
    return conn


def _to_epoch(value: datetime) -> float:
    return ensure_utc(value).timestamp()


def _from_epoch(value: float | None) -> datetime | None:
    if value is None:
        return None
    return datetime.fromtimestamp(value, tz=timezone.utc)


class SqliteBucketRepository(BucketRepository):
    """
    Stores buckets in ``buckets`` and their points in ``points``,
    ordered by autoincrement id (arrival order).
    """

    def __init__(self, db_path: str) -> None:
        self.conn = init_db(db_path)
        self._lock = threading.RLock()

    @contextmanager
    def _transaction(self, action: str) -> Iterator[sqlite3.Connection]:
        with self._lock:
            try:
                with self.conn:
                    yield self.conn
            except sqlite3.Error as exc:
                logger.error("Bucket DB %s failed: %s", action, exc)
                raise StorageError(f"{action} failed: {exc}") from exc

    # ------------------------------------------------------------------
    # Row mapping
    # ------------------------------------------------------------------

    @staticmethod
    def _bucket_from_row(row: sqlite3.Row, points: list[Point]) -> Bucket:
        return Bucket(
            start=_from_epoch(row["start_ts"]),
            end=_from_epoch(row["end_ts"]),
            name=row["name"],
            status=UploadStatus(row["upload_status"]),
            retry_count=row["retry_count"],
            last_attempt=_from_epoch(row["last_attempt_ts"]),
            points=points,
        )

    @staticmethod
    def _point_from_row(row: sqlite3.Row, bucket_id: str) -> Point:
        return Point(
            timestamp=_from_epoch(row["ts"]),
            latitude=row["latitude"],
            longitude=row["longitude"],
            altitude=row["altitude"],
            speed=row["speed"],
            horizontal_accuracy=row["horizontal_accuracy"],
            vertical_accuracy=row["vertical_accuracy"],
            motion_type=row["motion_type"],
            bucket_id=bucket_id,
        )

    def _load_points(self, conn: sqlite3.Connection, start_ts: float, name: str) -> list[Point]:
        rows = conn.execute(
            "SELECT * FROM points WHERE bucket_start = ? ORDER BY id",
            (start_ts,),
        ).fetchall()
        return [self._point_from_row(r, name) for r in rows]

    def _require_row(self, conn: sqlite3.Connection, start: datetime) -> sqlite3.Row:
        row = conn.execute(
            "SELECT * FROM buckets WHERE start_ts = ?", (_to_epoch(start),)
        ).fetchone()
        if row is None:
            raise StorageError(f"No bucket stored for window starting {start.isoformat()}")
        return row

    # ------------------------------------------------------------------
    # BucketRepository
    # ------------------------------------------------------------------

    def get(self, start: datetime) -> Bucket | None:
        with self._transaction("get bucket") as conn:
            row = conn.execute(
                "SELECT * FROM buckets WHERE start_ts = ?", (_to_epoch(start),)
            ).fetchone()
            if row is None:
                return None
            return self._bucket_from_row(
                row, self._load_points(conn, row["start_ts"], row["name"])
            )

    def insert(self, bucket: Bucket) -> Bucket:
        with self._transaction("insert bucket") as conn:
            conn.execute(
                """
                INSERT INTO buckets
                  (start_ts, end_ts, name, upload_status, retry_count, last_attempt_ts)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(start_ts) DO NOTHING
                """,
                (
                    _to_epoch(bucket.start),
                    _to_epoch(bucket.end),
                    bucket.name,
                    bucket.status.value,
                    bucket.retry_count,
                    _to_epoch(bucket.last_attempt) if bucket.last_attempt else None,
                ),
            )
            row = self._require_row(conn, bucket.start)
            return self._bucket_from_row(
                row, self._load_points(conn, row["start_ts"], row["name"])
            )

    def append_point(self, start: datetime, point: Point) -> int:
        with self._transaction("append point") as conn:
            row = self._require_row(conn, start)
            conn.execute(
                """
                INSERT INTO points
                  (bucket_start, ts, latitude, longitude, altitude, speed,
                   horizontal_accuracy, vertical_accuracy, motion_type)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    row["start_ts"],
                    _to_epoch(point.timestamp),
                    point.latitude,
                    point.longitude,
                    point.altitude,
                    point.speed,
                    point.horizontal_accuracy,
                    point.vertical_accuracy,
                    point.motion_type,
                ),
            )
            count = conn.execute(
                "SELECT COUNT(*) FROM points WHERE bucket_start = ?", (row["start_ts"],)
            ).fetchone()[0]
        point.bucket_id = row["name"]
        return count

    def set_status(self, start: datetime, status: UploadStatus) -> None:
        with self._transaction("set status") as conn:
            self._require_row(conn, start)
            conn.execute(
                "UPDATE buckets SET upload_status = ? WHERE start_ts = ?",
                (status.value, _to_epoch(start)),
            )

    def record_failure(self, start: datetime, attempted_at: datetime) -> int:
        with self._transaction("record failure") as conn:
            row = self._require_row(conn, start)
            conn.execute(
                """
                UPDATE buckets
                SET retry_count = retry_count + 1, last_attempt_ts = ?
                WHERE start_ts = ?
                """,
                (_to_epoch(attempted_at), row["start_ts"]),
            )
            return row["retry_count"] + 1

    def complete(self, start: datetime, sent_count: int) -> int:
        with self._transaction("complete bucket") as conn:
            row = self._require_row(conn, start)
            conn.execute(
                """
                DELETE FROM points WHERE id IN (
                  SELECT id FROM points WHERE bucket_start = ? ORDER BY id LIMIT ?
                )
                """,
                (row["start_ts"], sent_count),
            )
            remaining = conn.execute(
                "SELECT COUNT(*) FROM points WHERE bucket_start = ?", (row["start_ts"],)
            ).fetchone()[0]
            status = UploadStatus.PENDING if remaining else UploadStatus.COMPLETED
            conn.execute(
                "UPDATE buckets SET upload_status = ? WHERE start_ts = ?",
                (status.value, row["start_ts"]),
            )
            return remaining

    def _pending_rows(self, conn: sqlite3.Connection, exclude_start: datetime | None) -> list[sqlite3.Row]:
        exclude = _to_epoch(exclude_start) if exclude_start else None
        return conn.execute(
            """
            SELECT b.* FROM buckets b
            WHERE b.upload_status != ?
              AND (? IS NULL OR b.start_ts != ?)
              AND EXISTS (SELECT 1 FROM points p WHERE p.bucket_start = b.start_ts)
            ORDER BY b.start_ts ASC
            """,
            (UploadStatus.COMPLETED.value, exclude, exclude),
        ).fetchall()

    def pending(self, exclude_start: datetime | None = None) -> list[Bucket]:
        with self._transaction("list pending") as conn:
            return [
                self._bucket_from_row(r, self._load_points(conn, r["start_ts"], r["name"]))
                for r in self._pending_rows(conn, exclude_start)
            ]

    def count_pending(self, exclude_start: datetime | None = None) -> int:
        with self._transaction("count pending") as conn:
            return len(self._pending_rows(conn, exclude_start))

    def all(self) -> list[Bucket]:
        with self._transaction("list buckets") as conn:
            rows = conn.execute("SELECT * FROM buckets ORDER BY start_ts ASC").fetchall()
            return [
                self._bucket_from_row(r, self._load_points(conn, r["start_ts"], r["name"]))
                for r in rows
            ]

    def get_preference(self, key: str) -> str | None:
        with self._transaction("get preference") as conn:
            row = conn.execute(
                "SELECT value FROM preferences WHERE key = ?", (key,)
            ).fetchone()
            return row["value"] if row else None

    def set_preference(self, key: str, value: str) -> None:
        with self._transaction("set preference") as conn:
            conn.execute(
                """
                INSERT INTO preferences (key, value) VALUES (?, ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value
                """,
                (key, value),
            )

    def close(self) -> None:
        with self._lock:
            self.conn.close()
