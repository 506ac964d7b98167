"""Observable pipeline status: snapshot queries plus typed change callbacks.

The UI (out of scope here) reads a frozen ``TraceStatus`` snapshot or
subscribes to ``StatusChange`` notifications.  Only core components mutate
the board, through ``StatusBoard.update()``.

Usage::

    board = StatusBoard()
    board.subscribe(lambda change: print(change.field, change.value))
    board.update(buffer_size=3)
    board.snapshot().buffer_size   # 3
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, fields, replace
from datetime import datetime
from typing import Any, Callable

logger = logging.getLogger("tracekit.status")


@dataclass(frozen=True)
class TraceStatus:
    """Point-in-time view of every signal the core publishes.

    Attributes:
        buffer_size:           Points in the current (active) bucket.
        queued_buckets:        Non-current, non-empty, not-yet-uploaded buckets.
        last_point_at:         Timestamp of the most recently stored point.
        last_upload_attempt:   When the last fully successful upload cycle ended.
        upload_error:          Message of the last upload failure (None = ok).
        map_refresh_error:     Message of the last history query failure.
        duty_state:            DutyCycleController state name.
        is_tracking:           True while the position source is in continuous mode.
        current_motion:        Latest motion classification.
        permission_error:      Set when location access was revoked.
        is_uploading:          True while an upload cycle runs.
        next_scheduled_upload: Next midnight auto-upload, if armed.
        points_in_window:      Point count returned by the last history query.
    """

    buffer_size: int = 0
    queued_buckets: int = 0
    last_point_at: datetime | None = None
    last_upload_attempt: datetime | None = None
    upload_error: str | None = None
    map_refresh_error: str | None = None
    duty_state: str = "idle"
    is_tracking: bool = False
    current_motion: str = "stationary"
    permission_error: str | None = None
    is_uploading: bool = False
    next_scheduled_upload: datetime | None = None
    points_in_window: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


@dataclass(frozen=True)
class StatusChange:
    """One field of the status board changed."""

    field: str
    old: Any
    value: Any


StatusListener = Callable[[StatusChange], None]


class StatusBoard:
    """Holds the current ``TraceStatus`` and notifies listeners of changes."""

    def __init__(self, initial: TraceStatus | None = None) -> None:
        self._status = initial or TraceStatus()
        self._listeners: list[StatusListener] = []

    def snapshot(self) -> TraceStatus:
        return self._status

    def subscribe(self, listener: StatusListener) -> Callable[[], None]:
        """Register a change listener.

        Returns:
            A callable that removes the listener again.
        """
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def update(self, **changes: Any) -> None:
        """Apply field changes and notify listeners of the ones that differ.

        Raises:
            AttributeError: If a field name is not part of ``TraceStatus``.
        """
        valid = {f.name for f in fields(TraceStatus)}
        unknown = set(changes) - valid
        if unknown:
            raise AttributeError(f"Unknown status field(s): {sorted(unknown)}")

        old = self._status
        self._status = replace(old, **changes)

        for name, value in changes.items():
            previous = getattr(old, name)
            if previous == value:
                continue
            change = StatusChange(field=name, old=previous, value=value)
            for listener in list(self._listeners):
                try:
                    listener(change)
                except Exception as exc:
                    logger.warning("Status listener failed on %s: %s", name, exc)

    def adjust(self, field_name: str, delta: int) -> None:
        """Add ``delta`` to an integer counter, never going below zero."""
        current = getattr(self._status, field_name)
        self.update(**{field_name: max(0, current + delta)})
