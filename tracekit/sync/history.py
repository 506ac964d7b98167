"""History query backing the map display.

The display layer itself is out of scope; this module computes the lookback
window, calls ``GET /coordinates`` and publishes the result count and the
map-refresh error signal.
"""

from __future__ import annotations

import logging
import math
from datetime import datetime, time
from typing import Callable

from tracekit.errors import MalformedPayloadError, TransientTransportError
from tracekit.services.sink import CoordinatesResult, SinkClient
from tracekit.status import StatusBoard
from tracekit.tracking.config_loader import HistoryConfig

logger = logging.getLogger("tracekit.sync.history")


def lookback_hours_for(lookback_days: float, now: datetime) -> int:
    """Hours to look back.

    ``lookback_days == 0`` means "today": hours since local midnight, rounded up.
    """
    if lookback_days == 0:
        midnight = datetime.combine(now.date(), time.min, tzinfo=now.tzinfo)
        return int(math.ceil((now - midnight).total_seconds() / 3600))
    return int(lookback_days * 24)


class HistoryQuery:
    """Fetches recent coordinates from the server for display."""

    def __init__(
        self,
        sink: SinkClient,
        config: HistoryConfig,
        min_accuracy: float,
        status: StatusBoard | None = None,
        clock: Callable[[], datetime] = lambda: datetime.now().astimezone(),
    ) -> None:
        self._sink = sink
        self._config = config
        self._min_accuracy = min_accuracy
        self._status = status or StatusBoard()
        self._clock = clock

    def apply_config(self, config: HistoryConfig, min_accuracy: float) -> None:
        """Use a reloaded lookback/distance and the current accuracy gate."""
        self._config = config
        self._min_accuracy = min_accuracy

    async def refresh(self) -> CoordinatesResult | None:
        """Run the query.  Returns None (and sets ``map_refresh_error``) on failure."""
        self._status.update(map_refresh_error=None)
        hours = lookback_hours_for(self._config.lookback_days, self._clock())

        try:
            result = await self._sink.fetch_coordinates(
                lookback_hours=hours,
                min_accuracy=int(self._min_accuracy),
                max_distance=self._config.max_distance_m,
            )
        except (TransientTransportError, MalformedPayloadError) as exc:
            logger.error("Map refresh failed: %s", exc)
            self._status.update(map_refresh_error=str(exc))
            return None

        if result.status != "success":
            logger.error("Map refresh failed: server returned status %r", result.status)
            self._status.update(map_refresh_error="Server returned error status")
            return None

        self._status.update(points_in_window=result.count)
        logger.info(
            "Loaded %d points from API (lookback: %dh, accuracy: ≤%dm, distance: ≤%dm)",
            result.count, hours, int(self._min_accuracy), self._config.max_distance_m,
        )
        return result
