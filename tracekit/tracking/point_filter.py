"""Accuracy gate between the PositionSource and the bucket store."""

from __future__ import annotations

import logging

from tracekit.tracking.base import Fix, MotionType, Point

logger = logging.getLogger("tracekit.tracking.point_filter")


class PointFilter:
    """Accept fixes whose horizontal accuracy is within ``max_accuracy`` meters.

    Holds no state beyond the configured radius: the same fix always gets
    the same verdict.
    """

    def __init__(self, max_accuracy: float) -> None:
        if max_accuracy <= 0:
            raise ValueError("max_accuracy must be > 0")
        self.max_accuracy = float(max_accuracy)

    def accepts(self, fix: Fix) -> bool:
        return fix.horizontal_accuracy <= self.max_accuracy

    def apply(self, fix: Fix, motion: str | MotionType) -> Point | None:
        """Return a Point tagged with ``motion``, or None if the fix is too inaccurate."""
        if not self.accepts(fix):
            logger.debug(
                "Skipping point with low accuracy: %.0fm > %.0fm",
                fix.horizontal_accuracy, self.max_accuracy,
            )
            return None
        return Point.from_fix(fix, motion)
