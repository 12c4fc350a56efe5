"""Sparkline reconstruction — a fixed 60-point series per query class.

Point 0 is the most recent bucket, anchored on the window end; point ``i``
starts at ``end - i * bucket_span``. Buckets the store has no data for are
filled with zero placeholders so every series has the same length.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from whenever import Instant

from qan.models import N_POINTS, BucketPoint
from qan.query import SeriesQuery

if TYPE_CHECKING:
    from qan.models import TimeWindow
    from qan.store import MetricStore

logger = logging.getLogger("qan.sparkline")

# Sentinel target: the instance-wide series across every query class
ALL_CLASSES = None


def placeholder(point_index: int, end_ts: int, bucket_span: int) -> BucketPoint:
    start = Instant.from_timestamp(end_ts - point_index * bucket_span)
    return BucketPoint(point_index=point_index, bucket_start=start.format_iso())


def fill_series(
    points: list[BucketPoint], *, end_ts: int, bucket_span: int
) -> list[BucketPoint]:
    """Place store points into a pre-allocated 60-slot series.

    Slots without data keep their placeholder; a store point keeps its own
    reported start time.
    """
    series = [placeholder(i, end_ts, bucket_span) for i in range(N_POINTS)]
    for point in points:
        series[point.point_index] = point
    return series


class Bucketizer:
    def __init__(self, store: MetricStore) -> None:
        self._store = store

    async def series(
        self,
        instance_id: int,
        target: int | None,
        window: TimeWindow,
        *,
        bucket_span: int | None = None,
    ) -> list[BucketPoint]:
        """Return exactly ``N_POINTS`` points for ``target`` ordered by point index.

        ``target`` is a query class id or ``ALL_CLASSES``. Pass ``bucket_span``
        to share bucket boundaries across every series of one profile.
        """
        span = bucket_span if bucket_span is not None else window.bucket_span
        query = SeriesQuery(
            instance_id=instance_id,
            window=window,
            bucket_span=span,
            query_class_id=target,
        )
        points = await self._store.bucket_aggregate(query)
        logger.debug(
            "Series for class %s: %d of %d points with data",
            "all" if target is ALL_CLASSES else target,
            len(points),
            N_POINTS,
        )
        return fill_series(points, end_ts=query.end_ts, bucket_span=span)
