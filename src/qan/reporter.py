"""Profile builder — ranks query classes in a window and attaches sparklines.

Order of store calls for one profile:

1. search filter (only when search text is given)
2. distinct class count and the instance-wide global row
3. ranked per-class rows
4. one sparkline per entry (global + ranked)
5. one batched metadata lookup

The global row is read without the search filter while the class count and
ranking honour it, so percentages stay relative to the whole instance.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from qan.errors import EmptyRangeError, NoMatchError
from qan.models import Profile, RankedEntry
from qan.query import AggregateQuery
from qan.search import QueryClassFilter
from qan.sparkline import ALL_CLASSES, Bucketizer

if TYPE_CHECKING:
    from qan.models import BucketPoint, RankBy, TimeWindow
    from qan.store import MetricStore

logger = logging.getLogger("qan.reporter")


class ProfileBuilder:
    def __init__(self, store: MetricStore, *, concurrent_series: bool = True) -> None:
        self._store = store
        self._filter = QueryClassFilter(store)
        self._bucketizer = Bucketizer(store)
        self._concurrent_series = concurrent_series

    @property
    def bucketizer(self) -> Bucketizer:
        return self._bucketizer

    async def profile(
        self,
        instance_id: int,
        window: TimeWindow,
        rank_by: RankBy,
        *,
        limit: int,
        offset: int = 0,
        search: str = "",
    ) -> Profile:
        """Build the ranked profile for ``instance_id`` over ``window``.

        Raises:
            NoMatchError: ``search`` matched no query class.
            EmptyRangeError: no query class has data in the window.
            StoreError: any store query failed.
        """
        if limit < 1:
            msg = f"limit must be at least 1 (got {limit})"
            raise ValueError(msg)
        if offset < 0:
            msg = f"offset must not be negative (got {offset})"
            raise ValueError(msg)

        profile = Profile(instance_id=instance_id, window=window, rank_by=rank_by)

        class_ids: frozenset[int] | None = None
        if search:
            matched = await self._filter.resolve(instance_id, window, search)
            if not matched:
                raise NoMatchError(search)
            class_ids = frozenset(matched)

        profile.total_query_classes = await self._store.count_distinct_classes(
            instance_id, window, class_ids
        )

        global_row = await self._store.scalar_aggregate(
            AggregateQuery(instance_id=instance_id, window=window, metric=rank_by.metric)
        )
        profile.total_time_seconds = global_row.total_time

        # No recorded activity: an empty profile, not an error
        if global_row.total_time == 0:
            logger.info(
                "No data for instance %d between %s and %s", instance_id, window.begin, window.end
            )
            return profile

        interval = window.interval_seconds
        global_sum = global_row.stat.sum
        entries = [
            RankedEntry.derive(
                rank=0,
                stat=global_row.stat,
                global_sum=global_sum,
                interval_seconds=interval,
            )
        ]

        rows = await self._store.grouped_aggregate(
            AggregateQuery.ranked(
                instance_id,
                window,
                metric=rank_by.metric,
                statistic=rank_by.statistic,
                limit=limit,
                offset=offset,
                class_ids=class_ids,
            )
        )
        if not rows:
            raise EmptyRangeError(instance_id, window)

        for rank, row in enumerate(rows, start=1):
            entries.append(
                RankedEntry.derive(
                    rank=rank,
                    stat=row.stat,
                    global_sum=global_sum,
                    interval_seconds=interval,
                    query_class_id=row.query_class_id,
                )
            )

        targets = [ALL_CLASSES, *(row.query_class_id for row in rows)]
        series = await self._collect_series(instance_id, window, targets)
        entries = [
            entry.model_copy(update={"series": points})
            for entry, points in zip(entries, series, strict=True)
        ]

        ranked_ids = [row.query_class_id for row in rows]
        metadata = {
            meta.query_class_id: meta for meta in await self._store.lookup_metadata(ranked_ids)
        }
        for i, entry in enumerate(entries[1:], start=1):
            meta = metadata.get(entry.query_class_id)
            if meta is None:
                logger.warning("No metadata for query class %d", entry.query_class_id)
                continue
            entries[i] = entry.with_metadata(meta)

        profile.entries = entries
        logger.info(
            "Profile for instance %d: %d of %d query classes ranked by %s/%s",
            instance_id,
            len(rows),
            profile.total_query_classes,
            rank_by.metric,
            rank_by.statistic,
        )
        return profile

    async def _collect_series(
        self, instance_id: int, window: TimeWindow, targets: list[int | None]
    ) -> list[list[BucketPoint]]:
        """Fetch one series per target, returned in target order.

        The first failure cancels the series still in flight and is re-raised
        unwrapped, so callers see the same ``StoreError`` in both modes.
        """
        span = window.bucket_span
        if self._concurrent_series:
            try:
                async with asyncio.TaskGroup() as group:
                    tasks = [
                        group.create_task(
                            self._bucketizer.series(instance_id, target, window, bucket_span=span)
                        )
                        for target in targets
                    ]
            except ExceptionGroup as exc:
                raise exc.exceptions[0] from None
            return [task.result() for task in tasks]
        return [
            await self._bucketizer.series(instance_id, target, window, bucket_span=span)
            for target in targets
        ]
