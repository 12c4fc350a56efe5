"""Metric store: the aggregate query surface the profile engine reads from.

``MetricStore`` is the contract; ``PostgresMetricStore`` runs compiled query
shapes over an asyncpg pool. Any driver failure is raised as ``StoreError``
annotated with the failing operation.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Protocol

import asyncpg
from whenever import Instant

from qan.errors import StoreError
from qan.models import N_POINTS, AggregateRow, BucketPoint, ClassMetadata, Stat
from qan.query import (
    STAT_COLUMNS,
    AggregateQuery,
    CompiledQuery,
    SearchQuery,
    SeriesQuery,
    compile_count_distinct,
    compile_grouped,
    compile_metadata,
    compile_scalar,
    compile_search,
    compile_series,
)

if TYPE_CHECKING:
    from collections.abc import Mapping

    from qan.models import TimeWindow

logger = logging.getLogger("qan.store")


class MetricStore(Protocol):
    async def scalar_aggregate(self, query: AggregateQuery) -> AggregateRow: ...

    async def grouped_aggregate(self, query: AggregateQuery) -> list[AggregateRow]: ...

    async def bucket_aggregate(self, query: SeriesQuery) -> list[BucketPoint]: ...

    async def count_distinct_classes(
        self,
        instance_id: int,
        window: TimeWindow,
        class_ids: frozenset[int] | None = None,
    ) -> int: ...

    async def lookup_metadata(self, class_ids: list[int]) -> list[ClassMetadata]: ...

    async def search_class_ids(self, query: SearchQuery) -> set[int]: ...


def _float_or_none(value: Any) -> float | None:
    return None if value is None else float(value)


def decode_stat(row: Mapping[str, Any]) -> Stat:
    """Build a Stat from ``stat_*`` result columns."""
    fields = {name: _float_or_none(row[f"stat_{name}"]) for name in STAT_COLUMNS.values()}
    return Stat(
        count=int(row["stat_count"] or 0),
        sum=fields.pop("sum") or 0.0,
        **fields,
    )


def _to_iso(value: Any) -> str:
    return Instant(value).format_iso()


class PostgresMetricStore:
    """Reads pre-aggregated query metrics from PostgreSQL."""

    def __init__(self, *, pool: asyncpg.Pool) -> None:
        self._pool = pool

    async def _fetch(self, operation: str, compiled: CompiledQuery) -> list[asyncpg.Record]:
        logger.debug("%s: %s", operation, compiled.sql)
        try:
            async with self._pool.acquire() as conn:
                return await conn.fetch(compiled.sql, *compiled.params)
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as exc:
            raise StoreError(f"PostgresMetricStore.{operation}", str(exc)) from exc

    async def scalar_aggregate(self, query: AggregateQuery) -> AggregateRow:
        rows = await self._fetch("scalar_aggregate", compile_scalar(query))
        # Aggregates without GROUP BY always yield exactly one row
        row = rows[0]
        return AggregateRow(total_time=int(row["total_time"] or 0), stat=decode_stat(row))

    async def grouped_aggregate(self, query: AggregateQuery) -> list[AggregateRow]:
        rows = await self._fetch("grouped_aggregate", compile_grouped(query))
        return [
            AggregateRow(query_class_id=row["query_class_id"], stat=decode_stat(row))
            for row in rows
        ]

    async def bucket_aggregate(self, query: SeriesQuery) -> list[BucketPoint]:
        rows = await self._fetch("bucket_aggregate", compile_series(query))
        points = []
        for row in rows:
            # Integer span truncation can push the oldest buckets past the last point
            if row["point"] >= N_POINTS:
                logger.debug("Dropping bucket at point %d beyond the series", row["point"])
                continue
            points.append(
                BucketPoint(
                    point_index=row["point"],
                    bucket_start=_to_iso(row["bucket_start"]),
                    count=int(row["count"]),
                    sum=float(row["sum"]),
                    avg=float(row["avg"]),
                )
            )
        return points

    async def count_distinct_classes(
        self,
        instance_id: int,
        window: TimeWindow,
        class_ids: frozenset[int] | None = None,
    ) -> int:
        compiled = compile_count_distinct(instance_id, window, class_ids)
        rows = await self._fetch("count_distinct_classes", compiled)
        return int(rows[0][0])

    async def lookup_metadata(self, class_ids: list[int]) -> list[ClassMetadata]:
        rows = await self._fetch("lookup_metadata", compile_metadata(class_ids))
        return [
            ClassMetadata(
                query_class_id=row["query_class_id"],
                checksum=row["checksum"],
                abstract=row["abstract"],
                fingerprint=row["fingerprint"],
            )
            for row in rows
        ]

    async def search_class_ids(self, query: SearchQuery) -> set[int]:
        rows = await self._fetch("search_class_ids", compile_search(query))
        return {row["query_class_id"] for row in rows}


async def create_pool(dsn: str, *, min_size: int = 1, max_size: int = 10) -> asyncpg.Pool:
    logger.info("Creating metric store pool (min=%d, max=%d)", min_size, max_size)
    try:
        return await asyncpg.create_pool(dsn, min_size=min_size, max_size=max_size)
    except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as exc:
        raise StoreError("create_pool", str(exc)) from exc
