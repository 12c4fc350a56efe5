"""Query shapes and their compilation to parameterized SQL.

A shape says *what* to aggregate (statistics, filter set, ordering, page);
``compile_*`` turns it into ``(sql, params)`` for asyncpg. Identifiers come only
from validated metric names and fixed table names; everything user-supplied is
a bound ``$n`` parameter.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from qan.metrics import (
    CLASS_COUNT_COLUMN,
    GLOBAL_COUNT_COLUMN,
    AggregateExpr,
    aggregate_expression,
    stat_expressions,
)

if TYPE_CHECKING:
    from qan.models import TimeWindow

GLOBAL_TABLE = "query_global_metrics"
CLASS_TABLE = "query_class_metrics"
CLASSES_TABLE = "query_classes"

# Sparklines always chart query time, whatever the profile is ranked by
SPARKLINE_METRIC = "Query_time"

# Maps a statistic name to the result column alias and the Stat field it fills
STAT_COLUMNS: dict[str, str] = {
    "sum": "sum",
    "min": "min",
    "avg": "avg",
    "med": "median",
    "p95": "p95",
    "max": "max",
}


@dataclass(frozen=True)
class CompiledQuery:
    sql: str
    params: tuple[Any, ...]


@dataclass(frozen=True)
class AggregateQuery:
    """Stat aggregate over one instance and window.

    Without ``class_ids`` and ``group_by_class`` the query reads the global
    table; otherwise it reads per-class rows.
    """

    instance_id: int
    window: TimeWindow
    metric: str
    class_ids: frozenset[int] | None = None
    group_by_class: bool = False
    order_by: AggregateExpr | None = None
    limit: int | None = None
    offset: int = 0

    @property
    def per_class(self) -> bool:
        return self.group_by_class or self.class_ids is not None

    @property
    def table(self) -> str:
        return CLASS_TABLE if self.per_class else GLOBAL_TABLE

    @property
    def count_column(self) -> str:
        return CLASS_COUNT_COLUMN if self.per_class else GLOBAL_COUNT_COLUMN

    @property
    def statistics(self) -> list[AggregateExpr]:
        return stat_expressions(self.metric, self.count_column)

    @classmethod
    def ranked(
        cls,
        instance_id: int,
        window: TimeWindow,
        *,
        metric: str,
        statistic: str,
        limit: int,
        offset: int = 0,
        class_ids: frozenset[int] | None = None,
    ) -> AggregateQuery:
        return cls(
            instance_id=instance_id,
            window=window,
            metric=metric,
            class_ids=class_ids,
            group_by_class=True,
            order_by=aggregate_expression(metric, statistic, CLASS_COUNT_COLUMN),
            limit=limit,
            offset=offset,
        )


@dataclass(frozen=True)
class SeriesQuery:
    """Per-point aggregate for one query class, or all classes when ``query_class_id`` is None."""

    instance_id: int
    window: TimeWindow
    bucket_span: int
    query_class_id: int | None = None
    metric: str = SPARKLINE_METRIC

    @property
    def end_ts(self) -> int:
        return self.window.end_ts


@dataclass(frozen=True)
class SearchQuery:
    instance_id: int
    window: TimeWindow
    text: str


@dataclass
class _Params:
    """Allocates positional ``$n`` placeholders in order."""

    values: list[Any] = field(default_factory=list)

    def add(self, value: Any) -> str:
        self.values.append(value)
        return f"${len(self.values)}"


def render_expression(expr: AggregateExpr) -> str:
    func, column = expr.numerator
    rendered = f"{func}({column.lower()})"
    if expr.denominator:
        den_func, den_column = expr.denominator
        rendered = (
            f"{rendered}::double precision / NULLIF({den_func}({den_column.lower()}), 0)"
        )
    return rendered


def _window_clauses(
    params: _Params, instance_id: int, window: TimeWindow, prefix: str = ""
) -> list[str]:
    return [
        f"{prefix}instance_id = {params.add(instance_id)}",
        f"{prefix}start_ts >= {params.add(window.begin_instant.to_stdlib())}",
        f"{prefix}start_ts < {params.add(window.end_instant.to_stdlib())}",
    ]


def _class_filter(params: _Params, class_ids: frozenset[int] | None) -> list[str]:
    if class_ids is None:
        return []
    return [f"query_class_id = ANY({params.add(sorted(class_ids))}::bigint[])"]


def _stat_columns(query: AggregateQuery) -> list[str]:
    columns = [f"COALESCE(SUM({query.count_column}), 0) AS stat_count"]
    for expr in query.statistics:
        rendered = render_expression(expr)
        if expr.statistic == "sum":
            rendered = f"COALESCE({rendered}, 0)"
        columns.append(f"{rendered} AS stat_{STAT_COLUMNS[expr.statistic]}")
    return columns


def compile_scalar(query: AggregateQuery) -> CompiledQuery:
    params = _Params()
    clauses = _window_clauses(params, query.instance_id, query.window)
    clauses += _class_filter(params, query.class_ids)
    columns = [
        "COALESCE(SUM(EXTRACT(EPOCH FROM (end_ts - start_ts))), 0)::bigint AS total_time",
        *_stat_columns(query),
    ]
    sql = (
        f"SELECT {', '.join(columns)}"
        f" FROM {query.table}"
        f" WHERE {' AND '.join(clauses)}"
    )
    return CompiledQuery(sql, tuple(params.values))


def compile_grouped(query: AggregateQuery) -> CompiledQuery:
    if query.order_by is None or query.limit is None:
        msg = "grouped aggregate requires order_by and limit"
        raise ValueError(msg)
    params = _Params()
    clauses = _window_clauses(params, query.instance_id, query.window)
    clauses += _class_filter(params, query.class_ids)
    columns = ["query_class_id", *_stat_columns(query)]
    sql = (
        f"SELECT {', '.join(columns)}"
        f" FROM {CLASS_TABLE}"
        f" WHERE {' AND '.join(clauses)}"
        " GROUP BY query_class_id"
        f" ORDER BY {render_expression(query.order_by)} DESC NULLS LAST"
        f" LIMIT {params.add(query.limit)} OFFSET {params.add(query.offset)}"
    )
    return CompiledQuery(sql, tuple(params.values))


def compile_count_distinct(
    instance_id: int, window: TimeWindow, class_ids: frozenset[int] | None = None
) -> CompiledQuery:
    params = _Params()
    clauses = _window_clauses(params, instance_id, window)
    clauses += _class_filter(params, class_ids)
    sql = (
        "SELECT COUNT(DISTINCT query_class_id)"
        f" FROM {CLASS_TABLE}"
        f" WHERE {' AND '.join(clauses)}"
    )
    return CompiledQuery(sql, tuple(params.values))


def compile_series(query: SeriesQuery) -> CompiledQuery:
    params = _Params()
    end_ts = params.add(query.end_ts)
    span = params.add(query.bucket_span)
    clauses = _window_clauses(params, query.instance_id, query.window)
    if query.query_class_id is None:
        table, count_column = GLOBAL_TABLE, GLOBAL_COUNT_COLUMN
    else:
        table, count_column = CLASS_TABLE, CLASS_COUNT_COLUMN
        clauses.append(f"query_class_id = {params.add(query.query_class_id)}")
    metric = query.metric.lower()
    sql = (
        f"SELECT point, to_timestamp({end_ts}::bigint - point * {span}::bigint) AS bucket_start,"
        " COALESCE(SUM(cnt), 0) AS count, COALESCE(SUM(total), 0) AS sum,"
        " COALESCE(AVG(average), 0) AS avg"
        " FROM ("
        f"SELECT ({end_ts}::bigint - EXTRACT(EPOCH FROM start_ts)::bigint) / {span}::bigint AS point,"
        f" {count_column} AS cnt, {metric}_sum AS total, {metric}_avg AS average"
        f" FROM {table}"
        f" WHERE {' AND '.join(clauses)}"
        ") AS buckets"
        " GROUP BY point"
        " ORDER BY point"
    )
    return CompiledQuery(sql, tuple(params.values))


def _escape_like(text: str) -> str:
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def compile_search(query: SearchQuery) -> CompiledQuery:
    params = _Params()
    instance = params.add(query.instance_id)
    begin = params.add(query.window.begin_instant.to_stdlib())
    end = params.add(query.window.end_instant.to_stdlib())
    escaped = _escape_like(query.text)
    checksum = params.add(query.text)
    abstract = params.add(f"{escaped}%")
    fingerprint = params.add(f"%{escaped}%")
    sql = (
        "SELECT DISTINCT qc.query_class_id"
        f" FROM {CLASSES_TABLE} AS qc"
        f" JOIN {CLASS_TABLE} AS qcm ON qc.query_class_id = qcm.query_class_id"
        f" WHERE qcm.instance_id = {instance}"
        f" AND qcm.start_ts < {end} AND qcm.end_ts > {begin}"
        f" AND (qc.checksum = {checksum}"
        f" OR qc.abstract LIKE {abstract} ESCAPE '\\'"
        f" OR qc.fingerprint LIKE {fingerprint} ESCAPE '\\')"
    )
    return CompiledQuery(sql, tuple(params.values))


def compile_metadata(class_ids: list[int]) -> CompiledQuery:
    params = _Params()
    sql = (
        "SELECT query_class_id, checksum, abstract, fingerprint"
        f" FROM {CLASSES_TABLE}"
        f" WHERE query_class_id = ANY({params.add(list(class_ids))}::bigint[])"
    )
    return CompiledQuery(sql, tuple(params.values))
