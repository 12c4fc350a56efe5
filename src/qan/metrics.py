"""Aggregate resolver: statistic names and their aggregate expressions.

Every metric ``M`` is stored per bucket as the columns ``M_sum``, ``M_min``,
``M_avg``, ``M_med``, ``M_p5``, ``M_p95`` and ``M_max``. Combining buckets
into a single statistic needs a different aggregate for each column:

    sum  SUM(M_sum)
    min  MIN(M_min)
    avg  SUM(M_sum) / SUM(<count column>)
    med  AVG(M_med)
    p5   AVG(M_p5)
    p95  AVG(M_p95)
    max  MAX(M_max)
    cnt  SUM(<count column>)

The count column differs between tables (``total_query_count`` for the global
table, ``query_count`` for per-class rows), so it is a parameter.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

StatisticName = Literal["sum", "min", "p5", "avg", "med", "p95", "max"]

# Column order as stored; p5 has no slot in Stat and is never requested.
STATISTIC_NAMES: tuple[str, ...] = ("sum", "min", "p5", "avg", "med", "p95", "max")
EXCLUDED_STATISTIC = "p5"

COUNT_STATISTIC = "cnt"
RANKABLE_STATISTICS: tuple[str, ...] = (COUNT_STATISTIC, *STATISTIC_NAMES)

GLOBAL_COUNT_COLUMN = "total_query_count"
CLASS_COUNT_COLUMN = "query_count"

_COLUMN_AGGREGATES: dict[str, tuple[str, str]] = {
    "sum": ("SUM", "sum"),
    "min": ("MIN", "min"),
    "med": ("AVG", "med"),
    "p5": ("AVG", "p5"),
    "p95": ("AVG", "p95"),
    "max": ("MAX", "max"),
}


class UnknownStatisticError(ValueError):
    def __init__(self, name: str) -> None:
        available = ", ".join(RANKABLE_STATISTICS)
        super().__init__(f"Unknown statistic '{name}'. Available: {available}")


@dataclass(frozen=True)
class AggregateExpr:
    """A resolved aggregate over bucket columns.

    ``numerator`` is ``(function, column)``; ``denominator`` is set only for
    ratio statistics such as ``avg``.
    """

    statistic: str
    numerator: tuple[str, str]
    denominator: tuple[str, str] | None = None

    def columns(self) -> list[str]:
        cols = [self.numerator[1]]
        if self.denominator:
            cols.append(self.denominator[1])
        return cols


def aggregate_expression(metric: str, statistic: str, count_column: str) -> AggregateExpr:
    """Resolve ``(metric, statistic, count_column)`` to an aggregate expression."""
    if statistic == COUNT_STATISTIC:
        return AggregateExpr(statistic, ("SUM", count_column))
    if statistic == "avg":
        return AggregateExpr(statistic, ("SUM", f"{metric}_sum"), ("SUM", count_column))
    if statistic not in _COLUMN_AGGREGATES:
        raise UnknownStatisticError(statistic)
    func, suffix = _COLUMN_AGGREGATES[statistic]
    return AggregateExpr(statistic, (func, f"{metric}_{suffix}"))


def statistic_names() -> tuple[str, ...]:
    return STATISTIC_NAMES


def requested_statistics() -> list[str]:
    """Statistics fetched for a Stat row: every name except the p5 placeholder."""
    return [name for name in statistic_names() if name != EXCLUDED_STATISTIC]


def stat_expressions(metric: str, count_column: str) -> list[AggregateExpr]:
    return [aggregate_expression(metric, name, count_column) for name in requested_statistics()]
