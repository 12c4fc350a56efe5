"""Unit tests for query shape compilation."""

from datetime import UTC, datetime

import pytest

from qan.models import TimeWindow
from qan.query import (
    AggregateQuery,
    SearchQuery,
    SeriesQuery,
    compile_count_distinct,
    compile_grouped,
    compile_metadata,
    compile_scalar,
    compile_search,
    compile_series,
)

WINDOW = TimeWindow(begin="2026-01-15T10:00:00Z", end="2026-01-15T10:59:00Z")
BEGIN_DT = datetime(2026, 1, 15, 10, 0, tzinfo=UTC)
END_DT = datetime(2026, 1, 15, 10, 59, tzinfo=UTC)


class TestScalar:
    def test_global_table_without_filter(self):
        compiled = compile_scalar(AggregateQuery(instance_id=7, window=WINDOW, metric="Query_time"))
        assert "FROM query_global_metrics" in compiled.sql
        assert "COALESCE(SUM(total_query_count), 0) AS stat_count" in compiled.sql
        assert "COALESCE(SUM(query_time_sum), 0) AS stat_sum" in compiled.sql
        assert "AVG(query_time_p95) AS stat_p95" in compiled.sql
        assert "p5)" not in compiled.sql.replace("p95)", "")
        assert compiled.params == (7, BEGIN_DT, END_DT)

    def test_filter_switches_to_class_table(self):
        compiled = compile_scalar(
            AggregateQuery(
                instance_id=7, window=WINDOW, metric="Query_time", class_ids=frozenset({3, 1})
            )
        )
        assert "FROM query_class_metrics" in compiled.sql
        assert "query_class_id = ANY($4::bigint[])" in compiled.sql
        assert compiled.params[3] == [1, 3]


class TestGrouped:
    def test_ranked_query_orders_and_pages(self):
        query = AggregateQuery.ranked(
            7, WINDOW, metric="Query_time", statistic="p95", limit=10, offset=20
        )
        compiled = compile_grouped(query)
        assert "GROUP BY query_class_id" in compiled.sql
        assert "ORDER BY AVG(query_time_p95) DESC NULLS LAST" in compiled.sql
        assert compiled.sql.endswith("LIMIT $4 OFFSET $5")
        assert compiled.params == (7, BEGIN_DT, END_DT, 10, 20)

    def test_ranked_query_counts_with_class_count_column(self):
        query = AggregateQuery.ranked(7, WINDOW, metric="Query_time", statistic="avg", limit=5)
        compiled = compile_grouped(query)
        assert "COALESCE(SUM(query_count), 0) AS stat_count" in compiled.sql
        assert "total_query_count" not in compiled.sql

    def test_filter_set_is_bound_parameter(self):
        query = AggregateQuery.ranked(
            7, WINDOW, metric="Query_time", statistic="sum", limit=5, class_ids=frozenset({9})
        )
        compiled = compile_grouped(query)
        assert "query_class_id = ANY($4::bigint[])" in compiled.sql
        assert compiled.params == (7, BEGIN_DT, END_DT, [9], 5, 0)

    def test_requires_ordering(self):
        with pytest.raises(ValueError, match="order_by"):
            compile_grouped(AggregateQuery(instance_id=7, window=WINDOW, metric="Query_time"))


class TestSeries:
    def test_global_series(self):
        compiled = compile_series(SeriesQuery(instance_id=7, window=WINDOW, bucket_span=60))
        assert "FROM query_global_metrics" in compiled.sql
        assert "total_query_count AS cnt" in compiled.sql
        assert "GROUP BY point" in compiled.sql
        assert compiled.params == (WINDOW.end_ts, 60, 7, BEGIN_DT, END_DT)

    def test_class_series(self):
        compiled = compile_series(
            SeriesQuery(instance_id=7, window=WINDOW, bucket_span=60, query_class_id=42)
        )
        assert "FROM query_class_metrics" in compiled.sql
        assert "query_class_id = $6" in compiled.sql
        assert compiled.params[-1] == 42


class TestSearch:
    def test_text_is_never_inlined(self):
        compiled = compile_search(
            SearchQuery(instance_id=7, window=WINDOW, text="'; DROP TABLE query_classes; --")
        )
        assert "DROP TABLE" not in compiled.sql
        assert compiled.params[3] == "'; DROP TABLE query_classes; --"

    def test_like_patterns(self):
        compiled = compile_search(SearchQuery(instance_id=7, window=WINDOW, text="SELECT"))
        assert compiled.params[3:] == ("SELECT", "SELECT%", "%SELECT%")
        assert "qc.abstract LIKE $5" in compiled.sql
        assert "qc.fingerprint LIKE $6" in compiled.sql

    def test_like_metacharacters_escaped(self):
        compiled = compile_search(SearchQuery(instance_id=7, window=WINDOW, text="100%_x"))
        assert compiled.params[4] == "100\\%\\_x%"

    def test_window_overlap(self):
        compiled = compile_search(SearchQuery(instance_id=7, window=WINDOW, text="x"))
        assert "qcm.start_ts < $3 AND qcm.end_ts > $2" in compiled.sql


def test_count_distinct_with_filter():
    compiled = compile_count_distinct(7, WINDOW, frozenset({2}))
    assert compiled.sql.startswith("SELECT COUNT(DISTINCT query_class_id)")
    assert compiled.params == (7, BEGIN_DT, END_DT, [2])


def test_metadata_lookup_is_batched():
    compiled = compile_metadata([5, 3, 8])
    assert "query_class_id = ANY($1::bigint[])" in compiled.sql
    assert compiled.params == ([5, 3, 8],)


@pytest.mark.parametrize(
    "compiled",
    [
        compile_scalar(AggregateQuery(instance_id=7, window=WINDOW, metric="Query_time")),
        compile_grouped(
            AggregateQuery.ranked(7, WINDOW, metric="Query_time", statistic="sum", limit=5)
        ),
        compile_count_distinct(7, WINDOW),
        compile_series(SeriesQuery(instance_id=7, window=WINDOW, bucket_span=60)),
        compile_search(SearchQuery(instance_id=7, window=WINDOW, text="x")),
    ],
    ids=["scalar", "grouped", "count_distinct", "series", "search"],
)
def test_window_bounds_bind_as_aware_datetimes(compiled):
    bounds = [p for p in compiled.params if isinstance(p, datetime)]
    assert bounds == [BEGIN_DT, END_DT]
    assert all(b.utcoffset() is not None for b in bounds)
