"""Unit tests for the profile data models."""

import pytest
from pydantic import ValidationError

from qan.models import RankBy, RankedEntry, Stat, TimeWindow


class TestTimeWindow:
    def test_end_must_follow_begin(self):
        with pytest.raises(ValidationError, match="end must be after begin"):
            TimeWindow(begin="2026-01-15T11:00:00Z", end="2026-01-15T10:00:00Z")

    def test_empty_window_rejected(self):
        with pytest.raises(ValidationError):
            TimeWindow(begin="2026-01-15T10:00:00Z", end="2026-01-15T10:00:00Z")

    def test_garbage_rejected(self):
        with pytest.raises(ValidationError):
            TimeWindow(begin="yesterday", end="2026-01-15T10:00:00Z")

    def test_interval_and_span(self):
        window = TimeWindow(begin="2026-01-15T10:00:00Z", end="2026-01-15T10:59:00Z")
        assert window.interval_seconds == 3540.0
        assert window.bucket_span == 60

    def test_span_uses_integer_division(self):
        window = TimeWindow(begin="2026-01-15T10:00:00Z", end="2026-01-15T11:00:00Z")
        assert window.bucket_span == 3600 // 59

    def test_span_clamped_for_short_windows(self):
        window = TimeWindow(begin="2026-01-15T10:00:00Z", end="2026-01-15T10:00:30Z")
        assert window.bucket_span == 1

    def test_from_timestamps_round_trip(self):
        window = TimeWindow.from_timestamps(1_768_471_200, 1_768_474_800)
        assert window.begin_ts == 1_768_471_200
        assert window.end_ts == 1_768_474_800


class TestRankBy:
    def test_defaults(self):
        assert RankBy() == RankBy(metric="Query_time", statistic="sum")

    def test_metric_must_be_identifier(self):
        with pytest.raises(ValidationError, match="Invalid metric name"):
            RankBy(metric="Query_time); DROP TABLE x; --")

    def test_unknown_statistic(self):
        with pytest.raises(ValidationError, match="Unknown statistic"):
            RankBy(statistic="p99")

    def test_count_statistic_allowed(self):
        assert RankBy(statistic="cnt").statistic == "cnt"


class TestRankedEntryDerive:
    def test_global_entry_is_one(self):
        entry = RankedEntry.derive(
            rank=0, stat=Stat(count=10, sum=0.5), global_sum=0.5, interval_seconds=10
        )
        assert entry.percentage == 1.0
        assert entry.qps == 1.0
        assert entry.load == 0.05

    def test_ranked_entry_ratios(self):
        entry = RankedEntry.derive(
            rank=1,
            stat=Stat(count=30, sum=45.0),
            global_sum=90.0,
            interval_seconds=60,
            query_class_id=4,
        )
        assert entry.percentage == 0.5
        assert entry.qps == 0.5
        assert entry.load == 0.75
        assert entry.query_class_id == 4
        assert entry.display_id is None

    def test_stat_count_cannot_be_negative(self):
        with pytest.raises(ValidationError):
            Stat(count=-1)

    def test_zero_global_sum_gives_zero_share(self):
        entry = RankedEntry.derive(
            rank=2, stat=Stat(count=3, sum=0.0), global_sum=0.0, interval_seconds=60
        )
        assert entry.percentage == 0.0
