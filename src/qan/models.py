"""Query analytics data models: time window, statistics, sparkline points, profile."""

from __future__ import annotations

import re

from pydantic import BaseModel, Field, field_validator, model_validator
from whenever import Instant

from qan.metrics import RANKABLE_STATISTICS

# Number of points in every sparkline series
N_POINTS = 60

_METRIC_NAME = re.compile(r"^[A-Za-z][A-Za-z0-9_]*$")


# ---------------------------------------------------------------------------
# Request parameters
# ---------------------------------------------------------------------------


class TimeWindow(BaseModel):
    """Half-open window ``[begin, end)`` as ISO 8601 UTC instants."""

    begin: str
    end: str

    @field_validator("begin", "end")
    @classmethod
    def _normalize(cls, value: str) -> str:
        return Instant.parse_iso(value).format_iso()

    @model_validator(mode="after")
    def _check_order(self) -> TimeWindow:
        if self.end_ts <= self.begin_ts:
            msg = "end must be after begin"
            raise ValueError(msg)
        return self

    @classmethod
    def from_timestamps(cls, begin_ts: int, end_ts: int) -> TimeWindow:
        return cls(
            begin=Instant.from_timestamp(begin_ts).format_iso(),
            end=Instant.from_timestamp(end_ts).format_iso(),
        )

    @property
    def begin_instant(self) -> Instant:
        return Instant.parse_iso(self.begin)

    @property
    def end_instant(self) -> Instant:
        return Instant.parse_iso(self.end)

    @property
    def begin_ts(self) -> int:
        return self.begin_instant.timestamp()

    @property
    def end_ts(self) -> int:
        return self.end_instant.timestamp()

    @property
    def interval_seconds(self) -> float:
        """Window length used as the QPS and load denominator."""
        return float(self.end_ts - self.begin_ts)

    @property
    def bucket_span(self) -> int:
        """Seconds covered by one sparkline point.

        Point 0 anchors on ``end`` and earlier points step back by this span.
        Windows shorter than ``N_POINTS - 1`` seconds are clamped to 1s.
        """
        return max(1, (self.end_ts - self.begin_ts) // (N_POINTS - 1))


class RankBy(BaseModel):
    metric: str = "Query_time"
    statistic: str = "sum"

    @field_validator("metric")
    @classmethod
    def _check_metric(cls, value: str) -> str:
        if not _METRIC_NAME.match(value):
            msg = f"Invalid metric name '{value}'"
            raise ValueError(msg)
        return value

    @field_validator("statistic")
    @classmethod
    def _check_statistic(cls, value: str) -> str:
        if value not in RANKABLE_STATISTICS:
            available = ", ".join(RANKABLE_STATISTICS)
            msg = f"Unknown statistic '{value}'. Available: {available}"
            raise ValueError(msg)
        return value


# ---------------------------------------------------------------------------
# Aggregates
# ---------------------------------------------------------------------------


class Stat(BaseModel):
    """Statistical summary of one metric. ``None`` means no data."""

    count: int = Field(default=0, ge=0)
    sum: float = 0.0
    min: float | None = None
    avg: float | None = None
    median: float | None = None
    p95: float | None = None
    max: float | None = None


class AggregateRow(BaseModel):
    """A decoded store row. ``query_class_id`` is None for instance-wide rows."""

    query_class_id: int | None = None
    total_time: int = 0
    stat: Stat


class BucketPoint(BaseModel):
    point_index: int = Field(ge=0, lt=N_POINTS)
    bucket_start: str
    count: int = 0
    sum: float = 0.0
    avg: float = 0.0


class ClassMetadata(BaseModel):
    query_class_id: int
    checksum: str
    abstract: str
    fingerprint: str


class RankedEntry(BaseModel):
    """One row of a profile. Rank 0 is the global (all classes) row."""

    rank: int = Field(ge=0)
    query_class_id: int | None = None
    stat: Stat
    percentage: float
    qps: float
    load: float
    series: list[BucketPoint] = Field(default_factory=list)
    display_id: str | None = None
    abstract: str | None = None
    fingerprint: str | None = None

    @classmethod
    def derive(
        cls,
        *,
        rank: int,
        stat: Stat,
        global_sum: float,
        interval_seconds: float,
        query_class_id: int | None = None,
    ) -> RankedEntry:
        """Build an entry with percentage, QPS and load computed from ``stat``."""
        if rank == 0:
            percentage = 1.0
        else:
            percentage = stat.sum / global_sum if global_sum else 0.0
        return cls(
            rank=rank,
            query_class_id=query_class_id,
            stat=stat,
            percentage=percentage,
            qps=stat.count / interval_seconds,
            load=stat.sum / interval_seconds,
        )

    def with_metadata(self, meta: ClassMetadata) -> RankedEntry:
        return self.model_copy(
            update={
                "display_id": meta.checksum,
                "abstract": meta.abstract,
                "fingerprint": meta.fingerprint,
            }
        )


class Profile(BaseModel):
    instance_id: int
    window: TimeWindow
    rank_by: RankBy
    total_query_classes: int = 0
    total_time_seconds: int = 0
    entries: list[RankedEntry] = Field(default_factory=list)

    @property
    def global_entry(self) -> RankedEntry | None:
        return self.entries[0] if self.entries else None

    @property
    def ranked(self) -> list[RankedEntry]:
        return self.entries[1:]
