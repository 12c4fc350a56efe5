"""Pytest configuration and fixtures for the query analytics tests."""

import pytest
from whenever import Instant

from qan.models import RankBy, TimeWindow
from qan.reporter import ProfileBuilder

from .fakes import Bucket, FakeMetricStore

T0 = Instant.parse_iso("2026-01-15T10:00:00Z").timestamp()

# 59 minutes, so each sparkline point spans exactly 60s
SCENARIO_SPAN = 3540

ORDERS_ID = 101
USERS_ID = 202


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def window() -> TimeWindow:
    return TimeWindow.from_timestamps(T0, T0 + SCENARIO_SPAN)


@pytest.fixture
def rank_by() -> RankBy:
    return RankBy(metric="Query_time", statistic="sum")


@pytest.fixture
def store() -> FakeMetricStore:
    """Two classes: orders (sum=100, count=10) and users (sum=50, count=5)."""
    fake = FakeMetricStore()
    fake.add_class(
        ORDERS_ID,
        checksum="3A99CC42AEDCCFCD",
        abstract="SELECT orders",
        fingerprint="SELECT * FROM orders WHERE id = ?",
    )
    fake.add_class(
        USERS_ID,
        checksum="D0CE5E1C08E4A9FB",
        abstract="UPDATE users",
        fingerprint="UPDATE users SET name = ? WHERE id = ?",
    )
    for offset in (0, 600, 1200, 1800, 2400):
        fake.buckets.append(
            Bucket(
                query_class_id=ORDERS_ID,
                start_ts=T0 + offset,
                count=2,
                total=20.0,
                minimum=1.0,
                maximum=15.0,
                median=8.0,
                p95=14.0,
            )
        )
    for offset in (300, 900, 1500, 2100, 3480):
        fake.buckets.append(
            Bucket(
                query_class_id=USERS_ID,
                start_ts=T0 + offset,
                count=1,
                total=10.0,
                minimum=10.0,
                maximum=10.0,
                median=10.0,
                p95=10.0,
            )
        )
    return fake


@pytest.fixture
def builder(store: FakeMetricStore) -> ProfileBuilder:
    return ProfileBuilder(store)
