"""Query analytics reporter - ranked query class profiles and sparklines.

Quick Start:
    from qan.models import RankBy, TimeWindow
    from qan.reporter import ProfileBuilder
    from qan.store import PostgresMetricStore, create_pool

    pool = await create_pool("postgresql://localhost:5432/qan")
    builder = ProfileBuilder(PostgresMetricStore(pool=pool))

    profile = await builder.profile(
        1,
        TimeWindow(begin="2026-01-15T10:00:00Z", end="2026-01-15T11:00:00Z"),
        RankBy(metric="Query_time", statistic="sum"),
        limit=10,
    )
"""

__version__ = "0.1.0"
