"""FastAPI router serving query profiles and sparklines.

Endpoints:
  GET /qan/profile/{instance_id}  — ranked query classes with sparklines
  GET /qan/series/{instance_id}   — 60-point sparkline for one class or the whole instance

Business conditions (no match, no classes) are 404s so the dashboard can show
an empty state; store failures are 502s.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import APIRouter, FastAPI, HTTPException, Query
from pydantic import ValidationError

from qan.config import QanSettings
from qan.errors import EmptyRangeError, NoMatchError, StoreError
from qan.models import BucketPoint, Profile, RankBy, TimeWindow
from qan.reporter import ProfileBuilder
from qan.sparkline import ALL_CLASSES
from qan.store import PostgresMetricStore, create_pool

if TYPE_CHECKING:
    from collections.abc import Awaitable
    from typing import TypeVar

    T = TypeVar("T")

logger = logging.getLogger("qan.api")

router = APIRouter(prefix="/qan", tags=["qan"])

# Set at startup via `configure_qan_router`
_builder: ProfileBuilder | None = None
_settings: QanSettings | None = None


def configure_qan_router(*, builder: ProfileBuilder, settings: QanSettings) -> None:
    """Inject dependencies into the router."""
    global _builder, _settings
    _builder = builder
    _settings = settings


def _get_builder() -> ProfileBuilder:
    if _builder is None or _settings is None:
        raise HTTPException(status_code=503, detail="Metric store not configured")
    return _builder


def _parse_window(begin: str, end: str) -> TimeWindow:
    try:
        return TimeWindow(begin=begin, end=end)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=f"Invalid time window: {exc}") from exc


async def _run(coro: Awaitable[T]) -> T:
    """Await ``coro`` under the request timeout, mapping errors to HTTP responses."""
    try:
        async with asyncio.timeout(_settings.request_timeout_sec):
            return await coro
    except (NoMatchError, EmptyRangeError) as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except StoreError as exc:
        logger.exception("Store failure during %s", exc.operation)
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    except TimeoutError as exc:
        raise HTTPException(status_code=504, detail="Metric store query timed out") from exc


@router.get("/profile/{instance_id}")
async def get_profile(
    instance_id: int,
    begin: str,
    end: str,
    metric: str = "Query_time",
    stat: str = "sum",
    limit: int | None = Query(default=None, ge=1),
    offset: int = Query(default=0, ge=0),
    search: str = "",
) -> Profile:
    """Rank the query classes of an instance over ``[begin, end)``."""
    builder = _get_builder()
    window = _parse_window(begin, end)
    try:
        rank_by = RankBy(metric=metric, statistic=stat)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=f"Invalid ranking: {exc}") from exc

    try:
        page = _settings.page_size(limit)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    return await _run(
        builder.profile(
            instance_id, window, rank_by, limit=page, offset=offset, search=search.strip()
        )
    )


@router.get("/series/{instance_id}")
async def get_series(
    instance_id: int,
    begin: str,
    end: str,
    query_class_id: int | None = None,
) -> list[BucketPoint]:
    """Sparkline for one query class, or the whole instance without ``query_class_id``."""
    builder = _get_builder()
    window = _parse_window(begin, end)
    target = ALL_CLASSES if query_class_id is None else query_class_id
    return await _run(builder.bucketizer.series(instance_id, target, window))


def create_app(settings: QanSettings | None = None) -> FastAPI:
    """Build the service app; the pool is created on startup and closed on shutdown."""
    settings = settings or QanSettings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logging.basicConfig(
            level=settings.log_level,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )
        pool = await create_pool(
            settings.dsn, min_size=settings.pool_min_size, max_size=settings.pool_max_size
        )
        store = PostgresMetricStore(pool=pool)
        configure_qan_router(
            builder=ProfileBuilder(store, concurrent_series=settings.concurrent_series),
            settings=settings,
        )
        try:
            yield
        finally:
            await pool.close()

    app = FastAPI(
        title="Query Analytics Reporter",
        description="Ranked query class profiles and sparklines over metric buckets.",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.include_router(router)
    return app
