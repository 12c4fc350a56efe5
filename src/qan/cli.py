"""Typer CLI for the query analytics reporter.

Commands:
  profile  Rank query classes of an instance over a time window
  series   Print the 60-point sparkline of a query class or the whole instance
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Annotated

import typer
from rich.console import Console
from rich.table import Table

from qan.config import QanSettings
from qan.errors import EmptyRangeError, NoMatchError, StoreError
from qan.models import RankBy, TimeWindow
from qan.reporter import ProfileBuilder
from qan.sparkline import ALL_CLASSES
from qan.store import PostgresMetricStore, create_pool

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from qan.models import BucketPoint, Profile

app = typer.Typer(
    name="qan",
    help="Query analytics reports over pre-aggregated metric buckets",
    no_args_is_help=True,
)
console = Console()

_SPARK_BARS = "▁▂▃▄▅▆▇█"


def _settings() -> QanSettings:
    settings = QanSettings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    return settings


async def _with_builder(
    settings: QanSettings, action: Callable[[ProfileBuilder], Awaitable[object]]
) -> object:
    pool = await create_pool(
        settings.dsn, min_size=settings.pool_min_size, max_size=settings.pool_max_size
    )
    try:
        builder = ProfileBuilder(
            PostgresMetricStore(pool=pool), concurrent_series=settings.concurrent_series
        )
        async with asyncio.timeout(settings.request_timeout_sec):
            return await action(builder)
    finally:
        await pool.close()


def _execute(settings: QanSettings, action: Callable[[ProfileBuilder], Awaitable[object]]):
    try:
        return asyncio.run(_with_builder(settings, action))
    except (NoMatchError, EmptyRangeError) as exc:
        console.print(f"[yellow]{exc}[/yellow]")
        raise typer.Exit(1) from None
    except StoreError as exc:
        console.print(f"[red]Error:[/red] {exc}")
        raise typer.Exit(2) from None
    except TimeoutError:
        console.print("[red]Error:[/red] metric store query timed out")
        raise typer.Exit(2) from None


def _window(begin: str, end: str) -> TimeWindow:
    try:
        return TimeWindow(begin=begin, end=end)
    except ValueError as exc:
        console.print(f"[red]Invalid time window:[/red] {exc}")
        raise typer.Exit(1) from None


def sparkline(points: list[BucketPoint]) -> str:
    """Render a series oldest-first as unicode bars scaled to its peak."""
    values = [p.sum for p in reversed(points)]
    peak = max(values, default=0.0)
    if peak <= 0:
        return _SPARK_BARS[0] * len(values)
    top = len(_SPARK_BARS) - 1
    return "".join(_SPARK_BARS[round(v / peak * top)] for v in values)


def render_profile(profile: Profile) -> Table:
    table = Table(
        title=(
            f"Instance {profile.instance_id}: {profile.window.begin} → {profile.window.end}"
            f" by {profile.rank_by.metric}/{profile.rank_by.statistic}"
        )
    )
    table.add_column("Rank", justify="right")
    table.add_column("Query ID", style="cyan")
    table.add_column("Load", justify="right")
    table.add_column("%", justify="right")
    table.add_column("QPS", justify="right")
    table.add_column("Count", justify="right")
    table.add_column("Trend")
    table.add_column("Abstract")
    for entry in profile.entries:
        table.add_row(
            "TOTAL" if entry.rank == 0 else str(entry.rank),
            entry.display_id or "",
            f"{entry.load:.2f}",
            f"{entry.percentage * 100:.2f}",
            f"{entry.qps:.2f}",
            str(entry.stat.count),
            sparkline(entry.series),
            entry.abstract or "",
        )
    return table


@app.command()
def profile(
    instance_id: Annotated[int, typer.Argument(help="Monitored instance id")],
    begin: Annotated[str, typer.Option("--begin", "-b", help="Window start (ISO 8601)")],
    end: Annotated[str, typer.Option("--end", "-e", help="Window end, exclusive (ISO 8601)")],
    metric: Annotated[str, typer.Option("--metric", "-m", help="Metric to rank by")] = "Query_time",
    stat: Annotated[str, typer.Option("--stat", "-s", help="Statistic to rank by")] = "sum",
    limit: Annotated[int | None, typer.Option("--limit", "-l", min=1)] = None,
    offset: Annotated[int, typer.Option("--offset", min=0)] = 0,
    search: Annotated[str, typer.Option("--search", help="Checksum, abstract or fingerprint text")] = "",
    as_json: Annotated[bool, typer.Option("--json", help="Print the profile as JSON")] = False,
) -> None:
    """Rank query classes of an instance over a time window."""
    settings = _settings()
    window = _window(begin, end)
    try:
        rank_by = RankBy(metric=metric, statistic=stat)
    except ValueError as exc:
        console.print(f"[red]Invalid ranking:[/red] {exc}")
        raise typer.Exit(1) from None

    try:
        page = settings.page_size(limit)
    except ValueError as exc:
        console.print(f"[red]Invalid limit:[/red] {exc}")
        raise typer.Exit(1) from None

    result = _execute(
        settings,
        lambda builder: builder.profile(
            instance_id, window, rank_by, limit=page, offset=offset, search=search.strip()
        ),
    )

    if as_json:
        console.print_json(result.model_dump_json())
        return
    if not result.entries:
        console.print("[yellow]No query activity recorded in the selected window.[/yellow]")
        return
    console.print(render_profile(result))
    console.print(
        f"{len(result.ranked)} of {result.total_query_classes} query classes,"
        f" {result.total_time_seconds}s of recorded time"
    )


@app.command()
def series(
    instance_id: Annotated[int, typer.Argument(help="Monitored instance id")],
    begin: Annotated[str, typer.Option("--begin", "-b", help="Window start (ISO 8601)")],
    end: Annotated[str, typer.Option("--end", "-e", help="Window end, exclusive (ISO 8601)")],
    query_class: Annotated[
        int | None, typer.Option("--query-class", "-q", help="Query class id (default: all)")
    ] = None,
) -> None:
    """Print the 60-point sparkline of a query class or the whole instance."""
    settings = _settings()
    window = _window(begin, end)
    target = ALL_CLASSES if query_class is None else query_class
    points = _execute(
        settings, lambda builder: builder.bucketizer.series(instance_id, target, window)
    )

    table = Table(title=sparkline(points))
    table.add_column("Point", justify="right")
    table.add_column("Start", style="cyan")
    table.add_column("Count", justify="right")
    table.add_column("Sum", justify="right")
    table.add_column("Avg", justify="right")
    for point in points:
        table.add_row(
            str(point.point_index),
            point.bucket_start,
            str(point.count),
            f"{point.sum:.4f}",
            f"{point.avg:.4f}",
        )
    console.print(table)


if __name__ == "__main__":
    app()
