"""CLI for Symptom Insights.

Commands for:
- Database initialization
- Correlation analysis over a backup export
- Dashboard summary and problem areas
- Background refresh daemon
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

if TYPE_CHECKING:
    from symptom_insights.models import CorrelationResult

console = Console()


# ============================================================================
# Rich Formatting Helpers
# ============================================================================


def format_confidence_badge(level: str) -> Text:
    """Format confidence level as colored badge."""
    colors = {
        "low": "dim",
        "medium": "yellow",
        "high": "green bold",
    }
    color = colors.get(level.lower(), "white")
    return Text(f"[{level.upper()}]", style=color)


def format_score(score: float) -> str:
    """Format correlation score with direction color."""
    if score > 0:
        return f"[red]+{score:.2f}[/red]"
    if score < 0:
        return f"[green]{score:.2f}[/green]"
    return f"{score:.2f}"


def format_heat(level: str) -> Text:
    colors = {
        "low": "green",
        "medium": "yellow",
        "high": "dark_orange",
        "critical": "red bold",
    }
    return Text(level.upper(), style=colors.get(level.lower(), "white"))


def _display_correlations(results: list[CorrelationResult], title: str) -> None:
    table = Table(title=title)
    table.add_column("Cause", style="cyan")
    table.add_column("Effect", style="magenta")
    table.add_column("Score", justify="right")
    table.add_column("Confidence")
    table.add_column("Hits", justify="right")
    table.add_column("Lag (h)", justify="right")

    for r in results:
        cause = r.cause_label
        if r.is_synergistic:
            cause += " [bold yellow]*[/bold yellow]"
        table.add_row(
            cause,
            r.effect_label,
            format_score(r.correlation_score),
            format_confidence_badge(r.confidence_level.value),
            f"{r.hits}/{r.occurrences}",
            f"{r.lag_hours:g}",
        )

    console.print(table)


def _load_backup(backup: Path):
    from symptom_insights.errors import DataUnavailableError
    from symptom_insights.repositories import BackupEventRepository

    try:
        return BackupEventRepository.from_file(backup)
    except DataUnavailableError as e:
        raise click.ClickException(str(e)) from e


@click.group()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True, path_type=Path),
    default=None,
    help="Path to engine configuration file (YAML)",
)
@click.pass_context
def main(ctx: click.Context, config: Path | None) -> None:
    """Symptom Insights - correlation analysis for symptom tracking."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config


def _engine_config(ctx: click.Context):
    from symptom_insights.config import load_engine_config
    from symptom_insights.errors import ConfigurationError

    config_path = ctx.obj.get("config_path")
    if config_path is None:
        return None
    try:
        return load_engine_config(config_path)
    except ConfigurationError as e:
        raise click.ClickException(str(e)) from e


@main.command()
@click.pass_context
def init(ctx: click.Context) -> None:
    """Initialize database schema."""
    from symptom_insights.config import Settings
    from symptom_insights.database import Database, init_schema

    async def _init() -> None:
        settings = Settings()
        db = Database(settings.database_url, settings.db_pool_size)
        await db.connect()
        try:
            await init_schema(db)
            console.print("[green]Database schema initialized successfully.[/green]")
        finally:
            await db.close()

    asyncio.run(_init())


@main.command()
@click.argument("backup", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--window-days", "-w", default=90, help="Lookback window in days")
@click.option("--top", "-n", default=5, help="Maximum results to show")
@click.option("--all", "show_all", is_flag=True, help="Include low-confidence results")
@click.pass_context
def analyze(
    ctx: click.Context,
    backup: Path,
    window_days: int,
    top: int,
    show_all: bool,
) -> None:
    """Run correlation analysis over a backup export.

    Examples:

        symptom-insights analyze backup.json

        symptom-insights analyze backup.json -w 30 --all -n 20
    """
    from symptom_insights.analysis import CorrelationEngine
    from symptom_insights.errors import CorrelationEngineError

    repository = _load_backup(backup)
    config = _engine_config(ctx)

    async def _analyze() -> list[CorrelationResult]:
        engine = CorrelationEngine(repository, config)
        results = await engine.run_correlation_analysis(window_days)
        return engine.rank(results, exclude_low_confidence=not show_all, top_n=top)

    try:
        ranked = asyncio.run(_analyze())
    except CorrelationEngineError as e:
        raise click.ClickException(str(e)) from e

    if not ranked:
        console.print("[yellow]No correlations found.[/yellow]")
        return

    _display_correlations(ranked, f"Correlations (last {window_days} days)")
    if any(r.is_synergistic for r in ranked):
        console.print("[dim]* food combination stronger than its individual foods[/dim]")


@main.command()
@click.argument("backup", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option(
    "--range",
    "-r",
    "date_range",
    type=click.Choice(["7d", "30d", "90d", "all"]),
    default="30d",
    help="Date range for averages and rankings",
)
@click.pass_context
def summary(ctx: click.Context, backup: Path, date_range: str) -> None:
    """Show the analytics dashboard summary for a backup export."""
    from symptom_insights.analysis import CorrelationEngine
    from symptom_insights.errors import CorrelationEngineError
    from symptom_insights.summary import build_analytics_summary

    repository = _load_backup(backup)
    config = _engine_config(ctx)

    try:
        report = asyncio.run(
            build_analytics_summary(
                repository, CorrelationEngine(repository, config), date_range
            )
        )
    except CorrelationEngineError as e:
        raise click.ClickException(str(e)) from e

    average = (
        f"{report.average_health_score:.1f}"
        if report.average_health_score is not None
        else "n/a"
    )
    console.print(
        Panel(
            f"Active flares: [bold]{report.active_flares}[/bold]\n"
            f"Symptoms (30d): {report.symptoms_this_month}\n"
            f"Triggers (30d): {report.triggers_this_month}\n"
            f"Meals (30d): {report.meals_this_month}\n"
            f"Average health score ({date_range}): {average}\n"
            f"Daily entry streak: {report.streak_days} days",
            title="Symptom Insights Summary",
        )
    )

    if report.top_triggers:
        table = Table(title="Top Triggers")
        table.add_column("Trigger", style="cyan")
        table.add_column("Count", justify="right")
        for item in report.top_triggers:
            table.add_row(item.trigger.name, str(item.count))
        console.print(table)

    if report.problem_areas:
        _display_problem_areas(report.problem_areas, "Problem Areas")

    if report.recent_correlations:
        _display_correlations(report.recent_correlations, "Recent Correlations")


def _display_problem_areas(areas: list, title: str) -> None:
    table = Table(title=title)
    table.add_column("Region", style="cyan")
    table.add_column("Events", justify="right")
    table.add_column("Flares", justify="right")
    table.add_column("Symptoms", justify="right")
    table.add_column("Avg Severity", justify="right")
    table.add_column("Heat")
    for area in areas:
        table.add_row(
            area.region,
            str(area.total_events),
            str(area.flare_count),
            str(area.symptom_count),
            f"{area.avg_severity:.1f}",
            format_heat(area.heat_level.value),
        )
    console.print(table)


@main.command("problem-areas")
@click.argument("backup", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--days", "-d", default=90, help="Number of days to include")
@click.option("--csv", "csv_path", type=click.Path(path_type=Path), help="Write CSV export")
def problem_areas(backup: Path, days: int, csv_path: Path | None) -> None:
    """Show body regions ranked by symptom and flare activity."""
    from symptom_insights.analysis.engine import now_ms
    from symptom_insights.config import MS_PER_DAY
    from symptom_insights.errors import DataUnavailableError
    from symptom_insights.models import EventKind, parse_event
    from symptom_insights.summary import calculate_problem_areas, export_problem_areas_csv

    repository = _load_backup(backup)
    now = now_ms()
    since = now - days * MS_PER_DAY

    async def _fetch(kind: EventKind) -> list:
        records = await repository.get_events_since(kind, since)
        return [parse_event(record, kind) for record in records]

    try:
        symptoms = asyncio.run(_fetch(EventKind.SYMPTOM))
        flares = asyncio.run(_fetch(EventKind.FLARE))
    except DataUnavailableError as e:
        raise click.ClickException(str(e)) from e

    areas = calculate_problem_areas(symptoms, flares, now)
    if not areas:
        console.print("[yellow]No symptoms or flares with a body region.[/yellow]")
        return

    _display_problem_areas(areas, f"Problem Areas (last {days} days)")

    if csv_path:
        csv_path.write_text(export_problem_areas_csv(areas))
        console.print(f"[green]CSV written to {csv_path}[/green]")


@main.command()
@click.pass_context
def daemon(ctx: click.Context) -> None:
    """Run the background correlation refresh in the foreground.

    Examples:

        symptom-insights daemon
    """
    from symptom_insights.daemon.scheduler import SchedulerService

    console.print("[blue]Starting daemon (Ctrl+C to stop)...[/blue]")
    # Fail on a bad --config before the loop starts
    _engine_config(ctx)
    service = SchedulerService(config_path=ctx.obj.get("config_path"))

    try:
        asyncio.run(service.run_forever())
    except KeyboardInterrupt:
        pass
    finally:
        console.print(
            f"\n[yellow]Daemon stopped at {datetime.now(UTC):%Y-%m-%d %H:%M} UTC.[/yellow]"
        )


if __name__ == "__main__":
    main()
