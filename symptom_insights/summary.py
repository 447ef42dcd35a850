"""Dashboard analytics built on top of the event log.

Provides:
- Problem areas: per body region activity with a heat level
- Analytics summary: headline counts, top triggers, streak and the
  strongest correlations
"""

import asyncio
import csv
import io
from collections import Counter, defaultdict
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, date, datetime, timedelta
from enum import Enum

import structlog

from symptom_insights.analysis.engine import CorrelationEngine, EventRepository, now_ms
from symptom_insights.config import MS_PER_DAY, MS_PER_HOUR
from symptom_insights.errors import CorrelationEngineError
from symptom_insights.models import (
    CorrelationResult,
    DailyEntryEvent,
    Definition,
    EventKind,
    FlareEvent,
    FlareEventType,
    FlareStatus,
    SymptomEvent,
    parse_definition,
    parse_event,
)

logger = structlog.get_logger()

MONTH_DAYS = 30
MAX_STREAK_DAYS = 30
TOP_ITEMS = 5
CORRELATION_WINDOW_DAYS = 90


# ============================================================================
# Date Ranges
# ============================================================================


class DateRange(str, Enum):
    """Lookback windows offered by the dashboard."""

    WEEK = "7d"
    MONTH = "30d"
    QUARTER = "90d"
    ALL = "all"

    @property
    def days(self) -> int | None:
        return {"7d": 7, "30d": 30, "90d": 90}.get(self.value)

    def start(self, now: int) -> int:
        """Start of the range in epoch millis; 0 for all time."""
        if self.days is None:
            return 0
        return max(0, now - self.days * MS_PER_DAY)


# ============================================================================
# Problem Areas
# ============================================================================


class HeatLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


def heat_level(count: int, avg_severity: float) -> HeatLevel:
    """Classify region activity from event count weighted by severity."""
    score = count * avg_severity
    if score >= 50:
        return HeatLevel.CRITICAL
    if score >= 20:
        return HeatLevel.HIGH
    if score >= 10:
        return HeatLevel.MEDIUM
    return HeatLevel.LOW


@dataclass(frozen=True)
class FlareSummary:
    """A flare reconstructed from its lifecycle events."""

    flare_id: str
    body_region: str
    started_at: int
    resolved_at: int | None
    current_severity: float

    @property
    def is_active(self) -> bool:
        return self.resolved_at is None

    @property
    def duration_hours(self) -> float | None:
        if self.resolved_at is None:
            return None
        return (self.resolved_at - self.started_at) / MS_PER_HOUR


def _is_resolution(event: FlareEvent) -> bool:
    return event.event_type == FlareEventType.RESOLVED or event.status == FlareStatus.RESOLVED


def summarize_flares(events: Iterable[FlareEvent]) -> list[FlareSummary]:
    """Group flare events by flare and reduce each to a summary."""
    by_flare: dict[str, list[FlareEvent]] = defaultdict(list)
    for event in events:
        by_flare[event.ref_id].append(event)

    summaries = []
    for flare_id in sorted(by_flare):
        history = sorted(by_flare[flare_id], key=lambda e: (e.timestamp, e.id))
        latest = history[-1]
        severities = [e.magnitude for e in history if e.magnitude is not None]
        summaries.append(
            FlareSummary(
                flare_id=flare_id,
                body_region=history[0].body_region,
                started_at=history[0].timestamp,
                resolved_at=latest.timestamp if _is_resolution(latest) else None,
                current_severity=severities[-1] if severities else 0.0,
            )
        )
    return summaries


@dataclass
class ProblemAreaStats:
    """Activity of one body region."""

    region: str
    flare_count: int
    symptom_count: int
    total_events: int
    avg_severity: float
    avg_duration_hours: float
    recent_flares: int
    heat_level: HeatLevel


def calculate_problem_areas(
    symptoms: Iterable[SymptomEvent],
    flares: Iterable[FlareEvent],
    now: int,
) -> list[ProblemAreaStats]:
    """
    Aggregate symptoms and flares by body region.

    Args:
        symptoms: Symptom instances; those without a body region are skipped
        flares: Flare lifecycle events
        now: Reference time for the 30-day recent flare count

    Returns:
        Regions sorted by total events descending, then region name
    """
    recent_cutoff = now - MONTH_DAYS * MS_PER_DAY
    regions: dict[str, dict[str, list]] = defaultdict(lambda: {"flares": [], "symptoms": []})

    for flare in summarize_flares(flares):
        regions[flare.body_region]["flares"].append(flare)
    for symptom in symptoms:
        if symptom.body_region:
            regions[symptom.body_region]["symptoms"].append(symptom)

    areas = []
    for region, data in regions.items():
        region_flares: list[FlareSummary] = data["flares"]
        region_symptoms: list[SymptomEvent] = data["symptoms"]
        total = len(region_flares) + len(region_symptoms)

        severities = [f.current_severity for f in region_flares] + [
            s.magnitude for s in region_symptoms if s.magnitude is not None
        ]
        avg_severity = sum(severities) / len(severities) if severities else 0.0

        durations = [f.duration_hours for f in region_flares if f.duration_hours is not None]
        avg_duration = sum(durations) / len(durations) if durations else 0.0

        areas.append(
            ProblemAreaStats(
                region=region,
                flare_count=len(region_flares),
                symptom_count=len(region_symptoms),
                total_events=total,
                avg_severity=avg_severity,
                avg_duration_hours=avg_duration,
                recent_flares=sum(1 for f in region_flares if f.started_at >= recent_cutoff),
                heat_level=heat_level(total, avg_severity),
            )
        )

    areas.sort(key=lambda a: (-a.total_events, a.region))
    return areas


CSV_HEADERS = [
    "Body Region",
    "Total Events",
    "Flare Count",
    "Symptom Count",
    "Avg Severity",
    "Avg Duration (hrs)",
    "Recent Flares (30d)",
    "Heat Level",
]


def export_problem_areas_csv(areas: Sequence[ProblemAreaStats]) -> str:
    """Render problem areas as CSV text."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(CSV_HEADERS)
    for area in areas:
        writer.writerow(
            [
                area.region,
                area.total_events,
                area.flare_count,
                area.symptom_count,
                f"{area.avg_severity:.1f}",
                f"{area.avg_duration_hours:.1f}",
                area.recent_flares,
                area.heat_level.value,
            ]
        )
    return buffer.getvalue()


# ============================================================================
# Analytics Summary
# ============================================================================


@dataclass
class TriggerCount:
    trigger: Definition
    count: int


@dataclass
class AnalyticsSummary:
    """Headline numbers for the analytics dashboard."""

    date_range: DateRange
    generated_at: int
    active_flares: int = 0
    symptoms_this_month: int = 0
    triggers_this_month: int = 0
    meals_this_month: int = 0
    average_health_score: float | None = None
    top_triggers: list[TriggerCount] = field(default_factory=list)
    recent_correlations: list[CorrelationResult] = field(default_factory=list)
    problem_areas: list[ProblemAreaStats] = field(default_factory=list)
    streak_days: int = 0


def _utc_date(timestamp: int) -> date:
    return datetime.fromtimestamp(timestamp / 1000, tz=UTC).date()


def streak_days(entries: Iterable[DailyEntryEvent], now: int) -> int:
    """Consecutive days with a daily entry, counting back from today."""
    logged = {_utc_date(e.timestamp) for e in entries}
    today = _utc_date(now)
    streak = 0
    for offset in range(MAX_STREAK_DAYS):
        if today - timedelta(days=offset) not in logged:
            break
        streak += 1
    return streak


def top_triggers(
    events: Iterable, definitions: Iterable[Definition], limit: int = TOP_ITEMS
) -> list[TriggerCount]:
    """Most frequently logged active triggers, ties broken by name."""
    active = {d.id: d for d in definitions if d.is_active}
    counts = Counter(e.ref_id for e in events if e.ref_id in active)
    ranked = sorted(counts.items(), key=lambda item: (-item[1], active[item[0]].name))
    return [TriggerCount(trigger=active[ref], count=count) for ref, count in ranked[:limit]]


async def _fetch(repository: EventRepository, kind: EventKind, since: int) -> list:
    records = await repository.get_events_since(kind, since)
    return [parse_event(record, kind) for record in records or ()]


async def build_analytics_summary(
    repository: EventRepository,
    engine: CorrelationEngine | None = None,
    date_range: DateRange | str = DateRange.MONTH,
    now: int | None = None,
) -> AnalyticsSummary:
    """
    Build the dashboard summary.

    Correlation failures are logged and leave ``recent_correlations`` empty;
    every other repository failure propagates.
    """
    date_range = DateRange(date_range)
    now = now_ms() if now is None else now
    range_start = date_range.start(now)
    month_start = max(0, now - MONTH_DAYS * MS_PER_DAY)
    engine = engine or CorrelationEngine(repository)

    (
        symptoms_month,
        triggers_month,
        meals_month,
        triggers_range,
        symptoms_range,
        flares_all,
        entries_all,
        trigger_defs,
    ) = await asyncio.gather(
        _fetch(repository, EventKind.SYMPTOM, month_start),
        _fetch(repository, EventKind.TRIGGER, month_start),
        _fetch(repository, EventKind.FOOD, month_start),
        _fetch(repository, EventKind.TRIGGER, range_start),
        _fetch(repository, EventKind.SYMPTOM, range_start),
        _fetch(repository, EventKind.FLARE, 0),
        _fetch(repository, EventKind.DAILY_ENTRY, 0),
        repository.get_active_definitions(EventKind.TRIGGER),
    )

    entries_range = [e for e in entries_all if range_start <= e.timestamp <= now]
    average = (
        sum(e.magnitude for e in entries_range) / len(entries_range) if entries_range else None
    )

    flares_range = [f for f in flares_all if f.timestamp >= range_start]

    correlations: list[CorrelationResult] = []
    try:
        results = await engine.run_correlation_analysis(CORRELATION_WINDOW_DAYS, now=now)
        correlations = engine.rank(results, exclude_low_confidence=True, top_n=TOP_ITEMS)
    except CorrelationEngineError as e:
        logger.warning("Correlation analysis failed for summary", error=str(e))

    summary = AnalyticsSummary(
        date_range=date_range,
        generated_at=now,
        active_flares=sum(1 for f in summarize_flares(flares_all) if f.is_active),
        symptoms_this_month=len(symptoms_month),
        triggers_this_month=len(triggers_month),
        meals_this_month=len(meals_month),
        average_health_score=average,
        top_triggers=top_triggers(
            triggers_range,
            [parse_definition(d, EventKind.TRIGGER) for d in trigger_defs or ()],
        ),
        recent_correlations=correlations,
        problem_areas=calculate_problem_areas(symptoms_range, flares_range, now)[:TOP_ITEMS],
        streak_days=streak_days(entries_all, now),
    )

    logger.info(
        "Analytics summary built",
        date_range=date_range.value,
        active_flares=summary.active_flares,
        correlations=len(correlations),
    )
    return summary
