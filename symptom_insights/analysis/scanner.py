"""Co-occurrence / lag scanning between candidate causes and effects.

For every (cause definition, effect definition) pair the scanner counts:

- exposures: occurrences of the cause in the window
- hits: exposures followed by an effect event within the lag tolerance
- effect base rate: the fraction of lag-sized windows tiling the analysis
  window that contain at least one effect event, regardless of cause

Each effect event is credited to at most one exposure of a given cause,
the earliest one that can claim it.
"""

import math
from bisect import bisect_left
from collections import defaultdict
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass

import structlog

from symptom_insights.analysis.timeline import EffectKey, Timeline
from symptom_insights.config import MS_PER_HOUR
from symptom_insights.models import CauseType, EffectType, EventKind

logger = structlog.get_logger()


@dataclass(frozen=True, order=True)
class CauseKey:
    """Identifies one candidate cause: a trigger, a food or a food set."""

    cause_type: CauseType
    refs: tuple[str, ...]


@dataclass(frozen=True)
class RawPairStats:
    """Raw counts for one (cause, effect) pair at one lag tolerance."""

    cause_type: CauseType
    cause_refs: tuple[str, ...]
    cause_label: str
    effect_type: EffectType
    effect_ref: str
    effect_label: str
    exposures: int
    hits: int
    effect_base_rate: float
    lag_hours: float
    window_days: int

    @property
    def cause_ref(self) -> str:
        return "+".join(self.cause_refs)


def lag_to_ms(lag_hours: float) -> int:
    if lag_hours <= 0:
        raise ValueError(f"lag tolerance must be positive, got {lag_hours}")
    return round(lag_hours * MS_PER_HOUR)


def credited_exposures(
    exposures: Sequence[int], effects: Sequence[int], lag_ms: int
) -> list[int]:
    """
    Indices of the exposures credited with an effect hit.

    Both sequences must be sorted ascending. Exposures are visited in
    chronological order and each claims the earliest unclaimed effect in
    ``[exposure, exposure + lag_ms]``, so a single effect is never credited
    twice and goes to the earliest exposure that can reach it.
    """
    credited = []
    next_free = 0
    for position, exposure in enumerate(exposures):
        idx = max(bisect_left(effects, exposure), next_free)
        if idx < len(effects) and effects[idx] <= exposure + lag_ms:
            credited.append(position)
            next_free = idx + 1
    return credited


def count_hits(
    exposures: Sequence[int], effects: Sequence[int], lag_ms: int
) -> int:
    """Count exposures followed by an unclaimed effect within ``lag_ms``."""
    return len(credited_exposures(exposures, effects, lag_ms))


def effect_base_rate(
    effects: Sequence[int], window_start: int, window_end: int, lag_ms: int
) -> float:
    """Fraction of consecutive lag-sized windows containing an effect event."""
    span = max(window_end - window_start, 1)
    window_count = max(1, math.ceil(span / lag_ms))
    occupied = {
        min((ts - window_start) // lag_ms, window_count - 1)
        for ts in effects
        if window_start <= ts <= window_end
    }
    return len(occupied) / window_count


def cause_series(timeline: Timeline) -> dict[CauseKey, tuple[int, ...]]:
    """Exposure timestamps for every active trigger and single food."""
    series: dict[CauseKey, list[int]] = defaultdict(list)

    for event in timeline.events_of(EventKind.TRIGGER):
        if timeline.is_active(EventKind.TRIGGER, event.ref_id):
            series[CauseKey(CauseType.TRIGGER, (event.ref_id,))].append(
                event.timestamp
            )

    for event in timeline.events_of(EventKind.FOOD):
        for food_id in event.food_ids:
            if timeline.is_active(EventKind.FOOD, food_id):
                series[CauseKey(CauseType.FOOD, (food_id,))].append(event.timestamp)

    return {key: tuple(sorted(ts)) for key, ts in sorted(series.items())}


def cause_label(timeline: Timeline, key: CauseKey) -> str:
    kind = EventKind.TRIGGER if key.cause_type == CauseType.TRIGGER else EventKind.FOOD
    return " + ".join(timeline.label_for(kind, ref) for ref in key.refs)


def scan_causes(
    timeline: Timeline,
    causes: Mapping[CauseKey, Sequence[int]],
    lag_tolerance_hours: float,
    label: Callable[[Timeline, CauseKey], str] = cause_label,
) -> list[RawPairStats]:
    """Pair every cause with every effect that occurred in the window."""
    lag_ms = lag_to_ms(lag_tolerance_hours)
    base_rates: dict[EffectKey, float] = {
        key: effect_base_rate(ts, timeline.window_start, timeline.window_end, lag_ms)
        for key, ts in timeline.effects.items()
    }

    stats: list[RawPairStats] = []
    for cause_key in sorted(causes):
        exposures = causes[cause_key]
        if not exposures:
            # Zero-exposure causes are never scored
            continue
        for effect_key in sorted(timeline.effects):
            effects = timeline.effects[effect_key]
            stats.append(
                RawPairStats(
                    cause_type=cause_key.cause_type,
                    cause_refs=cause_key.refs,
                    cause_label=label(timeline, cause_key),
                    effect_type=effect_key.effect_type,
                    effect_ref=effect_key.ref,
                    effect_label=timeline.effect_label(effect_key),
                    exposures=len(exposures),
                    hits=count_hits(exposures, effects, lag_ms),
                    effect_base_rate=base_rates[effect_key],
                    lag_hours=lag_tolerance_hours,
                    window_days=timeline.window_days,
                )
            )
    return stats


def scan_pairs(
    timeline: Timeline, lag_tolerance_hours: float = 24.0
) -> list[RawPairStats]:
    """
    Scan trigger and single-food causes against every effect.

    Args:
        timeline: Normalized timeline
        lag_tolerance_hours: Maximum exposure-to-effect gap counted as a hit

    Returns:
        Raw stats ordered by cause then effect; empty for an empty timeline
    """
    if timeline.is_empty or not timeline.effects:
        return []

    causes = cause_series(timeline)
    stats = scan_causes(timeline, causes, lag_tolerance_hours)
    logger.debug(
        "Pair scan complete",
        causes=len(causes),
        effects=len(timeline.effects),
        pairs=len(stats),
        lag_hours=lag_tolerance_hours,
    )
    return stats
