"""Food-combination analysis.

Single-food signals are often confounded by co-eaten items, so meals are
also analysed as food sets. A candidate combination is any subset of a
meal's foods whose size lies in [min_combo_size, max_combo_size] and that
recurs in at least ``min_recurrence`` meals in the window. Combinations use
set semantics: the order foods were logged in does not matter.
"""

import math
from collections import defaultdict
from collections.abc import Iterable
from dataclasses import replace
from itertools import combinations

import structlog

from symptom_insights.analysis.scanner import CauseKey, RawPairStats, scan_causes
from symptom_insights.analysis.timeline import Timeline
from symptom_insights.errors import ConfigurationError
from symptom_insights.models import (
    CauseType,
    ConfidenceLevel,
    CorrelationResult,
    EventKind,
)

logger = structlog.get_logger()


def combination_series(
    timeline: Timeline,
    min_combo_size: int = 2,
    max_combo_size: int = 4,
    min_recurrence: int = 2,
) -> dict[CauseKey, tuple[int, ...]]:
    """Meal timestamps for every recurring food combination."""
    if min_combo_size < 2 or min_combo_size > max_combo_size:
        raise ConfigurationError(
            f"Invalid combination sizes: min={min_combo_size}, max={max_combo_size}"
        )

    series: dict[tuple[str, ...], list[int]] = defaultdict(list)
    for meal in timeline.events_of(EventKind.FOOD):
        foods = [f for f in meal.food_ids if timeline.is_active(EventKind.FOOD, f)]
        upper = min(max_combo_size, len(foods))
        for size in range(min_combo_size, upper + 1):
            # food_ids are sorted, so each subset is already canonical
            for combo in combinations(foods, size):
                series[combo].append(meal.timestamp)

    return {
        CauseKey(CauseType.FOOD_COMBINATION, combo): tuple(sorted(ts))
        for combo, ts in sorted(series.items())
        if len(ts) >= min_recurrence
    }


def scan_combinations(
    timeline: Timeline,
    min_combo_size: int = 2,
    max_combo_size: int = 4,
    lag_tolerance_hours: float = 24.0,
    min_recurrence: int = 2,
) -> list[RawPairStats]:
    """
    Scan recurring food combinations against every effect.

    Uses the same hit/exposure logic as the single-cause scan; an exposure
    is one meal containing every food of the combination.
    """
    if timeline.is_empty or not timeline.effects:
        return []

    causes = combination_series(
        timeline, min_combo_size, max_combo_size, min_recurrence
    )
    stats = scan_causes(timeline, causes, lag_tolerance_hours)
    logger.debug(
        "Combination scan complete",
        combinations=len(causes),
        pairs=len(stats),
        lag_hours=lag_tolerance_hours,
    )
    return stats


def suppress_redundant_combinations(
    results: Iterable[CorrelationResult],
    min_score_delta: float = 0.1,
    synergy_threshold: float = 0.15,
    reference_level: ConfidenceLevel = ConfidenceLevel.HIGH,
) -> list[CorrelationResult]:
    """
    Drop combinations that add nothing over their constituent foods.

    A combination is suppressed when one of its foods already has a
    ``reference_level`` result for the same effect and the combination's
    score lies within ``min_score_delta`` of the best such constituent.
    Retained combinations are annotated with the strongest constituent
    score and whether they beat it by more than ``synergy_threshold``.
    Non-combination results pass through unchanged, order is preserved.
    """
    results = list(results)
    singles: dict[tuple[str, object, str], CorrelationResult] = {
        (r.cause_refs[0], r.effect_type, r.effect_ref): r
        for r in results
        if r.cause_type == CauseType.FOOD
    }

    kept: list[CorrelationResult] = []
    suppressed = 0
    for result in results:
        if not result.is_combination:
            kept.append(result)
            continue

        constituents = [
            singles[key]
            for key in (
                (ref, result.effect_type, result.effect_ref) for ref in result.cause_refs
            )
            if key in singles
        ]
        references = [c for c in constituents if c.confidence_level == reference_level]
        if references:
            best = max(references, key=lambda c: abs(c.correlation_score))
            delta = abs(result.correlation_score - best.correlation_score)
            if delta < min_score_delta and not math.isclose(
                delta, min_score_delta, abs_tol=1e-9
            ):
                suppressed += 1
                continue

        individual_max = max(
            (abs(c.correlation_score) for c in constituents), default=0.0
        )
        kept.append(
            replace(
                result,
                individual_max_correlation=individual_max,
                is_synergistic=abs(result.correlation_score)
                > individual_max + synergy_threshold,
            )
        )

    if suppressed:
        logger.debug("Suppressed redundant combinations", count=suppressed)
    return kept
