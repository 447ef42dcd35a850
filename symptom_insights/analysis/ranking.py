"""Ranking of correlation results for dashboards."""

from collections.abc import Iterable

from symptom_insights.errors import ConfigurationError
from symptom_insights.models import ConfidenceLevel, CorrelationResult

DEFAULT_TOP_N = 5


def rank_key(result: CorrelationResult) -> tuple:
    """Sort key: strongest first, then best supported, then alphabetical."""
    return (
        -abs(result.correlation_score),
        -result.occurrences,
        result.cause_label,
        result.effect_label,
        result.cause_ref,
        result.effect_ref,
    )


def rank(
    results: Iterable[CorrelationResult],
    exclude_low_confidence: bool = True,
    top_n: int | None = DEFAULT_TOP_N,
) -> list[CorrelationResult]:
    """
    Filter, sort and truncate correlation results.

    Args:
        results: Results from the engine, in any order
        exclude_low_confidence: Drop results whose confidence is low
        top_n: Maximum number of results to return; None keeps all

    Returns:
        Results sorted by descending absolute score, ties broken by
        descending occurrences then ascending cause label
    """
    if top_n is not None and top_n < 0:
        raise ConfigurationError(f"top_n must not be negative, got {top_n}")

    candidates = [
        r
        for r in results
        if not (exclude_low_confidence and r.confidence_level == ConfidenceLevel.LOW)
    ]
    candidates.sort(key=rank_key)
    if top_n is None:
        return candidates
    return candidates[:top_n]
