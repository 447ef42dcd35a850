"""Correlation scoring and confidence classification."""

import math

from symptom_insights.analysis.scanner import RawPairStats
from symptom_insights.config import EngineConfig
from symptom_insights.models import ConfidenceLevel, CorrelationResult

# Scores are rounded so that threshold comparisons are stable
SCORE_PRECISION = 6


def _normal_cdf(x: float) -> float:
    """Approximate cumulative distribution function for standard normal."""
    return 0.5 * (1 + math.erf(x / math.sqrt(2)))


def binomial_p_value(hits: int, exposures: int, base_rate: float) -> float:
    """
    Two-sided p-value of observing ``hits`` in ``exposures`` trials.

    Uses the normal approximation to the binomial with the effect base rate
    as the null-hypothesis success probability.
    """
    if exposures <= 0:
        return 1.0
    expected = exposures * base_rate
    variance = exposures * base_rate * (1 - base_rate)
    if variance == 0:
        # Degenerate null: any deviation is impossible under it
        return 1.0 if hits == expected else 0.0
    z = (hits - expected) / math.sqrt(variance)
    return max(0.0, min(1.0, 2 * (1 - _normal_cdf(abs(z)))))


def classify_confidence(
    exposures: int, correlation_score: float, config: EngineConfig
) -> ConfidenceLevel:
    """
    Classify a result as low, medium or high confidence.

    Sample-size thresholds are inclusive, score cutoffs are exclusive: a
    score exactly at ``low_score_cutoff`` is low, one exactly at
    ``high_score_cutoff`` cannot be high.
    """
    magnitude = abs(correlation_score)
    if exposures < config.minimum_sample_size or magnitude <= config.low_score_cutoff:
        return ConfidenceLevel.LOW
    if exposures >= config.high_sample_threshold and magnitude > config.high_score_cutoff:
        return ConfidenceLevel.HIGH
    return ConfidenceLevel.MEDIUM


def score(stats: RawPairStats, config: EngineConfig | None = None) -> CorrelationResult:
    """
    Convert raw pair counts into a CorrelationResult.

    The score is the exposure rate minus the effect base rate, clamped to
    [-1, 1]: every exposure followed by the effect with a near-zero base rate
    approaches +1, while an effect that never follows exposure scores the
    negative of its base rate.

    Raises:
        ValueError: if ``stats.exposures`` is zero; the scanner never emits
            such pairs
    """
    if stats.exposures <= 0:
        raise ValueError(
            f"Pair {stats.cause_ref!r} -> {stats.effect_ref!r} reached the scorer "
            "with zero exposures"
        )
    config = config or EngineConfig()

    exposure_rate = stats.hits / stats.exposures
    raw_score = max(-1.0, min(1.0, exposure_rate - stats.effect_base_rate))
    correlation_score = round(raw_score, SCORE_PRECISION)

    return CorrelationResult(
        cause_type=stats.cause_type,
        cause_refs=stats.cause_refs,
        cause_label=stats.cause_label,
        effect_type=stats.effect_type,
        effect_ref=stats.effect_ref,
        effect_label=stats.effect_label,
        correlation_score=correlation_score,
        confidence_level=classify_confidence(stats.exposures, correlation_score, config),
        occurrences=stats.exposures,
        hits=stats.hits,
        lag_hours=stats.lag_hours,
        window_days=stats.window_days,
        exposure_rate=exposure_rate,
        effect_base_rate=stats.effect_base_rate,
        p_value=binomial_p_value(stats.hits, stats.exposures, stats.effect_base_rate),
    )
