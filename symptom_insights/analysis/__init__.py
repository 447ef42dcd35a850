"""Correlation analysis pipeline: windowing, scanning, scoring and ranking."""

from symptom_insights.analysis.combinations import (
    combination_series,
    scan_combinations,
    suppress_redundant_combinations,
)
from symptom_insights.analysis.engine import (
    CorrelationEngine,
    EventRepository,
    analyze,
    run_correlation_analysis,
)
from symptom_insights.analysis.ranking import rank
from symptom_insights.analysis.scanner import (
    CauseKey,
    RawPairStats,
    count_hits,
    credited_exposures,
    effect_base_rate,
    scan_pairs,
)
from symptom_insights.analysis.scoring import binomial_p_value, classify_confidence, score
from symptom_insights.analysis.timeline import EffectKey, Timeline, normalize

__all__ = [
    # Windowing
    "EffectKey",
    "Timeline",
    "normalize",
    # Scanning
    "CauseKey",
    "RawPairStats",
    "count_hits",
    "credited_exposures",
    "effect_base_rate",
    "scan_pairs",
    # Combinations
    "combination_series",
    "scan_combinations",
    "suppress_redundant_combinations",
    # Scoring
    "binomial_p_value",
    "classify_confidence",
    "score",
    # Ranking
    "rank",
    # Engine
    "CorrelationEngine",
    "EventRepository",
    "analyze",
    "run_correlation_analysis",
]
