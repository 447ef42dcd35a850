"""Correlation analysis engine: the single entry point for callers.

The engine fetches the event log once per invocation, then runs a pure,
synchronous pipeline in a worker thread:

    normalize -> scan pairs + combinations -> score -> suppress -> results

There is no state shared between invocations; repeated calls over an
unchanged event log return identical results.
"""

import asyncio
import time
from collections.abc import Callable, Iterable, Mapping, Sequence
from typing import Any, Protocol

import structlog

from symptom_insights.analysis.combinations import (
    scan_combinations,
    suppress_redundant_combinations,
)
from symptom_insights.analysis.ranking import DEFAULT_TOP_N, rank
from symptom_insights.analysis.scanner import scan_pairs
from symptom_insights.analysis.scoring import score
from symptom_insights.analysis.timeline import normalize
from symptom_insights.config import (
    MS_PER_DAY,
    EngineConfig,
    build_engine_config,
    validate_window_days,
)
from symptom_insights.errors import ConfigurationError, DataUnavailableError
from symptom_insights.models import (
    AnyEvent,
    CorrelationResult,
    Definition,
    EventKind,
    parse_definition,
    parse_event,
)

logger = structlog.get_logger()

# Streams that have user-managed definitions
DEFINITION_KINDS = (EventKind.SYMPTOM, EventKind.TRIGGER, EventKind.FOOD)


class EventRepository(Protocol):
    """Read-only query contract the engine needs from storage."""

    async def get_events_since(self, kind: EventKind, since: int) -> Sequence[Any]:
        """Records of one stream with ``timestamp >= since`` (epoch millis)."""
        ...

    async def get_active_definitions(self, kind: EventKind) -> Sequence[Any]:
        """Active (not soft-deleted) definitions of one stream."""
        ...


def now_ms() -> int:
    return int(time.time() * 1000)


def _result_order(result: CorrelationResult) -> tuple:
    return (
        result.cause_type.value,
        result.cause_refs,
        result.effect_type.value,
        result.effect_ref,
    )


def analyze(
    events: Iterable[AnyEvent],
    window_days: int,
    now: int,
    config: EngineConfig | Mapping[str, Any] | None = None,
    definitions: Mapping[EventKind, Sequence[Definition]] | None = None,
) -> list[CorrelationResult]:
    """
    Compute all correlation results for an in-memory event log.

    Args:
        events: Parsed events from any of the five streams
        window_days: Lookback window in days
        now: End of the window (epoch millis)
        config: Engine configuration or raw options
        definitions: Known definitions per kind for labels and filtering

    Returns:
        Every scored (cause, effect) pair, unfiltered, in a stable order

    Raises:
        ConfigurationError: on invalid configuration or an oversized workload
    """
    config = build_engine_config(config)
    validate_window_days(window_days, config)

    timeline = normalize(
        events,
        window_days,
        now,
        definitions,
        min_effect_severity=config.min_effect_severity,
        wellness_drop_threshold=config.wellness_drop_threshold,
    )
    if timeline.is_empty:
        return []
    if timeline.event_count > config.max_events and not config.allow_large_analysis:
        raise ConfigurationError(
            f"{timeline.event_count} events exceed maxEvents={config.max_events}; "
            "set allowLargeAnalysis to opt in"
        )

    # Strongest result per pair across lags; lags ascend so ties keep the shorter
    best: dict[tuple, CorrelationResult] = {}
    for lag_hours in config.lags_to_scan:
        stats = scan_pairs(timeline, lag_hours) + scan_combinations(
            timeline,
            config.min_combo_size,
            config.max_combo_size,
            lag_hours,
            config.min_combo_recurrence,
        )
        for pair in stats:
            result = score(pair, config)
            key = _result_order(result)
            current = best.get(key)
            if current is None or abs(result.correlation_score) > abs(
                current.correlation_score
            ):
                best[key] = result

    results = sorted(best.values(), key=_result_order)
    return suppress_redundant_combinations(
        results,
        min_score_delta=config.combo_score_delta,
        synergy_threshold=config.synergy_threshold,
    )


class CorrelationEngine:
    """
    Service that runs correlation analysis over an event repository.

    Provides:
    - One-shot fetch-then-compute analysis
    - Shared ranking policy for dashboards
    """

    def __init__(
        self,
        repository: EventRepository,
        config: EngineConfig | Mapping[str, Any] | None = None,
        clock: Callable[[], int] | None = None,
    ):
        self.repository = repository
        # Invalid configuration fails here, before any fetch or scan
        self.config = build_engine_config(config)
        self.clock = clock or now_ms

    async def fetch_events(
        self, since: int
    ) -> tuple[list[AnyEvent], dict[EventKind, list[Definition]]]:
        """
        Fetch and validate all five streams plus definitions.

        Raises:
            DataUnavailableError: if the repository fails or returns
                malformed records
        """
        kinds = list(EventKind)
        try:
            batches = await asyncio.gather(
                *(self.repository.get_events_since(kind, since) for kind in kinds),
                *(self.repository.get_active_definitions(kind) for kind in DEFINITION_KINDS),
            )
        except DataUnavailableError:
            raise
        except Exception as e:
            logger.error("Event repository fetch failed", error=str(e))
            raise DataUnavailableError(f"Event repository fetch failed: {e}") from e

        event_batches = batches[: len(kinds)]
        definition_batches = batches[len(kinds) :]

        events = [
            parse_event(record, kind)
            for kind, batch in zip(kinds, event_batches)
            for record in batch or ()
        ]
        definitions = {
            kind: [parse_definition(record, kind) for record in batch or ()]
            for kind, batch in zip(DEFINITION_KINDS, definition_batches)
        }
        return events, definitions

    async def run_correlation_analysis(
        self, window_days: int = 90, now: int | None = None
    ) -> list[CorrelationResult]:
        """
        Run a complete correlation analysis.

        Args:
            window_days: Lookback window in days
            now: End of the window (epoch millis); defaults to the clock

        Returns:
            All computed results, unfiltered; use rank() for dashboards
        """
        validate_window_days(window_days, self.config)
        now = self.clock() if now is None else now
        since = now - window_days * MS_PER_DAY

        events, definitions = await self.fetch_events(since)
        # The scan is CPU-bound; run it in a worker thread so the loop stays responsive
        results = await asyncio.to_thread(
            analyze, events, window_days, now, self.config, definitions
        )

        logger.info(
            "Correlation analysis complete",
            events=len(events),
            results=len(results),
            window_days=window_days,
        )
        return results

    def rank(
        self,
        results: Iterable[CorrelationResult],
        exclude_low_confidence: bool = True,
        top_n: int | None = DEFAULT_TOP_N,
    ) -> list[CorrelationResult]:
        """Filter and sort results with the shared dashboard policy."""
        return rank(results, exclude_low_confidence, top_n)


async def run_correlation_analysis(
    repository: EventRepository,
    window_days: int = 90,
    config: EngineConfig | Mapping[str, Any] | None = None,
) -> list[CorrelationResult]:
    """Convenience wrapper around CorrelationEngine.run_correlation_analysis."""
    engine = CorrelationEngine(repository, config)
    return await engine.run_correlation_analysis(window_days)
