"""Tests for the correlation analysis engine."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from symptom_insights.analysis.engine import (
    CorrelationEngine,
    analyze,
    run_correlation_analysis,
)
from symptom_insights.config import MS_PER_DAY, MS_PER_HOUR, EngineConfig
from symptom_insights.errors import ConfigurationError, DataUnavailableError
from symptom_insights.models import (
    CauseType,
    ConfidenceLevel,
    Definition,
    EffectType,
    EventKind,
    FoodEvent,
    SymptomEvent,
    TriggerEvent,
)
from symptom_insights.repositories import InMemoryEventRepository

START = 1_700_006_400_000
NOW = START + 30 * MS_PER_DAY


def at(day: int, hour: int = 0) -> int:
    return START + day * MS_PER_DAY + hour * MS_PER_HOUR


def sleep_fatigue_events() -> list:
    """Poor sleep on five nights; fatigue follows three of them."""
    return [
        *[
            TriggerEvent(id=f"t{day}", timestamp=at(day, 22), ref_id="poor_sleep")
            for day in (1, 5, 10, 15, 20)
        ],
        SymptomEvent(id="s1", timestamp=at(1, 23), ref_id="fatigue", magnitude=6),
        SymptomEvent(id="s2", timestamp=at(6, 10), ref_id="fatigue", magnitude=5),
        SymptomEvent(id="s3", timestamp=at(11), ref_id="fatigue", magnitude=7),
        SymptomEvent(id="s4", timestamp=at(25), ref_id="fatigue", magnitude=4),
    ]


DEFINITIONS = [
    Definition(id="poor_sleep", name="Poor Sleep", kind=EventKind.TRIGGER),
    Definition(id="fatigue", name="Fatigue", kind=EventKind.SYMPTOM),
]


def meal(meal_id: str, day: int, *foods: str) -> FoodEvent:
    return FoodEvent(id=meal_id, timestamp=at(day, 12), ref_id=meal_id, food_ids=list(foods))


def food_combination_events() -> list:
    """Bloating follows every dairy+wheat meal but neither food alone."""
    return [
        *[meal(f"c{day}", day, "dairy", "wheat") for day in (1, 4, 8, 12)],
        *[meal(f"d{day}", day, "dairy") for day in (2, 15, 18, 22)],
        *[meal(f"w{day}", day, "wheat") for day in (3, 16, 19, 23)],
        *[
            SymptomEvent(id=f"b{day}", timestamp=at(day, 15), ref_id="bloating")
            for day in (1, 4, 8, 12)
        ],
    ]


class TestAnalyze:
    """Tests for the pure analyze() pipeline."""

    def test_single_trigger_scenario(self):
        """Test one trigger followed by a symptom three times out of five."""
        results = analyze(sleep_fatigue_events(), 30, NOW)

        assert len(results) == 1
        result = results[0]
        assert result.cause_type == CauseType.TRIGGER
        assert result.effect_type == EffectType.SYMPTOM
        assert result.occurrences == 5
        assert result.hits == 3
        assert result.effect_base_rate == pytest.approx(4 / 30)
        assert result.correlation_score == pytest.approx(0.466667, abs=1e-6)
        assert result.confidence_level == ConfidenceLevel.MEDIUM

    def test_empty_input(self):
        """Test an empty event log yields no results."""
        assert analyze([], 30, NOW) == []

    def test_no_effects(self):
        events = [TriggerEvent(id="t1", timestamp=at(1), ref_id="stress")]
        assert analyze(events, 30, NOW) == []

    def test_deterministic(self):
        """Test repeated runs over the same log are identical."""
        events = sleep_fatigue_events() + food_combination_events()
        first = analyze(events, 30, NOW)
        second = analyze(list(reversed(events)), 30, NOW)
        assert first == second

    def test_extra_hit_raises_score(self):
        """Test adding a hit increases the score."""
        baseline = analyze(sleep_fatigue_events(), 30, NOW)[0]
        events = sleep_fatigue_events() + [
            SymptomEvent(id="s5", timestamp=at(21, 10), ref_id="fatigue")
        ]
        improved = analyze(events, 30, NOW)[0]

        assert improved.hits == 4
        assert improved.correlation_score > baseline.correlation_score
        assert improved.correlation_score == pytest.approx(0.8 - 5 / 30, abs=1e-6)

    def test_future_events_ignored(self):
        events = sleep_fatigue_events() + [
            TriggerEvent(id="future", timestamp=NOW + MS_PER_HOUR, ref_id="poor_sleep")
        ]
        assert analyze(events, 30, NOW)[0].occurrences == 5

    def test_labels_from_definitions(self):
        definitions = {
            EventKind.TRIGGER: [DEFINITIONS[0]],
            EventKind.SYMPTOM: [DEFINITIONS[1]],
        }
        result = analyze(sleep_fatigue_events(), 30, NOW, definitions=definitions)[0]
        assert result.cause_label == "Poor Sleep"
        assert result.effect_label == "Fatigue"

    def test_food_combination_synergy(self):
        """Test a combination stronger than its foods is kept and flagged."""
        results = analyze(food_combination_events(), 30, NOW)
        by_cause = {r.cause_ref: r for r in results}

        assert by_cause["dairy"].occurrences == 8
        assert by_cause["dairy"].hits == 4
        assert by_cause["dairy"].confidence_level == ConfidenceLevel.HIGH
        assert by_cause["dairy"].correlation_score == pytest.approx(0.366667, abs=1e-6)

        combo = by_cause["dairy+wheat"]
        assert combo.cause_type == CauseType.FOOD_COMBINATION
        assert combo.occurrences == 4
        assert combo.hits == 4
        assert combo.correlation_score == pytest.approx(0.866667, abs=1e-6)
        assert combo.individual_max_correlation == pytest.approx(0.366667, abs=1e-6)
        assert combo.is_synergistic

    def test_lag_sweep_keeps_strongest(self):
        """Test the strongest lag per pair is reported."""
        config = EngineConfig(lag_candidates_hours=(2, 24))
        result = analyze(sleep_fatigue_events(), 30, NOW, config)[0]
        assert result.lag_hours == 24
        assert result.hits == 3

    def test_event_limit(self):
        """Test oversized logs require opting in."""
        with pytest.raises(ConfigurationError, match="maxEvents"):
            analyze(sleep_fatigue_events(), 30, NOW, {"maxEvents": 3})

        results = analyze(
            sleep_fatigue_events(), 30, NOW, {"maxEvents": 3, "allowLargeAnalysis": True}
        )
        assert len(results) == 1

    def test_invalid_config(self):
        with pytest.raises(ConfigurationError):
            analyze(sleep_fatigue_events(), 30, NOW, {"minComboSize": 5, "maxComboSize": 2})


class TestCorrelationEngine:
    """Tests for CorrelationEngine."""

    @pytest.fixture
    def repository(self):
        return InMemoryEventRepository(sleep_fatigue_events(), DEFINITIONS)

    @pytest.mark.asyncio
    async def test_run_correlation_analysis(self, repository):
        """Test a full fetch-then-compute run."""
        engine = CorrelationEngine(repository, clock=lambda: NOW)
        results = await engine.run_correlation_analysis(30)

        assert len(results) == 1
        assert results[0].cause_label == "Poor Sleep"
        assert results[0].hits == 3

    @pytest.mark.asyncio
    async def test_explicit_now(self, repository):
        engine = CorrelationEngine(repository)
        results = await engine.run_correlation_analysis(30, now=NOW)
        assert results[0].window_days == 30

    @pytest.mark.asyncio
    async def test_repeated_runs_identical(self, repository):
        engine = CorrelationEngine(repository, clock=lambda: NOW)
        assert await engine.run_correlation_analysis(30) == await engine.run_correlation_analysis(30)

    @pytest.mark.asyncio
    async def test_inactive_trigger_excluded(self):
        """Test soft-deleted definitions take no part in the analysis."""
        definitions = DEFINITIONS + [
            Definition(id="poor_sleep_old", name="Old", kind=EventKind.TRIGGER, is_active=False),
        ]
        events = sleep_fatigue_events() + [
            TriggerEvent(id="x1", timestamp=at(1, 22), ref_id="poor_sleep_old"),
            TriggerEvent(id="x2", timestamp=at(5, 22), ref_id="poor_sleep_old"),
        ]
        engine = CorrelationEngine(
            InMemoryEventRepository(events, definitions), clock=lambda: NOW
        )
        results = await engine.run_correlation_analysis(30)
        assert [r.cause_ref for r in results] == ["poor_sleep"]

    @pytest.mark.asyncio
    async def test_last_trigger_soft_deleted(self):
        """Test events of the only trigger are ignored once it is soft-deleted."""
        definitions = [
            Definition(id="poor_sleep", name="Poor Sleep", kind=EventKind.TRIGGER, is_active=False),
            DEFINITIONS[1],
        ]
        engine = CorrelationEngine(
            InMemoryEventRepository(sleep_fatigue_events(), definitions), clock=lambda: NOW
        )
        assert await engine.run_correlation_analysis(30) == []

    @pytest.mark.asyncio
    async def test_fetch_supplies_every_definition_kind(self):
        repository = InMemoryEventRepository(sleep_fatigue_events())
        engine = CorrelationEngine(repository, clock=lambda: NOW)

        _, definitions = await engine.fetch_events(START)

        assert definitions == {
            EventKind.SYMPTOM: [],
            EventKind.TRIGGER: [],
            EventKind.FOOD: [],
        }

    @pytest.mark.asyncio
    async def test_window_validated_before_fetch(self):
        """Test an oversized window fails without touching the repository."""
        repository = MagicMock()
        repository.get_events_since = AsyncMock()
        repository.get_active_definitions = AsyncMock()
        engine = CorrelationEngine(repository, clock=lambda: NOW)

        with pytest.raises(ConfigurationError):
            await engine.run_correlation_analysis(365)
        repository.get_events_since.assert_not_called()

    def test_invalid_config_fails_at_construction(self):
        with pytest.raises(ConfigurationError):
            CorrelationEngine(MagicMock(), {"unknownOption": 1})

    @pytest.mark.asyncio
    async def test_repository_failure(self):
        """Test storage errors surface as DataUnavailableError."""
        repository = MagicMock()
        repository.get_events_since = AsyncMock(side_effect=RuntimeError("connection reset"))
        repository.get_active_definitions = AsyncMock(return_value=[])
        engine = CorrelationEngine(repository, clock=lambda: NOW)

        with pytest.raises(DataUnavailableError, match="connection reset"):
            await engine.run_correlation_analysis(30)

    @pytest.mark.asyncio
    async def test_malformed_record(self):
        """Test malformed records are rejected rather than skipped."""
        repository = InMemoryEventRepository(
            [{"id": "t1", "kind": "trigger", "ref_id": "poor_sleep"}]
        )
        engine = CorrelationEngine(repository, clock=lambda: NOW)

        with pytest.raises(DataUnavailableError):
            await engine.run_correlation_analysis(30)

    @pytest.mark.asyncio
    async def test_empty_repository(self):
        engine = CorrelationEngine(InMemoryEventRepository(), clock=lambda: NOW)
        assert await engine.run_correlation_analysis(30) == []

    @pytest.mark.asyncio
    async def test_rank(self, repository):
        engine = CorrelationEngine(repository, clock=lambda: NOW)
        results = await engine.run_correlation_analysis(30)
        assert engine.rank(results) == results

    @pytest.mark.asyncio
    async def test_module_level_entry_point(self, repository):
        with pytest.MonkeyPatch.context() as mp:
            mp.setattr("symptom_insights.analysis.engine.now_ms", lambda: NOW)
            results = await run_correlation_analysis(repository, 30)
        assert len(results) == 1
