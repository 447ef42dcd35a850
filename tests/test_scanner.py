"""Tests for the co-occurrence / lag scanner."""

import pytest

from symptom_insights.analysis.scanner import (
    CauseKey,
    cause_series,
    count_hits,
    credited_exposures,
    effect_base_rate,
    lag_to_ms,
    scan_pairs,
)
from symptom_insights.analysis.timeline import normalize
from symptom_insights.config import MS_PER_DAY, MS_PER_HOUR
from symptom_insights.models import (
    CauseType,
    Definition,
    EffectType,
    EventKind,
    FoodEvent,
    SymptomEvent,
    TriggerEvent,
)

START = 1_700_006_400_000
NOW = START + 30 * MS_PER_DAY
LAG = 24 * MS_PER_HOUR


def at(day: int, hour: int = 0) -> int:
    return START + day * MS_PER_DAY + hour * MS_PER_HOUR


class TestCountHits:
    """Tests for count_hits()."""

    def test_effect_within_lag(self):
        assert count_hits([0], [5], 10) == 1

    def test_lag_boundaries(self):
        """Test the lag window is closed at both ends."""
        assert count_hits([100], [100], 10) == 1
        assert count_hits([100], [110], 10) == 1
        assert count_hits([100], [111], 10) == 0

    def test_effect_before_exposure(self):
        assert count_hits([100], [99], 10) == 0

    def test_no_double_counting(self):
        """Test one effect event is credited to a single exposure."""
        exposures = [0, 1 * MS_PER_HOUR]
        effects = [2 * MS_PER_HOUR]
        assert count_hits(exposures, effects, LAG) == 1

    def test_burst_credits_earliest_exposure(self):
        """Test three exposures before one effect yield a single hit for the first."""
        exposures = [0, 1 * MS_PER_HOUR, 2 * MS_PER_HOUR]
        effects = [3 * MS_PER_HOUR]

        assert count_hits(exposures, effects, LAG) == 1
        assert credited_exposures(exposures, effects, LAG) == [0]

    def test_earliest_exposure_claims(self):
        """Test later exposures can still claim later effects."""
        exposures = [0, 1 * MS_PER_HOUR]
        effects = [2 * MS_PER_HOUR, 3 * MS_PER_HOUR]
        assert count_hits(exposures, effects, LAG) == 2

    def test_empty(self):
        assert count_hits([], [1, 2], 10) == 0
        assert count_hits([1, 2], [], 10) == 0


class TestEffectBaseRate:
    """Tests for effect_base_rate()."""

    def test_fraction_of_windows(self):
        """Test base rate counts occupied lag-sized windows."""
        effects = [at(1, 23), at(6, 10), at(11), at(25)]
        assert effect_base_rate(effects, START, NOW, LAG) == pytest.approx(4 / 30)

    def test_same_window_counted_once(self):
        effects = [at(1, 1), at(1, 5), at(1, 23)]
        assert effect_base_rate(effects, START, NOW, LAG) == pytest.approx(1 / 30)

    def test_effect_at_window_end(self):
        """Test an effect at the window end falls in the last window."""
        assert effect_base_rate([NOW], START, NOW, LAG) == pytest.approx(1 / 30)

    def test_partial_last_window(self):
        """Test a trailing partial window still counts as a window."""
        end = START + 36 * MS_PER_HOUR
        assert effect_base_rate([end], START, end, LAG) == pytest.approx(1 / 2)

    def test_lag_must_be_positive(self):
        with pytest.raises(ValueError):
            lag_to_ms(0)


class TestScanPairs:
    """Tests for scan_pairs()."""

    @pytest.fixture
    def timeline(self):
        events = [
            *[
                TriggerEvent(id=f"t{day}", timestamp=at(day, 22), ref_id="poor_sleep")
                for day in (1, 5, 10, 15, 20)
            ],
            SymptomEvent(id="s1", timestamp=at(1, 23), ref_id="fatigue"),
            SymptomEvent(id="s2", timestamp=at(6, 10), ref_id="fatigue"),
            SymptomEvent(id="s3", timestamp=at(11), ref_id="fatigue"),
            SymptomEvent(id="s4", timestamp=at(25), ref_id="fatigue"),
        ]
        definitions = {
            EventKind.TRIGGER: [
                Definition(id="poor_sleep", name="Poor Sleep", kind=EventKind.TRIGGER)
            ],
            EventKind.SYMPTOM: [
                Definition(id="fatigue", name="Fatigue", kind=EventKind.SYMPTOM)
            ],
        }
        return normalize(events, 30, NOW, definitions)

    def test_raw_counts(self, timeline):
        """Test exposures, hits and base rate for a single pair."""
        stats = scan_pairs(timeline, 24)

        assert len(stats) == 1
        pair = stats[0]
        assert pair.cause_type == CauseType.TRIGGER
        assert pair.cause_ref == "poor_sleep"
        assert pair.cause_label == "Poor Sleep"
        assert pair.effect_type == EffectType.SYMPTOM
        assert pair.effect_label == "Fatigue"
        assert pair.exposures == 5
        assert pair.hits == 3
        assert pair.effect_base_rate == pytest.approx(4 / 30)
        assert pair.lag_hours == 24
        assert pair.window_days == 30

    def test_shorter_lag(self, timeline):
        stats = scan_pairs(timeline, 2)
        assert stats[0].hits == 2

    def test_empty_timeline(self):
        assert scan_pairs(normalize([], 30, NOW)) == []

    def test_no_effects(self):
        timeline = normalize([TriggerEvent(id="t1", timestamp=at(1), ref_id="x")], 30, NOW)
        assert scan_pairs(timeline) == []


class TestCauseSeries:
    """Tests for cause_series()."""

    def test_single_foods_from_meals(self):
        """Test each food of a meal is an exposure of that food."""
        events = [
            FoodEvent(id="m1", timestamp=at(1), ref_id="m1", food_ids=["dairy", "wheat"]),
            FoodEvent(id="m2", timestamp=at(2), ref_id="m2", food_ids=["dairy"]),
        ]
        series = cause_series(normalize(events, 30, NOW))

        assert series[CauseKey(CauseType.FOOD, ("dairy",))] == (at(1), at(2))
        assert series[CauseKey(CauseType.FOOD, ("wheat",))] == (at(1),)

    def test_inactive_foods_skipped(self):
        events = [
            FoodEvent(id="m1", timestamp=at(1), ref_id="m1", food_ids=["dairy", "wheat"]),
        ]
        definitions = {
            EventKind.FOOD: [Definition(id="dairy", name="Dairy", kind=EventKind.FOOD)]
        }
        series = cause_series(normalize(events, 30, NOW, definitions))
        assert list(series) == [CauseKey(CauseType.FOOD, ("dairy",))]
