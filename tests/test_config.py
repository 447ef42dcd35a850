"""Tests for configuration management."""

from pathlib import Path

import pytest
import yaml

from symptom_insights.config import (
    EngineConfig,
    Settings,
    build_engine_config,
    load_engine_config,
    validate_window_days,
)
from symptom_insights.errors import ConfigurationError


class TestEngineConfig:
    """Tests for EngineConfig."""

    def test_defaults(self):
        """Test default thresholds."""
        config = EngineConfig()
        assert config.lag_tolerance_hours == 24.0
        assert config.min_combo_size == 2
        assert config.max_combo_size == 4
        assert config.minimum_sample_size == 3
        assert config.high_sample_threshold == 8
        assert config.max_window_days == 90
        assert config.max_events == 5000
        assert not config.allow_large_analysis

    def test_camel_case_options(self):
        """Test options are accepted in camelCase."""
        config = build_engine_config({"lagToleranceHours": 12, "maxComboSize": 3})
        assert config.lag_tolerance_hours == 12
        assert config.max_combo_size == 3

    def test_snake_case_options(self):
        config = build_engine_config({"lag_tolerance_hours": 6})
        assert config.lag_tolerance_hours == 6

    def test_passthrough(self):
        config = EngineConfig(max_events=10)
        assert build_engine_config(config) is config

    def test_unknown_option_rejected(self):
        """Test typos in option names fail loudly."""
        with pytest.raises(ConfigurationError):
            build_engine_config({"lagTolerance": 12})

    def test_negative_lag_rejected(self):
        with pytest.raises(ConfigurationError):
            build_engine_config({"lagToleranceHours": -1})

    def test_combo_sizes_ordered(self):
        """Test minComboSize must not exceed maxComboSize."""
        with pytest.raises(ConfigurationError, match="minComboSize"):
            build_engine_config({"minComboSize": 4, "maxComboSize": 3})

    def test_combo_size_minimum(self):
        with pytest.raises(ConfigurationError):
            build_engine_config({"minComboSize": 1})

    def test_score_cutoffs_ordered(self):
        with pytest.raises(ConfigurationError):
            build_engine_config({"lowScoreCutoff": 0.5, "highScoreCutoff": 0.3})

    def test_non_mapping_rejected(self):
        with pytest.raises(ConfigurationError):
            build_engine_config(["lagToleranceHours", 12])

    def test_lags_to_scan(self):
        """Test lag candidates are de-duplicated and sorted."""
        config = EngineConfig(lag_candidates_hours=(48, 6, 24, 6))
        assert config.lags_to_scan == (6, 24, 48)

    def test_lags_to_scan_default(self):
        assert EngineConfig(lag_tolerance_hours=12).lags_to_scan == (12,)

    def test_empty_lag_candidates_rejected(self):
        with pytest.raises(ConfigurationError):
            build_engine_config({"lagCandidatesHours": []})

    def test_frozen(self):
        config = EngineConfig()
        with pytest.raises(ValueError):
            config.max_events = 1


class TestLoadEngineConfig:
    """Tests for YAML configuration loading."""

    def test_load_with_engine_key(self, tmp_path: Path):
        """Test options nested under an engine key."""
        path = tmp_path / "engine.yaml"
        path.write_text(yaml.dump({"engine": {"maxComboSize": 3, "highSampleThreshold": 10}}))

        config = load_engine_config(path)

        assert config.max_combo_size == 3
        assert config.high_sample_threshold == 10

    def test_load_top_level(self, tmp_path: Path):
        path = tmp_path / "engine.yaml"
        path.write_text("minimumSampleSize: 5\n")
        assert load_engine_config(path).minimum_sample_size == 5

    def test_load_empty_file(self, tmp_path: Path):
        path = tmp_path / "engine.yaml"
        path.write_text("")
        assert load_engine_config(path) == EngineConfig()

    def test_load_missing_file(self, tmp_path: Path):
        with pytest.raises(ConfigurationError):
            load_engine_config(tmp_path / "missing.yaml")

    def test_load_non_mapping(self, tmp_path: Path):
        path = tmp_path / "engine.yaml"
        path.write_text("- 1\n- 2\n")
        with pytest.raises(ConfigurationError):
            load_engine_config(path)

    def test_shipped_config_is_valid(self):
        """Test the repository's default configuration file loads."""
        path = Path(__file__).parent.parent / "config" / "engine.yaml"
        assert load_engine_config(path) == EngineConfig()


class TestValidateWindowDays:
    """Tests for window validation."""

    def test_valid(self):
        validate_window_days(30, EngineConfig())

    @pytest.mark.parametrize("window_days", [0, -5])
    def test_not_positive(self, window_days):
        with pytest.raises(ConfigurationError, match="positive"):
            validate_window_days(window_days, EngineConfig())

    @pytest.mark.parametrize("window_days", [1.5, "30", True])
    def test_not_integer(self, window_days):
        with pytest.raises(ConfigurationError, match="integer"):
            validate_window_days(window_days, EngineConfig())

    def test_exceeds_maximum(self):
        """Test oversized windows require opting in."""
        with pytest.raises(ConfigurationError, match="allowLargeAnalysis"):
            validate_window_days(365, EngineConfig())

        validate_window_days(365, EngineConfig(allow_large_analysis=True))


class TestSettings:
    """Tests for process settings."""

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "postgresql://example/test")
        monkeypatch.setenv("DEFAULT_WINDOW_DAYS", "30")
        settings = Settings()
        assert settings.database_url == "postgresql://example/test"
        assert settings.default_window_days == 30
