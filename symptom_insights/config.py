"""Configuration management for the correlation engine."""

from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator
from pydantic.alias_generators import to_camel
from pydantic_settings import BaseSettings, SettingsConfigDict

from symptom_insights.errors import ConfigurationError

MS_PER_HOUR = 60 * 60 * 1000
MS_PER_DAY = 24 * MS_PER_HOUR


class EngineConfig(BaseModel):
    """Tunable thresholds for scanning and scoring.

    Options are accepted in snake_case or camelCase
    (``lag_tolerance_hours`` / ``lagToleranceHours``).
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
        frozen=True,
    )

    # Scanning
    lag_tolerance_hours: float = Field(default=24.0, gt=0)
    lag_candidates_hours: tuple[float, ...] | None = None
    min_combo_size: int = Field(default=2, ge=2)
    max_combo_size: int = Field(default=4, ge=2)
    min_combo_recurrence: int = Field(default=2, ge=2)

    # Effect qualification
    min_effect_severity: float | None = Field(default=None, ge=0.0, le=10.0)
    wellness_drop_threshold: float = Field(default=2.0, gt=0)

    # Scoring
    minimum_sample_size: int = Field(default=3, ge=1)
    high_sample_threshold: int = Field(default=8, ge=1)
    low_score_cutoff: float = Field(default=0.15, ge=0.0, le=1.0)
    high_score_cutoff: float = Field(default=0.3, ge=0.0, le=1.0)

    # Combination filtering
    combo_score_delta: float = Field(default=0.1, ge=0.0, le=2.0)
    synergy_threshold: float = Field(default=0.15, ge=0.0, le=2.0)

    # Work bounds
    max_window_days: int = Field(default=90, ge=1)
    max_events: int = Field(default=5000, ge=1)
    allow_large_analysis: bool = False

    @model_validator(mode="after")
    def _check_consistency(self) -> "EngineConfig":
        if self.min_combo_size > self.max_combo_size:
            raise ValueError(
                f"minComboSize ({self.min_combo_size}) must not exceed "
                f"maxComboSize ({self.max_combo_size})"
            )
        if self.minimum_sample_size > self.high_sample_threshold:
            raise ValueError(
                "minimumSampleSize must not exceed highSampleThreshold"
            )
        if self.low_score_cutoff > self.high_score_cutoff:
            raise ValueError("lowScoreCutoff must not exceed highScoreCutoff")
        if self.lag_candidates_hours is not None:
            if not self.lag_candidates_hours:
                raise ValueError("lagCandidatesHours must not be empty")
            if any(lag <= 0 for lag in self.lag_candidates_hours):
                raise ValueError("lagCandidatesHours must all be positive")
        return self

    @property
    def lags_to_scan(self) -> tuple[float, ...]:
        """Lag tolerances (hours) the engine scans, ascending."""
        if self.lag_candidates_hours:
            return tuple(sorted(set(self.lag_candidates_hours)))
        return (self.lag_tolerance_hours,)


class Settings(BaseSettings):
    """Process settings from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    # Database
    database_url: str = "postgresql://localhost/symptom_insights"
    db_pool_size: int = 5

    # Paths
    config_dir: Path = Path("config")

    # Analysis defaults
    default_window_days: int = 90
    analysis_interval_hours: int = 24
    analysis_check_minutes: int = 15


def build_engine_config(
    options: EngineConfig | Mapping[str, Any] | None = None,
) -> EngineConfig:
    """Validate engine options, raising ConfigurationError on bad input."""
    if isinstance(options, EngineConfig):
        return options
    if options is None:
        return EngineConfig()
    if not isinstance(options, Mapping):
        raise ConfigurationError(
            f"Engine options must be a mapping, got {type(options).__name__}"
        )
    try:
        return EngineConfig.model_validate(dict(options))
    except ValidationError as e:
        raise ConfigurationError(f"Invalid engine configuration: {e}") from e


def load_engine_config(config_path: Path | None = None) -> EngineConfig:
    """Load engine configuration from a YAML file.

    The file may hold the options at the top level or under an ``engine`` key.
    """
    if config_path is None:
        config_path = Settings().config_dir / "engine.yaml"

    try:
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Cannot read {config_path}: {e}") from e

    if not isinstance(data, Mapping):
        raise ConfigurationError(f"{config_path} must contain a mapping")
    return build_engine_config(data.get("engine", data))


def validate_window_days(window_days: int, config: EngineConfig) -> None:
    """Fail fast on an unusable or oversized analysis window."""
    if isinstance(window_days, bool) or not isinstance(window_days, int):
        raise ConfigurationError(f"window_days must be an integer, got {window_days!r}")
    if window_days <= 0:
        raise ConfigurationError(f"window_days must be positive, got {window_days}")
    if window_days > config.max_window_days and not config.allow_large_analysis:
        raise ConfigurationError(
            f"window_days={window_days} exceeds maxWindowDays={config.max_window_days}; "
            "set allowLargeAnalysis to opt in"
        )
