"""Data models for the symptom tracker event log and correlation output."""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Annotated, Any, Literal

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError,
    field_validator,
)

from symptom_insights.errors import DataUnavailableError

# Categorical intensities ("low" / "medium" / "high") mapped onto the 0-10 scale
CATEGORICAL_MAGNITUDES = {"low": 3.0, "medium": 6.0, "high": 9.0}


# ============================================================================
# Event Log Models
# ============================================================================


class EventKind(str, Enum):
    """The five logical event streams."""

    SYMPTOM = "symptom"
    TRIGGER = "trigger"
    FOOD = "food"
    FLARE = "flare"
    DAILY_ENTRY = "daily_entry"


class FlareEventType(str, Enum):
    """Lifecycle events recorded against a flare."""

    CREATED = "created"
    SEVERITY_UPDATE = "severity_update"
    TREND_CHANGE = "trend_change"
    INTERVENTION = "intervention"
    RESOLVED = "resolved"


class FlareTrend(str, Enum):
    IMPROVING = "improving"
    STABLE = "stable"
    WORSENING = "worsening"


class FlareStatus(str, Enum):
    ACTIVE = "active"
    IMPROVING = "improving"
    WORSENING = "worsening"
    RESOLVED = "resolved"


class TimedEvent(BaseModel):
    """Base record for every logged event. Immutable once read."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str = Field(min_length=1)
    timestamp: int = Field(ge=0, description="Epoch milliseconds")
    kind: EventKind
    magnitude: float | None = Field(default=None, ge=0.0, le=10.0)
    ref_id: str = Field(min_length=1, description="Definition this instance refers to")

    @field_validator("id", "ref_id", mode="before")
    @classmethod
    def _coerce_identifier(cls, value: Any) -> Any:
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value

    @field_validator("magnitude", mode="before")
    @classmethod
    def _coerce_magnitude(cls, value: Any) -> Any:
        if isinstance(value, str):
            key = value.strip().lower()
            if key not in CATEGORICAL_MAGNITUDES:
                raise ValueError(f"unknown categorical magnitude {value!r}")
            return CATEGORICAL_MAGNITUDES[key]
        return value


class SymptomEvent(TimedEvent):
    """A logged symptom instance."""

    kind: Literal["symptom"] = "symptom"
    body_region: str | None = None


class TriggerEvent(TimedEvent):
    """A logged trigger exposure."""

    kind: Literal["trigger"] = "trigger"


class FoodEvent(TimedEvent):
    """A meal. ``ref_id`` is the meal id; ``food_ids`` the foods eaten."""

    kind: Literal["food"] = "food"
    food_ids: tuple[str, ...] = Field(min_length=1)
    meal_type: str | None = None

    @field_validator("food_ids", mode="before")
    @classmethod
    def _normalize_food_ids(cls, value: Any) -> Any:
        if isinstance(value, str | bytes) or not isinstance(value, Iterable):
            raise ValueError("food_ids must be a list of food ids")
        # Meals are sets: order and repeats carry no meaning
        return tuple(sorted({str(food_id) for food_id in value}))


class FlareEvent(TimedEvent):
    """A flare lifecycle event. ``ref_id`` is the flare id."""

    kind: Literal["flare"] = "flare"
    body_region: str = "unspecified"
    event_type: FlareEventType = FlareEventType.CREATED
    trend: FlareTrend | None = None
    status: FlareStatus | None = None


class DailyEntryEvent(TimedEvent):
    """A daily wellness check-in. ``magnitude`` is the overall health score."""

    kind: Literal["daily_entry"] = "daily_entry"
    magnitude: float = Field(ge=0.0, le=10.0)


# Tagged union over the five kinds
AnyEvent = Annotated[
    SymptomEvent | TriggerEvent | FoodEvent | FlareEvent | DailyEntryEvent,
    Field(discriminator="kind"),
]

_event_adapter: TypeAdapter[AnyEvent] = TypeAdapter(AnyEvent)


def create_event(kind: EventKind, **kwargs) -> AnyEvent:
    """Factory function to create the appropriate event type."""
    event_classes = {
        EventKind.SYMPTOM: SymptomEvent,
        EventKind.TRIGGER: TriggerEvent,
        EventKind.FOOD: FoodEvent,
        EventKind.FLARE: FlareEvent,
        EventKind.DAILY_ENTRY: DailyEntryEvent,
    }
    event_class = event_classes.get(EventKind(kind))
    if event_class is None:
        raise ValueError(f"Unknown event kind: {kind}")
    return event_class(**kwargs)


def parse_event(record: Any, kind: EventKind | None = None) -> AnyEvent:
    """
    Validate a loosely-typed repository record into a TimedEvent.

    Args:
        record: Mapping from the store, or an already-parsed event
        kind: Stream the record was fetched from; fills in a missing ``kind``
            and rejects records from another stream

    Raises:
        DataUnavailableError: if the record is malformed
    """
    if isinstance(record, TimedEvent):
        data: dict[str, Any] = record.model_dump()
    elif isinstance(record, Mapping):
        data = dict(record)
    else:
        raise DataUnavailableError(
            f"Malformed record: expected a mapping, got {type(record).__name__}"
        )

    if isinstance(data.get("kind"), EventKind):
        data["kind"] = data["kind"].value
    if kind is not None:
        expected = EventKind(kind).value
        data.setdefault("kind", expected)
        if data["kind"] != expected:
            raise DataUnavailableError(
                f"Record {data.get('id')!r} has kind {data['kind']!r}, expected {expected!r}"
            )

    try:
        return _event_adapter.validate_python(data)
    except ValidationError as e:
        raise DataUnavailableError(
            f"Malformed {data.get('kind', 'unknown')} record {data.get('id')!r}: "
            f"{e.error_count()} validation error(s)"
        ) from e


class Definition(BaseModel):
    """A symptom, trigger or food definition the user can log against."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str = Field(min_length=1)
    name: str
    kind: EventKind
    is_active: bool = True
    category: str | None = None

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_identifier(cls, value: Any) -> Any:
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value


def parse_definition(record: Any, kind: EventKind) -> Definition:
    """Validate a definition record, raising DataUnavailableError if malformed."""
    if isinstance(record, Definition):
        return record
    if not isinstance(record, Mapping):
        raise DataUnavailableError(
            f"Malformed definition: expected a mapping, got {type(record).__name__}"
        )
    data = {"kind": EventKind(kind).value, **record}
    try:
        return Definition.model_validate(data)
    except ValidationError as e:
        raise DataUnavailableError(
            f"Malformed {kind} definition {data.get('id')!r}: "
            f"{e.error_count()} validation error(s)"
        ) from e


# ============================================================================
# Correlation Models
# ============================================================================


class CauseType(str, Enum):
    """What kind of candidate cause a result describes."""

    TRIGGER = "trigger"
    FOOD = "food"
    FOOD_COMBINATION = "food_combination"


class EffectType(str, Enum):
    """What kind of candidate effect a result describes."""

    SYMPTOM = "symptom"
    FLARE = "flare"
    WELLNESS_DROP = "wellness_drop"


class ConfidenceLevel(str, Enum):
    """Discrete confidence combining sample size and score magnitude."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass(frozen=True)
class CorrelationResult:
    """A scored association between a candidate cause and effect."""

    cause_type: CauseType
    cause_refs: tuple[str, ...]
    cause_label: str
    effect_type: EffectType
    effect_ref: str
    effect_label: str
    correlation_score: float  # -1 to 1
    confidence_level: ConfidenceLevel
    occurrences: int  # exposures of the cause
    hits: int
    lag_hours: float
    window_days: int
    exposure_rate: float
    effect_base_rate: float
    p_value: float = 1.0

    # Food combinations only
    is_synergistic: bool = False
    individual_max_correlation: float | None = None

    @property
    def cause_ref(self) -> str:
        """Stable identifier of the cause; combinations join their food ids."""
        return "+".join(self.cause_refs)

    @property
    def is_combination(self) -> bool:
        return self.cause_type == CauseType.FOOD_COMBINATION

    @property
    def direction(self) -> str:
        """Get correlation direction."""
        if self.correlation_score > 0:
            return "positive"
        if self.correlation_score < 0:
            return "negative"
        return "none"
