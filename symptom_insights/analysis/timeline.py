"""Windowing and normalization of the raw event log.

Converts heterogeneous timestamped records into a Timeline: events sorted
ascending and partitioned by kind, anchored to a lookback window ending at
``now``. The timeline also carries the derived effect series (qualifying
symptom, flare and wellness-drop occurrences) that the scanners consume.
"""

from collections import defaultdict
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field

import structlog

from symptom_insights.config import MS_PER_DAY
from symptom_insights.errors import ConfigurationError
from symptom_insights.models import (
    AnyEvent,
    DailyEntryEvent,
    Definition,
    EffectType,
    EventKind,
    FlareEvent,
    FlareEventType,
    FlareTrend,
    SymptomEvent,
)

logger = structlog.get_logger()

WELLNESS_REF = "overall_health"


@dataclass(frozen=True, order=True)
class EffectKey:
    """Identifies one candidate effect definition."""

    effect_type: EffectType
    ref: str


@dataclass(frozen=True)
class Timeline:
    """Normalized, windowed view of the event log."""

    window_start: int
    window_end: int
    window_days: int
    events: dict[EventKind, tuple[AnyEvent, ...]] = field(default_factory=dict)
    effects: dict[EffectKey, tuple[int, ...]] = field(default_factory=dict)
    labels: dict[tuple[EventKind, str], str] = field(default_factory=dict)
    active_refs: dict[EventKind, frozenset[str]] = field(default_factory=dict)

    @property
    def days_in_window(self) -> int:
        """Denominator for base-rate calculations."""
        return self.window_days

    @property
    def is_empty(self) -> bool:
        return not any(self.events.values())

    @property
    def event_count(self) -> int:
        return sum(len(events) for events in self.events.values())

    def events_of(self, kind: EventKind) -> tuple[AnyEvent, ...]:
        return self.events.get(kind, ())

    def is_active(self, kind: EventKind, ref: str) -> bool:
        """Whether a definition may take part in analysis."""
        allowed = self.active_refs.get(kind)
        return allowed is None or ref in allowed

    def label_for(self, kind: EventKind, ref: str) -> str:
        """Definition name, falling back to the id for unknown definitions."""
        return self.labels.get((EventKind(kind), ref), ref)

    def effect_label(self, key: EffectKey) -> str:
        if key.effect_type == EffectType.FLARE:
            return f"Flare worsening ({key.ref})"
        if key.effect_type == EffectType.WELLNESS_DROP:
            return "Wellness score drop"
        return self.label_for(EventKind.SYMPTOM, key.ref)


def _event_sort_key(event: AnyEvent) -> tuple[int, str, str]:
    return (event.timestamp, str(event.kind), event.id)


def _build_active_refs(
    definitions: Mapping[EventKind, Sequence[Definition]] | None,
) -> dict[EventKind, frozenset[str]]:
    """
    Map each supplied kind to its active ids.

    A kind missing from ``definitions`` is left unfiltered. A kind supplied
    with an empty list has no active definitions, so none of its events
    take part.
    """
    if definitions is None:
        return {}
    active: dict[EventKind, frozenset[str]] = {}
    for kind, defs in definitions.items():
        if defs is None:
            continue
        active[EventKind(kind)] = frozenset(d.id for d in defs if d.is_active)
    return active


def _symptom_effects(
    symptoms: Iterable[SymptomEvent],
    active_refs: dict[EventKind, frozenset[str]],
    min_severity: float | None,
) -> dict[EffectKey, list[int]]:
    allowed = active_refs.get(EventKind.SYMPTOM)
    effects: dict[EffectKey, list[int]] = defaultdict(list)
    for event in symptoms:
        if allowed is not None and event.ref_id not in allowed:
            continue
        if min_severity is not None and (
            event.magnitude is None or event.magnitude < min_severity
        ):
            continue
        effects[EffectKey(EffectType.SYMPTOM, event.ref_id)].append(event.timestamp)
    return effects


def _flare_effects(flares: Iterable[FlareEvent]) -> dict[EffectKey, list[int]]:
    """Flare onsets and worsening updates, keyed by body region."""
    effects: dict[EffectKey, list[int]] = defaultdict(list)
    last_severity: dict[str, float] = {}
    for event in flares:
        worsened = False
        if event.event_type == FlareEventType.CREATED:
            worsened = True
        elif event.event_type in (
            FlareEventType.SEVERITY_UPDATE,
            FlareEventType.TREND_CHANGE,
        ):
            previous = last_severity.get(event.ref_id)
            rose = (
                previous is not None
                and event.magnitude is not None
                and event.magnitude > previous
            )
            worsened = event.trend == FlareTrend.WORSENING or rose
        if event.magnitude is not None:
            last_severity[event.ref_id] = event.magnitude
        if worsened:
            effects[EffectKey(EffectType.FLARE, event.body_region)].append(
                event.timestamp
            )
    return effects


def _wellness_effects(
    entries: Sequence[DailyEntryEvent], drop_threshold: float
) -> dict[EffectKey, list[int]]:
    effects: dict[EffectKey, list[int]] = defaultdict(list)
    for previous, current in zip(entries, entries[1:]):
        if previous.magnitude - current.magnitude >= drop_threshold:
            effects[EffectKey(EffectType.WELLNESS_DROP, WELLNESS_REF)].append(
                current.timestamp
            )
    return effects


def normalize(
    events: Iterable[AnyEvent],
    window_days: int,
    now: int,
    definitions: Mapping[EventKind, Sequence[Definition]] | None = None,
    *,
    min_effect_severity: float | None = None,
    wellness_drop_threshold: float = 2.0,
) -> Timeline:
    """
    Build a Timeline from an unordered sequence of events.

    Args:
        events: Events from all five streams, in any order
        window_days: Lookback window length in days
        now: End of the window (epoch millis)
        definitions: Known definitions per kind, used for labels and to
            exclude inactive definitions
        min_effect_severity: Symptom instances below this severity do not
            count as effect occurrences
        wellness_drop_threshold: Minimum day-over-day health score decrease
            that counts as a wellness drop

    Returns:
        Timeline; empty when no event falls inside the window
    """
    if window_days <= 0:
        raise ConfigurationError(f"window_days must be positive, got {window_days}")

    window_start = now - window_days * MS_PER_DAY
    by_kind: dict[EventKind, list[AnyEvent]] = defaultdict(list)
    dropped = 0
    for event in events:
        # Repository filters the lower bound already; stragglers are discarded
        if event.timestamp < window_start or event.timestamp > now:
            dropped += 1
            continue
        by_kind[EventKind(event.kind)].append(event)

    sorted_events = {
        kind: tuple(sorted(items, key=_event_sort_key))
        for kind, items in by_kind.items()
    }

    active_refs = _build_active_refs(definitions)
    # Ids are only unique within a kind
    labels: dict[tuple[EventKind, str], str] = {}
    for kind, defs in (definitions or {}).items():
        for definition in defs or ():
            labels[(EventKind(kind), definition.id)] = definition.name

    effects: dict[EffectKey, list[int]] = {}
    effects.update(
        _symptom_effects(
            sorted_events.get(EventKind.SYMPTOM, ()),
            active_refs,
            min_effect_severity,
        )
    )
    effects.update(_flare_effects(sorted_events.get(EventKind.FLARE, ())))
    effects.update(
        _wellness_effects(
            sorted_events.get(EventKind.DAILY_ENTRY, ()), wellness_drop_threshold
        )
    )

    timeline = Timeline(
        window_start=window_start,
        window_end=now,
        window_days=window_days,
        events=sorted_events,
        effects={key: tuple(sorted(ts)) for key, ts in sorted(effects.items())},
        labels=labels,
        active_refs=active_refs,
    )
    logger.debug(
        "Timeline normalized",
        events=timeline.event_count,
        dropped=dropped,
        effect_definitions=len(timeline.effects),
        window_days=window_days,
    )
    return timeline
