"""Event repositories implementing the engine's query contract.

- PostgresEventRepository: asyncpg-backed event store
- InMemoryEventRepository: synthetic event arrays
- BackupEventRepository: the tracker app's JSON full-backup export
"""

import json
from collections import defaultdict
from collections.abc import Iterable, Mapping
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import structlog

from symptom_insights.database import Database
from symptom_insights.errors import DataUnavailableError
from symptom_insights.models import AnyEvent, Definition, EventKind, TimedEvent

logger = structlog.get_logger()

_EVENT_COLUMNS = (
    "id",
    "kind",
    "ref_id",
    "magnitude",
    "body_region",
    "food_ids",
    "meal_type",
    "event_type",
    "trend",
    "status",
)


class PostgresEventRepository:
    """Repository for the event log stored in PostgreSQL."""

    def __init__(self, db: Database):
        self.db = db

    async def get_events_since(self, kind: EventKind, since: int) -> list[dict[str, Any]]:
        """Get loosely-typed event records of one stream since a timestamp."""
        query = """
        SELECT id, kind, ref_id, ts, magnitude, body_region, food_ids,
               meal_type, event_type, trend, status
        FROM events
        WHERE kind = $1 AND ts >= $2
        ORDER BY ts ASC, id ASC
        """
        rows = await self.db.fetch(query, EventKind(kind).value, since)
        return [self._row_to_record(row) for row in rows]

    async def get_active_definitions(self, kind: EventKind) -> list[Definition]:
        """Get active definitions of one stream."""
        query = """
        SELECT id, kind, name, category, is_active
        FROM definitions
        WHERE kind = $1 AND is_active = TRUE
        ORDER BY name ASC
        """
        rows = await self.db.fetch(query, EventKind(kind).value)
        return [
            Definition(
                id=row["id"],
                kind=EventKind(row["kind"]),
                name=row["name"],
                category=row["category"],
                is_active=row["is_active"],
            )
            for row in rows
        ]

    async def upsert_events(self, events: list[AnyEvent]) -> int:
        """
        Insert or update a batch of events.
        Returns the number of records written.
        """
        if not events:
            return 0

        query = """
        INSERT INTO events (
            id, kind, ref_id, ts, magnitude, body_region, food_ids,
            meal_type, event_type, trend, status
        )
        VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11)
        ON CONFLICT (id) DO UPDATE SET
            ref_id = EXCLUDED.ref_id,
            ts = EXCLUDED.ts,
            magnitude = EXCLUDED.magnitude,
            body_region = EXCLUDED.body_region,
            food_ids = EXCLUDED.food_ids,
            meal_type = EXCLUDED.meal_type,
            event_type = EXCLUDED.event_type,
            trend = EXCLUDED.trend,
            status = EXCLUDED.status
        """

        async with self.db.transaction() as conn:
            await conn.executemany(query, [self._event_to_row(e) for e in events])

        logger.info("Events upserted", count=len(events))
        return len(events)

    async def upsert_definitions(self, definitions: list[Definition]) -> int:
        """Insert or update a batch of definitions."""
        if not definitions:
            return 0

        query = """
        INSERT INTO definitions (id, kind, name, category, is_active)
        VALUES ($1, $2, $3, $4, $5)
        ON CONFLICT (id) DO UPDATE SET
            name = EXCLUDED.name,
            category = EXCLUDED.category,
            is_active = EXCLUDED.is_active,
            updated_at = NOW()
        """

        async with self.db.transaction() as conn:
            await conn.executemany(
                query,
                [
                    (d.id, EventKind(d.kind).value, d.name, d.category, d.is_active)
                    for d in definitions
                ],
            )
        return len(definitions)

    def _row_to_record(self, row) -> dict[str, Any]:
        """Convert database row to a record, dropping NULL columns."""
        record = {col: row[col] for col in _EVENT_COLUMNS if row[col] is not None}
        record["timestamp"] = row["ts"]
        return record

    @staticmethod
    def _event_to_row(event: AnyEvent) -> tuple:
        def value(name: str) -> Any:
            attr = getattr(event, name, None)
            return attr.value if hasattr(attr, "value") else attr

        food_ids = getattr(event, "food_ids", None)
        return (
            event.id,
            EventKind(event.kind).value,
            event.ref_id,
            event.timestamp,
            event.magnitude,
            getattr(event, "body_region", None),
            list(food_ids) if food_ids is not None else None,
            getattr(event, "meal_type", None),
            value("event_type"),
            value("trend"),
            value("status"),
        )


def _record_kind(record: Any) -> str | None:
    if isinstance(record, TimedEvent):
        return EventKind(record.kind).value
    if isinstance(record, Mapping):
        kind = record.get("kind")
        return kind.value if isinstance(kind, EventKind) else kind
    return None


def _record_timestamp(record: Any) -> Any:
    if isinstance(record, TimedEvent):
        return record.timestamp
    if isinstance(record, Mapping):
        return record.get("timestamp")
    return None


class InMemoryEventRepository:
    """Repository over in-memory records, for synthetic event arrays."""

    def __init__(
        self,
        events: Iterable[Any] = (),
        definitions: Iterable[Definition] = (),
    ):
        self._events: dict[str, list[Any]] = defaultdict(list)
        for record in events:
            self._events[_record_kind(record)].append(record)
        self._definitions = list(definitions)

    @property
    def event_count(self) -> int:
        return sum(len(records) for records in self._events.values())

    async def get_events_since(self, kind: EventKind, since: int) -> list[Any]:
        """Records of one stream at or after ``since``.

        Records without a numeric timestamp are returned as-is so that the
        engine's validation rejects them.
        """
        out = []
        for record in self._events.get(EventKind(kind).value, []):
            ts = _record_timestamp(record)
            if isinstance(ts, int | float) and not isinstance(ts, bool) and ts < since:
                continue
            out.append(record)
        return out

    async def get_active_definitions(self, kind: EventKind) -> list[Definition]:
        return [
            d for d in self._definitions if d.kind == EventKind(kind) and d.is_active
        ]


def _date_to_millis(value: str) -> int:
    """Daily entries are dated; anchor them at midday UTC."""
    day = datetime.strptime(value, "%Y-%m-%d").replace(hour=12, tzinfo=UTC)
    return int(day.timestamp() * 1000)


def _definitions_from(rows: Iterable[Mapping[str, Any]], kind: EventKind) -> list[Definition]:
    return [
        Definition(
            id=row["guid"],
            kind=kind,
            name=row.get("name") or row["guid"],
            category=row.get("category"),
            is_active=bool(row.get("isActive", True)),
        )
        for row in rows
    ]


def _flare_records(
    flares: Iterable[Mapping[str, Any]], flare_events: Iterable[Mapping[str, Any]]
) -> list[dict[str, Any]]:
    flares_by_id = {f["guid"]: f for f in flares}
    records: list[dict[str, Any]] = []
    seen: set[str] = set()

    for event in flare_events:
        flare = flares_by_id.get(event["flareId"], {})
        seen.add(event["flareId"])
        records.append(
            {
                "id": event["guid"],
                "kind": EventKind.FLARE.value,
                "ref_id": event["flareId"],
                "timestamp": event["timestamp"],
                "magnitude": event.get("severity"),
                "event_type": event.get("eventType", "created"),
                "trend": event.get("trend"),
                "body_region": flare.get("bodyRegion", "unspecified"),
                "status": flare.get("status"),
            }
        )

    # Flares logged before lifecycle events existed get a synthetic onset
    for flare_id, flare in flares_by_id.items():
        if flare_id in seen:
            continue
        records.append(
            {
                "id": f"{flare_id}:created",
                "kind": EventKind.FLARE.value,
                "ref_id": flare_id,
                "timestamp": flare["startDate"],
                "magnitude": flare.get("initialSeverity"),
                "event_type": "created",
                "body_region": flare.get("bodyRegion", "unspecified"),
                "status": flare.get("status"),
            }
        )
    return records


class BackupEventRepository(InMemoryEventRepository):
    """Repository over a JSON full-backup export of the tracker app."""

    @classmethod
    def from_backup(cls, backup: Mapping[str, Any]) -> "BackupEventRepository":
        """Build a repository from a parsed backup document."""
        data = backup.get("data", backup)
        try:
            events: list[dict[str, Any]] = []
            events.extend(
                {
                    "id": row["guid"],
                    "kind": EventKind.SYMPTOM.value,
                    "ref_id": row["symptomId"],
                    "timestamp": row["timestamp"],
                    "magnitude": row.get("severity"),
                    "body_region": row.get("bodyRegion"),
                }
                for row in data.get("symptomInstances", [])
            )
            events.extend(
                {
                    "id": row["guid"],
                    "kind": EventKind.TRIGGER.value,
                    "ref_id": row["triggerId"],
                    "timestamp": row["timestamp"],
                    "magnitude": row.get("intensity"),
                }
                for row in data.get("triggerEvents", [])
            )
            events.extend(
                {
                    "id": row["guid"],
                    "kind": EventKind.FOOD.value,
                    "ref_id": row.get("mealId") or row["guid"],
                    "timestamp": row["timestamp"],
                    "food_ids": row["foodIds"],
                    "meal_type": row.get("mealType"),
                }
                for row in data.get("foodEvents", [])
            )
            events.extend(
                _flare_records(data.get("flares", []), data.get("flareEvents", []))
            )
            events.extend(
                {
                    "id": row["guid"],
                    "kind": EventKind.DAILY_ENTRY.value,
                    "ref_id": row["date"],
                    "timestamp": _date_to_millis(row["date"]),
                    "magnitude": row["overallHealthScore"],
                }
                for row in data.get("dailyEntries", [])
            )
            definitions = (
                _definitions_from(data.get("symptoms", []), EventKind.SYMPTOM)
                + _definitions_from(data.get("triggers", []), EventKind.TRIGGER)
                + _definitions_from(data.get("foods", []), EventKind.FOOD)
            )
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise DataUnavailableError(f"Malformed backup: {e!r}") from e

        logger.info(
            "Backup loaded",
            events=len(events),
            definitions=len(definitions),
        )
        return cls(events, definitions)

    @classmethod
    def from_file(cls, path: Path) -> "BackupEventRepository":
        """Load a backup export from disk."""
        try:
            backup = json.loads(Path(path).read_text())
        except (OSError, json.JSONDecodeError) as e:
            raise DataUnavailableError(f"Cannot read backup {path}: {e}") from e
        if not isinstance(backup, Mapping):
            raise DataUnavailableError(f"Backup {path} must contain a JSON object")
        return cls.from_backup(backup)
