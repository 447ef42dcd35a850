"""Postgres access for the symptom event store."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import asyncpg
import structlog

from symptom_insights.errors import DataUnavailableError

logger = structlog.get_logger()


class Database:
    """
    Connection pool for the event store.

    Connection failures surface as DataUnavailableError so callers of the
    engine see a single failure type for unreachable storage.
    """

    def __init__(self, database_url: str, pool_size: int = 5):
        self.database_url = database_url
        self.pool_size = pool_size
        self.pool: asyncpg.Pool | None = None

    async def connect(self) -> None:
        try:
            self.pool = await asyncpg.create_pool(
                self.database_url,
                min_size=1,
                max_size=self.pool_size,
            )
        except (OSError, asyncpg.PostgresError) as e:
            logger.error("Event store unreachable", error=str(e))
            raise DataUnavailableError(f"Cannot connect to event store: {e}") from e
        logger.info("Event store pool created", max_size=self.pool_size)

    async def close(self) -> None:
        if self.pool:
            await self.pool.close()
            self.pool = None
            logger.info("Event store pool closed")

    @asynccontextmanager
    async def acquire(self) -> AsyncIterator[asyncpg.Connection]:
        if self.pool is None:
            raise DataUnavailableError("Event store is not connected")
        async with self.pool.acquire() as conn:
            yield conn

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[asyncpg.Connection]:
        """Connection inside a transaction; rolled back if the block raises."""
        async with self.acquire() as conn:
            async with conn.transaction():
                yield conn

    async def fetch(self, query: str, *args: Any) -> list[asyncpg.Record]:
        async with self.acquire() as conn:
            return await conn.fetch(query, *args)


# SQL Schema for the event log
EVENTS_SCHEMA = """
-- Symptom, trigger and food definitions
CREATE TABLE IF NOT EXISTS definitions (
    id TEXT PRIMARY KEY,
    kind TEXT NOT NULL,
    name TEXT NOT NULL,
    category TEXT,
    is_active BOOLEAN NOT NULL DEFAULT TRUE,
    created_at TIMESTAMPTZ DEFAULT NOW(),
    updated_at TIMESTAMPTZ DEFAULT NOW()
);

-- Index for active definition lookups
CREATE INDEX IF NOT EXISTS definitions_kind_active_idx
ON definitions (kind, is_active);

-- Logged events from all five streams
CREATE TABLE IF NOT EXISTS events (
    id TEXT PRIMARY KEY,
    kind TEXT NOT NULL,
    ref_id TEXT NOT NULL,
    ts BIGINT NOT NULL,
    magnitude FLOAT,
    body_region TEXT,
    food_ids TEXT[],
    meal_type TEXT,
    event_type TEXT,
    trend TEXT,
    status TEXT,
    created_at TIMESTAMPTZ DEFAULT NOW()
);

-- Index for time-ranged stream queries
CREATE INDEX IF NOT EXISTS events_kind_ts_idx
ON events (kind, ts);
"""


async def init_schema(db: Database) -> None:
    """Initialize database schema."""
    async with db.transaction() as conn:
        await conn.execute(EVENTS_SCHEMA)
    logger.info("Database schema initialized")
