"""
Autonomic — Postgres Client

Async connection management for the self-improvement audit records:
diagnoses, actions, learnings and config overrides.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import asyncpg
import structlog

if TYPE_CHECKING:
    from autonomic.config import PostgresConfig

logger = structlog.get_logger()

TABLE_SQL = """
CREATE TABLE IF NOT EXISTS diagnoses (
    id                      TEXT PRIMARY KEY,
    trigger_json            JSONB NOT NULL,
    severity                TEXT NOT NULL,
    description             TEXT NOT NULL,
    suggested_action_json   JSONB NOT NULL,
    status                  TEXT NOT NULL,
    created_at              TIMESTAMPTZ NOT NULL,
    updated_at              TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_diagnoses_status ON diagnoses (status, created_at DESC);

CREATE TABLE IF NOT EXISTS actions (
    id                  TEXT PRIMARY KEY,
    diagnosis_id        TEXT NOT NULL REFERENCES diagnoses (id),
    action_json         JSONB NOT NULL,
    outcome             TEXT NOT NULL,
    pre_metrics_json    JSONB NOT NULL,
    post_metrics_json   JSONB,
    execution_time_ms   INTEGER NOT NULL DEFAULT 0,
    error_message       TEXT,
    created_at          TIMESTAMPTZ NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_actions_outcome ON actions (outcome, created_at DESC);

CREATE TABLE IF NOT EXISTS learnings (
    id                      TEXT PRIMARY KEY,
    action_id               TEXT NOT NULL REFERENCES actions (id),
    reward_value            DOUBLE PRECISION NOT NULL,
    reward_breakdown_json   JSONB NOT NULL,
    confidence              DOUBLE PRECISION NOT NULL,
    lessons_json            JSONB NOT NULL,
    created_at              TIMESTAMPTZ NOT NULL
);

CREATE TABLE IF NOT EXISTS config_overrides (
    key                 TEXT NOT NULL,
    scope               TEXT NOT NULL DEFAULT 'global',
    value_json          JSONB NOT NULL,
    applied_by_action   TEXT,
    updated_at          TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    PRIMARY KEY (scope, key)
);
"""


class PostgresClient:
    """Async Postgres client with connection pooling."""

    def __init__(self, config: PostgresConfig) -> None:
        self._config = config
        self._pool: asyncpg.Pool | None = None

    async def connect(self) -> None:
        """Create connection pool and initialise schema."""
        self._pool = await asyncpg.create_pool(
            dsn=self._config.dsn,
            min_size=1,
            max_size=self._config.pool_size,
            ssl="require" if self._config.ssl else None,
        )
        logger.info("postgres_connected", host=self._config.host, database=self._config.database)
        async with self.pool.acquire() as conn:
            for statement in TABLE_SQL.split(";"):
                stmt = statement.strip()
                if stmt:
                    await conn.execute(stmt)
        logger.info("postgres_schema_initialised")

    async def close(self) -> None:
        if self._pool:
            await self._pool.close()
            self._pool = None
            logger.info("postgres_disconnected")

    @property
    def pool(self) -> asyncpg.Pool:
        if self._pool is None:
            raise RuntimeError("Postgres client not connected. Call connect() first.")
        return self._pool

    async def execute(self, query: str, *args: Any) -> str:
        async with self.pool.acquire() as conn:
            return await conn.execute(query, *args)  # type: ignore[no-any-return]

    async def health_check(self) -> dict[str, Any]:
        try:
            async with self.pool.acquire() as conn:
                await conn.fetchval("SELECT 1")
            return {"status": "connected"}
        except Exception as e:
            logger.error("postgres_health_check_failed", error=str(e))
            return {"status": "disconnected", "error": str(e)}
