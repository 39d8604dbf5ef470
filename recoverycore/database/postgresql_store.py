"""
PostgreSQL Error Log Store
=========================

Async PostgreSQL implementation of ``IErrorLogStore`` on an asyncpg pool.
Rows land in the ``error_logs`` table; writes are upserts so the same
error can be persisted at creation and again when it is resolved.
"""

import asyncio
import json
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

import asyncpg

from .base import ConnectionError, IErrorLogStore, QueryError

logger = logging.getLogger(__name__)

JSON_COLUMNS = ("error_details", "system_state", "resolution")

# asyncio.TimeoutError is not an OSError before Python 3.11
DRIVER_ERRORS = (OSError, asyncio.TimeoutError, asyncpg.PostgresError, asyncpg.InterfaceError)


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class PostgreSQLErrorLogStore(IErrorLogStore):
    """PostgreSQL error log store."""

    def __init__(self, dsn: str, table_name: str = "error_logs", pool_size: int = 5,
                 command_timeout: float = 10.0, create_schema: bool = True):
        self.dsn = dsn
        self.table_name = table_name
        self.pool_size = pool_size
        self.command_timeout = command_timeout
        self.create_schema = create_schema
        self.pool: Optional[asyncpg.Pool] = None

    async def connect(self) -> None:
        """
        Create the connection pool.

        Raises:
            ConnectionError: If connection fails
        """
        if self.pool is not None:
            return

        try:
            self.pool = await asyncpg.create_pool(
                self.dsn,
                min_size=1,
                max_size=self.pool_size,
                command_timeout=self.command_timeout,
                server_settings={'application_name': 'recoverycore'}
            )
        except DRIVER_ERRORS as e:
            raise ConnectionError(f"Failed to connect to PostgreSQL: {e}", original_error=e)

        if self.create_schema:
            try:
                await self._create_tables()
            except DRIVER_ERRORS as e:
                await self.close()
                raise ConnectionError(f"Failed to create {self.table_name} schema: {e}", original_error=e)

        logger.info(f"Connected to PostgreSQL error log store ({self.table_name})")

    async def close(self) -> None:
        if self.pool is not None:
            await self.pool.close()
            self.pool = None

    async def _get_pool(self) -> asyncpg.Pool:
        if self.pool is None:
            await self.connect()
        return self.pool

    async def _create_tables(self):
        """Create error log table if it doesn't exist."""
        async with self.pool.acquire() as conn:
            await conn.execute(f"""
                CREATE TABLE IF NOT EXISTS {self.table_name} (
                    id TEXT PRIMARY KEY,
                    campaign_id TEXT,
                    user_id TEXT,
                    component TEXT NOT NULL,
                    operation TEXT NOT NULL,
                    severity TEXT CHECK (severity IN ('low', 'medium', 'high', 'critical', 'catastrophic')) DEFAULT 'medium',
                    category TEXT NOT NULL,
                    error_details JSONB NOT NULL,
                    system_state JSONB,
                    recovery_attempts INTEGER DEFAULT 0,
                    resolved BOOLEAN DEFAULT FALSE,
                    resolution JSONB,
                    created_at TIMESTAMPTZ DEFAULT NOW(),
                    resolved_at TIMESTAMPTZ,
                    updated_at TIMESTAMPTZ DEFAULT NOW()
                );
            """)

            await conn.execute(f"""
                CREATE INDEX IF NOT EXISTS idx_{self.table_name}_component
                ON {self.table_name} (component);
            """)

            await conn.execute(f"""
                CREATE INDEX IF NOT EXISTS idx_{self.table_name}_created_at
                ON {self.table_name} (created_at);
            """)

    async def save_error(self, record: Dict[str, Any]) -> None:
        try:
            pool = await self._get_pool()
            async with pool.acquire() as conn:
                await conn.execute(f"""
                    INSERT INTO {self.table_name}
                    (id, campaign_id, user_id, component, operation, severity, category,
                     error_details, system_state, recovery_attempts, resolved, resolution,
                     created_at, resolved_at)
                    VALUES ($1, $2, $3, $4, $5, $6, $7, $8::jsonb, $9::jsonb, $10, $11, $12::jsonb, $13, $14)
                    ON CONFLICT (id) DO UPDATE SET
                        recovery_attempts = EXCLUDED.recovery_attempts,
                        resolved = EXCLUDED.resolved,
                        resolution = EXCLUDED.resolution,
                        resolved_at = EXCLUDED.resolved_at,
                        updated_at = NOW()
                """,
                    record["id"],
                    record.get("campaign_id") or None,
                    record.get("user_id") or None,
                    record["component"],
                    record["operation"],
                    record["severity"],
                    record["category"],
                    json.dumps(record.get("error_details", {})),
                    json.dumps(record.get("system_state")),
                    record.get("recovery_attempts", 0),
                    record.get("resolved", False),
                    json.dumps(record["resolution"]) if record.get("resolution") else None,
                    _parse_timestamp(record.get("created_at")),
                    _parse_timestamp(record.get("resolved_at"))
                )
        except DRIVER_ERRORS as e:
            raise QueryError(f"Failed to save error {record['id']}: {e}", original_error=e)

    async def probe(self) -> int:
        try:
            pool = await self._get_pool()
            async with pool.acquire() as conn:
                rows = await conn.fetch(f"SELECT id FROM {self.table_name} LIMIT 1")
        except DRIVER_ERRORS as e:
            raise QueryError(f"Probe query failed: {e}", original_error=e)
        return len(rows)

    async def get_recent_errors(self, limit: int = 50) -> List[Dict[str, Any]]:
        try:
            pool = await self._get_pool()
            async with pool.acquire() as conn:
                rows = await conn.fetch(
                    f"SELECT * FROM {self.table_name} ORDER BY created_at DESC LIMIT $1", limit
                )
        except DRIVER_ERRORS as e:
            raise QueryError(f"Failed to fetch recent errors: {e}", original_error=e)

        results = []
        for row in rows:
            data = dict(row)
            for column in JSON_COLUMNS:
                if isinstance(data.get(column), str):
                    data[column] = json.loads(data[column])
            for column in ("created_at", "resolved_at", "updated_at"):
                if data.get(column) is not None:
                    data[column] = data[column].isoformat()
            results.append(data)
        return results

    async def mark_resolved(self, error_id: str) -> bool:
        try:
            pool = await self._get_pool()
            async with pool.acquire() as conn:
                status = await conn.execute(
                    f"UPDATE {self.table_name} SET resolved = TRUE, resolved_at = NOW(), "
                    f"updated_at = NOW() WHERE id = $1",
                    error_id
                )
        except DRIVER_ERRORS as e:
            raise QueryError(f"Failed to mark {error_id} resolved: {e}", original_error=e)
        return status.endswith(" 1")
