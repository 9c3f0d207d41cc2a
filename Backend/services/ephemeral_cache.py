"""
Generic key/value store with an absolute expiry, shared by every
in-flight aggregation.

Writes are whole-entry replacements, so concurrent writers only race on
which fresh entry wins; no locking is needed.
"""

from __future__ import annotations

import copy
import json
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, Protocol, Tuple

from app.core.logging import get_logger
from services.db_service import execute, fetchrow

logger = get_logger().bind(module="ephemeral_cache")

SOURCE_CACHE_KEY_PREFIX = "ephemeral:source:"


def source_cache_key(source_id: str) -> str:
    return f"{SOURCE_CACHE_KEY_PREFIX}{source_id}"


class EphemeralCache(Protocol):
    async def get(self, key: str) -> Optional[Dict[str, Any]]:
        ...

    async def put(self, key: str, value: Dict[str, Any], expire_at: int) -> None:
        """`expire_at` is an absolute epoch timestamp in seconds."""
        ...

    async def delete(self, key: str) -> None:
        ...


class InMemoryEphemeralCache:
    """Process-local backend; the default when no database is configured."""

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._entries: Dict[str, Tuple[int, Dict[str, Any]]] = {}

    async def get(self, key: str) -> Optional[Dict[str, Any]]:
        stored = self._entries.get(key)
        if stored is None:
            return None
        expire_at, value = stored
        if self._clock() >= expire_at:
            self._entries.pop(key, None)
            return None
        return copy.deepcopy(value)

    async def put(self, key: str, value: Dict[str, Any], expire_at: int) -> None:
        self._entries[key] = (int(expire_at), copy.deepcopy(value))

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def __len__(self) -> int:
        return len(self._entries)


ENSURE_EPHEMERAL_CACHE_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS ephemeral_cache (
    cache_key   TEXT PRIMARY KEY,
    cached      JSONB NOT NULL,
    expire_at   TIMESTAMPTZ NOT NULL,
    created_at  TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
CREATE INDEX IF NOT EXISTS ephemeral_cache_expire_at_idx ON ephemeral_cache (expire_at);
"""


class PostgresEphemeralCache:
    """asyncpg-backed backend shared across API and worker processes."""

    async def ensure_schema(self) -> None:
        await execute(ENSURE_EPHEMERAL_CACHE_TABLE_SQL)

    async def get(self, key: str) -> Optional[Dict[str, Any]]:
        row = await fetchrow(
            """
            SELECT cached
            FROM ephemeral_cache
            WHERE cache_key = $1
              AND expire_at > NOW()
            """,
            key,
        )
        if not row:
            return None
        cached = row["cached"]
        if isinstance(cached, str):
            try:
                cached = json.loads(cached)
            except ValueError:
                logger.warning("ephemeral_cache_corrupt_entry", cache_key=key)
                return None
        return cached if isinstance(cached, dict) else None

    async def put(self, key: str, value: Dict[str, Any], expire_at: int) -> None:
        await execute(
            """
            INSERT INTO ephemeral_cache (cache_key, cached, expire_at, created_at)
            VALUES ($1, CAST($2 AS JSONB), $3, NOW())
            ON CONFLICT (cache_key) DO UPDATE
            SET cached = EXCLUDED.cached,
                expire_at = EXCLUDED.expire_at,
                created_at = NOW();
            """,
            key,
            json.dumps(value, ensure_ascii=False, default=str),
            datetime.fromtimestamp(int(expire_at), tz=timezone.utc),
        )

    async def delete(self, key: str) -> None:
        await execute("DELETE FROM ephemeral_cache WHERE cache_key = $1", key)

    async def purge_expired(self) -> int:
        result = await execute("DELETE FROM ephemeral_cache WHERE expire_at <= NOW()")
        try:
            return int(str(result).split()[-1])
        except (IndexError, ValueError):
            return 0
