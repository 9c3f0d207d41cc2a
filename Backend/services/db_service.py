# services/db_service.py
"""
asyncpg pool shared by the Postgres ephemeral cache and article sink.

The pool is created on first use, so importing this module (or running
entirely in memory) never needs a database.
"""
from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from time import monotonic
from typing import Any, AsyncIterator, List, Optional
from urllib.parse import urlparse

import asyncpg

from app.core.config import get_settings
from app.core.logging import get_logger

logger = get_logger().bind(module="db_service")

APPLICATION_NAME = "liberty-lens-feeds"
SLOW_QUERY_THRESHOLD_MS = 1_000

_pool: Optional[asyncpg.Pool] = None
_pool_lock = asyncio.Lock()


def normalize_database_url(raw_dsn: str) -> str:
    """Accept SQLAlchemy-style `postgresql+asyncpg://` DSNs as well."""
    dsn = raw_dsn.strip()
    if dsn.startswith("postgresql+asyncpg://"):
        dsn = "postgresql://" + dsn[len("postgresql+asyncpg://"):]
    return dsn


async def ensure_pool() -> asyncpg.Pool:
    global _pool
    if _pool is not None:
        return _pool

    async with _pool_lock:
        if _pool is None:
            settings = get_settings()
            if not (settings.DATABASE_URL or "").strip():
                raise RuntimeError("DATABASE_URL is not configured")
            dsn = normalize_database_url(settings.DATABASE_URL)
            logger.info(
                "db_pool_initializing",
                dsn_host=urlparse(dsn).hostname,
                min_size=settings.DB_POOL_MIN_SIZE,
                max_size=settings.DB_POOL_MAX_SIZE,
            )
            _pool = await asyncpg.create_pool(
                dsn=dsn,
                min_size=settings.DB_POOL_MIN_SIZE,
                max_size=settings.DB_POOL_MAX_SIZE,
                command_timeout=settings.DB_QUERY_TIMEOUT_S,
                server_settings={"application_name": APPLICATION_NAME},
            )
    return _pool


async def close_pool() -> None:
    global _pool
    if _pool is not None:
        await _pool.close()
        _pool = None


@asynccontextmanager
async def _timed(method: str, query: str) -> AsyncIterator[None]:
    started = monotonic()
    try:
        yield
    finally:
        duration_ms = (monotonic() - started) * 1000
        if duration_ms >= SLOW_QUERY_THRESHOLD_MS:
            first_line = next((line for line in query.strip().splitlines()), "")
            logger.warning(
                "db_slow_query",
                method=method,
                duration_ms=round(duration_ms, 2),
                query_snippet=first_line[:200],
            )


async def fetchrow(query: str, *args: Any) -> Optional[asyncpg.Record]:
    pool = await ensure_pool()
    async with _timed("fetchrow", query):
        return await pool.fetchrow(query, *args)


async def execute(query: str, *args: Any) -> str:
    """Returns the asyncpg status tag, e.g. "INSERT 0 1" or "DELETE 3"."""
    pool = await ensure_pool()
    async with _timed("execute", query):
        return await pool.execute(query, *args)


async def fetch(query: str, *args: Any) -> List[asyncpg.Record]:
    pool = await ensure_pool()
    async with _timed("fetch", query):
        return await pool.fetch(query, *args)
