"""
Source registry seam used by the feed reader and the bulk fetch job.

The registry itself is owned elsewhere; this module defines the narrow
protocol the core relies on, a process-local and a Postgres-backed
implementation, the reliability scoring rules, and the idempotent
default-source seeding. Seeded sources get ids derived from their catalog
name, so every process agrees on them.
"""

from __future__ import annotations

import hashlib
import json
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol, Sequence

from app.core.logging import get_logger
from app.models.news_sources import (
    DefaultSourceSpec,
    FetchConfig,
    NewsSource,
    SourceReliability,
    SourceType,
    load_default_sources,
)
from services.db_service import execute, fetch, fetchrow

logger = get_logger().bind(module="news_source_service")

MAX_RELIABILITY_SCORE = 100
FAILURE_PENALTY = 10
AUTO_DEACTIVATE_SCORE = 30
MIN_FETCH_SCORE = 50


class ReliabilityTracker(Protocol):
    async def record_fetch_success(self, source_id: str) -> None:
        ...

    async def record_fetch_failure(self, source_id: str, message: str) -> None:
        ...


class NewsSourceRegistry(ReliabilityTracker, Protocol):
    async def get_news_source_by_id(self, source_id: str) -> Optional[NewsSource]:
        ...

    async def list_public_sources(self) -> List[NewsSource]:
        ...

    async def create_news_source(
        self,
        *,
        source_id: Optional[str] = None,
        name: str,
        url: str,
        type: SourceType = SourceType.RSS,
        category: str = "mainstream",
        description: Optional[str] = None,
        tags: Sequence[str] = (),
        fetch_config: Optional[FetchConfig] = None,
        is_public: bool = True,
        added_by_user_id: Optional[str] = None,
    ) -> NewsSource:
        ...

    async def get_active_sources_for_fetching(self, limit: int = 50) -> List[NewsSource]:
        ...


def default_source_id(name: str) -> str:
    """Stable id for a catalog source, derived from its case-folded name."""
    return hashlib.sha1(name.strip().lower().encode("utf-8")).hexdigest()


def reliability_after_success(now: datetime) -> SourceReliability:
    return SourceReliability(
        score=MAX_RELIABILITY_SCORE,
        failure_count=0,
        last_successful_fetch=now,
    )


def reliability_after_failure(current: SourceReliability, now: datetime) -> SourceReliability:
    failures = current.failure_count + 1
    return SourceReliability(
        score=max(0, MAX_RELIABILITY_SCORE - failures * FAILURE_PENALTY),
        failure_count=failures,
        last_successful_fetch=current.last_successful_fetch,
        last_failed_fetch=now,
    )


class InMemoryNewsSourceRegistry:
    def __init__(self, sources: Iterable[NewsSource] = ()) -> None:
        self._sources: Dict[str, NewsSource] = {s.source_id: s for s in sources}

    async def get_news_source_by_id(self, source_id: str) -> Optional[NewsSource]:
        return self._sources.get(source_id)

    async def list_public_sources(self) -> List[NewsSource]:
        return [s for s in self._sources.values() if s.is_public]

    async def create_news_source(
        self,
        *,
        source_id: Optional[str] = None,
        name: str,
        url: str,
        type: SourceType = SourceType.RSS,
        category: str = "mainstream",
        description: Optional[str] = None,
        tags: Sequence[str] = (),
        fetch_config: Optional[FetchConfig] = None,
        is_public: bool = True,
        added_by_user_id: Optional[str] = None,
    ) -> NewsSource:
        source = NewsSource(
            source_id=source_id or uuid.uuid4().hex,
            name=name,
            url=url,
            type=type,
            category=category,
            description=description,
            is_public=is_public,
            added_by_user_id=added_by_user_id,
            tags=list(tags),
            fetch_config=fetch_config or FetchConfig(),
        )
        self._sources[source.source_id] = source
        logger.info("news_source_created", source_id=source.source_id, name=name)
        return source

    async def get_active_sources_for_fetching(self, limit: int = 50) -> List[NewsSource]:
        active = [s for s in self._sources.values() if s.is_active][: max(0, limit)]
        return [s for s in active if s.reliability.score >= MIN_FETCH_SCORE]

    async def record_fetch_success(self, source_id: str) -> None:
        current = self._sources.get(source_id)
        if current is None:
            return
        now = datetime.now(timezone.utc)
        self._sources[source_id] = current.with_changes(reliability=reliability_after_success(now))

    async def record_fetch_failure(self, source_id: str, message: str) -> None:
        current = self._sources.get(source_id)
        if current is None:
            return
        now = datetime.now(timezone.utc)
        reliability = reliability_after_failure(current.reliability, now)
        is_active = current.is_active and reliability.score > AUTO_DEACTIVATE_SCORE
        self._sources[source_id] = current.with_changes(reliability=reliability, is_active=is_active)
        logger.warning(
            "news_source_fetch_failure_recorded",
            source_id=source_id,
            failure_count=reliability.failure_count,
            score=reliability.score,
            deactivated=current.is_active and not is_active,
            error=message[:500],
        )


ENSURE_NEWS_SOURCES_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS news_sources (
    id                     TEXT PRIMARY KEY,
    name                   TEXT NOT NULL,
    url                    TEXT NOT NULL,
    type                   TEXT NOT NULL DEFAULT 'rss',
    category               TEXT NOT NULL DEFAULT 'mainstream',
    description            TEXT,
    is_active              BOOLEAN NOT NULL DEFAULT TRUE,
    is_public              BOOLEAN NOT NULL DEFAULT TRUE,
    added_by_user_id       TEXT,
    tags                   TEXT[] NOT NULL DEFAULT '{}',
    fetch_config           JSONB NOT NULL DEFAULT '{}'::jsonb,
    reliability_score      INTEGER NOT NULL DEFAULT 100,
    failure_count          INTEGER NOT NULL DEFAULT 0,
    last_successful_fetch  TIMESTAMPTZ,
    last_failed_fetch      TIMESTAMPTZ,
    last_error             TEXT,
    created_at             TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at             TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
"""


def _decode_fetch_config(raw: Any) -> FetchConfig:
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError:
            raw = {}
    if not isinstance(raw, dict):
        return FetchConfig()
    headers = raw.get("headers") or {}
    return FetchConfig(
        headers={str(k): str(v) for k, v in headers.items()} if isinstance(headers, dict) else {},
        rate_limit=raw.get("rate_limit"),
        selector=raw.get("selector"),
    )


def row_to_news_source(row: Mapping[str, Any]) -> NewsSource:
    return NewsSource(
        source_id=row["id"],
        name=row["name"],
        url=row["url"],
        type=SourceType(row["type"]),
        category=row["category"],
        description=row["description"],
        is_active=bool(row["is_active"]),
        is_public=bool(row["is_public"]),
        added_by_user_id=row["added_by_user_id"],
        tags=list(row["tags"] or []),
        fetch_config=_decode_fetch_config(row["fetch_config"]),
        reliability=SourceReliability(
            score=int(row["reliability_score"]),
            failure_count=int(row["failure_count"]),
            last_successful_fetch=row["last_successful_fetch"],
            last_failed_fetch=row["last_failed_fetch"],
        ),
    )


class PostgresNewsSourceRegistry:
    """asyncpg-backed registry; reliability survives across worker runs."""

    async def ensure_schema(self) -> None:
        await execute(ENSURE_NEWS_SOURCES_TABLE_SQL)

    async def get_news_source_by_id(self, source_id: str) -> Optional[NewsSource]:
        row = await fetchrow("SELECT * FROM news_sources WHERE id = $1", source_id)
        return row_to_news_source(row) if row else None

    async def list_public_sources(self) -> List[NewsSource]:
        rows = await fetch("SELECT * FROM news_sources WHERE is_public ORDER BY created_at, id")
        return [row_to_news_source(r) for r in rows]

    async def create_news_source(
        self,
        *,
        source_id: Optional[str] = None,
        name: str,
        url: str,
        type: SourceType = SourceType.RSS,
        category: str = "mainstream",
        description: Optional[str] = None,
        tags: Sequence[str] = (),
        fetch_config: Optional[FetchConfig] = None,
        is_public: bool = True,
        added_by_user_id: Optional[str] = None,
    ) -> NewsSource:
        sid = source_id or uuid.uuid4().hex
        config = fetch_config or FetchConfig()
        row = await fetchrow(
            """
            INSERT INTO news_sources (
                id, name, url, type, category, description,
                is_public, added_by_user_id, tags, fetch_config
            )
            VALUES ($1,$2,$3,$4,$5,$6,$7,$8,$9,CAST($10 AS JSONB))
            ON CONFLICT (id) DO NOTHING
            RETURNING *
            """,
            sid,
            name,
            url,
            SourceType(type).value,
            category,
            description,
            is_public,
            added_by_user_id,
            list(tags),
            json.dumps(
                {"headers": config.headers, "rate_limit": config.rate_limit, "selector": config.selector}
            ),
        )
        if row is None:
            existing = await self.get_news_source_by_id(sid)
            if existing is None:
                raise RuntimeError(f"news source {sid} could not be created")
            return existing
        logger.info("news_source_created", source_id=sid, name=name)
        return row_to_news_source(row)

    async def get_active_sources_for_fetching(self, limit: int = 50) -> List[NewsSource]:
        rows = await fetch(
            """
            SELECT *
            FROM news_sources
            WHERE is_active
            ORDER BY created_at, id
            LIMIT $1
            """,
            max(0, limit),
        )
        active = [row_to_news_source(r) for r in rows]
        return [s for s in active if s.reliability.score >= MIN_FETCH_SCORE]

    async def record_fetch_success(self, source_id: str) -> None:
        updated = reliability_after_success(datetime.now(timezone.utc))
        await execute(
            """
            UPDATE news_sources
            SET reliability_score = $2,
                failure_count = 0,
                last_successful_fetch = $3,
                last_error = NULL,
                updated_at = NOW()
            WHERE id = $1
            """,
            source_id,
            updated.score,
            updated.last_successful_fetch,
        )

    async def record_fetch_failure(self, source_id: str, message: str) -> None:
        current = await self.get_news_source_by_id(source_id)
        if current is None:
            return
        reliability = reliability_after_failure(current.reliability, datetime.now(timezone.utc))
        is_active = current.is_active and reliability.score > AUTO_DEACTIVATE_SCORE
        await execute(
            """
            UPDATE news_sources
            SET reliability_score = $2,
                failure_count = $3,
                last_failed_fetch = $4,
                is_active = $5,
                last_error = $6,
                updated_at = NOW()
            WHERE id = $1
            """,
            source_id,
            reliability.score,
            reliability.failure_count,
            reliability.last_failed_fetch,
            is_active,
            message[:500],
        )
        logger.warning(
            "news_source_fetch_failure_recorded",
            source_id=source_id,
            failure_count=reliability.failure_count,
            score=reliability.score,
            deactivated=current.is_active and not is_active,
            error=message[:500],
        )


async def ensure_default_sources(
    registry: NewsSourceRegistry,
    defaults: Optional[Sequence[DefaultSourceSpec]] = None,
) -> int:
    """
    Create every default source whose name is not yet present among the
    registry's public sources. Safe to call on every run; returns the
    number of sources created by this call.
    """
    catalog = list(defaults) if defaults is not None else load_default_sources()
    existing_names = {s.name for s in await registry.list_public_sources()}

    created = 0
    for spec in catalog:
        if spec.name in existing_names:
            continue
        try:
            await registry.create_news_source(
                source_id=default_source_id(spec.name),
                name=spec.name,
                url=spec.url,
                type=spec.type,
                category=spec.category,
                description=spec.description,
                tags=spec.tags,
            )
        except Exception as exc:
            logger.error("news_source_default_create_failed", name=spec.name, error=str(exc))
            continue
        existing_names.add(spec.name)
        created += 1

    if created:
        logger.info("news_source_defaults_created", created=created, catalog=len(catalog))
    return created
