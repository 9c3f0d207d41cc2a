"""Feed registry seam: resolves FeedConfig by id for the feed reader."""

from __future__ import annotations

import json
from typing import Dict, Iterable, Optional, Protocol

from pydantic import ValidationError

from app.core.logging import get_logger
from app.models.feeds import FeedConfig
from services.db_service import execute, fetchrow

logger = get_logger().bind(module="feed_service")


class FeedRegistry(Protocol):
    async def get_feed_by_id(self, feed_id: str) -> Optional[FeedConfig]:
        ...


class InMemoryFeedRegistry:
    def __init__(self, feeds: Iterable[FeedConfig] = ()) -> None:
        self._feeds: Dict[str, FeedConfig] = {f.feed_id: f for f in feeds}

    async def get_feed_by_id(self, feed_id: str) -> Optional[FeedConfig]:
        return self._feeds.get(feed_id)

    async def save_feed(self, feed: FeedConfig) -> FeedConfig:
        self._feeds[feed.feed_id] = feed
        return feed


ENSURE_FEEDS_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS feeds (
    id          TEXT PRIMARY KEY,
    user_id     TEXT NOT NULL,
    config      JSONB NOT NULL,
    created_at  TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at  TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
CREATE INDEX IF NOT EXISTS feeds_user_id_idx ON feeds (user_id);
"""


class PostgresFeedRegistry:
    """Feeds shared by every API process; the whole FeedConfig lives in one JSONB column."""

    async def ensure_schema(self) -> None:
        await execute(ENSURE_FEEDS_TABLE_SQL)

    async def get_feed_by_id(self, feed_id: str) -> Optional[FeedConfig]:
        row = await fetchrow("SELECT config FROM feeds WHERE id = $1", feed_id)
        if not row:
            return None
        config = row["config"]
        try:
            if isinstance(config, str):
                config = json.loads(config)
            return FeedConfig.model_validate(config)
        except (ValueError, ValidationError) as exc:
            logger.warning("feed_config_invalid", feed_id=feed_id, error=str(exc))
            return None

    async def save_feed(self, feed: FeedConfig) -> FeedConfig:
        await execute(
            """
            INSERT INTO feeds (id, user_id, config, created_at, updated_at)
            VALUES ($1, $2, CAST($3 AS JSONB), NOW(), NOW())
            ON CONFLICT (id) DO UPDATE
            SET user_id = EXCLUDED.user_id,
                config = EXCLUDED.config,
                updated_at = NOW();
            """,
            feed.feed_id,
            feed.user_id,
            json.dumps(feed.model_dump(mode="json"), ensure_ascii=False),
        )
        return feed
