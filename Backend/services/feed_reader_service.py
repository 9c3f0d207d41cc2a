"""
Feed reader: aggregates a feed's enabled sources into one deduplicated,
newest-first, paginated article list on every call.

Nothing is materialized between calls. The cursor is an offset into the
freshly merged list, so per-source cache refreshes between two page
requests can shift items across page boundaries.
"""

from __future__ import annotations

import asyncio
from typing import Any, List, Optional, Sequence

from app.core.config import get_settings
from app.core.logging import get_logger
from app.models.ephemeral import AggregationResult, EphemeralArticle
from services.feed_service import FeedRegistry
from services.source_cache_service import (
    SourceCacheService,
    dedupe_by_id,
    sort_by_published_desc,
)

logger = get_logger().bind(module="feed_reader_service")

__all__ = [
    "FeedNotFoundError",
    "FeedReaderService",
    "clamp_limit",
    "cursor_to_offset",
    "filter_by_keywords",
    "exclude_by_keywords",
    "filter_by_topics",
    "dedupe_by_id",
    "sort_by_published_desc",
]


class FeedNotFoundError(Exception):
    def __init__(self, feed_id: str):
        super().__init__(f"Feed not found: {feed_id}")
        self.feed_id = feed_id


def clamp_limit(limit: Any, *, default: int, maximum: int) -> int:
    """Positive integers are capped at `maximum`; anything else yields `default`."""
    if limit is None or isinstance(limit, bool):
        return default
    try:
        n = float(limit)
    except (TypeError, ValueError):
        return default
    if n != n or n in (float("inf"), float("-inf")) or n <= 0:
        return default
    return max(1, min(int(n), maximum))


def cursor_to_offset(cursor: Optional[str]) -> int:
    """Opaque cursor -> offset. Malformed or negative cursors mean offset 0."""
    if cursor is None:
        return 0
    try:
        n = float(str(cursor).strip())
    except ValueError:
        return 0
    if n != n or n in (float("inf"), float("-inf")) or n < 0:
        return 0
    return int(n)


def _haystack(article: EphemeralArticle) -> str:
    return f"{article.title or ''} {article.summary or ''}".lower()


def _needles(words: Optional[Sequence[str]]) -> List[str]:
    return [w.lower() for w in (words or []) if isinstance(w, str) and w.strip()]


def filter_by_keywords(
    items: List[EphemeralArticle],
    keywords: Optional[Sequence[str]],
) -> List[EphemeralArticle]:
    needles = _needles(keywords)
    if not needles:
        return items
    return [it for it in items if any(k in _haystack(it) for k in needles)]


def exclude_by_keywords(
    items: List[EphemeralArticle],
    exclude: Optional[Sequence[str]],
) -> List[EphemeralArticle]:
    needles = _needles(exclude)
    if not needles:
        return items
    return [it for it in items if not any(k in _haystack(it) for k in needles)]


def filter_by_topics(
    items: List[EphemeralArticle],
    topics: Optional[Sequence[str]],
) -> List[EphemeralArticle]:
    topic_set = set(_needles(topics))
    if not topic_set:
        return items
    return [
        it for it in items
        if any(tag.lower() in topic_set for tag in (it.tags or []))
    ]


class FeedReaderService:
    def __init__(
        self,
        *,
        feeds: FeedRegistry,
        source_cache: SourceCacheService,
        default_limit: Optional[int] = None,
        max_limit: Optional[int] = None,
    ) -> None:
        settings = get_settings()
        self.feeds = feeds
        self.source_cache = source_cache
        self.default_limit = default_limit or settings.FEED_EPHEMERAL_DEFAULT_LIMIT
        self.max_limit = max_limit or settings.MAX_AGGREGATION_LIMIT

    async def _collect(self, source_ids: List[str], force_refresh: bool) -> List[EphemeralArticle]:
        results = await asyncio.gather(
            *(self.source_cache.get_source_items(sid, force_refresh) for sid in source_ids),
            return_exceptions=True,
        )
        merged: List[EphemeralArticle] = []
        for source_id, result in zip(source_ids, results):
            if isinstance(result, BaseException):
                if isinstance(result, asyncio.CancelledError):
                    raise result
                logger.warning(
                    "feed_aggregation_source_failed",
                    source_id=source_id,
                    error=f"{type(result).__name__}: {result}",
                )
                continue
            merged.extend(result.items)
        return merged

    async def get_aggregated_feed_items(
        self,
        feed_id: str,
        *,
        user_id: Optional[str] = None,
        limit: Any = None,
        cursor: Optional[str] = None,
        force_refresh: bool = False,
    ) -> AggregationResult:
        page_size = clamp_limit(limit, default=self.default_limit, maximum=self.max_limit)
        offset = cursor_to_offset(cursor)

        feed = await self.feeds.get_feed_by_id(feed_id)
        if feed is None:
            raise FeedNotFoundError(feed_id)

        source_ids = feed.enabled_source_ids
        if not source_ids:
            return AggregationResult(articles=[], has_more=False)

        merged = await self._collect(source_ids, force_refresh)

        merged = filter_by_keywords(merged, feed.keywords)
        merged = exclude_by_keywords(merged, feed.exclude_keywords)
        merged = filter_by_topics(merged, feed.topics)
        merged = sort_by_published_desc(dedupe_by_id(merged))

        page = merged[offset:offset + page_size]
        has_more = len(merged) > offset + page_size
        logger.info(
            "feed_aggregation_completed",
            feed_id=feed_id,
            user_id=user_id,
            sources=len(source_ids),
            total=len(merged),
            offset=offset,
            returned=len(page),
            has_more=has_more,
        )
        return AggregationResult(
            articles=page,
            has_more=has_more,
            next_cursor=str(offset + page_size) if has_more else None,
        )
