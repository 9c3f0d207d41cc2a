"""
Per-source TTL cache in front of the source fetcher.

This is the only place where fetched candidates become addressable
(hashed ids) and cacheable. Fetch failures never escape: callers see a
temporarily empty source instead.
"""

from __future__ import annotations

import hashlib
import math
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from pydantic import ValidationError

from app.core.config import get_settings
from app.core.logging import get_logger
from app.models.ephemeral import EphemeralArticle, SourceCacheEntry
from app.models.news_normalized import FetchedArticle
from app.models.news_sources import NewsSource
from services.ephemeral_cache import EphemeralCache, source_cache_key
from services.news_source_service import NewsSourceRegistry
from services.rss_fetcher import FetchFailure, RSSFetcher

logger = get_logger().bind(module="source_cache_service")

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def compute_article_id(url: str) -> str:
    """SHA-1 hex of the normalized URL; identical URLs always share an id."""
    return hashlib.sha1(url.encode("utf-8")).hexdigest()


def to_ephemeral_article(candidate: FetchedArticle) -> EphemeralArticle:
    return EphemeralArticle(
        id=compute_article_id(candidate.original_url),
        original_url=candidate.original_url,
        title=candidate.title,
        summary=candidate.summary,
        content=candidate.content,
        author=candidate.author,
        published_at=candidate.published_at,
        tags=list(candidate.tags),
        image_url=candidate.image_url,
        source_id=candidate.source_id,
        source_name=candidate.source_name,
    )


def published_sort_key(article: EphemeralArticle) -> datetime:
    published = article.published_at
    if published is None:
        return _EPOCH
    if published.tzinfo is None:
        return published.replace(tzinfo=timezone.utc)
    return published


def sort_by_published_desc(items: Iterable[EphemeralArticle]) -> List[EphemeralArticle]:
    """Stable: equal timestamps keep their incoming order."""
    return sorted(items, key=published_sort_key, reverse=True)


def dedupe_by_id(items: Iterable[EphemeralArticle]) -> List[EphemeralArticle]:
    """One article per id; a later duplicate wins only if strictly newer."""
    by_id: Dict[str, EphemeralArticle] = {}
    for it in items:
        existing = by_id.get(it.id)
        if existing is None or published_sort_key(it) > published_sort_key(existing):
            by_id[it.id] = it
    return list(by_id.values())


class SourceCacheService:
    def __init__(
        self,
        *,
        registry: NewsSourceRegistry,
        cache: EphemeralCache,
        fetcher: RSSFetcher,
        ttl_minutes: Optional[int] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.registry = registry
        self.cache = cache
        self.fetcher = fetcher
        minutes = ttl_minutes if ttl_minutes is not None else get_settings().FEED_EPHEMERAL_TTL_MINUTES
        self.ttl = timedelta(minutes=minutes)
        self._clock = clock

    def _empty(self) -> SourceCacheEntry:
        return SourceCacheEntry(items=[], fetched_at=self._clock())

    def is_fresh(self, entry: SourceCacheEntry) -> bool:
        fetched_at = entry.fetched_at
        if fetched_at.tzinfo is None:
            fetched_at = fetched_at.replace(tzinfo=timezone.utc)
        return self._clock() - fetched_at < self.ttl

    async def _read_cached(self, key: str) -> Optional[SourceCacheEntry]:
        try:
            raw = await self.cache.get(key)
        except Exception as exc:
            logger.warning("ephemeral_cache_read_failed", cache_key=key, error=str(exc))
            return None
        if not raw:
            return None
        try:
            return SourceCacheEntry.model_validate(raw)
        except ValidationError as exc:
            logger.warning("ephemeral_cache_entry_invalid", cache_key=key, error=str(exc))
            return None

    async def get_source_items(self, source_id: str, force_refresh: bool = False) -> SourceCacheEntry:
        """
        Cached items for one source, re-fetching on miss, expiry or
        force_refresh. Unknown or inactive sources yield an empty entry.
        """
        source = await self.registry.get_news_source_by_id(source_id)
        if source is None or not source.is_active:
            return self._empty()

        key = source_cache_key(source_id)
        if not force_refresh:
            cached = await self._read_cached(key)
            if cached is not None and self.is_fresh(cached):
                logger.debug("ephemeral_cache_hit", source_id=source_id, items=len(cached.items))
                return cached

        try:
            outcome = await self.fetcher.fetch_source(source)
        except Exception as exc:
            logger.warning("ephemeral_fetch_exception", source_id=source_id, error=str(exc))
            return self._empty()

        if isinstance(outcome, FetchFailure):
            logger.warning("ephemeral_fetch_failed", source_id=source_id, error=str(outcome.error))
            return self._empty()

        return await self.store_fetched(source, outcome.articles)

    async def store_fetched(
        self,
        source: NewsSource,
        articles: Sequence[FetchedArticle],
    ) -> SourceCacheEntry:
        """Derive ids, dedupe, sort newest first and replace the source's cache entry."""
        fetched_at = self._clock()
        items = sort_by_published_desc(dedupe_by_id(to_ephemeral_article(a) for a in articles))
        entry = SourceCacheEntry(items=items, fetched_at=fetched_at)
        # Ceiling: the backend expiry is never earlier than fetched_at + ttl.
        expire_at = math.ceil((fetched_at + self.ttl).timestamp())
        key = source_cache_key(source.source_id)
        try:
            await self.cache.put(key, entry.model_dump(mode="json"), expire_at)
        except Exception as exc:
            logger.warning("ephemeral_cache_write_failed", cache_key=key, error=str(exc))
        return entry

    async def invalidate(self, source_id: str) -> None:
        await self.cache.delete(source_cache_key(source_id))
