# Backend/app/deps/feed_services.py
"""
Composition of the feed aggregation services and the FastAPI dependency
that hands the feed reader to routers.

With DATABASE_URL set, sources, feeds, the cache and the article sink all
live in Postgres, so the API and worker processes share them. Otherwise
everything stays in-process.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from starlette.requests import Request

from app.core.config import Settings, get_settings
from services.article_sink import ArticleSink, InMemoryArticleSink, PostgresArticleSink
from services.bulk_fetch_service import BulkFetchService
from services.ephemeral_cache import EphemeralCache, InMemoryEphemeralCache, PostgresEphemeralCache
from services.feed_reader_service import FeedReaderService
from services.feed_service import FeedRegistry, InMemoryFeedRegistry, PostgresFeedRegistry
from services.news_source_service import (
    InMemoryNewsSourceRegistry,
    NewsSourceRegistry,
    PostgresNewsSourceRegistry,
)
from services.rss_fetcher import RSSFetcher
from services.source_cache_service import SourceCacheService

_POSTGRES_BACKENDS = (
    PostgresNewsSourceRegistry,
    PostgresFeedRegistry,
    PostgresEphemeralCache,
    PostgresArticleSink,
)


@dataclass
class FeedServices:
    registry: NewsSourceRegistry
    feeds: FeedRegistry
    cache: EphemeralCache
    sink: ArticleSink
    fetcher: RSSFetcher
    source_cache: SourceCacheService
    feed_reader: FeedReaderService
    bulk_fetch: BulkFetchService

    @property
    def uses_database(self) -> bool:
        return any(isinstance(part, _POSTGRES_BACKENDS) for part in self._storage())

    def _storage(self) -> tuple:
        return (self.registry, self.feeds, self.cache, self.sink)

    async def ensure_schema(self) -> None:
        for part in self._storage():
            if isinstance(part, _POSTGRES_BACKENDS):
                await part.ensure_schema()

    async def aclose(self) -> None:
        await self.fetcher.aclose()


def build_feed_services(
    settings: Optional[Settings] = None,
    *,
    registry: Optional[NewsSourceRegistry] = None,
    feeds: Optional[FeedRegistry] = None,
    cache: Optional[EphemeralCache] = None,
    sink: Optional[ArticleSink] = None,
    fetcher: Optional[RSSFetcher] = None,
) -> FeedServices:
    settings = settings or get_settings()
    use_db = bool(settings.DATABASE_URL)

    if registry is None:
        registry = PostgresNewsSourceRegistry() if use_db else InMemoryNewsSourceRegistry()
    if feeds is None:
        feeds = PostgresFeedRegistry() if use_db else InMemoryFeedRegistry()
    if cache is None:
        cache = PostgresEphemeralCache() if use_db else InMemoryEphemeralCache()
    if sink is None:
        sink = PostgresArticleSink() if use_db else InMemoryArticleSink()
    fetcher = fetcher or RSSFetcher(
        timeout_s=settings.RSS_FETCH_TIMEOUT_S,
        user_agent=settings.RSS_USER_AGENT,
    )

    source_cache = SourceCacheService(
        registry=registry,
        cache=cache,
        fetcher=fetcher,
        ttl_minutes=settings.FEED_EPHEMERAL_TTL_MINUTES,
    )
    feed_reader = FeedReaderService(
        feeds=feeds,
        source_cache=source_cache,
        default_limit=settings.FEED_EPHEMERAL_DEFAULT_LIMIT,
        max_limit=settings.MAX_AGGREGATION_LIMIT,
    )
    bulk_fetch = BulkFetchService(
        fetcher=fetcher,
        tracker=registry,
        sink=sink,
        source_cache=source_cache,
    )
    return FeedServices(
        registry=registry,
        feeds=feeds,
        cache=cache,
        sink=sink,
        fetcher=fetcher,
        source_cache=source_cache,
        feed_reader=feed_reader,
        bulk_fetch=bulk_fetch,
    )


def get_feed_services(request: Request) -> FeedServices:
    return request.app.state.feed_services


def get_feed_reader(request: Request) -> FeedReaderService:
    return get_feed_services(request).feed_reader
