"""
Scheduled bulk fetch: refresh many sources in fixed-size batches so no
more than `concurrency` fetches are ever in flight, persisting results
and feeding each source's reliability score.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, List, Optional, Sequence, Tuple, TypeVar

from app.core.config import get_settings
from app.core.logging import get_logger
from app.models.fetch_runs import FetchRunSummary, SourceFetchResult
from app.models.news_sources import DefaultSourceSpec, NewsSource
from services.article_sink import ArticleSink
from services.news_source_service import (
    NewsSourceRegistry,
    ReliabilityTracker,
    ensure_default_sources,
)
from services.rss_fetcher import FetchFailure, RSSFetcher
from services.source_cache_service import SourceCacheService

logger = get_logger().bind(module="bulk_fetch_service")

T = TypeVar("T")
R = TypeVar("R")


def _to_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(str(value).strip())
    except ValueError:
        return None
    if number != number or number in (float("inf"), float("-inf")):
        return None
    return int(number)


def parse_fetch_params(limit: Any = None, concurrency: Any = None) -> Tuple[int, int]:
    """Normalize job parameters; strings are accepted, junk falls back to defaults."""
    settings = get_settings()
    parsed_limit = _to_int(limit)
    if parsed_limit is None or parsed_limit < 1:
        parsed_limit = settings.NEWS_FETCH_DEFAULT_SOURCE_LIMIT
    parsed_concurrency = _to_int(concurrency)
    if parsed_concurrency is None:
        parsed_concurrency = settings.NEWS_FETCH_DEFAULT_CONCURRENCY
    parsed_concurrency = max(1, min(parsed_concurrency, settings.NEWS_FETCH_MAX_CONCURRENCY))
    return parsed_limit, parsed_concurrency


async def run_in_batches(
    items: Sequence[T],
    concurrency: int,
    fn: Callable[[T, int], Awaitable[R]],
) -> List[R]:
    """
    Run `fn(item, index)` over items in batches of `concurrency`. Each batch
    runs in parallel and completes before the next starts. Output order
    matches input order.
    """
    size = max(1, int(concurrency))
    results: List[R] = []
    for start in range(0, len(items), size):
        batch = items[start:start + size]
        batch_results = await asyncio.gather(
            *(fn(item, start + idx) for idx, item in enumerate(batch))
        )
        results.extend(batch_results)
    return results


class BulkFetchService:
    def __init__(
        self,
        *,
        fetcher: RSSFetcher,
        tracker: ReliabilityTracker,
        sink: ArticleSink,
        source_cache: Optional[SourceCacheService] = None,
    ) -> None:
        self.fetcher = fetcher
        self.tracker = tracker
        self.sink = sink
        # When set, successful fetches also replace the read-time cache entry.
        self.source_cache = source_cache

    async def _record_failure(self, result: SourceFetchResult, message: str) -> SourceFetchResult:
        result.error = message
        try:
            await self.tracker.record_fetch_failure(result.source_id, message)
        except Exception as exc:
            logger.error("news_fetch_record_failure_failed", source_id=result.source_id, error=str(exc))
        logger.warning(
            "news_fetch_source_failed",
            source_id=result.source_id,
            source=result.source_name,
            error=message,
        )
        return result

    async def process_source(self, source: NewsSource) -> SourceFetchResult:
        result = SourceFetchResult(source_id=source.source_id, source_name=source.name)
        try:
            outcome = await self.fetcher.fetch_source(source)
            if isinstance(outcome, FetchFailure):
                return await self._record_failure(result, str(outcome.error))

            articles = outcome.articles
            result.articles_found = len(articles)

            if self.source_cache is not None:
                await self.source_cache.store_fetched(source, articles)

            if articles:
                stats = await self.sink.save_fetched_articles(source.source_id, articles)
                result.articles_saved = stats.saved
                if stats.errors and stats.saved == 0:
                    return await self._record_failure(result, "; ".join(stats.errors)[:500])
        except Exception as exc:
            return await self._record_failure(result, f"{type(exc).__name__}: {exc}")

        try:
            await self.tracker.record_fetch_success(source.source_id)
        except Exception as exc:
            logger.error("news_fetch_record_success_failed", source_id=source.source_id, error=str(exc))
        result.success = True
        return result

    async def process_sources(
        self,
        sources: Sequence[NewsSource],
        concurrency: int,
    ) -> List[SourceFetchResult]:
        return await run_in_batches(sources, concurrency, lambda source, _idx: self.process_source(source))


def build_summary(
    sources: Sequence[NewsSource],
    results: Sequence[SourceFetchResult],
) -> FetchRunSummary:
    return FetchRunSummary(
        timestamp=datetime.now(timezone.utc),
        total_sources=len(sources),
        successful_sources=sum(1 for r in results if r.success),
        failed_sources=sum(1 for r in results if not r.success),
        total_articles_found=sum(r.articles_found for r in results),
        total_articles_saved=sum(r.articles_saved for r in results),
        results=list(results),
    )


async def run_news_fetch(
    *,
    registry: NewsSourceRegistry,
    service: BulkFetchService,
    limit: Any = None,
    concurrency: Any = None,
    defaults: Optional[Sequence[DefaultSourceSpec]] = None,
) -> FetchRunSummary:
    """Seed defaults, fetch every active source in batches and summarize."""
    source_limit, batch_size = parse_fetch_params(limit, concurrency)

    created = await ensure_default_sources(registry, defaults)
    sources = await registry.get_active_sources_for_fetching(source_limit)
    logger.info(
        "news_fetch_started",
        sources=len(sources),
        limit=source_limit,
        concurrency=batch_size,
        defaults_created=created,
    )

    if not sources:
        logger.info("news_fetch_no_active_sources")
        return build_summary([], [])

    results = await service.process_sources(sources, batch_size)
    summary = build_summary(sources, results)

    logger.info(
        "news_fetch_summary",
        total_sources=summary.total_sources,
        successful_sources=summary.successful_sources,
        failed_sources=summary.failed_sources,
        total_articles_found=summary.total_articles_found,
        total_articles_saved=summary.total_articles_saved,
    )
    return summary
