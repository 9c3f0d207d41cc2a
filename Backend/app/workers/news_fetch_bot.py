from __future__ import annotations

import argparse
import asyncio
from typing import List, Optional

from app.core.logging import configure_logging, get_logger
from app.core.request_id import with_run_id
from app.deps.feed_services import FeedServices, build_feed_services
from services.bulk_fetch_service import run_news_fetch
from services.db_service import close_pool
from services.ephemeral_cache import PostgresEphemeralCache

configure_logging(service_name="worker")
logger = get_logger().bind(worker="news_fetch_bot")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="NewsFetchBot: refresh all active sources and persist their articles.")
    parser.add_argument(
        "--limit",
        type=str,
        default=None,
        help="Maximum number of active sources to fetch during this run.",
    )
    parser.add_argument(
        "--concurrency",
        type=str,
        default=None,
        help="Maximum number of fetches in flight at once.",
    )
    return parser.parse_args(argv)


async def run_fetch(
    limit: Optional[str],
    concurrency: Optional[str],
    services: Optional[FeedServices] = None,
) -> int:
    services = services or build_feed_services()
    try:
        if services.uses_database:
            await services.ensure_schema()
        summary = await run_news_fetch(
            registry=services.registry,
            service=services.bulk_fetch,
            limit=limit,
            concurrency=concurrency,
        )
        if isinstance(services.cache, PostgresEphemeralCache):
            purged = await services.cache.purge_expired()
            logger.info("news_fetch_bot_cache_purged", purged=purged)
        logger.info(
            "news_fetch_bot_finished",
            total_sources=summary.total_sources,
            failed_sources=summary.failed_sources,
            total_articles_saved=summary.total_articles_saved,
        )
        return 0
    except Exception as exc:
        logger.error("news_fetch_bot_failed", error=str(exc))
        return 1
    finally:
        await services.aclose()
        if services.uses_database:
            await close_pool()


async def main_async(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    with with_run_id():
        return await run_fetch(limit=args.limit, concurrency=args.concurrency)


def main() -> None:
    exit_code = asyncio.run(main_async())
    raise SystemExit(exit_code)


if __name__ == "__main__":
    main()
