"""
Persistent article sink used only by the scheduled bulk fetch.
The read-time feed reader never writes here.
"""

from __future__ import annotations

import hashlib
from typing import Any, Dict, List, Protocol, Sequence

from app.core.logging import get_logger
from app.models.fetch_runs import SaveStats
from app.models.news_normalized import FetchedArticle
from services.db_service import execute

logger = get_logger().bind(module="article_sink")


def article_ingest_hash(source_id: str, url: str) -> str:
    return hashlib.sha1(f"{source_id}|{url}".encode("utf-8", "ignore")).hexdigest()


class ArticleSink(Protocol):
    async def save_fetched_articles(
        self,
        source_id: str,
        articles: Sequence[FetchedArticle],
    ) -> SaveStats:
        ...


class InMemoryArticleSink:
    """Keeps one row per (source, normalized url); later saves are no-ops."""

    def __init__(self) -> None:
        self.rows: Dict[str, FetchedArticle] = {}

    async def save_fetched_articles(
        self,
        source_id: str,
        articles: Sequence[FetchedArticle],
    ) -> SaveStats:
        saved = 0
        for article in articles:
            key = article_ingest_hash(source_id, article.original_url)
            if key in self.rows:
                continue
            self.rows[key] = article
            saved += 1
        return SaveStats(saved=saved, total=len(articles))


ENSURE_FETCHED_ARTICLES_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS fetched_articles (
    id            BIGSERIAL PRIMARY KEY,
    source_id     TEXT NOT NULL,
    source_name   TEXT NOT NULL,
    original_url  TEXT NOT NULL,
    title         TEXT NOT NULL,
    summary       TEXT,
    content       TEXT,
    author        TEXT,
    image_url     TEXT,
    tags          TEXT[] NOT NULL DEFAULT '{}',
    published_at  TIMESTAMPTZ NOT NULL,
    ingest_hash   TEXT NOT NULL,
    created_at    TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    UNIQUE (source_id, ingest_hash)
);
"""


class PostgresArticleSink:
    async def ensure_schema(self) -> None:
        await execute(ENSURE_FETCHED_ARTICLES_TABLE_SQL)

    def _article_to_row(self, source_id: str, article: FetchedArticle) -> Dict[str, Any]:
        return {
            "source_id": source_id,
            "source_name": article.source_name,
            "original_url": article.original_url,
            "title": article.title,
            "summary": article.summary,
            "content": article.content,
            "author": article.author,
            "image_url": article.image_url,
            "tags": list(article.tags),
            "published_at": article.published_at,
            "ingest_hash": article_ingest_hash(source_id, article.original_url),
        }

    async def save_fetched_articles(
        self,
        source_id: str,
        articles: Sequence[FetchedArticle],
    ) -> SaveStats:
        saved = 0
        errors: List[str] = []
        for article in articles:
            row = self._article_to_row(source_id, article)
            try:
                result = await execute(
                    """
                    INSERT INTO fetched_articles (
                        source_id, source_name, original_url,
                        title, summary, content, author,
                        image_url, tags, published_at, ingest_hash
                    ) VALUES (
                        $1,$2,$3,
                        $4,$5,$6,$7,
                        $8,$9,$10,$11
                    )
                    ON CONFLICT (source_id, ingest_hash) DO NOTHING;
                    """,
                    row["source_id"],
                    row["source_name"],
                    row["original_url"],
                    row["title"],
                    row["summary"],
                    row["content"],
                    row["author"],
                    row["image_url"],
                    row["tags"],
                    row["published_at"],
                    row["ingest_hash"],
                )
                # asyncpg status tag: "INSERT 0 <rows>"
                if result and result.upper().startswith("INSERT") and not result.endswith(" 0"):
                    saved += 1
            except Exception as exc:
                logger.error(
                    "article_sink_persist_error",
                    source_id=source_id,
                    url=article.original_url,
                    error=str(exc),
                )
                errors.append(f"{article.original_url}: {exc}")
        return SaveStats(saved=saved, total=len(articles), errors=errors)
