"""
Source fetcher: download one source's feed and normalize it into
FetchedArticle candidates.

The public entry point never raises. Every transport, HTTP and parse
problem is captured as a FetchFailure carrying an RSSFetchError, so
callers branch on `outcome.ok` instead of wrapping calls in try/except.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Literal, Optional, Union

import feedparser
import httpx

from app.core.config import get_settings
from app.core.logging import get_logger
from app.models.news_normalized import FetchedArticle
from app.models.news_sources import NewsSource
from services.rss_normalization import normalize_feed_entries

logger = get_logger().bind(module="rss_fetcher")

FEED_ACCEPT_HEADER = "application/rss+xml, application/xml, text/xml"


class RSSFetchError(Exception):
    """Upstream fetch or parse failure for a single source."""

    def __init__(
        self,
        message: str,
        *,
        source_id: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(message)
        self.source_id = source_id
        self.status_code = status_code


@dataclass(frozen=True)
class FetchSuccess:
    articles: List[FetchedArticle] = field(default_factory=list)
    ok: Literal[True] = True


@dataclass(frozen=True)
class FetchFailure:
    error: RSSFetchError
    ok: Literal[False] = False


FetchOutcome = Union[FetchSuccess, FetchFailure]


class RSSFetcher:
    """
    Shares one httpx.AsyncClient across fetches. Per-source headers from
    `fetch_config.headers` override the defaults for that request only.
    """

    def __init__(
        self,
        *,
        timeout_s: Optional[float] = None,
        user_agent: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        settings = get_settings()
        self.timeout_s = timeout_s if timeout_s is not None else settings.RSS_FETCH_TIMEOUT_S
        self.default_headers: Dict[str, str] = {
            "User-Agent": user_agent or settings.RSS_USER_AGENT,
            "Accept": FEED_ACCEPT_HEADER,
        }
        self._client = client
        self._owns_client = client is None

    async def __aenter__(self) -> "RSSFetcher":
        self._ensure_client()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout_s,
                headers=self.default_headers,
                follow_redirects=True,
            )
            self._owns_client = True
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    def request_headers(self, source: NewsSource) -> Dict[str, str]:
        headers = dict(self.default_headers)
        headers.update(source.fetch_config.headers or {})
        return headers

    async def _download(self, source: NewsSource) -> bytes:
        client = self._ensure_client()
        response = await client.get(
            source.url,
            headers=self.request_headers(source),
            timeout=self.timeout_s,
        )
        response.raise_for_status()
        return response.content

    async def fetch_source(self, source: NewsSource) -> FetchOutcome:
        """
        Fetch and normalize one source.
        Returns FetchSuccess (possibly with zero articles) or FetchFailure.
        """
        try:
            raw_feed = await self._download(source)
        except httpx.TimeoutException:
            return self._failure(source, f"timed out after {self.timeout_s}s")
        except httpx.HTTPStatusError as exc:
            return self._failure(
                source,
                f"HTTP {exc.response.status_code}",
                status_code=exc.response.status_code,
            )
        except httpx.HTTPError as exc:
            return self._failure(source, f"{type(exc).__name__}: {exc}")
        except Exception as exc:
            return self._failure(source, f"unexpected {type(exc).__name__}: {exc}")

        try:
            parsed = feedparser.parse(raw_feed)
            entries = getattr(parsed, "entries", None) or []
            if getattr(parsed, "bozo", False) and not entries:
                reason = getattr(parsed, "bozo_exception", None) or "unparseable feed"
                return self._failure(source, f"parse error: {reason}")

            fetched_at = datetime.now(timezone.utc)
            articles, norm_errors = normalize_feed_entries(parsed, source, fetched_at)
        except Exception as exc:
            return self._failure(source, f"parse error: {exc}")

        for err in norm_errors:
            entry_raw = err.entry_raw or {}
            logger.warning(
                "rss_fetch_entry_dropped",
                source_id=source.source_id,
                url=entry_raw.get("link") or entry_raw.get("id") or source.url,
                error=str(err),
            )

        logger.debug(
            "rss_fetch_succeeded",
            source_id=source.source_id,
            entries=len(entries),
            articles=len(articles),
        )
        return FetchSuccess(articles=articles)

    def _failure(
        self,
        source: NewsSource,
        reason: str,
        *,
        status_code: Optional[int] = None,
    ) -> FetchFailure:
        error = RSSFetchError(
            f"Failed to fetch RSS from {source.name}: {reason}",
            source_id=source.source_id,
            status_code=status_code,
        )
        logger.warning(
            "rss_fetch_failed",
            source_id=source.source_id,
            url=source.url,
            error=str(error),
        )
        return FetchFailure(error=error)
