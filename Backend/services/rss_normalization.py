from __future__ import annotations

import calendar
import re
from datetime import datetime, timezone
from html import unescape
from typing import Any, Dict, Iterable, List, Optional, Tuple
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from bs4 import BeautifulSoup
from dateutil import parser as date_parser

from app.models.news_normalized import FetchedArticle
from app.models.news_sources import NewsSource

_HTML_TAG_RE = re.compile(r"<[^>]+>")
_WHITESPACE_RE = re.compile(r"\s+")
_TAG_INVALID_CHARS_RE = re.compile(r"[^\w\s-]")

TRACKING_PARAM_PREFIX = "utm_"
MAX_SUMMARY_LENGTH = 500
MAX_TAG_LENGTH = 50
MAX_TAGS = 10

_PARSED_DATE_FIELDS = ("published_parsed", "updated_parsed", "created_parsed")
_RAW_DATE_FIELDS = ("published", "pubDate", "updated", "created", "date", "isoDate")


class RSSNormalizationError(Exception):
    """
    Recoverable normalization failure for a single RSS/Atom entry.
    The entry is dropped; the rest of the feed is still used.
    """

    def __init__(self, message: str, entry_raw: Dict[str, Any] | None = None):
        super().__init__(message)
        self.entry_raw = entry_raw or {}


def normalize_url(url: str) -> str:
    """
    Strip `utm_*` tracking parameters so mirrored links collapse to one
    canonical URL. Unparseable or relative URLs are returned unchanged.
    """
    raw = (url or "").strip()
    try:
        parts = urlsplit(raw)
    except ValueError:
        return raw
    if not parts.scheme or not parts.netloc:
        return raw
    query = [
        (key, value)
        for key, value in parse_qsl(parts.query, keep_blank_values=True)
        if not key.startswith(TRACKING_PARAM_PREFIX)
    ]
    return urlunsplit(
        (
            parts.scheme.lower(),
            parts.netloc.lower(),
            parts.path,
            urlencode(query, doseq=True),
            parts.fragment,
        )
    )


def _struct_time_to_datetime(value: Any) -> datetime | None:
    if value is None:
        return None
    try:
        timestamp = calendar.timegm(value)
        return datetime.fromtimestamp(timestamp, tz=timezone.utc)
    except (TypeError, ValueError, OverflowError):
        return None


def _parse_date_string(value: Any) -> datetime | None:
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        parsed = date_parser.parse(value.strip())
    except (ValueError, OverflowError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def extract_published_at(entry: Dict[str, Any], fetched_at: datetime) -> datetime:
    """
    First usable date among the source-provided fields; missing or
    unparseable dates fall back to the fetch time.
    """
    for key in _PARSED_DATE_FIELDS:
        parsed = _struct_time_to_datetime(entry.get(key))
        if parsed:
            return parsed
    for key in _RAW_DATE_FIELDS:
        parsed = _parse_date_string(entry.get(key))
        if parsed:
            return parsed
    return fetched_at


def _strip_html(value: str) -> str:
    text = unescape(value or "")
    text = _HTML_TAG_RE.sub(" ", text)
    text = _WHITESPACE_RE.sub(" ", text)
    return text.strip()


def _get_first_content_value(entry: Dict[str, Any]) -> str:
    content = entry.get("content")
    if isinstance(content, list):
        for block in content:
            if isinstance(block, dict):
                val = block.get("value")
                if isinstance(val, str) and val.strip():
                    return val
    if isinstance(content, dict):
        val = content.get("value")
        if isinstance(val, str):
            return val
    if isinstance(content, str):
        return content
    return ""


def _first_url(blocks: Any, *, key: str = "url") -> Optional[str]:
    if isinstance(blocks, dict):
        blocks = [blocks]
    if not isinstance(blocks, list):
        return None
    for block in blocks:
        if isinstance(block, dict):
            val = block.get(key)
            if isinstance(val, str) and val.strip():
                return val.strip()
    return None


def _first_image_enclosure(entry: Dict[str, Any]) -> Optional[str]:
    enclosures = entry.get("enclosures")
    if not isinstance(enclosures, list):
        enclosures = []
    links = entry.get("links")
    if isinstance(links, list):
        enclosures = [*enclosures, *(l for l in links if isinstance(l, dict) and l.get("rel") == "enclosure")]
    for enclosure in enclosures:
        if not isinstance(enclosure, dict):
            continue
        mime = str(enclosure.get("type") or "").lower()
        href = enclosure.get("href") or enclosure.get("url")
        if mime.startswith("image/") and isinstance(href, str) and href.strip():
            return href.strip()
    return None


def _first_inline_image(html: str) -> Optional[str]:
    if not html or "<img" not in html.lower():
        return None
    img = BeautifulSoup(html, "html.parser").find("img", src=True)
    if img is None:
        return None
    src = str(img.get("src") or "").strip()
    return src or None


def extract_image_url(entry: Dict[str, Any]) -> Optional[str]:
    """
    Priority: media thumbnail, media content, first image enclosure,
    first inline <img> in the body.
    """
    return (
        _first_url(entry.get("media_thumbnail"))
        or _first_url(entry.get("media_content"))
        or _first_image_enclosure(entry)
        or _first_inline_image(_get_first_content_value(entry))
        or _first_inline_image(str(entry.get("summary") or entry.get("description") or ""))
    )


def sanitize_tag(value: str) -> str:
    tag = value.strip().lower()
    tag = _TAG_INVALID_CHARS_RE.sub("", tag)
    return _WHITESPACE_RE.sub("-", tag)


def extract_tags(entry: Dict[str, Any]) -> List[str]:
    raw_tags = entry.get("tags")
    if not isinstance(raw_tags, list):
        raw_tags = []
    categories = entry.get("categories")
    if isinstance(categories, list):
        raw_tags = [*raw_tags, *categories]

    tags: List[str] = []
    for raw in raw_tags:
        term = raw.get("term") if isinstance(raw, dict) else raw
        if not isinstance(term, str):
            continue
        tag = sanitize_tag(term)
        if 0 < len(tag) <= MAX_TAG_LENGTH:
            tags.append(tag)
    return tags


def merge_tags(*groups: Iterable[str], limit: int = MAX_TAGS) -> List[str]:
    merged: List[str] = []
    seen = set()
    for group in groups:
        for tag in group:
            if tag in seen:
                continue
            seen.add(tag)
            merged.append(tag)
    return merged[:limit]


def _extract_summary(entry: Dict[str, Any]) -> str:
    for key in ("contentSnippet", "summary", "description"):
        value = entry.get(key)
        if isinstance(value, str) and value.strip():
            return _strip_html(value)[:MAX_SUMMARY_LENGTH]
    content_value = _get_first_content_value(entry)
    if content_value:
        return _strip_html(content_value)[:MAX_SUMMARY_LENGTH]
    return ""


def _extract_url(entry: Dict[str, Any]) -> str:
    link = entry.get("link")
    if isinstance(link, str) and link.strip():
        return link.strip()
    links = entry.get("links")
    if isinstance(links, list):
        for link_entry in links:
            if not isinstance(link_entry, dict):
                continue
            rel = str(link_entry.get("rel") or "").lower()
            href = link_entry.get("href")
            if isinstance(href, str) and href.strip() and rel in {"", "alternate"}:
                return href.strip()
    return ""


def normalize_entry(
    source: NewsSource,
    entry: Dict[str, Any],
    fetched_at: datetime,
) -> Optional[FetchedArticle]:
    """
    Map a single feedparser entry to a FetchedArticle.
    Entries without both a link and a title are dropped (None).
    """
    title = entry.get("title")
    url = _extract_url(entry)
    if not isinstance(title, str) or not title.strip() or not url:
        return None

    summary = _extract_summary(entry)
    content = _get_first_content_value(entry) or str(entry.get("summary") or "") or summary
    author = entry.get("author")
    if not isinstance(author, str) or not author.strip():
        author = source.name

    return FetchedArticle(
        source_id=source.source_id,
        source_name=source.name,
        original_url=normalize_url(url),
        title=title.strip(),
        summary=summary,
        content=content,
        author=author.strip(),
        published_at=extract_published_at(entry, fetched_at),
        tags=merge_tags(extract_tags(entry), source.tags),
        image_url=extract_image_url(entry),
    )


def normalize_feed_entries(
    parsed_feed: Any,
    source: NewsSource,
    fetched_at: Optional[datetime] = None,
) -> Tuple[List[FetchedArticle], List[RSSNormalizationError]]:
    """
    Iterate entries safely and collect normalized articles + per-entry errors.
    Dropped entries (missing link/title) are neither items nor errors.
    """
    fetched_at = fetched_at or datetime.now(timezone.utc)
    items: List[FetchedArticle] = []
    errors: List[RSSNormalizationError] = []
    if isinstance(parsed_feed, dict):
        entries = parsed_feed.get("entries") or []
    else:
        entries = getattr(parsed_feed, "entries", []) or []
    for entry in entries:
        try:
            item = normalize_entry(source, entry, fetched_at)
        except Exception as exc:
            errors.append(RSSNormalizationError(str(exc), entry_raw=entry if isinstance(entry, dict) else None))
            continue
        if item is not None:
            items.append(item)
    return items, errors
