"""
News source descriptors and the default source catalog loader.

Parses configs/news_sources.yml into NewsSource objects with
structlog-backed validation. The registry that owns sources at runtime
lives in services/news_source_service.py.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import yaml

from app.core.config import get_settings
from app.core.logging import get_logger

logger = get_logger()


class SourceType(str, Enum):
    RSS = "rss"
    API = "api"
    SCRAPER = "scraper"


ALLOWED_SOURCE_CATEGORIES: Sequence[str] = (
    "mainstream",
    "alternative",
    "libertarian",
    "financial",
    "tech",
    "international",
)


@dataclass(frozen=True)
class FetchConfig:
    headers: Dict[str, str] = field(default_factory=dict)
    rate_limit: Optional[int] = None  # requests per minute
    selector: Optional[str] = None


@dataclass(frozen=True)
class SourceReliability:
    score: int = 100
    failure_count: int = 0
    last_successful_fetch: Optional[datetime] = None
    last_failed_fetch: Optional[datetime] = None


@dataclass(frozen=True)
class NewsSource:
    """Single syndicated source definition."""

    source_id: str
    name: str
    url: str
    type: SourceType = SourceType.RSS
    category: str = "mainstream"
    description: Optional[str] = None
    is_active: bool = True
    is_public: bool = True
    added_by_user_id: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    fetch_config: FetchConfig = field(default_factory=FetchConfig)
    reliability: SourceReliability = field(default_factory=SourceReliability)

    def with_changes(self, **changes: Any) -> "NewsSource":
        return replace(self, **changes)


@dataclass(frozen=True)
class DefaultSourceSpec:
    """Catalog entry used to seed the registry; has no identity yet."""

    name: str
    url: str
    type: SourceType
    category: str
    description: Optional[str]
    tags: List[str]


def load_news_sources_config(path: Optional[Path] = None) -> Dict[str, object]:
    """
    Load raw YAML config.

    Returns empty dict if file is missing or invalid to keep workers running.
    """
    cfg_path = Path(path) if path else get_settings().NEWS_SOURCES_CONFIG
    try:
        text = cfg_path.read_text(encoding="utf-8")
    except FileNotFoundError:
        logger.error("news_sources_config_not_found", path=str(cfg_path))
        return {}
    except OSError as exc:
        logger.error("news_sources_config_read_error", path=str(cfg_path), error=str(exc))
        return {}

    try:
        data = yaml.safe_load(text) or {}
    except yaml.YAMLError as exc:
        logger.error("news_sources_config_parse_error", path=str(cfg_path), error=str(exc))
        return {}

    if not isinstance(data, dict):
        logger.error(
            "news_sources_config_invalid_root",
            path=str(cfg_path),
            root_type=type(data).__name__,
        )
        return {}

    return data


def _normalize_tags(value: object) -> List[str]:
    if not isinstance(value, list):
        return []
    tags: List[str] = []
    for item in value:
        if isinstance(item, str) and item.strip():
            tags.append(item.strip().lower())
    return tags


def _validate_default_source(raw: Dict[str, object]) -> Optional[DefaultSourceSpec]:
    """Validate raw dict and convert to DefaultSourceSpec, logging issues."""
    required_keys = ("name", "url", "category")
    missing = [k for k in required_keys if not raw.get(k)]
    if missing:
        logger.warning("news_source_invalid_missing_fields", missing=missing, raw=raw)
        return None

    category = str(raw.get("category")).strip()
    if category not in ALLOWED_SOURCE_CATEGORIES:
        logger.warning(
            "news_source_invalid_category",
            category=category,
            allowed=list(ALLOWED_SOURCE_CATEGORIES),
        )
        return None

    url = raw.get("url")
    if not isinstance(url, str) or not url.startswith(("http://", "https://")):
        logger.warning("news_source_invalid_url", url=url)
        return None

    try:
        source_type = SourceType(str(raw.get("type") or "rss").strip().lower())
    except ValueError:
        logger.warning("news_source_invalid_type", value=raw.get("type"), url=url)
        return None

    description = raw.get("description")
    return DefaultSourceSpec(
        name=str(raw.get("name")).strip(),
        url=url,
        type=source_type,
        category=category,
        description=description.strip() if isinstance(description, str) else None,
        tags=_normalize_tags(raw.get("tags")),
    )


def load_default_sources(path: Optional[Path] = None) -> List[DefaultSourceSpec]:
    """Public accessor for the valid entries of the default catalog."""
    cfg = load_news_sources_config(path)
    raw_sources = cfg.get("sources", [])
    if not isinstance(raw_sources, list):
        logger.error(
            "news_sources_invalid_sources_type",
            actual_type=type(raw_sources).__name__,
        )
        return []

    result: List[DefaultSourceSpec] = []
    for idx, raw in enumerate(raw_sources):
        if not isinstance(raw, dict):
            logger.warning(
                "news_source_invalid_entry_type",
                index=idx,
                value_type=type(raw).__name__,
            )
            continue
        parsed = _validate_default_source(raw)
        if parsed:
            result.append(parsed)

    logger.info("news_sources_loaded", total=len(result))
    return result
