from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class EphemeralArticle(BaseModel):
    """
    Transient article assembled from a source fetch. Never persisted
    beyond the ephemeral cache TTL; `id` is the SHA-1 of the normalized
    original_url so it is stable across fetches and feeds.
    """

    model_config = ConfigDict(populate_by_name=True)

    id: str
    original_url: str = Field(serialization_alias="originalUrl")
    title: Optional[str] = None
    summary: Optional[str] = None
    content: Optional[str] = None
    author: Optional[str] = None
    published_at: Optional[datetime] = Field(default=None, serialization_alias="publishedAt")
    tags: List[str] = Field(default_factory=list)
    image_url: Optional[str] = Field(default=None, serialization_alias="imageUrl")
    source_id: str = Field(serialization_alias="sourceId")
    source_name: str = Field(serialization_alias="sourceName")


class SourceCacheEntry(BaseModel):
    # items sorted by published_at descending at write time
    items: List[EphemeralArticle] = Field(default_factory=list)
    fetched_at: datetime


class AggregationResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    articles: List[EphemeralArticle] = Field(default_factory=list)
    next_cursor: Optional[str] = Field(default=None, serialization_alias="nextCursor")
    has_more: bool = Field(default=False, serialization_alias="hasMore")
