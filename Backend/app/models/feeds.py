from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field


class FeedSourceRef(BaseModel):
    source_id: str
    enabled: bool = True


class FeedConfig(BaseModel):
    """User-owned aggregation definition; read-only to the feed reader."""

    feed_id: str
    user_id: str
    name: str
    description: Optional[str] = None
    sources: List[FeedSourceRef] = Field(default_factory=list)
    keywords: List[str] = Field(default_factory=list)
    exclude_keywords: List[str] = Field(default_factory=list)
    topics: List[str] = Field(default_factory=list)  # matched against article tags
    is_active: bool = True
    refresh_interval: int = 60  # minutes

    @property
    def enabled_source_ids(self) -> List[str]:
        return [ref.source_id for ref in self.sources if ref.enabled]
