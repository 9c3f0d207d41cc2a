from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class FetchedArticle(BaseModel):
    """
    Normalized article candidate produced by the source fetcher.
    Has no id yet: ids are derived when the source cache layer makes
    candidates addressable.
    """

    source_id: str
    source_name: str
    original_url: str
    title: str
    summary: str = ""
    content: str = ""
    author: Optional[str] = None
    published_at: datetime
    tags: List[str] = Field(default_factory=list)
    image_url: Optional[str] = None
