from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class SaveStats(BaseModel):
    saved: int = 0
    total: int = 0
    errors: List[str] = Field(default_factory=list)


class SourceFetchResult(BaseModel):
    """Outcome of one source within a bulk fetch run."""

    source_id: str
    source_name: str
    success: bool = False
    articles_found: int = 0
    articles_saved: int = 0
    error: Optional[str] = None


class FetchRunSummary(BaseModel):
    timestamp: datetime
    total_sources: int = 0
    successful_sources: int = 0
    failed_sources: int = 0
    total_articles_found: int = 0
    total_articles_saved: int = 0
    results: List[SourceFetchResult] = Field(default_factory=list)
