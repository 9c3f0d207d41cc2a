from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Path, Query
from fastapi.responses import JSONResponse

from app.core.logging import get_logger
from app.deps.feed_services import get_feed_reader
from services.feed_reader_service import FeedNotFoundError, FeedReaderService

logger = get_logger().bind(module="feeds_router")

router = APIRouter(
    prefix="/feeds",
    tags=["feeds"],
)


@router.get("/{feed_id}/articles")
async def get_feed_articles(
    feed_id: str = Path(..., min_length=1),
    # Kept as strings: invalid values fall back to defaults instead of a 422.
    limit: Optional[str] = Query(default=None, description="Page size, clamped to the configured maximum."),
    cursor: Optional[str] = Query(default=None, description="Opaque cursor from a previous page's nextCursor."),
    force_refresh: bool = Query(default=False, alias="force_refresh"),
    user_id: Optional[str] = Query(default=None),
    feed_reader: FeedReaderService = Depends(get_feed_reader),
) -> JSONResponse:
    try:
        result = await feed_reader.get_aggregated_feed_items(
            feed_id,
            user_id=user_id,
            limit=limit,
            cursor=cursor,
            force_refresh=force_refresh,
        )
    except FeedNotFoundError as exc:
        logger.info("feed_not_found", feed_id=feed_id)
        raise HTTPException(status_code=404, detail="Feed not found") from exc

    return JSONResponse(content=result.model_dump(mode="json", by_alias=True))
