"""Tag endpoints: listing, search, popular tags and suggestions."""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from questboard.database import get_db
from questboard.errors import ValidationError
from questboard.schemas import TagCount, TagSuggestRequest
from questboard.services.tag_service import (
    POPULAR_TAGS,
    list_tags_with_counts,
    search_stored_tags,
    suggest_tags,
)

router = APIRouter(prefix="/api/tags", tags=["tags"])


@router.get("", response_model=list[TagCount])
async def list_tags(db: AsyncSession = Depends(get_db)):
    """All tags with quest counts, most used first."""
    return await list_tags_with_counts(db)


@router.get("/search", response_model=list[str])
async def search(
    q: str = Query(..., min_length=1),
    db: AsyncSession = Depends(get_db),
):
    return await search_stored_tags(db, q)


@router.get("/popular", response_model=list[str])
async def popular():
    return POPULAR_TAGS


@router.post("/suggest", response_model=list[str])
async def suggest(body: TagSuggestRequest):
    if not body.title and not body.description:
        raise ValidationError(["Title or description is required"])
    return suggest_tags(body.title or "", body.description or "")
