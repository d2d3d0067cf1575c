"""Quest endpoints: creation, listing, status changes and fund release checks."""

from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from questboard.database import get_db
from questboard.datetime_utils import utcnow
from questboard.logging_config import get_logger
from questboard.models import QuestStatus, QuestType
from questboard.routes.serializers import quest_response
from questboard.schemas import (
    ClaimResponse,
    QuestClaimStats,
    QuestCreate,
    QuestDetailResponse,
    QuestResponse,
    QuestStatsResponse,
    QuestStatusUpdate,
    ReleaseEligibilityResponse,
    SweepResponse,
)
from questboard.services.claim_service import ClaimService
from questboard.services.quest_service import QuestFilters, QuestService

logger = get_logger(__name__)
router = APIRouter(prefix="/api/quests", tags=["quests"])


@router.post("", response_model=QuestDetailResponse, status_code=201)
async def create_quest(body: QuestCreate, db: AsyncSession = Depends(get_db)):
    """Publish a quest backed by an escrow deposit."""
    quest = await QuestService(db).create_quest(body)
    return quest_response(quest, with_claims=True)


@router.get("", response_model=list[QuestResponse])
async def list_quests(
    status: QuestStatus | None = Query(None),
    type: QuestType | None = Query(None),
    tags: str | None = Query(None, description="Comma-separated tag names (any match)"),
    creator: str | None = Query(None, description="Creator user id or wallet address"),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    sort: str | None = Query(None, description="newest, oldest, reward or expiry"),
    db: AsyncSession = Depends(get_db),
):
    """List quests. Without ``sort`` they are ranked by priority."""
    filters = QuestFilters(
        status=status,
        type=type,
        tags=[t for t in (tags or "").split(",") if t.strip()],
        creator=creator,
        limit=limit,
        offset=offset,
        sort=sort,
    )
    quests = await QuestService(db).list_quests(filters)
    now = utcnow()
    return [quest_response(q, now) for q in quests]


@router.get("/stats", response_model=QuestStatsResponse)
async def quest_stats(db: AsyncSession = Depends(get_db)):
    return await QuestService(db).get_quest_stats()


@router.post("/sweep-expired", response_model=SweepResponse)
async def sweep_expired(db: AsyncSession = Depends(get_db)):
    """Expire every overdue time-based quest now."""
    expired = await QuestService(db).sweep_expired_quests()
    return SweepResponse(expired=expired)


@router.get("/{quest_id}", response_model=QuestDetailResponse)
async def get_quest(quest_id: UUID, db: AsyncSession = Depends(get_db)):
    quest = await QuestService(db).get_quest(quest_id)
    return quest_response(quest, with_claims=True)


@router.patch("/{quest_id}/status", response_model=QuestDetailResponse)
async def update_quest_status(
    quest_id: UUID,
    body: QuestStatusUpdate,
    db: AsyncSession = Depends(get_db),
):
    quest = await QuestService(db).update_status(quest_id, body.status)
    return quest_response(quest, with_claims=True)


@router.get("/{quest_id}/claims", response_model=list[ClaimResponse])
async def list_quest_claims(quest_id: UUID, db: AsyncSession = Depends(get_db)):
    """Claims on a quest, oldest first."""
    await QuestService(db).get_quest(quest_id)
    return await ClaimService(db).list_by_quest(quest_id)


@router.get("/{quest_id}/claims/stats", response_model=QuestClaimStats)
async def quest_claim_stats(quest_id: UUID, db: AsyncSession = Depends(get_db)):
    await QuestService(db).get_quest(quest_id)
    return await ClaimService(db).get_quest_claim_stats(quest_id)


@router.get("/{quest_id}/release-eligibility", response_model=ReleaseEligibilityResponse)
async def release_eligibility(quest_id: UUID, db: AsyncSession = Depends(get_db)):
    can_release = await QuestService(db).can_release_funds(quest_id)
    return ReleaseEligibilityResponse(quest_id=quest_id, can_release=can_release)
