"""User endpoints: registration, profiles, leaderboard and claim history."""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from questboard.database import get_db
from questboard.schemas import (
    ClaimDetailResponse,
    UserClaimStats,
    UserCreate,
    UserProfileResponse,
    UserResponse,
)
from questboard.services.claim_service import ClaimService
from questboard.services.user_service import UserService

router = APIRouter(prefix="/api/users", tags=["users"])


@router.post("", response_model=UserResponse, status_code=201)
async def create_user(body: UserCreate, db: AsyncSession = Depends(get_db)):
    return await UserService(db).create_user(
        body.wallet_address, username=body.username, email=body.email
    )


@router.get("/leaderboard", response_model=list[UserResponse])
async def leaderboard(
    limit: int = Query(10, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    """Users ranked by XP, then level."""
    return await UserService(db).get_leaderboard(limit)


@router.get("/{wallet_address}", response_model=UserProfileResponse)
async def get_user_profile(wallet_address: str, db: AsyncSession = Depends(get_db)):
    profile = await UserService(db).get_user_profile(wallet_address)
    return UserProfileResponse(
        **UserResponse.model_validate(profile["user"]).model_dump(),
        stats=profile["stats"],
    )


@router.get("/{wallet_address}/claims", response_model=list[ClaimDetailResponse])
async def list_user_claims(wallet_address: str, db: AsyncSession = Depends(get_db)):
    """A user's claims, newest first."""
    user = await UserService(db).get_user_by_wallet(wallet_address)
    return await ClaimService(db).list_by_user(user.id)


@router.get("/{wallet_address}/claims/stats", response_model=UserClaimStats)
async def user_claim_stats(wallet_address: str, db: AsyncSession = Depends(get_db)):
    user = await UserService(db).get_user_by_wallet(wallet_address)
    return await ClaimService(db).get_user_claim_stats(user.id)
