"""User accounts keyed by wallet address, with XP and levels."""

from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from questboard.datetime_utils import utcnow
from questboard.errors import ConflictError, NotFoundError, ValidationError
from questboard.logging_config import get_logger
from questboard.models import Claim, ClaimStatus, Quest, User

logger = get_logger(__name__)

XP_PER_LEVEL = 100
MAX_LEADERBOARD = 100


def compute_level(xp: int) -> int:
    """Every 100 XP is one level; everyone starts at level 1."""
    return xp // XP_PER_LEVEL + 1


def generated_username(wallet_address: str) -> str:
    return f"user_{wallet_address[2:8]}"


class UserService:
    """Lookup, creation and XP bookkeeping for users.

    ``get_or_create_user`` and ``award_xp`` only flush so they can join a
    caller's transaction; ``create_user`` commits.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_user(self, user_id: UUID) -> User:
        user = await self.db.get(User, user_id, populate_existing=True)
        if user is None:
            raise NotFoundError("User", user_id)
        return user

    async def find_by_wallet(self, wallet_address: str) -> User | None:
        result = await self.db.execute(
            select(User).where(User.wallet_address == wallet_address)
        )
        return result.scalar_one_or_none()

    async def get_user_by_wallet(self, wallet_address: str) -> User:
        user = await self.find_by_wallet(wallet_address)
        if user is None:
            raise NotFoundError("User", wallet_address)
        return user

    async def get_or_create_user(
        self,
        wallet_address: str,
        username: str | None = None,
        email: str | None = None,
    ) -> User:
        """Resolve a user by wallet, creating one on first sight."""
        user = await self.find_by_wallet(wallet_address)
        if user is not None:
            return user

        user = User(wallet_address=wallet_address, username=username, email=email)
        self.db.add(user)
        await self.db.flush()
        logger.info("user_created", user_id=str(user.id), wallet_address=wallet_address)
        return user

    async def create_user(
        self,
        wallet_address: str,
        username: str | None = None,
        email: str | None = None,
    ) -> User:
        if not wallet_address or not wallet_address.strip():
            raise ValidationError(["walletAddress is required"])
        if await self.find_by_wallet(wallet_address) is not None:
            raise ConflictError("User with this wallet address already exists")

        user = User(wallet_address=wallet_address, username=username, email=email)
        self.db.add(user)
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise ConflictError(
                "User with this wallet address or email already exists"
            ) from None
        logger.info("user_created", user_id=str(user.id), wallet_address=wallet_address)
        return user

    async def award_xp(self, user_id: UUID, amount: int) -> User:
        """Add XP and recompute the level. Flushes only."""
        if amount <= 0:
            raise ValidationError(["Invalid XP amount"])
        # Increment in SQL so concurrent approvals for one user never lose XP.
        result = await self.db.execute(
            update(User)
            .where(User.id == user_id)
            .values(
                xp=User.xp + amount,
                level=(User.xp + amount) // XP_PER_LEVEL + 1,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise NotFoundError("User", user_id)
        user = await self.db.get(User, user_id, populate_existing=True)

        logger.info(
            "xp_awarded",
            user_id=str(user_id),
            amount=amount,
            xp=user.xp,
            level=user.level,
        )
        return user

    async def get_leaderboard(self, limit: int = 10) -> list[User]:
        if limit <= 0 or limit > MAX_LEADERBOARD:
            raise ValidationError([f"Limit must be between 1 and {MAX_LEADERBOARD}"])
        result = await self.db.execute(
            select(User)
            .order_by(User.xp.desc(), User.level.desc(), User.created_at.asc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def get_user_profile(self, wallet_address: str) -> dict[str, Any]:
        """A user together with claim and quest counters."""
        user = await self.get_user_by_wallet(wallet_address)

        claim_counts = await self.db.execute(
            select(Claim.status, func.count(Claim.id))
            .where(Claim.user_id == user.id)
            .group_by(Claim.status)
        )
        counts = dict(claim_counts.all())

        rewards = await self.db.execute(
            select(func.coalesce(func.sum(Quest.reward_amount), 0))
            .join(Claim, Claim.quest_id == Quest.id)
            .where(
                Claim.user_id == user.id,
                Claim.status == ClaimStatus.APPROVED.value,
            )
        )
        created = await self.db.execute(
            select(func.count(Quest.id)).where(Quest.creator_id == user.id)
        )

        return {
            "user": user,
            "stats": {
                "completed_quests": counts.get(ClaimStatus.APPROVED.value, 0),
                "pending_claims": counts.get(ClaimStatus.PENDING.value, 0),
                "total_rewards": Decimal(str(rewards.scalar_one())),
                "quests_created": created.scalar_one(),
            },
        }
