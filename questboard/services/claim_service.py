"""Claim lifecycle: submission, approval, rejection and claim queries."""

from dataclasses import dataclass
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from questboard.config import get_settings
from questboard.datetime_utils import utcnow
from questboard.errors import (
    ClaimNotPendingError,
    ConflictError,
    DuplicateClaimError,
    FundsNotReleasableError,
    NotFoundError,
    QuestExpiredError,
    QuestNotOpenError,
    StateInvariantError,
)
from questboard.logging_config import get_logger
from questboard.models import Claim, ClaimStatus, Quest, QuestStatus, QuestType
from questboard.services.escrow_service import EscrowAction, EscrowReleaseCoordinator
from questboard.services.quest_service import (
    QuestService,
    funds_releasable,
    is_quest_expired,
)
from questboard.services.user_service import UserService
from questboard.state_machine import validate_claim_transition

logger = get_logger(__name__)

ACTIVE_STATUSES = (ClaimStatus.PENDING.value, ClaimStatus.APPROVED.value)


@dataclass
class ApprovalResult:
    claim: Claim
    quest: Quest
    escrow_action: EscrowAction | None = None

    @property
    def requires_chain_release(self) -> bool:
        return self.escrow_action is not None


class ClaimService:
    """Handles claim lifecycle operations.

    Every state change runs as one transaction scoped to the quest row: the
    quest is locked first, then the claim leaves PENDING through a
    conditional UPDATE so that only one concurrent attempt can win.
    """

    def __init__(self, db: AsyncSession):
        self.db = db
        self.settings = get_settings()
        self.quests = QuestService(db)
        self.users = UserService(db)
        self.escrow = EscrowReleaseCoordinator(db)

    # -- submission ----------------------------------------------------------

    async def submit_claim(
        self,
        quest_id: UUID,
        wallet_address: str,
        proof_url: str | None = None,
        username: str | None = None,
    ) -> Claim:
        """
        Submit a PENDING claim on an open quest.

        Raises:
            NotFoundError: If the quest does not exist
            QuestNotOpenError: If the quest is COMPLETED or EXPIRED
            QuestExpiredError: If a time-based quest is past its expiry; the
                quest is moved to EXPIRED and that change is committed
            DuplicateClaimError: If the user already has a live claim
        """
        quest = await self.db.get(Quest, quest_id, populate_existing=True)
        if quest is None:
            raise NotFoundError("Quest", quest_id)
        if quest.status != QuestStatus.OPEN.value:
            raise QuestNotOpenError(quest.status)

        if is_quest_expired(quest):
            await self.quests.apply_status(quest, QuestStatus.EXPIRED)
            await self.db.commit()
            logger.info("quest_expired_on_claim", quest_id=str(quest_id))
            raise QuestExpiredError()

        user = await self.users.get_or_create_user(wallet_address)
        if username and user.username != username:
            user.username = username

        if await self.has_user_claimed(user.id, quest_id):
            await self.db.rollback()
            raise DuplicateClaimError()

        claim = Claim(
            quest_id=quest_id,
            user_id=user.id,
            proof_url=proof_url,
            status=ClaimStatus.PENDING.value,
        )
        self.db.add(claim)
        try:
            await self.db.commit()
        except IntegrityError:
            # Lost a race against a concurrent submission for the same user.
            await self.db.rollback()
            raise DuplicateClaimError() from None

        logger.info(
            "claim_submitted",
            claim_id=str(claim.id),
            quest_id=str(quest_id),
            user_id=str(user.id),
        )
        return await self.get_claim(claim.id)

    # -- state changes -------------------------------------------------------

    async def _load_for_update(self, claim_id: UUID) -> Claim:
        claim = await self.db.get(Claim, claim_id, populate_existing=True)
        if claim is None:
            raise NotFoundError("Claim", claim_id)
        return claim

    async def _transition(
        self,
        claim: Claim,
        target: str,
        skip_rewards: bool,
        require_release: bool = False,
    ) -> Quest:
        """Move a claim out of PENDING with all side effects. Flushes only.

        With ``require_release`` the quest's escrow must still be releasable
        once its row is locked.
        """
        if target == ClaimStatus.PENDING.value:
            raise StateInvariantError("claim", claim.status, target)
        if claim.status != ClaimStatus.PENDING.value:
            raise ClaimNotPendingError()
        validate_claim_transition(claim.status, target)

        quest = await self.quests.lock_quest(claim.quest_id)
        if require_release and not funds_releasable(
            quest.funds_released, quest.supplied_funds, quest.status
        ):
            raise FundsNotReleasableError()

        if (
            target == ClaimStatus.APPROVED.value
            and quest.type == QuestType.TIME_BASED.value
            and await self._approved_count(quest.id) > 0
        ):
            raise ConflictError("quest already has an approved claim")

        now = utcnow()
        result = await self.db.execute(
            update(Claim)
            .where(Claim.id == claim.id, Claim.status == ClaimStatus.PENDING.value)
            .values(status=target, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ClaimNotPendingError()
        await self.db.refresh(claim)

        if target == ClaimStatus.APPROVED.value and not skip_rewards:
            await self.users.award_xp(claim.user_id, self.settings.claim_approval_xp)
            await self.quests.apply_status(quest, QuestStatus.COMPLETED)

            if quest.type == QuestType.TIME_BASED.value:
                siblings = await self.db.execute(
                    update(Claim)
                    .where(
                        Claim.quest_id == quest.id,
                        Claim.id != claim.id,
                        Claim.status == ClaimStatus.PENDING.value,
                    )
                    .values(status=ClaimStatus.REJECTED.value, updated_at=now)
                    .execution_options(synchronize_session=False)
                )
                if siblings.rowcount:
                    logger.info(
                        "sibling_claims_rejected",
                        quest_id=str(quest.id),
                        count=siblings.rowcount,
                    )

        logger.info(
            "claim_status_changed",
            claim_id=str(claim.id),
            quest_id=str(quest.id),
            to_status=target,
            skip_rewards=skip_rewards,
        )
        return quest

    async def set_status(
        self,
        claim_id: UUID,
        new_status: ClaimStatus | str,
        skip_rewards: bool = False,
    ) -> Claim:
        target = ClaimStatus(new_status).value
        claim = await self._load_for_update(claim_id)
        try:
            await self._transition(claim, target, skip_rewards)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise
        return await self.get_claim(claim_id)

    async def reject_claim(self, claim_id: UUID) -> Claim:
        return await self.set_status(claim_id, ClaimStatus.REJECTED)

    async def approve_claim(
        self, claim_id: UUID, skip_rewards: bool = False
    ) -> ApprovalResult:
        """Creator approval: approve and, when eligible, authorize the release."""
        claim = await self._load_for_update(claim_id)
        if not skip_rewards and not await self.quests.can_release_funds(claim.quest_id):
            raise FundsNotReleasableError()

        try:
            # Re-checked under the quest lock; a concurrent approval may have
            # released the funds since the check above.
            quest = await self._transition(
                claim,
                ClaimStatus.APPROVED.value,
                skip_rewards,
                require_release=not skip_rewards,
            )
            action = None
            if not skip_rewards:
                action = await self.escrow.release(quest, claim)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        return ApprovalResult(
            claim=await self.get_claim(claim_id),
            quest=await self.quests.get_quest(claim.quest_id),
            escrow_action=action,
        )

    async def auto_approve(
        self, claim_id: UUID, verification_payload: dict[str, Any] | None = None
    ) -> ApprovalResult:
        """Approval driven by a successful proof verification."""
        claim = await self._load_for_update(claim_id)
        if claim.status != ClaimStatus.PENDING.value:
            raise ClaimNotPendingError()

        try:
            quest = await self._transition(claim, ClaimStatus.APPROVED.value, False)
            action = None
            if self.escrow.release_outstanding(quest):
                action = await self.escrow.release(quest, claim)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        payload = verification_payload or {}
        logger.info(
            "claim_auto_approved",
            claim_id=str(claim_id),
            quest_id=str(claim.quest_id),
            job_id=payload.get("job_id"),
            blueprint_id=payload.get("blueprint_id"),
            requires_chain_release=action is not None,
        )
        return ApprovalResult(
            claim=await self.get_claim(claim_id),
            quest=await self.quests.get_quest(claim.quest_id),
            escrow_action=action,
        )

    # -- queries -------------------------------------------------------------

    async def get_claim(self, claim_id: UUID) -> Claim:
        result = await self.db.execute(
            select(Claim)
            .where(Claim.id == claim_id)
            .options(selectinload(Claim.user), selectinload(Claim.quest))
            .execution_options(populate_existing=True)
        )
        claim = result.scalar_one_or_none()
        if claim is None:
            raise NotFoundError("Claim", claim_id)
        return claim

    async def list_by_quest(self, quest_id: UUID) -> list[Claim]:
        result = await self.db.execute(
            select(Claim)
            .where(Claim.quest_id == quest_id)
            .options(selectinload(Claim.user))
            .order_by(Claim.created_at.asc())
        )
        return list(result.scalars().all())

    async def list_by_user(self, user_id: UUID) -> list[Claim]:
        result = await self.db.execute(
            select(Claim)
            .where(Claim.user_id == user_id)
            .options(selectinload(Claim.quest), selectinload(Claim.user))
            .order_by(Claim.created_at.desc())
        )
        return list(result.scalars().all())

    async def list_pending(self, limit: int | None = None) -> list[Claim]:
        query = (
            select(Claim)
            .where(Claim.status == ClaimStatus.PENDING.value)
            .options(selectinload(Claim.quest), selectinload(Claim.user))
            .order_by(Claim.created_at.asc())
        )
        if limit is not None:
            query = query.limit(limit)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def recent_activity(self, limit: int = 10) -> list[Claim]:
        """The oldest claims still waiting for review."""
        return await self.list_pending(limit=limit)

    async def has_user_claimed(self, user_id: UUID, quest_id: UUID) -> bool:
        result = await self.db.execute(
            select(func.count(Claim.id)).where(
                Claim.quest_id == quest_id,
                Claim.user_id == user_id,
                Claim.status.in_(ACTIVE_STATUSES),
            )
        )
        return result.scalar_one() > 0

    async def _approved_count(self, quest_id: UUID) -> int:
        result = await self.db.execute(
            select(func.count(Claim.id)).where(
                Claim.quest_id == quest_id,
                Claim.status == ClaimStatus.APPROVED.value,
            )
        )
        return result.scalar_one()

    async def _status_counts(self, *criteria: Any) -> dict[str, int]:
        result = await self.db.execute(
            select(Claim.status, func.count(Claim.id)).where(*criteria).group_by(Claim.status)
        )
        counts = dict(result.all())
        return {
            "total": sum(counts.values()),
            "pending": counts.get(ClaimStatus.PENDING.value, 0),
            "approved": counts.get(ClaimStatus.APPROVED.value, 0),
            "rejected": counts.get(ClaimStatus.REJECTED.value, 0),
        }

    async def get_user_claim_stats(self, user_id: UUID) -> dict[str, Any]:
        stats: dict[str, Any] = await self._status_counts(Claim.user_id == user_id)
        rewards = await self.db.execute(
            select(func.coalesce(func.sum(Quest.reward_amount), 0))
            .join(Claim, Claim.quest_id == Quest.id)
            .where(
                Claim.user_id == user_id,
                Claim.status == ClaimStatus.APPROVED.value,
            )
        )
        stats["total_rewards"] = Decimal(str(rewards.scalar_one()))
        return stats

    async def get_quest_claim_stats(self, quest_id: UUID) -> dict[str, int]:
        return await self._status_counts(Claim.quest_id == quest_id)
