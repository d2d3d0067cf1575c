"""Escrow release coordination.

The coordinator never moves money. It records that a quest's escrow may be
released and hands back the contract call the claimant's wallet must sign.
The release is recorded optimistically, before any on-chain confirmation.
"""

from dataclasses import dataclass, field
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from questboard.config import get_settings
from questboard.errors import NotFoundError
from questboard.logging_config import get_logger
from questboard.models import Claim, Quest, User
from questboard.services.quest_service import QuestService

logger = get_logger(__name__)

RELEASE_FUNCTION = "releaseQuestFunds"


@dataclass(frozen=True)
class EscrowAction:
    """A contract call for a wallet to sign."""

    contract_address: str
    quest_id: UUID
    claimer_address: str
    function_name: str = RELEASE_FUNCTION
    args: list[str] = field(default_factory=list)


class EscrowReleaseCoordinator:
    def __init__(self, db: AsyncSession, contract_address: str | None = None):
        self.db = db
        self.quests = QuestService(db)
        self.contract_address = contract_address or get_settings().escrow_contract_address

    def build_directive(self, quest: Quest, claimer_address: str) -> EscrowAction:
        return EscrowAction(
            contract_address=self.contract_address,
            quest_id=quest.id,
            claimer_address=claimer_address,
            args=[str(quest.id), claimer_address],
        )

    @staticmethod
    def release_outstanding(quest: Quest) -> bool:
        """True when the quest has an escrow deposit that was not yet released."""
        return bool(quest.transaction_hash) and not quest.funds_released

    async def release(self, quest: Quest, claim: Claim) -> EscrowAction | None:
        """Record the release and return the directive, at most once per quest.

        Flushes only; the caller owns the transaction.
        """
        if quest.funds_released:
            logger.info("escrow_release_skipped", quest_id=str(quest.id))
            return None

        claimant = await self.db.get(User, claim.user_id)
        if claimant is None:
            raise NotFoundError("User", claim.user_id)

        await self.quests.mark_funds_released(quest)
        action = self.build_directive(quest, claimant.wallet_address)
        logger.info(
            "escrow_release_directive",
            quest_id=str(quest.id),
            claim_id=str(claim.id),
            claimer_address=claimant.wallet_address,
            contract_address=self.contract_address,
        )
        return action
