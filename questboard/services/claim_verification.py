"""Drive claims from proof verification results."""

from dataclasses import dataclass
from typing import Any, Literal
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from questboard.errors import ClaimNotPendingError, NotFoundError
from questboard.logging_config import get_logger
from questboard.models import Claim, ClaimStatus
from questboard.services.claim_service import ApprovalResult, ClaimService
from questboard.services.escrow_service import EscrowAction
from questboard.verification.base import ProofVerificationError
from questboard.verification.pipeline import ProofVerificationPipeline

logger = get_logger(__name__)

VERIFIED_RELEASE_MESSAGE = "Proof verified! Funds are ready to be released from escrow."
VERIFIED_MESSAGE = "Proof verified! Claim approved successfully."
REJECTED_MESSAGE = "Proof verification failed. Claim rejected."


@dataclass
class VerificationOutcome:
    claim_id: UUID
    status: Literal["verified", "rejected"]
    message: str
    requires_chain_release: bool = False
    escrow_action: EscrowAction | None = None
    failure_category: str | None = None


def _verified(claim_id: UUID, result: ApprovalResult) -> VerificationOutcome:
    return VerificationOutcome(
        claim_id=claim_id,
        status="verified",
        message=VERIFIED_RELEASE_MESSAGE if result.requires_chain_release else VERIFIED_MESSAGE,
        requires_chain_release=result.requires_chain_release,
        escrow_action=result.escrow_action,
    )


class ClaimVerificationService:
    def __init__(self, db: AsyncSession, pipeline: ProofVerificationPipeline | None = None):
        self.db = db
        self.pipeline = pipeline
        self.claims = ClaimService(db)

    async def _require_pending(self, claim_id: UUID) -> None:
        claim = await self.db.get(Claim, claim_id, populate_existing=True)
        if claim is None:
            raise NotFoundError("Claim", claim_id)
        if claim.status != ClaimStatus.PENDING.value:
            raise ClaimNotPendingError()

    async def verify_claim_with_proof(
        self, claim_id: UUID, artifact: bytes, identity: str
    ) -> VerificationOutcome:
        """Run the proof pipeline, then approve or reject the claim.

        The pipeline can take minutes, so it runs with no transaction open;
        the claim is re-checked under the quest lock when the result lands.
        """
        if self.pipeline is None:
            raise RuntimeError("No proof verification pipeline configured")

        await self._require_pending(claim_id)
        await self.db.commit()

        try:
            bundle = await self.pipeline.verify(artifact, identity)
        except ProofVerificationError as e:
            logger.info(
                "claim_proof_rejected",
                claim_id=str(claim_id),
                category=e.category.value,
                attempts=len(e.attempts),
            )
            await self.claims.reject_claim(claim_id)
            return VerificationOutcome(
                claim_id=claim_id,
                status="rejected",
                message=REJECTED_MESSAGE,
                failure_category=e.category.value,
            )

        result = await self.claims.auto_approve(claim_id, bundle.to_payload())
        return _verified(claim_id, result)

    async def apply_external_verdict(
        self,
        claim_id: UUID,
        verified: bool,
        payload: dict[str, Any] | None = None,
    ) -> VerificationOutcome:
        """Apply a verdict reached by an external verifier."""
        if verified:
            result = await self.claims.auto_approve(claim_id, payload)
            return _verified(claim_id, result)

        await self.claims.reject_claim(claim_id)
        logger.info("claim_rejected_by_verifier", claim_id=str(claim_id))
        return VerificationOutcome(
            claim_id=claim_id,
            status="rejected",
            message=REJECTED_MESSAGE,
        )
