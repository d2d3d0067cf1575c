"""ORM-to-schema conversion shared by the routers."""

from datetime import datetime

from questboard.datetime_utils import utcnow
from questboard.models import Quest
from questboard.schemas import (
    ApprovalResponse,
    ClaimResponse,
    EscrowActionResponse,
    QuestDetailResponse,
    QuestResponse,
    QuestSummary,
    VerificationOutcomeResponse,
)
from questboard.services.claim_service import ApprovalResult
from questboard.services.claim_verification import VerificationOutcome
from questboard.services.escrow_service import EscrowAction
from questboard.services.quest_service import (
    calculate_priority,
    format_time_remaining,
    is_quest_expired,
)


def quest_response(
    quest: Quest, now: datetime | None = None, with_claims: bool = False
) -> QuestResponse:
    """Quest with its read-time fields (expiry flag, countdown, priority)."""
    now = now or utcnow()
    schema = QuestDetailResponse if with_claims else QuestResponse
    return schema.model_validate(quest).model_copy(
        update={
            "claim_count": len(quest.claims),
            "is_expired": is_quest_expired(quest, now),
            "time_remaining": format_time_remaining(quest, now),
            "priority": calculate_priority(quest, now),
        }
    )


def escrow_response(action: EscrowAction | None) -> EscrowActionResponse | None:
    if action is None:
        return None
    return EscrowActionResponse.model_validate(action)


def approval_response(result: ApprovalResult) -> ApprovalResponse:
    return ApprovalResponse(
        claim=ClaimResponse.model_validate(result.claim),
        quest=QuestSummary.model_validate(result.quest),
        requires_chain_release=result.requires_chain_release,
        escrow_action=escrow_response(result.escrow_action),
    )


def outcome_response(outcome: VerificationOutcome) -> VerificationOutcomeResponse:
    return VerificationOutcomeResponse(
        claim_id=outcome.claim_id,
        status=outcome.status,
        message=outcome.message,
        requires_chain_release=outcome.requires_chain_release,
        escrow_action=escrow_response(outcome.escrow_action),
        failure_category=outcome.failure_category,
    )
