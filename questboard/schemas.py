"""Pydantic v2 request/response schemas for all endpoints."""

from datetime import datetime
from decimal import Decimal
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from questboard.models import ClaimStatus, QuestStatus, QuestType


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class UserCreate(BaseModel):
    wallet_address: str = Field(..., min_length=1, max_length=100)
    username: str | None = Field(default=None, max_length=100)
    email: str | None = Field(default=None, max_length=255)


class UserResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    wallet_address: str
    username: str | None
    email: str | None
    xp: int
    level: int
    created_at: datetime
    updated_at: datetime


class UserStats(BaseModel):
    completed_quests: int
    pending_claims: int
    total_rewards: Decimal
    quests_created: int


class UserProfileResponse(UserResponse):
    stats: UserStats


# ---------------------------------------------------------------------------
# Quests
# ---------------------------------------------------------------------------


class QuestCreate(BaseModel):
    # Business rules are checked by the quest service so that every
    # violation is reported at once; only shapes are enforced here.
    title: str
    description: str
    type: QuestType = QuestType.REGULAR
    reward_amount: Decimal
    supplied_funds: Decimal
    creator_wallet: str = Field(..., min_length=1, max_length=100)
    tags: list[str] = Field(default_factory=list)
    expiry: datetime | None = None
    github_url: str | None = None
    transaction_hash: str | None = None


class QuestStatusUpdate(BaseModel):
    status: QuestStatus


class QuestSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    title: str
    type: QuestType
    status: QuestStatus
    reward_amount: Decimal
    funds_released: bool


class QuestResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    title: str
    description: str
    github_url: str | None
    type: QuestType
    status: QuestStatus
    expiry: datetime | None
    reward_amount: Decimal
    supplied_funds: Decimal
    funds_released: bool
    transaction_hash: str | None
    creator_id: UUID
    creator: UserResponse | None = None
    tags: list[str] = Field(default_factory=list)
    claim_count: int = 0
    is_expired: bool = False
    time_remaining: str | None = None
    priority: float = 0
    created_at: datetime
    updated_at: datetime

    @field_validator("tags", mode="before")
    @classmethod
    def tag_names(cls, v: Any) -> Any:
        if isinstance(v, list):
            return [getattr(tag, "name", tag) for tag in v]
        return v


class QuestStatsResponse(BaseModel):
    total: int
    open: int
    completed: int
    expired: int
    total_rewards: Decimal


class SweepResponse(BaseModel):
    expired: int


class ReleaseEligibilityResponse(BaseModel):
    quest_id: UUID
    can_release: bool


# ---------------------------------------------------------------------------
# Claims
# ---------------------------------------------------------------------------


class ClaimCreate(BaseModel):
    quest_id: UUID
    wallet_address: str = Field(..., min_length=1, max_length=100)
    proof_url: str | None = Field(default=None, max_length=2048)
    username: str | None = Field(default=None, max_length=100)


class ClaimStatusUpdate(BaseModel):
    status: ClaimStatus
    skip_rewards: bool = False


class ClaimApproveRequest(BaseModel):
    skip_rewards: bool = False


class ClaimResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    quest_id: UUID
    user_id: UUID
    proof_url: str | None
    status: ClaimStatus
    created_at: datetime
    updated_at: datetime
    user: UserResponse | None = None


class ClaimDetailResponse(ClaimResponse):
    quest: QuestSummary | None = None


class QuestDetailResponse(QuestResponse):
    claims: list[ClaimResponse] = Field(default_factory=list)


class UserClaimStats(BaseModel):
    total: int
    pending: int
    approved: int
    rejected: int
    total_rewards: Decimal


class QuestClaimStats(BaseModel):
    total: int
    pending: int
    approved: int
    rejected: int


class EscrowActionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    contract_address: str
    function_name: str
    args: list[str]
    quest_id: UUID
    claimer_address: str


class ApprovalResponse(BaseModel):
    claim: ClaimResponse
    quest: QuestSummary
    requires_chain_release: bool = False
    escrow_action: EscrowActionResponse | None = None


class ExternalVerdictRequest(BaseModel):
    verified: bool
    proof_data: dict[str, Any] | None = None
    verifier_address: str | None = None


class VerificationOutcomeResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    claim_id: UUID
    status: Literal["verified", "rejected"]
    message: str
    requires_chain_release: bool = False
    escrow_action: EscrowActionResponse | None = None
    failure_category: str | None = None


class ClaimVerificationStatus(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    claim_id: UUID
    status: ClaimStatus
    quest_id: UUID
    user_id: UUID
    proof_url: str | None
    created_at: datetime
    updated_at: datetime


# ---------------------------------------------------------------------------
# Proofs
# ---------------------------------------------------------------------------


class ProofBundleResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    job_id: str
    proof: Any
    public_signals: Any
    vk_hash: str
    blueprint_id: str


# ---------------------------------------------------------------------------
# Tags
# ---------------------------------------------------------------------------


class TagCount(BaseModel):
    name: str
    quest_count: int


class TagSuggestRequest(BaseModel):
    title: str | None = None
    description: str | None = None


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


class HealthResponse(BaseModel):
    status: str
    service: str
    version: str
    database: str
