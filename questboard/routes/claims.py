"""Claim endpoints: submission, review, verification and proof-driven approval."""

from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, Query, Request, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession

from questboard.database import get_db
from questboard.logging_config import get_logger
from questboard.routes.deps import get_pipeline, read_artifact, run_until_disconnected
from questboard.routes.serializers import approval_response, outcome_response
from questboard.schemas import (
    ApprovalResponse,
    ClaimApproveRequest,
    ClaimCreate,
    ClaimDetailResponse,
    ClaimStatusUpdate,
    ClaimVerificationStatus,
    ExternalVerdictRequest,
    VerificationOutcomeResponse,
)
from questboard.services.claim_service import ClaimService
from questboard.services.claim_verification import ClaimVerificationService
from questboard.verification.pipeline import ProofVerificationPipeline

logger = get_logger(__name__)
router = APIRouter(prefix="/api/claims", tags=["claims"])


@router.post("", response_model=ClaimDetailResponse, status_code=201)
async def submit_claim(body: ClaimCreate, db: AsyncSession = Depends(get_db)):
    return await ClaimService(db).submit_claim(
        body.quest_id,
        body.wallet_address,
        proof_url=body.proof_url,
        username=body.username,
    )


@router.get("/pending", response_model=list[ClaimDetailResponse])
async def list_pending_claims(db: AsyncSession = Depends(get_db)):
    """Claims awaiting review, oldest first."""
    return await ClaimService(db).list_pending()


@router.get("/recent", response_model=list[ClaimDetailResponse])
async def recent_claims(
    limit: int = Query(10, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    return await ClaimService(db).recent_activity(limit)


@router.get("/{claim_id}", response_model=ClaimDetailResponse)
async def get_claim(claim_id: UUID, db: AsyncSession = Depends(get_db)):
    return await ClaimService(db).get_claim(claim_id)


@router.patch("/{claim_id}", response_model=ClaimDetailResponse)
async def update_claim_status(
    claim_id: UUID,
    body: ClaimStatusUpdate,
    db: AsyncSession = Depends(get_db),
):
    return await ClaimService(db).set_status(
        claim_id, body.status, skip_rewards=body.skip_rewards
    )


@router.post("/{claim_id}/approve", response_model=ApprovalResponse)
async def approve_claim(
    claim_id: UUID,
    body: ClaimApproveRequest | None = None,
    db: AsyncSession = Depends(get_db),
):
    """Creator approval. Returns the escrow call to sign when funds are released."""
    skip_rewards = body.skip_rewards if body else False
    result = await ClaimService(db).approve_claim(claim_id, skip_rewards=skip_rewards)
    return approval_response(result)


@router.post("/{claim_id}/reject", response_model=ClaimDetailResponse)
async def reject_claim(claim_id: UUID, db: AsyncSession = Depends(get_db)):
    return await ClaimService(db).reject_claim(claim_id)


@router.post("/{claim_id}/verify", response_model=VerificationOutcomeResponse)
async def external_verdict(
    claim_id: UUID,
    body: ExternalVerdictRequest,
    db: AsyncSession = Depends(get_db),
):
    """Apply a verdict from an external verifier."""
    payload = {
        "verified": body.verified,
        "proof_data": body.proof_data,
        "verifier_address": body.verifier_address,
    }
    outcome = await ClaimVerificationService(db).apply_external_verdict(
        claim_id, body.verified, payload
    )
    return outcome_response(outcome)


@router.get("/{claim_id}/verify", response_model=ClaimVerificationStatus)
async def verification_status(claim_id: UUID, db: AsyncSession = Depends(get_db)):
    claim = await ClaimService(db).get_claim(claim_id)
    return ClaimVerificationStatus(
        claim_id=claim.id,
        status=claim.status,
        quest_id=claim.quest_id,
        user_id=claim.user_id,
        proof_url=claim.proof_url,
        created_at=claim.created_at,
        updated_at=claim.updated_at,
    )


@router.post("/{claim_id}/prove", response_model=VerificationOutcomeResponse)
async def prove_claim(
    claim_id: UUID,
    request: Request,
    eml_file: UploadFile = File(..., alias="emlFile"),
    username: str = Form(...),
    db: AsyncSession = Depends(get_db),
    pipeline: ProofVerificationPipeline = Depends(get_pipeline),
):
    """Prove the claim from a GitHub notification email, then approve or reject it."""
    artifact = await read_artifact(eml_file)
    service = ClaimVerificationService(db, pipeline)
    outcome = await run_until_disconnected(
        request, service.verify_claim_with_proof(claim_id, artifact, username)
    )
    return outcome_response(outcome)
