"""Standalone proof verification (no claim is touched)."""

from fastapi import APIRouter, Depends, File, Form, Request, UploadFile

from questboard.routes.deps import get_pipeline, read_artifact, run_until_disconnected
from questboard.schemas import ProofBundleResponse
from questboard.verification.pipeline import ProofVerificationPipeline

router = APIRouter(prefix="/api/proofs", tags=["proofs"])


@router.post("/verify", response_model=ProofBundleResponse)
async def verify_proof(
    request: Request,
    eml_file: UploadFile = File(..., alias="emlFile"),
    username: str = Form(...),
    pipeline: ProofVerificationPipeline = Depends(get_pipeline),
):
    """Prove an email artifact for a GitHub username and submit it to the relay."""
    artifact = await read_artifact(eml_file)
    bundle = await run_until_disconnected(request, pipeline.verify(artifact, username))
    return ProofBundleResponse.model_validate(bundle)
