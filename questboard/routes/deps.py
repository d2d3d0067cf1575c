"""Shared route dependencies and helpers for the proof endpoints."""

import asyncio
from typing import Awaitable, TypeVar

from fastapi import HTTPException, Request, UploadFile

from questboard.config import get_settings
from questboard.errors import ValidationError
from questboard.logging_config import get_logger
from questboard.verification.pipeline import ProofVerificationPipeline
from questboard.verification.vk_cache import InMemoryVerificationKeyCache

logger = get_logger(__name__)

T = TypeVar("T")

DISCONNECT_POLL_SECONDS = 1.0


def get_pipeline(request: Request) -> ProofVerificationPipeline:
    """The pipeline built at startup, or a process-local one if none was."""
    pipeline = getattr(request.app.state, "pipeline", None)
    if pipeline is None:
        pipeline = ProofVerificationPipeline.from_settings(
            get_settings(), InMemoryVerificationKeyCache()
        )
        request.app.state.pipeline = pipeline
    return pipeline


async def read_artifact(upload: UploadFile) -> bytes:
    limit = get_settings().max_artifact_bytes
    data = await upload.read(limit + 1)
    if len(data) > limit:
        raise ValidationError([f"Email artifact exceeds {limit} bytes"])
    return data


async def run_until_disconnected(request: Request, work: Awaitable[T]) -> T:
    """Await ``work`` in a task that is cancelled if the client goes away."""
    task = asyncio.ensure_future(work)
    try:
        while True:
            done, _ = await asyncio.wait({task}, timeout=DISCONNECT_POLL_SECONDS)
            if done:
                return task.result()
            if await request.is_disconnected():
                logger.info("client_disconnected", path=request.url.path)
                task.cancel()
                raise HTTPException(status_code=499, detail="Client disconnected")
    finally:
        if not task.done():
            task.cancel()
