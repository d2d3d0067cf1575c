"""Email-proof verification pipeline.

Stages, in order: configuration check, blueprint resolution, verification
key registration, proof generation with fallback, relay submission. Every
failure surfaces as a ``ProofVerificationError`` subclass whose category
names the stage; the attempt trail is logged.
"""
from __future__ import annotations

import json
from typing import Any

from questboard.config import Settings
from questboard.logging_config import get_logger
from questboard.verification.base import (
    BlueprintUnavailableError,
    ProofBundle,
    ProofGenerationError,
    ProofVerificationError,
    VerificationConfigError,
)
from questboard.verification.blueprints import (
    Blueprint,
    BlueprintResolver,
    GeneratedProof,
    HttpBlueprintRegistry,
    LocalCommandProver,
    Prover,
)
from questboard.verification.fallback import (
    Attempt,
    AttemptsExhausted,
    first_success,
    poll_until,
)
from questboard.verification.relay_client import RelayClient
from questboard.verification.vk_cache import VerificationKeyCache

logger = get_logger(__name__)

IDENTITY_FIELD = "username"
REMOTE_DONE_STATUS = "Done"


class RemoteProvingIncomplete(Exception):
    pass


class IncompleteProofError(Exception):
    pass


def identity_shapes(identity: str, max_length: int = 100) -> list[tuple[str, Any]]:
    """The identity input in every shape blueprints are known to accept."""
    return [
        ("map", {IDENTITY_FIELD: identity}),
        (
            "typed",
            [
                {
                    "name": IDENTITY_FIELD,
                    "value": identity,
                    "type": "string",
                    "maxLength": max_length,
                }
            ],
        ),
        (
            "descriptor",
            [{"name": IDENTITY_FIELD, "value": identity, "maxLength": max_length}],
        ),
    ]


def _require_outputs(proof: GeneratedProof) -> GeneratedProof:
    if not proof.proof_data or not proof.public_outputs:
        raise IncompleteProofError("Missing proofData/publicSignals")
    return proof


class ProofVerificationPipeline:
    def __init__(
        self,
        resolver: BlueprintResolver,
        relay: RelayClient | None,
        vk_cache: VerificationKeyCache,
        candidates: list[str],
        remote_poll_attempts: int = 24,
        poll_interval: float = 5.0,
        identity_max_length: int = 100,
        await_finalization: bool = False,
        finalization_attempts: int = 20,
        finalization_interval: float = 3.0,
    ):
        self.resolver = resolver
        self.relay = relay
        self.vk_cache = vk_cache
        self.candidates = candidates
        self.remote_poll_attempts = remote_poll_attempts
        self.poll_interval = poll_interval
        self.identity_max_length = identity_max_length
        self.await_finalization = await_finalization
        self.finalization_attempts = finalization_attempts
        self.finalization_interval = finalization_interval

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        vk_cache: VerificationKeyCache,
        resolver: BlueprintResolver | None = None,
    ) -> ProofVerificationPipeline:
        if resolver is None:
            resolver = HttpBlueprintRegistry(
                settings.zkemail_registry_url,
                timeout=settings.relay_timeout_seconds,
                local_prover=LocalCommandProver(
                    settings.local_prover_command,
                    settings.local_prover_timeout_seconds,
                ),
            )
        relay = None
        if settings.relay_api_key:
            relay = RelayClient(
                settings.relay_url,
                settings.relay_api_key,
                timeout=settings.relay_timeout_seconds,
            )
        return cls(
            resolver=resolver,
            relay=relay,
            vk_cache=vk_cache,
            candidates=settings.blueprint_candidates,
            remote_poll_attempts=settings.remote_poll_attempts,
            poll_interval=settings.remote_poll_interval_seconds,
            identity_max_length=settings.identity_max_length,
            await_finalization=settings.relay_await_finalization,
            finalization_attempts=settings.relay_status_poll_attempts,
            finalization_interval=settings.relay_status_poll_interval_seconds,
        )

    async def verify(self, artifact: bytes, identity: str) -> ProofBundle:
        identity = (identity or "").strip()
        try:
            relay = self._check_config(artifact, identity)
            blueprint, vk = await self._resolve_blueprint()
            vk_hash = await self._ensure_vk_hash(relay, blueprint.blueprint_id, vk)
            proof = await self._generate_proof(blueprint.create_prover(), artifact, identity)

            receipt = await relay.submit_proof(proof.proof_data, proof.public_outputs, vk_hash)
            if self.await_finalization:
                await relay.await_finalization(
                    receipt.job_id, self.finalization_attempts, self.finalization_interval
                )
        except ProofVerificationError as e:
            logger.warning(
                "proof_pipeline_failed",
                category=e.category.value,
                error=e.message,
                attempts=e.attempts,
            )
            raise

        logger.info(
            "proof_pipeline_succeeded",
            job_id=receipt.job_id,
            blueprint_id=blueprint.blueprint_id,
        )
        return ProofBundle(
            job_id=receipt.job_id,
            proof=proof.proof_data,
            public_signals=proof.public_outputs,
            vk_hash=vk_hash,
            blueprint_id=blueprint.blueprint_id,
        )

    # -- stages --------------------------------------------------------------

    def _check_config(self, artifact: bytes, identity: str) -> RelayClient:
        if self.relay is None:
            raise VerificationConfigError("Relay API key is not configured")
        if not identity:
            raise VerificationConfigError("Missing username")
        if not artifact:
            raise VerificationConfigError("Missing email artifact")
        return self.relay

    async def _resolve_blueprint(self) -> tuple[Blueprint, Any]:
        def resolve(blueprint_id: str):
            async def run() -> tuple[Blueprint, Any]:
                blueprint = await self.resolver.get_blueprint(blueprint_id)
                vk = await blueprint.get_verification_key()
                if isinstance(vk, str):
                    vk = json.loads(vk)
                return blueprint, vk
            return run

        try:
            return await first_success(
                Attempt(blueprint_id, resolve(blueprint_id)) for blueprint_id in self.candidates
            )
        except AttemptsExhausted as e:
            raise BlueprintUnavailableError(
                "No compiled blueprints were found. Tried: " + ", ".join(self.candidates),
                attempts=e.trail(),
            ) from e.last_error

    async def _ensure_vk_hash(self, relay: RelayClient, blueprint_id: str, vk: Any) -> str:
        cached = await self.vk_cache.get(blueprint_id)
        if cached:
            return cached
        vk_hash = await relay.register_vk(vk)
        await self.vk_cache.set(blueprint_id, vk_hash)
        return vk_hash

    async def _generate_proof(
        self, prover: Prover, artifact: bytes, identity: str
    ) -> GeneratedProof:
        async def remote(inputs: Any) -> GeneratedProof:
            job = await prover.generate_proof_request(artifact, inputs)

            async def finished() -> bool:
                return not await job.check_status()

            await poll_until(finished, self.remote_poll_attempts, self.poll_interval)
            if job.status != REMOTE_DONE_STATUS:
                raise RemoteProvingIncomplete(
                    f"Remote proving did not complete (status: {job.status})"
                )
            return _require_outputs(GeneratedProof(job.proof_data, job.public_outputs))

        async def local(inputs: Any) -> GeneratedProof:
            return _require_outputs(await prover.generate_local_proof(artifact, inputs))

        shapes = identity_shapes(identity, self.identity_max_length)
        attempts = [
            Attempt(f"remote:{name}", lambda inputs=inputs: remote(inputs))
            for name, inputs in shapes
        ] + [
            Attempt(f"local:{name}", lambda inputs=inputs: local(inputs))
            for name, inputs in shapes
        ]

        try:
            return await first_success(attempts)
        except AttemptsExhausted as e:
            raise ProofGenerationError(
                "Proof generation failed for every input shape",
                attempts=e.trail(),
                last_error=e.last_error,
            ) from e.last_error
