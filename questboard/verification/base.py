"""Shared types for the email-proof verification pipeline."""
from __future__ import annotations

import enum
from dataclasses import asdict, dataclass
from typing import Any

from questboard.errors import ExternalServiceError


class FailureCategory(str, enum.Enum):
    CONFIG = "config"                              # missing key, identity or artifact
    NO_BLUEPRINT = "no_blueprint"                  # no candidate blueprint resolved
    GENERATION_EXHAUSTED = "generation_exhausted"  # every proving attempt failed
    TRANSPORT = "transport"                        # relay unreachable or errored
    OPTIMISTIC_REJECTED = "optimistic_rejected"    # relay refused the proof


@dataclass(frozen=True)
class ProofBundle:
    """A proof accepted by the relay."""
    job_id: str
    proof: Any
    public_signals: Any
    vk_hash: str
    blueprint_id: str

    def to_payload(self) -> dict[str, Any]:
        return asdict(self)


class ProofVerificationError(ExternalServiceError):
    """Base for every pipeline stage failure."""

    status_code = 502
    public_message = "Proof verification failed"
    category: FailureCategory = FailureCategory.TRANSPORT

    def __init__(self, message: str, attempts: list[dict[str, str]] | None = None):
        super().__init__(message, attempts, error_type="proof_verification_failed")

    @property
    def details(self) -> dict[str, Any]:
        return {"category": self.category.value}


class VerificationConfigError(ProofVerificationError):
    status_code = 422
    category = FailureCategory.CONFIG


class BlueprintUnavailableError(ProofVerificationError):
    status_code = 502
    category = FailureCategory.NO_BLUEPRINT


class ProofGenerationError(ProofVerificationError):
    status_code = 422
    category = FailureCategory.GENERATION_EXHAUSTED

    def __init__(
        self,
        message: str,
        attempts: list[dict[str, str]] | None = None,
        last_error: BaseException | None = None,
    ):
        super().__init__(message, attempts)
        self.last_error = last_error


class RelayError(ProofVerificationError):
    status_code = 502
    category = FailureCategory.TRANSPORT


class OptimisticVerificationRejected(ProofVerificationError):
    status_code = 422
    category = FailureCategory.OPTIMISTIC_REJECTED
