"""Exception hierarchy for quest, claim and verification failures."""

from typing import Any


class QuestBoardError(Exception):
    """Base exception for QuestBoard errors."""

    status_code: int = 500
    # Rendered instead of ``message`` when the message is not meant for clients.
    public_message: str | None = None

    def __init__(self, message: str, error_type: str = "questboard_error"):
        self.message = message
        self.error_type = error_type
        super().__init__(message)

    @property
    def details(self) -> dict[str, Any]:
        return {}

    def to_response(self) -> dict[str, Any]:
        return {
            "error": {
                "type": self.error_type,
                "message": self.public_message or self.message,
                "details": self.details,
            }
        }


class ValidationError(QuestBoardError):
    """Raised when input breaks one or more business rules."""

    status_code = 400

    def __init__(self, errors: list[str], prefix: str = "Validation failed"):
        super().__init__(f"{prefix}: {', '.join(errors)}", "validation_error")
        self.errors = errors

    @property
    def details(self) -> dict[str, Any]:
        return {"errors": self.errors}


class NotFoundError(QuestBoardError):
    """Raised when a quest, claim or user does not exist."""

    status_code = 404

    def __init__(self, resource: str, resource_id: Any):
        super().__init__(f"{resource} not found", "not_found")
        self.resource = resource
        self.resource_id = str(resource_id)

    @property
    def details(self) -> dict[str, Any]:
        return {"resource": self.resource, "id": self.resource_id}


class ConflictError(QuestBoardError):
    """Raised when the current state forbids the operation."""

    status_code = 409

    def __init__(self, message: str, error_type: str = "conflict"):
        super().__init__(message, error_type)


class DuplicateClaimError(ConflictError):
    def __init__(self):
        super().__init__("duplicate claim", "duplicate_claim")


class QuestNotOpenError(ConflictError):
    def __init__(self, status: str):
        super().__init__("quest is not open for claims", "quest_not_open")
        self.status = status


class QuestExpiredError(ConflictError):
    def __init__(self):
        super().__init__("quest has expired", "quest_expired")


class ClaimNotPendingError(ConflictError):
    """Raised when a claim already left PENDING, including a lost approval race."""

    def __init__(self):
        super().__init__("claim is not pending", "claim_not_pending")


class FundsNotReleasableError(ConflictError):
    def __init__(self):
        super().__init__("funds cannot be released", "funds_not_releasable")


class StateInvariantError(QuestBoardError):
    """Raised when an illegal status transition is attempted."""

    status_code = 409

    def __init__(self, entity: str, current: str, target: str):
        super().__init__(
            f"Cannot transition {entity} from '{current}' to '{target}'",
            "invalid_transition",
        )
        self.entity = entity
        self.current = current
        self.target = target

    @property
    def details(self) -> dict[str, Any]:
        return {"entity": self.entity, "from": self.current, "to": self.target}


class ExternalServiceError(QuestBoardError):
    """Raised when a collaborating service fails.

    ``message`` and ``attempts`` are logged in full; clients only see
    ``public_message``.
    """

    status_code = 502
    public_message = "An external service request failed"

    def __init__(
        self,
        message: str,
        attempts: list[dict[str, str]] | None = None,
        error_type: str = "external_service_error",
    ):
        super().__init__(message, error_type)
        self.attempts = attempts or []
