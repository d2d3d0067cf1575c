"""Tests for how errors are rendered to clients."""

from questboard.errors import ConflictError, ExternalServiceError, ValidationError
from questboard.verification.base import BlueprintUnavailableError


def test_business_errors_render_their_message():
    assert ConflictError("quest is not open for claims").to_response() == {
        "error": {
            "type": "conflict",
            "message": "quest is not open for claims",
            "details": {},
        }
    }
    body = ValidationError(["Title is required"]).to_response()
    assert body["error"]["message"] == "Validation failed: Title is required"


def test_external_errors_render_a_generic_message():
    error = ExternalServiceError(
        "registry returned 500", attempts=[{"label": "bp@v3", "error": "boom"}]
    )
    assert error.to_response()["error"]["message"] == "An external service request failed"
    assert error.message == "registry returned 500"


def test_pipeline_errors_hide_candidates():
    error = BlueprintUnavailableError(
        "No compiled blueprints were found. Tried: owner/retro_github@v3",
        attempts=[{"label": "owner/retro_github@v3", "error": "BlueprintError: missing"}],
    )
    assert error.to_response() == {
        "error": {
            "type": "proof_verification_failed",
            "message": "Proof verification failed",
            "details": {"category": "no_blueprint"},
        }
    }
