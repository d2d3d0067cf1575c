"""HTTP-level tests for the QuestBoard API."""

from decimal import Decimal
from uuid import uuid4

import pytest
import pytest_asyncio

from questboard.main import app
from questboard.routes.deps import get_pipeline
from questboard.verification.base import ProofBundle, RelayError, VerificationConfigError
from tests.factories import wallet


class StubPipeline:
    def __init__(self, error=None):
        self.error = error

    async def verify(self, artifact: bytes, identity: str) -> ProofBundle:
        if self.error is not None:
            raise self.error
        return ProofBundle(
            job_id="job-42",
            proof={"pi_a": ["1"]},
            public_signals=["7"],
            vk_hash="0xvk",
            blueprint_id="bp@v3",
        )


def quest_payload(**overrides):
    payload = {
        "title": "Add CSV export",
        "description": "Export the leaderboard as CSV",
        "type": "REGULAR",
        "reward_amount": "100",
        "supplied_funds": "100",
        "creator_wallet": wallet(),
        "tags": ["backend", "Testing"],
        "transaction_hash": "0x" + "cd" * 32,
    }
    payload.update(overrides)
    return payload


@pytest_asyncio.fixture
async def quest(client):
    resp = await client.post("/api/quests", json=quest_payload())
    assert resp.status_code == 201
    return resp.json()


@pytest.fixture
def stub_pipeline():
    pipeline = StubPipeline()
    app.dependency_overrides[get_pipeline] = lambda: pipeline
    yield pipeline
    app.dependency_overrides.pop(get_pipeline, None)


@pytest.mark.asyncio
class TestHealth:
    async def test_health(self, client):
        resp = await client.get("/health")
        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "ok"
        assert body["database"] == "ok"
        assert body["service"] == "questboard"

    async def test_request_id_is_echoed(self, client):
        resp = await client.get("/health", headers={"X-Request-ID": "req-123"})
        assert resp.headers["X-Request-ID"] == "req-123"


@pytest.mark.asyncio
class TestQuestEndpoints:
    async def test_create_quest(self, client):
        resp = await client.post("/api/quests", json=quest_payload())
        assert resp.status_code == 201
        body = resp.json()
        assert body["status"] == "OPEN"
        assert sorted(body["tags"]) == ["backend", "testing"]
        assert Decimal(body["reward_amount"]) == Decimal("100")
        assert body["claims"] == []
        assert body["claim_count"] == 0
        assert body["time_remaining"] is None
        assert body["priority"] == 1000

    async def test_create_quest_validation_error(self, client):
        resp = await client.post(
            "/api/quests", json=quest_payload(reward_amount="10", supplied_funds="5")
        )
        assert resp.status_code == 400
        error = resp.json()["error"]
        assert error["type"] == "validation_error"
        assert error["details"]["errors"] == [
            "Supplied funds must be at least equal to reward amount"
        ]

    async def test_list_and_get(self, client, quest):
        listed = await client.get("/api/quests", params={"tags": "backend,rust"})
        assert listed.status_code == 200
        assert [q["id"] for q in listed.json()] == [quest["id"]]

        fetched = await client.get(f"/api/quests/{quest['id']}")
        assert fetched.status_code == 200
        assert fetched.json()["title"] == "Add CSV export"

    async def test_unknown_quest(self, client):
        resp = await client.get(f"/api/quests/{uuid4()}")
        assert resp.status_code == 404
        assert resp.json()["error"]["type"] == "not_found"

    async def test_invalid_sort(self, client):
        resp = await client.get("/api/quests", params={"sort": "random"})
        assert resp.status_code == 400

    async def test_status_update_and_invalid_transition(self, client, quest):
        resp = await client.patch(
            f"/api/quests/{quest['id']}/status", json={"status": "EXPIRED"}
        )
        assert resp.status_code == 200
        assert resp.json()["status"] == "EXPIRED"

        resp = await client.patch(
            f"/api/quests/{quest['id']}/status", json={"status": "COMPLETED"}
        )
        assert resp.status_code == 409
        assert resp.json()["error"]["type"] == "invalid_transition"

    async def test_stats_and_sweep(self, client, quest):
        stats = await client.get("/api/quests/stats")
        assert stats.json()["open"] == 1

        sweep = await client.post("/api/quests/sweep-expired")
        assert sweep.json() == {"expired": 0}

    async def test_release_eligibility(self, client, quest):
        resp = await client.get(f"/api/quests/{quest['id']}/release-eligibility")
        assert resp.json() == {"quest_id": quest["id"], "can_release": True}


@pytest.mark.asyncio
class TestClaimEndpoints:
    async def test_submit_approve_flow(self, client, quest):
        claimer = wallet()
        submitted = await client.post(
            "/api/claims",
            json={"quest_id": quest["id"], "wallet_address": claimer, "username": "octocat"},
        )
        assert submitted.status_code == 201
        claim = submitted.json()
        assert claim["status"] == "PENDING"
        assert claim["quest"]["id"] == quest["id"]

        approved = await client.post(f"/api/claims/{claim['id']}/approve")
        assert approved.status_code == 200
        body = approved.json()
        assert body["claim"]["status"] == "APPROVED"
        assert body["quest"]["status"] == "COMPLETED"
        assert body["requires_chain_release"] is True
        assert body["escrow_action"]["args"] == [quest["id"], claimer]

        again = await client.post(f"/api/claims/{claim['id']}/reject")
        assert again.status_code == 409
        assert again.json()["error"]["type"] == "claim_not_pending"

        profile = await client.get(f"/api/users/{claimer}")
        assert profile.status_code == 200
        assert profile.json()["xp"] == 50
        assert profile.json()["stats"]["completed_quests"] == 1

    async def test_duplicate_claim(self, client, quest):
        payload = {"quest_id": quest["id"], "wallet_address": wallet()}
        assert (await client.post("/api/claims", json=payload)).status_code == 201

        resp = await client.post("/api/claims", json=payload)
        assert resp.status_code == 409
        assert resp.json()["error"] == {
            "type": "duplicate_claim",
            "message": "duplicate claim",
            "details": {},
        }

    async def test_skip_rewards_body(self, client, quest):
        first = (await client.post(
            "/api/claims", json={"quest_id": quest["id"], "wallet_address": wallet()}
        )).json()
        second = (await client.post(
            "/api/claims", json={"quest_id": quest["id"], "wallet_address": wallet()}
        )).json()
        await client.post(f"/api/claims/{first['id']}/approve")

        blocked = await client.post(f"/api/claims/{second['id']}/approve")
        assert blocked.status_code == 409
        assert blocked.json()["error"]["type"] == "funds_not_releasable"

        skipped = await client.post(
            f"/api/claims/{second['id']}/approve", json={"skip_rewards": True}
        )
        assert skipped.status_code == 200
        assert skipped.json()["escrow_action"] is None

    async def test_listings(self, client, quest):
        claim = (await client.post(
            "/api/claims", json={"quest_id": quest["id"], "wallet_address": wallet()}
        )).json()

        pending = await client.get("/api/claims/pending")
        assert [c["id"] for c in pending.json()] == [claim["id"]]

        by_quest = await client.get(f"/api/quests/{quest['id']}/claims")
        assert [c["id"] for c in by_quest.json()] == [claim["id"]]

        stats = await client.get(f"/api/quests/{quest['id']}/claims/stats")
        assert stats.json() == {"total": 1, "pending": 1, "approved": 0, "rejected": 0}

        status = await client.get(f"/api/claims/{claim['id']}/verify")
        assert status.json()["status"] == "PENDING"

    async def test_external_verdict(self, client, quest):
        claim = (await client.post(
            "/api/claims", json={"quest_id": quest["id"], "wallet_address": wallet()}
        )).json()

        resp = await client.post(
            f"/api/claims/{claim['id']}/verify",
            json={"verified": False, "verifier_address": "0xverifier"},
        )
        assert resp.status_code == 200
        assert resp.json()["status"] == "rejected"


@pytest.mark.asyncio
class TestProofEndpoints:
    async def test_prove_claim(self, client, quest, stub_pipeline):
        claim = (await client.post(
            "/api/claims", json={"quest_id": quest["id"], "wallet_address": wallet()}
        )).json()

        resp = await client.post(
            f"/api/claims/{claim['id']}/prove",
            files={"emlFile": ("github.eml", b"From: notifications@github.com", "message/rfc822")},
            data={"username": "octocat"},
        )

        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "verified"
        assert body["message"] == "Proof verified! Funds are ready to be released from escrow."
        assert body["escrow_action"]["function_name"] == "releaseQuestFunds"

    async def test_standalone_verify(self, client, stub_pipeline):
        resp = await client.post(
            "/api/proofs/verify",
            files={"emlFile": ("github.eml", b"From: notifications@github.com", "message/rfc822")},
            data={"username": "octocat"},
        )
        assert resp.status_code == 200
        assert resp.json() == {
            "job_id": "job-42",
            "proof": {"pi_a": ["1"]},
            "public_signals": ["7"],
            "vk_hash": "0xvk",
            "blueprint_id": "bp@v3",
        }

    async def test_pipeline_error_is_rendered(self, client, stub_pipeline):
        stub_pipeline.error = VerificationConfigError("Relay API key is not configured")
        resp = await client.post(
            "/api/proofs/verify",
            files={"emlFile": ("github.eml", b"eml", "message/rfc822")},
            data={"username": "octocat"},
        )
        assert resp.status_code == 422
        assert resp.json()["error"] == {
            "type": "proof_verification_failed",
            "message": "Proof verification failed",
            "details": {"category": "config"},
        }

    async def test_relay_failure_details_stay_server_side(self, client, stub_pipeline):
        stub_pipeline.error = RelayError(
            "Relay returned HTTP 503 for https://relay.internal/submit-proof",
            attempts=[{"label": "submit", "error": "HTTPStatusError: 503"}],
        )
        resp = await client.post(
            "/api/proofs/verify",
            files={"emlFile": ("github.eml", b"eml", "message/rfc822")},
            data={"username": "octocat"},
        )
        assert resp.status_code == 502
        error = resp.json()["error"]
        assert error["message"] == "Proof verification failed"
        assert "relay.internal" not in resp.text
        assert "attempts" not in error["details"]


@pytest.mark.asyncio
class TestUserAndTagEndpoints:
    async def test_create_user_and_conflict(self, client):
        address = wallet()
        created = await client.post("/api/users", json={"wallet_address": address})
        assert created.status_code == 201
        assert created.json()["level"] == 1

        conflict = await client.post("/api/users", json={"wallet_address": address})
        assert conflict.status_code == 409

    async def test_unknown_user(self, client):
        resp = await client.get(f"/api/users/{wallet()}")
        assert resp.status_code == 404

    async def test_leaderboard(self, client, quest):
        claimer = wallet()
        claim = (await client.post(
            "/api/claims", json={"quest_id": quest["id"], "wallet_address": claimer}
        )).json()
        await client.post(f"/api/claims/{claim['id']}/approve")

        board = await client.get("/api/users/leaderboard", params={"limit": 5})
        assert board.status_code == 200
        assert board.json()[0]["wallet_address"] == claimer

        history = await client.get(f"/api/users/{claimer}/claims")
        assert [c["id"] for c in history.json()] == [claim["id"]]

    async def test_tags(self, client, quest):
        listed = await client.get("/api/tags")
        assert {"name": "backend", "quest_count": 1} in listed.json()

        search = await client.get("/api/tags/search", params={"q": "test"})
        assert search.json() == ["testing"]

        popular = await client.get("/api/tags/popular")
        assert "zk-proofs" in popular.json()

        suggested = await client.post("/api/tags/suggest", json={"title": "Audit solidity"})
        assert "solidity" in suggested.json()

        empty = await client.post("/api/tags/suggest", json={})
        assert empty.status_code == 400
