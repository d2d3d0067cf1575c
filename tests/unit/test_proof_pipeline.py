"""Tests for the email-proof verification pipeline with in-process fakes."""

import pytest

from questboard.config import Settings
from questboard.verification.base import (
    BlueprintUnavailableError,
    FailureCategory,
    OptimisticVerificationRejected,
    ProofGenerationError,
    VerificationConfigError,
)
from questboard.verification.blueprints import BlueprintError, GeneratedProof, LocalProverError
from questboard.verification.pipeline import ProofVerificationPipeline, identity_shapes
from questboard.verification.relay_client import SubmissionReceipt
from questboard.verification.vk_cache import InMemoryVerificationKeyCache

PROOF = {"pi_a": ["1"], "pi_b": [], "pi_c": []}
SIGNALS = ["123", "456"]


class FakeJob:
    def __init__(self, statuses, proof_data=PROOF, public_outputs=SIGNALS):
        self._statuses = list(statuses)
        self.status = "Queued"
        self.proof_data = None
        self.public_outputs = None
        self._final = (proof_data, public_outputs)

    async def check_status(self) -> bool:
        if self._statuses:
            self.status = self._statuses.pop(0)
        if self.status == "Done":
            self.proof_data, self.public_outputs = self._final
        return self.status in {"InProgress", "Queued", "Pending"}


class FakeProver:
    """Plays back one outcome per call; an exception outcome is raised."""

    def __init__(self, remote=(), local=()):
        self.remote = list(remote)
        self.local = list(local)
        self.calls: list[tuple[str, object]] = []

    async def generate_proof_request(self, artifact, inputs):
        self.calls.append(("remote", inputs))
        outcome = self.remote.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    async def generate_local_proof(self, artifact, inputs):
        self.calls.append(("local", inputs))
        outcome = self.local.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class FakeBlueprint:
    def __init__(self, blueprint_id, prover, vk=None):
        self.blueprint_id = blueprint_id
        self.prover = prover
        self.vk = vk if vk is not None else {"protocol": "groth16"}

    async def get_verification_key(self):
        return self.vk

    def create_prover(self):
        return self.prover


class FakeResolver:
    def __init__(self, blueprints):
        self.blueprints = blueprints
        self.requested: list[str] = []

    async def get_blueprint(self, blueprint_id):
        self.requested.append(blueprint_id)
        if blueprint_id not in self.blueprints:
            raise BlueprintError(f"{blueprint_id} not found")
        return self.blueprints[blueprint_id]


class FakeRelay:
    def __init__(self, optimistic="success"):
        self.optimistic = optimistic
        self.registered: list[object] = []
        self.submitted: list[tuple] = []
        self.finalized: list[str] = []

    async def register_vk(self, vk):
        self.registered.append(vk)
        return "0xvkhash"

    async def submit_proof(self, proof, public_signals, vk_hash):
        self.submitted.append((proof, public_signals, vk_hash))
        if self.optimistic != "success":
            raise OptimisticVerificationRejected("Optimistic verification failed")
        return SubmissionReceipt(job_id="job-1", optimistic_verify="success")

    async def await_finalization(self, job_id, max_attempts, interval):
        self.finalized.append(job_id)
        return "Finalized"


def _pipeline(prover, relay=None, candidates=("bp@v3",), cache=None, **kwargs):
    resolver = FakeResolver({c: FakeBlueprint(c, prover) for c in candidates})
    return ProofVerificationPipeline(
        resolver=resolver,
        relay=relay if relay is not None else FakeRelay(),
        vk_cache=cache or InMemoryVerificationKeyCache(),
        candidates=list(candidates),
        remote_poll_attempts=3,
        poll_interval=0,
        **kwargs,
    )


class TestIdentityShapes:
    def test_three_shapes_in_order(self):
        shapes = identity_shapes("octocat", max_length=64)
        assert [name for name, _ in shapes] == ["map", "typed", "descriptor"]
        assert shapes[0][1] == {"username": "octocat"}
        assert shapes[1][1] == [
            {"name": "username", "value": "octocat", "type": "string", "maxLength": 64}
        ]
        assert shapes[2][1] == [{"name": "username", "value": "octocat", "maxLength": 64}]


@pytest.mark.asyncio
class TestConfigurationChecks:
    async def test_missing_relay(self):
        pipeline = _pipeline(FakeProver())
        pipeline.relay = None
        with pytest.raises(VerificationConfigError) as exc_info:
            await pipeline.verify(b"eml", "octocat")
        assert exc_info.value.category == FailureCategory.CONFIG

    async def test_missing_identity(self):
        with pytest.raises(VerificationConfigError):
            await _pipeline(FakeProver()).verify(b"eml", "   ")

    async def test_missing_artifact(self):
        with pytest.raises(VerificationConfigError):
            await _pipeline(FakeProver()).verify(b"", "octocat")


@pytest.mark.asyncio
class TestBlueprintResolution:
    async def test_falls_back_to_next_candidate(self):
        prover = FakeProver(remote=[FakeJob(["Done"])])
        resolver = FakeResolver({"bp@v2": FakeBlueprint("bp@v2", prover)})
        pipeline = ProofVerificationPipeline(
            resolver=resolver,
            relay=FakeRelay(),
            vk_cache=InMemoryVerificationKeyCache(),
            candidates=["bp@v3", "bp@v2"],
            poll_interval=0,
        )

        bundle = await pipeline.verify(b"eml", "octocat")

        assert resolver.requested == ["bp@v3", "bp@v2"]
        assert bundle.blueprint_id == "bp@v2"

    async def test_no_candidate_resolves(self):
        pipeline = ProofVerificationPipeline(
            resolver=FakeResolver({}),
            relay=FakeRelay(),
            vk_cache=InMemoryVerificationKeyCache(),
            candidates=["bp@v3", "bp@v2"],
        )
        with pytest.raises(BlueprintUnavailableError) as exc_info:
            await pipeline.verify(b"eml", "octocat")
        assert "bp@v3, bp@v2" in exc_info.value.message
        assert [a["label"] for a in exc_info.value.attempts] == ["bp@v3", "bp@v2"]

    async def test_only_last_of_three_resolves(self):
        prover = FakeProver(remote=[FakeJob(["Done"])])
        resolver = FakeResolver({"bp@v1": FakeBlueprint("bp@v1", prover)})
        relay = FakeRelay()
        pipeline = ProofVerificationPipeline(
            resolver=resolver,
            relay=relay,
            vk_cache=InMemoryVerificationKeyCache(),
            candidates=["bp@v3", "bp@v2", "bp@v1"],
            poll_interval=0,
        )

        bundle = await pipeline.verify(b"eml", "octocat")

        assert resolver.requested == ["bp@v3", "bp@v2", "bp@v1"]
        assert bundle.blueprint_id == "bp@v1"
        assert relay.submitted[0][2] == bundle.vk_hash

    async def test_every_candidate_reason_is_kept(self):
        pipeline = ProofVerificationPipeline(
            resolver=FakeResolver({}),
            relay=FakeRelay(),
            vk_cache=InMemoryVerificationKeyCache(),
            candidates=["bp@v3", "bp@v2", "bp@v1"],
        )

        with pytest.raises(BlueprintUnavailableError) as exc_info:
            await pipeline.verify(b"eml", "octocat")

        error = exc_info.value
        assert error.category == FailureCategory.NO_BLUEPRINT
        assert "bp@v3, bp@v2, bp@v1" in error.message
        assert error.attempts == [
            {"label": "bp@v3", "error": "BlueprintError: bp@v3 not found"},
            {"label": "bp@v2", "error": "BlueprintError: bp@v2 not found"},
            {"label": "bp@v1", "error": "BlueprintError: bp@v1 not found"},
        ]

    async def test_string_vk_is_parsed(self):
        prover = FakeProver(remote=[FakeJob(["Done"])])
        relay = FakeRelay()
        pipeline = ProofVerificationPipeline(
            resolver=FakeResolver({"bp@v3": FakeBlueprint("bp@v3", prover, vk='{"nPublic": 2}')}),
            relay=relay,
            vk_cache=InMemoryVerificationKeyCache(),
            candidates=["bp@v3"],
            poll_interval=0,
        )
        await pipeline.verify(b"eml", "octocat")
        assert relay.registered == [{"nPublic": 2}]


@pytest.mark.asyncio
class TestVerificationKeyRegistration:
    async def test_cache_hit_skips_registration(self):
        cache = InMemoryVerificationKeyCache()
        await cache.set("bp@v3", "0xcached")
        relay = FakeRelay()
        pipeline = _pipeline(FakeProver(remote=[FakeJob(["Done"])]), relay=relay, cache=cache)

        bundle = await pipeline.verify(b"eml", "octocat")

        assert relay.registered == []
        assert bundle.vk_hash == "0xcached"
        assert relay.submitted[0][2] == "0xcached"

    async def test_miss_registers_and_caches(self):
        cache = InMemoryVerificationKeyCache()
        relay = FakeRelay()
        pipeline = _pipeline(FakeProver(remote=[FakeJob(["Done"])]), relay=relay, cache=cache)

        await pipeline.verify(b"eml", "octocat")

        assert len(relay.registered) == 1
        assert await cache.get("bp@v3") == "0xvkhash"


@pytest.mark.asyncio
class TestProofGeneration:
    async def test_remote_success_after_polling(self):
        prover = FakeProver(remote=[FakeJob(["InProgress", "Done"])])
        bundle = await _pipeline(prover).verify(b"eml", "octocat")

        assert bundle.proof == PROOF
        assert bundle.public_signals == SIGNALS
        assert bundle.job_id == "job-1"
        assert prover.calls == [("remote", {"username": "octocat"})]

    async def test_identity_is_trimmed(self):
        prover = FakeProver(remote=[FakeJob(["Done"])])
        await _pipeline(prover).verify(b"eml", "  octocat  ")
        assert prover.calls[0][1] == {"username": "octocat"}

    async def test_remote_timeout_falls_through_to_next_shape(self):
        prover = FakeProver(
            remote=[FakeJob(["InProgress"] * 5), FakeJob(["Done"])],
        )
        bundle = await _pipeline(prover).verify(b"eml", "octocat")

        assert [kind for kind, _ in prover.calls] == ["remote", "remote"]
        assert isinstance(prover.calls[1][1], list)
        assert bundle.proof == PROOF

    async def test_remote_failed_status_is_not_success(self):
        prover = FakeProver(
            remote=[FakeJob(["Failed"]), FakeJob(["Done"])],
        )
        await _pipeline(prover).verify(b"eml", "octocat")
        assert len(prover.calls) == 2

    async def test_incomplete_outputs_fall_through(self):
        prover = FakeProver(
            remote=[FakeJob(["Done"], proof_data=None), FakeJob(["Done"])],
        )
        bundle = await _pipeline(prover).verify(b"eml", "octocat")
        assert bundle.proof == PROOF
        assert len(prover.calls) == 2

    async def test_local_after_all_remote_shapes(self):
        remote_error = BlueprintError("registry down")
        prover = FakeProver(
            remote=[remote_error, remote_error, remote_error],
            local=[GeneratedProof(PROOF, SIGNALS)],
        )
        bundle = await _pipeline(prover).verify(b"eml", "octocat")

        assert [kind for kind, _ in prover.calls] == ["remote", "remote", "remote", "local"]
        assert prover.calls[3][1] == {"username": "octocat"}
        assert bundle.public_signals == SIGNALS

    async def test_six_attempts_then_generation_error(self):
        remote_error = BlueprintError("registry down")
        local_error = LocalProverError("Local proving is not configured")
        prover = FakeProver(remote=[remote_error] * 3, local=[local_error] * 3)

        with pytest.raises(ProofGenerationError) as exc_info:
            await _pipeline(prover).verify(b"eml", "octocat")

        exc = exc_info.value
        assert exc.category == FailureCategory.GENERATION_EXHAUSTED
        assert [a["label"] for a in exc.attempts] == [
            "remote:map",
            "remote:typed",
            "remote:descriptor",
            "local:map",
            "local:typed",
            "local:descriptor",
        ]
        assert exc.last_error is local_error
        assert exc.status_code == 422


@pytest.mark.asyncio
class TestRelaySubmission:
    async def test_optimistic_rejection_propagates(self):
        prover = FakeProver(remote=[FakeJob(["Done"])])
        with pytest.raises(OptimisticVerificationRejected):
            await _pipeline(prover, relay=FakeRelay(optimistic="failed")).verify(b"eml", "octocat")

    async def test_finalization_is_optional(self):
        relay = FakeRelay()
        await _pipeline(FakeProver(remote=[FakeJob(["Done"])]), relay=relay).verify(b"eml", "octocat")
        assert relay.finalized == []

    async def test_awaits_finalization_when_enabled(self):
        relay = FakeRelay()
        pipeline = _pipeline(
            FakeProver(remote=[FakeJob(["Done"])]), relay=relay, await_finalization=True
        )
        await pipeline.verify(b"eml", "octocat")
        assert relay.finalized == ["job-1"]


class TestFromSettings:
    def test_no_api_key_means_no_relay(self):
        settings = Settings(relay_api_key=None)
        pipeline = ProofVerificationPipeline.from_settings(settings, InMemoryVerificationKeyCache())
        assert pipeline.relay is None

    def test_operator_blueprints_come_first(self):
        settings = Settings(relay_api_key="key", zkemail_blueprints="me/custom@v1, chandrabosep/retro_github@v2")
        pipeline = ProofVerificationPipeline.from_settings(settings, InMemoryVerificationKeyCache())
        assert pipeline.relay is not None
        assert pipeline.candidates == [
            "me/custom@v1",
            "chandrabosep/retro_github@v2",
            "chandrabosep/retro_github@v3",
            "chandrabosep/retro_github@v1",
        ]
