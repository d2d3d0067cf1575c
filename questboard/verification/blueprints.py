"""Blueprint resolution and proof generation.

A blueprint describes how to prove a claim about an email (here: that a
GitHub notification was addressed to a given username). The pipeline only
depends on the protocols below; ``HttpBlueprintRegistry`` is the bundled
implementation, backed by a blueprint registry over HTTP and an optional
command-line prover for local proving.
"""
from __future__ import annotations

import asyncio
import json
import shlex
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol
from urllib.parse import quote

import httpx

from questboard.logging_config import get_logger

logger = get_logger(__name__)

JOB_IN_PROGRESS_STATUSES = {"InProgress", "Queued", "Pending"}


@dataclass
class GeneratedProof:
    proof_data: Any
    public_outputs: Any


class ProofJob(Protocol):
    status: str | None
    proof_data: Any
    public_outputs: Any

    async def check_status(self) -> bool:
        """Refresh the job; True means keep waiting."""
        ...


class Prover(Protocol):
    async def generate_proof_request(self, artifact: bytes, inputs: Any) -> ProofJob: ...

    async def generate_local_proof(self, artifact: bytes, inputs: Any) -> GeneratedProof: ...


class Blueprint(Protocol):
    blueprint_id: str

    async def get_verification_key(self) -> Any: ...

    def create_prover(self) -> Prover: ...


class BlueprintResolver(Protocol):
    async def get_blueprint(self, blueprint_id: str) -> Blueprint: ...


class BlueprintError(Exception):
    """A blueprint could not be fetched or is not usable."""


class LocalProverError(Exception):
    """Local proving is not configured or the prover failed."""


# ---------------------------------------------------------------------------
# HTTP registry implementation
# ---------------------------------------------------------------------------


class _RegistryHttp:
    def __init__(
        self,
        base_url: str,
        timeout: float,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    async def request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            resp = await client.request(method, f"{self.base_url}{path}", **kwargs)
        resp.raise_for_status()
        return resp


class RemoteProofJob:
    def __init__(self, http: _RegistryHttp, job_id: str, status: str | None):
        self._http = http
        self.job_id = job_id
        self.status = status
        self.proof_data: Any = None
        self.public_outputs: Any = None

    async def check_status(self) -> bool:
        resp = await self._http.request("GET", f"/proofs/{quote(self.job_id, safe='')}")
        data = resp.json()
        self.status = data.get("status")
        self.proof_data = data.get("proofData")
        self.public_outputs = data.get("publicOutputs", data.get("publicData"))
        return self.status in JOB_IN_PROGRESS_STATUSES


class LocalCommandProver:
    """Runs a configured command-line prover in a subprocess.

    The command receives ``--blueprint``, ``--eml`` and ``--inputs`` file
    arguments and must print ``{"proofData": ..., "publicOutputs": ...}``.
    """

    def __init__(self, command: str | None, timeout: int):
        self.command = command
        self.timeout = timeout

    async def prove(self, blueprint_id: str, artifact: bytes, inputs: Any) -> GeneratedProof:
        if not self.command:
            raise LocalProverError("Local proving is not configured")

        with tempfile.TemporaryDirectory() as tmpdir:
            eml_path = Path(tmpdir) / "artifact.eml"
            eml_path.write_bytes(artifact)
            inputs_path = Path(tmpdir) / "inputs.json"
            inputs_path.write_text(json.dumps(inputs))

            cmd = [
                *shlex.split(self.command),
                "--blueprint", blueprint_id,
                "--eml", str(eml_path),
                "--inputs", str(inputs_path),
            ]
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
            try:
                stdout, stderr = await asyncio.wait_for(
                    proc.communicate(), timeout=self.timeout
                )
            except asyncio.TimeoutError:
                proc.kill()
                await proc.wait()
                raise LocalProverError(
                    f"Local prover timed out after {self.timeout}s"
                ) from None

        if proc.returncode != 0:
            raise LocalProverError(
                f"Local prover exited with {proc.returncode}: "
                f"{stderr.decode(errors='replace')[:500]}"
            )
        try:
            data = json.loads(stdout.decode(errors="replace"))
        except json.JSONDecodeError as e:
            raise LocalProverError(f"Local prover printed invalid JSON: {e}") from e
        return GeneratedProof(
            proof_data=data.get("proofData"),
            public_outputs=data.get("publicOutputs", data.get("publicData")),
        )


class HttpProver:
    def __init__(self, http: _RegistryHttp, blueprint_id: str, local: LocalCommandProver):
        self._http = http
        self.blueprint_id = blueprint_id
        self._local = local

    async def generate_proof_request(self, artifact: bytes, inputs: Any) -> RemoteProofJob:
        resp = await self._http.request(
            "POST",
            "/proofs",
            json={
                "blueprintId": self.blueprint_id,
                "emlContent": artifact.decode("utf-8", errors="replace"),
                "externalInputs": inputs,
            },
        )
        data = resp.json()
        job_id = data.get("id")
        if not job_id:
            raise BlueprintError("Proof request returned no job id")
        return RemoteProofJob(self._http, str(job_id), data.get("status"))

    async def generate_local_proof(self, artifact: bytes, inputs: Any) -> GeneratedProof:
        return await self._local.prove(self.blueprint_id, artifact, inputs)


class HttpBlueprint:
    def __init__(self, http: _RegistryHttp, blueprint_id: str, local: LocalCommandProver):
        self._http = http
        self.blueprint_id = blueprint_id
        self._local = local

    async def get_verification_key(self) -> Any:
        resp = await self._http.request(
            "GET", f"/blueprints/{quote(self.blueprint_id, safe='')}/vkey"
        )
        data = resp.json()
        vkey = data.get("vkey") if isinstance(data, dict) and "vkey" in data else data
        # Registries hand the key back either as an object or as a JSON string.
        if isinstance(vkey, str):
            vkey = json.loads(vkey)
        if not vkey:
            raise BlueprintError(f"Blueprint {self.blueprint_id} has no verification key")
        return vkey

    def create_prover(self) -> HttpProver:
        return HttpProver(self._http, self.blueprint_id, self._local)


class HttpBlueprintRegistry:
    """Resolves compiled blueprints from a registry service."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        local_prover: LocalCommandProver | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._http = _RegistryHttp(base_url, timeout, transport)
        self._local = local_prover or LocalCommandProver(None, 0)

    async def get_blueprint(self, blueprint_id: str) -> HttpBlueprint:
        resp = await self._http.request("GET", f"/blueprints/{quote(blueprint_id, safe='')}")
        data = resp.json()
        status = data.get("status")
        if status not in (None, "Done"):
            raise BlueprintError(f"Blueprint {blueprint_id} is not compiled (status: {status})")
        return HttpBlueprint(self._http, blueprint_id, self._local)
