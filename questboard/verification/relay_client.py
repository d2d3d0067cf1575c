"""HTTP client for the proof relay (verification-key registry and proof submission)."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import httpx

from questboard.logging_config import get_logger
from questboard.verification.base import OptimisticVerificationRejected, RelayError
from questboard.verification.fallback import poll_until

logger = get_logger(__name__)

PROOF_TYPE = "groth16"
PROOF_OPTIONS = {"library": "snarkjs", "curve": "bn128"}

ALREADY_REGISTERED_CODE = "REGISTER_VK_FAILED"
FINAL_SUCCESS_STATUSES = {"Finalized", "Aggregated", "Done"}
FINAL_FAILURE_STATUSES = {"Failed", "Rejected"}


@dataclass(frozen=True)
class SubmissionReceipt:
    job_id: str
    optimistic_verify: str


def _json_or_none(resp: httpx.Response) -> Any:
    try:
        return resp.json()
    except ValueError:
        return None


class RelayClient:
    """Talks to the relay over httpx.

    The API key is part of every path, so URLs are never logged.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self._transport = transport

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            ) as client:
                return await client.request(method, f"{self.base_url}{path}", **kwargs)
        except httpx.HTTPError as e:
            raise RelayError(f"Relay request failed: {type(e).__name__}") from e

    async def register_vk(self, vk: Any) -> str:
        """Register a verification key and return its handle (vkHash)."""
        resp = await self._request(
            "POST",
            f"/register-vk/{self.api_key}",
            json={"proofType": PROOF_TYPE, "proofOptions": PROOF_OPTIONS, "vk": vk},
        )
        data = _json_or_none(resp)

        if resp.is_success:
            vk_hash = None
            if isinstance(data, dict):
                vk_hash = data.get("vkHash") or (data.get("meta") or {}).get("vkHash")
            if not vk_hash:
                raise RelayError("vkHash missing from register-vk response")
            logger.info("relay_vk_registered", vk_hash=vk_hash)
            return vk_hash

        # A key registered earlier is reported as an error that carries the handle.
        if isinstance(data, dict):
            meta = data.get("meta") or {}
            if (
                data.get("code") == ALREADY_REGISTERED_CODE
                and "already registered" in str(data.get("message", ""))
                and meta.get("vkHash")
            ):
                logger.info("relay_vk_already_registered", vk_hash=meta["vkHash"])
                return meta["vkHash"]

        raise RelayError(
            f"Failed to register verification key: HTTP {resp.status_code}",
            attempts=[{"label": "register-vk", "error": resp.text[:500]}],
        )

    async def submit_proof(
        self, proof: Any, public_signals: Any, vk_hash: str
    ) -> SubmissionReceipt:
        resp = await self._request(
            "POST",
            f"/submit-proof/{self.api_key}",
            json={
                "proofType": PROOF_TYPE,
                "vkRegistered": True,
                "proofOptions": PROOF_OPTIONS,
                "proofData": {
                    "proof": proof,
                    "publicSignals": public_signals,
                    "vk": vk_hash,
                },
            },
        )
        if not resp.is_success:
            raise RelayError(
                f"Proof submission failed: HTTP {resp.status_code}",
                attempts=[{"label": "submit-proof", "error": resp.text[:500]}],
            )

        data = _json_or_none(resp)
        if not isinstance(data, dict) or not data.get("jobId"):
            raise RelayError("jobId missing from submit-proof response")

        receipt = SubmissionReceipt(
            job_id=str(data["jobId"]),
            optimistic_verify=str(data.get("optimisticVerify", "")),
        )
        if receipt.optimistic_verify != "success":
            raise OptimisticVerificationRejected(
                "Optimistic verification failed",
                attempts=[{"label": "submit-proof", "error": receipt.optimistic_verify}],
            )
        logger.info("relay_proof_accepted", job_id=receipt.job_id)
        return receipt

    async def job_status(self, job_id: str) -> str:
        resp = await self._request("GET", f"/job-status/{self.api_key}/{job_id}")
        if not resp.is_success:
            raise RelayError(f"Job status lookup failed: HTTP {resp.status_code}")
        data = _json_or_none(resp)
        if not isinstance(data, dict) or "status" not in data:
            raise RelayError("status missing from job-status response")
        return str(data["status"])

    async def await_finalization(
        self, job_id: str, max_attempts: int, interval: float
    ) -> str:
        """Poll job status until it settles; returns the final success status."""
        last_status: str | None = None

        async def settled() -> bool:
            nonlocal last_status
            last_status = await self.job_status(job_id)
            return (
                last_status in FINAL_SUCCESS_STATUSES
                or last_status in FINAL_FAILURE_STATUSES
            )

        if not await poll_until(settled, max_attempts, interval):
            raise RelayError(
                f"Relay job {job_id} did not settle (last status: {last_status})"
            )
        if last_status in FINAL_FAILURE_STATUSES:
            raise OptimisticVerificationRejected(
                f"Relay job {job_id} ended with status {last_status}"
            )
        logger.info("relay_job_finalized", job_id=job_id, status=last_status)
        return last_status
