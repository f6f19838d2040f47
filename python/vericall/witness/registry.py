"""
Decision registry client.

Submits proven decisions to the registry relay, which holds the signing key
and writes ``registerCallDecision`` to the registry contract.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from ..errors import ConfigurationMissing, UpstreamServiceFailure

logger = logging.getLogger("vericall.witness.registry")


@dataclass
class RegistrySubmission:
    call_id: str
    decision_code: int
    reason: str
    proof: str
    journal: str
    call_ref: str
    source_url: str

    def to_payload(self) -> Dict[str, Any]:
        return {
            "callSid": self.call_id,
            "decision": self.decision_code,
            "reason": self.reason,
            "zkProofSeal": self.proof,
            "journalDataAbi": self.journal,
            "callerHash": self.call_ref,
            "sourceUrl": self.source_url,
        }


@dataclass
class RegistryReceipt:
    tx_ref: str
    block_number: int
    contract_address: Optional[str] = None


class RegistryClient:
    """HTTP client for the registry relay."""

    def __init__(
        self,
        relay_url: str,
        api_key: str = "",
        contract_address: str = "",
        timeout: float = 120.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.relay_url = relay_url.rstrip("/")
        self.api_key = api_key
        self.contract_address = contract_address
        self.timeout = timeout
        self._transport = transport

    @property
    def is_configured(self) -> bool:
        return bool(self.relay_url)

    async def submit(self, submission: RegistrySubmission) -> RegistryReceipt:
        """
        Submit one decision and wait for its receipt.

        Raises:
            ConfigurationMissing: No relay URL configured
            UpstreamServiceFailure: Relay rejected the submission or timed out
        """
        if not self.is_configured:
            raise ConfigurationMissing("registry relay not configured (REGISTRY_RELAY_URL)")

        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                r = await client.post(
                    f"{self.relay_url}/api/v1/decisions",
                    json=submission.to_payload(),
                    headers=headers,
                )
        except httpx.HTTPError as e:
            raise UpstreamServiceFailure("registry", f"request failed: {e}") from e

        if r.status_code < 200 or r.status_code >= 300:
            raise UpstreamServiceFailure("registry", f"HTTP {r.status_code}: {r.text[:500]}")

        try:
            data = r.json()
            receipt = RegistryReceipt(
                tx_ref=data["txHash"],
                block_number=int(data["blockNumber"]),
                contract_address=data.get("contractAddress") or self.contract_address or None,
            )
        except (ValueError, KeyError, TypeError) as e:
            raise UpstreamServiceFailure("registry", f"malformed receipt: {e}") from e

        logger.info(f"[{submission.call_id}] Registry tx {receipt.tx_ref} (block {receipt.block_number})")
        return receipt
