"""
vlayer REST clients.

    Web Prover:  POST /api/v1/prove                  (TLSNotary web proof)
    ZK Prover:   POST /api/v0/compress-web-proof     (web proof -> ZK proof)
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx

from ..errors import ConfigurationMissing, UpstreamServiceFailure

logger = logging.getLogger("vericall.witness.vlayer")


@dataclass
class CompressedProof:
    zk_proof: str
    journal_data_abi: str


class VlayerClient:
    """Web Prover + ZK Prover client sharing one set of credentials."""

    def __init__(
        self,
        web_prover_url: str,
        zk_prover_url: str,
        api_key: str,
        client_id: str,
        timeout: float = 180.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.web_prover_url = web_prover_url.rstrip("/")
        self.zk_prover_url = zk_prover_url.rstrip("/")
        self.api_key = api_key
        self.client_id = client_id
        self.timeout = timeout
        self._transport = transport

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key and self.client_id)

    def ensure_configured(self) -> None:
        """
        Raises:
            ConfigurationMissing: If the API key or client id is not set.
        """
        if not self.is_configured:
            raise ConfigurationMissing(
                "vlayer credentials not configured (VLAYER_API_KEY / VLAYER_CLIENT_ID)"
            )

    def _headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "x-client-id": self.client_id,
            "Authorization": f"Bearer {self.api_key}",
        }

    async def _post(self, service: str, url: str, body: Dict[str, Any]) -> Any:
        self.ensure_configured()
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                r = await client.post(url, json=body, headers=self._headers())
        except httpx.HTTPError as e:
            raise UpstreamServiceFailure(service, f"request failed: {e}") from e

        if r.status_code < 200 or r.status_code >= 300:
            raise UpstreamServiceFailure(service, f"HTTP {r.status_code}: {r.text[:500]}")

        try:
            return r.json()
        except ValueError as e:
            raise UpstreamServiceFailure(service, f"invalid JSON response: {e}") from e

    async def generate_web_proof(self, url: str) -> Dict[str, Any]:
        """
        Attest the response served at url.

        Returns:
            The web proof (``{data, version, meta}``), passed on verbatim
            to compression.

        Raises:
            ConfigurationMissing: Credentials not set (before any request)
            UpstreamServiceFailure: Non-2xx or malformed response
        """
        logger.debug(f"Requesting web proof for {url}")
        proof = await self._post(
            "web-prover",
            f"{self.web_prover_url}/api/v1/prove",
            {"url": url, "headers": []},
        )
        if not isinstance(proof, dict) or not proof.get("data"):
            raise UpstreamServiceFailure("web-prover", "response has no proof data")
        return proof

    async def compress(self, web_proof: Dict[str, Any], jmespath: List[str]) -> CompressedProof:
        """
        Compress a web proof, extracting the given response body fields.

        Raises:
            ConfigurationMissing: Credentials not set (before any request)
            UpstreamServiceFailure: Non-2xx response or ``success: false``
        """
        result = await self._post(
            "zk-prover",
            f"{self.zk_prover_url}/api/v0/compress-web-proof",
            {
                "presentation": web_proof,
                "extraction": {"response.body": {"jmespath": list(jmespath)}},
            },
        )

        data = result.get("data") if isinstance(result, dict) else None
        if not isinstance(result, dict) or not result.get("success") or not data:
            message = "Unknown"
            if isinstance(result, dict) and isinstance(result.get("error"), dict):
                message = result["error"].get("message") or message
            raise UpstreamServiceFailure("zk-prover", f"compression error: {message}")

        try:
            return CompressedProof(
                zk_proof=data["zkProof"],
                journal_data_abi=data["journalDataAbi"],
            )
        except KeyError as e:
            raise UpstreamServiceFailure("zk-prover", f"response missing {e}") from e
