"""Witness record and decision data types."""
import hashlib
import random
import string
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def hash_caller(value: str) -> str:
    """SHA-256 of a caller-identifying value, truncated to 16 hex chars."""
    return hashlib.sha256(value.encode("utf-8")).hexdigest()[:16]


def new_witness_id() -> str:
    """Record id: ``wit_<epoch ms>_<6 random chars>``."""
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=6))
    return f"wit_{int(time.time() * 1000)}_{suffix}"


class WitnessStatus(str, Enum):
    PENDING = "pending"
    WEB_PROOF = "web-proof"
    ZK_PROOF = "zk-proof"
    ON_CHAIN = "on-chain"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (WitnessStatus.ON_CHAIN, WitnessStatus.FAILED)


# Forward-only progression; FAILED from any non-terminal state
ALLOWED_TRANSITIONS: Dict[WitnessStatus, FrozenSet[WitnessStatus]] = {
    WitnessStatus.PENDING: frozenset({WitnessStatus.WEB_PROOF, WitnessStatus.FAILED}),
    WitnessStatus.WEB_PROOF: frozenset({WitnessStatus.ZK_PROOF, WitnessStatus.FAILED}),
    WitnessStatus.ZK_PROOF: frozenset({WitnessStatus.ON_CHAIN, WitnessStatus.FAILED}),
    WitnessStatus.ON_CHAIN: frozenset(),
    WitnessStatus.FAILED: frozenset(),
}


def can_transition(current: WitnessStatus, target: WitnessStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


@dataclass
class WebProofRef:
    proof_id: str
    generated_at: str = field(default_factory=utc_now_iso)


@dataclass
class ZkProofRef:
    fingerprint: str
    generated_at: str = field(default_factory=utc_now_iso)


@dataclass
class OnChainReceipt:
    tx_ref: str
    block_number: int
    contract_address: Optional[str] = None
    submitted_at: str = field(default_factory=utc_now_iso)


@dataclass
class WitnessRecord:
    """Status of one call decision's trip through the proof pipeline."""
    id: str
    call_id: str
    created_at: str = field(default_factory=utc_now_iso)
    status: WitnessStatus = WitnessStatus.PENDING
    web_proof: Optional[WebProofRef] = None
    zk_proof: Optional[ZkProofRef] = None
    on_chain: Optional[OnChainReceipt] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.id,
            "callSid": self.call_id,
            "createdAt": self.created_at,
            "status": self.status.value,
        }
        if self.web_proof:
            data["webProof"] = {
                "proofId": self.web_proof.proof_id,
                "generatedAt": self.web_proof.generated_at,
            }
        if self.zk_proof:
            data["zkProof"] = {
                "hash": self.zk_proof.fingerprint,
                "generatedAt": self.zk_proof.generated_at,
            }
        if self.on_chain:
            data["onChain"] = {
                "txHash": self.on_chain.tx_ref,
                "blockNumber": self.on_chain.block_number,
                "contractAddress": self.on_chain.contract_address,
                "submittedAt": self.on_chain.submitted_at,
            }
        if self.error:
            data["error"] = self.error
        return data


@dataclass
class DecisionData:
    """What the call session hands to the witness pipeline."""
    call_id: str
    action: str
    reason: str
    confidence: float = 0.0
    timestamp: str = field(default_factory=utc_now_iso)
