"""Decision witness: disclosure, proofs, and on-chain registration."""
from .disclosure import DecisionDisclosure, DisclosureStore
from .models import (
    DecisionData,
    OnChainReceipt,
    WebProofRef,
    WitnessRecord,
    WitnessStatus,
    ZkProofRef,
    hash_caller,
)
from .pipeline import DECISION_CODES, WitnessPipeline, build_pipeline, decision_code
from .registry import RegistryClient, RegistryReceipt, RegistrySubmission
from .store import WitnessStore
from .vlayer import CompressedProof, VlayerClient

__all__ = [
    "CompressedProof",
    "DECISION_CODES",
    "DecisionData",
    "DecisionDisclosure",
    "DisclosureStore",
    "OnChainReceipt",
    "RegistryClient",
    "RegistryReceipt",
    "RegistrySubmission",
    "VlayerClient",
    "WebProofRef",
    "WitnessPipeline",
    "WitnessRecord",
    "WitnessStatus",
    "WitnessStore",
    "ZkProofRef",
    "build_pipeline",
    "decision_code",
    "hash_caller",
]
