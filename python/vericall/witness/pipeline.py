"""
Witness pipeline.

Turns a call decision into an on-chain record, detached from the call:

    1. Web proof      - attest our own decision endpoint (TLSNotary)
    2. ZK proof       - compress the web proof, extracting the decision fields
    3. Decision code  - map the decision to its registry encoding
    4. Registry       - submit proof + journal to the registry

Steps run strictly in order with no retry. The first failure marks the
record failed; progress is only visible through the witness store.
"""

import asyncio
import hashlib
import logging
import time
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from ..errors import ConfigurationMissing, UnmappedDecision
from ..events.publisher import (
    WITNESS_FAILED,
    WITNESS_ON_CHAIN,
    WITNESS_START,
    WITNESS_WEB_PROOF,
    WITNESS_ZK_PROOF,
    EventPublisher,
)
from .models import (
    DecisionData,
    OnChainReceipt,
    WebProofRef,
    WitnessRecord,
    WitnessStatus,
    ZkProofRef,
    hash_caller,
    new_witness_id,
)
from .registry import RegistryClient, RegistrySubmission
from .store import WitnessStore
from .vlayer import VlayerClient

if TYPE_CHECKING:
    from ..core.task_registry import TaskRegistry
    from ..metrics.collector import MetricsCollector

logger = logging.getLogger("vericall.witness")


DECISION_CODES: Dict[str, int] = {
    "ACCEPT": 1,
    "BLOCK": 2,
    "RECORD": 3,
}

DEFAULT_JMESPATH = ["decision", "reason", "systemPromptHash", "transcriptHash"]


def decision_code(action: str) -> int:
    """
    Registry encoding of a decision.

    Raises:
        UnmappedDecision: If the decision has no encoding.
    """
    try:
        return DECISION_CODES[action]
    except KeyError:
        raise UnmappedDecision(f"no registry encoding for decision '{action}'") from None


def proof_fingerprint(zk_proof: str) -> str:
    """First 16 hex chars of the SHA-256 of the proof."""
    return hashlib.sha256(zk_proof.encode("utf-8")).hexdigest()[:16]


class WitnessPipeline:
    """Creates witness records and runs their proof pipelines in the background."""

    def __init__(
        self,
        store: WitnessStore,
        vlayer: VlayerClient,
        registry: RegistryClient,
        tasks: "TaskRegistry",
        source_base_url: str,
        jmespath: Optional[List[str]] = None,
        step_timeout: float = 180.0,
        events: Optional[EventPublisher] = None,
        metrics: Optional["MetricsCollector"] = None,
    ):
        """
        Args:
            store: Witness status store
            vlayer: Web prover / ZK prover client
            registry: Registry relay client
            tasks: Background task registry (pipelines run detached)
            source_base_url: Public base URL of the decision endpoint
            jmespath: Response body fields extracted into the ZK journal
            step_timeout: Upper bound for each network step, in seconds
            events: Optional monitoring event publisher
            metrics: Optional metrics collector
        """
        self.store = store
        self.vlayer = vlayer
        self.registry = registry
        self.tasks = tasks
        self.source_base_url = source_base_url.rstrip("/")
        self.jmespath = list(jmespath or DEFAULT_JMESPATH)
        self.step_timeout = step_timeout
        self.events = events
        self.metrics = metrics

    def source_url(self, call_id: str) -> str:
        return f"{self.source_base_url}/api/witness/decision/{call_id}"

    def create_witness(self, call_id: str, decision: DecisionData) -> WitnessRecord:
        """
        Record a decision and start its pipeline in the background.

        Returns immediately with a pending record; do not await the pipeline.
        If the call already has a witness, that record is returned and no
        second pipeline starts.
        """
        record = WitnessRecord(id=new_witness_id(), call_id=call_id)
        stored = self.store.add(record)
        if stored.id != record.id:
            logger.info(f"[{call_id}] Witness already exists: {stored.id}")
            return stored

        self._record_status(WitnessStatus.PENDING)
        self.tasks.register(f"witness:{record.id}", self._run(stored, decision))
        return stored

    async def _run(self, record: WitnessRecord, decision: DecisionData) -> None:
        """Run the pipeline; every failure ends in the store, never raised."""
        try:
            await self._process(record, decision)
        except asyncio.CancelledError:
            self._fail(record, "Pipeline cancelled")
            raise
        except ConfigurationMissing as e:
            self._fail(record, str(e))
        except UnmappedDecision as e:
            logger.warning(f"[{record.call_id}] Witness {record.id}: {e}, skipping on-chain")
        except asyncio.TimeoutError:
            self._fail(record, f"Step timed out after {self.step_timeout:.0f}s")
        except Exception as e:
            self._fail(record, str(e))

    async def _process(self, record: WitnessRecord, decision: DecisionData) -> None:
        tag = f"[{record.call_id}] Witness {record.id}"
        self._emit(WITNESS_START, record, decision=decision.action, reason=decision.reason)

        self.vlayer.ensure_configured()

        # Step 1: web proof of our own decision endpoint
        proof_url = self.source_url(record.call_id)
        logger.info(f"{tag} Step 1/3: web proof from {proof_url}")
        web_proof = await asyncio.wait_for(
            self.vlayer.generate_web_proof(proof_url), timeout=self.step_timeout
        )
        self._advance(
            record,
            WitnessStatus.WEB_PROOF,
            web_proof=WebProofRef(proof_id=f"wp_{int(time.time() * 1000)}"),
        )
        self._emit(
            WITNESS_WEB_PROOF, record,
            proofSize=len(str(web_proof.get("data", ""))), sourceUrl=proof_url,
        )

        # Step 2: ZK compression
        logger.info(f"{tag} Step 2/3: compressing [{', '.join(self.jmespath)}]")
        compressed = await asyncio.wait_for(
            self.vlayer.compress(web_proof, self.jmespath), timeout=self.step_timeout
        )
        fingerprint = proof_fingerprint(compressed.zk_proof)
        self._advance(record, WitnessStatus.ZK_PROOF, zk_proof=ZkProofRef(fingerprint=fingerprint))
        self._emit(WITNESS_ZK_PROOF, record, sealHash=fingerprint)

        # Step 3: decision encoding (unmapped halts here, record stays zk-proof)
        code = decision_code(decision.action)

        # Step 4: registry
        logger.info(f"{tag} Step 3/3: submitting to registry (decision={decision.action})")
        submission = RegistrySubmission(
            call_id=record.call_id,
            decision_code=code,
            reason=decision.reason,
            proof=compressed.zk_proof,
            journal=compressed.journal_data_abi,
            call_ref=hash_caller(record.call_id),
            source_url=proof_url,
        )
        try:
            receipt = await asyncio.wait_for(
                self.registry.submit(submission), timeout=self.step_timeout
            )
        except asyncio.CancelledError:
            raise
        except asyncio.TimeoutError:
            self._fail(record, f"On-chain failed: timed out after {self.step_timeout:.0f}s")
            return
        except Exception as e:
            self._fail(record, f"On-chain failed: {e}")
            return

        self._advance(
            record,
            WitnessStatus.ON_CHAIN,
            on_chain=OnChainReceipt(
                tx_ref=receipt.tx_ref,
                block_number=receipt.block_number,
                contract_address=receipt.contract_address,
            ),
        )
        logger.info(f"{tag} On-chain: tx {receipt.tx_ref}")
        self._emit(
            WITNESS_ON_CHAIN, record,
            txHash=receipt.tx_ref, blockNumber=receipt.block_number,
        )

    def _advance(self, record: WitnessRecord, status: WitnessStatus, **changes: Any) -> None:
        self.store.transition(record.id, status, **changes)
        self._record_status(status)

    def _fail(self, record: WitnessRecord, message: str) -> None:
        current = self.store.get(record.id)
        if current is None or current.status.is_terminal:
            return
        logger.error(f"[{record.call_id}] Witness {record.id} failed: {message}")
        self.store.transition(record.id, WitnessStatus.FAILED, error=message)
        self._record_status(WitnessStatus.FAILED)
        self._emit(WITNESS_FAILED, record, error=message)

    def _record_status(self, status: WitnessStatus) -> None:
        if self.metrics:
            self.metrics.record_witness_status(status.value)

    def _emit(self, event_type: str, record: WitnessRecord, **data: Any) -> None:
        if self.events:
            self.events.publish(event_type, record.call_id, witnessId=record.id, **data)


def build_pipeline(
    config: Any,
    store: WitnessStore,
    tasks: "TaskRegistry",
    events: Optional[EventPublisher] = None,
    metrics: Optional["MetricsCollector"] = None,
) -> WitnessPipeline:
    """Wire a pipeline from a VeriCallConfig."""
    if not config.decision_source_base:
        logger.warning("Decision source URL not configured, web proofs will fail")
    return WitnessPipeline(
        store=store,
        vlayer=VlayerClient(
            web_prover_url=config.vlayer_web_prover_url,
            zk_prover_url=config.vlayer_zk_prover_url,
            api_key=config.vlayer_api_key,
            client_id=config.vlayer_client_id,
            timeout=config.witness_step_timeout,
        ),
        registry=RegistryClient(
            relay_url=config.registry_relay_url,
            api_key=config.registry_api_key,
            contract_address=config.registry_contract_address,
            timeout=config.witness_step_timeout,
        ),
        tasks=tasks,
        source_base_url=config.decision_source_base,
        jmespath=config.proof_jmespath,
        step_timeout=config.witness_step_timeout,
        events=events,
        metrics=metrics,
    )
