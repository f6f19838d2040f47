"""
Decision disclosure store.

Holds what the decision endpoint serves for attestation. Records expire after
an hour by default; the web proof has to be taken before then.
"""

import hashlib
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from .models import utc_now_iso

logger = logging.getLogger("vericall.witness.disclosure")

SERVICE_NAME = "VeriCall"
DISCLOSURE_VERSION = "1.0"


@dataclass
class DecisionDisclosure:
    call_id: str
    decision: str
    reason: str
    transcript: str
    system_prompt_hash: str
    source_code_commit: str
    caller_hash_short: str
    conversation_turns: int
    timestamp: str
    expires_at: float

    @property
    def transcript_hash(self) -> str:
        return hashlib.sha256(self.transcript.encode("utf-8")).hexdigest()

    def to_payload(self) -> Dict[str, Any]:
        """JSON body served to the web prover."""
        return {
            "service": SERVICE_NAME,
            "version": DISCLOSURE_VERSION,
            "callSid": self.call_id,
            "decision": self.decision,
            "reason": self.reason,
            "transcript": self.transcript,
            "systemPromptHash": self.system_prompt_hash,
            "transcriptHash": self.transcript_hash,
            "callerHashShort": self.caller_hash_short,
            "timestamp": self.timestamp,
            "conversationTurns": self.conversation_turns,
        }


class DisclosureStore:
    """In-memory decision disclosures with expiry."""

    def __init__(
        self,
        ttl_seconds: float = 3600.0,
        source_code_commit: str = "unknown",
        clock: Callable[[], float] = time.time,
    ):
        self.ttl_seconds = ttl_seconds
        self.source_code_commit = source_code_commit
        self._clock = clock
        self._records: Dict[str, DecisionDisclosure] = {}
        self._lock = threading.Lock()

    def put(
        self,
        call_id: str,
        decision: str,
        reason: str,
        transcript: str,
        system_prompt_hash: str,
        caller_hash_short: str,
        conversation_turns: int,
    ) -> DecisionDisclosure:
        """Store (or replace) the disclosure for a call."""
        record = DecisionDisclosure(
            call_id=call_id,
            decision=decision,
            reason=reason,
            transcript=transcript,
            system_prompt_hash=system_prompt_hash,
            source_code_commit=self.source_code_commit,
            caller_hash_short=caller_hash_short,
            conversation_turns=conversation_turns,
            timestamp=utc_now_iso(),
            expires_at=self._clock() + self.ttl_seconds,
        )
        with self._lock:
            self._purge_expired()
            self._records[call_id] = record
        logger.info(f"[{call_id}] Stored decision disclosure: {decision}")
        return record

    def get(self, call_id: str) -> Optional[DecisionDisclosure]:
        """Return the disclosure unless missing or expired."""
        with self._lock:
            record = self._records.get(call_id)
            if record is None:
                return None
            if record.expires_at <= self._clock():
                del self._records[call_id]
                return None
            return record

    def _purge_expired(self) -> None:
        now = self._clock()
        for call_id in [k for k, r in self._records.items() if r.expires_at <= now]:
            del self._records[call_id]

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)
