"""
Witness status store.

In-memory, process-lifetime. Readers always get copies so a record can be
serialized while the pipeline is still advancing it.
"""

import copy
import logging
import threading
from typing import Any, Dict, List, Optional

from ..errors import InvalidTransition
from .models import WitnessRecord, WitnessStatus, can_transition

logger = logging.getLogger("vericall.witness.store")


class WitnessStore:
    """Thread-safe map of witness id / call id to WitnessRecord."""

    def __init__(self):
        self._records: Dict[str, WitnessRecord] = {}
        self._by_call: Dict[str, str] = {}
        self._lock = threading.Lock()

    def add(self, record: WitnessRecord) -> WitnessRecord:
        """
        Store a new record.

        Returns:
            The stored record, or a copy of the existing one if the call
            already has a witness (at most one per call).
        """
        with self._lock:
            existing_id = self._by_call.get(record.call_id)
            if existing_id is not None:
                return copy.deepcopy(self._records[existing_id])
            self._records[record.id] = record
            self._by_call[record.call_id] = record.id
            logger.info(f"[{record.call_id}] Witness recorded: {record.id} {record.status.value}")
            return copy.deepcopy(record)

    def transition(self, witness_id: str, status: WitnessStatus, **changes: Any) -> WitnessRecord:
        """
        Move a record to a new status and apply field changes.

        Raises:
            KeyError: Unknown witness id
            InvalidTransition: If the move breaks the status progression
        """
        with self._lock:
            record = self._records[witness_id]
            if not can_transition(record.status, status):
                raise InvalidTransition(
                    f"{witness_id}: {record.status.value} -> {status.value}"
                )
            for name, value in changes.items():
                if not hasattr(record, name):
                    raise AttributeError(f"WitnessRecord has no field '{name}'")
                setattr(record, name, value)
            record.status = status
            logger.info(f"[{record.call_id}] Witness {witness_id} -> {status.value}")
            return copy.deepcopy(record)

    def get(self, witness_id: str) -> Optional[WitnessRecord]:
        with self._lock:
            record = self._records.get(witness_id)
            return copy.deepcopy(record) if record else None

    def get_by_call_id(self, call_id: str) -> Optional[WitnessRecord]:
        with self._lock:
            witness_id = self._by_call.get(call_id)
            if witness_id is None:
                return None
            return copy.deepcopy(self._records[witness_id])

    def list_all(self) -> List[WitnessRecord]:
        with self._lock:
            return [copy.deepcopy(r) for r in self._records.values()]

    def count_by_status(self) -> Dict[str, int]:
        counts = {status.value: 0 for status in WitnessStatus}
        with self._lock:
            for record in self._records.values():
                counts[record.status.value] += 1
        return counts

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)
