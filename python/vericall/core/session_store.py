"""Live call session registry."""
import logging
import threading
from typing import TYPE_CHECKING, Any, Dict, List, Optional

if TYPE_CHECKING:
    from .call_session import CallSession

logger = logging.getLogger("vericall.sessions")


class SessionStore:
    """Thread-safe map of call id to live CallSession."""

    def __init__(self):
        self._sessions: Dict[str, "CallSession"] = {}
        self._lock = threading.Lock()

    def register(self, session: "CallSession") -> None:
        """
        Register a live session.

        Raises:
            ValueError: If a live session already exists for the call id
        """
        with self._lock:
            existing = self._sessions.get(session.call_id)
            if existing is not None and not existing.is_ended:
                raise ValueError(f"Session already active for call {session.call_id}")
            self._sessions[session.call_id] = session
            logger.info(f"[{session.call_id}] Session registered ({len(self._sessions)} active)")

    def remove(self, call_id: str, session: Optional["CallSession"] = None) -> None:
        """Remove a session (only if it is still the given instance, when one is passed)."""
        with self._lock:
            current = self._sessions.get(call_id)
            if current is None or (session is not None and current is not session):
                return
            del self._sessions[call_id]
            logger.info(f"[{call_id}] Session removed ({len(self._sessions)} active)")

    def get(self, call_id: str) -> Optional["CallSession"]:
        with self._lock:
            return self._sessions.get(call_id)

    def info(self, call_id: str) -> Optional[Dict[str, Any]]:
        """Snapshot of one session, or None if there is no live session."""
        session = self.get(call_id)
        return session.info() if session else None

    def list(self) -> List[Dict[str, Any]]:
        with self._lock:
            sessions = list(self._sessions.values())
        return [s.info() for s in sessions]

    @property
    def active_count(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __contains__(self, call_id: str) -> bool:
        with self._lock:
            return call_id in self._sessions
