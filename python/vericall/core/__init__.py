"""Call session core."""
from .call_session import GREETING, SILENCE_REPROMPT, CallSession, SessionState
from .session_store import SessionStore
from .task_registry import TaskRegistry
from .transport import MediaStreamEvent, MediaStreamTransport

__all__ = [
    "CallSession",
    "GREETING",
    "MediaStreamEvent",
    "MediaStreamTransport",
    "SILENCE_REPROMPT",
    "SessionState",
    "SessionStore",
    "TaskRegistry",
]
