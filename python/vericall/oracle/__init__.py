"""Conversational oracle module."""
from .markers import CallDecision, parse_decision, strip_markers
from .gemini import FALLBACK_REPLY, ChatMessage, OracleReply, ScreeningOracle

__all__ = [
    "CallDecision",
    "ChatMessage",
    "FALLBACK_REPLY",
    "OracleReply",
    "ScreeningOracle",
    "parse_decision",
    "strip_markers",
]
