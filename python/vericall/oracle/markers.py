"""
Decision marker grammar.

The oracle ends its closing line with a marker: ``[BLOCK]`` or ``[RECORD]``.
Parsing the marker and cleaning the text for speech are separate steps.
"""

import re
from enum import Enum
from typing import Optional


class CallDecision(str, Enum):
    """Screening outcome."""
    BLOCK = "BLOCK"
    RECORD = "RECORD"


MARKER_CONFIDENCE = 0.9

_MARKERS = {
    decision: re.compile(rf"\[{decision.value}\]", re.IGNORECASE)
    for decision in CallDecision
}

# BLOCK wins if a reply somehow carries both
_PRECEDENCE = (CallDecision.BLOCK, CallDecision.RECORD)


def parse_decision(text: str) -> Optional[CallDecision]:
    """Return the decision named by a marker in text, if any."""
    for decision in _PRECEDENCE:
        if _MARKERS[decision].search(text):
            return decision
    return None


def strip_markers(text: str) -> str:
    """Remove all decision markers so the text can be spoken."""
    for pattern in _MARKERS.values():
        text = pattern.sub("", text)
    return re.sub(r"\s{2,}", " ", text).strip()
