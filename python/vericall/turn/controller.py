"""
Turn Buffer & Barge-in Controller.

Decides what to do with each final transcript fragment from the recognizer:

    filler ("uh", "okay")        -> discard
    speaking, elapsed < gate     -> queue as pending (stale recognizer noise)
    speaking, elapsed >= gate    -> interrupt playback, then route
    speaking the closing line    -> discard (never interrupted)
    short fragment (<= N words)  -> buffer + debounce timer
    long fragment                -> flush buffer + fragment immediately

Flushed text goes to a single callback; the call session owns single-flight
processing from there.
"""

import asyncio
import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional

from ..audio import elapsed_ms
from .playback import PlaybackTracker

logger = logging.getLogger("vericall.turn")


FILLER_WORDS = frozenset({
    "yeah", "yes", "yep", "okay", "ok", "uh", "um", "uh-huh",
    "right", "sure", "mhm", "hmm", "ah", "oh", "i see",
})

_PUNCTUATION = re.compile(r"[.,!?]")


def normalize_fragment(text: str) -> str:
    """Lowercase, drop sentence punctuation, trim."""
    return _PUNCTUATION.sub("", text.lower()).strip()


def is_filler(text: str) -> bool:
    """True if the fragment is only an acknowledgment/filler word."""
    return normalize_fragment(text) in FILLER_WORDS


def word_count(text: str) -> int:
    return len(text.split())


@dataclass
class SpeechState:
    """Speaking state shared between the call session and the controller."""
    is_speaking: bool = False
    response_start_ms: Optional[int] = None
    latest_media_ms: int = 0
    decision: Optional[str] = None
    pending_transcripts: List[str] = field(default_factory=list)

    def reset_speaking(self) -> None:
        self.is_speaking = False
        self.response_start_ms = None

    @property
    def elapsed_ms(self) -> int:
        """Stream time since the current response started playing."""
        return elapsed_ms(self.latest_media_ms, self.response_start_ms)


class BargeInAction(Enum):
    """What to do with caller speech, given the playback state."""
    NONE = "none"            # not speaking, route normally
    DEFER = "defer"          # too early in playback, treat as stale
    INTERRUPT = "interrupt"  # accept barge-in
    REJECT = "reject"        # closing line, never interrupted


class BargeInPolicy:
    """Time-gated barge-in decision."""

    def __init__(self, threshold_ms: int = 1000):
        """
        Args:
            threshold_ms: Playback time (stream ms) before caller speech is
                treated as an interruption rather than recognizer lag.
        """
        self.threshold_ms = threshold_ms

    def evaluate(self, is_speaking: bool, decision_pending: bool, elapsed: int) -> BargeInAction:
        if not is_speaking:
            return BargeInAction.NONE
        if decision_pending:
            return BargeInAction.REJECT
        if elapsed < self.threshold_ms:
            return BargeInAction.DEFER
        return BargeInAction.INTERRUPT


class TurnController:
    """
    Debounces short fragments and handles barge-in for one call.

    Must be used from within a running event loop (the debounce timer is an
    asyncio task).
    """

    def __init__(
        self,
        state: SpeechState,
        playback: PlaybackTracker,
        on_utterance: Callable[[str], None],
        on_clear: Callable[[], None],
        policy: Optional[BargeInPolicy] = None,
        short_utterance_words: int = 5,
        debounce_seconds: float = 1.5,
        call_id: str = "",
    ):
        """
        Args:
            state: Speaking state owned by the call session
            playback: Outstanding mark tracker
            on_utterance: Receives each flushed utterance
            on_clear: Called once per accepted interruption with marks outstanding
            policy: Barge-in policy (default 1000ms gate)
            short_utterance_words: Fragments at or below this are debounced
            debounce_seconds: Quiet time before a short buffer is flushed
            call_id: For log prefixes
        """
        self.state = state
        self.playback = playback
        self.on_utterance = on_utterance
        self.on_clear = on_clear
        self.policy = policy or BargeInPolicy()
        self.short_utterance_words = short_utterance_words
        self.debounce_seconds = debounce_seconds
        self.call_id = call_id

        self._buffer = ""
        self._timer: Optional[asyncio.Task] = None

    @property
    def buffered_text(self) -> str:
        return self._buffer

    @property
    def has_pending_timer(self) -> bool:
        return self._timer is not None and not self._timer.done()

    def accept(self, transcript: str, is_final: bool) -> None:
        """Handle one recognizer result. Never raises."""
        try:
            self._accept(transcript, is_final)
        except Exception as e:
            logger.error(f"[{self.call_id}] Failed to handle transcript '{transcript}': {e}")

    def _accept(self, transcript: str, is_final: bool) -> None:
        text = transcript.strip() if transcript else ""
        if not is_final or not text:
            return

        if is_filler(text):
            logger.debug(f"[{self.call_id}] Ignoring filler: '{text}'")
            return

        state = self.state
        action = self.policy.evaluate(
            state.is_speaking, state.decision is not None, state.elapsed_ms
        )

        if action is BargeInAction.REJECT:
            logger.info(f"[{self.call_id}] Speech during closing line ignored: '{text}'")
            return

        if action is BargeInAction.DEFER:
            logger.info(
                f"[{self.call_id}] [BARGE-IN] Too early (elapsed={state.elapsed_ms}ms), "
                f"queued: '{text}'"
            )
            state.pending_transcripts.append(text)
            return

        if action is BargeInAction.INTERRUPT:
            logger.info(
                f"[{self.call_id}] [BARGE-IN] '{text}' elapsed={state.elapsed_ms}ms "
                f"marks={self.playback.outstanding}"
            )
            if self.playback.outstanding:
                self.on_clear()
            self.playback.clear()
            state.reset_speaking()
            state.pending_transcripts.clear()

        if state.decision is not None:
            logger.debug(f"[{self.call_id}] Decision reached, discarding '{text}'")
            return

        self._route(text)

    def _route(self, text: str) -> None:
        if word_count(text) <= self.short_utterance_words:
            self._buffer = f"{self._buffer} {text}".strip()
            self._arm_timer()
            logger.debug(f"[{self.call_id}] Buffered short fragment: '{self._buffer}'")
            return

        combined = f"{self._buffer} {text}".strip()
        self._buffer = ""
        self._cancel_timer()
        self.on_utterance(combined)

    def _arm_timer(self) -> None:
        self._cancel_timer()
        self._timer = asyncio.create_task(self._flush_after(self.debounce_seconds))

    def _cancel_timer(self) -> None:
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._timer = None

    async def _flush_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        self._timer = None
        self.flush()

    def flush(self) -> None:
        """Send the buffered text on, unless a decision was already reached."""
        text = self._buffer.strip()
        self._buffer = ""
        if not text:
            return
        if self.state.decision is not None:
            logger.debug(f"[{self.call_id}] Decision reached, discarding buffer '{text}'")
            return
        self.on_utterance(text)

    def cancel(self) -> None:
        """Drop buffered text and any pending debounce timer."""
        self._cancel_timer()
        self._buffer = ""
