"""
Playback Tracker.

Tracks outstanding Twilio mark acknowledgments. Every utterance sent to the
caller is followed by one mark; when Twilio echoes the mark back the audio
before it has finished playing. An empty tracker means playback is done.
"""

import logging
from collections import deque
from typing import Deque, List, Optional

logger = logging.getLogger("vericall.playback")


class PlaybackTracker:
    """Bounded FIFO of mark tokens awaiting acknowledgment."""

    def __init__(self, maxsize: int = 10):
        """
        Args:
            maxsize: Maximum outstanding marks. Marks pushed beyond this are
                not tracked (audio is still sent).
        """
        self.maxsize = maxsize
        self._marks: Deque[str] = deque()
        self._dropped = 0

    def push(self, token: str) -> bool:
        """
        Track a mark token.

        Returns:
            False if the tracker is full and the token was not tracked.
        """
        if len(self._marks) >= self.maxsize:
            self._dropped += 1
            logger.debug(f"Mark queue full ({self.maxsize}), not tracking {token}")
            return False
        self._marks.append(token)
        return True

    def acknowledge(self, token: Optional[str] = None) -> bool:
        """
        Consume the oldest outstanding mark.

        Args:
            token: Acknowledged mark name (logged only; marks are played in order)

        Returns:
            True if playback has now drained (no marks outstanding).
        """
        if self._marks:
            expected = self._marks.popleft()
            if token is not None and token != expected:
                logger.debug(f"Mark {token} acknowledged, expected {expected}")
        return not self._marks

    def clear(self) -> None:
        """Forget all outstanding marks (playback was cleared)."""
        self._marks.clear()

    @property
    def outstanding(self) -> int:
        """Number of marks awaiting acknowledgment."""
        return len(self._marks)

    @property
    def is_drained(self) -> bool:
        return not self._marks

    @property
    def dropped_count(self) -> int:
        """Marks that could not be tracked because the queue was full."""
        return self._dropped

    def snapshot(self) -> List[str]:
        return list(self._marks)

    def __len__(self) -> int:
        return len(self._marks)
