"""Turn-taking module: utterance buffering, barge-in and playback tracking."""
from .controller import (
    FILLER_WORDS,
    BargeInAction,
    BargeInPolicy,
    SpeechState,
    TurnController,
    is_filler,
)
from .playback import PlaybackTracker

__all__ = [
    "FILLER_WORDS",
    "BargeInAction",
    "BargeInPolicy",
    "PlaybackTracker",
    "SpeechState",
    "TurnController",
    "is_filler",
]
