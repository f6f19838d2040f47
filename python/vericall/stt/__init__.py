"""Speech-to-Text module."""
from .streaming_stt import StreamingResult, StreamingSTT, TranscriptionSession

__all__ = ["StreamingResult", "StreamingSTT", "TranscriptionSession"]
