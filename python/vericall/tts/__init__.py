"""Text-to-Speech module."""
from .google_tts import SpeechSynthesizer

__all__ = ["SpeechSynthesizer"]
