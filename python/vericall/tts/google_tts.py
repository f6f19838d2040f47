"""
Google Cloud Text-to-Speech for phone playback.

Synthesizes μ-law 8kHz audio and returns it as a base64 payload ready to be
sent as a media frame.
"""

import logging
import time
from typing import Any, Optional

from google.cloud import texttospeech_v1 as tts

from ..audio import encode_payload, strip_wav_header
from ..errors import UpstreamServiceFailure

logger = logging.getLogger("vericall.tts")


class SpeechSynthesizer:
    """Text to μ-law speech using Google Cloud TTS."""

    def __init__(
        self,
        language_code: str = "en-US",
        voice_name: str = "en-US-Wavenet-F",
        speaking_rate: float = 1.0,
        sample_rate: int = 8000,
        client: Optional[Any] = None,
    ):
        self.language_code = language_code
        self.voice_name = voice_name
        self.speaking_rate = speaking_rate
        self.sample_rate = sample_rate

        self._client = client

    def _get_client(self) -> Any:
        if self._client is None:
            self._client = tts.TextToSpeechAsyncClient()
        return self._client

    async def synthesize(self, text: str) -> bytes:
        """
        Synthesize text to raw μ-law bytes.

        Raises:
            UpstreamServiceFailure: On any TTS error or empty audio.
        """
        client = self._get_client()
        start = time.time()

        try:
            response = await client.synthesize_speech(
                input=tts.SynthesisInput(text=text),
                voice=tts.VoiceSelectionParams(
                    language_code=self.language_code,
                    name=self.voice_name,
                ),
                audio_config=tts.AudioConfig(
                    audio_encoding=tts.AudioEncoding.MULAW,
                    sample_rate_hertz=self.sample_rate,
                    speaking_rate=self.speaking_rate,
                ),
            )
        except Exception as e:
            raise UpstreamServiceFailure("tts", str(e)) from e

        audio = strip_wav_header(response.audio_content or b"")
        if not audio:
            raise UpstreamServiceFailure("tts", "empty audio")

        logger.debug(
            f"Synthesized {len(text)} chars -> {len(audio)} bytes "
            f"in {(time.time() - start) * 1000:.0f}ms"
        )
        return audio

    async def synthesize_payload(self, text: str) -> str:
        """Synthesize text and return a base64 media payload."""
        return encode_payload(await self.synthesize(text))
