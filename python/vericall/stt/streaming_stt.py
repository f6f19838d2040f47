"""
Streaming transcription for phone calls (Google Cloud Speech v2).

Each call holds one recognition stream: LINEAR16 mono audio in, interim and
final transcripts out, using the telephony model with punctuation.
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import AsyncGenerator, AsyncIterator, Awaitable, Callable, Optional, Union

from google.cloud.speech_v2 import SpeechAsyncClient
from google.cloud.speech_v2.types import cloud_speech

logger = logging.getLogger("vericall.stt")

TranscriptCallback = Callable[[str, bool], Union[None, Awaitable[None]]]


@dataclass
class StreamingResult:
    """One recognizer hypothesis."""
    transcript: str
    is_final: bool
    confidence: float = 0.0
    stability: float = 0.0


class StreamingSTT:
    """Shared Speech v2 client; opens one recognition stream per call."""

    def __init__(
        self,
        project_id: str,
        location: str = "global",
        language_code: str = "en-US",
        model: str = "telephony",
        sample_rate: int = 8000,
    ):
        self.project_id = project_id
        self.location = location
        self.language_code = language_code
        self.model = model
        self.sample_rate = sample_rate

        self._client: Optional[SpeechAsyncClient] = None

    @property
    def recognizer(self) -> str:
        """Default (implicit) recognizer path for the project."""
        return f"projects/{self.project_id}/locations/{self.location}/recognizers/_"

    def _speech_client(self) -> SpeechAsyncClient:
        if self._client is None:
            self._client = SpeechAsyncClient()
        return self._client

    def _create_config(self) -> cloud_speech.StreamingRecognitionConfig:
        decoding = cloud_speech.ExplicitDecodingConfig(
            encoding=cloud_speech.ExplicitDecodingConfig.AudioEncoding.LINEAR16,
            sample_rate_hertz=self.sample_rate,
            audio_channel_count=1,
        )
        return cloud_speech.StreamingRecognitionConfig(
            config=cloud_speech.RecognitionConfig(
                explicit_decoding_config=decoding,
                language_codes=[self.language_code],
                model=self.model,
                features=cloud_speech.RecognitionFeatures(enable_automatic_punctuation=True),
            ),
            streaming_features=cloud_speech.StreamingRecognitionFeatures(interim_results=True),
        )

    async def _requests(
        self, audio: AsyncIterator[bytes]
    ) -> AsyncGenerator[cloud_speech.StreamingRecognizeRequest, None]:
        # The first request carries only the config, the rest only audio
        yield cloud_speech.StreamingRecognizeRequest(
            recognizer=self.recognizer,
            streaming_config=self._create_config(),
        )
        async for pcm in audio:
            if pcm:
                yield cloud_speech.StreamingRecognizeRequest(audio=pcm)

    async def stream_recognize(
        self,
        audio_generator: AsyncIterator[bytes],
        call_id: str = "unknown",
    ) -> AsyncGenerator[StreamingResult, None]:
        """
        Recognize a live audio stream.

        Args:
            audio_generator: LINEAR16 chunks at sample_rate
            call_id: For log prefixes

        Yields:
            StreamingResult per hypothesis, in recognizer order
        """
        client = self._speech_client()
        try:
            stream = await client.streaming_recognize(requests=self._requests(audio_generator))
            async for response in stream:
                for result in response.results:
                    if not result.alternatives:
                        continue
                    best = result.alternatives[0]
                    if result.is_final:
                        logger.debug(f"[{call_id}] Final ({best.confidence:.2f}): '{best.transcript}'")
                    yield StreamingResult(
                        transcript=best.transcript,
                        is_final=result.is_final,
                        confidence=best.confidence if result.is_final else 0.0,
                        stability=result.stability,
                    )
        except Exception as e:
            logger.error(f"[{call_id}] Recognition stream error: {e}")
            raise


class TranscriptionSession:
    """
    One recognition stream for one call.

    Audio is queued without blocking the media loop; when the queue is full
    the incoming chunk is dropped and counted. Results are delivered in
    recognizer order to a single observer. A stream that fails is reopened
    on the same queue, up to ``max_restarts`` consecutive times.
    """

    def __init__(
        self,
        stt: StreamingSTT,
        call_id: str,
        queue_maxsize: int = 500,
        max_restarts: int = 3,
        restart_delay: float = 0.5,
    ):
        self.stt = stt
        self.call_id = call_id
        self.max_restarts = max_restarts
        self.restart_delay = restart_delay

        self._audio_queue: asyncio.Queue[bytes] = asyncio.Queue(maxsize=queue_maxsize)
        self._running = False
        self._task: Optional[asyncio.Task] = None
        self._dropped = 0
        self._restarts = 0

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def dropped_count(self) -> int:
        return self._dropped

    @property
    def restart_count(self) -> int:
        return self._restarts

    async def _audio_generator(self) -> AsyncGenerator[bytes, None]:
        """Generate audio chunks from queue."""
        while self._running:
            try:
                chunk = await asyncio.wait_for(self._audio_queue.get(), timeout=1.0)
                yield chunk
            except asyncio.TimeoutError:
                continue

    async def _deliver(self, on_result: TranscriptCallback, result: StreamingResult) -> None:
        try:
            outcome = on_result(result.transcript, result.is_final)
            if inspect.isawaitable(outcome):
                await outcome
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"[{self.call_id}] Transcript observer failed: {e}")

    async def _run(self, on_result: TranscriptCallback) -> None:
        failures = 0
        try:
            while self._running:
                try:
                    async for result in self.stt.stream_recognize(
                        self._audio_generator(), call_id=self.call_id
                    ):
                        failures = 0
                        if result.transcript:
                            await self._deliver(on_result, result)
                    return
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    if failures >= self.max_restarts:
                        logger.error(f"[{self.call_id}] Transcription stream failed, giving up: {e}")
                        return
                    failures += 1
                    self._restarts += 1
                    logger.warning(
                        f"[{self.call_id}] Transcription stream failed ({e}), "
                        f"reopening ({failures}/{self.max_restarts})"
                    )
                    await asyncio.sleep(self.restart_delay)
        finally:
            self._running = False

    def start(self, on_result: TranscriptCallback) -> None:
        """
        Start recognition.

        Args:
            on_result: Observer called with (text, is_final) zero or more times.
                May be a plain function or a coroutine function.
        """
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._run(on_result))
        logger.info(f"[{self.call_id}] Transcription started")

    def feed_audio(self, pcm_bytes: bytes) -> None:
        """Queue LINEAR16 audio for recognition (the new chunk is dropped when the queue is full)."""
        if not self._running:
            return
        try:
            self._audio_queue.put_nowait(pcm_bytes)
        except asyncio.QueueFull:
            self._dropped += 1
            if self._dropped <= 5 or self._dropped % 100 == 0:
                logger.warning(f"[{self.call_id}] STT audio queue full, dropped={self._dropped}")

    async def stop(self) -> None:
        """Stop the recognition stream."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info(f"[{self.call_id}] Transcription stopped")
