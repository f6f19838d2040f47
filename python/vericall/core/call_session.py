"""
Call session: one screened phone call.

Owns the conversation for a single Media Streams connection:

    AwaitingStream -> Greeting -> Listening <-> Processing -> Speaking
                                      ^                          |
                                      +---- playback drained ----+
    Speaking (decision set) -- playback drained + grace --> Ended
    any -- stop / close / transport error --> Ended

Transcripts go through the turn controller (debounce + barge-in); the oracle
is called single-flight; every spoken utterance is followed by one mark so
playback completion is known. Once the oracle decides, the decision is
disclosed and the witness pipeline is started in the background, then the
closing line is spoken.
"""

import asyncio
import logging
import time
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Coroutine, Dict, Optional, Set

from ..audio import AudioConverter, frame_from_event
from ..config.settings import VeriCallConfig
from ..errors import TransportClosed, UpstreamServiceFailure
from ..events.publisher import (
    AI_DECISION,
    AI_RESPONSE,
    CALL_END,
    CALL_GREETING,
    CALL_START,
    EMAIL_SENT,
    STT_TRANSCRIPT,
    EventPublisher,
)
from ..oracle import FALLBACK_REPLY, OracleReply, ScreeningOracle
from ..turn import BargeInPolicy, PlaybackTracker, SpeechState, TurnController
from ..witness.models import DecisionData, hash_caller
from .task_registry import TaskRegistry
from .transport import MediaStreamEvent, MediaStreamTransport

if TYPE_CHECKING:
    from ..metrics.collector import MetricsCollector
    from ..notify.email import EmailNotifier
    from ..stt.streaming_stt import TranscriptionSession
    from ..tts.google_tts import SpeechSynthesizer
    from ..witness.disclosure import DisclosureStore
    from ..witness.pipeline import WitnessPipeline

logger = logging.getLogger("vericall.session")


GREETING = (
    "Hello, this is an automated assistant. "
    "May I ask who's calling and the purpose of your call?"
)
SILENCE_REPROMPT = "I'm sorry, I didn't catch that. Could you please repeat?"


class SessionState(str, Enum):
    AWAITING_STREAM = "awaiting_stream"
    GREETING = "greeting"
    LISTENING = "listening"
    PROCESSING = "processing"
    SPEAKING = "speaking"
    ENDED = "ended"


class CallSession:
    """Conversation state machine for one call."""

    def __init__(
        self,
        call_id: str,
        transport: MediaStreamTransport,
        oracle: ScreeningOracle,
        synthesizer: "SpeechSynthesizer",
        tasks: TaskRegistry,
        config: Optional[VeriCallConfig] = None,
        transcriber: Optional["TranscriptionSession"] = None,
        witness: Optional["WitnessPipeline"] = None,
        disclosures: Optional["DisclosureStore"] = None,
        notifier: Optional["EmailNotifier"] = None,
        events: Optional[EventPublisher] = None,
        metrics: Optional["MetricsCollector"] = None,
    ):
        self.call_id = call_id
        self.transport = transport
        self.oracle = oracle
        self.synthesizer = synthesizer
        self.tasks = tasks
        self.config = config or VeriCallConfig()
        self.transcriber = transcriber
        self.witness = witness
        self.disclosures = disclosures
        self.notifier = notifier
        self.events = events
        self.metrics = metrics

        self.state = SessionState.AWAITING_STREAM
        self.stream_sid: Optional[str] = None
        self.caller: Optional[str] = None
        self.started_at = time.time()
        self.turn_count = 0
        self.greeted = False
        self.end_after_speaking = False
        self.end_reason: Optional[str] = None

        self.speech = SpeechState()
        self.playback = PlaybackTracker(maxsize=self.config.max_pending_marks)
        self.controller = TurnController(
            state=self.speech,
            playback=self.playback,
            on_utterance=self._on_utterance,
            on_clear=self._on_clear,
            policy=BargeInPolicy(self.config.barge_in_threshold_ms),
            short_utterance_words=self.config.short_utterance_words,
            debounce_seconds=self.config.utterance_debounce_sec,
            call_id=call_id,
        )

        self._processing = False
        self._counted = False
        self._mark_seq = 0
        self._silence_timer: Optional[asyncio.Task] = None
        self._end_task: Optional[asyncio.Task] = None
        self._own_tasks: Set[asyncio.Task] = set()
        self._ended = asyncio.Event()

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def is_ended(self) -> bool:
        return self.state is SessionState.ENDED

    @property
    def is_processing(self) -> bool:
        return self._processing

    @property
    def decision(self) -> Optional[str]:
        return self.speech.decision

    @property
    def caller_hash(self) -> str:
        return hash_caller(self.caller) if self.caller else "unknown"

    async def wait_ended(self, timeout: Optional[float] = None) -> bool:
        """Wait for the session to end. Returns False on timeout."""
        try:
            await asyncio.wait_for(self._ended.wait(), timeout=timeout)
            return True
        except asyncio.TimeoutError:
            return False

    # ------------------------------------------------------------------
    # Transport events
    # ------------------------------------------------------------------

    async def handle_event(self, event: MediaStreamEvent) -> None:
        """Dispatch one inbound stream event. Errors stay inside the call."""
        if self.is_ended:
            return

        try:
            if event.event == "start":
                self.start(event)
            elif event.event == "media":
                self._on_media(event)
            elif event.event == "mark":
                self._on_mark(event.mark_name)
            elif event.event == "stop":
                await self.end("stream stopped")
            elif event.event == "connected":
                logger.debug(f"[{self.call_id}] Stream connected")
            else:
                logger.debug(f"[{self.call_id}] Ignoring stream event '{event.event}'")
        except Exception as e:
            logger.error(f"[{self.call_id}] Error handling '{event.event}' event: {e}", exc_info=True)

    def start(self, event: MediaStreamEvent) -> None:
        """Stream started: begin transcription and greet the caller (once)."""
        if self.state is not SessionState.AWAITING_STREAM:
            logger.debug(f"[{self.call_id}] Duplicate start ignored")
            return

        self.stream_sid = event.stream_sid
        self.transport.stream_sid = event.stream_sid
        params = event.custom_parameters
        self.caller = params.get("from") or params.get("callerNumber") or params.get("From")
        self.state = SessionState.GREETING

        logger.info(f"[{self.call_id}] Call started (stream={self.stream_sid}, caller={self.caller_hash})")
        if self.metrics:
            self.metrics.call_started()
            self._counted = True
        self._emit(CALL_START, streamSid=self.stream_sid, callerHash=self.caller_hash)

        if self.transcriber:
            self.transcriber.start(self._on_transcript)

        self._spawn("greeting", self._greet())

    async def _greet(self) -> None:
        self.oracle.add_greeting(GREETING)
        self.greeted = True
        self._emit(CALL_GREETING, text=GREETING)

        spoke = await self.speak(GREETING)
        if not spoke and not self.is_ended:
            self.state = SessionState.LISTENING
            self._arm_silence_timer()

    def _on_media(self, event: MediaStreamEvent) -> None:
        try:
            frame = frame_from_event(event.media)
        except ValueError as e:
            logger.debug(f"[{self.call_id}] Dropping media frame: {e}")
            return

        if frame.timestamp_ms > self.speech.latest_media_ms:
            self.speech.latest_media_ms = frame.timestamp_ms

        if self.transcriber and frame.payload:
            pcm = AudioConverter.convert(
                frame.payload,
                src_rate=self.config.sample_rate,
                dst_rate=self.config.stt_sample_rate,
            )
            self.transcriber.feed_audio(pcm)

    def _on_mark(self, name: Optional[str]) -> None:
        if name is not None and name not in self.playback.snapshot():
            # Echo of a mark dropped by a clear or past the tracking limit
            logger.debug(f"[{self.call_id}] Untracked mark {name}")
            return

        drained = self.playback.acknowledge(name)
        if not drained:
            return

        logger.debug(f"[{self.call_id}] Playback drained")
        self.speech.reset_speaking()

        if self.end_after_speaking:
            self._schedule_end()
            return

        if not self._processing:
            self.state = SessionState.LISTENING
        self._arm_silence_timer()
        self._drain_pending()

    # ------------------------------------------------------------------
    # Transcripts and turns
    # ------------------------------------------------------------------

    def _on_transcript(self, text: str, is_final: bool) -> None:
        if self.is_ended:
            return
        self._arm_silence_timer()
        if is_final:
            logger.info(f"[{self.call_id}] Caller: '{text}'")
            self._emit(STT_TRANSCRIPT, text=text, isFinal=True)
        self.controller.accept(text, is_final)

        if self.state is SessionState.SPEAKING and not self.speech.is_speaking:
            # Barge-in cut playback short
            self.state = SessionState.PROCESSING if self._processing else SessionState.LISTENING

    def _on_clear(self) -> None:
        if self.metrics:
            self.metrics.barge_in(interrupted=True)
        self._spawn("clear", self._send_guarded(self.transport.send_clear))

    def _on_utterance(self, text: str) -> None:
        """Single-flight entry: queue while a turn is in flight."""
        if self.is_ended or self.decision is not None:
            return
        if self._processing:
            logger.debug(f"[{self.call_id}] Turn in flight, queued: '{text}'")
            self.speech.pending_transcripts.append(text)
            return
        self._processing = True
        self._spawn("turn", self._process_turn(text))

    def _drain_pending(self) -> None:
        if (
            not self.speech.pending_transcripts
            or self._processing
            or self.speech.is_speaking
            or self.decision is not None
            or self.is_ended
        ):
            return
        text = " ".join(self.speech.pending_transcripts).strip()
        self.speech.pending_transcripts.clear()
        if text:
            logger.info(f"[{self.call_id}] Processing queued speech: '{text}'")
            self._on_utterance(text)

    async def _process_turn(self, text: str) -> None:
        self._processing = True
        self.state = SessionState.PROCESSING
        self._cancel_silence_timer()
        self.turn_count += 1
        if self.metrics:
            self.metrics.turn_processed()

        try:
            reply = await self._ask_oracle(text)
            if self.is_ended:
                return

            logger.info(f"[{self.call_id}] AI: '{reply.text}' (decision={reply.decision})")
            self._emit(AI_RESPONSE, text=reply.text, turn=self.turn_count)

            if reply.decision is not None:
                # The record must exist even if the caller hangs up during the closing line
                self._set_decision(reply)
                self._finalize_decision(reply)

            await self.speak(reply.text)
        finally:
            self._processing = False

        if self.is_ended:
            return
        if self.decision is not None:
            if self.playback.is_drained:
                self._schedule_end()
            return
        if not self.speech.is_speaking:
            self.state = SessionState.LISTENING
            self._arm_silence_timer()
            self._drain_pending()

    async def _ask_oracle(self, text: str) -> OracleReply:
        start = time.time()
        try:
            reply = await asyncio.wait_for(
                self.oracle.chat(text), timeout=self.config.oracle_timeout
            )
        except (UpstreamServiceFailure, asyncio.TimeoutError) as e:
            logger.error(f"[{self.call_id}] Oracle failed: {e or 'timeout'}")
            if self.metrics:
                self.metrics.oracle_request(time.time() - start, success=False)
            return OracleReply(text=FALLBACK_REPLY)

        if self.metrics:
            self.metrics.oracle_request(time.time() - start)
        return reply

    # ------------------------------------------------------------------
    # Speaking
    # ------------------------------------------------------------------

    async def speak(self, text: str) -> bool:
        """
        Synthesize and play one utterance, followed by one mark.

        Returns:
            True if audio was sent to the caller.
        """
        if self.is_ended or not text:
            return False

        start = time.time()
        try:
            payload = await asyncio.wait_for(
                self.synthesizer.synthesize_payload(text), timeout=self.config.tts_timeout
            )
        except (UpstreamServiceFailure, asyncio.TimeoutError) as e:
            logger.error(f"[{self.call_id}] TTS failed: {e or 'timeout'}")
            return False
        if self.metrics:
            self.metrics.tts_request(time.time() - start)

        if self.is_ended:
            return False

        self._mark_seq += 1
        token = f"utt_{self._mark_seq}"

        try:
            await self.transport.send_media(payload)
            await self.transport.send_mark(token)
        except TransportClosed as e:
            logger.warning(f"[{self.call_id}] Transport closed while speaking: {e}")
            return False

        # Tracked only once the mark is on the wire
        if not self.playback.push(token):
            logger.warning(f"[{self.call_id}] Mark queue full, {token} not tracked")

        self.speech.is_speaking = True
        self.speech.response_start_ms = self.speech.latest_media_ms
        self.state = SessionState.SPEAKING
        return True

    async def _send_guarded(self, send: Callable[[], Awaitable[None]]) -> None:
        try:
            await send()
        except TransportClosed as e:
            logger.debug(f"[{self.call_id}] Send skipped, transport closed: {e}")

    # ------------------------------------------------------------------
    # Decision
    # ------------------------------------------------------------------

    def _set_decision(self, reply: OracleReply) -> None:
        decision = reply.decision.value
        self.speech.decision = decision
        self.end_after_speaking = True
        self.controller.cancel()
        self._cancel_silence_timer()
        self.speech.pending_transcripts.clear()

        logger.info(f"[{self.call_id}] Decision: {decision} (confidence {reply.confidence:.2f})")
        self._emit(AI_DECISION, decision=decision, confidence=reply.confidence)

    def _finalize_decision(self, reply: OracleReply) -> None:
        """Disclose, notify, and hand the decision to the witness pipeline."""
        decision = reply.decision.value

        try:
            summary = self.oracle.summarize()
        except Exception as e:
            logger.warning(f"[{self.call_id}] Summary failed: {e}")
            summary = reply.text
        transcript = self.oracle.transcript()

        if self.disclosures:
            try:
                self.disclosures.put(
                    call_id=self.call_id,
                    decision=decision,
                    reason=summary,
                    transcript=transcript,
                    system_prompt_hash=self.oracle.system_prompt_hash(),
                    caller_hash_short=self.caller_hash,
                    conversation_turns=self.turn_count,
                )
            except Exception as e:
                logger.error(f"[{self.call_id}] Failed to store decision disclosure: {e}")

        if self.notifier:
            from ..notify.email import CallNotification

            notification = CallNotification(
                caller=self.caller_hash,
                timestamp=datetime.now(timezone.utc).isoformat(),
                decision=decision,
                transcript=transcript,
                summary=summary,
            )
            self.tasks.register(f"notify:{self.call_id}", self._notify(notification))

        if self.witness:
            try:
                record = self.witness.create_witness(
                    self.call_id,
                    DecisionData(
                        call_id=self.call_id,
                        action=decision,
                        reason=summary,
                        confidence=reply.confidence,
                    ),
                )
                logger.info(f"[{self.call_id}] Witness {record.id} created")
            except Exception as e:
                logger.error(f"[{self.call_id}] Failed to create witness: {e}")

    async def _notify(self, notification: Any) -> None:
        if await self.notifier.notify(notification):
            self._emit(EMAIL_SENT, decision=notification.decision)

    # ------------------------------------------------------------------
    # Timers and ending
    # ------------------------------------------------------------------

    def _arm_silence_timer(self) -> None:
        self._cancel_silence_timer()
        if self.is_ended or self.decision is not None:
            return
        self._silence_timer = asyncio.create_task(
            self._silence_after(self.config.silence_reprompt_sec)
        )

    def _cancel_silence_timer(self) -> None:
        timer = self._silence_timer
        self._silence_timer = None
        if timer is not None and not timer.done() and timer is not asyncio.current_task():
            timer.cancel()

    async def _silence_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        self._silence_timer = None
        if (
            self._processing
            or self.speech.is_speaking
            or self.decision is not None
            or self.is_ended
        ):
            return
        logger.info(f"[{self.call_id}] Silence, re-prompting")
        await self.speak(SILENCE_REPROMPT)

    def _schedule_end(self) -> None:
        if self._end_task is not None or self.is_ended:
            return
        self._end_task = self._spawn("end", self._end_after(self.config.end_call_grace_sec))

    async def _end_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        await self.end(f"decision {self.decision}", close_transport=True)

    async def end(self, reason: str = "ended", close_transport: bool = False) -> None:
        """End the call. Idempotent; after this no audio or oracle calls happen."""
        if self.is_ended:
            return
        self.state = SessionState.ENDED
        self.end_reason = reason
        duration = time.time() - self.started_at
        logger.info(f"[{self.call_id}] Call ended: {reason} ({duration:.1f}s, {self.turn_count} turns)")

        self.controller.cancel()
        self._cancel_silence_timer()
        self.playback.clear()
        self.speech.reset_speaking()

        current = asyncio.current_task()
        for task in list(self._own_tasks):
            if task is not current and not task.done():
                task.cancel()

        if self.transcriber:
            await self.transcriber.stop()
        if close_transport:
            try:
                await self.transport.close()
            except (ConnectionError, RuntimeError) as e:
                logger.debug(f"[{self.call_id}] Transport close error: {e}")

        if self.metrics and self._counted:
            self.metrics.call_ended(duration, self.decision)
        self._emit(CALL_END, reason=reason, decision=self.decision, turns=self.turn_count)
        self._ended.set()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _spawn(self, name: str, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        task = self.tasks.register(f"{name}:{self.call_id}", coro)
        self._own_tasks.add(task)
        task.add_done_callback(self._own_tasks.discard)
        return task

    def _emit(self, event_type: str, **data: Any) -> None:
        if self.events:
            self.events.publish(event_type, self.call_id, **data)

    def info(self) -> Dict[str, Any]:
        """JSON-serializable snapshot of the session."""
        return {
            "callSid": self.call_id,
            "streamSid": self.stream_sid,
            "state": self.state.value,
            "callerHash": self.caller_hash,
            "turnCount": self.turn_count,
            "greeted": self.greeted,
            "decision": self.decision,
            "isSpeaking": self.speech.is_speaking,
            "isProcessing": self._processing,
            "endAfterSpeaking": self.end_after_speaking,
            "outstandingMarks": self.playback.outstanding,
            "pendingTranscripts": len(self.speech.pending_transcripts),
            "startedAt": datetime.fromtimestamp(self.started_at, timezone.utc).isoformat(),
            "durationSec": round(time.time() - self.started_at, 1),
        }
