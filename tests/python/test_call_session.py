"""Tests for the call session state machine."""

import asyncio
import base64
import os
import sys
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '../../python'))

from vericall.core import (
    GREETING,
    CallSession,
    MediaStreamEvent,
    MediaStreamTransport,
    SessionState,
    TaskRegistry,
)
from vericall.errors import UpstreamServiceFailure
from vericall.oracle import FALLBACK_REPLY, ScreeningOracle
from vericall.witness import DecisionData, DisclosureStore, hash_caller

CALLER_LINE = "Hi, this is John from Acme about the invoice"
SECOND_LINE = "It is about the overdue payment from March"
CLOSING = "Got it, I'll pass along your message. Have a great day! [RECORD]"


def reply(text):
    return SimpleNamespace(text=text)


def gemini(*texts):
    client = MagicMock()
    client.aio.models.generate_content = AsyncMock(side_effect=[reply(t) for t in texts])
    return client


def start_event(call_sid="CA1", stream_sid="MZ1", caller="+15551234567"):
    return MediaStreamEvent.from_message({
        "event": "start",
        "streamSid": stream_sid,
        "start": {
            "streamSid": stream_sid,
            "callSid": call_sid,
            "customParameters": {"from": caller},
        },
    })


def mark_event(name):
    return MediaStreamEvent.from_message({"event": "mark", "streamSid": "MZ1", "mark": {"name": name}})


def media_event(timestamp_ms):
    return MediaStreamEvent.from_message({
        "event": "media",
        "streamSid": "MZ1",
        "media": {
            "track": "inbound",
            "timestamp": str(timestamp_ms),
            "payload": base64.b64encode(b'\xff' * 160).decode(),
        },
    })


def build_session(config, ws, synth, client, **kwargs):
    tasks = TaskRegistry()
    session = CallSession(
        call_id="CA1",
        transport=MediaStreamTransport(ws, "CA1"),
        oracle=ScreeningOracle(project_id="test-project", client=client),
        synthesizer=synth,
        tasks=tasks,
        config=config,
        **kwargs,
    )
    return session, tasks


async def greet(session, tasks):
    await session.handle_event(start_event())
    await tasks.wait_idle(1.0)


class TestGreeting:
    """Test stream start and greeting."""

    @pytest.mark.asyncio
    async def test_greeting_spoken_once(self, fast_config, fake_ws, fake_synthesizer):
        metrics = MagicMock()
        session, tasks = build_session(
            fast_config, fake_ws, fake_synthesizer, gemini(), metrics=metrics,
        )

        await greet(session, tasks)
        await session.handle_event(start_event())
        await tasks.wait_idle(1.0)

        fake_synthesizer.synthesize_payload.assert_awaited_once_with(GREETING)
        assert len(fake_ws.events("media")) == 1
        assert fake_ws.events("mark") == [
            {"event": "mark", "streamSid": "MZ1", "mark": {"name": "utt_1"}}
        ]
        assert fake_ws.sent[0]["streamSid"] == "MZ1"
        assert session.state is SessionState.SPEAKING
        assert session.oracle.history[0].content == GREETING
        assert session.caller_hash == hash_caller("+15551234567")
        metrics.call_started.assert_called_once()

        await session.end()

    @pytest.mark.asyncio
    async def test_mark_ack_returns_to_listening(self, fast_config, fake_ws, fake_synthesizer):
        session, tasks = build_session(fast_config, fake_ws, fake_synthesizer, gemini())
        await greet(session, tasks)

        await session.handle_event(mark_event("utt_1"))

        assert session.state is SessionState.LISTENING
        assert not session.speech.is_speaking
        assert session.playback.is_drained

        await session.end()

    @pytest.mark.asyncio
    async def test_tts_failure_still_listens(self, fast_config, fake_ws, fake_synthesizer):
        fake_synthesizer.synthesize_payload.side_effect = UpstreamServiceFailure("tts", "down")
        session, tasks = build_session(fast_config, fake_ws, fake_synthesizer, gemini())

        await greet(session, tasks)

        assert fake_ws.sent == []
        assert session.state is SessionState.LISTENING
        assert session.greeted

        await session.end()


class TestTurns:
    """Test caller turns through the oracle."""

    @pytest.mark.asyncio
    async def test_turn_spoken(self, fast_config, fake_ws, fake_synthesizer):
        session, tasks = build_session(
            fast_config, fake_ws, fake_synthesizer, gemini("Thanks John. What's it regarding?"),
        )
        await greet(session, tasks)
        await session.handle_event(mark_event("utt_1"))

        session._on_transcript(CALLER_LINE, True)
        await tasks.wait_idle(1.0)

        fake_synthesizer.synthesize_payload.assert_awaited_with("Thanks John. What's it regarding?")
        assert [m["mark"]["name"] for m in fake_ws.events("mark")] == ["utt_1", "utt_2"]
        assert session.turn_count == 1
        assert session.state is SessionState.SPEAKING
        assert session.decision is None

        await session.end()

    @pytest.mark.asyncio
    async def test_oracle_failure_speaks_fallback(self, fast_config, fake_ws, fake_synthesizer):
        client = MagicMock()
        client.aio.models.generate_content = AsyncMock(side_effect=RuntimeError("500"))
        session, tasks = build_session(fast_config, fake_ws, fake_synthesizer, client)
        await greet(session, tasks)
        await session.handle_event(mark_event("utt_1"))

        session._on_transcript(CALLER_LINE, True)
        await tasks.wait_idle(1.0)

        fake_synthesizer.synthesize_payload.assert_awaited_with(FALLBACK_REPLY)
        assert session.decision is None
        assert not session.is_ended

        await session.end()

    @pytest.mark.asyncio
    async def test_single_flight(self, fast_config, fake_ws, fake_synthesizer):
        """A second utterance during an oracle call waits for the first turn."""
        gate = asyncio.Event()
        seen = []

        async def generate(**kwargs):
            seen.append(kwargs["contents"][-1].parts[0].text)
            if len(seen) == 1:
                await gate.wait()
            return reply("Thanks. Anything else?")

        client = MagicMock()
        client.aio.models.generate_content = AsyncMock(side_effect=generate)
        session, tasks = build_session(fast_config, fake_ws, fake_synthesizer, client)
        await greet(session, tasks)
        await session.handle_event(mark_event("utt_1"))

        session._on_transcript(CALLER_LINE, True)
        await asyncio.sleep(0.01)
        assert session.is_processing

        session._on_transcript(SECOND_LINE, True)
        assert session.speech.pending_transcripts == [SECOND_LINE]
        assert len(seen) == 1

        gate.set()
        await tasks.wait_idle(1.0)
        # Queued speech waits for playback of the first reply
        assert len(seen) == 1

        await session.handle_event(mark_event("utt_2"))
        await tasks.wait_idle(1.0)

        assert seen == [CALLER_LINE, SECOND_LINE]
        assert session.turn_count == 2

        await session.end()


class TestBargeIn:
    """Test caller speech during playback."""

    @pytest.mark.asyncio
    async def test_interrupt_sends_clear(self, fast_config, fake_ws, fake_synthesizer):
        metrics = MagicMock()
        session, tasks = build_session(
            fast_config, fake_ws, fake_synthesizer, gemini("Sure, go ahead."), metrics=metrics,
        )
        await greet(session, tasks)

        await session.handle_event(media_event(1500))
        session._on_transcript(CALLER_LINE, True)
        await tasks.wait_idle(1.0)

        events = [m["event"] for m in fake_ws.sent]
        assert events == ["media", "mark", "clear", "media", "mark"]
        metrics.barge_in.assert_called_once_with(interrupted=True)

        # The cleared greeting's mark echo is ignored
        await session.handle_event(mark_event("utt_1"))
        assert session.playback.snapshot() == ["utt_2"]

        await session.end()

    @pytest.mark.asyncio
    async def test_interrupt_returns_to_listening(self, fast_config, fake_ws, fake_synthesizer):
        session, tasks = build_session(fast_config, fake_ws, fake_synthesizer, gemini("Go on."))
        await greet(session, tasks)
        assert session.state is SessionState.SPEAKING

        await session.handle_event(media_event(1500))
        session._on_transcript("Hold on a second", True)

        assert session.state is SessionState.LISTENING
        assert session.info()["state"] == "listening"
        assert not session.speech.is_speaking

        await session.end()

    @pytest.mark.asyncio
    async def test_early_speech_processed_after_playback(self, fast_config, fake_ws, fake_synthesizer):
        client = gemini("Thanks, who is calling?")
        session, tasks = build_session(fast_config, fake_ws, fake_synthesizer, client)
        await greet(session, tasks)

        await session.handle_event(media_event(500))
        session._on_transcript(CALLER_LINE, True)
        await tasks.wait_idle(1.0)

        assert fake_ws.events("clear") == []
        assert session.speech.pending_transcripts == [CALLER_LINE]
        client.aio.models.generate_content.assert_not_awaited()

        await session.handle_event(mark_event("utt_1"))
        await tasks.wait_idle(1.0)

        client.aio.models.generate_content.assert_awaited_once()
        assert session.turn_count == 1

        await session.end()


class TestDecision:
    """Test the closing line and hand-off to the witness pipeline."""

    @pytest.mark.asyncio
    async def test_decision_witnessed_and_call_ends(self, fast_config, fake_ws, fake_synthesizer):
        witness = MagicMock()
        disclosures = DisclosureStore()
        events = MagicMock()
        session, tasks = build_session(
            fast_config, fake_ws, fake_synthesizer, gemini(CLOSING),
            witness=witness, disclosures=disclosures, events=events,
        )
        await greet(session, tasks)
        await session.handle_event(mark_event("utt_1"))

        session._on_transcript(CALLER_LINE, True)
        await tasks.wait_idle(1.0)

        assert session.decision == "RECORD"
        fake_synthesizer.synthesize_payload.assert_awaited_with(
            "Got it, I'll pass along your message. Have a great day!"
        )
        witness.create_witness.assert_called_once()
        call_id, data = witness.create_witness.call_args.args
        assert call_id == "CA1"
        assert isinstance(data, DecisionData)
        assert data.action == "RECORD"
        assert data.reason == "Got it, I'll pass along your message. Have a great day!"

        disclosure = disclosures.get("CA1")
        assert disclosure.decision == "RECORD"
        assert disclosure.caller_hash_short == hash_caller("+15551234567")
        assert "Caller: " + CALLER_LINE in disclosure.transcript

        # Closing line still playing
        assert not session.is_ended

        # Speech during the closing line is discarded
        session._on_transcript("Wait, one more thing please listen", True)
        assert session.speech.pending_transcripts == []

        await session.handle_event(mark_event("utt_2"))
        assert await session.wait_ended(1.0)
        assert fake_ws.closed
        assert session.end_reason == "decision RECORD"

        event_types = [c.args[0] for c in events.publish.call_args_list]
        assert "ai:decision" in event_types
        assert event_types[-1] == "call:end"

    @pytest.mark.asyncio
    async def test_hangup_during_closing_line_keeps_witness(self, fast_config, fake_ws, fake_synthesizer):
        """The caller hangs up while the closing line is still being synthesized."""
        witness = MagicMock()
        disclosures = DisclosureStore()
        notifier = MagicMock()
        notifier.notify = AsyncMock(return_value=True)
        session, tasks = build_session(
            fast_config, fake_ws, fake_synthesizer, gemini(CLOSING),
            witness=witness, disclosures=disclosures, notifier=notifier,
        )
        await greet(session, tasks)
        await session.handle_event(mark_event("utt_1"))

        synthesizing = asyncio.Event()
        release = asyncio.Event()

        async def slow_synthesis(text):
            synthesizing.set()
            await release.wait()
            return base64.b64encode(b'\xff' * 160).decode()

        fake_synthesizer.synthesize_payload.side_effect = slow_synthesis

        session._on_transcript(CALLER_LINE, True)
        await asyncio.wait_for(synthesizing.wait(), 1.0)

        await session.handle_event(MediaStreamEvent(event="stop", stream_sid="MZ1"))
        await tasks.wait_idle(1.0)

        assert session.is_ended
        assert session.decision == "RECORD"
        witness.create_witness.assert_called_once()
        assert witness.create_witness.call_args.args[0] == "CA1"
        assert disclosures.get("CA1").decision == "RECORD"
        notifier.notify.assert_awaited_once()
        assert len(fake_ws.events("media")) == 1

    @pytest.mark.asyncio
    async def test_notification_sent(self, fast_config, fake_ws, fake_synthesizer):
        notifier = MagicMock()
        notifier.notify = AsyncMock(return_value=True)
        session, tasks = build_session(
            fast_config, fake_ws, fake_synthesizer, gemini("Not interested, goodbye. [BLOCK]"),
            notifier=notifier,
        )
        await greet(session, tasks)
        await session.handle_event(mark_event("utt_1"))

        session._on_transcript("We can cut your energy bill in half today", True)
        await tasks.wait_idle(1.0)

        notifier.notify.assert_awaited_once()
        notification = notifier.notify.call_args.args[0]
        assert notification.decision == "BLOCK"
        assert notification.is_blocked

        await session.end()


class TestEnding:
    """Test stop handling and idempotent end."""

    @pytest.mark.asyncio
    async def test_stop_ends_session(self, fast_config, fake_ws, fake_synthesizer):
        transcriber = MagicMock()
        transcriber.stop = AsyncMock()
        metrics = MagicMock()
        session, tasks = build_session(
            fast_config, fake_ws, fake_synthesizer, gemini(),
            transcriber=transcriber, metrics=metrics,
        )
        await greet(session, tasks)
        transcriber.start.assert_called_once()

        await session.handle_event(media_event(20))
        transcriber.feed_audio.assert_called_once()
        assert len(transcriber.feed_audio.call_args.args[0]) == 320

        await session.handle_event(MediaStreamEvent(event="stop", stream_sid="MZ1"))

        assert session.is_ended
        assert session.end_reason == "stream stopped"
        transcriber.stop.assert_awaited_once()
        metrics.call_ended.assert_called_once()

        sent = len(fake_ws.sent)
        assert await session.speak("Anyone there?") is False
        await session.handle_event(mark_event("utt_1"))
        await session.end("again")

        assert len(fake_ws.sent) == sent
        assert session.end_reason == "stream stopped"
        metrics.call_ended.assert_called_once()

    @pytest.mark.asyncio
    async def test_speak_on_closed_socket_tracks_nothing(self, fast_config, fake_ws, fake_synthesizer):
        session, tasks = build_session(fast_config, fake_ws, fake_synthesizer, gemini())
        await greet(session, tasks)
        await session.handle_event(mark_event("utt_1"))

        fake_ws.closed = True
        assert await session.speak("Are you still there?") is False

        assert session.playback.outstanding == 0
        assert session.playback.is_drained
        assert not session.speech.is_speaking
        assert session.state is SessionState.LISTENING

        await session.end()

    @pytest.mark.asyncio
    async def test_end_before_start(self, fast_config, fake_ws, fake_synthesizer):
        metrics = MagicMock()
        session, _ = build_session(fast_config, fake_ws, fake_synthesizer, gemini(), metrics=metrics)

        await session.end("transport closed")

        assert session.is_ended
        metrics.call_ended.assert_not_called()

    @pytest.mark.asyncio
    async def test_info(self, fast_config, fake_ws, fake_synthesizer):
        session, tasks = build_session(fast_config, fake_ws, fake_synthesizer, gemini())
        await greet(session, tasks)

        info = session.info()

        assert info["callSid"] == "CA1"
        assert info["streamSid"] == "MZ1"
        assert info["state"] == "speaking"
        assert info["greeted"] is True
        assert info["outstandingMarks"] == 1

        await session.end()


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
