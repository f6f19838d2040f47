"""Tests for the task registry, session store and media stream transport."""

import asyncio
import os
import sys
from unittest.mock import MagicMock

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '../../python'))

from vericall.core import MediaStreamEvent, MediaStreamTransport, SessionStore, TaskRegistry
from vericall.errors import TransportClosed
from vericall.metrics import MetricsCollector


class TestTaskRegistry:
    """Test background task tracking."""

    @pytest.mark.asyncio
    async def test_completed_tasks_removed(self):
        registry = TaskRegistry()

        async def work():
            return 42

        task = registry.register("work", work())
        assert registry.active_count == 1

        assert await task == 42
        await asyncio.sleep(0)
        assert registry.active_count == 0
        assert registry.completed_count == 1

    @pytest.mark.asyncio
    async def test_failures_counted(self):
        metrics = MagicMock()
        registry = TaskRegistry(metrics=metrics)

        async def fail():
            raise ValueError("boom")

        registry.register("witness:wit_1", fail())
        assert await registry.wait_idle(1.0)

        assert registry.failed_count == 1
        assert registry.get_failed_task_names() == {"witness:wit_1"}
        metrics.update_tasks.assert_any_call(0, failed_delta=1)

    @pytest.mark.asyncio
    async def test_duplicate_names_suffixed(self):
        registry = TaskRegistry()
        gate = asyncio.Event()

        registry.register("turn:CA1", gate.wait())
        registry.register("turn:CA1", gate.wait())

        names = set(registry.get_active_tasks())
        assert len(names) == 2
        assert "turn:CA1" in names

        gate.set()
        assert await registry.wait_idle(1.0)

    @pytest.mark.asyncio
    async def test_wait_idle_includes_spawned_tasks(self):
        registry = TaskRegistry()
        done = []

        async def child():
            await asyncio.sleep(0.01)
            done.append("child")

        async def parent():
            registry.register("child", child())

        registry.register("parent", parent())
        assert await registry.wait_idle(1.0)
        assert done == ["child"]

    @pytest.mark.asyncio
    async def test_wait_idle_timeout(self):
        registry = TaskRegistry()
        registry.register("slow", asyncio.sleep(5))

        assert not await registry.wait_idle(0.05)

        await registry.shutdown(timeout=1.0)
        assert registry.active_count == 0

    @pytest.mark.asyncio
    async def test_shutdown_cancels(self):
        registry = TaskRegistry()
        task = registry.register("slow", asyncio.sleep(5))

        await registry.shutdown(timeout=1.0)

        assert task.cancelled()
        assert registry.failed_count == 0


class TestSessionStore:
    """Test the live session map."""

    def _session(self, call_id="CA1", ended=False):
        session = MagicMock(call_id=call_id, is_ended=ended)
        session.info.return_value = {"callSid": call_id}
        return session

    def test_register_and_get(self):
        store = SessionStore()
        session = self._session()

        store.register(session)

        assert store.get("CA1") is session
        assert "CA1" in store
        assert store.list() == [{"callSid": "CA1"}]

    def test_duplicate_live_session_rejected(self):
        store = SessionStore()
        store.register(self._session())

        with pytest.raises(ValueError):
            store.register(self._session())

    def test_ended_session_replaced(self):
        store = SessionStore()
        store.register(self._session(ended=True))
        replacement = self._session()

        store.register(replacement)

        assert store.get("CA1") is replacement

    def test_remove_only_same_instance(self):
        store = SessionStore()
        current = self._session()
        store.register(current)

        store.remove("CA1", self._session())
        assert store.active_count == 1

        store.remove("CA1", current)
        assert store.active_count == 0
        assert store.info("CA1") is None


class FakeSocket:
    def __init__(self, error=None):
        self.sent = []
        self.closed = False
        self.error = error

    async def send_json(self, message):
        if self.error:
            raise self.error
        self.sent.append(message)

    async def close(self):
        self.closed = True


class TestMediaStreamTransport:
    """Test Media Streams message parsing and sending."""

    def test_parse_start(self):
        event = MediaStreamEvent.from_text(
            '{"event": "start", "sequenceNumber": "1", "start": {"streamSid": "MZ1", '
            '"callSid": "CA1", "customParameters": {"from": "+15551234567"}}, "streamSid": "MZ1"}'
        )

        assert event.event == "start"
        assert event.stream_sid == "MZ1"
        assert event.call_sid == "CA1"
        assert event.custom_parameters == {"from": "+15551234567"}

    def test_parse_mark(self):
        event = MediaStreamEvent.from_message({"event": "mark", "streamSid": "MZ1", "mark": {"name": "utt_3"}})

        assert event.mark_name == "utt_3"

    def test_parse_invalid(self):
        with pytest.raises(ValueError):
            MediaStreamEvent.from_text("not json")
        with pytest.raises(ValueError):
            MediaStreamEvent.from_text("[1, 2]")

    @pytest.mark.asyncio
    async def test_outbound_messages(self):
        ws = FakeSocket()
        transport = MediaStreamTransport(ws, "CA1")
        transport.stream_sid = "MZ1"

        await transport.send_media("AAAA")
        await transport.send_mark("utt_1")
        await transport.send_clear()

        assert ws.sent == [
            {"event": "media", "streamSid": "MZ1", "media": {"payload": "AAAA"}},
            {"event": "mark", "streamSid": "MZ1", "mark": {"name": "utt_1"}},
            {"event": "clear", "streamSid": "MZ1"},
        ]

    @pytest.mark.asyncio
    async def test_closed_socket(self):
        ws = FakeSocket()
        transport = MediaStreamTransport(ws)
        await transport.close()

        with pytest.raises(TransportClosed):
            await transport.send_clear()

    @pytest.mark.asyncio
    async def test_send_error(self):
        transport = MediaStreamTransport(FakeSocket(error=ConnectionResetError("reset")))

        with pytest.raises(TransportClosed):
            await transport.send_mark("utt_1")


class TestMetricsCollector:
    """Test metric recording helpers."""

    def test_recording_without_server(self):
        metrics = MetricsCollector(port=0)

        metrics.call_started()
        metrics.turn_processed()
        metrics.barge_in(interrupted=True)
        metrics.oracle_request(0.4, success=False)
        metrics.tts_request(0.2)
        metrics.record_witness_status("on-chain")
        metrics.update_tasks(3, failed_delta=1)
        metrics.call_ended(12.5, "RECORD")


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
