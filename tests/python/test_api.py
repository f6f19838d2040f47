"""Tests for the HTTP API, health probes and media stream endpoint."""

import base64
import os
import sys
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from aiohttp import WSMsgType, test_utils, web

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '../../python'))

from vericall.api import MediaStreamHandler, VeriCallAPI, VeriCallServer
from vericall.core import CallSession, SessionStore, TaskRegistry
from vericall.health import HealthChecker
from vericall.oracle import ScreeningOracle
from vericall.witness import DisclosureStore, WitnessRecord, WitnessStatus, WitnessStore


async def start_client(app):
    client = test_utils.TestClient(test_utils.TestServer(app))
    await client.start_server()
    return client


def build_api_app(witnesses=None, disclosures=None, sessions=None):
    app = web.Application()
    VeriCallAPI(
        witnesses or WitnessStore(),
        disclosures or DisclosureStore(),
        sessions or SessionStore(),
    ).add_routes(app)
    return app


class TestWitnessAPI:
    """Test witness and decision endpoints."""

    @pytest.mark.asyncio
    async def test_list_empty(self):
        client = await start_client(build_api_app())
        try:
            resp = await client.get("/api/witness")
            assert resp.status == 200
            assert await resp.json() == {"records": [], "count": 0}
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_get_witness(self):
        witnesses = WitnessStore()
        witnesses.add(WitnessRecord(id="wit_1_aaaaaa", call_id="CA1"))
        witnesses.transition("wit_1_aaaaaa", WitnessStatus.FAILED, error="vlayer credentials not configured")

        client = await start_client(build_api_app(witnesses=witnesses))
        try:
            resp = await client.get("/api/witness/wit_1_aaaaaa")
            assert resp.status == 200
            data = await resp.json()
            assert data["status"] == "failed"
            assert data["error"] == "vlayer credentials not configured"

            resp = await client.get("/api/witness/call/CA1")
            assert (await resp.json())["id"] == "wit_1_aaaaaa"

            resp = await client.get("/api/witness/wit_missing")
            assert resp.status == 404

            resp = await client.get("/api/witness/call/CA-missing")
            assert resp.status == 404
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_decision_disclosure(self):
        disclosures = DisclosureStore()
        disclosures.put(
            call_id="CA1",
            decision="BLOCK",
            reason="Cold sales call",
            transcript="AI: Hello\nCaller: We sell SEO",
            system_prompt_hash=ScreeningOracle.system_prompt_hash(),
            caller_hash_short="0123456789abcdef",
            conversation_turns=1,
        )

        client = await start_client(build_api_app(disclosures=disclosures))
        try:
            resp = await client.get("/api/witness/decision/CA1")
            assert resp.status == 200
            data = await resp.json()
            assert data["decision"] == "BLOCK"
            assert data["reason"] == "Cold sales call"
            assert data["systemPromptHash"] == ScreeningOracle.system_prompt_hash()

            resp = await client.get("/api/witness/decision/CA2")
            assert resp.status == 404
            assert await resp.json() == {"error": "Decision not found or expired"}
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_calls(self):
        sessions = SessionStore()
        session = MagicMock(call_id="CA1", is_ended=False)
        session.info.return_value = {"callSid": "CA1", "state": "listening"}
        sessions.register(session)

        client = await start_client(build_api_app(sessions=sessions))
        try:
            resp = await client.get("/api/calls")
            assert await resp.json() == {"calls": [{"callSid": "CA1", "state": "listening"}], "count": 1}

            resp = await client.get("/api/calls/CA1")
            assert (await resp.json())["state"] == "listening"

            resp = await client.get("/api/calls/CA2")
            assert resp.status == 404
        finally:
            await client.close()


class TestHealth:
    """Test health probes."""

    @pytest.mark.asyncio
    async def test_probes(self):
        checker = HealthChecker()
        checker.register_check("ok", lambda: True)
        app = web.Application()
        checker.add_routes(app)

        client = await start_client(app)
        try:
            resp = await client.get("/health/live")
            assert await resp.text() == "OK"

            resp = await client.get("/health/ready")
            assert resp.status == 200
            assert await resp.json() == {"status": "healthy", "components": {"ok": True}}
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_unhealthy(self):
        checker = HealthChecker()

        def broken():
            raise RuntimeError("boom")

        async def slow_ok():
            return True

        checker.register_check("broken", broken)
        checker.register_async_check("async_ok", slow_ok)

        assert await checker.check_all() == {"broken": False, "async_ok": True}

        app = web.Application()
        checker.add_routes(app)
        client = await start_client(app)
        try:
            resp = await client.get("/health")
            assert resp.status == 503
        finally:
            await client.close()


class TestServerWiring:
    """Test the assembled application."""

    @pytest.mark.asyncio
    async def test_build_app(self, fast_config):
        server = VeriCallServer(fast_config)

        client = await start_client(server.build_app())
        try:
            resp = await client.get("/health/ready")
            assert resp.status == 200
            assert (await resp.json())["components"] == {"gcp_project": True, "decision_source": True}

            resp = await client.get("/api/witness")
            assert resp.status == 200
        finally:
            await client.close()
            await server.tasks.shutdown(timeout=1.0)


class TestMediaStream:
    """Test the media stream WebSocket endpoint."""

    def _start_message(self, call_sid="CA1"):
        return {
            "event": "start",
            "streamSid": "MZ1",
            "start": {
                "streamSid": "MZ1",
                "callSid": call_sid,
                "customParameters": {"from": "+15551234567"},
            },
        }

    def _factory(self, fast_config, created):
        synth = MagicMock()
        synth.synthesize_payload = AsyncMock(return_value=base64.b64encode(b'\xff' * 160).decode())
        tasks = TaskRegistry()

        def factory(call_id, transport):
            client = MagicMock()
            client.aio.models.generate_content = AsyncMock(return_value=SimpleNamespace(text="Hello"))
            session = CallSession(
                call_id=call_id,
                transport=transport,
                oracle=ScreeningOracle(project_id="test-project", client=client),
                synthesizer=synth,
                tasks=tasks,
                config=fast_config,
            )
            created.append(session)
            return session

        return factory

    @pytest.mark.asyncio
    async def test_call_lifecycle(self, fast_config):
        sessions = SessionStore()
        created = []
        app = web.Application()
        MediaStreamHandler(sessions, self._factory(fast_config, created)).add_routes(app)

        client = await start_client(app)
        try:
            ws = await client.ws_connect("/stream")
            await ws.send_json({"event": "connected", "protocol": "Call"})
            await ws.send_json(self._start_message())

            media = await ws.receive_json(timeout=2)
            mark = await ws.receive_json(timeout=2)
            assert media["event"] == "media"
            assert media["streamSid"] == "MZ1"
            assert mark == {"event": "mark", "streamSid": "MZ1", "mark": {"name": "utt_1"}}
            assert "CA1" in sessions

            await ws.send_json({"event": "stop", "streamSid": "MZ1"})
            msg = await ws.receive(timeout=2)
            assert msg.type in (WSMsgType.CLOSE, WSMsgType.CLOSED, WSMsgType.CLOSING)

            assert sessions.active_count == 0
            assert created[0].is_ended
            await ws.close()
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_duplicate_stream_rejected(self, fast_config):
        sessions = SessionStore()
        live = MagicMock(call_id="CA1", is_ended=False)
        sessions.register(live)
        created = []
        app = web.Application()
        MediaStreamHandler(sessions, self._factory(fast_config, created)).add_routes(app)

        client = await start_client(app)
        try:
            ws = await client.ws_connect("/stream")
            await ws.send_json(self._start_message())

            msg = await ws.receive(timeout=2)
            assert msg.type in (WSMsgType.CLOSE, WSMsgType.CLOSED, WSMsgType.CLOSING)
            assert sessions.get("CA1") is live
            await ws.close()
        finally:
            await client.close()


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
