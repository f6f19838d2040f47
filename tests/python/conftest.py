"""Pytest configuration and fixtures."""

import base64
import os
import sys
from unittest.mock import AsyncMock, MagicMock

import pytest

# Add python directory to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '../../python'))


def pytest_configure(config):
    """Configure pytest."""
    os.environ['VERICALL_LOG_LEVEL'] = 'WARNING'
    # Register asyncio marker
    config.addinivalue_line("markers", "asyncio: mark test as async")


class FakeWebSocket:
    """Stand-in for an aiohttp WebSocketResponse."""

    def __init__(self):
        self.sent = []
        self.closed = False

    async def send_json(self, message):
        if self.closed:
            raise ConnectionResetError("socket closed")
        self.sent.append(message)

    async def close(self):
        self.closed = True

    def events(self, name):
        return [m for m in self.sent if m.get("event") == name]


@pytest.fixture
def fake_ws():
    return FakeWebSocket()


@pytest.fixture
def fake_synthesizer():
    synth = MagicMock()
    synth.synthesize_payload = AsyncMock(return_value=base64.b64encode(b'\xff' * 160).decode())
    return synth


@pytest.fixture
def fast_config():
    """Config with short timers for session tests."""
    from vericall.config import VeriCallConfig

    return VeriCallConfig(
        public_base_url="https://vericall.test",
        gcp_project_id="test-project",
        utterance_debounce_sec=0.05,
        silence_reprompt_sec=30.0,
        end_call_grace_sec=0.01,
        oracle_timeout=1.0,
        tts_timeout=1.0,
        event_ws_urls=[],
    )
