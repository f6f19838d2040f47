"""
Twilio Media Streams transport adapter.

Parses inbound stream events and sends outbound media/mark/clear messages
over an aiohttp WebSocket. Outbound messages are tagged with the streamSid
learned from the ``start`` event.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from ..errors import TransportClosed

logger = logging.getLogger("vericall.transport")


@dataclass
class MediaStreamEvent:
    """One inbound Media Streams message."""
    event: str
    stream_sid: Optional[str] = None
    call_sid: Optional[str] = None
    custom_parameters: Dict[str, str] = field(default_factory=dict)
    media: Dict[str, Any] = field(default_factory=dict)
    mark_name: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_message(cls, data: Dict[str, Any]) -> "MediaStreamEvent":
        event = data.get("event", "")
        start = data.get("start") or {}
        mark = data.get("mark") or {}
        return cls(
            event=event,
            stream_sid=data.get("streamSid") or start.get("streamSid"),
            call_sid=start.get("callSid"),
            custom_parameters=dict(start.get("customParameters") or {}),
            media=dict(data.get("media") or {}),
            mark_name=mark.get("name"),
            raw=data,
        )

    @classmethod
    def from_text(cls, text: str) -> "MediaStreamEvent":
        """
        Parse a JSON text frame.

        Raises:
            ValueError: If the frame is not a JSON object.
        """
        data = json.loads(text)
        if not isinstance(data, dict):
            raise ValueError("Media stream message is not an object")
        return cls.from_message(data)


class MediaStreamTransport:
    """Outbound side of one Media Streams connection."""

    def __init__(self, ws: Any, call_id: str = ""):
        """
        Args:
            ws: aiohttp WebSocketResponse (anything with send_json and closed)
            call_id: For log prefixes
        """
        self.ws = ws
        self.call_id = call_id
        self.stream_sid: Optional[str] = None

    @property
    def closed(self) -> bool:
        return bool(getattr(self.ws, "closed", False))

    async def send_json(self, message: Dict[str, Any]) -> None:
        """
        Send one message.

        Raises:
            TransportClosed: If the WebSocket is closed or the send fails.
        """
        if self.closed:
            raise TransportClosed(f"stream {self.stream_sid} is closed")
        try:
            await self.ws.send_json(message)
        except (ConnectionError, RuntimeError) as e:
            raise TransportClosed(str(e)) from e

    async def send_media(self, payload_b64: str) -> None:
        await self.send_json({
            "event": "media",
            "streamSid": self.stream_sid,
            "media": {"payload": payload_b64},
        })

    async def send_mark(self, name: str) -> None:
        await self.send_json({
            "event": "mark",
            "streamSid": self.stream_sid,
            "mark": {"name": name},
        })

    async def send_clear(self) -> None:
        """Ask Twilio to drop any audio it has buffered for playback."""
        await self.send_json({"event": "clear", "streamSid": self.stream_sid})

    async def close(self) -> None:
        if not self.closed:
            await self.ws.close()
