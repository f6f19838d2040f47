"""
Twilio Media Stream payload and timestamp helpers.

Media payloads travel as base64 encoded 8kHz u-law. Timestamps are
milliseconds since the stream started, sent as decimal strings.
"""

import base64
import binascii
from dataclasses import dataclass
from typing import Any, Optional


@dataclass
class MediaFrame:
    """One inbound media frame."""
    payload: bytes
    timestamp_ms: int
    track: str = "inbound"
    chunk: int = 0

    @property
    def duration_ms(self) -> float:
        """Frame duration at 8kHz u-law (one byte per sample)."""
        return len(self.payload) / 8.0


def decode_payload(payload_b64: str) -> bytes:
    """
    Decode a base64 media payload to raw u-law bytes.

    Raises:
        ValueError: If the payload is not valid base64.
    """
    try:
        return base64.b64decode(payload_b64, validate=True)
    except (binascii.Error, TypeError) as e:
        raise ValueError(f"Invalid media payload: {e}") from e


def encode_payload(ulaw_bytes: bytes) -> str:
    """Encode raw u-law bytes as a base64 media payload."""
    return base64.b64encode(ulaw_bytes).decode("ascii")


def parse_timestamp(value: Any, default: int = 0) -> int:
    """Parse a media timestamp (ms); missing or malformed values yield default."""
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def elapsed_ms(latest_ms: int, start_ms: Optional[int]) -> int:
    """Milliseconds of stream time since start_ms (0 when not started)."""
    if start_ms is None:
        return 0
    return max(0, latest_ms - start_ms)


def frame_from_event(media: dict) -> MediaFrame:
    """Build a MediaFrame from the ``media`` object of a Twilio event."""
    return MediaFrame(
        payload=decode_payload(media.get("payload", "")),
        timestamp_ms=parse_timestamp(media.get("timestamp")),
        track=media.get("track", "inbound"),
        chunk=parse_timestamp(media.get("chunk")),
    )
