"""Audio codec and media timestamp module."""
from .converter import AudioConverter, strip_wav_header
from .media import (
    MediaFrame,
    decode_payload,
    encode_payload,
    elapsed_ms,
    frame_from_event,
    parse_timestamp,
)

__all__ = [
    "AudioConverter",
    "MediaFrame",
    "decode_payload",
    "encode_payload",
    "elapsed_ms",
    "frame_from_event",
    "parse_timestamp",
    "strip_wav_header",
]
