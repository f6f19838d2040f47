"""
Audio Converter.

Decodes Twilio Media Stream audio (u-law 8kHz) to 16-bit PCM for STT.
Pure functions only; uses numpy tables and scipy resampling (no audioop).
"""

import struct

import numpy as np
from scipy import signal


# u-law to linear conversion table (ITU-T G.711)
ULAW_DECODE_TABLE = np.array([
    -32124, -31100, -30076, -29052, -28028, -27004, -25980, -24956,
    -23932, -22908, -21884, -20860, -19836, -18812, -17788, -16764,
    -15996, -15484, -14972, -14460, -13948, -13436, -12924, -12412,
    -11900, -11388, -10876, -10364, -9852, -9340, -8828, -8316,
    -7932, -7676, -7420, -7164, -6908, -6652, -6396, -6140,
    -5884, -5628, -5372, -5116, -4860, -4604, -4348, -4092,
    -3900, -3772, -3644, -3516, -3388, -3260, -3132, -3004,
    -2876, -2748, -2620, -2492, -2364, -2236, -2108, -1980,
    -1884, -1820, -1756, -1692, -1628, -1564, -1500, -1436,
    -1372, -1308, -1244, -1180, -1116, -1052, -988, -924,
    -876, -844, -812, -780, -748, -716, -684, -652,
    -620, -588, -556, -524, -492, -460, -428, -396,
    -372, -356, -340, -324, -308, -292, -276, -260,
    -244, -228, -212, -196, -180, -164, -148, -132,
    -120, -112, -104, -96, -88, -80, -72, -64,
    -56, -48, -40, -32, -24, -16, -8, 0,
    32124, 31100, 30076, 29052, 28028, 27004, 25980, 24956,
    23932, 22908, 21884, 20860, 19836, 18812, 17788, 16764,
    15996, 15484, 14972, 14460, 13948, 13436, 12924, 12412,
    11900, 11388, 10876, 10364, 9852, 9340, 8828, 8316,
    7932, 7676, 7420, 7164, 6908, 6652, 6396, 6140,
    5884, 5628, 5372, 5116, 4860, 4604, 4348, 4092,
    3900, 3772, 3644, 3516, 3388, 3260, 3132, 3004,
    2876, 2748, 2620, 2492, 2364, 2236, 2108, 1980,
    1884, 1820, 1756, 1692, 1628, 1564, 1500, 1436,
    1372, 1308, 1244, 1180, 1116, 1052, 988, 924,
    876, 844, 812, 780, 748, 716, 684, 652,
    620, 588, 556, 524, 492, 460, 428, 396,
    372, 356, 340, 324, 308, 292, 276, 260,
    244, 228, 212, 196, 180, 164, 148, 132,
    120, 112, 104, 96, 88, 80, 72, 64,
    56, 48, 40, 32, 24, 16, 8, 0,
], dtype=np.int16)


def strip_wav_header(data: bytes) -> bytes:
    """
    Return the sample bytes of a RIFF/WAVE container.

    Google TTS wraps MULAW output in a WAV header; Twilio wants raw samples.
    Data without a RIFF header is returned unchanged.
    """
    if len(data) < 12 or data[:4] != b"RIFF" or data[8:12] != b"WAVE":
        return data

    offset = 12
    while offset + 8 <= len(data):
        chunk_id = data[offset:offset + 4]
        (chunk_size,) = struct.unpack("<I", data[offset + 4:offset + 8])
        if chunk_id == b"data":
            return data[offset + 8:offset + 8 + chunk_size]
        # Chunks are word aligned
        offset += 8 + chunk_size + (chunk_size & 1)

    return b""


class AudioConverter:
    """Convert inbound u-law 8kHz to 16-bit PCM."""

    @staticmethod
    def ulaw_to_pcm16(ulaw_bytes: bytes) -> bytes:
        """
        Convert u-law encoded audio to 16-bit PCM.

        Args:
            ulaw_bytes: u-law encoded audio data

        Returns:
            16-bit PCM audio data (little-endian)
        """
        ulaw_array = np.frombuffer(ulaw_bytes, dtype=np.uint8)
        linear = ULAW_DECODE_TABLE[ulaw_array]
        return linear.astype("<i2").tobytes()

    @staticmethod
    def resample(pcm_data: bytes, src_rate: int, dst_rate: int) -> bytes:
        """
        Resample PCM audio to a different sample rate.

        Args:
            pcm_data: 16-bit PCM audio data
            src_rate: Source sample rate (e.g., 8000)
            dst_rate: Destination sample rate (e.g., 16000)

        Returns:
            Resampled 16-bit PCM
        """
        if src_rate == dst_rate or not pcm_data:
            return pcm_data

        samples = np.frombuffer(pcm_data, dtype="<i2")
        num_samples = int(len(samples) * dst_rate / src_rate)
        resampled = signal.resample(samples, num_samples)
        clipped = np.clip(resampled, -32768, 32767)
        return clipped.astype("<i2").tobytes()

    @classmethod
    def convert(cls, ulaw_bytes: bytes, src_rate: int = 8000, dst_rate: int = 8000) -> bytes:
        """
        Full conversion: u-law at src_rate to PCM at dst_rate.

        Args:
            ulaw_bytes: u-law encoded audio at source rate
            src_rate: Source sample rate (default 8000)
            dst_rate: Destination sample rate (default 8000)

        Returns:
            16-bit PCM audio at destination rate
        """
        pcm_src = cls.ulaw_to_pcm16(ulaw_bytes)
        return cls.resample(pcm_src, src_rate, dst_rate)
