"""
VeriCall - AI call screening with verifiable decisions.

Answers phone calls over Twilio Media Streams, screens the caller with a
Gemini receptionist, and witnesses each decision:
- Streaming STT (Google Cloud Speech V2) and TTS (Google Cloud TTS)
- Turn buffering with barge-in handling
- Decision disclosure, web proof, ZK proof, on-chain registry

Usage:
    python -m vericall

Environment Variables:
    VERICALL_PORT - HTTP + media stream port (default: 8080)
    VERICALL_PUBLIC_BASE_URL - Public base URL of this server
    VLAYER_API_KEY / VLAYER_CLIENT_ID - vlayer credentials
    REGISTRY_RELAY_URL - Decision registry relay
    GOOGLE_APPLICATION_CREDENTIALS - GCP credentials path
"""

__version__ = "1.0.0"

from .config import VeriCallConfig, get_config
from .errors import VeriCallError

__all__ = [
    "VeriCallConfig",
    "VeriCallError",
    "get_config",
]
