"""
VeriCall configuration with environment variable support.

Environment Variables:
    VERICALL_HOST / VERICALL_PORT - HTTP + media stream server bind address
    VERICALL_PUBLIC_BASE_URL - Externally reachable base URL (attestation target)
    VERICALL_EVENT_WS_URL, VERICALL_EVENT_WS_URL_1... - Monitoring event sinks
    VERICALL_BARGE_IN_THRESHOLD_MS - Minimum playback time before barge-in is honoured
    VLAYER_API_KEY / VLAYER_CLIENT_ID - Web Prover / ZK Prover credentials
    REGISTRY_RELAY_URL / REGISTRY_API_KEY - On-chain registry relay
    RESEND_API_KEY / NOTIFICATION_EMAIL - Decision notification email
    GOOGLE_APPLICATION_CREDENTIALS - GCP credentials path
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional


def _get_gcp_project_id() -> str:
    """Resolve the GCP project from env or the credentials JSON."""
    import json

    project = os.getenv("GCP_PROJECT_ID")
    if project:
        return project

    creds_path = os.getenv(
        "GOOGLE_APPLICATION_CREDENTIALS",
        str(Path.home() / ".config/gcloud/credentials.json"),
    )
    try:
        with open(creds_path) as f:
            creds = json.load(f)
            return creds.get("project_id", "")
    except (OSError, ValueError):
        return ""


def _get_event_ws_urls_from_env() -> List[str]:
    """Collect monitoring WebSocket URLs from environment variables."""
    urls = []

    main_url = os.getenv("VERICALL_EVENT_WS_URL")
    if main_url:
        urls.append(main_url)

    # Additional URLs (VERICALL_EVENT_WS_URL_1, VERICALL_EVENT_WS_URL_2, ...)
    i = 1
    while True:
        url = os.getenv(f"VERICALL_EVENT_WS_URL_{i}")
        if not url:
            break
        urls.append(url)
        i += 1

    return urls


def _split_csv(value: str) -> List[str]:
    """Split a comma-separated list and strip whitespace."""
    items = []
    for raw in value.split(","):
        item = raw.strip()
        if item:
            items.append(item)
    return items


@dataclass
class VeriCallConfig:
    """VeriCall configuration."""

    # Server
    host: str = field(default_factory=lambda: os.getenv("VERICALL_HOST", "0.0.0.0"))
    port: int = field(default_factory=lambda: int(os.getenv("VERICALL_PORT", "8080")))
    public_base_url: str = field(
        default_factory=lambda: os.getenv("VERICALL_PUBLIC_BASE_URL", "").rstrip("/")
    )
    metrics_port: int = field(
        default_factory=lambda: int(os.getenv("VERICALL_METRICS_PORT", "9090"))
    )
    metrics_enabled: bool = field(
        default_factory=lambda: os.getenv("VERICALL_METRICS_ENABLED", "true").lower() == "true"
    )

    # Audio (Twilio Media Streams are 8kHz u-law)
    sample_rate: int = 8000
    stt_sample_rate: int = field(
        default_factory=lambda: int(os.getenv("VERICALL_STT_SAMPLE_RATE", "8000"))
    )

    # STT settings
    stt_language: str = field(
        default_factory=lambda: os.getenv("VERICALL_STT_LANGUAGE", "en-US")
    )
    stt_model: str = field(
        default_factory=lambda: os.getenv("VERICALL_STT_MODEL", "telephony")
    )
    stt_location: str = field(
        default_factory=lambda: os.getenv("VERICALL_STT_LOCATION", "global")
    )
    stt_audio_queue_maxsize: int = field(
        default_factory=lambda: int(os.getenv("VERICALL_STT_AUDIO_QUEUE_MAXSIZE", "500"))
    )
    stt_max_restarts: int = field(
        default_factory=lambda: int(os.getenv("VERICALL_STT_MAX_RESTARTS", "3"))
    )
    stt_restart_delay_sec: float = field(
        default_factory=lambda: float(os.getenv("VERICALL_STT_RESTART_DELAY_SEC", "0.5"))
    )
    gcp_credentials_path: str = field(
        default_factory=lambda: os.getenv(
            "GOOGLE_APPLICATION_CREDENTIALS",
            str(Path.home() / ".config/gcloud/credentials.json"),
        )
    )
    gcp_project_id: str = field(default_factory=_get_gcp_project_id)
    gcp_region: str = field(default_factory=lambda: os.getenv("GCP_REGION", "us-central1"))

    # TTS settings
    tts_voice: str = field(
        default_factory=lambda: os.getenv("VERICALL_TTS_VOICE", "en-US-Wavenet-F")
    )
    tts_speaking_rate: float = field(
        default_factory=lambda: float(os.getenv("VERICALL_TTS_SPEAKING_RATE", "1.0"))
    )
    tts_timeout: float = field(
        default_factory=lambda: float(os.getenv("VERICALL_TTS_TIMEOUT", "10.0"))
    )

    # Oracle settings
    oracle_model: str = field(
        default_factory=lambda: os.getenv("VERICALL_ORACLE_MODEL", "gemini-2.5-flash")
    )
    oracle_temperature: float = field(
        default_factory=lambda: float(os.getenv("VERICALL_ORACLE_TEMPERATURE", "0.7"))
    )
    oracle_max_tokens: int = field(
        default_factory=lambda: int(os.getenv("VERICALL_ORACLE_MAX_TOKENS", "512"))
    )
    oracle_timeout: float = field(
        default_factory=lambda: float(os.getenv("VERICALL_ORACLE_TIMEOUT", "10.0"))
    )

    # Turn taking
    barge_in_threshold_ms: int = field(
        default_factory=lambda: int(os.getenv("VERICALL_BARGE_IN_THRESHOLD_MS", "1000"))
    )
    short_utterance_words: int = field(
        default_factory=lambda: int(os.getenv("VERICALL_SHORT_UTTERANCE_WORDS", "5"))
    )
    utterance_debounce_sec: float = field(
        default_factory=lambda: float(os.getenv("VERICALL_UTTERANCE_DEBOUNCE_SEC", "1.5"))
    )
    silence_reprompt_sec: float = field(
        default_factory=lambda: float(os.getenv("VERICALL_SILENCE_REPROMPT_SEC", "3.0"))
    )
    end_call_grace_sec: float = field(
        default_factory=lambda: float(os.getenv("VERICALL_END_CALL_GRACE_SEC", "2.0"))
    )
    max_pending_marks: int = field(
        default_factory=lambda: int(os.getenv("VERICALL_MAX_PENDING_MARKS", "10"))
    )

    # Witness pipeline (vlayer)
    vlayer_web_prover_url: str = field(
        default_factory=lambda: os.getenv("VLAYER_WEB_PROVER_URL", "https://web-prover.vlayer.xyz")
    )
    vlayer_zk_prover_url: str = field(
        default_factory=lambda: os.getenv("VLAYER_ZK_PROVER_URL", "https://zk-prover.vlayer.xyz")
    )
    vlayer_api_key: str = field(default_factory=lambda: os.getenv("VLAYER_API_KEY", ""))
    vlayer_client_id: str = field(default_factory=lambda: os.getenv("VLAYER_CLIENT_ID", ""))
    proof_source_url: str = field(
        default_factory=lambda: os.getenv("VLAYER_PROOF_SOURCE_URL", "").rstrip("/")
    )
    proof_jmespath: List[str] = field(
        default_factory=lambda: _split_csv(
            os.getenv("VLAYER_PROOF_JMESPATH", "decision,reason,systemPromptHash,transcriptHash")
        )
    )
    witness_step_timeout: float = field(
        default_factory=lambda: float(os.getenv("VERICALL_WITNESS_STEP_TIMEOUT", "180"))
    )

    # Registry relay
    registry_relay_url: str = field(
        default_factory=lambda: os.getenv("REGISTRY_RELAY_URL", "").rstrip("/")
    )
    registry_api_key: str = field(default_factory=lambda: os.getenv("REGISTRY_API_KEY", ""))
    registry_contract_address: str = field(
        default_factory=lambda: os.getenv("VERICALL_CONTRACT_ADDRESS", "")
    )

    # Decision disclosure
    disclosure_ttl_sec: float = field(
        default_factory=lambda: float(os.getenv("VERICALL_DISCLOSURE_TTL_SEC", "3600"))
    )
    source_code_commit: str = field(
        default_factory=lambda: os.getenv("SOURCE_CODE_COMMIT", "unknown")
    )

    # Notification
    resend_api_key: str = field(default_factory=lambda: os.getenv("RESEND_API_KEY", ""))
    notification_from: str = field(
        default_factory=lambda: os.getenv("FROM_EMAIL", "noreply@vericall.app")
    )
    notification_recipients: List[str] = field(
        default_factory=lambda: _split_csv(os.getenv("NOTIFICATION_EMAIL", ""))
    )

    # Monitoring event stream
    event_ws_urls: List[str] = field(default_factory=_get_event_ws_urls_from_env)
    event_reconnect_interval: float = field(
        default_factory=lambda: float(os.getenv("VERICALL_EVENT_RECONNECT_INTERVAL", "5.0"))
    )
    event_queue_maxsize: int = field(
        default_factory=lambda: int(os.getenv("VERICALL_EVENT_QUEUE_MAXSIZE", "1000"))
    )
    event_auth_secret: str = field(
        default_factory=lambda: os.getenv("VERICALL_EVENT_AUTH_SECRET", "")
    )
    event_auth_client_id: str = field(
        default_factory=lambda: os.getenv("VERICALL_EVENT_AUTH_CLIENT_ID", "vericall")
    )
    event_auth_ttl_sec: float = field(
        default_factory=lambda: float(os.getenv("VERICALL_EVENT_AUTH_TTL_SEC", "3600"))
    )

    debug: bool = field(
        default_factory=lambda: os.getenv("VERICALL_DEBUG", "false").lower() == "true"
    )

    def __post_init__(self):
        import logging

        logger = logging.getLogger("vericall.config")

        if not self.public_base_url and not self.proof_source_url:
            logger.warning(
                "No public base URL configured. Set VERICALL_PUBLIC_BASE_URL "
                "so the decision endpoint can be attested."
            )

    @property
    def decision_source_base(self) -> str:
        """Base URL the web prover fetches decisions from."""
        return self.proof_source_url or self.public_base_url

    def decision_source_url(self, call_id: str) -> str:
        """Externally reachable decision-disclosure URL for a call."""
        return f"{self.decision_source_base}/api/witness/decision/{call_id}"


_config: Optional[VeriCallConfig] = None


def get_config() -> VeriCallConfig:
    """Get or create the process config instance."""
    global _config
    if _config is None:
        _config = VeriCallConfig()
    return _config


def reset_config():
    """Reset the cached config (useful for testing)."""
    global _config
    _config = None
