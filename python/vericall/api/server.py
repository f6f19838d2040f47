"""
VeriCall server orchestrator.

Builds the shared components once per process and serves:
- /stream                 Media Streams WebSocket (one call per connection)
- /api/witness/...        Witness status and decision disclosure
- /api/calls/...          Live call sessions
- /health, /health/...    Liveness and readiness probes
"""

import logging
from typing import Optional

from aiohttp import web

from ..config import VeriCallConfig, get_config
from ..core.call_session import CallSession
from ..core.session_store import SessionStore
from ..core.task_registry import TaskRegistry
from ..core.transport import MediaStreamTransport
from ..events import EventPublisher, EventStreamAuth
from ..health import HealthChecker
from ..metrics import MetricsCollector
from ..notify import EmailNotifier
from ..oracle import ScreeningOracle
from ..stt import StreamingSTT, TranscriptionSession
from ..tts import SpeechSynthesizer
from ..witness import DisclosureStore, WitnessStore, build_pipeline
from .routes import VeriCallAPI
from .stream import MediaStreamHandler

logger = logging.getLogger("vericall.server")


class VeriCallServer:
    """Owns the stores, clients and HTTP application for one process."""

    def __init__(self, config: Optional[VeriCallConfig] = None):
        self.config = config or get_config()
        cfg = self.config

        self.sessions = SessionStore()
        self.witnesses = WitnessStore()
        self.disclosures = DisclosureStore(
            ttl_seconds=cfg.disclosure_ttl_sec,
            source_code_commit=cfg.source_code_commit,
        )
        self.metrics = MetricsCollector(port=cfg.metrics_port, host=cfg.host)
        self.tasks = TaskRegistry(metrics=self.metrics)
        self.events = EventPublisher(
            urls=cfg.event_ws_urls,
            queue_maxsize=cfg.event_queue_maxsize,
            reconnect_interval=cfg.event_reconnect_interval,
            auth=EventStreamAuth.from_config(cfg),
        )
        self.witness = build_pipeline(
            cfg, self.witnesses, self.tasks, events=self.events, metrics=self.metrics
        )
        self.notifier = EmailNotifier(
            api_key=cfg.resend_api_key,
            from_email=cfg.notification_from,
            recipients=cfg.notification_recipients,
        )
        self.stt = StreamingSTT(
            project_id=cfg.gcp_project_id,
            location=cfg.stt_location,
            language_code=cfg.stt_language,
            model=cfg.stt_model,
            sample_rate=cfg.stt_sample_rate,
        )
        self.synthesizer = SpeechSynthesizer(
            language_code=cfg.stt_language,
            voice_name=cfg.tts_voice,
            speaking_rate=cfg.tts_speaking_rate,
            sample_rate=cfg.sample_rate,
        )

        self.health = HealthChecker()
        self.health.register_check("gcp_project", lambda: bool(cfg.gcp_project_id))
        self.health.register_check("decision_source", lambda: bool(cfg.decision_source_base))

        self._runner: Optional[web.AppRunner] = None

    def create_session(self, call_id: str, transport: MediaStreamTransport) -> CallSession:
        """Build a CallSession with its own oracle and recognition stream."""
        cfg = self.config
        return CallSession(
            call_id=call_id,
            transport=transport,
            oracle=ScreeningOracle(
                project_id=cfg.gcp_project_id,
                location=cfg.gcp_region,
                model=cfg.oracle_model,
                temperature=cfg.oracle_temperature,
                max_output_tokens=cfg.oracle_max_tokens,
            ),
            synthesizer=self.synthesizer,
            tasks=self.tasks,
            config=cfg,
            transcriber=TranscriptionSession(
                self.stt,
                call_id,
                queue_maxsize=cfg.stt_audio_queue_maxsize,
                max_restarts=cfg.stt_max_restarts,
                restart_delay=cfg.stt_restart_delay_sec,
            ),
            witness=self.witness,
            disclosures=self.disclosures,
            notifier=self.notifier,
            events=self.events,
            metrics=self.metrics,
        )

    def build_app(self) -> web.Application:
        app = web.Application()
        MediaStreamHandler(self.sessions, self.create_session).add_routes(app)
        VeriCallAPI(self.witnesses, self.disclosures, self.sessions).add_routes(app)
        self.health.add_routes(app)
        return app

    async def start(self) -> None:
        cfg = self.config

        logger.info("=" * 60)
        logger.info("VeriCall Starting")
        logger.info("=" * 60)
        logger.info(f"Listening: {cfg.host}:{cfg.port}")
        logger.info(f"Decision source: {cfg.decision_source_base or '(not set)'}")
        logger.info(f"Monitoring URLs: {len(cfg.event_ws_urls)}")
        logger.info("=" * 60)

        if cfg.metrics_enabled:
            self.metrics.start()
        await self.events.start()

        self._runner = web.AppRunner(self.build_app())
        await self._runner.setup()
        site = web.TCPSite(self._runner, cfg.host, cfg.port)
        await site.start()

    async def stop(self) -> None:
        """Stop serving, end live calls, then wind down background work."""
        if self._runner:
            await self._runner.cleanup()
            self._runner = None

        for info in self.sessions.list():
            session = self.sessions.get(info["callSid"])
            if session:
                await session.end("server shutdown")

        await self.tasks.shutdown(timeout=5.0)
        await self.events.stop()

        logger.info("=" * 60)
        logger.info("VeriCall Stopped")
        logger.info("=" * 60)
