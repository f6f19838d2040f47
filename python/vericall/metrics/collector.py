"""
Prometheus metrics for VeriCall.

Covers:
- Active calls, call outcomes and duration
- Conversation turns and barge-ins
- Oracle and synthesis latency
- Witness pipeline status transitions
- Background task health
"""

import logging
from typing import Optional

from prometheus_client import Counter, Gauge, Histogram, start_http_server

logger = logging.getLogger("vericall.metrics")


# Call metrics
CALLS_TOTAL = Counter(
    "vericall_calls_total",
    "Total number of calls screened",
    ["decision"],  # 'BLOCK', 'RECORD', 'none'
)
CALL_DURATION = Histogram(
    "vericall_call_duration_seconds",
    "Duration of calls in seconds",
    buckets=[10, 30, 60, 120, 300, 600, 1800],
)
ACTIVE_CALLS = Gauge(
    "vericall_active_calls",
    "Number of currently active calls",
)

# Conversation metrics
TURNS_TOTAL = Counter(
    "vericall_turns_total",
    "Caller utterances sent to the oracle",
)
BARGE_INS_TOTAL = Counter(
    "vericall_barge_ins_total",
    "Caller interruptions of playback",
    ["outcome"],  # 'interrupted', 'deferred'
)
ORACLE_LATENCY = Histogram(
    "vericall_oracle_latency_seconds",
    "Oracle response latency",
    buckets=[0.25, 0.5, 1.0, 2.0, 5.0, 10.0],
)
ORACLE_ERRORS_TOTAL = Counter(
    "vericall_oracle_errors_total",
    "Oracle calls that failed or timed out",
)
TTS_LATENCY = Histogram(
    "vericall_tts_latency_seconds",
    "Speech synthesis latency",
    buckets=[0.1, 0.25, 0.5, 1.0, 2.0, 5.0],
)

# Witness metrics
WITNESS_STATUS_TOTAL = Counter(
    "vericall_witness_status_total",
    "Witness records reaching each status",
    ["status"],
)

# Task registry metrics
TASKS_ACTIVE = Gauge(
    "vericall_tasks_active",
    "Number of active background tasks",
)
TASKS_FAILED_TOTAL = Counter(
    "vericall_tasks_failed_total",
    "Total number of failed background tasks",
)


class MetricsCollector:
    """
    Centralized metrics collector.

    Recording methods are always safe to call; the HTTP exposition server
    is only started by start().
    """

    def __init__(self, port: int = 9090, host: str = "0.0.0.0"):
        self.port = port
        self.host = host
        self._started = False

    def start(self) -> bool:
        """
        Start the Prometheus HTTP server.

        Returns:
            True if the server is running
        """
        if self._started:
            return True

        try:
            start_http_server(self.port, addr=self.host)
        except OSError as e:
            logger.error(f"Failed to start metrics server: {e}")
            return False

        self._started = True
        logger.info(f"Prometheus metrics server started on {self.host}:{self.port}")
        return True

    # Calls
    def call_started(self) -> None:
        ACTIVE_CALLS.inc()

    def call_ended(self, duration: float, decision: Optional[str] = None) -> None:
        ACTIVE_CALLS.dec()
        CALLS_TOTAL.labels(decision=decision or "none").inc()
        CALL_DURATION.observe(duration)

    # Conversation
    def turn_processed(self) -> None:
        TURNS_TOTAL.inc()

    def barge_in(self, interrupted: bool) -> None:
        BARGE_INS_TOTAL.labels(outcome="interrupted" if interrupted else "deferred").inc()

    def oracle_request(self, latency: float, success: bool = True) -> None:
        ORACLE_LATENCY.observe(latency)
        if not success:
            ORACLE_ERRORS_TOTAL.inc()

    def tts_request(self, latency: float) -> None:
        TTS_LATENCY.observe(latency)

    # Witness
    def record_witness_status(self, status: str) -> None:
        WITNESS_STATUS_TOTAL.labels(status=status).inc()

    # Tasks
    def update_tasks(self, active: int, failed_delta: int = 0) -> None:
        TASKS_ACTIVE.set(active)
        if failed_delta > 0:
            TASKS_FAILED_TOTAL.inc(failed_delta)
