"""
Monitoring event publisher.

Call and witness events are queued synchronously (never raising into the
session or pipeline) and a single sender task forwards them as JSON to
every connected monitoring WebSocket. When the queue is full the oldest
event is discarded. Lost connections are retried in the background, each
monitor presenting its own bearer JWT when auth is configured.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Dict, List, Optional

import websockets
from websockets.protocol import State

if TYPE_CHECKING:
    from .auth import EventStreamAuth

logger = logging.getLogger("vericall.events")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


# Event types
CALL_START = "call:start"
CALL_GREETING = "call:greeting"
CALL_END = "call:end"
STT_TRANSCRIPT = "stt:transcript"
AI_RESPONSE = "ai:response"
AI_DECISION = "ai:decision"
EMAIL_SENT = "email:sent"
WITNESS_START = "witness:start"
WITNESS_WEB_PROOF = "witness:web-proof"
WITNESS_ZK_PROOF = "witness:zk-proof"
WITNESS_ON_CHAIN = "witness:on-chain"
WITNESS_FAILED = "witness:failed"

EVENT_TYPES = (
    CALL_START, CALL_GREETING, CALL_END,
    STT_TRANSCRIPT, AI_RESPONSE, AI_DECISION, EMAIL_SENT,
    WITNESS_START, WITNESS_WEB_PROOF, WITNESS_ZK_PROOF, WITNESS_ON_CHAIN, WITNESS_FAILED,
)


@dataclass
class CallEvent:
    """Event to send to monitoring."""
    type: str
    call_id: str
    data: Dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(default_factory=_now_iso)

    def to_dict(self) -> dict:
        result = {
            "type": self.type,
            "call_id": self.call_id,
            "timestamp": self.timestamp,
        }
        result.update(self.data)
        return result


class EventPublisher:
    """Queue events and send them to every connected monitoring URL."""

    def __init__(
        self,
        urls: Optional[List[str]] = None,
        queue_maxsize: int = 1000,
        reconnect_interval: float = 5.0,
        ping_interval: float = 20.0,
        ping_timeout: float = 10.0,
        auth: Optional["EventStreamAuth"] = None,
    ):
        """
        Args:
            urls: Monitoring WebSocket URLs (none: events are counted and dropped)
            queue_maxsize: Maximum queued events (older events dropped when full)
            reconnect_interval: Seconds between reconnection attempts
            ping_interval: WebSocket ping interval
            ping_timeout: WebSocket ping timeout
            auth: Optional JWT auth for outbound connections
        """
        self.urls = [u for u in (urls or []) if u and not u.strip().startswith("#")]
        self.queue_maxsize = queue_maxsize
        self.reconnect_interval = reconnect_interval
        self.ping_interval = ping_interval
        self.ping_timeout = ping_timeout
        self.auth = auth

        self._connections: Dict[str, Any] = {}
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=queue_maxsize)
        self._running = False
        self._published_count = 0
        self._dropped_count = 0
        self._sent_count = 0
        self._send_task: Optional[asyncio.Task] = None
        self._reconnect_tasks: Dict[str, asyncio.Task] = {}

    @staticmethod
    def _is_connected(ws: Any) -> bool:
        return getattr(ws, "state", None) == State.OPEN

    @property
    def connected_count(self) -> int:
        return len([ws for ws in self._connections.values() if self._is_connected(ws)])

    @property
    def published_count(self) -> int:
        return self._published_count

    @property
    def dropped_count(self) -> int:
        return self._dropped_count

    @property
    def sent_count(self) -> int:
        return self._sent_count

    @property
    def queue_size(self) -> int:
        return self._queue.qsize()

    def publish(self, event_type: str, call_id: str, **data: Any) -> None:
        """Queue an event. Never blocks, never raises."""
        try:
            self._enqueue(CallEvent(type=event_type, call_id=call_id, data=data).to_dict())
        except Exception as e:
            logger.warning(f"[{call_id}] Failed to publish {event_type}: {e}")

    def _enqueue(self, event_dict: dict) -> None:
        self._published_count += 1
        if not self.urls:
            return
        try:
            self._queue.put_nowait(event_dict)
        except asyncio.QueueFull:
            try:
                self._queue.get_nowait()
            except asyncio.QueueEmpty:
                pass
            self._dropped_count += 1
            if self._dropped_count % 100 == 1:
                logger.warning(f"Event queue full, dropped {self._dropped_count} events")
            self._queue.put_nowait(event_dict)

    async def _connect_one(self, url: str) -> bool:
        try:
            logger.info(f"Connecting to monitor: {url}")
            connect_kwargs: Dict[str, Any] = {
                "ping_interval": self.ping_interval,
                "ping_timeout": self.ping_timeout,
            }
            if self.auth:
                connect_kwargs["additional_headers"] = self.auth.headers_for(url)

            ws = await websockets.connect(url, **connect_kwargs)
            self._connections[url] = ws
            logger.info(f"Connected: {url}")
            return True
        except (OSError, websockets.WebSocketException) as e:
            logger.warning(f"Connection failed: {url} - {e}")
            return False

    async def _reconnect_loop(self, url: str) -> None:
        while self._running and url not in self._connections:
            await asyncio.sleep(self.reconnect_interval)
            if await self._connect_one(url):
                break

    def _schedule_reconnect(self, url: str) -> None:
        task = self._reconnect_tasks.get(url)
        if task is None or task.done():
            self._reconnect_tasks[url] = asyncio.create_task(self._reconnect_loop(url))

    async def connect_all(self) -> None:
        for url in self.urls:
            if not await self._connect_one(url):
                self._schedule_reconnect(url)

    async def _broadcast(self, data: str) -> None:
        lost = []
        for url, ws in list(self._connections.items()):
            if not self._is_connected(ws):
                lost.append(url)
                continue
            try:
                await ws.send(data)
                self._sent_count += 1
            except (OSError, websockets.WebSocketException) as e:
                logger.error(f"Monitor send failed ({url}): {e}")
                lost.append(url)

        for url in lost:
            self._connections.pop(url, None)
            self._schedule_reconnect(url)

    async def _send_loop(self) -> None:
        while self._running:
            try:
                event_dict = await asyncio.wait_for(self._queue.get(), timeout=1.0)
            except asyncio.TimeoutError:
                continue
            # Unknown payload types are stringified rather than stalling the loop
            await self._broadcast(json.dumps(event_dict, ensure_ascii=False, default=str))

    async def start(self) -> None:
        """Connect to all monitors and start sending."""
        if not self.urls:
            logger.info("No monitoring URLs configured, events will not be forwarded")
            return
        self._running = True
        self._send_task = asyncio.create_task(self._send_loop())
        await self.connect_all()

    async def stop(self) -> None:
        """Stop sending and close connections."""
        self._running = False

        for task in self._reconnect_tasks.values():
            task.cancel()
        self._reconnect_tasks.clear()

        if self._send_task:
            self._send_task.cancel()
            try:
                await self._send_task
            except asyncio.CancelledError:
                pass
            self._send_task = None

        for url, ws in list(self._connections.items()):
            try:
                await ws.close()
            except (OSError, websockets.WebSocketException) as e:
                logger.debug(f"Close error ({url}): {e}")
        self._connections.clear()

        logger.info(f"Event publisher stopped. Sent: {self._sent_count}, Dropped: {self._dropped_count}")

    def get_stats(self) -> dict:
        return {
            "connected": self.connected_count,
            "total_urls": len(self.urls),
            "queue_size": self._queue.qsize(),
            "queue_maxsize": self.queue_maxsize,
            "published_count": self._published_count,
            "sent_count": self._sent_count,
            "dropped_count": self._dropped_count,
        }
