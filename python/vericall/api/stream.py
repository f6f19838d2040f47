"""
Media Streams WebSocket endpoint.

One WebSocket per call. The session is created when the stream reports
``start`` and is removed when the socket closes.
"""

import logging
from typing import Callable, Optional

from aiohttp import WSMsgType, web

from ..core.call_session import CallSession
from ..core.session_store import SessionStore
from ..core.transport import MediaStreamEvent, MediaStreamTransport

logger = logging.getLogger("vericall.stream")

SessionFactory = Callable[[str, MediaStreamTransport], CallSession]


class MediaStreamHandler:
    """aiohttp handler for ``/stream``."""

    def __init__(self, sessions: SessionStore, session_factory: SessionFactory):
        self.sessions = sessions
        self.session_factory = session_factory

    async def handle(self, request: web.Request) -> web.WebSocketResponse:
        ws = web.WebSocketResponse()
        await ws.prepare(request)

        transport = MediaStreamTransport(ws)
        session: Optional[CallSession] = None
        logger.info(f"Media stream connected from {request.remote}")

        try:
            async for msg in ws:
                if msg.type == WSMsgType.ERROR:
                    logger.error(f"Media stream error: {ws.exception()}")
                    break
                if msg.type != WSMsgType.TEXT:
                    continue

                try:
                    event = MediaStreamEvent.from_text(msg.data)
                except ValueError as e:
                    logger.warning(f"Malformed media stream message: {e}")
                    continue

                if session is None:
                    if event.event != "start":
                        continue
                    session = self._open_session(event, transport)
                    if session is None:
                        break

                await session.handle_event(event)
                if session.is_ended:
                    break
        finally:
            if session is not None:
                await session.end("transport closed")
                self.sessions.remove(session.call_id, session)
            if not ws.closed:
                await ws.close()
            logger.info(f"Media stream closed ({session.call_id if session else 'no call'})")

        return ws

    def _open_session(
        self, event: MediaStreamEvent, transport: MediaStreamTransport
    ) -> Optional[CallSession]:
        call_id = event.call_sid or event.stream_sid
        if not call_id:
            logger.warning("Stream start without callSid, closing")
            return None

        transport.call_id = call_id
        session = self.session_factory(call_id, transport)
        try:
            self.sessions.register(session)
        except ValueError as e:
            logger.warning(f"[{call_id}] {e}, rejecting duplicate stream")
            return None
        return session

    def add_routes(self, app: web.Application, path: str = "/stream") -> None:
        app.router.add_get(path, self.handle)
