"""
Bearer tokens for monitoring connections.

Every monitor gets its own HS256 token: the monitor URL is the audience, and
the ``events`` claim lists the event types this instance publishes. A monitor
can therefore reject a token minted for another monitor, and can filter on
event type without trusting the payload. Tokens are cached per monitor and
reissued shortly before they expire, so reconnects reuse them.
"""

import logging
import time
from typing import TYPE_CHECKING, Dict, Iterable, Optional, Tuple

import jwt

from .publisher import EVENT_TYPES

if TYPE_CHECKING:
    from ..config.settings import VeriCallConfig

logger = logging.getLogger("vericall.events.auth")

TOKEN_SUBJECT = "vericall-events"


class EventStreamAuth:
    """Per-monitor tokens for the event publisher."""

    def __init__(
        self,
        secret_key: str,
        client_id: str,
        ttl_seconds: float = 3600.0,
        refresh_margin: float = 300.0,
        event_types: Iterable[str] = EVENT_TYPES,
    ):
        self.secret_key = secret_key
        self.client_id = client_id
        self.ttl_seconds = ttl_seconds
        self.refresh_margin = min(refresh_margin, ttl_seconds / 2)
        self.event_types = list(event_types)

        # audience -> (token, expires_at)
        self._tokens: Dict[str, Tuple[str, float]] = {}

    def _issue(self, audience: str) -> Tuple[str, float]:
        now = int(time.time())
        expires_at = now + int(self.ttl_seconds)
        claims = {
            "iss": self.client_id,
            "sub": TOKEN_SUBJECT,
            "aud": audience,
            "events": self.event_types,
            "iat": now,
            "exp": expires_at,
        }
        token = jwt.encode(claims, self.secret_key, algorithm="HS256")
        logger.debug(f"Issued event token for {audience}")
        return token, expires_at

    def token_for(self, audience: str) -> str:
        """Token for one monitor URL, reissued near expiry."""
        cached = self._tokens.get(audience)
        if cached and time.time() + self.refresh_margin < cached[1]:
            return cached[0]

        token, expires_at = self._issue(audience)
        self._tokens[audience] = (token, expires_at)
        return token

    def headers_for(self, audience: str) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.token_for(audience)}"}

    @classmethod
    def from_config(cls, config: "VeriCallConfig") -> Optional["EventStreamAuth"]:
        """Auth from configuration, or None when no signing secret is set."""
        if not config.event_auth_secret:
            logger.debug("Event stream auth not configured, monitors connect unauthenticated")
            return None
        return cls(
            secret_key=config.event_auth_secret,
            client_id=config.event_auth_client_id,
            ttl_seconds=config.event_auth_ttl_sec,
        )
