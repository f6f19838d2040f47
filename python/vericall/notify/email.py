"""
Decision notification email (Resend).

Sent after each screened call so the owner sees who called and why. Purely
a side channel: failures are logged and reported as False, never raised.
"""

import asyncio
import html
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, cast

import resend

logger = logging.getLogger("vericall.notify")


@dataclass
class CallNotification:
    caller: str  # hashed caller reference
    timestamp: str
    decision: str
    transcript: str
    summary: Optional[str] = None

    @property
    def is_blocked(self) -> bool:
        return self.decision == "BLOCK"


def render_subject(n: CallNotification) -> str:
    title = "Scam Alert" if n.is_blocked else "New Call Message"
    return f"VeriCall: {title} from {n.caller}"


def render_html(n: CallNotification) -> str:
    title = "Scam Alert" if n.is_blocked else "New Call Message"
    badge_color = "#f44336" if n.is_blocked else "#4CAF50"
    badge = "SCAM" if n.is_blocked else "OK"

    summary = ""
    if n.summary:
        summary = f"""
        <div style="background: #f5f5f5; padding: 15px; border-radius: 8px; margin-bottom: 20px;">
          <strong>Summary:</strong><br/>{html.escape(n.summary)}
        </div>"""

    return f"""
    <div style="font-family: sans-serif; max-width: 600px; margin: 0 auto;">
      <h2>{title}</h2>{summary}
      <p><strong>From:</strong> {html.escape(n.caller)}<br/>
      <strong>Time:</strong> {html.escape(n.timestamp)}<br/>
      <strong>Decision:</strong>
      <span style="background: {badge_color}; color: white; padding: 4px 8px; border-radius: 4px;">{badge}</span></p>
      <h3>Conversation Transcript</h3>
      <div style="background: #f5f5f5; padding: 15px; border-radius: 8px; white-space: pre-wrap; font-family: monospace; font-size: 12px;">{html.escape(n.transcript)}</div>
      <p style="color: #999; font-size: 12px; margin-top: 30px;">Sent by VeriCall AI Receptionist.</p>
    </div>
    """


class EmailNotifier:
    """Sends call notifications through Resend."""

    def __init__(self, api_key: str, from_email: str, recipients: List[str]):
        self.api_key = api_key
        self.from_email = from_email
        self.recipients = list(recipients)

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key and self.recipients)

    def _send(self, payload: Dict[str, Any]) -> Any:
        resend.api_key = self.api_key
        return resend.Emails.send(cast(Any, payload))

    async def notify(self, notification: CallNotification) -> bool:
        """
        Send one notification.

        Returns:
            True if Resend accepted the email, False if skipped or failed.
        """
        if not self.is_configured:
            logger.info("RESEND_API_KEY or NOTIFICATION_EMAIL not set, skipping email notification")
            return False

        payload: Dict[str, Any] = {
            "from": self.from_email,
            "to": self.recipients,
            "subject": render_subject(notification),
            "html": render_html(notification),
        }
        try:
            await asyncio.to_thread(self._send, payload)
        except Exception as e:
            logger.error(f"Failed to send call notification: {e}")
            return False

        logger.info(f"Call notification sent to {len(self.recipients)} recipient(s)")
        return True
