"""
Gemini screening oracle.

Holds the conversation history for one call and asks Gemini (Vertex AI,
application default credentials) for the next receptionist line. The reply
carries a decision marker once the oracle has made up its mind.
"""

import asyncio
import hashlib
import logging
from dataclasses import dataclass
from typing import Any, List, Optional, Tuple

from google import genai
from google.genai import types

from ..errors import UpstreamServiceFailure
from .markers import MARKER_CONFIDENCE, CallDecision, parse_decision, strip_markers

logger = logging.getLogger("vericall.oracle")


SYSTEM_PROMPT = """You are a friendly phone receptionist AI taking messages for legitimate callers.

IMPORTANT: You are continuing an ongoing phone call. The conversation history shows what has already been said. Never repeat greetings or phrases that appear in the history.

BLOCK (obvious spam or cold sales only):
- Cold calls offering services (SEO, marketing, insurance, cost reduction)
- Refuses to give a name or company after being asked
- Generic "decision maker" requests with no specific purpose
- Pushy telemarketers

RECORD (take a message, the default):
- Anyone with a name and a reason to call
- Business partners, vendors, clients
- Returning a call or following up

How to respond:
- Check the history for what you already know
- Ask for missing info (name, company, purpose) once only
- If the caller says they already answered, apologize and proceed with what you have
- After 2-3 exchanges, wrap up: "Got it, I'll pass along your message. Have a great day!" [RECORD]

Rules:
- Never ask for the same information twice
- If info is still missing after 2 attempts, proceed with [RECORD]
- Always end the call with [RECORD] or [BLOCK]
- Keep responses to 1-2 sentences"""

FALLBACK_REPLY = "I'm sorry, I'm having trouble understanding. Could you please repeat that?"

CLOSING_PHRASES = (
    "have a great day",
    "have a good day",
    "have a nice day",
    "goodbye",
    "bye",
    "take care",
    "i'll pass along",
    "i'll make sure",
    "we'll get back to you",
)


@dataclass
class ChatMessage:
    role: str  # "user" or "assistant"
    content: str


@dataclass
class OracleReply:
    """One oracle turn: speakable text plus an optional decision."""
    text: str
    decision: Optional[CallDecision] = None
    confidence: float = 0.0


class ScreeningOracle:
    """Conversational oracle for one call."""

    def __init__(
        self,
        project_id: str,
        location: str = "us-central1",
        model: str = "gemini-2.5-flash",
        temperature: float = 0.7,
        max_output_tokens: int = 512,
        client: Optional[Any] = None,
    ):
        self.project_id = project_id
        self.location = location
        self.model = model
        self.temperature = temperature
        self.max_output_tokens = max_output_tokens

        self._client = client
        self._history: List[ChatMessage] = []

    def _get_client(self) -> Any:
        if self._client is None:
            self._client = genai.Client(
                vertexai=True,
                project=self.project_id,
                location=self.location,
            )
        return self._client

    @staticmethod
    def system_prompt_hash() -> str:
        """SHA-256 of the system prompt, disclosed for verification."""
        return hashlib.sha256(SYSTEM_PROMPT.encode("utf-8")).hexdigest()

    @property
    def history(self) -> List[ChatMessage]:
        return list(self._history)

    @property
    def caller_turns(self) -> int:
        return sum(1 for m in self._history if m.role == "user")

    def add_greeting(self, greeting: str) -> None:
        """Seed the history with the greeting so it is not repeated."""
        self._history.append(ChatMessage(role="assistant", content=greeting))

    async def chat(self, user_text: str) -> OracleReply:
        """
        Get the next line for what the caller said.

        Raises:
            UpstreamServiceFailure: If Gemini fails or returns nothing. The
                caller's message is dropped from history in that case.
        """
        self._history.append(ChatMessage(role="user", content=user_text))

        try:
            raw = await self._generate()
        except asyncio.CancelledError:
            self._history.pop()
            raise
        except Exception as e:
            self._history.pop()
            raise UpstreamServiceFailure("oracle", str(e)) from e

        if not raw.strip():
            self._history.pop()
            raise UpstreamServiceFailure("oracle", "empty response")

        decision, confidence = self._infer_decision(raw)
        self._history.append(ChatMessage(role="assistant", content=raw))

        return OracleReply(text=strip_markers(raw), decision=decision, confidence=confidence)

    async def _generate(self) -> str:
        client = self._get_client()
        contents = [
            types.Content(
                role="user" if m.role == "user" else "model",
                parts=[types.Part(text=m.content)],
            )
            for m in self._history
        ]
        response = await client.aio.models.generate_content(
            model=self.model,
            contents=contents,
            config=types.GenerateContentConfig(
                system_instruction=SYSTEM_PROMPT,
                max_output_tokens=self.max_output_tokens,
                temperature=self.temperature,
            ),
        )
        return response.text or ""

    def _infer_decision(self, raw: str) -> Tuple[Optional[CallDecision], float]:
        decision = parse_decision(raw)
        if decision is not None:
            return decision, MARKER_CONFIDENCE

        # History length includes the pending user message but not this reply
        lowered = raw.lower()
        if len(self._history) >= 4 and any(p in lowered for p in CLOSING_PHRASES):
            logger.info("Closing line without marker, assuming RECORD")
            return CallDecision.RECORD, 0.7

        if len(self._history) >= 8:
            logger.info("Conversation ran long without a decision, auto-RECORD")
            return CallDecision.RECORD, 0.6

        return None, 0.0

    def transcript(self) -> str:
        """Render the conversation as 'Caller:' / 'AI:' lines."""
        return "\n".join(
            f"{'Caller' if m.role == 'user' else 'AI'}: {strip_markers(m.content)}"
            for m in self._history
        )

    def summarize(self) -> str:
        """Brief summary: the last confirmation line, else the caller's first words."""
        for message in reversed([m for m in self._history if m.role == "assistant"][-2:]):
            lowered = message.content.lower()
            if "got it" in lowered or "i'll pass along" in lowered:
                return strip_markers(message.content)

        words = " ".join(m.content for m in self._history if m.role == "user").split()
        return f"Call regarding: {' '.join(words[:30])}..."
