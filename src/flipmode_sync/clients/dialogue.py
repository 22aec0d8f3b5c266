"""Client for the remote clarification dialogue and voice services."""

import base64
import logging
from typing import Any, Dict

from ..errors import DomainError
from .base import ServiceClient

logger = logging.getLogger(__name__)

DAILY_LIMIT_MESSAGE = "You have used all your voice notes for today. Try again tomorrow!"
TOO_LONG_MESSAGE = "Voice notes are limited to 30 seconds. Please record a shorter message."


class DialogueClient(ServiceClient):
    """Therapy-session turns plus speech-to-text for the athlete."""

    service_name = "dialogue service"

    def _raise_for_status(self, status: int, data: Any) -> None:
        if status >= 400:
            message = self._error_message(data) or ""
            if "Daily limit" in message:
                raise DomainError(DAILY_LIMIT_MESSAGE, detail=message)
            if "too long" in message:
                raise DomainError(TOO_LONG_MESSAGE, detail=message)
        super()._raise_for_status(status, data)

    async def start_therapy(self, transcript: str) -> Dict[str, Any]:
        return await self._request("POST", "/api/therapy/start", {"transcript": transcript})

    async def respond_therapy(self, session_id: str, answer: str) -> Dict[str, Any]:
        return await self._request(
            "POST", "/api/therapy/respond", {"session_id": session_id, "answer": answer}
        )

    async def transcribe(self, audio: bytes) -> Dict[str, Any]:
        """Returns ``{text, duration, usage}``."""
        encoded = base64.b64encode(audio).decode("ascii")
        return await self._request("POST", "/api/voice/transcribe", {"audio_base64": encoded})

    async def voice_usage(self) -> Dict[str, Any]:
        """Returns ``{count, remaining, limit}`` for today."""
        return await self._request("GET", "/api/voice/usage")
