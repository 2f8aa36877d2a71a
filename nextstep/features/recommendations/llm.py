"""Chat-completion client for structured JSON generation (Groq)."""

import logging
from typing import Optional, Protocol

import groq

from nextstep.core.config import settings

logger = logging.getLogger("nextstep")


class ChatClient(Protocol):
    model: str

    async def complete_json(self, messages: list[dict]) -> str:
        """Return the raw text of a single JSON-object completion."""
        ...


class GroqChatClient:
    """Wraps groq.AsyncGroq; requests response_format=json_object."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        client: Optional[groq.AsyncGroq] = None,
    ):
        self.model = model or settings.GROQ_MODEL
        self.temperature = settings.GROQ_TEMPERATURE if temperature is None else temperature
        self._client = client or groq.AsyncGroq(api_key=api_key or settings.GROQ_API_KEY)

    async def complete_json(self, messages: list[dict]) -> str:
        completion = await self._client.chat.completions.create(
            model=self.model,
            messages=messages,
            response_format={"type": "json_object"},
            temperature=self.temperature,
        )
        return completion.choices[0].message.content or "{}"

    async def close(self) -> None:
        await self._client.close()


def build_chat_client() -> Optional[GroqChatClient]:
    """Client for app startup; None when GROQ_API_KEY is missing."""
    if not settings.GROQ_API_KEY:
        logger.warning("GROQ_API_KEY not configured; next-action generation disabled")
        return None
    return GroqChatClient()
