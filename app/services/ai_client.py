# app/services/ai_client.py
"""
OpenAI-compatible chat completions client.

Every call tries the requested model first and retries once on the fallback
model before giving up with a GenerationError.
"""
import logging
from typing import Any, Dict, List, Optional

import httpx

from app.core.config import settings
from app.core.exceptions import GenerationError

logger = logging.getLogger(__name__)


class AIClient:
    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.OPENAI_API_KEY
        self.base_url = (base_url or settings.OPENAI_BASE_URL).rstrip("/")
        self.timeout = timeout or settings.AI_TIMEOUT_SECONDS
        self.transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    async def _try_generate(self, model: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(
                    f"{self.base_url}/chat/completions",
                    headers=headers,
                    json={**payload, "model": model},
                )
        except httpx.HTTPError as e:
            return {"success": False, "error": f"{type(e).__name__}: {e}"}

        if response.status_code != 200:
            return {"success": False, "error": response.text}
        try:
            content = response.json()["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError):
            return {"success": False, "error": f"Unexpected completion payload: {response.text[:200]}"}
        if not isinstance(content, str) or not content.strip():
            return {"success": False, "error": "Empty completion"}
        return {"success": True, "response": content}

    async def complete(
        self,
        messages: List[Dict[str, str]],
        model: Optional[str] = None,
        fallback_model: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: Optional[int] = None,
        json_mode: bool = False,
    ) -> str:
        """Return the assistant message content for a chat completion."""
        if not self.configured:
            raise GenerationError("AI API key is not configured")

        payload: Dict[str, Any] = {"messages": messages, "temperature": temperature}
        if max_tokens:
            payload["max_tokens"] = max_tokens
        if json_mode:
            payload["response_format"] = {"type": "json_object"}

        primary = model or settings.CONTENT_MODEL
        fallback = fallback_model or settings.FALLBACK_MODEL

        result = await self._try_generate(primary, payload)
        if not result["success"] and fallback and fallback != primary:
            logger.warning(f"Primary model {primary} failed: {result['error']}. Trying fallback model {fallback}...")
            result = await self._try_generate(fallback, payload)

        if not result["success"]:
            raise GenerationError(f"Both models failed. Last error: {result['error']}")
        return result["response"].strip()


_client: Optional[AIClient] = None


def get_ai_client() -> AIClient:
    global _client
    if _client is None:
        _client = AIClient()
    return _client
