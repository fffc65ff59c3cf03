import logging
from typing import Optional

import httpx

from vaultseek.config import Settings
from vaultseek.core.cancellation import CancellationToken
from vaultseek.core.interfaces import ChatResponse

logger = logging.getLogger(__name__)


class LLMError(Exception):
    """Raised when a chat completion fails."""
    pass


class OpenRouterChatModel:
    """Chat completions through the OpenRouter API."""

    def __init__(
        self,
        api_key: str,
        model: str,
        base_url: str = "https://openrouter.ai/api/v1",
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "X-Title": "vaultseek",
        }

    async def _post(self, prompt: str) -> ChatResponse:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(
                    f"{self.base_url}/chat/completions",
                    headers=self._headers(),
                    json={
                        "model": self.model,
                        "messages": [{"role": "user", "content": prompt}],
                    },
                )
        except httpx.TimeoutException:
            raise LLMError("Chat completion timed out")
        except httpx.RequestError as e:
            raise LLMError(f"Network error calling chat API: {e}")

        if response.status_code == 429:
            raise LLMError(f"Rate limited. Retry after {response.headers.get('Retry-After', '60')} seconds.")
        if response.status_code != 200:
            raise LLMError(f"Chat API returned {response.status_code}: {response.text}")

        try:
            content = response.json()["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise LLMError(f"Unexpected chat API response: {e}")
        return ChatResponse(content=content or "")

    async def invoke(self, prompt: str, *, signal: Optional[CancellationToken] = None) -> ChatResponse:
        """Send one user prompt.

        Args:
            prompt: Prompt text
            signal: Cancelling it aborts the in-flight request

        Raises:
            LLMError: On network, HTTP or response format errors
            OperationCancelled: If ``signal`` fires first
        """
        if signal is not None:
            return await signal.guard(self._post(prompt))
        return await self._post(prompt)


def create_chat_model(settings: Settings) -> Optional[OpenRouterChatModel]:
    """Chat model from settings, or None when no API key is configured."""
    if not settings.openrouter_api_key:
        logger.debug("No OpenRouter key; query expansion runs locally")
        return None
    return OpenRouterChatModel(
        api_key=settings.openrouter_api_key,
        model=settings.chat_model,
        base_url=settings.openrouter_base_url,
    )
