"""Client for OpenAI-compatible chat-completion endpoints (DeepSeek, Kimi, ...)."""

import asyncio
import logging
from typing import AsyncIterator, Optional

import httpx

from ..config import config
from ..exceptions import ConfigurationError, GenerationError
from ..streaming import parse_sse_fragment
from .llm import LLMClient

logger = logging.getLogger(__name__)

_RETRYABLE_STATUS = {429, 500, 502, 503, 504}


class OpenAICompatibleClient(LLMClient):
    """Async client for ``/chat/completions`` with SSE streaming."""

    fragment_parser = staticmethod(parse_sse_fragment)

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        max_retries: Optional[int] = None,
        retry_delay: float = 1.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        """Initialize the client.

        Args:
            api_key: Endpoint API key. Defaults to OPENAI_COMPAT_API_KEY.
            base_url: Endpoint base URL. Defaults to OPENAI_COMPAT_BASE_URL.
            model: Model name. Defaults to OPENAI_COMPAT_MODEL.
            max_retries: Maximum number of attempts for failed requests.
            retry_delay: Base delay between retries in seconds.
            http_client: Preconfigured httpx client (tests pass a mock transport).
        """
        self._api_key = api_key or config.openai_compat_api_key
        if not self._api_key:
            raise ConfigurationError(
                "API key not provided. Set OPENAI_COMPAT_API_KEY env var."
            )
        self._base_url = (base_url or config.openai_compat_base_url).rstrip("/")
        self._model = model or config.openai_compat_model
        self._max_retries = max_retries or config.max_retries
        self._retry_delay = retry_delay
        self._http = http_client or httpx.AsyncClient(timeout=config.generation_timeout)

    @property
    def model(self) -> str:
        return self._model

    @property
    def _url(self) -> str:
        return f"{self._base_url}/chat/completions"

    @property
    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }

    def _payload(
        self,
        prompt: str,
        max_tokens: int,
        system: Optional[str],
        temperature: float,
        stream: bool,
    ) -> dict:
        messages = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})
        return {
            "model": self._model,
            "messages": messages,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "stream": stream,
        }

    async def create_message(
        self,
        prompt: str,
        max_tokens: int = 4096,
        system: Optional[str] = None,
        temperature: float = 0.7,
    ) -> str:
        """Send a non-streaming chat completion.

        Raises:
            GenerationError: On HTTP errors after retries or a malformed response.
        """
        payload = self._payload(prompt, max_tokens, system, temperature, stream=False)

        for attempt in range(self._max_retries):
            try:
                response = await self._http.post(self._url, json=payload, headers=self._headers)
            except httpx.TransportError as e:
                if attempt == self._max_retries - 1:
                    raise GenerationError(f"Connection error: {e}") from e
                await self._backoff(attempt, f"Connection error: {e}")
                continue

            if response.status_code in _RETRYABLE_STATUS and attempt < self._max_retries - 1:
                await self._backoff(attempt, f"HTTP {response.status_code}")
                continue
            if response.status_code >= 400:
                raise GenerationError(
                    f"API request failed: {response.status_code}",
                    {"body": response.text[:500]},
                )

            try:
                return response.json()["choices"][0]["message"]["content"] or ""
            except (ValueError, KeyError, IndexError, TypeError) as e:
                raise GenerationError(f"Malformed completion response: {e}") from e

        raise GenerationError("Max retries exceeded")

    async def stream_message(
        self,
        prompt: str,
        max_tokens: int = 4096,
        system: Optional[str] = None,
        temperature: float = 0.7,
    ) -> AsyncIterator[str]:
        """Yield raw SSE lines from a streaming chat completion."""
        payload = self._payload(prompt, max_tokens, system, temperature, stream=True)

        async with self._http.stream("POST", self._url, json=payload, headers=self._headers) as response:
            if response.status_code >= 400:
                await response.aread()
                raise GenerationError(f"API request failed: {response.status_code}")
            async for line in response.aiter_lines():
                yield line

    async def _backoff(self, attempt: int, reason: str) -> None:
        delay = self._retry_delay * (2**attempt)
        logger.warning(f"{reason}. Retrying in {delay:.1f}s...")
        await asyncio.sleep(delay)

    async def aclose(self) -> None:
        await self._http.aclose()
