"""Claude client used for scene planning, refinement and the chat agent."""

import asyncio
import logging
from typing import AsyncIterator, List, Optional

from anthropic import AsyncAnthropic, APIError, APIConnectionError, RateLimitError
from anthropic.types import Message

from ..config import config
from ..exceptions import ConfigurationError, GenerationError
from .llm import LLMClient

logger = logging.getLogger(__name__)

RETRYABLE_ERRORS = (RateLimitError, APIConnectionError)


class AnthropicClient(LLMClient):
    """LLMClient backed by the Anthropic Messages API.

    Rate limits and dropped connections are retried with exponential
    backoff. Every other API error is raised at once.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        max_retries: Optional[int] = None,
        retry_delay: float = 1.0,
    ) -> None:
        """
        Args:
            api_key: Falls back to ANTHROPIC_API_KEY.
            model: Falls back to config.default_model.
            max_retries: Attempts per request, config.max_retries by default.
            retry_delay: First backoff delay in seconds, doubled per attempt.
        """
        key = api_key or config.anthropic_api_key
        if not key:
            raise ConfigurationError("ANTHROPIC_API_KEY is not set; cannot talk to Claude.")

        # Retries happen in _send only
        self._client = AsyncAnthropic(api_key=key, max_retries=0)
        self._model = model or config.default_model
        self._attempts = max_retries or config.max_retries
        self._backoff = retry_delay

    @property
    def model(self) -> str:
        return self._model

    def _payload(self, messages: List[dict], max_tokens: int, system: Optional[str], **extra) -> dict:
        payload = {"model": self._model, "max_tokens": max_tokens, "messages": messages, **extra}
        if system:
            payload["system"] = system
        return payload

    async def create_message(
        self,
        prompt: str,
        max_tokens: int = 4096,
        system: Optional[str] = None,
        temperature: float = 0.7,
    ) -> str:
        """Send a single user turn and return the reply text."""
        payload = self._payload(
            [{"role": "user", "content": prompt}], max_tokens, system, temperature=temperature
        )
        reply = await self._send(payload)

        text = "".join(block.text for block in reply.content if getattr(block, "type", "") == "text")
        if not text and reply.content:
            return str(reply.content[0])
        return text

    async def create_with_tools(
        self,
        messages: List[dict],
        tools: List[dict],
        system: Optional[str] = None,
        max_tokens: int = 4096,
    ) -> Message:
        """Send a conversation with tool definitions and return the raw response."""
        return await self._send(self._payload(messages, max_tokens, system, tools=tools))

    async def _send(self, payload: dict) -> Message:
        for attempt in range(1, self._attempts + 1):
            logger.debug(f"Claude request {attempt}/{self._attempts} ({self._model})")
            try:
                return await self._client.messages.create(**payload)
            except RETRYABLE_ERRORS as e:
                if attempt == self._attempts:
                    raise GenerationError(f"Claude request failed after {attempt} attempts: {e}") from e
                delay = self._backoff * (2 ** (attempt - 1))
                logger.warning(f"{type(e).__name__} from Claude, retrying in {delay:.1f}s")
                await asyncio.sleep(delay)
            except APIError as e:
                logger.error(f"Claude API error: {e}")
                raise GenerationError(f"Claude API error: {e}") from e

        raise GenerationError("No attempts configured for Claude requests")

    async def stream_message(
        self,
        prompt: str,
        max_tokens: int = 4096,
        system: Optional[str] = None,
        temperature: float = 0.7,
    ) -> AsyncIterator[str]:
        """Yield reply text as it arrives. Streams are not retried."""
        payload = self._payload(
            [{"role": "user", "content": prompt}], max_tokens, system, temperature=temperature
        )
        logger.debug(f"Opening Claude stream ({self._model})")

        async with self._client.messages.stream(**payload) as stream:
            async for text in stream.text_stream:
                yield text

    async def aclose(self) -> None:
        await self._client.close()
