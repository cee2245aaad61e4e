"""Common interface for LLM client wrappers."""

import logging
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Optional

from ..config import config
from ..exceptions import ConfigurationError
from ..models import GenerationResult
from ..streaming import FragmentParser, passthrough_fragment

logger = logging.getLogger(__name__)


class LLMClient(ABC):
    """Chat-completion client with a non-streaming and a streaming mode."""

    fragment_parser: FragmentParser = staticmethod(passthrough_fragment)

    @property
    @abstractmethod
    def model(self) -> str:
        """Return the model being used."""
        ...

    @abstractmethod
    async def create_message(
        self,
        prompt: str,
        max_tokens: int = 4096,
        system: Optional[str] = None,
        temperature: float = 0.7,
    ) -> str:
        """Return the response text, raising on failure."""
        ...

    @abstractmethod
    def stream_message(
        self,
        prompt: str,
        max_tokens: int = 4096,
        system: Optional[str] = None,
        temperature: float = 0.7,
    ) -> AsyncIterator[Any]:
        """Yield raw response fragments for ``fragment_parser``."""
        ...

    async def complete(
        self,
        prompt: str,
        max_tokens: int = 4096,
        system: Optional[str] = None,
        temperature: float = 0.7,
    ) -> GenerationResult:
        """Non-streaming call returning ``{success, content?, error?}``."""
        try:
            content = await self.create_message(
                prompt=prompt,
                max_tokens=max_tokens,
                system=system,
                temperature=temperature,
            )
        except Exception as e:
            logger.error(f"LLM call failed: {e}")
            return GenerationResult.failed(str(e) or type(e).__name__)
        return GenerationResult.ok(content)

    async def aclose(self) -> None:
        pass


def create_llm_client(provider: Optional[str] = None, model: Optional[str] = None) -> LLMClient:
    """Build the client for the configured provider.

    Raises:
        ConfigurationError: If the provider is unknown or its credentials are missing.
    """
    provider = provider or config.provider
    if provider == "anthropic":
        from .anthropic import AnthropicClient
        return AnthropicClient(model=model)
    if provider == "openai-compatible":
        from .openai_compat import OpenAICompatibleClient
        return OpenAICompatibleClient(model=model)
    raise ConfigurationError(f"Unknown provider '{provider}'")
