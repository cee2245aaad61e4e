"""Base agent abstraction."""

import logging
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Generic, Optional, TypeVar

from ..exceptions import GenerationError
from ..services.llm import LLMClient, create_llm_client

logger = logging.getLogger(__name__)

InputT = TypeVar("InputT")
OutputT = TypeVar("OutputT")


class BaseAgent(ABC, Generic[InputT, OutputT]):
    """Abstract base class for prompt agents.

    An agent owns one prompt: it builds the user prompt from its input,
    sends it with its system prompt and parses the reply. Subclasses
    implement ``build_prompt`` and ``parse``.
    """

    max_tokens: int = 2048
    temperature: float = 0.7

    def __init__(self, client: Optional[LLMClient] = None) -> None:
        """Initialize the agent.

        Args:
            client: LLM client. Created from configuration if not provided.
        """
        self._client = client or create_llm_client()
        self._logger = logging.getLogger(f"{__name__}.{self.name}")

    @property
    @abstractmethod
    def name(self) -> str:
        """Return the agent's name."""
        ...

    @property
    @abstractmethod
    def system_prompt(self) -> str:
        """Return the system prompt for this agent."""
        ...

    @property
    def model(self) -> str:
        """Return the model being used."""
        return self._client.model

    @abstractmethod
    def build_prompt(self, input_data: InputT) -> str:
        """Build the user prompt for *input_data*."""
        ...

    @abstractmethod
    def parse(self, response: str, input_data: InputT) -> OutputT:
        """Turn the raw reply into structured output.

        Raises:
            GenerationError: If the reply cannot be used.
        """
        ...

    async def run(self, input_data: InputT) -> OutputT:
        """Execute the agent's task without streaming."""
        response = await self._create_message(self.build_prompt(input_data))
        return self.parse(response, input_data)

    def stream(self, input_data: InputT) -> AsyncIterator[Any]:
        """Open a streaming call for *input_data* and return its raw fragments."""
        return self._client.stream_message(
            prompt=self.build_prompt(input_data),
            max_tokens=self.max_tokens,
            system=self.system_prompt,
            temperature=self.temperature,
        )

    async def _create_message(self, prompt: str) -> str:
        """Send *prompt* with the agent's system prompt and return the reply text.

        Raises:
            GenerationError: If the call fails or returns nothing.
        """
        self._logger.debug(f"Creating message with prompt length: {len(prompt)}")

        result = await self._client.complete(
            prompt=prompt,
            max_tokens=self.max_tokens,
            system=self.system_prompt,
            temperature=self.temperature,
        )
        if not result.success:
            raise GenerationError(result.error or f"{self.name} generation failed")
        if not result.content or not result.content.strip():
            raise GenerationError(f"{self.name} returned an empty response")

        self._logger.debug(f"Received response of length: {len(result.content)}")
        return result.content
