"""External service integrations."""

from .llm import LLMClient, create_llm_client

__all__ = ["LLMClient", "create_llm_client"]
