"""Structured results returned across the core's boundaries."""

from dataclasses import dataclass, field
from typing import Any, Optional


@dataclass
class GenerationResult:
    """Outcome of a non-streaming LLM call."""

    success: bool
    content: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def ok(cls, content: str) -> "GenerationResult":
        return cls(success=True, content=content)

    @classmethod
    def failed(cls, error: str) -> "GenerationResult":
        return cls(success=False, error=error)


@dataclass
class ToolResult:
    """Result shape shared by every agent tool.

    Serialized as ``{success, data?, error?, message?}``.
    """

    success: bool
    data: dict = field(default_factory=dict)
    error: Optional[str] = None
    message: Optional[str] = None

    @classmethod
    def ok(cls, data: Optional[dict] = None, message: Optional[str] = None) -> "ToolResult":
        return cls(success=True, data=data or {}, message=message)

    @classmethod
    def failed(cls, error: str) -> "ToolResult":
        return cls(success=False, error=error)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"success": self.success}
        if self.data:
            payload["data"] = self.data
        if self.error is not None:
            payload["error"] = self.error
        if self.message is not None:
            payload["message"] = self.message
        return payload
