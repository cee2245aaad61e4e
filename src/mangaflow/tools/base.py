"""Named, schema-validated tools with a uniform result shape."""

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Mapping, Optional, Type

from pydantic import BaseModel, ValidationError

from ..exceptions import MangaFlowError
from ..models import ToolResult

logger = logging.getLogger(__name__)

ToolHandler = Callable[[Any], Awaitable[ToolResult]]


def describe_validation_error(error: ValidationError) -> str:
    """Flatten a pydantic error into one line naming each bad field."""
    parts = []
    for item in error.errors():
        location = ".".join(str(part) for part in item["loc"]) or "input"
        parts.append(f"{location}: {item['msg']}")
    return "Invalid input: " + "; ".join(parts)


@dataclass
class Tool:
    """One operation the agent can call.

    ``execute`` never raises for expected failures: invalid input and any
    MangaFlowError come back as ``success=False``.
    """

    name: str
    description: str
    input_model: Type[BaseModel]
    handler: ToolHandler

    def input_schema(self) -> dict:
        """JSON schema of the tool's input, with camelCase field names."""
        schema = self.input_model.model_json_schema(by_alias=True)
        schema.pop("title", None)
        for prop in schema.get("properties", {}).values():
            prop.pop("title", None)
        return schema

    def to_anthropic_spec(self) -> dict:
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.input_schema(),
        }

    async def execute(self, raw_input: Optional[Mapping[str, Any]] = None) -> ToolResult:
        try:
            params = self.input_model.model_validate(dict(raw_input or {}))
        except ValidationError as e:
            logger.warning(f"Tool {self.name}: invalid input: {e.error_count()} error(s)")
            return ToolResult.failed(describe_validation_error(e))

        logger.debug(f"Tool {self.name} called with {params!r}")
        try:
            result = await self.handler(params)
        except MangaFlowError as e:
            logger.error(f"Tool {self.name} failed: {e}")
            return ToolResult.failed(e.message)

        if result.success:
            logger.info(f"Tool {self.name} succeeded")
        else:
            logger.warning(f"Tool {self.name} returned error: {result.error}")
        return result
