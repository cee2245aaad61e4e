"""Agent tool protocol."""

from .agent_tools import ToolScope, ToolSet, create_agent_tools
from .base import Tool, describe_validation_error

__all__ = ["Tool", "ToolScope", "ToolSet", "create_agent_tools", "describe_validation_error"]
