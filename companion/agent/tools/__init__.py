"""Agent tools module."""

from companion.agent.tools.base import FunctionCallResult, Tool
from companion.agent.tools.factory import create_standard_tool_registry
from companion.agent.tools.registry import ToolRegistry

__all__ = ["FunctionCallResult", "Tool", "ToolRegistry", "create_standard_tool_registry"]
