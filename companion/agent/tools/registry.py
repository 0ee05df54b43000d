"""Tool registry for dynamic tool management."""

import time
from typing import Any

from companion.agent.tools.base import FunctionCallResult, Tool
from companion.logging import get_logger

audit_log = get_logger("companion.audit")


class ToolRegistry:
    """
    Registry for agent tools.

    Maps a tool name to its handler and executes calls against a store.
    Never raises for a failing tool: the failure comes back as an
    error-shaped ``FunctionCallResult``.
    """

    _TRUNCATE_KEYS = {"content", "query", "title", "summary"}

    def __init__(self, audit: bool = True):
        self._tools: dict[str, Tool] = {}
        self._audit = audit

    def register(self, tool: Tool) -> None:
        """Register a tool."""
        self._tools[tool.name] = tool

    def unregister(self, name: str) -> None:
        """Unregister a tool by name."""
        self._tools.pop(name, None)

    def get(self, name: str) -> Tool | None:
        """Get a tool by name."""
        return self._tools.get(name)

    def has(self, name: str) -> bool:
        """Check if a tool is registered."""
        return name in self._tools

    def get_definitions(self) -> list[dict[str, Any]]:
        """Get all tool definitions in OpenAI format."""
        return [tool.to_schema() for tool in self._tools.values()]

    def _sanitize_params(self, params: dict) -> dict:
        """Truncate long free-text values for audit logging."""
        sanitized = {}
        for k, v in params.items():
            if k in self._TRUNCATE_KEYS and isinstance(v, str) and len(v) > 200:
                sanitized[k] = v[:200] + "..."
            else:
                sanitized[k] = v
        return sanitized

    @staticmethod
    def _is_error_payload(response: Any) -> bool:
        return isinstance(response, dict) and set(response.keys()) == {"error"}

    async def execute(self, name: str, params: dict[str, Any], store: Any) -> FunctionCallResult:
        """
        Execute a tool by name with given parameters.

        Args:
            name: Tool name.
            params: Parsed tool arguments.
            store: Store the tool reads from / queues actions into.

        Returns:
            ``FunctionCallResult`` with the raw response.
        """
        tool = self._tools.get(name)
        if not tool:
            return FunctionCallResult(
                name=name,
                response={"error": f"Tool '{name}' not found. Available: {', '.join(self.tool_names)}"},
                is_error=True,
            )

        if self._audit:
            audit_log.info("tool_call_started", tool=name, params=self._sanitize_params(params))

        t0 = time.monotonic()
        try:
            errors = tool.validate_params(params)
            if errors:
                if self._audit:
                    audit_log.warning("tool_call_failed", tool=name, error="invalid_params")
                return FunctionCallResult(
                    name=name,
                    response={"error": f"Invalid parameters for tool '{name}': " + "; ".join(errors)},
                    is_error=True,
                )

            response = await tool.execute(store, **params)
            is_error = self._is_error_payload(response)
            if self._audit:
                elapsed = (time.monotonic() - t0) * 1000
                audit_log.info(
                    "tool_call_completed",
                    tool=name,
                    duration_ms=round(elapsed, 1),
                    is_error=is_error,
                    result_type=type(response).__name__,
                )
            return FunctionCallResult(name=name, response=response, is_error=is_error)
        except Exception as e:
            if self._audit:
                elapsed = (time.monotonic() - t0) * 1000
                audit_log.warning(
                    "tool_call_failed",
                    tool=name,
                    error=str(e),
                    duration_ms=round(elapsed, 1),
                )
            return FunctionCallResult(
                name=name,
                response={"error": f"Error executing {name}: {e}"},
                is_error=True,
            )

    @property
    def tool_names(self) -> list[str]:
        """Get list of registered tool names."""
        return list(self._tools.keys())

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: str) -> bool:
        return name in self._tools
