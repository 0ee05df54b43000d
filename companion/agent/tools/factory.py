"""Helpers for creating the standard companion tool set."""

from __future__ import annotations

from companion.agent.tools.lookup import (
    GetDeadlinesTool,
    GetEmailsTool,
    GetHabitsGoalsTool,
    GetScheduleTool,
    GetSocialDigestTool,
    SearchDocumentsTool,
)
from companion.agent.tools.queue import QueueDeadlineActionTool, QueueHabitGoalTool, QueueScheduleBlockTool
from companion.agent.tools.registry import ToolRegistry


def create_standard_tool_registry(
    *,
    audit_tool_calls: bool = True,
    include_queue_tools: bool = True,
) -> ToolRegistry:
    """Create the default tool registry used by the turn controller."""
    registry = ToolRegistry(audit=audit_tool_calls)

    for cls in (
        GetScheduleTool,
        GetDeadlinesTool,
        GetEmailsTool,
        GetSocialDigestTool,
        GetHabitsGoalsTool,
        SearchDocumentsTool,
    ):
        registry.register(cls())

    if include_queue_tools:
        for cls in (QueueDeadlineActionTool, QueueScheduleBlockTool, QueueHabitGoalTool):
            registry.register(cls())

    return registry
