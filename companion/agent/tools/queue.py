"""Confirmation-gated tools: each queues a pending action instead of mutating data."""

from __future__ import annotations

from typing import Any

from companion.agent.tools.base import Tool
from companion.agent.tools.lookup import clamp_int, parse_timestamp
from companion.chat.types import PendingAction

ACTION_COMPLETE_DEADLINE = "complete-deadline"
ACTION_SNOOZE_DEADLINE = "snooze-deadline"
ACTION_CREATE_SCHEDULE_BLOCK = "create-schedule-block"
ACTION_CREATE_HABIT = "create-habit"
ACTION_CREATE_GOAL = "create-goal"

_QUEUED_MESSAGE = "Action queued. Ask the user for explicit confirmation before executing."
WORKLOADS = ("low", "medium", "high")


def trimmed(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    value = value.strip()
    return value or None


def pending_action_response(action: PendingAction, message: str = _QUEUED_MESSAGE) -> dict[str, Any]:
    """Tool result shape that surfaces a newly queued pending action."""
    return {
        "requires_confirmation": True,
        "pending_action": action.to_dict(),
        "confirmation_command": action.confirm_command,
        "cancel_command": action.cancel_command,
        "message": message,
    }


class QueueDeadlineActionTool(Tool):
    @property
    def name(self) -> str:
        return "queue_deadline_action"

    @property
    def description(self) -> str:
        return (
            "Queue completing or snoozing a deadline. REQUIRES explicit user confirmation before "
            "it is applied. Call get_deadlines first if you do not know the deadline id."
        )

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "deadline_id": {"type": "string", "description": "Deadline id to modify"},
                "action": {"type": "string", "enum": ["complete", "snooze"], "description": "complete or snooze"},
                "snooze_hours": {
                    "type": "integer",
                    "description": "Hours to delay when snoozing (default: 24)",
                },
            },
            "required": ["deadline_id", "action"],
        }

    async def execute(
        self,
        store: Any,
        deadline_id: str = "",
        action: str = "",
        snooze_hours: int = 24,
        **kwargs: Any,
    ) -> dict[str, Any]:
        deadline_id = trimmed(deadline_id) or ""
        action = (trimmed(action) or "").lower()
        if not deadline_id or not action:
            return {"error": "deadline_id and action are required."}

        deadline = store.get_deadline_by_id(deadline_id)
        if not deadline:
            return {"error": f"Deadline not found: {deadline_id}"}

        label = f"{deadline.get('course', '')} {deadline.get('task', '')}".strip()
        if action == "complete":
            pending = store.create_pending_action(
                ACTION_COMPLETE_DEADLINE,
                f"Mark {label} as completed",
                {"deadline_id": deadline_id},
            )
            return pending_action_response(pending)

        hours = clamp_int(snooze_hours, 24, 1, 168)
        pending = store.create_pending_action(
            ACTION_SNOOZE_DEADLINE,
            f"Snooze {label} by {hours} hours",
            {"deadline_id": deadline_id, "snooze_hours": hours},
        )
        return pending_action_response(pending)


class QueueScheduleBlockTool(Tool):
    @property
    def name(self) -> str:
        return "queue_schedule_block"

    @property
    def description(self) -> str:
        return "Queue creation of a study/schedule block. REQUIRES explicit user confirmation before it is created."

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "title": {"type": "string", "description": "Title for the block"},
                "start_time": {"type": "string", "description": "ISO 8601 datetime when the block starts"},
                "duration_minutes": {"type": "integer", "description": "Length in minutes (default: 60)"},
                "workload": {"type": "string", "enum": list(WORKLOADS), "description": "Workload level"},
            },
            "required": ["title", "start_time"],
        }

    async def execute(
        self,
        store: Any,
        title: str = "",
        start_time: str = "",
        duration_minutes: int = 60,
        workload: str = "medium",
        **kwargs: Any,
    ) -> dict[str, Any]:
        title_text = trimmed(title)
        if not title_text or not trimmed(start_time):
            return {"error": "title and start_time are required."}
        start = parse_timestamp(start_time)
        if start is None:
            return {"error": "start_time must be a valid ISO datetime."}

        minutes = clamp_int(duration_minutes, 60, 15, 240)
        level = workload if workload in WORKLOADS else "medium"
        pending = store.create_pending_action(
            ACTION_CREATE_SCHEDULE_BLOCK,
            f'Create schedule block "{title_text}" at {start.isoformat()} ({minutes} min)',
            {"title": title_text, "start_time": start.isoformat(), "duration_minutes": minutes, "workload": level},
        )
        return pending_action_response(pending)


class QueueHabitGoalTool(Tool):
    @property
    def name(self) -> str:
        return "queue_habit_goal"

    @property
    def description(self) -> str:
        return "Queue creation of a tracked habit or goal. REQUIRES explicit user confirmation."

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "kind": {"type": "string", "enum": ["habit", "goal"]},
                "title": {"type": "string", "description": "Habit name or goal title"},
                "cadence": {"type": "string", "description": "Habit cadence, e.g. daily or weekly"},
                "target_count": {"type": "integer", "description": "Goal target count"},
            },
            "required": ["kind", "title"],
        }

    async def execute(
        self,
        store: Any,
        kind: str = "",
        title: str = "",
        cadence: str = "daily",
        target_count: int | None = None,
        **kwargs: Any,
    ) -> dict[str, Any]:
        title_text = trimmed(title)
        if not title_text or kind not in ("habit", "goal"):
            return {"error": "kind (habit or goal) and title are required."}

        if kind == "habit":
            cadence_text = trimmed(cadence) or "daily"
            pending = store.create_pending_action(
                ACTION_CREATE_HABIT,
                f'Start tracking habit "{title_text}" ({cadence_text})',
                {"name": title_text, "cadence": cadence_text},
            )
        else:
            target = clamp_int(target_count, 1, 1, 1000) if target_count is not None else None
            suffix = f" (target {target})" if target else ""
            pending = store.create_pending_action(
                ACTION_CREATE_GOAL,
                f'Create goal "{title_text}"{suffix}',
                {"title": title_text, "target_count": target},
            )
        return pending_action_response(pending)
