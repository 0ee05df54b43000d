"""Apply the side effect of a confirmed pending action."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Callable

from companion.agent.tools.lookup import clamp_int, parse_timestamp
from companion.agent.tools.queue import (
    ACTION_COMPLETE_DEADLINE,
    ACTION_CREATE_GOAL,
    ACTION_CREATE_HABIT,
    ACTION_CREATE_SCHEDULE_BLOCK,
    ACTION_SNOOZE_DEADLINE,
    WORKLOADS,
    trimmed,
)
from companion.chat.types import PendingAction
from companion.logging import get_logger

logger = get_logger(__name__)


@dataclass
class ActionExecutionResult:
    action_id: str
    action_type: str
    success: bool
    message: str
    record: dict[str, Any] | None = None


Handler = Callable[[PendingAction, Any], ActionExecutionResult]


def _result(action: PendingAction, success: bool, message: str, record: dict[str, Any] | None = None) -> ActionExecutionResult:
    return ActionExecutionResult(
        action_id=action.id,
        action_type=action.action_type,
        success=success,
        message=message,
        record=record,
    )


def _deadline_label(deadline: dict[str, Any]) -> str:
    return " ".join(p for p in (deadline.get("course"), deadline.get("task")) if p)


def _complete_deadline(action: PendingAction, store: Any) -> ActionExecutionResult:
    deadline_id = trimmed(action.payload.get("deadline_id"))
    if not deadline_id:
        return _result(action, False, "Invalid deadline action payload.")
    updated = store.update_deadline(deadline_id, completed=True)
    if not updated:
        return _result(action, False, "Deadline not found for completion.")
    return _result(action, True, f"Marked {_deadline_label(updated)} as completed.", updated)


def _snooze_deadline(action: PendingAction, store: Any) -> ActionExecutionResult:
    deadline_id = trimmed(action.payload.get("deadline_id"))
    if not deadline_id:
        return _result(action, False, "Invalid snooze action payload.")
    existing = store.get_deadline_by_id(deadline_id)
    if not existing:
        return _result(action, False, "Deadline not found for snooze.")
    due = parse_timestamp(existing.get("due_date"))
    if due is None:
        return _result(action, False, "Deadline due date is invalid.")
    hours = clamp_int(action.payload.get("snooze_hours"), 24, 1, 168)
    updated = store.update_deadline(deadline_id, due_date=(due + timedelta(hours=hours)).isoformat())
    if not updated:
        return _result(action, False, "Unable to snooze deadline.")
    return _result(action, True, f"Snoozed {_deadline_label(updated)} by {hours} hours.", updated)


def _create_schedule_block(action: PendingAction, store: Any) -> ActionExecutionResult:
    title = trimmed(action.payload.get("title"))
    start = parse_timestamp(action.payload.get("start_time"))
    if not title or not trimmed(action.payload.get("start_time")):
        return _result(action, False, "Invalid schedule block payload.")
    if start is None:
        return _result(action, False, "Schedule block start time is invalid.")
    workload = action.payload.get("workload")
    event = store.create_schedule_event(
        title=title,
        start_time=start.isoformat(),
        duration_minutes=clamp_int(action.payload.get("duration_minutes"), 60, 15, 240),
        workload=workload if workload in WORKLOADS else "medium",
    )
    return _result(action, True, f'Created schedule block "{title}".', event)


def _create_habit(action: PendingAction, store: Any) -> ActionExecutionResult:
    name = trimmed(action.payload.get("name"))
    if not name:
        return _result(action, False, "Habit name is missing.")
    habit = store.create_habit(name, trimmed(action.payload.get("cadence")) or "daily")
    return _result(action, True, f'Started tracking habit "{name}".', habit)


def _create_goal(action: PendingAction, store: Any) -> ActionExecutionResult:
    title = trimmed(action.payload.get("title"))
    if not title:
        return _result(action, False, "Goal title is missing.")
    target = action.payload.get("target_count")
    goal = store.create_goal(title, target if isinstance(target, int) else None)
    return _result(action, True, f'Created goal "{title}".', goal)


class MutationExecutor:
    """Dispatches a confirmed pending action to the handler for its action type."""

    def __init__(self) -> None:
        self._handlers: dict[str, Handler] = {
            ACTION_COMPLETE_DEADLINE: _complete_deadline,
            ACTION_SNOOZE_DEADLINE: _snooze_deadline,
            ACTION_CREATE_SCHEDULE_BLOCK: _create_schedule_block,
            ACTION_CREATE_HABIT: _create_habit,
            ACTION_CREATE_GOAL: _create_goal,
        }

    def register(self, action_type: str, handler: Handler) -> None:
        self._handlers[action_type] = handler

    def execute(self, action: PendingAction, store: Any) -> ActionExecutionResult:
        handler = self._handlers.get(action.action_type)
        if handler is None:
            return _result(action, False, "Unsupported pending action type.")
        result = handler(action, store)
        logger.info(
            "pending_action_executed",
            action_id=action.id,
            action_type=action.action_type,
            success=result.success,
        )
        return result
