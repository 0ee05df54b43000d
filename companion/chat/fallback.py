"""Deterministic replies for when the model cannot finish a turn."""

from __future__ import annotations

from typing import Sequence

from companion.chat.compaction import CompactionLimits
from companion.chat.shapers import ShaperRegistry
from companion.chat.types import ExecutedFunctionResponse, PendingAction

GENERIC_FAILURE_REPLY = "I couldn't complete that request. Please try again."
PENDING_ACTIONS_HEADER = "I prepared actions that need your confirmation before execution:"


def format_pending_actions(actions: Sequence[PendingAction]) -> str:
    lines = [PENDING_ACTIONS_HEADER]
    for action in actions:
        lines.append(f"- {action.summary}")
        lines.append(f"  Confirm: {action.confirm_command}")
        lines.append(f"  Cancel: {action.cancel_command}")
    return "\n".join(lines)


class FallbackSynthesizer:
    """
    Builds a reply from local tool results without another model call.

    Pending actions queued this turn take priority; otherwise each successful
    tool result contributes a section in call order. With nothing to show, the
    generic apology is returned.
    """

    def __init__(self, shapers: ShaperRegistry, limits: CompactionLimits):
        self.shapers = shapers
        self.limits = limits

    def synthesize(
        self,
        executed: Sequence[ExecutedFunctionResponse],
        pending_actions: Sequence[PendingAction] = (),
    ) -> str:
        if pending_actions:
            return format_pending_actions(pending_actions)

        sections: list[str] = []
        for result in executed:
            if result.is_error:
                continue
            section = self.shapers.get(result.name).fallback_section(result.raw_response, self.limits)
            if section and section not in sections:
                sections.append(section)
        if not sections:
            return GENERIC_FAILURE_REPLY
        return "\n\n".join(sections)
