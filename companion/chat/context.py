"""Context builder for assembling chat prompts."""

from __future__ import annotations

import json
from datetime import datetime, timedelta
from typing import Any, Sequence

from companion.agent.tools.lookup import parse_timestamp
from companion.chat.types import ConversationMessage, ImageAttachment
from companion.config.schema import ChatConfig

LEGACY_DEADLINE_WINDOW = timedelta(days=7)


def build_context_window(store: Any, now: datetime) -> str:
    """Pre-built data summary used when function calling is disabled."""
    today = now.date()
    schedule = []
    for event in store.get_schedule_events():
        start = parse_timestamp(event.get("start_time"))
        if start is not None and start.date() == today:
            schedule.append((start, event))
    schedule.sort(key=lambda pair: pair[0])

    deadlines = []
    for deadline in store.get_deadlines():
        due = parse_timestamp(deadline.get("due_date"))
        if due is not None and now <= due <= now + LEGACY_DEADLINE_WINDOW:
            deadlines.append((due, deadline))
    deadlines.sort(key=lambda pair: pair[0])

    parts: list[str] = []
    if schedule:
        parts.append("Today's schedule:")
        for start, event in schedule:
            parts.append(f"- {start.strftime('%H:%M')}: {event.get('title', '')} ({event.get('duration_minutes', '?')} min)")
    if deadlines:
        if parts:
            parts.append("")
        parts.append("Upcoming deadlines:")
        for due, deadline in deadlines:
            status = "done" if deadline.get("completed") else "open"
            parts.append(
                f"- [{deadline.get('id')}] {deadline.get('course', '')}: {deadline.get('task', '')} "
                f"(due {due.isoformat()}, priority {deadline.get('priority', 'medium')}, {status})"
            )
    return "\n".join(parts)


class ChatContextBuilder:
    """Builds the system instruction and the OpenAI-format message list for a turn."""

    def __init__(self, config: ChatConfig):
        self.config = config

    def build_system_instruction(
        self,
        *,
        now: datetime,
        context_window: str = "",
        summary: str = "",
    ) -> str:
        name = self.config.user_name
        parts = [
            f"You are {self.config.assistant_name}, a personal assistant for {name}, a university student.",
            f"The current time is {now.isoformat()}.",
        ]
        if self.config.use_function_calling:
            parts.append(
                f"When you need information about {name}'s schedule, deadlines, emails, social feeds, "
                "habits, goals or notes, use the available tools to fetch it on demand. "
                "For anything that changes data, use a queue_* tool and clearly ask for explicit "
                "confirmation; never claim a change was made before it is confirmed."
            )
        else:
            parts.append(context_window or "No schedule or deadline data is available right now.")
            parts.append(
                "Deadline ids in brackets can be referred to directly when the user asks about a deadline."
            )
        parts.append("Keep responses concise, encouraging and conversational.")
        if summary:
            parts.append(f"Earlier conversation summary:\n{summary}")
        return "\n\n".join(parts)

    @staticmethod
    def build_user_content(
        text: str,
        attachments: Sequence[ImageAttachment] | None = None,
    ) -> str | list[dict[str, Any]]:
        """User content with optional image parts ahead of the text."""
        if not attachments:
            return text
        return [a.to_content_part() for a in attachments] + [{"type": "text", "text": text}]

    def build_messages(
        self,
        system_instruction: str,
        history: Sequence[ConversationMessage],
        user_input: str,
        attachments: Sequence[ImageAttachment] | None = None,
    ) -> list[dict[str, Any]]:
        messages: list[dict[str, Any]] = [{"role": "system", "content": system_instruction}]
        for message in history:
            if not message.content and not message.attachments:
                continue
            content = (
                self.build_user_content(message.content, message.attachments)
                if message.role == "user"
                else message.content
            )
            messages.append({"role": message.role, "content": content})
        messages.append({"role": "user", "content": self.build_user_content(user_input, attachments)})
        return messages

    @staticmethod
    def add_assistant_tool_calls(
        messages: list[dict[str, Any]],
        content: str | None,
        tool_calls: Sequence[Any],
        reasoning_content: str | None = None,
    ) -> list[dict[str, Any]]:
        msg: dict[str, Any] = {
            "role": "assistant",
            # Some providers reject assistant messages without a content key.
            "content": content,
            "tool_calls": [
                {
                    "id": tc.id,
                    "type": "function",
                    "function": {"name": tc.name, "arguments": json.dumps(tc.arguments, ensure_ascii=False)},
                }
                for tc in tool_calls
            ],
        }
        if reasoning_content is not None:
            msg["reasoning_content"] = reasoning_content
        messages.append(msg)
        return messages

    @staticmethod
    def add_tool_result(
        messages: list[dict[str, Any]],
        tool_call_id: str,
        tool_name: str,
        model_response: Any,
    ) -> list[dict[str, Any]]:
        messages.append(
            {
                "role": "tool",
                "tool_call_id": tool_call_id,
                "name": tool_name,
                "content": json.dumps(model_response, ensure_ascii=False, default=str),
            }
        )
        return messages
