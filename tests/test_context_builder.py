import json
from datetime import datetime, timedelta, timezone

import pytest

from companion.chat.context import ChatContextBuilder, build_context_window
from companion.chat.store import DomainData, InMemoryStore
from companion.chat.streaming import ChunkForwarder, chunk_text
from companion.chat.types import ToolCall
from companion.config.schema import ChatConfig

NOW = datetime(2026, 3, 2, 8, 0, tzinfo=timezone.utc)


def test_tool_mode_instruction_mentions_tools_and_summary() -> None:
    builder = ChatContextBuilder(ChatConfig(user_name="Kari"))
    text = builder.build_system_instruction(now=NOW, summary="Objectives:\n- pass DAT560")

    assert "Kari" in text
    assert NOW.isoformat() in text
    assert "queue_*" in text
    assert text.endswith("Earlier conversation summary:\nObjectives:\n- pass DAT560")


def test_legacy_instruction_embeds_window() -> None:
    builder = ChatContextBuilder(ChatConfig(use_function_calling=False))
    assert "No schedule or deadline data" in builder.build_system_instruction(now=NOW)
    assert "- [deadline-1]" in builder.build_system_instruction(now=NOW, context_window="- [deadline-1] x")


def test_context_window_covers_today_and_next_week() -> None:
    data = DomainData(
        schedule_events=[
            {"id": "lecture-1", "title": "Algorithms", "start_time": (NOW + timedelta(hours=2)).isoformat(), "duration_minutes": 45},
            {"id": "lecture-2", "title": "Tomorrow", "start_time": (NOW + timedelta(days=1)).isoformat()},
        ],
        deadlines=[
            {"id": "deadline-1", "course": "DAT560", "task": "Assignment 2", "due_date": (NOW + timedelta(days=3)).isoformat(),
             "priority": "high", "completed": False},
            {"id": "deadline-9", "course": "DAT520", "task": "Exam", "due_date": (NOW + timedelta(days=30)).isoformat()},
        ],
    )
    window = build_context_window(InMemoryStore(data, clock=lambda: NOW), NOW)

    assert window.startswith("Today's schedule:\n- 10:00: Algorithms (45 min)")
    assert "Tomorrow" not in window
    assert "- [deadline-1] DAT560: Assignment 2" in window
    assert "priority high, open" in window
    assert "deadline-9" not in window


def test_tool_call_and_result_messages() -> None:
    messages: list[dict] = []
    ChatContextBuilder.add_assistant_tool_calls(messages, None, [ToolCall(id="c1", name="get_schedule", arguments={"x": 1})])
    ChatContextBuilder.add_tool_result(messages, "c1", "get_schedule", {"events": [], "total": 0})

    assert messages[0]["content"] is None
    assert "reasoning_content" not in messages[0]
    assert json.loads(messages[0]["tool_calls"][0]["function"]["arguments"]) == {"x": 1}
    assert messages[1] == {
        "role": "tool",
        "tool_call_id": "c1",
        "name": "get_schedule",
        "content": '{"events": [], "total": 0}',
    }


def test_chunk_text() -> None:
    assert list(chunk_text("abcdefg", 3)) == ["abc", "def", "g"]
    assert list(chunk_text("", 3)) == []
    with pytest.raises(ValueError):
        list(chunk_text("abc", 0))


@pytest.mark.asyncio
async def test_forwarder_skips_rechunk_when_reply_was_streamed() -> None:
    sent = []
    forwarder = ChunkForwarder(sent.append, chunk_size=4)
    forwarder.reset_round()
    await forwarder.send("Hello ")
    await forwarder.send("there")
    await forwarder.finish("Hello there\n")

    assert sent == ["Hello ", "there"]


@pytest.mark.asyncio
async def test_forwarder_disabled_without_callback() -> None:
    forwarder = ChunkForwarder(None)
    await forwarder.send("ignored")
    await forwarder.finish("ignored")
    assert forwarder.enabled is False
    assert forwarder.total_chars == 0
