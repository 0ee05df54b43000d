"""Tests for the standard tool set and ToolRegistry audit behavior."""

from datetime import datetime, timedelta, timezone
from typing import Any
from unittest.mock import patch

import pytest

from companion.agent.tools import Tool, ToolRegistry, create_standard_tool_registry
from companion.chat.store import DomainData, InMemoryStore

NOW = datetime(2026, 3, 2, 8, 0, tzinfo=timezone.utc)


def _store() -> InMemoryStore:
    data = DomainData(
        schedule_events=[
            {"id": "lecture-2", "title": "Networks", "start_time": (NOW + timedelta(hours=4)).isoformat(), "duration_minutes": 90},
            {"id": "lecture-1", "title": "Algorithms", "start_time": (NOW + timedelta(hours=1)).isoformat(), "duration_minutes": 45},
            {"id": "lecture-x", "title": "Tomorrow", "start_time": (NOW + timedelta(days=1)).isoformat(), "duration_minutes": 45},
        ],
        deadlines=[
            {"id": "deadline-1", "course": "DAT560", "task": "Assignment 2", "due_date": (NOW + timedelta(days=2)).isoformat(),
             "priority": "high", "completed": False},
            {"id": "deadline-2", "course": "DAT520", "task": "Lab 3", "due_date": (NOW + timedelta(days=30)).isoformat(),
             "priority": "medium", "completed": False},
            {"id": "deadline-0", "course": "DAT510", "task": "Old", "due_date": (NOW - timedelta(days=1)).isoformat(),
             "priority": "low", "completed": True},
        ],
        youtube_videos=[
            {"id": "vid-new", "title": "New", "channel_title": "Ch", "published_at": (NOW - timedelta(days=1)).isoformat()},
            {"id": "vid-old", "title": "Old", "channel_title": "Ch", "published_at": (NOW - timedelta(days=10)).isoformat()},
        ],
    )
    return InMemoryStore(data, clock=lambda: NOW)


class EchoTool(Tool):
    @property
    def name(self) -> str:
        return "echo"

    @property
    def description(self) -> str:
        return "echoes input"

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {"message": {"type": "string"}},
            "required": ["message"],
        }

    async def execute(self, store: Any, **kwargs: Any) -> Any:
        return {"echo": kwargs["message"]}


class FailTool(Tool):
    @property
    def name(self) -> str:
        return "fail"

    @property
    def description(self) -> str:
        return "always fails"

    @property
    def parameters(self) -> dict[str, Any]:
        return {"type": "object", "properties": {}}

    async def execute(self, store: Any, **kwargs: Any) -> Any:
        raise RuntimeError("boom")


class TestReadTools:
    @pytest.mark.asyncio
    async def test_schedule_is_today_only_and_sorted(self):
        result = await create_standard_tool_registry().execute("get_schedule", {}, _store())
        assert [e["id"] for e in result.response] == ["lecture-1", "lecture-2"]

    @pytest.mark.asyncio
    async def test_deadlines_window(self):
        registry = create_standard_tool_registry()
        soon = await registry.execute("get_deadlines", {}, _store())
        later = await registry.execute("get_deadlines", {"days_ahead": 60}, _store())
        assert [d["id"] for d in soon.response] == ["deadline-1"]
        assert [d["id"] for d in later.response] == ["deadline-1", "deadline-2"]

    @pytest.mark.asyncio
    async def test_social_digest_shape(self):
        result = await create_standard_tool_registry().execute("get_social_digest", {"days_back": 3}, _store())
        assert result.response["youtube"]["total"] == 1
        assert result.response["youtube"]["videos"][0]["id"] == "vid-new"
        assert result.response["x"] == {"tweets": [], "total": 0}

    @pytest.mark.asyncio
    async def test_search_requires_query(self):
        result = await create_standard_tool_registry().execute("search_documents", {"query": "  "}, _store())
        assert result.is_error is True


class TestQueueTools:
    @pytest.mark.asyncio
    async def test_snooze_is_queued_not_applied(self):
        store = _store()
        result = await create_standard_tool_registry().execute(
            "queue_deadline_action",
            {"deadline_id": "deadline-1", "action": "snooze", "snooze_hours": 500},
            store,
        )

        assert result.is_error is False
        assert result.response["requires_confirmation"] is True
        action_id = result.response["pending_action"]["id"]
        assert result.response["confirmation_command"] == f"confirm {action_id}"
        action = store.get_pending_action_by_id(action_id, NOW)
        assert action.action_type == "snooze-deadline"
        assert action.payload == {"deadline_id": "deadline-1", "snooze_hours": 168}
        assert store.get_deadline_by_id("deadline-1")["due_date"] == (NOW + timedelta(days=2)).isoformat()

    @pytest.mark.asyncio
    async def test_unknown_deadline_is_error_payload(self):
        result = await create_standard_tool_registry().execute(
            "queue_deadline_action", {"deadline_id": "nope", "action": "complete"}, _store()
        )
        assert result.is_error is True
        assert "not found" in result.response["error"]

    @pytest.mark.asyncio
    async def test_schedule_block_clamps_duration(self):
        store = _store()
        result = await create_standard_tool_registry().execute(
            "queue_schedule_block",
            {"title": "Study", "start_time": "2026-03-02T14:00:00+00:00", "duration_minutes": 5},
            store,
        )
        action = store.get_pending_action_by_id(result.response["pending_action"]["id"], NOW)
        assert action.payload["duration_minutes"] == 15
        assert action.payload["workload"] == "medium"

    @pytest.mark.asyncio
    async def test_invalid_enum_is_rejected_by_validation(self):
        result = await create_standard_tool_registry().execute(
            "queue_habit_goal", {"kind": "dream", "title": "x"}, _store()
        )
        assert result.is_error is True
        assert "Invalid parameters" in result.response["error"]

    def test_read_only_registry(self):
        registry = create_standard_tool_registry(include_queue_tools=False)
        assert "queue_deadline_action" not in registry
        assert len(registry) == 6


class TestRegistryAudit:
    @pytest.mark.asyncio
    async def test_success_logs_start_and_completion(self):
        registry = ToolRegistry()
        registry.register(EchoTool())
        with patch("companion.agent.tools.registry.audit_log") as mock_log:
            result = await registry.execute("echo", {"message": "hi"}, store=None)
        assert result.response == {"echo": "hi"}
        events = [c.args[0] for c in mock_log.info.call_args_list]
        assert events == ["tool_call_started", "tool_call_completed"]

    @pytest.mark.asyncio
    async def test_exception_becomes_error_result(self):
        registry = ToolRegistry()
        registry.register(FailTool())
        with patch("companion.agent.tools.registry.audit_log") as mock_log:
            result = await registry.execute("fail", {}, store=None)
        assert result.is_error is True
        assert "boom" in result.response["error"]
        assert mock_log.warning.call_args.args[0] == "tool_call_failed"

    @pytest.mark.asyncio
    async def test_unknown_tool(self):
        registry = ToolRegistry()
        result = await registry.execute("missing", {}, store=None)
        assert result.is_error is True
        assert "not found" in result.response["error"]

    @pytest.mark.asyncio
    async def test_audit_disabled(self):
        registry = ToolRegistry(audit=False)
        registry.register(EchoTool())
        with patch("companion.agent.tools.registry.audit_log") as mock_log:
            await registry.execute("echo", {"message": "hi"}, store=None)
        mock_log.info.assert_not_called()

    def test_definitions_are_openai_functions(self):
        definitions = create_standard_tool_registry().get_definitions()
        assert all(d["type"] == "function" for d in definitions)
        names = {d["function"]["name"] for d in definitions}
        assert {"get_schedule", "queue_habit_goal"} <= names

    def test_unregister(self):
        registry = create_standard_tool_registry()
        registry.unregister("search_documents")
        registry.unregister("missing")
        assert "search_documents" not in registry
        assert len(registry) == 8
