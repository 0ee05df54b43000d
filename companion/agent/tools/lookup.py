"""Read-only tools that fetch the user's data on demand."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

from companion.agent.tools.base import Tool


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO-8601 string into an aware UTC datetime; None if invalid."""
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        parsed = datetime.fromisoformat(value.strip())
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def clamp_int(value: Any, default: int, low: int, high: int) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return default
    return max(low, min(high, round(value)))


class GetScheduleTool(Tool):
    @property
    def name(self) -> str:
        return "get_schedule"

    @property
    def description(self) -> str:
        return (
            "Get today's lecture and study schedule. Returns events with start times, durations "
            "and workload. Use when the user asks about today's schedule or when they are free."
        )

    @property
    def parameters(self) -> dict[str, Any]:
        return {"type": "object", "properties": {}, "required": []}

    async def execute(self, store: Any, **kwargs: Any) -> list[dict[str, Any]]:
        today = store.now().date()
        events = []
        for event in store.get_schedule_events():
            start = parse_timestamp(event.get("start_time"))
            if start is not None and start.date() == today:
                events.append(event)
        events.sort(key=lambda e: e.get("start_time", ""))
        return events


class GetDeadlinesTool(Tool):
    @property
    def name(self) -> str:
        return "get_deadlines"

    @property
    def description(self) -> str:
        return (
            "Get upcoming deadlines with due dates, priority and completion status. "
            "Use when the user asks what is due soon."
        )

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "days_ahead": {
                    "type": "integer",
                    "description": "Number of days ahead to include (default: 14)",
                    "minimum": 0,
                    "maximum": 365,
                },
            },
            "required": [],
        }

    async def execute(self, store: Any, days_ahead: int = 14, **kwargs: Any) -> list[dict[str, Any]]:
        now = store.now()
        horizon = now + timedelta(days=clamp_int(days_ahead, 14, 0, 365))
        deadlines = []
        for deadline in store.get_deadlines():
            due = parse_timestamp(deadline.get("due_date"))
            if due is not None and now <= due <= horizon:
                deadlines.append(deadline)
        deadlines.sort(key=lambda d: d.get("due_date", ""))
        return deadlines


class GetEmailsTool(Tool):
    @property
    def name(self) -> str:
        return "get_emails"

    @property
    def description(self) -> str:
        return "Get recent email digests (subject, sender, snippet). Use when the user asks about their inbox."

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "limit": {
                    "type": "integer",
                    "description": "Maximum number of emails to return (default: 5)",
                    "minimum": 1,
                    "maximum": 50,
                },
            },
            "required": [],
        }

    async def execute(self, store: Any, limit: int = 5, **kwargs: Any) -> list[dict[str, Any]]:
        return store.get_email_digests(clamp_int(limit, 5, 1, 50))


class GetSocialDigestTool(Tool):
    @property
    def name(self) -> str:
        return "get_social_digest"

    @property
    def description(self) -> str:
        return (
            "Get recent YouTube videos from subscriptions and posts from followed X accounts. "
            "Use when the user asks about social media updates."
        )

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "days_back": {
                    "type": "integer",
                    "description": "Number of days to look back (default: 3)",
                    "minimum": 1,
                    "maximum": 30,
                },
            },
            "required": [],
        }

    async def execute(self, store: Any, days_back: int = 3, **kwargs: Any) -> dict[str, Any]:
        cutoff = store.now() - timedelta(days=clamp_int(days_back, 3, 1, 30))

        def _recent(items: list[dict[str, Any]], key: str) -> list[dict[str, Any]]:
            kept = []
            for item in items:
                stamp = parse_timestamp(item.get(key))
                if stamp is not None and stamp >= cutoff:
                    kept.append(item)
            return sorted(kept, key=lambda i: i.get(key, ""), reverse=True)

        videos = _recent(store.get_youtube_videos(), "published_at")
        posts = _recent(store.get_x_posts(), "created_at")
        return {
            "youtube": {"videos": videos, "total": len(videos)},
            "x": {"tweets": posts, "total": len(posts)},
        }


class GetHabitsGoalsTool(Tool):
    @property
    def name(self) -> str:
        return "get_habits_goals"

    @property
    def description(self) -> str:
        return "Get tracked habits (with streaks) and goals (with progress). Use for habit or goal check-ins."

    @property
    def parameters(self) -> dict[str, Any]:
        return {"type": "object", "properties": {}, "required": []}

    async def execute(self, store: Any, **kwargs: Any) -> dict[str, Any]:
        return {"habits": store.get_habits(), "goals": store.get_goals()}


class SearchDocumentsTool(Tool):
    @property
    def name(self) -> str:
        return "search_documents"

    @property
    def description(self) -> str:
        return (
            "Search synced course documents (lecture notes, slides, announcements) by keywords. "
            "Returns matching documents with short snippets."
        )

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "query": {"type": "string", "description": "Keywords to search for"},
                "limit": {
                    "type": "integer",
                    "description": "Maximum number of documents (default: 5)",
                    "minimum": 1,
                    "maximum": 20,
                },
            },
            "required": ["query"],
        }

    async def execute(self, store: Any, query: str = "", limit: int = 5, **kwargs: Any) -> Any:
        if not query.strip():
            return {"error": "query is required."}
        return store.search_documents(query.strip(), clamp_int(limit, 5, 1, 20))
