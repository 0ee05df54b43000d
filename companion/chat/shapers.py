"""
Per-tool result shaping.

Each tool name maps to a shaper that knows how to compact the raw result for the
model, derive citations from it, and render a plain-text fallback section. Unknown
tools fall back to the generic shaper.
"""

from __future__ import annotations

from typing import Any, Callable

from companion.agent.tools.lookup import parse_timestamp
from companion.chat.compaction import CompactionLimits, compact_list, compact_value, pick, truncate_text
from companion.chat.types import Citation

LABEL_MAX_CHARS = 80


def is_error_result(raw: Any) -> bool:
    return isinstance(raw, dict) and "error" in raw


def _records(value: Any) -> list[dict[str, Any]]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, dict)]


def _text(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def _label(*parts: Any) -> str:
    return truncate_text(" ".join(p for p in (_text(x) for x in parts) if p), LABEL_MAX_CHARS)


def _citation(
    record: dict[str, Any],
    kind: str,
    label: str,
    timestamp_key: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> Citation | None:
    record_id = _text(record.get("id"))
    if not record_id or not label:
        return None
    stamp = _text(record.get(timestamp_key)) if timestamp_key else ""
    return Citation(id=record_id, type=kind, label=label, timestamp=stamp or None, metadata=metadata)


def _when(value: Any, fmt: str = "%a %b %d %H:%M") -> str:
    parsed = parse_timestamp(value)
    return parsed.strftime(fmt) if parsed else _text(value)


def _bulleted(title: str, lines: list[str], total: int, limits: CompactionLimits) -> str:
    shown = lines[: limits.max_items]
    body = [title] + [f"- {line}" for line in shown]
    if total > len(shown):
        body.append(f"+{total - len(shown)} more")
    return "\n".join(body)


class ToolShaper:
    """Generic handling for any tool without a dedicated shaper."""

    def compact(self, raw: Any, limits: CompactionLimits) -> Any:
        if is_error_result(raw):
            return {"error": truncate_text(str(raw["error"]), limits.max_string_chars)}
        # Final pass bounds whatever a shaper produced.
        return compact_value(self.shape(raw, limits), limits)

    def shape(self, raw: Any, limits: CompactionLimits) -> Any:
        return compact_value(raw, limits)

    def citations(self, raw: Any, store: Any = None) -> list[Citation]:
        return []

    def fallback_section(self, raw: Any, limits: CompactionLimits) -> str | None:
        if isinstance(raw, dict) and _text(raw.get("message")):
            return truncate_text(_text(raw["message"]), limits.max_string_chars)
        return None


class ScheduleShaper(ToolShaper):
    fields = ("id", "title", "start_time", "duration_minutes", "workload")

    def shape(self, raw: Any, limits: CompactionLimits) -> Any:
        events = _records(raw)
        return compact_list(events, limits, key="events", project=lambda e: pick(e, self.fields))

    def citations(self, raw: Any, store: Any = None) -> list[Citation]:
        found = []
        for event in _records(raw):
            label = _label(event.get("title"))
            if label and event.get("start_time"):
                label = f"{label} ({_when(event.get('start_time'), '%H:%M')})"
            found.append(_citation(event, "schedule", label, "start_time"))
        return [c for c in found if c]

    def fallback_section(self, raw: Any, limits: CompactionLimits) -> str | None:
        events = _records(raw)
        if not events:
            return "You have nothing scheduled today."
        lines = []
        for event in events:
            line = f"{_when(event.get('start_time'), '%H:%M')} {_text(event.get('title'))}".strip()
            if event.get("duration_minutes"):
                line += f" ({event['duration_minutes']} min)"
            lines.append(line)
        return _bulleted("Today's schedule:", lines, len(events), limits)


class DeadlineShaper(ToolShaper):
    fields = ("id", "course", "task", "due_date", "priority", "completed")

    def shape(self, raw: Any, limits: CompactionLimits) -> Any:
        deadlines = _records(raw)
        return compact_list(deadlines, limits, key="deadlines", project=lambda d: pick(d, self.fields))

    def citations(self, raw: Any, store: Any = None) -> list[Citation]:
        found = [
            _citation(d, "deadline", _label(d.get("course"), d.get("task")), "due_date")
            for d in _records(raw)
        ]
        return [c for c in found if c]

    def fallback_section(self, raw: Any, limits: CompactionLimits) -> str | None:
        deadlines = _records(raw)
        if not deadlines:
            return "No upcoming deadlines."
        lines = []
        for deadline in deadlines:
            line = f"{_label(deadline.get('course'), deadline.get('task'))} (due {_when(deadline.get('due_date'))})"
            if deadline.get("completed"):
                line += " [done]"
            lines.append(line)
        return _bulleted("Upcoming deadlines:", lines, len(deadlines), limits)


class EmailShaper(ToolShaper):
    fields = ("id", "subject", "from", "snippet", "received_at")

    def shape(self, raw: Any, limits: CompactionLimits) -> Any:
        emails = _records(raw)
        return compact_list(emails, limits, key="emails", project=lambda e: pick(e, self.fields))

    def citations(self, raw: Any, store: Any = None) -> list[Citation]:
        found = [
            _citation(e, "email", _label(e.get("subject")), "received_at", {"from": e["from"]} if e.get("from") else None)
            for e in _records(raw)
        ]
        return [c for c in found if c]

    def fallback_section(self, raw: Any, limits: CompactionLimits) -> str | None:
        emails = _records(raw)
        if not emails:
            return "No recent emails."
        lines = [f"{_label(e.get('subject'))} from {_text(e.get('from')) or 'unknown sender'}" for e in emails]
        return _bulleted("Recent emails:", lines, len(emails), limits)


class SocialDigestShaper(ToolShaper):
    video_fields = ("id", "title", "channel_title", "published_at")
    post_fields = ("id", "text", "author_username", "created_at")

    @staticmethod
    def _split(raw: Any) -> tuple[list[dict[str, Any]], list[dict[str, Any]]]:
        if not isinstance(raw, dict):
            return [], []
        youtube = raw.get("youtube") if isinstance(raw.get("youtube"), dict) else {}
        x = raw.get("x") if isinstance(raw.get("x"), dict) else {}
        return _records(youtube.get("videos")), _records(x.get("tweets"))

    def shape(self, raw: Any, limits: CompactionLimits) -> Any:
        videos, posts = self._split(raw)
        return {
            "youtube": compact_list(videos, limits, key="videos", project=lambda v: pick(v, self.video_fields)),
            "x": compact_list(posts, limits, key="tweets", project=lambda p: pick(p, self.post_fields)),
        }

    def citations(self, raw: Any, store: Any = None) -> list[Citation]:
        videos, posts = self._split(raw)
        found = [
            _citation(v, "social-youtube", _label(v.get("title")), "published_at",
                      {"channel": v["channel_title"]} if v.get("channel_title") else None)
            for v in videos
        ]
        found += [
            _citation(p, "social-x", _label(f"@{_text(p.get('author_username'))}:" if p.get("author_username") else "", p.get("text")),
                      "created_at")
            for p in posts
        ]
        return [c for c in found if c]

    def fallback_section(self, raw: Any, limits: CompactionLimits) -> str | None:
        videos, posts = self._split(raw)
        if not videos and not posts:
            return "Nothing new on your social feeds."
        sections = []
        if videos:
            lines = [f"{_label(v.get('title'))} ({_text(v.get('channel_title')) or 'YouTube'})" for v in videos]
            sections.append(_bulleted("New videos:", lines, len(videos), limits))
        if posts:
            lines = [f"@{_text(p.get('author_username'))}: {_label(p.get('text'))}" for p in posts]
            sections.append(_bulleted("Recent posts:", lines, len(posts), limits))
        return "\n".join(sections)


class HabitsGoalsShaper(ToolShaper):
    habit_fields = ("id", "name", "cadence", "streak")
    goal_fields = ("id", "title", "progress_count", "target_count")

    @staticmethod
    def _split(raw: Any) -> tuple[list[dict[str, Any]], list[dict[str, Any]]]:
        if not isinstance(raw, dict):
            return [], []
        return _records(raw.get("habits")), _records(raw.get("goals"))

    def shape(self, raw: Any, limits: CompactionLimits) -> Any:
        habits, goals = self._split(raw)
        shaped = compact_list(habits, limits, key="habits", project=lambda h: pick(h, self.habit_fields))
        goal_part = compact_list(goals, limits, key="goals", project=lambda g: pick(g, self.goal_fields))
        return {
            "habits": shaped["habits"],
            "habits_total": shaped["total"],
            "goals": goal_part["goals"],
            "goals_total": goal_part["total"],
            **({"truncated": True} if shaped.get("truncated") or goal_part.get("truncated") else {}),
        }

    def citations(self, raw: Any, store: Any = None) -> list[Citation]:
        habits, goals = self._split(raw)
        found = [_citation(h, "habit", _label(h.get("name"))) for h in habits]
        found += [_citation(g, "goal", _label(g.get("title"))) for g in goals]
        return [c for c in found if c]

    def fallback_section(self, raw: Any, limits: CompactionLimits) -> str | None:
        habits, goals = self._split(raw)
        if not habits and not goals:
            return "You are not tracking any habits or goals yet."
        sections = []
        if habits:
            lines = [f"{_label(h.get('name'))}: {int(h.get('streak') or 0)}-day streak" for h in habits]
            sections.append(_bulleted("Habits:", lines, len(habits), limits))
        if goals:
            lines = []
            for goal in goals:
                progress = f"{int(goal.get('progress_count') or 0)}"
                if goal.get("target_count"):
                    progress += f"/{goal['target_count']}"
                lines.append(f"{_label(goal.get('title'))} ({progress})")
            sections.append(_bulleted("Goals:", lines, len(goals), limits))
        return "\n".join(sections)


class DocumentShaper(ToolShaper):
    fields = ("id", "title", "course", "snippet", "url", "updated_at")

    def shape(self, raw: Any, limits: CompactionLimits) -> Any:
        documents = _records(raw)
        return compact_list(documents, limits, key="documents", project=lambda d: pick(d, self.fields))

    def citations(self, raw: Any, store: Any = None) -> list[Citation]:
        found = [
            _citation(d, "document", _label(d.get("title")), "updated_at", {"url": d["url"]} if d.get("url") else None)
            for d in _records(raw)
        ]
        return [c for c in found if c]

    def fallback_section(self, raw: Any, limits: CompactionLimits) -> str | None:
        documents = _records(raw)
        if not documents:
            return "No matching notes or documents."
        lines = [_label(d.get("title"), f"({_text(d.get('course'))})" if d.get("course") else "") for d in documents]
        return _bulleted("Relevant documents:", lines, len(documents), limits)


class QueuedActionShaper(ToolShaper):
    """Shapes results of confirmation-gated tools."""

    def shape(self, raw: Any, limits: CompactionLimits) -> Any:
        if not isinstance(raw, dict):
            return compact_value(raw, limits)
        action = raw.get("pending_action") if isinstance(raw.get("pending_action"), dict) else {}
        return compact_value(
            {
                "requires_confirmation": bool(raw.get("requires_confirmation")),
                "pending_action": pick(action, ("id", "action_type", "summary", "expires_at")),
                "confirmation_command": raw.get("confirmation_command"),
                "cancel_command": raw.get("cancel_command"),
                "message": raw.get("message"),
            },
            limits,
        )

    def citations(self, raw: Any, store: Any = None) -> list[Citation]:
        if not isinstance(raw, dict) or store is None:
            return []
        action = raw.get("pending_action") if isinstance(raw.get("pending_action"), dict) else {}
        payload = action.get("payload") if isinstance(action.get("payload"), dict) else {}
        deadline_id = _text(payload.get("deadline_id"))
        if not deadline_id:
            return []
        deadline = store.get_deadline_by_id(deadline_id)
        if not deadline:
            return []
        citation = _citation(deadline, "deadline", _label(deadline.get("course"), deadline.get("task")), "due_date")
        return [citation] if citation else []

    def fallback_section(self, raw: Any, limits: CompactionLimits) -> str | None:
        if not isinstance(raw, dict):
            return None
        action = raw.get("pending_action") if isinstance(raw.get("pending_action"), dict) else {}
        summary = _text(action.get("summary"))
        if not summary:
            return None
        return f"Queued for confirmation: {summary} ({_text(raw.get('confirmation_command'))})"


class ShaperRegistry:
    """Tool name to shaper lookup with a generic default."""

    def __init__(self, default: ToolShaper | None = None):
        self._shapers: dict[str, ToolShaper] = {}
        self._default = default or ToolShaper()

    def register(self, tool_name: str, shaper: ToolShaper) -> None:
        self._shapers[tool_name] = shaper

    def get(self, tool_name: str) -> ToolShaper:
        return self._shapers.get(tool_name, self._default)

    def __contains__(self, tool_name: str) -> bool:
        return tool_name in self._shapers


_STANDARD: dict[str, Callable[[], ToolShaper]] = {
    "get_schedule": ScheduleShaper,
    "get_deadlines": DeadlineShaper,
    "get_emails": EmailShaper,
    "get_social_digest": SocialDigestShaper,
    "get_habits_goals": HabitsGoalsShaper,
    "search_documents": DocumentShaper,
    "queue_deadline_action": QueuedActionShaper,
    "queue_schedule_block": QueuedActionShaper,
    "queue_habit_goal": QueuedActionShaper,
}


def create_standard_shapers() -> ShaperRegistry:
    registry = ShaperRegistry()
    for tool_name, factory in _STANDARD.items():
        registry.register(tool_name, factory())
    return registry
