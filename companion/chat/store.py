"""Conversation persistence contract and an in-memory reference store."""

from __future__ import annotations

import copy
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Protocol

from companion.chat.types import (
    ConversationMessage,
    ConversationMetadata,
    HistoryPage,
    ImageAttachment,
    PendingAction,
    Role,
)
from companion.config.schema import ChatConfig
from companion.logging import get_logger

logger = get_logger(__name__)

DEFAULT_PENDING_ACTION_TTL = timedelta(hours=2)
MAX_HISTORY_PAGE_SIZE = 50


def make_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ChatStore(Protocol):
    """What the turn controller needs from persistence."""

    def record_message(
        self,
        role: Role,
        content: str,
        metadata: ConversationMetadata | None = None,
        attachments: list[ImageAttachment] | None = None,
    ) -> ConversationMessage: ...

    def get_recent_messages(self, limit: int) -> list[ConversationMessage]: ...

    def count_messages(self) -> int: ...

    def get_pending_actions(self, now: datetime) -> list[PendingAction]: ...

    def get_pending_action_by_id(self, action_id: str, now: datetime) -> PendingAction | None: ...

    def create_pending_action(
        self,
        action_type: str,
        summary: str,
        payload: dict[str, Any],
        expires_at: datetime | None = None,
    ) -> PendingAction: ...

    def delete_pending_action(self, action_id: str) -> bool: ...

    def get_history_page(self, page: int = 1, page_size: int = 20) -> HistoryPage: ...

    def now(self) -> datetime: ...


@dataclass
class DomainData:
    """Raw domain records the read tools expose. Records are plain dicts."""
    schedule_events: list[dict[str, Any]] = field(default_factory=list)
    deadlines: list[dict[str, Any]] = field(default_factory=list)
    emails: list[dict[str, Any]] = field(default_factory=list)
    youtube_videos: list[dict[str, Any]] = field(default_factory=list)
    x_posts: list[dict[str, Any]] = field(default_factory=list)
    habits: list[dict[str, Any]] = field(default_factory=list)
    goals: list[dict[str, Any]] = field(default_factory=list)
    documents: list[dict[str, Any]] = field(default_factory=list)


class InMemoryStore:
    """
    Single-process store for chat messages, pending actions and domain data.

    Messages are append-only and pruned oldest-first past ``max_messages``.
    Expired pending actions are pruned on every pending-action read.
    """

    def __init__(
        self,
        data: DomainData | None = None,
        *,
        max_messages: int = 500,
        pending_action_ttl: timedelta = DEFAULT_PENDING_ACTION_TTL,
        clock: Any = None,
    ) -> None:
        self.data = data or DomainData()
        self.max_messages = max_messages
        self.pending_action_ttl = pending_action_ttl
        self._clock = clock or utcnow
        self._messages: deque[ConversationMessage] = deque()
        self._pending: dict[str, PendingAction] = {}

    @classmethod
    def from_config(cls, config: ChatConfig, data: DomainData | None = None, *, clock: Any = None) -> "InMemoryStore":
        return cls(
            data,
            pending_action_ttl=timedelta(minutes=config.pending_action_ttl_minutes),
            clock=clock,
        )

    def now(self) -> datetime:
        return self._clock()

    # -- chat messages -------------------------------------------------

    def record_message(
        self,
        role: Role,
        content: str,
        metadata: ConversationMetadata | None = None,
        attachments: list[ImageAttachment] | None = None,
    ) -> ConversationMessage:
        message = ConversationMessage(
            id=make_id("chat"),
            role=role,
            content=content,
            timestamp=self._clock(),
            metadata=metadata,
            attachments=tuple(attachments or ()),
        )
        self._messages.append(message)
        while len(self._messages) > self.max_messages:
            self._messages.popleft()
        return message

    def get_recent_messages(self, limit: int) -> list[ConversationMessage]:
        if limit <= 0:
            return []
        return list(self._messages)[-limit:]

    def count_messages(self) -> int:
        return len(self._messages)

    def get_history_page(self, page: int = 1, page_size: int = 20) -> HistoryPage:
        page = max(1, page)
        page_size = max(1, min(page_size, MAX_HISTORY_PAGE_SIZE))
        newest_first = list(reversed(self._messages))
        offset = (page - 1) * page_size
        messages = newest_first[offset:offset + page_size]
        return HistoryPage(
            messages=messages,
            page=page,
            page_size=page_size,
            total=len(newest_first),
            has_more=offset + len(messages) < len(newest_first),
        )

    # -- pending actions -----------------------------------------------

    def _prune_expired(self, now: datetime) -> None:
        expired = [action_id for action_id, action in self._pending.items() if action.is_expired(now)]
        for action_id in expired:
            del self._pending[action_id]
        if expired:
            logger.debug("pending_actions_pruned", count=len(expired))

    def create_pending_action(
        self,
        action_type: str,
        summary: str,
        payload: dict[str, Any],
        expires_at: datetime | None = None,
    ) -> PendingAction:
        created_at = self._clock()
        action = PendingAction(
            id=make_id("action"),
            action_type=action_type,
            summary=summary,
            payload=dict(payload),
            created_at=created_at,
            expires_at=expires_at or created_at + self.pending_action_ttl,
        )
        self._pending[action.id] = action
        return action

    def get_pending_actions(self, now: datetime) -> list[PendingAction]:
        self._prune_expired(now)
        return list(self._pending.values())

    def get_pending_action_by_id(self, action_id: str, now: datetime) -> PendingAction | None:
        self._prune_expired(now)
        return self._pending.get(action_id)

    def delete_pending_action(self, action_id: str) -> bool:
        return self._pending.pop(action_id, None) is not None

    # -- domain data ---------------------------------------------------

    def get_schedule_events(self) -> list[dict[str, Any]]:
        return copy.deepcopy(self.data.schedule_events)

    def create_schedule_event(self, **fields: Any) -> dict[str, Any]:
        event = {"id": make_id("lecture"), **fields}
        self.data.schedule_events.append(event)
        return copy.deepcopy(event)

    def get_deadlines(self) -> list[dict[str, Any]]:
        return copy.deepcopy(self.data.deadlines)

    def get_deadline_by_id(self, deadline_id: str) -> dict[str, Any] | None:
        for deadline in self.data.deadlines:
            if deadline.get("id") == deadline_id:
                return copy.deepcopy(deadline)
        return None

    def update_deadline(self, deadline_id: str, **changes: Any) -> dict[str, Any] | None:
        for deadline in self.data.deadlines:
            if deadline.get("id") == deadline_id:
                deadline.update(changes)
                return copy.deepcopy(deadline)
        return None

    def get_email_digests(self, limit: int) -> list[dict[str, Any]]:
        ordered = sorted(self.data.emails, key=lambda e: str(e.get("received_at", "")), reverse=True)
        return copy.deepcopy(ordered[:max(0, limit)])

    def get_youtube_videos(self) -> list[dict[str, Any]]:
        return copy.deepcopy(self.data.youtube_videos)

    def get_x_posts(self) -> list[dict[str, Any]]:
        return copy.deepcopy(self.data.x_posts)

    def get_habits(self) -> list[dict[str, Any]]:
        return copy.deepcopy(self.data.habits)

    def create_habit(self, name: str, cadence: str = "daily", **fields: Any) -> dict[str, Any]:
        habit = {"id": make_id("habit"), "name": name, "cadence": cadence, "streak": 0, **fields}
        self.data.habits.append(habit)
        return copy.deepcopy(habit)

    def get_goals(self) -> list[dict[str, Any]]:
        return copy.deepcopy(self.data.goals)

    def create_goal(self, title: str, target_count: int | None = None, **fields: Any) -> dict[str, Any]:
        goal = {"id": make_id("goal"), "title": title, "progress_count": 0, "target_count": target_count, **fields}
        self.data.goals.append(goal)
        return copy.deepcopy(goal)

    def search_documents(self, query: str, limit: int) -> list[dict[str, Any]]:
        terms = [t for t in query.lower().split() if t]
        scored: list[tuple[int, dict[str, Any]]] = []
        for doc in self.data.documents:
            haystack = " ".join(
                str(doc.get(k, "")) for k in ("title", "course", "content", "snippet")
            ).lower()
            score = sum(haystack.count(term) for term in terms) if terms else 1
            if score > 0:
                scored.append((score, doc))
        scored.sort(key=lambda pair: pair[0], reverse=True)
        return copy.deepcopy([doc for _, doc in scored[:max(0, limit)]])
