"""Chat data model: messages, metadata, pending actions, citations."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Literal, TypeAlias

from companion.providers.base import ToolCallRequest

Role: TypeAlias = Literal["user", "assistant"]
ExecutionStatus: TypeAlias = Literal["confirmed", "cancelled", "failed"]

# A tool call as emitted by the model.
ToolCall: TypeAlias = ToolCallRequest


@dataclass(frozen=True)
class Citation:
    """A user-visible source reference recomputed per turn from tool results."""
    id: str
    type: str
    label: str
    timestamp: str | None = None
    metadata: dict[str, Any] | None = None

    @property
    def key(self) -> str:
        return f"{self.type}:{self.id}"

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"id": self.id, "type": self.type, "label": self.label}
        if self.timestamp:
            data["timestamp"] = self.timestamp
        if self.metadata:
            data["metadata"] = dict(self.metadata)
        return data


@dataclass
class PendingAction:
    """A proposed mutation awaiting explicit user confirmation."""
    id: str
    action_type: str
    summary: str
    payload: dict[str, Any]
    created_at: datetime
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now

    @property
    def confirm_command(self) -> str:
        return f"confirm {self.id}"

    @property
    def cancel_command(self) -> str:
        return f"cancel {self.id}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "action_type": self.action_type,
            "summary": self.summary,
            "payload": dict(self.payload),
            "created_at": self.created_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
        }


@dataclass
class Usage:
    """Token usage summed across every round of a turn."""
    prompt_tokens: int = 0
    response_tokens: int = 0
    total_tokens: int = 0

    @classmethod
    def from_provider(cls, usage: dict[str, int] | None) -> Usage | None:
        if not usage:
            return None
        return cls(
            prompt_tokens=int(usage.get("prompt_tokens", 0) or 0),
            response_tokens=int(usage.get("completion_tokens", 0) or 0),
            total_tokens=int(usage.get("total_tokens", 0) or 0),
        )

    def add(self, other: Usage | None) -> Usage:
        if other is None:
            return self
        return Usage(
            prompt_tokens=self.prompt_tokens + other.prompt_tokens,
            response_tokens=self.response_tokens + other.response_tokens,
            total_tokens=self.total_tokens + other.total_tokens,
        )


@dataclass(frozen=True)
class ActionExecution:
    """Outcome of resolving a pending action from an action command."""
    action_id: str
    action_type: str
    status: ExecutionStatus
    message: str


@dataclass
class ConversationMetadata:
    """Optional bag attached to an assistant message."""
    context_window: str = ""
    finish_reason: str | None = None
    usage: Usage | None = None
    pending_actions: list[PendingAction] = field(default_factory=list)
    citations: list[Citation] = field(default_factory=list)
    action_execution: ActionExecution | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"context_window": self.context_window}
        if self.finish_reason is not None:
            data["finish_reason"] = self.finish_reason
        if self.usage is not None:
            data["usage"] = asdict(self.usage)
        if self.pending_actions:
            data["pending_actions"] = [a.to_dict() for a in self.pending_actions]
        if self.citations:
            data["citations"] = [c.to_dict() for c in self.citations]
        if self.action_execution is not None:
            data["action_execution"] = asdict(self.action_execution)
        return data


@dataclass(frozen=True)
class ImageAttachment:
    """An image sent along with a user message, as a data URL."""
    data_url: str
    mime_type: str = "image/png"
    name: str | None = None

    def to_content_part(self) -> dict[str, Any]:
        return {"type": "image_url", "image_url": {"url": self.data_url}}


@dataclass(frozen=True)
class ConversationMessage:
    """A persisted chat message. Immutable once recorded."""
    id: str
    role: Role
    content: str
    timestamp: datetime
    metadata: ConversationMetadata | None = None
    attachments: tuple[ImageAttachment, ...] = ()


@dataclass
class ExecutedFunctionResponse:
    """Full local tool result paired with the compacted form sent to the model."""
    name: str
    raw_response: Any
    model_response: Any
    is_error: bool = False


@dataclass
class HistoryPage:
    messages: list[ConversationMessage]
    page: int
    page_size: int
    total: int
    has_more: bool


@dataclass
class SendChatResult:
    reply: str
    user_message: ConversationMessage
    assistant_message: ConversationMessage
    citations: list[Citation]
    history: HistoryPage
    finish_reason: str | None = None
    usage: Usage | None = None
