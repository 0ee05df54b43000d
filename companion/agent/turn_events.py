"""Typed turn-event payloads emitted by the turn controller to observers."""

from __future__ import annotations

import time
import uuid
from typing import Any, Awaitable, Callable, Literal, NotRequired, TypeAlias, TypedDict, cast

from companion.logging import get_logger

logger = get_logger(__name__)

TURN_EVENT_TURN_START = "turn_start"
TURN_EVENT_TOOL_START = "tool_start"
TURN_EVENT_TOOL_END = "tool_end"
TURN_EVENT_TURN_END = "turn_end"
TURN_EVENT_NAMESPACE = "companion.turn"
TURN_EVENT_SCHEMA_VERSION = 1

TurnEventType: TypeAlias = Literal[
    "turn_start",
    "tool_start",
    "tool_end",
    "turn_end",
]


class BaseTurnEvent(TypedDict):
    namespace: str
    version: int
    type: TurnEventType
    turn_id: str
    sequence: int
    timestamp_ms: int
    source: str


class TurnStartEvent(BaseTurnEvent):
    type: Literal["turn_start"]
    history_message_count: int
    max_tool_rounds: int
    function_calling: bool


class ToolStartEvent(BaseTurnEvent):
    type: Literal["tool_start"]
    round: int
    tool: str
    tool_call_id: str
    arguments: dict[str, Any]


class ToolEndEvent(BaseTurnEvent):
    type: Literal["tool_end"]
    round: int
    tool: str
    tool_call_id: str
    is_error: bool
    queued_action_id: str | None


class TurnEndEvent(BaseTurnEvent):
    type: Literal["turn_end"]
    rounds: int
    tool_count: int
    finish_reason: str | None
    citation_count: int
    pending_action_count: int
    round_limit_reached: NotRequired[bool]
    rate_limited: NotRequired[bool]


TurnEventPayload: TypeAlias = TurnStartEvent | ToolStartEvent | ToolEndEvent | TurnEndEvent
TurnEventCallback: TypeAlias = Callable[[TurnEventPayload], Awaitable[None]]


class TurnEventEmitter:
    """Stamps events with turn id, sequence and timestamp before forwarding them."""

    def __init__(self, on_event: TurnEventCallback | None, source: str = "turn_controller"):
        self.on_event = on_event
        self.source = source
        self.turn_id = f"turn_{uuid.uuid4().hex[:12]}"
        self.sequence = 0

    async def emit(self, payload: dict[str, Any]) -> None:
        if not self.on_event:
            return
        self.sequence += 1
        event = cast(TurnEventPayload, {
            "namespace": TURN_EVENT_NAMESPACE,
            "version": TURN_EVENT_SCHEMA_VERSION,
            "turn_id": self.turn_id,
            "sequence": self.sequence,
            "timestamp_ms": int(time.time() * 1000),
            "source": self.source,
            **payload,
        })
        logger.debug("turn_event_emitted", event_type=event.get("type"), **turn_event_trace_fields(event))
        await self.on_event(event)


def turn_event_trace_fields(event: TurnEventPayload) -> dict[str, Any]:
    """Common trace fields for event logging sinks."""
    return {
        "namespace": event.get("namespace"),
        "version": event.get("version"),
        "source": event.get("source"),
        "turn_id": event.get("turn_id"),
        "sequence": event.get("sequence"),
    }
