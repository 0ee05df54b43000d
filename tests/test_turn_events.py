import pytest

from companion.agent.turn_events import (
    TURN_EVENT_NAMESPACE,
    TURN_EVENT_SCHEMA_VERSION,
    TURN_EVENT_TOOL_START,
    TURN_EVENT_TURN_START,
    TurnEventEmitter,
    turn_event_trace_fields,
)


@pytest.mark.asyncio
async def test_emitter_stamps_and_sequences_events() -> None:
    received = []

    async def sink(event):
        received.append(event)

    emitter = TurnEventEmitter(sink)
    await emitter.emit({"type": TURN_EVENT_TURN_START, "history_message_count": 3})
    await emitter.emit({"type": TURN_EVENT_TOOL_START, "round": 1, "tool": "get_schedule"})

    assert [e["sequence"] for e in received] == [1, 2]
    assert received[0]["namespace"] == TURN_EVENT_NAMESPACE
    assert received[0]["version"] == TURN_EVENT_SCHEMA_VERSION
    assert received[0]["source"] == "turn_controller"
    assert received[0]["turn_id"] == received[1]["turn_id"] == emitter.turn_id
    assert received[1]["tool"] == "get_schedule"
    assert isinstance(received[0]["timestamp_ms"], int)


@pytest.mark.asyncio
async def test_emitter_without_callback_is_noop() -> None:
    emitter = TurnEventEmitter(None)
    await emitter.emit({"type": TURN_EVENT_TURN_START})
    assert emitter.sequence == 0


def test_trace_fields() -> None:
    event = {
        "namespace": TURN_EVENT_NAMESPACE,
        "version": 1,
        "source": "turn_controller",
        "turn_id": "turn_abc",
        "sequence": 4,
        "type": "turn_end",
    }
    assert turn_event_trace_fields(event) == {
        "namespace": TURN_EVENT_NAMESPACE,
        "version": 1,
        "source": "turn_controller",
        "turn_id": "turn_abc",
        "sequence": 4,
    }
