from datetime import datetime, timezone

import pytest

from companion.chat.action_commands import (
    ActionCommand,
    format_disambiguation,
    is_implicit_signal,
    parse_action_command,
)
from companion.chat.store import InMemoryStore

NOW = datetime(2026, 3, 2, 8, 0, tzinfo=timezone.utc)


def _pending(count: int):
    store = InMemoryStore(clock=lambda: NOW)
    return [
        store.create_pending_action("create-goal", f"Create goal #{i}", {"title": f"goal {i}"})
        for i in range(count)
    ]


@pytest.mark.parametrize("text", ["confirm", "yes", "Yes!", "sounds good", "go ahead.", "LGTM", "confirm it"])
def test_single_pending_affirmatives_confirm(text):
    (action,) = _pending(1)
    assert parse_action_command(text, [action]) == ActionCommand("confirm", action.id)


@pytest.mark.parametrize("text", ["cancel", "no", "Nope.", "never mind"])
def test_single_pending_negatives_cancel(text):
    (action,) = _pending(1)
    assert parse_action_command(text, [action]) == ActionCommand("cancel", action.id)


def test_bare_action_id_confirms():
    (action,) = _pending(1)
    assert parse_action_command(action.id, [action]) == ActionCommand("confirm", action.id)


def test_explicit_command_with_unknown_id_is_still_parsed():
    assert parse_action_command("confirm action-doesnotexist", []) == ActionCommand("confirm", "action-doesnotexist")


def test_explicit_command_targets_named_action():
    first, second = _pending(2)
    assert parse_action_command(f"cancel {second.id}", [first, second]) == ActionCommand("cancel", second.id)


def test_id_with_keyword_inside_sentence():
    first, second = _pending(2)
    text = f"Please approve {first.id} for me"
    assert parse_action_command(text, [first, second]) == ActionCommand("confirm", first.id)
    text = f"actually reject {second.id}"
    assert parse_action_command(text, [first, second]) == ActionCommand("cancel", second.id)


def test_yes_with_two_pending_is_ambiguous():
    pending = _pending(2)
    assert parse_action_command("yes", pending) is None
    assert is_implicit_signal("yes")

    listing = format_disambiguation(pending)
    for action in pending:
        assert action.id in listing
        assert f"confirm {action.id}" in listing
        assert f"cancel {action.id}" in listing


def test_no_pending_affirmative_is_not_a_command():
    assert parse_action_command("yes", []) is None
    assert parse_action_command("confirm", []) is None


def test_ordinary_text_is_not_a_command():
    (action,) = _pending(1)
    assert parse_action_command("what is due tomorrow?", [action]) is None
    assert parse_action_command("yes I think the lab is hard", [action]) is None
    assert not is_implicit_signal("what is due tomorrow?")


def test_implicit_signal_excludes_explicit_ids():
    assert not is_implicit_signal("confirm action-abc123")
    assert is_implicit_signal("confirm that")
