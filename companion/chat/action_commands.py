"""Recognize confirm/cancel replies to queued pending actions."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Literal, Sequence

from companion.chat.types import PendingAction

CommandType = Literal["confirm", "cancel"]

ACTION_ID_RE = re.compile(r"\baction-[a-z0-9]+(?:-[a-z0-9]+)*\b")
_EXPLICIT_RE = re.compile(r"^(confirm|cancel)\s+([a-z0-9_-]+)$")
_TRAILING_PUNCTUATION = ".!?,;:"

AFFIRMATIVE_PHRASES = frozenset({
    "yes", "y", "yep", "yeah", "yup", "sure", "ok", "okay", "do it", "go ahead",
    "sounds good", "please do", "confirm", "confirmed", "approve", "approved",
    "looks good", "lgtm",
})
NEGATIVE_PHRASES = frozenset({
    "no", "n", "nope", "nah", "cancel", "stop", "don't", "do not", "never mind",
    "nevermind", "abort", "reject",
})
_CONFIRM_KEYWORDS = frozenset({"confirm", "approve"})
_CANCEL_KEYWORDS = frozenset({"cancel", "reject", "abort"})
# Words that can follow an explicit verb without naming an action.
_FILLER_TARGETS = frozenset({"it", "that", "this", "please", "pls", "now", "them"})

NOT_FOUND_REPLY = 'No pending action found for "{action_id}".'
DISAMBIGUATION_HEADER = "You have more than one action waiting. Which one do you mean?"


@dataclass(frozen=True)
class ActionCommand:
    type: CommandType
    action_id: str


def normalize_utterance(text: str) -> str:
    collapsed = " ".join(text.lower().split())
    return collapsed.rstrip(_TRAILING_PUNCTUATION).strip()


def is_implicit_signal(text: str) -> bool:
    """True for yes/no style replies that do not name an action."""
    normalized = normalize_utterance(text)
    if not normalized or ACTION_ID_RE.search(normalized):
        return False
    if normalized in AFFIRMATIVE_PHRASES or normalized in NEGATIVE_PHRASES:
        return True
    match = _EXPLICIT_RE.match(normalized)
    return bool(match and match.group(2) in _FILLER_TARGETS)


def parse_action_command(text: str, pending: Sequence[PendingAction]) -> ActionCommand | None:
    """
    Resolve *text* to a confirm/cancel command against the pending actions.

    Checked in order: an explicit ``confirm <id>`` / ``cancel <id>``; a bare verb
    with exactly one pending action; an action id found in the text (with a
    confirm/cancel keyword, or alone when it is a known pending id); and, with
    exactly one pending action, affirmative or negative phrases.
    """
    normalized = normalize_utterance(text)
    if not normalized:
        return None
    known_ids = {action.id for action in pending}
    single = pending[0].id if len(pending) == 1 else None

    explicit = _EXPLICIT_RE.match(normalized)
    if explicit:
        verb, target = explicit.group(1), explicit.group(2)
        if target in _FILLER_TARGETS:
            return ActionCommand(verb, single) if single else None
        return ActionCommand(verb, target)  # type: ignore[arg-type]

    if normalized in ("confirm", "cancel"):
        return ActionCommand(normalized, single) if single else None  # type: ignore[arg-type]

    ids = ACTION_ID_RE.findall(normalized)
    if ids:
        words = set(re.findall(r"[a-z']+", ACTION_ID_RE.sub(" ", normalized)))
        action_id = next((i for i in ids if i in known_ids), ids[0])
        if words & _CANCEL_KEYWORDS:
            return ActionCommand("cancel", action_id)
        if words & _CONFIRM_KEYWORDS:
            return ActionCommand("confirm", action_id)
        if action_id in known_ids and normalized == action_id:
            return ActionCommand("confirm", action_id)
        return None

    if single:
        if normalized in AFFIRMATIVE_PHRASES:
            return ActionCommand("confirm", single)
        if normalized in NEGATIVE_PHRASES:
            return ActionCommand("cancel", single)
    return None


def format_disambiguation(pending: Sequence[PendingAction]) -> str:
    lines = [DISAMBIGUATION_HEADER]
    for action in pending:
        lines.append(f"- {action.summary} (id: {action.id})")
        lines.append(f"  Confirm: {action.confirm_command}")
        lines.append(f"  Cancel: {action.cancel_command}")
    return "\n".join(lines)
