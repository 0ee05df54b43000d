"""Propose habits from intents the user keeps repeating."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Sequence

from companion.agent.tools.queue import ACTION_CREATE_HABIT
from companion.chat.action_commands import ACTION_ID_RE, is_implicit_signal, normalize_utterance
from companion.chat.types import ConversationMessage, PendingAction
from companion.config.schema import AutocaptureConfig
from companion.logging import get_logger

logger = get_logger(__name__)

_INTENT_PATTERNS = (
    re.compile(r"\bi keep (?:missing|forgetting|skipping|failing to)\s+(?:to\s+)?(?P<subject>[^.!?\n]+)"),
    re.compile(r"\bi always forget\s+(?:to\s+)?(?P<subject>[^.!?\n]+)"),
    re.compile(r"\bi never remember to\s+(?P<subject>[^.!?\n]+)"),
    re.compile(r"\bi need to remember to\s+(?P<subject>[^.!?\n]+)"),
)
_QUESTION_START = re.compile(
    r"^(what|when|where|why|how|who|which|can|could|should|would|will|do|does|did|is|are|am)\b"
)
_COMMAND_START = re.compile(r"^(/|confirm\b|cancel\b)")
_SUBJECT_STOPWORDS = frozenset({"my", "the", "a", "an", "to", "again", "lately", "every", "time"})
MAX_SUBJECT_CHARS = 60


def extract_intent_subject(text: str) -> str | None:
    """Return the normalized subject of a recurring-intent phrase, if any."""
    lowered = " ".join(text.lower().split())
    for pattern in _INTENT_PATTERNS:
        match = pattern.search(lowered)
        if not match:
            continue
        words = [w for w in re.findall(r"[a-z0-9']+", match.group("subject")) if w not in _SUBJECT_STOPWORDS]
        if words:
            return " ".join(words)[:MAX_SUBJECT_CHARS].strip()
    return None


def looks_like_question(text: str) -> bool:
    stripped = text.strip().lower()
    return stripped.endswith("?") or bool(_QUESTION_START.match(stripped))


def looks_like_command(text: str) -> bool:
    normalized = normalize_utterance(text)
    return bool(_COMMAND_START.match(normalized) or ACTION_ID_RE.search(normalized) or is_implicit_signal(text))


class AutocaptureCache:
    """
    Per-conversation record of subjects already proposed.

    Owned by the caller and passed to the controller, so tests can inspect it and
    reset it with ``clear()``.
    """

    def __init__(self) -> None:
        self._proposed_at: dict[str, datetime] = {}

    def recently_proposed(self, subject: str, now: datetime, cooldown: timedelta) -> bool:
        last = self._proposed_at.get(subject)
        return last is not None and now - last < cooldown

    def mark(self, subject: str, now: datetime) -> None:
        self._proposed_at[subject] = now

    def clear(self) -> None:
        self._proposed_at.clear()

    def __len__(self) -> int:
        return len(self._proposed_at)


@dataclass(frozen=True)
class AutocaptureProposal:
    subject: str
    mentions: int
    action: PendingAction

    @property
    def reply(self) -> str:
        return (
            f'You\'ve mentioned "{self.subject}" {self.mentions} times now. '
            f"Want me to start tracking it as a daily habit?\n"
            f"- {self.action.summary}\n"
            f"  Confirm: {self.action.confirm_command}\n"
            f"  Cancel: {self.action.cancel_command}"
        )


class Autocapture:
    """Detects a repeated stated intent and queues a create-habit action for it."""

    def __init__(self, config: AutocaptureConfig, cache: AutocaptureCache | None = None):
        self.config = config
        self.cache = cache or AutocaptureCache()

    def propose(
        self,
        store: Any,
        user_input: str,
        recent: Sequence[ConversationMessage],
        pending: Sequence[PendingAction],
        now: datetime,
    ) -> AutocaptureProposal | None:
        if not self.config.enabled or pending:
            return None
        if looks_like_question(user_input) or looks_like_command(user_input):
            return None

        subject = extract_intent_subject(user_input)
        if not subject:
            return None

        window = list(recent)[-self.config.lookback_messages:] if self.config.lookback_messages > 0 else []
        mentions = 1 + sum(
            1 for m in window if m.role == "user" and extract_intent_subject(m.content) == subject
        )
        if mentions < self.config.min_mentions:
            return None

        cooldown = timedelta(minutes=self.config.cooldown_minutes)
        if self.cache.recently_proposed(subject, now, cooldown):
            logger.debug("autocapture_suppressed", subject=subject)
            return None

        action = store.create_pending_action(
            ACTION_CREATE_HABIT,
            f'Start tracking habit "{subject}" (daily)',
            {"name": subject, "cadence": "daily"},
        )
        self.cache.mark(subject, now)
        logger.info("autocapture_proposed", subject=subject, mentions=mentions, action_id=action.id)
        return AutocaptureProposal(subject=subject, mentions=mentions, action=action)
