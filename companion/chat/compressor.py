"""Condense older conversation history into a bounded summary."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal, Sequence

from companion.chat.compaction import truncate_text
from companion.chat.types import ConversationMessage, PendingAction
from companion.config.schema import CompressionConfig
from companion.logging import get_logger
from companion.providers.base import LLMError, LLMProvider, ModelCallOutcome

logger = get_logger(__name__)

SUMMARY_SECTIONS = ("Objectives", "Deadlines", "Commitments", "Preferences", "Open loops")
TRANSCRIPT_LINE_CHARS = 400
TRANSCRIPT_MAX_CHARS = 12_000
HEURISTIC_LINES = 6
HEURISTIC_LINE_CHARS = 160

_SUMMARY_PROMPT = (
    "You condense a student's earlier conversation with their assistant so it can be used as "
    "context later. Reply with plain text using exactly these headed sections, each a short list "
    "of '- ' bullets (write '- none' when empty): "
    + ", ".join(f"{name}:" for name in SUMMARY_SECTIONS)
    + " Keep concrete names, dates and ids. Do not invent anything. Stay under {max_chars} characters."
)

SummarySource = Literal["model", "heuristic", "none"]


@dataclass
class CompressedContext:
    summary: str
    preserved: list[ConversationMessage] = field(default_factory=list)
    compressed_count: int = 0
    source: SummarySource = "none"


def _speaker(message: ConversationMessage) -> str:
    return "User" if message.role == "user" else "Assistant"


def build_transcript(messages: Sequence[ConversationMessage], pending: Sequence[PendingAction] = ()) -> str:
    """Plain-text transcript of *messages*, newest lines kept when over budget."""
    lines = [
        f"{_speaker(m)}: {truncate_text(' '.join(m.content.split()), TRANSCRIPT_LINE_CHARS)}"
        for m in messages
        if m.content.strip()
    ]
    kept: list[str] = []
    size = 0
    for line in reversed(lines):
        if size + len(line) + 1 > TRANSCRIPT_MAX_CHARS:
            break
        kept.append(line)
        size += len(line) + 1
    transcript = "\n".join(reversed(kept))
    if pending:
        transcript += "\n\nPending actions awaiting confirmation:\n" + "\n".join(
            f"- {a.summary} ({a.id})" for a in pending
        )
    return transcript


def heuristic_summary(
    messages: Sequence[ConversationMessage],
    pending: Sequence[PendingAction],
    max_chars: int,
) -> str:
    """Extractive summary from the most recent lines. Never calls a model."""
    recent = [m for m in messages if m.content.strip()][-HEURISTIC_LINES:]
    lines = ["Recent points:"]
    lines += [
        f"- {_speaker(m)}: {truncate_text(' '.join(m.content.split()), HEURISTIC_LINE_CHARS)}"
        for m in recent
    ]
    if pending:
        lines.append("Open loops:")
        lines += [f"- {a.summary} ({a.confirm_command})" for a in pending]
    return truncate_text("\n".join(lines), max_chars)


@dataclass(frozen=True)
class _CachedSummary:
    last_message_id: str
    summary: str
    source: SummarySource


class SummaryCache:
    """
    Per-conversation record of the last summary built.

    Owned by the caller and passed to the controller, like ``AutocaptureCache``.
    The entry is keyed by the id of the newest message the summary covers.
    """

    def __init__(self) -> None:
        self._entry: _CachedSummary | None = None

    def lookup(self, older: Sequence[ConversationMessage]) -> tuple[_CachedSummary, list[ConversationMessage]] | None:
        """The cached entry and the compressible messages newer than it, if it covers a prefix of *older*."""
        if self._entry is None:
            return None
        for index in range(len(older) - 1, -1, -1):
            if older[index].id == self._entry.last_message_id:
                return self._entry, list(older[index + 1:])
        return None

    def put(self, last_message_id: str, summary: str, source: SummarySource) -> None:
        self._entry = _CachedSummary(last_message_id, summary, source)

    def clear(self) -> None:
        self._entry = None

    def __len__(self) -> int:
        return 0 if self._entry is None else 1


class ContextCompressor:
    """
    Splits history into preserved recent messages and an older compressible
    part, then summarizes the older part with the model.

    The summary is cached and reused until ``resummarize_every`` further messages
    have become compressible; those stay verbatim in ``preserved`` meanwhile.

    Any model failure degrades to :func:`heuristic_summary`; ``compress`` never raises.
    """

    def __init__(
        self,
        provider: LLMProvider,
        config: CompressionConfig,
        *,
        model: str | None = None,
        live_model: str | None = None,
        cache: SummaryCache | None = None,
    ):
        self.provider = provider
        self.config = config
        self.model = model
        self.live_model = live_model
        self.cache = cache if cache is not None else SummaryCache()

    @property
    def summary_model(self) -> str | None:
        if self.config.use_live_model and self.live_model:
            return self.live_model
        return self.model

    def should_compress(self, message_count: int) -> bool:
        return self.config.enabled and message_count > self.config.trigger_messages

    def split(self, history: Sequence[ConversationMessage]) -> tuple[list[ConversationMessage], list[ConversationMessage]]:
        keep = max(0, self.config.preserve_recent)
        if keep == 0:
            return list(history), []
        return list(history[:-keep]), list(history[-keep:])

    async def compress(
        self,
        history: Sequence[ConversationMessage],
        pending: Sequence[PendingAction] = (),
    ) -> CompressedContext:
        if not self.should_compress(len(history)):
            return CompressedContext(summary="", preserved=list(history))

        older, preserved = self.split(history)
        if not older:
            return CompressedContext(summary="", preserved=preserved)

        cached = self.cache.lookup(older)
        if cached is not None:
            entry, unsummarized = cached
            if len(unsummarized) < self.config.resummarize_every:
                logger.debug("context_summary_reused", pending_count=len(unsummarized), source=entry.source)
                return CompressedContext(
                    summary=entry.summary,
                    preserved=unsummarized + preserved,
                    compressed_count=len(older) - len(unsummarized),
                    source=entry.source,
                )

        summary = await self._summarize_with_model(older, pending)
        if summary:
            source: SummarySource = "model"
        else:
            summary = heuristic_summary(older, pending, self.config.max_summary_chars)
            source = "heuristic"
        self.cache.put(older[-1].id, summary, source)

        logger.info(
            "context_compressed",
            compressed_count=len(older),
            preserved_count=len(preserved),
            source=source,
            summary_chars=len(summary),
        )
        return CompressedContext(summary=summary, preserved=preserved, compressed_count=len(older), source=source)

    async def _summarize_with_model(
        self,
        older: Sequence[ConversationMessage],
        pending: Sequence[PendingAction],
    ) -> str | None:
        messages = [
            {"role": "system", "content": _SUMMARY_PROMPT.replace("{max_chars}", str(self.config.max_summary_chars))},
            {"role": "user", "content": build_transcript(older, pending)},
        ]
        try:
            response = await self.provider.chat(
                messages=messages,
                model=self.summary_model,
                max_tokens=768,
                temperature=0.2,
            )
            outcome = ModelCallOutcome.from_response(response)
        except LLMError as e:
            outcome = ModelCallOutcome.from_exception(e)
        except Exception as e:
            logger.warning("context_compression_model_failed", error=str(e), error_type=type(e).__name__)
            return None

        if not outcome.ok:
            logger.warning("context_compression_degraded", status=outcome.status)
            return None
        text = (outcome.response.content or "").strip()
        if not text:
            return None
        return truncate_text(text, self.config.max_summary_chars)
