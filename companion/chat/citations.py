"""Per-turn citation collection."""

from __future__ import annotations

from typing import Any, Iterable

from companion.chat.shapers import ShaperRegistry
from companion.chat.types import Citation, ExecutedFunctionResponse


class CitationCollector:
    """
    Accumulates citations across tool results in call order.

    Deduplicated by ``type:id`` with the first occurrence winning, and capped at
    ``max_citations``.
    """

    def __init__(self, shapers: ShaperRegistry, max_citations: int = 8):
        self.shapers = shapers
        self.max_citations = max_citations
        self._by_key: dict[str, Citation] = {}

    def merge(self, citations: Iterable[Citation]) -> None:
        for citation in citations:
            if len(self._by_key) >= self.max_citations:
                return
            if not citation.id or not citation.label:
                continue
            self._by_key.setdefault(citation.key, citation)

    def collect(self, executed: ExecutedFunctionResponse, store: Any = None) -> None:
        if executed.is_error:
            return
        self.merge(self.shapers.get(executed.name).citations(executed.raw_response, store))

    def results(self) -> list[Citation]:
        return list(self._by_key.values())

    def __len__(self) -> int:
        return len(self._by_key)
