"""Chunk delivery to a caller-supplied stream callback."""

from __future__ import annotations

import inspect
from typing import Any, Awaitable, Callable, Iterator, TypeAlias

ChunkCallback: TypeAlias = Callable[[str], Any] | Callable[[str], Awaitable[Any]]


def chunk_text(text: str, size: int) -> Iterator[str]:
    """Split *text* into consecutive pieces of at most *size* characters."""
    if size < 1:
        raise ValueError("chunk size must be positive")
    for start in range(0, len(text), size):
        yield text[start:start + size]


class ChunkForwarder:
    """
    Forwards text to ``on_chunk`` (sync or async) and remembers what was sent.

    ``streamed`` holds only the text of the round currently being streamed;
    ``reset_round`` starts a new one.
    """

    def __init__(self, on_chunk: ChunkCallback | None, chunk_size: int = 48):
        self.on_chunk = on_chunk
        self.chunk_size = chunk_size
        self.streamed = ""
        self.total_chars = 0

    @property
    def enabled(self) -> bool:
        return self.on_chunk is not None

    def reset_round(self) -> None:
        self.streamed = ""

    async def send(self, text: str) -> None:
        if not self.on_chunk or not text:
            return
        result = self.on_chunk(text)
        if inspect.isawaitable(result):
            await result
        self.streamed += text
        self.total_chars += len(text)

    async def finish(self, reply: str) -> None:
        """Deliver *reply* in fixed-size chunks unless it was already streamed verbatim."""
        if not self.on_chunk:
            return
        if self.total_chars > 0 and self.streamed.strip() == reply.strip():
            return
        for piece in chunk_text(reply, self.chunk_size):
            await self.send(piece)
