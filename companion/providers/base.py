"""Base LLM provider interface, response types and error taxonomy."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Literal

ERROR_KIND_RATE_LIMIT = "rate_limit"
ERROR_KIND_ERROR = "error"

ErrorKind = Literal["rate_limit", "error"]


class LLMError(Exception):
    """Generic model-call failure; callers see it as a configuration or transport problem."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RateLimitError(LLMError):
    """The provider rejected the request because of quota / rate limiting."""

    def __init__(self, message: str = "LLM rate limit exceeded") -> None:
        super().__init__(message, status_code=429)


@dataclass
class ToolCallRequest:
    """A tool call requested by the LLM."""
    id: str
    name: str
    arguments: dict[str, Any]


@dataclass
class LLMResponse:
    """Response from an LLM provider.

    Expected failures are not raised: the provider returns ``finish_reason="error"``
    with ``error_kind`` set and the error text in ``content``.
    """
    content: str | None
    tool_calls: list[ToolCallRequest] = field(default_factory=list)
    finish_reason: str = "stop"
    usage: dict[str, int] = field(default_factory=dict)
    reasoning_content: str | None = None
    error_kind: ErrorKind | None = None

    @property
    def has_tool_calls(self) -> bool:
        """Check if response contains tool calls."""
        return len(self.tool_calls) > 0

    @property
    def is_error(self) -> bool:
        return self.finish_reason == "error" or self.error_kind is not None

    @classmethod
    def failed(cls, message: str, *, rate_limited: bool = False) -> "LLMResponse":
        return cls(
            content=message,
            finish_reason="error",
            error_kind=ERROR_KIND_RATE_LIMIT if rate_limited else ERROR_KIND_ERROR,
        )


@dataclass(frozen=True)
class ModelCallOutcome:
    """Tagged result of one model call: ``ok``, ``rate_limit`` or ``error``."""
    status: Literal["ok", "rate_limit", "error"]
    response: LLMResponse
    exception: LLMError | None = field(default=None, compare=False)

    @classmethod
    def from_response(cls, response: LLMResponse) -> "ModelCallOutcome":
        if not response.is_error:
            return cls("ok", response)
        if response.error_kind == ERROR_KIND_RATE_LIMIT:
            return cls("rate_limit", response)
        return cls("error", response)

    @classmethod
    def from_exception(cls, exc: LLMError) -> "ModelCallOutcome":
        rate_limited = isinstance(exc, RateLimitError)
        return cls(
            "rate_limit" if rate_limited else "error",
            LLMResponse.failed(str(exc), rate_limited=rate_limited),
            exc,
        )

    @property
    def ok(self) -> bool:
        return self.status == "ok"

    def raise_for_error(self) -> None:
        """Raise for the ``error`` status; other statuses are handled by callers.

        A raised provider exception is re-raised as-is; a failed response becomes ``LLMError``.
        """
        if self.status != "error":
            return
        if self.exception is not None:
            raise self.exception
        raise LLMError(self.response.content or "LLM call failed")


class LLMProvider(ABC):
    """
    Abstract base class for LLM providers.

    Implementations should handle the specifics of each provider's API
    while maintaining a consistent interface.
    """

    def __init__(self, api_key: str | None = None, api_base: str | None = None):
        self.api_key = api_key
        self.api_base = api_base

    @abstractmethod
    async def chat(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        model: str | None = None,
        max_tokens: int = 4096,
        temperature: float = 0.7,
    ) -> LLMResponse:
        """
        Send a chat completion request.

        Args:
            messages: List of message dicts with 'role' and 'content'.
            tools: Optional list of tool definitions.
            model: Model identifier (provider-specific).
            max_tokens: Maximum tokens in response.
            temperature: Sampling temperature.

        Returns:
            LLMResponse with content and/or tool calls.
        """

    async def stream_chat(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        model: str | None = None,
        max_tokens: int = 4096,
        temperature: float = 0.7,
    ) -> AsyncIterator[dict[str, Any]]:
        """Stream as ``text_delta`` events followed by one ``done`` event.

        The default implementation degrades to a single non-streamed call.
        """
        response = await self.chat(
            messages=messages,
            tools=tools,
            model=model,
            max_tokens=max_tokens,
            temperature=temperature,
        )
        yield {"type": "done", "response": response}

    @property
    def supports_streaming(self) -> bool:
        return False

    @abstractmethod
    def get_default_model(self) -> str:
        """Get the default model for this provider."""
