"""Chat completions through LiteLLM (Gemini by default, any LiteLLM backend works)."""

import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable

import json_repair
import litellm
from litellm import acompletion

from companion.config.schema import ResilienceConfig
from companion.logging import get_logger, mask_secret
from companion.providers.base import LLMProvider, LLMResponse, ToolCallRequest

logger = get_logger("companion.providers.litellm")

# Keys every OpenAI-compatible backend accepts on a chat message.
_MESSAGE_KEYS = frozenset({"role", "content", "tool_calls", "tool_call_id", "name"})


def _is_rate_limit_error(exc: Any) -> bool:
    if isinstance(exc, litellm.RateLimitError):
        return True
    if getattr(exc, "status_code", None) == 429:
        return True
    text = str(exc).lower()
    return "resource_exhausted" in text or "rate limit" in text or "quota exceeded" in text


def _field(obj: Any, key: str, default: Any = None) -> Any:
    """Read *key* from a dict or an attribute-style LiteLLM object."""
    if isinstance(obj, dict):
        return obj.get(key, default)
    return getattr(obj, key, default)


def _arguments(raw: Any) -> dict[str, Any]:
    """Tool-call arguments as a dict; malformed JSON is repaired, anything else becomes ``{}``."""
    if isinstance(raw, dict):
        return raw
    if not isinstance(raw, str):
        return {}
    try:
        parsed = json_repair.loads(raw)
    except Exception:
        return {}
    return parsed if isinstance(parsed, dict) else {}


def _usage(raw: Any) -> dict[str, int]:
    return {
        key: int(_field(raw, key, 0) or 0)
        for key in ("prompt_tokens", "completion_tokens", "total_tokens")
    }


def _delta_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return "".join(t for t in (_field(part, "text") for part in content) if isinstance(t, str))
    return ""


def _stringify_arguments(call: dict[str, Any]) -> dict[str, Any]:
    fn = call.get("function")
    if not isinstance(fn, dict) or not isinstance(fn.get("arguments"), dict):
        return call
    return {**call, "function": {**fn, "arguments": json.dumps(fn["arguments"], ensure_ascii=False)}}


def sanitize_messages(messages: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """
    Reduce chat messages to what strict backends accept.

    Extra keys (``reasoning_content`` and the like) are dropped, assistant messages
    always carry ``content``, blank non-assistant content becomes ``"(empty)"`` and
    tool-call arguments are sent as JSON strings.
    """
    sanitized = []
    for msg in messages:
        clean = {k: v for k, v in msg.items() if k in _MESSAGE_KEYS}
        content = clean.get("content")
        if clean.get("role") == "assistant":
            clean.setdefault("content", None)
        elif isinstance(content, str) and not content.strip():
            clean["content"] = "(empty)"
        if clean.get("tool_calls"):
            clean["tool_calls"] = [_stringify_arguments(dict(call)) for call in clean["tool_calls"]]
        sanitized.append(clean)
    return sanitized


class CircuitBreaker:
    """
    Stops calling a failing backend for a while.

    Opens after ``threshold`` consecutive failures and stays open for ``cooldown``
    seconds; after that a single trial call is let through (half-open). A threshold
    of zero disables the breaker.

    ``rate_limited`` tells whether the failure that opened it was a rate limit.
    """

    def __init__(self, threshold: int, cooldown: float, clock: Callable[[], float] = time.monotonic):
        self.threshold = threshold
        self.cooldown = cooldown
        self.failures = 0
        self.open_until = 0.0
        self.rate_limited = False
        self._clock = clock

    @property
    def enabled(self) -> bool:
        return self.threshold > 0

    def blocked_reason(self) -> str | None:
        """Why calls are currently refused, or None when the breaker lets them through."""
        if not self.enabled or self.failures < self.threshold:
            return None
        remaining = self.open_until - self._clock()
        if remaining <= 0:
            return None
        return (
            f"Circuit breaker open after {self.failures} consecutive failures; "
            f"retry in {int(remaining)}s."
        )

    def record(self, success: bool, *, rate_limited: bool = False) -> None:
        if not self.enabled:
            return
        if success:
            self.failures = 0
            self.open_until = 0.0
            self.rate_limited = False
            return
        self.failures += 1
        self.rate_limited = rate_limited
        if self.failures >= self.threshold:
            self.open_until = self._clock() + self.cooldown
            logger.warning(
                "circuit_breaker_opened",
                failures=self.failures,
                cooldown=self.cooldown,
                rate_limited=rate_limited,
            )


@dataclass
class _StreamAccumulator:
    """Folds streamed chunks into one ``LLMResponse``."""
    text: list[str] = field(default_factory=list)
    calls: dict[str, dict[str, str]] = field(default_factory=dict)
    finish_reason: str = "stop"
    usage: dict[str, int] = field(default_factory=dict)

    def feed(self, chunk: Any) -> str:
        """Absorb one chunk and return the visible text it carried."""
        usage = _field(chunk, "usage")
        if usage is not None:
            self.usage = _usage(usage)
        choices = _field(chunk, "choices") or []
        if not choices:
            return ""
        choice = choices[0]
        reason = _field(choice, "finish_reason")
        if isinstance(reason, str) and reason:
            self.finish_reason = reason
        delta = _field(choice, "delta") or {}
        self._merge_tool_call_parts(_field(delta, "tool_calls"))
        piece = _delta_text(_field(delta, "content"))
        if piece:
            self.text.append(piece)
        return piece

    def _merge_tool_call_parts(self, parts: Any) -> None:
        if not isinstance(parts, list):
            return
        for position, part in enumerate(parts):
            index = _field(part, "index")
            part_id = _field(part, "id")
            # Continuation fragments repeat the index but omit the id.
            slot_key = f"index:{index}" if index is not None else str(part_id or f"position:{position}")
            slot = self.calls.setdefault(slot_key, {"id": "", "name": "", "arguments": ""})
            if part_id:
                slot["id"] = str(part_id)
            fn = _field(part, "function") or {}
            name = _field(fn, "name")
            if isinstance(name, str) and name:
                slot["name"] = name
            fragment = _field(fn, "arguments")
            if isinstance(fragment, str):
                slot["arguments"] += fragment

    def response(self) -> LLMResponse:
        named = [slot for slot in self.calls.values() if slot["name"]]
        return LLMResponse(
            content="".join(self.text) or None,
            tool_calls=[
                ToolCallRequest(
                    id=slot["id"] or f"call_{n}",
                    name=slot["name"],
                    arguments=_arguments(slot["arguments"] or "{}"),
                )
                for n, slot in enumerate(named)
            ],
            finish_reason=self.finish_reason,
            usage=self.usage,
        )


class LiteLLMProvider(LLMProvider):
    """
    Provider backed by ``litellm.acompletion``.

    Failures never raise: they come back as ``LLMResponse.failed`` with
    ``error_kind`` telling rate limits apart from everything else, and with any
    API key masked out of the error text.
    """

    def __init__(
        self,
        api_key: str | None = None,
        api_base: str | None = None,
        default_model: str = "gemini/gemini-2.5-flash",
        extra_headers: dict[str, str] | None = None,
        resilience_config: ResilienceConfig | None = None,
    ):
        super().__init__(api_key, api_base)
        self.default_model = default_model
        self.extra_headers = extra_headers or {}
        self.resilience = resilience_config
        self.breaker = (
            CircuitBreaker(resilience_config.circuit_breaker_threshold, resilience_config.circuit_breaker_cooldown)
            if resilience_config
            else None
        )

        if api_key:
            logger.info("provider_initialized", model=default_model, api_key=mask_secret(api_key))

        litellm.suppress_debug_info = True
        litellm.drop_params = True

    @property
    def supports_streaming(self) -> bool:
        return True

    def get_default_model(self) -> str:
        return self.default_model

    def _request(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None,
        model: str | None,
        max_tokens: int,
        temperature: float,
        *,
        stream: bool,
    ) -> dict[str, Any]:
        request: dict[str, Any] = {
            "model": model or self.default_model,
            "messages": sanitize_messages(messages),
            "max_tokens": max(1, max_tokens),
            "temperature": temperature,
        }
        if stream:
            request["stream"] = True
            request["stream_options"] = {"include_usage": True}
        if tools:
            request["tools"] = tools
            request["tool_choice"] = "auto"
        optional = {"api_key": self.api_key, "api_base": self.api_base, "extra_headers": self.extra_headers}
        request.update({k: v for k, v in optional.items() if v})
        if self.resilience:
            request["request_timeout"] = self.resilience.timeout
            request["num_retries"] = self.resilience.max_retries

        if logging.getLogger("companion").isEnabledFor(logging.DEBUG):
            logger.debug(
                "litellm_request",
                model=request["model"],
                message_count=len(request["messages"]),
                tool_count=len(tools or []),
                stream=stream,
            )
        return request

    async def _send(self, request: dict[str, Any]) -> Any:
        call = acompletion(**request)
        if not self.resilience:
            return await call
        # Outer bound in case LiteLLM's own request_timeout is not honoured.
        return await asyncio.wait_for(call, timeout=self.resilience.timeout + 30)

    def _blocked(self) -> LLMResponse | None:
        reason = self.breaker.blocked_reason() if self.breaker else None
        if not reason:
            return None
        return LLMResponse.failed(f"Error calling LLM: {reason}", rate_limited=self.breaker.rate_limited)

    def _record(self, success: bool, *, rate_limited: bool = False) -> None:
        if self.breaker:
            self.breaker.record(success, rate_limited=rate_limited)

    def _failed(self, exc: BaseException, *, model: str, event: str) -> LLMResponse:
        if isinstance(exc, asyncio.TimeoutError):
            self._record(False)
            logger.error(event, model=model, error="timeout")
            return LLMResponse.failed("Error calling LLM: request timed out")
        message = str(exc)
        if self.api_key and self.api_key in message:
            message = message.replace(self.api_key, mask_secret(self.api_key))
        rate_limited = _is_rate_limit_error(exc)
        self._record(False, rate_limited=rate_limited)
        logger.error(event, model=model, error=message, rate_limited=rate_limited)
        return LLMResponse.failed(f"Error calling LLM: {message}", rate_limited=rate_limited)

    async def chat(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        model: str | None = None,
        max_tokens: int = 4096,
        temperature: float = 0.7,
    ) -> LLMResponse:
        """
        Run one chat completion.

        Args:
            messages: OpenAI-format chat messages.
            tools: OpenAI function definitions, if tool calling is enabled.
            model: LiteLLM model id; defaults to ``default_model``.
            max_tokens: Response token ceiling (at least 1 is sent).
            temperature: Sampling temperature.

        Returns:
            The parsed response, or a failed one (``finish_reason == "error"``).
        """
        blocked = self._blocked()
        if blocked:
            return blocked
        request = self._request(messages, tools, model, max_tokens, temperature, stream=False)
        try:
            raw = await self._send(request)
        except Exception as e:
            return self._failed(e, model=request["model"], event="llm_call_failed")
        self._record(True)
        return self._parse(raw)

    async def stream_chat(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        model: str | None = None,
        max_tokens: int = 4096,
        temperature: float = 0.7,
    ) -> AsyncIterator[dict[str, Any]]:
        """Yield ``text_delta`` events while streaming, then one ``done`` event with the full response."""
        blocked = self._blocked()
        if blocked:
            yield {"type": "done", "response": blocked}
            return
        request = self._request(messages, tools, model, max_tokens, temperature, stream=True)
        accumulator = _StreamAccumulator()
        try:
            async for chunk in await self._send(request):
                piece = accumulator.feed(chunk)
                if piece:
                    yield {"type": "text_delta", "delta": piece}
        except Exception as e:
            yield {"type": "done", "response": self._failed(e, model=request["model"], event="llm_stream_failed")}
            return
        self._record(True)
        yield {"type": "done", "response": accumulator.response()}

    @staticmethod
    def _parse(raw: Any) -> LLMResponse:
        choice = raw.choices[0]
        message = choice.message
        tool_calls = []
        for n, call in enumerate(_field(message, "tool_calls") or []):
            fn = _field(call, "function") or {}
            name = _field(fn, "name")
            if isinstance(name, str) and name:
                tool_calls.append(ToolCallRequest(
                    id=str(_field(call, "id") or f"call_{n}"),
                    name=name,
                    arguments=_arguments(_field(fn, "arguments")),
                ))
        usage = getattr(raw, "usage", None)
        return LLMResponse(
            content=message.content,
            tool_calls=tool_calls,
            finish_reason=choice.finish_reason or "stop",
            usage=_usage(usage) if usage else {},
            reasoning_content=getattr(message, "reasoning_content", None) or None,
        )
