"""Turn controller: one user input through to one persisted assistant reply."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Sequence

import structlog

from companion.agent.mutations import MutationExecutor
from companion.agent.tools.base import FunctionCallResult
from companion.agent.tools.factory import create_standard_tool_registry
from companion.agent.tools.registry import ToolRegistry
from companion.agent.turn_events import (
    TURN_EVENT_TOOL_END,
    TURN_EVENT_TOOL_START,
    TURN_EVENT_TURN_END,
    TURN_EVENT_TURN_START,
    TurnEventCallback,
    TurnEventEmitter,
)
from companion.chat.action_commands import (
    NOT_FOUND_REPLY,
    ActionCommand,
    format_disambiguation,
    is_implicit_signal,
    parse_action_command,
)
from companion.chat.autocapture import Autocapture, AutocaptureCache
from companion.chat.citations import CitationCollector
from companion.chat.compaction import CompactionLimits
from companion.chat.compressor import ContextCompressor, SummaryCache
from companion.chat.context import ChatContextBuilder, build_context_window
from companion.chat.fallback import FallbackSynthesizer
from companion.chat.shapers import ShaperRegistry, create_standard_shapers
from companion.chat.store import ChatStore
from companion.chat.streaming import ChunkCallback, ChunkForwarder
from companion.chat.types import (
    ActionExecution,
    ConversationMessage,
    ConversationMetadata,
    ExecutedFunctionResponse,
    ImageAttachment,
    PendingAction,
    SendChatResult,
    ToolCall,
    Usage,
)
from companion.config.schema import ChatConfig, Config
from companion.logging import get_logger
from companion.providers.base import LLMError, LLMProvider, LLMResponse, ModelCallOutcome

logger = get_logger(__name__)

FINISH_ROUND_LIMIT = "tool_call_round_limit_fallback"
FINISH_RATE_LIMIT = "rate_limit_fallback"
FINISH_ACTION_COMMAND = "action_command"
FINISH_DISAMBIGUATION = "pending_action_disambiguation"
FINISH_AUTOCAPTURE = "autocapture"
FINISH_EMPTY_REPLY = "empty_reply_fallback"


@dataclass
class _TurnState:
    """Turn-local accumulators; never shared between turns."""
    citations: CitationCollector
    executed: list[ExecutedFunctionResponse] = field(default_factory=list)
    queued: list[PendingAction] = field(default_factory=list)
    usage: Usage | None = None
    rounds: int = 0

    def add_usage(self, raw: dict[str, int] | None) -> None:
        usage = Usage.from_provider(raw)
        if usage is None:
            return
        self.usage = usage if self.usage is None else self.usage.add(usage)

    def add_queued(self, action: PendingAction) -> None:
        if all(existing.id != action.id for existing in self.queued):
            self.queued.append(action)


class TurnController:
    """
    Orchestrates a chat turn.

    In priority order: action commands (confirm/cancel), ambiguous confirmation
    guard, habit autocapture, then the bounded tool-calling round loop. Expected
    model failures (rate limits, round exhaustion, empty text) degrade to a
    synthesized reply tagged with a ``finish_reason``; other model errors raise
    ``LLMError``.
    """

    def __init__(
        self,
        provider: LLMProvider,
        *,
        config: ChatConfig | None = None,
        tools: ToolRegistry | None = None,
        mutations: MutationExecutor | None = None,
        shapers: ShaperRegistry | None = None,
        model: str | None = None,
        live_model: str | None = None,
        temperature: float = 0.4,
        max_tokens: int = 2048,
        autocapture_cache: AutocaptureCache | None = None,
        summary_cache: SummaryCache | None = None,
    ):
        self.provider = provider
        self.config = config or ChatConfig()
        self.tools = tools or create_standard_tool_registry()
        self.mutations = mutations or MutationExecutor()
        self.shapers = shapers or create_standard_shapers()
        self.model = model or provider.get_default_model()
        self.temperature = temperature
        self.max_tokens = max_tokens

        self.limits = CompactionLimits.from_config(self.config.compaction)
        self.context = ChatContextBuilder(self.config)
        self.fallback = FallbackSynthesizer(self.shapers, self.limits)
        self.compressor = ContextCompressor(
            provider,
            self.config.compression,
            model=self.model,
            live_model=live_model,
            cache=summary_cache,
        )
        self.autocapture = Autocapture(self.config.autocapture, autocapture_cache)

    @classmethod
    def from_config(cls, config: Config, provider: LLMProvider | None = None, **kwargs: Any) -> "TurnController":
        if provider is None:
            from companion.providers.litellm_provider import LiteLLMProvider

            provider = LiteLLMProvider(
                api_key=config.provider.resolved_api_key or None,
                api_base=config.provider.api_base,
                default_model=config.provider.model,
                resilience_config=config.provider.resilience,
            )
        return cls(
            provider,
            config=config.chat,
            model=config.provider.model,
            live_model=config.provider.live_model,
            temperature=config.provider.temperature,
            max_tokens=config.provider.max_tokens,
            **kwargs,
        )

    async def send_message(
        self,
        store: ChatStore,
        user_input: str,
        *,
        now: datetime | None = None,
        attachments: Sequence[ImageAttachment] | None = None,
        on_chunk: ChunkCallback | None = None,
        on_event: TurnEventCallback | None = None,
        conversation_id: str | None = None,
    ) -> SendChatResult:
        """
        Process one user turn and persist both sides of it.

        Args:
            store: Persistence for messages, pending actions and domain data.
            user_input: The user's message text.
            now: Turn time; defaults to ``store.now()``.
            attachments: Optional images sent with the message.
            on_chunk: Optional sync or async callback receiving reply text chunks.
            on_event: Optional async callback receiving turn events.
            conversation_id: Bound into log context for the duration of the turn.

        Returns:
            ``SendChatResult`` with the reply, both persisted messages, citations and
            the latest history page.

        Raises:
            LLMError: the model call failed for a reason other than rate limiting.
        """
        with structlog.contextvars.bound_contextvars(conversation_id=conversation_id):
            return await self._send(
                store,
                user_input,
                now=now or store.now(),
                attachments=list(attachments or []),
                forwarder=ChunkForwarder(on_chunk, self.config.stream_chunk_size),
                emitter=TurnEventEmitter(on_event),
            )

    async def _send(
        self,
        store: ChatStore,
        user_input: str,
        *,
        now: datetime,
        attachments: list[ImageAttachment],
        forwarder: ChunkForwarder,
        emitter: TurnEventEmitter,
    ) -> SendChatResult:
        pending = store.get_pending_actions(now)

        command = parse_action_command(user_input, pending)
        if command is not None:
            return await self._resolve_action_command(store, user_input, command, now, attachments, forwarder)

        if len(pending) > 1 and is_implicit_signal(user_input):
            logger.info("pending_action_disambiguation", pending_count=len(pending))
            metadata = ConversationMetadata(finish_reason=FINISH_DISAMBIGUATION, pending_actions=list(pending))
            return await self._finish(store, user_input, attachments, format_disambiguation(pending), metadata, forwarder)

        lookback = max(self.config.history_limit, self.config.autocapture.lookback_messages)
        recent = store.get_recent_messages(lookback)
        proposal = self.autocapture.propose(store, user_input, recent, pending, now)
        if proposal is not None:
            metadata = ConversationMetadata(finish_reason=FINISH_AUTOCAPTURE, pending_actions=[proposal.action])
            return await self._finish(store, user_input, attachments, proposal.reply, metadata, forwarder)

        history = recent[-self.config.history_limit:] if self.config.history_limit > 0 else []
        return await self._run_tool_loop(store, user_input, now, attachments, history, pending, forwarder, emitter)

    # -- action commands -----------------------------------------------

    async def _resolve_action_command(
        self,
        store: ChatStore,
        user_input: str,
        command: ActionCommand,
        now: datetime,
        attachments: list[ImageAttachment],
        forwarder: ChunkForwarder,
    ) -> SendChatResult:
        action = store.get_pending_action_by_id(command.action_id, now)
        execution: ActionExecution | None = None
        if action is None:
            reply = NOT_FOUND_REPLY.format(action_id=command.action_id)
        elif command.type == "cancel":
            store.delete_pending_action(action.id)
            reply = f'Cancelled action "{action.summary}".'
            execution = ActionExecution(action.id, action.action_type, "cancelled", reply)
        else:
            result = self.mutations.execute(action, store)
            store.delete_pending_action(action.id)
            reply = result.message
            execution = ActionExecution(
                action.id,
                action.action_type,
                "confirmed" if result.success else "failed",
                result.message,
            )

        logger.info(
            "action_command_resolved",
            command=command.type,
            action_id=command.action_id,
            status=execution.status if execution else "not_found",
        )
        metadata = ConversationMetadata(
            finish_reason=FINISH_ACTION_COMMAND,
            pending_actions=store.get_pending_actions(now),
            action_execution=execution,
        )
        return await self._finish(store, user_input, attachments, reply, metadata, forwarder)

    # -- tool-calling loop ---------------------------------------------

    async def _run_tool_loop(
        self,
        store: ChatStore,
        user_input: str,
        now: datetime,
        attachments: list[ImageAttachment],
        history: list[ConversationMessage],
        pending: list[PendingAction],
        forwarder: ChunkForwarder,
        emitter: TurnEventEmitter,
    ) -> SendChatResult:
        use_tools = self.config.use_function_calling
        context_window = "" if use_tools else build_context_window(store, now)
        tool_definitions = self.tools.get_definitions() if use_tools else None

        summary = ""
        total_messages = store.count_messages()
        if self.compressor.should_compress(total_messages):
            compressed = await self.compressor.compress(store.get_recent_messages(total_messages), pending)
            history, summary = compressed.preserved, compressed.summary

        system_instruction = self.context.build_system_instruction(
            now=now,
            context_window=context_window,
            summary=summary,
        )
        messages = self.context.build_messages(system_instruction, history, user_input, attachments)

        state = _TurnState(citations=CitationCollector(self.shapers, self.config.max_citations))
        await emitter.emit({
            "type": TURN_EVENT_TURN_START,
            "history_message_count": len(history),
            "max_tool_rounds": self.config.max_tool_rounds,
            "function_calling": use_tools,
        })

        while True:
            outcome = await self._call_model(messages, tool_definitions, forwarder)
            state.add_usage(outcome.response.usage)

            if outcome.status == "rate_limit":
                logger.warning("model_rate_limited", rounds=state.rounds, executed=len(state.executed))
                reply = self.fallback.synthesize(state.executed, state.queued)
                finish_reason = FINISH_RATE_LIMIT
                break
            outcome.raise_for_error()

            response = outcome.response
            if not response.has_tool_calls:
                text = (response.content or "").strip()
                if text:
                    reply, finish_reason = text, response.finish_reason or "stop"
                else:
                    reply, finish_reason = self.fallback.synthesize(state.executed, state.queued), FINISH_EMPTY_REPLY
                break

            if state.rounds >= self.config.max_tool_rounds:
                logger.warning("tool_round_limit_reached", rounds=state.rounds)
                reply = self.fallback.synthesize(state.executed, state.queued)
                finish_reason = FINISH_ROUND_LIMIT
                break

            state.rounds += 1
            await self._run_tool_round(store, now, messages, response, state, emitter)

        metadata = ConversationMetadata(
            context_window=context_window,
            finish_reason=finish_reason,
            usage=state.usage,
            pending_actions=list(state.queued),
            citations=state.citations.results(),
        )
        end_event: dict[str, Any] = {
            "type": TURN_EVENT_TURN_END,
            "rounds": state.rounds,
            "tool_count": len(state.executed),
            "finish_reason": finish_reason,
            "citation_count": len(state.citations),
            "pending_action_count": len(state.queued),
        }
        if finish_reason == FINISH_ROUND_LIMIT:
            end_event["round_limit_reached"] = True
        if finish_reason == FINISH_RATE_LIMIT:
            end_event["rate_limited"] = True
        await emitter.emit(end_event)

        logger.info(
            "turn_completed",
            finish_reason=finish_reason,
            rounds=state.rounds,
            tool_count=len(state.executed),
            citation_count=len(state.citations),
        )
        return await self._finish(store, user_input, attachments, reply, metadata, forwarder)

    async def _call_model(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None,
        forwarder: ChunkForwarder,
    ) -> ModelCallOutcome:
        """One model round, tagged as ok / rate_limit / error."""
        kwargs: dict[str, Any] = {
            "messages": messages,
            "tools": tools,
            "model": self.model,
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
        }
        try:
            if forwarder.enabled and self.provider.supports_streaming:
                forwarder.reset_round()
                response: LLMResponse | None = None
                async for event in self.provider.stream_chat(**kwargs):
                    if event.get("type") == "text_delta":
                        await forwarder.send(event.get("delta") or "")
                    elif event.get("type") == "done":
                        response = event.get("response")
                        break
                if response is None:
                    response = LLMResponse.failed("Model stream ended without a final response")
            else:
                response = await self.provider.chat(**kwargs)
        except LLMError as e:
            return ModelCallOutcome.from_exception(e)
        return ModelCallOutcome.from_response(response)

    async def _execute_calls(self, calls: list[ToolCall], store: ChatStore) -> list[FunctionCallResult]:
        if self.config.parallel_tool_calls and len(calls) > 1:
            results = await asyncio.gather(*(self.tools.execute(c.name, c.arguments, store) for c in calls))
            return list(results)
        return [await self.tools.execute(c.name, c.arguments, store) for c in calls]

    async def _run_tool_round(
        self,
        store: ChatStore,
        now: datetime,
        messages: list[dict[str, Any]],
        response: LLMResponse,
        state: _TurnState,
        emitter: TurnEventEmitter,
    ) -> None:
        calls = list(response.tool_calls)
        self.context.add_assistant_tool_calls(
            messages,
            response.content,
            calls,
            reasoning_content=response.reasoning_content,
        )
        for call in calls:
            await emitter.emit({
                "type": TURN_EVENT_TOOL_START,
                "round": state.rounds,
                "tool": call.name,
                "tool_call_id": call.id,
                "arguments": call.arguments,
            })

        results = await self._execute_calls(calls, store)

        # Merge in request order.
        for call, result in zip(calls, results):
            shaper = self.shapers.get(call.name)
            executed = ExecutedFunctionResponse(
                name=call.name,
                raw_response=result.response,
                model_response=shaper.compact(result.response, self.limits),
                is_error=result.is_error,
            )
            state.executed.append(executed)
            state.citations.collect(executed, store)
            queued = None if result.is_error else self._queued_action(result.response, store, now)
            if queued is not None:
                state.add_queued(queued)
            self.context.add_tool_result(messages, call.id, call.name, executed.model_response)
            await emitter.emit({
                "type": TURN_EVENT_TOOL_END,
                "round": state.rounds,
                "tool": call.name,
                "tool_call_id": call.id,
                "is_error": result.is_error,
                "queued_action_id": queued.id if queued else None,
            })

        logger.info("tool_round_completed", round=state.rounds, tool_count=len(calls))

    @staticmethod
    def _queued_action(raw: Any, store: ChatStore, now: datetime) -> PendingAction | None:
        if not isinstance(raw, dict) or not raw.get("requires_confirmation"):
            return None
        action = raw.get("pending_action")
        if not isinstance(action, dict) or not isinstance(action.get("id"), str):
            return None
        return store.get_pending_action_by_id(action["id"], now)

    # -- persistence ---------------------------------------------------

    async def _finish(
        self,
        store: ChatStore,
        user_input: str,
        attachments: list[ImageAttachment],
        reply: str,
        metadata: ConversationMetadata,
        forwarder: ChunkForwarder,
    ) -> SendChatResult:
        user_message = store.record_message("user", user_input, attachments=attachments or None)
        assistant_message = store.record_message("assistant", reply, metadata)
        await forwarder.finish(reply)
        return SendChatResult(
            reply=reply,
            user_message=user_message,
            assistant_message=assistant_message,
            citations=list(metadata.citations),
            history=store.get_history_page(1, self.config.history_page_size),
            finish_reason=metadata.finish_reason,
            usage=metadata.usage,
        )
