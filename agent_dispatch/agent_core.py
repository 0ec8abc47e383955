"""Autonomous conversation engine.

Drives a model through repeated turns toward a goal: count tokens, run the
turn, run requested tools, classify the outcome, and either go round again or
stop with a terminal reason. The conversation store is the only shared state;
the loop re-reads it after every await.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Callable, Sequence

from agent_dispatch.cancellation import CancellationToken, CancellationTokenSource
from agent_dispatch.classifier import (
    CompletionClassifier,
    HeuristicCompletionClassifier,
    determine_conversation_outcome,
)
from agent_dispatch.config import Config, get_config
from agent_dispatch.exceptions import ModelNotFoundError, is_cancellation_message
from agent_dispatch.history import (
    ConversationResult,
    ConversationStatus,
    History,
    TerminalReason,
    TurnError,
    TurnResult,
    add_assistant_response,
    add_tool_results,
)
from agent_dispatch.instructions import InstructionLoader, assemble_instructions
from agent_dispatch.llm import ModelGateway, RequestOptions, get_model_gateway
from agent_dispatch.logging import get_logger, log_to_channel, truncate_for_logging
from agent_dispatch.messages import build_agentic_messages
from agent_dispatch.state import ConversationStore, get_conversation_store
from agent_dispatch.tool_runner import execute_tool_calls
from agent_dispatch.tools.registry import ToolRegistry, get_tool_registry
from agent_dispatch.turn_executor import execute_conversation_turn

log = get_logger(__name__)


def _no_progress(message: str) -> None:
    return None


@dataclass
class ConversationContext:
    """Everything one run of the loop needs; fixed for the session."""

    conv_id: int
    goal: str
    model_id: str
    instructions: str
    max_turns: int
    options: RequestOptions = field(default_factory=RequestOptions)
    enabled_tools: list[str] = field(default_factory=list)
    token: CancellationToken = field(default_factory=CancellationToken.none)
    progress_callback: Callable[[str], None] = _no_progress


class AgentCore:
    """Conversation loop bound to a store, gateways and a classifier."""

    def __init__(
        self,
        store: ConversationStore | None = None,
        gateway: ModelGateway | None = None,
        registry: ToolRegistry | None = None,
        classifier: CompletionClassifier | None = None,
        config: Config | None = None,
        loader: InstructionLoader | None = None,
        tool_timeout_seconds: float | None = None,
        poll_interval: float | None = None,
        poll_ceiling: float | None = None,
    ):
        self.config = config or get_config()
        self.store = store or get_conversation_store()
        self.gateway = gateway or get_model_gateway()
        self.registry = registry or get_tool_registry()
        self.classifier = classifier or HeuristicCompletionClassifier()
        self.loader = loader
        self.tool_timeout_seconds = (
            tool_timeout_seconds
            if tool_timeout_seconds is not None
            else self.config.tool_timeout_seconds
        )
        self.poll_interval = (
            poll_interval
            if poll_interval is not None
            else self.config.cancellation.poll_interval_ms / 1000.0
        )
        self.poll_ceiling = (
            poll_ceiling
            if poll_ceiling is not None
            else self.config.cancellation.poll_ceiling_ms / 1000.0
        )

    def _update(self, conv_id: int, **changes) -> None:
        """Write to the store; a record deleted mid-run is left deleted."""
        if self.store.get(conv_id) is None:
            log.warning("Conversation removed while running", conv_id=conv_id)
            return
        self.store.update(conv_id, **changes)

    def _cancelled_between_turns(self, ctx: ConversationContext) -> bool:
        record = self.store.get(ctx.conv_id)
        if record is not None and record.cancelled:
            return True
        return ctx.token.is_cancellation_requested

    def _stop_on_failure(
        self,
        ctx: ConversationContext,
        history: History,
        message: str,
        last_response: TurnResult | None,
    ) -> ConversationResult:
        if is_cancellation_message(message):
            ctx.token.mark_acted_upon()
            log_to_channel(ctx.conv_id, "🛑 Conversation cancelled by user")
            return ConversationResult(history, TerminalReason.CANCELLED, last_response)
        log_to_channel(ctx.conv_id, f"❌ Error: {message}")
        return ConversationResult(
            history,
            TerminalReason.ERROR,
            last_response,
            error_message=message,
        )

    async def run_conversation_loop(self, ctx: ConversationContext) -> ConversationResult:
        """Run turns until the conversation reaches a terminal reason."""
        history: History = ()
        turn = 1
        last_response: TurnResult | None = None

        while True:
            ctx.progress_callback(f"Turn {turn}/{ctx.max_turns}")

            try:
                messages = build_agentic_messages(history, ctx.instructions, ctx.goal, self.loader)
                turn_tokens = await self.gateway.count_tokens(ctx.model_id, messages)
            except Exception as e:
                return self._stop_on_failure(ctx, history, str(e), last_response)

            record = self.store.get(ctx.conv_id)
            new_total = (record.total_tokens if record else 0) + turn_tokens
            log_to_channel(
                ctx.conv_id,
                f"📊 Turn {turn}/{ctx.max_turns} - Starting with {turn_tokens} tokens (total: {new_total} tokens)",
            )
            self._update(
                ctx.conv_id,
                current_turn=turn,
                status=ConversationStatus.WORKING,
                total_tokens=new_total,
            )

            if turn > ctx.max_turns:
                log_to_channel(ctx.conv_id, "Exiting conversation loop: max-turns-reached")
                return ConversationResult(history, TerminalReason.MAX_TURNS_REACHED, last_response)

            try:
                turn_result = await execute_conversation_turn(
                    self.gateway,
                    model_id=ctx.model_id,
                    goal=ctx.goal,
                    instructions=ctx.instructions,
                    history=history,
                    turn=turn,
                    options=ctx.options,
                    token=ctx.token,
                    loader=self.loader,
                    poll_interval=self.poll_interval,
                    poll_ceiling=self.poll_ceiling,
                )
                if isinstance(turn_result, TurnError):
                    return self._stop_on_failure(ctx, history, turn_result.message, last_response)

                ai_text = turn_result.text
                tool_calls = turn_result.tool_calls
                if ai_text:
                    log_to_channel(ctx.conv_id, "🤖 AI Agent says:")
                    log_to_channel(ctx.conv_id, ai_text)

                history = add_assistant_response(history, ai_text, tool_calls, turn)

                if tool_calls:
                    log_to_channel(ctx.conv_id, f"🔧 AI Agent executing {len(tool_calls)} tool(s)")
                    results = await execute_tool_calls(
                        tool_calls,
                        self.registry,
                        timeout_seconds=self.tool_timeout_seconds,
                        enabled=ctx.enabled_tools,
                        logger=lambda message: log_to_channel(ctx.conv_id, message),
                    )
                    history = add_tool_results(history, results, turn)
                    log_to_channel(ctx.conv_id, f"✅ Tools executed, {len(results)} result(s)")
            except Exception as e:
                log.error("Conversation turn raised", conv_id=ctx.conv_id, turn=turn, error=str(e))
                return self._stop_on_failure(ctx, history, str(e), last_response)

            outcome = determine_conversation_outcome(
                ai_text, tool_calls, turn, ctx.max_turns, self.classifier
            )
            record = self.store.get(ctx.conv_id)
            final_tokens = record.total_tokens if record else new_total
            log_to_channel(ctx.conv_id, f"✓ Turn {turn} completed (total: {final_tokens} tokens)")

            if not outcome.should_continue:
                log_to_channel(ctx.conv_id, f"Exiting conversation loop: {outcome.reason.value}")
                return ConversationResult(
                    history,
                    TerminalReason.from_outcome(outcome.reason),
                    turn_result,
                )

            # cancellation may land between turns, after the stream finished
            if self._cancelled_between_turns(ctx):
                ctx.token.mark_acted_upon()
                log_to_channel(ctx.conv_id, "🛑 Conversation cancelled by user")
                return ConversationResult(history, TerminalReason.CANCELLED, turn_result)

            log_to_channel(ctx.conv_id, "↻ AI Agent continuing to next step...")
            last_response = turn_result
            turn += 1

    async def agentic_conversation(
        self,
        goal: str,
        *,
        conv_id: int,
        model_id: str | None = None,
        instructions: str | Sequence[str] | None = None,
        context_file_paths: Sequence[str] | None = None,
        max_turns: int | None = None,
        tool_ids: Sequence[str] | None = None,
        allow_unsafe_tools: bool | None = None,
        progress_callback: Callable[[str], None] | None = None,
    ) -> ConversationResult:
        """Run an autonomous conversation registered under ``conv_id``.

        Args:
            goal: What the agent should achieve (non-empty)
            conv_id: Store id of the conversation
            model_id: Model to drive (config default when None)
            instructions: Text, or instruction file paths
            context_file_paths: Files appended after the instructions
            max_turns: Turn ceiling; 0 stops before the first request
            tool_ids: Tools to enable
            allow_unsafe_tools: Skip the unsafe-tool denylist
            progress_callback: Receives ``"Turn n/max"`` at each turn

        Returns:
            ConversationResult with history, reason and last response
        """
        cfg = self.config
        try:
            if not goal or not goal.strip():
                raise ValueError("goal must be a non-empty string")
            model_id = model_id or cfg.model.model_id
            max_turns = cfg.conversation.max_turns if max_turns is None else max_turns
            if max_turns < 0:
                raise ValueError("max_turns must be >= 0")
            if instructions is None:
                instructions = cfg.conversation.instructions
            final_instructions = assemble_instructions(instructions, context_file_paths)
        except (TypeError, ValueError) as e:
            # rejected input still ends the registered record
            self._update(conv_id, status=ConversationStatus.ERROR, error_message=str(e))
            raise

        if allow_unsafe_tools is None:
            allow_unsafe_tools = cfg.tools.allow_unsafe
        if tool_ids is None:
            tool_ids = cfg.tools.enabled
        selection = self.registry.enable_specific_tools(tool_ids, allow_unsafe_tools)

        try:
            model = await self.gateway.get_model(model_id)
        except Exception as e:
            log_to_channel(conv_id, f"❌ Error: {e}")
            self._update(conv_id, status=ConversationStatus.ERROR, error_message=str(e))
            return ConversationResult((), TerminalReason.ERROR, None, error_message=str(e))
        if model is None:
            message = str(ModelNotFoundError(model_id))
            self._update(conv_id, status=ConversationStatus.ERROR, error_message=message)
            return ConversationResult(
                (),
                TerminalReason.MODEL_NOT_FOUND_ERROR,
                None,
                error_message=message,
            )

        source = CancellationTokenSource()
        record = self.store.get(conv_id)
        if record is not None and record.cancelled:
            source.cancel()
        self._update(conv_id, cancellation_source=source)

        ctx = ConversationContext(
            conv_id=conv_id,
            goal=goal,
            model_id=model_id,
            instructions=final_instructions,
            max_turns=max_turns,
            options=RequestOptions(tools=selection.definitions(), tool_mode=selection.tool_mode),
            enabled_tools=selection.names,
            token=source.token,
            progress_callback=progress_callback or _no_progress,
        )

        try:
            result = await self.run_conversation_loop(ctx)
        except asyncio.CancelledError:
            self._update(conv_id, status=ConversationStatus.CANCELLED)
            raise
        finally:
            source.dispose()

        record = self.store.get(conv_id)
        if record is not None and record.cancelled:
            result.reason = TerminalReason.CANCELLED
            result.error_message = None

        self._update(
            conv_id,
            status=result.reason.to_status(),
            error_message=result.error_message if result.reason is TerminalReason.ERROR else None,
        )
        log.info(
            "Conversation finished",
            conv_id=conv_id,
            reason=result.reason.value,
            goal=truncate_for_logging(goal, 80),
        )
        return result
