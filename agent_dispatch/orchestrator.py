"""Caller-facing entry points for autonomous conversations.

Registers conversations in the store, runs them through the core engine,
and leaves a human-readable summary on the finished record. Monitors use
``cancel_conversation`` and ``delete_conversation`` to act on a record.
"""

import asyncio
from typing import Callable, Sequence

from agent_dispatch.agent_core import AgentCore
from agent_dispatch.exceptions import ConversationNotFoundError
from agent_dispatch.history import ConversationResult, TerminalReason
from agent_dispatch.logging import configure_logging, get_logger, log_to_channel, truncate_for_logging
from agent_dispatch.state import ConversationStore

log = get_logger(__name__)

_SUMMARY_PHRASES = {
    TerminalReason.TASK_COMPLETE: "COMPLETED successfully!",
    TerminalReason.MAX_TURNS_REACHED: "reached max turns",
    TerminalReason.CANCELLED: "was CANCELLED",
    TerminalReason.AGENT_FINISHED: "finished",
    TerminalReason.ERROR: "encountered an ERROR",
    TerminalReason.MODEL_NOT_FOUND_ERROR: "could not start: model not found",
}


def format_conversation_summary(result: ConversationResult) -> str:
    """One-line outcome description suitable for display."""
    phrase = _SUMMARY_PHRASES.get(result.reason, "ended unexpectedly")
    summary = (
        f"🎯 Agentic task {phrase} "
        f"({result.assistant_turns} turns, {len(result.history)} conversation steps)"
    )
    if result.error_message:
        summary += f"\nError: {result.error_message}"
    return summary


def format_conversation_results(result: ConversationResult) -> str:
    """Summary followed by the agent's last words, if any."""
    summary = format_conversation_summary(result)
    final_text = result.final_response.text.strip() if result.final_response else ""
    if final_text:
        return f"{summary}\n\n{final_text}"
    return summary


class AgentOrchestrator:
    """Start, cancel and delete autonomous conversations."""

    def __init__(self, core: AgentCore | None = None):
        self.core = core or AgentCore()

    @property
    def store(self) -> ConversationStore:
        return self.core.store

    def register_conversation(
        self,
        goal: str,
        *,
        model_id: str | None = None,
        max_turns: int | None = None,
        caller: str | None = None,
        title: str | None = None,
    ) -> int:
        """Register a conversation record and return its id."""
        cfg = self.core.config
        if not goal or not goal.strip():
            raise ValueError("goal must be a non-empty string")
        if max_turns is not None and max_turns < 0:
            raise ValueError("max_turns must be >= 0")
        conv_id = self.store.register(
            goal=goal,
            model_id=model_id or cfg.model.model_id,
            max_turns=cfg.conversation.max_turns if max_turns is None else max_turns,
            caller=caller or cfg.conversation.caller,
            title=title or cfg.conversation.title,
        )
        log_to_channel(conv_id, f"🚀 Starting conversation: {truncate_for_logging(goal)}")
        return conv_id

    async def run_registered(
        self,
        conv_id: int,
        *,
        instructions: str | Sequence[str] | None = None,
        context_file_paths: Sequence[str] | None = None,
        tool_ids: Sequence[str] | None = None,
        allow_unsafe_tools: bool | None = None,
        progress_callback: Callable[[str], None] | None = None,
    ) -> ConversationResult:
        """Run a conversation that is already in the store."""
        record = self.store.get(conv_id)
        if record is None:
            raise ConversationNotFoundError(conv_id)

        result = await self.core.agentic_conversation(
            record.goal,
            conv_id=conv_id,
            model_id=record.model_id,
            instructions=instructions,
            context_file_paths=context_file_paths,
            max_turns=record.max_turns,
            tool_ids=tool_ids,
            allow_unsafe_tools=allow_unsafe_tools,
            progress_callback=progress_callback,
        )

        if result.reason is TerminalReason.MODEL_NOT_FOUND_ERROR:
            log_to_channel(conv_id, f"❌ Model error: {result.error_message}")
        else:
            log_to_channel(conv_id, format_conversation_summary(result))

        if self.store.get(conv_id) is not None:
            self.store.update(conv_id, results=format_conversation_results(result))
        return result

    async def autonomous_conversation(
        self,
        goal: str,
        *,
        model_id: str | None = None,
        max_turns: int | None = None,
        tool_ids: Sequence[str] | None = None,
        instructions: str | Sequence[str] | None = None,
        context_file_paths: Sequence[str] | None = None,
        allow_unsafe_tools: bool | None = None,
        caller: str | None = None,
        title: str | None = None,
        progress_callback: Callable[[str], None] | None = None,
    ) -> ConversationResult:
        """Start an autonomous conversation toward ``goal`` and wait for it.

        Returns:
            ConversationResult with history, reason and final response
        """
        conv_id = self.register_conversation(
            goal,
            model_id=model_id,
            max_turns=max_turns,
            caller=caller,
            title=title,
        )
        return await self.run_registered(
            conv_id,
            instructions=instructions,
            context_file_paths=context_file_paths,
            tool_ids=tool_ids,
            allow_unsafe_tools=allow_unsafe_tools,
            progress_callback=progress_callback,
        )

    def start_conversation(
        self,
        goal: str,
        **options,
    ) -> tuple[int, "asyncio.Task[ConversationResult]"]:
        """Register a conversation and run it in the background.

        Must be called from a running event loop. The id is available right
        away so the caller can cancel or monitor while the task runs.
        """
        register_keys = ("model_id", "max_turns", "caller", "title")
        register_options = {key: options.pop(key) for key in register_keys if key in options}
        conv_id = self.register_conversation(goal, **register_options)
        task = asyncio.create_task(self.run_registered(conv_id, **options))
        return conv_id, task

    def cancel_conversation(self, conv_id: int) -> bool:
        """Request cancellation; returns False for unknown or finished ids."""
        record = self.store.get(conv_id)
        if record is None or record.status.is_terminal:
            return False
        log_to_channel(conv_id, "🛑 Cancellation requested")
        self.store.mark_cancelled(conv_id)
        return True

    def delete_conversation(self, conv_id: int) -> bool:
        """Remove a conversation record from the store."""
        return self.store.delete(conv_id)


_orchestrator: AgentOrchestrator | None = None


def get_orchestrator() -> AgentOrchestrator:
    """Get the default orchestrator (default store, gateway and registry)."""
    global _orchestrator
    if _orchestrator is None:
        configure_logging()
        _orchestrator = AgentOrchestrator()
    return _orchestrator


def set_orchestrator(orchestrator: AgentOrchestrator | None) -> None:
    global _orchestrator
    _orchestrator = orchestrator


async def autonomous_conversation(goal: str, **options) -> ConversationResult:
    return await get_orchestrator().autonomous_conversation(goal, **options)


def cancel_conversation(conv_id: int) -> bool:
    return get_orchestrator().cancel_conversation(conv_id)


def delete_conversation(conv_id: int) -> bool:
    return get_orchestrator().delete_conversation(conv_id)
