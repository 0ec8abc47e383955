"""Run a turn's tool calls concurrently, each under its own timeout."""

import asyncio
from typing import Callable, Iterable, Sequence

from agent_dispatch.history import ToolCall, ToolCallResult
from agent_dispatch.logging import get_logger, truncate_for_logging
from agent_dispatch.tools.registry import ToolRegistry, extract_tool_result_content

log = get_logger(__name__)

DEFAULT_TOOL_TIMEOUT_SECONDS = 30.0


def _format_seconds(seconds: float) -> str:
    return str(int(seconds)) if float(seconds).is_integer() else str(seconds)


def timeout_message(timeout_seconds: float) -> str:
    return (
        f"Tool execution timed out after {_format_seconds(timeout_seconds)} seconds. "
        "Try a simpler approach."
    )


async def _execute_one(
    call: ToolCall,
    registry: ToolRegistry,
    timeout_seconds: float,
    enabled: list[str] | None,
    logger: Callable[[str], None],
) -> ToolCallResult:
    logger(f"🎯 Invoking tool: {call.name}")
    logger(f"📝 Input: {truncate_for_logging(repr(call.input))}")

    abort_event = asyncio.Event()
    task = asyncio.create_task(
        registry.invoke(call.name, call.input, enabled=enabled, abort_event=abort_event)
    )
    try:
        done, _ = await asyncio.wait({task}, timeout=timeout_seconds)
    except asyncio.CancelledError:
        abort_event.set()
        task.cancel()
        raise

    if task not in done:
        abort_event.set()
        task.cancel()
        logger(f"⏱️ Tool {call.name} timed out after {_format_seconds(timeout_seconds)} seconds")
        return ToolCallResult(
            call_id=call.call_id,
            tool_name=call.name,
            result=timeout_message(timeout_seconds),
            timed_out=True,
        )

    try:
        raw = task.result()
    except Exception as e:
        logger(f"❌ Tool execution error for {call.name}: {e}")
        return ToolCallResult(call_id=call.call_id, tool_name=call.name, error=str(e))

    if not raw.success:
        logger(f"❌ Tool {call.name} reported failure: {raw.error}")
        return ToolCallResult(call_id=call.call_id, tool_name=call.name, error=raw.error)

    result = extract_tool_result_content(raw)
    logger(f"✅ Tool execution result for {call.name}: {truncate_for_logging(result)}")
    return ToolCallResult(call_id=call.call_id, tool_name=call.name, result=result)


async def execute_tool_calls(
    tool_calls: Sequence[ToolCall],
    registry: ToolRegistry,
    *,
    timeout_seconds: float = DEFAULT_TOOL_TIMEOUT_SECONDS,
    enabled: Iterable[str] | None = None,
    logger: Callable[[str], None] | None = None,
) -> list[ToolCallResult]:
    """Execute all tool calls of one turn.

    Calls start together and settle independently: a timeout or failure in one
    call becomes that call's result and never disturbs its siblings. The
    returned list holds exactly one result per input call id.

    Args:
        tool_calls: Calls requested by the model this turn
        registry: Tool gateway
        timeout_seconds: Per-call timeout
        enabled: Tool names enabled for the conversation (None = any)
        logger: Receives human-readable progress lines

    Returns:
        One ToolCallResult per call, in input order
    """
    if not tool_calls:
        return []

    def _default_logger(message: str) -> None:
        log.debug(message)

    logger = logger or _default_logger
    enabled_names = list(enabled) if enabled is not None else None

    logger(f"🔧 Executing {len(tool_calls)} tool call(s)...")
    return list(
        await asyncio.gather(
            *(
                _execute_one(call, registry, timeout_seconds, enabled_names, logger)
                for call in tool_calls
            )
        )
    )
