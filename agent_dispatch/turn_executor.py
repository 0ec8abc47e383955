"""Execute one conversation turn against the model gateway."""

import asyncio
from typing import Any, AsyncIterator

from agent_dispatch.cancellation import CancellationToken
from agent_dispatch.exceptions import ConversationCancelledError
from agent_dispatch.history import History, ToolCall, TurnError, TurnResult
from agent_dispatch.instructions import InstructionLoader
from agent_dispatch.llm import (
    ChatResponse,
    ModelGateway,
    RequestOptions,
    TextFragment,
    ToolCallFragment,
)
from agent_dispatch.logging import get_logger
from agent_dispatch.messages import agentic_system_prompt, build_agentic_messages

log = get_logger(__name__)

DEFAULT_POLL_INTERVAL = 0.2
DEFAULT_POLL_CEILING = 30.0


async def _read_next(iterator: AsyncIterator[Any]) -> tuple[bool, Any]:
    """Read one fragment; returns ``(done, value)``."""
    try:
        return False, await iterator.__anext__()
    except StopAsyncIteration:
        return True, None


async def _poll_for_cancellation(
    token: CancellationToken,
    poll_interval: float,
    poll_ceiling: float,
) -> None:
    """Raise ConversationCancelledError once the token fires; give up at the ceiling."""
    elapsed = 0.0
    while elapsed < poll_ceiling:
        await asyncio.sleep(poll_interval)
        if token.is_cancellation_requested:
            raise ConversationCancelledError()
        elapsed += poll_interval


async def _cancel_task(task: asyncio.Task[Any]) -> None:
    if task.done():
        return
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass
    except Exception as e:
        log.debug("Cancelled stream read raised", error=str(e))


async def cancellable_next(
    iterator: AsyncIterator[Any],
    token: CancellationToken | None,
    poll_interval: float = DEFAULT_POLL_INTERVAL,
    poll_ceiling: float = DEFAULT_POLL_CEILING,
) -> tuple[bool, Any]:
    """Read the next stream fragment while watching for cancellation.

    The read races a poller that checks the token every ``poll_interval``
    seconds. After ``poll_ceiling`` seconds the poller stops and the read is
    awaited unconditionally.

    Raises:
        ConversationCancelledError if the token is (or becomes) cancelled first
    """
    if token is not None and token.is_cancellation_requested:
        raise ConversationCancelledError()

    read_task = asyncio.create_task(_read_next(iterator))
    if token is None:
        return await read_task

    poll_task = asyncio.create_task(_poll_for_cancellation(token, poll_interval, poll_ceiling))
    try:
        done, _ = await asyncio.wait({read_task, poll_task}, return_when=asyncio.FIRST_COMPLETED)
        if read_task in done:
            return read_task.result()
        try:
            poll_task.result()
        except ConversationCancelledError:
            await _cancel_task(read_task)
            raise
        return await read_task
    except asyncio.CancelledError:
        await _cancel_task(read_task)
        raise
    finally:
        await _cancel_task(poll_task)
        if not poll_task.cancelled():
            # read and poller can finish together; the poller's error is moot
            poll_task.exception()


def _fragment_to_tool_call(fragment: Any) -> ToolCall | None:
    if isinstance(fragment, ToolCallFragment):
        return ToolCall(call_id=fragment.call_id, name=fragment.name, input=dict(fragment.input or {}))
    if isinstance(fragment, dict):
        call_id = fragment.get("call_id") or fragment.get("callId")
        name = fragment.get("name")
        if call_id and name:
            return ToolCall(call_id=str(call_id), name=str(name), input=dict(fragment.get("input") or {}))
    return None


def _fragment_text(fragment: Any) -> str | None:
    if isinstance(fragment, TextFragment):
        return fragment.value
    if isinstance(fragment, dict) and isinstance(fragment.get("delta"), str):
        return fragment["delta"]
    return None


async def collect_response_with_tools(
    response: ChatResponse,
    token: CancellationToken | None = None,
    poll_interval: float = DEFAULT_POLL_INTERVAL,
    poll_ceiling: float = DEFAULT_POLL_CEILING,
) -> tuple[str, list[ToolCall]]:
    """Collect all text and tool calls from a streaming response."""
    iterator = response.stream.__aiter__()
    text_parts: list[str] = []
    tool_calls: list[ToolCall] = []
    try:
        while True:
            done, fragment = await cancellable_next(iterator, token, poll_interval, poll_ceiling)
            if done:
                break
            text = _fragment_text(fragment)
            if text is not None:
                text_parts.append(text)
                continue
            call = _fragment_to_tool_call(fragment)
            if call is not None:
                tool_calls.append(call)
            # other fragment kinds are skipped
    finally:
        aclose = getattr(iterator, "aclose", None)
        if aclose is not None:
            try:
                await aclose()
            except Exception as e:
                log.debug("Closing response stream failed", error=str(e))
    return "".join(text_parts), tool_calls


async def execute_conversation_turn(
    gateway: ModelGateway,
    *,
    model_id: str,
    goal: str,
    instructions: str,
    history: History,
    turn: int,
    options: RequestOptions | None = None,
    token: CancellationToken | None = None,
    loader: InstructionLoader | None = None,
    poll_interval: float = DEFAULT_POLL_INTERVAL,
    poll_ceiling: float = DEFAULT_POLL_CEILING,
) -> TurnResult | TurnError:
    """Send one request and gather the model's text and tool calls.

    Provider failures and cancellation come back as ``TurnError``; the
    message of a cancelled turn is the cancellation signature.
    """
    try:
        messages = build_agentic_messages(history, instructions, goal, loader)
        response = await gateway.send_request(
            model_id,
            agentic_system_prompt(loader),
            messages,
            options,
        )
        text, tool_calls = await collect_response_with_tools(
            response, token, poll_interval, poll_ceiling
        )
        return TurnResult(text=text, tool_calls=tuple(tool_calls), turn=turn)
    except Exception as e:
        log.warning("Conversation turn failed", turn=turn, error=str(e))
        return TurnError(message=str(e), turn=turn)
