import asyncio

import pytest

from agent_dispatch.history import ToolCall
from agent_dispatch.tool_runner import execute_tool_calls, timeout_message
from agent_dispatch.tools.registry import Tool, ToolRegistry, ToolResult


class FastTool(Tool):
    name = "fast"
    description = "Returns immediately"

    async def execute(self, **kwargs):
        return ToolResult(content="fast done")


class HangingTool(Tool):
    name = "hang"
    description = "Never returns"

    def __init__(self):
        self.cancelled = False

    async def execute(self, **kwargs):
        try:
            await asyncio.sleep(60)
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        return ToolResult(content="unreachable")


class BrokenTool(Tool):
    name = "broken"
    description = "Raises"

    async def execute(self, **kwargs):
        raise RuntimeError("disk on fire")


class FailingTool(Tool):
    name = "failing"
    description = "Reports failure"

    async def execute(self, **kwargs):
        return ToolResult(success=False, content="bad input")


def build_registry(*tools):
    registry = ToolRegistry(unsafe_tools=[])
    for tool in tools:
        registry.register(tool)
    return registry


def test_timeout_message_format():
    assert timeout_message(30) == "Tool execution timed out after 30 seconds. Try a simpler approach."
    assert timeout_message(0.5) == "Tool execution timed out after 0.5 seconds. Try a simpler approach."


@pytest.mark.asyncio
async def test_empty_call_list():
    assert await execute_tool_calls([], build_registry()) == []


@pytest.mark.asyncio
async def test_timeout_does_not_disturb_sibling():
    hanging = HangingTool()
    registry = build_registry(FastTool(), hanging)
    calls = [ToolCall("c1", "hang"), ToolCall("c2", "fast")]
    lines: list[str] = []

    results = await asyncio.wait_for(
        execute_tool_calls(calls, registry, timeout_seconds=0.1, logger=lines.append),
        timeout=5,
    )

    assert [r.call_id for r in results] == ["c1", "c2"]
    assert results[0].timed_out is True
    assert results[0].result == timeout_message(0.1)
    assert results[1].result == "fast done"
    assert results[1].succeeded
    assert any("timed out" in line for line in lines)

    await asyncio.sleep(0.05)
    assert hanging.cancelled is True


@pytest.mark.asyncio
async def test_errors_stay_with_their_call():
    registry = build_registry(FastTool(), BrokenTool(), FailingTool())
    calls = [
        ToolCall("a", "broken"),
        ToolCall("b", "fast"),
        ToolCall("c", "failing"),
        ToolCall("d", "missing"),
    ]

    results = await execute_tool_calls(calls, registry, timeout_seconds=1)

    by_id = {r.call_id: r for r in results}
    assert len(results) == 4
    assert set(by_id) == {"a", "b", "c", "d"}
    assert "disk on fire" in by_id["a"].error
    assert by_id["b"].result == "fast done"
    assert by_id["c"].error == "bad input"
    assert by_id["d"].error == "Tool not found: missing"


@pytest.mark.asyncio
async def test_calls_run_concurrently():
    class SlowTool(Tool):
        name = "slow"
        description = "Sleeps briefly"

        async def execute(self, **kwargs):
            await asyncio.sleep(0.2)
            return ToolResult(content="slow done")

    registry = build_registry(SlowTool())
    calls = [ToolCall(f"c{i}", "slow") for i in range(5)]

    loop = asyncio.get_running_loop()
    started = loop.time()
    results = await execute_tool_calls(calls, registry, timeout_seconds=5)
    elapsed = loop.time() - started

    assert [r.result for r in results] == ["slow done"] * 5
    assert elapsed < 0.8


@pytest.mark.asyncio
async def test_enabled_list_is_enforced():
    registry = build_registry(FastTool())

    results = await execute_tool_calls([ToolCall("c1", "fast")], registry, enabled=["other"])

    assert results[0].error == "Tool 'fast' blocked: Not enabled for this conversation"
