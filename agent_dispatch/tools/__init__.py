"""Tools package for Agent Dispatch."""

from agent_dispatch.tools.registry import (
    Tool,
    ToolRegistry,
    ToolResult,
    ToolSelection,
    extract_tool_result_content,
    get_tool_registry,
    set_tool_registry,
)

__all__ = [
    "Tool",
    "ToolRegistry",
    "ToolResult",
    "ToolSelection",
    "extract_tool_result_content",
    "get_tool_registry",
    "set_tool_registry",
]
