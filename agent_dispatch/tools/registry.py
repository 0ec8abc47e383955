"""Tool registry and base tool class."""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Iterable

from pydantic import BaseModel, model_validator

from agent_dispatch.config import get_config
from agent_dispatch.exceptions import (
    ToolBlockedError,
    ToolExecutionError,
    ToolNotFoundError,
)
from agent_dispatch.llm import ToolDefinition
from agent_dispatch.logging import get_logger

log = get_logger(__name__)


def _normalize_tool_name(value: str) -> str:
    """Normalize tool names for denylist comparisons."""
    return str(value or "").strip().lower()


class ToolResult(BaseModel):
    """Result from tool execution."""

    success: bool = True
    content: str = ""
    error: str | None = None

    @model_validator(mode="after")
    def _normalize_failure_error(self) -> "ToolResult":
        """Ensure failed results always provide an error message."""
        if not self.success and not (self.error or "").strip():
            fallback = (self.content or "").strip()
            self.error = fallback or "Tool execution failed"
        return self


class Tool(ABC):
    """Base class for all tools."""

    name: str = ""
    description: str = ""
    parameters: dict[str, Any] = {}

    @abstractmethod
    async def execute(self, **kwargs: Any) -> ToolResult:
        """Execute the tool.

        Args:
            **kwargs: Tool-specific arguments, plus ``_abort_event`` which is
                set when the caller gives up on the call

        Returns:
            ToolResult with success status and content
        """
        pass

    def get_definition(self) -> ToolDefinition:
        """Get the tool definition for the model request."""
        return ToolDefinition(
            name=self.name,
            description=self.description,
            parameters=self.parameters,
        )

    def validate_arguments(self, arguments: dict[str, Any]) -> None:
        """Validate tool arguments against schema.

        Raises:
            ToolExecutionError if a required argument is missing
        """
        required = (self.parameters or {}).get("required", [])
        for name in required:
            if name not in arguments:
                raise ToolExecutionError(
                    self.name,
                    f"Missing required argument: {name}",
                )


@dataclass
class ToolSelection:
    """Tools enabled for one conversation."""

    tools: list[Tool] = field(default_factory=list)
    tool_mode: str = "auto"

    @property
    def names(self) -> list[str]:
        return [tool.name for tool in self.tools]

    def definitions(self) -> list[ToolDefinition]:
        return [tool.get_definition() for tool in self.tools]


def extract_tool_result_content(raw: Any) -> str:
    """Extract readable text from whatever a tool returned."""
    if raw is None:
        return ""
    if isinstance(raw, ToolResult):
        return raw.content if raw.success else (raw.error or "")
    if isinstance(raw, str):
        return raw
    if isinstance(raw, dict):
        content = raw.get("content")
        if isinstance(content, list):
            return "".join(extract_tool_result_content(item) for item in content)
        if isinstance(content, str):
            return content
        text = raw.get("text") or raw.get("value")
        if isinstance(text, str):
            return text
    if isinstance(raw, (list, tuple)):
        return "".join(extract_tool_result_content(item) for item in raw)
    return str(raw)


class ToolRegistry:
    """Registry for managing available tools."""

    def __init__(self, unsafe_tools: Iterable[str] | None = None):
        self._tools: dict[str, Tool] = {}
        if unsafe_tools is None:
            unsafe_tools = get_config().tools.unsafe
        self._unsafe = {_normalize_tool_name(name) for name in unsafe_tools}

    def register(self, tool: Tool) -> None:
        """Register a tool.

        Args:
            tool: Tool instance to register
        """
        if not tool.name:
            raise ValueError("Tool must have a name")

        log.debug("Registering tool", tool=tool.name)
        self._tools[tool.name] = tool

    def is_unsafe(self, name: str) -> bool:
        return _normalize_tool_name(name) in self._unsafe

    def get(self, name: str) -> Tool:
        """Get a tool by name.

        Raises:
            ToolNotFoundError if not found
        """
        if name not in self._tools:
            raise ToolNotFoundError(name)
        return self._tools[name]

    def available_tools(self, allow_unsafe: bool = False) -> list[Tool]:
        """Registered tools minus the unsafe denylist unless opted in."""
        if allow_unsafe:
            return list(self._tools.values())
        return [tool for tool in self._tools.values() if not self.is_unsafe(tool.name)]

    def list_tools(self, allow_unsafe: bool = False) -> list[str]:
        """List registered tool names the agent may see."""
        return [tool.name for tool in self.available_tools(allow_unsafe)]

    def enable_specific_tools(
        self,
        tool_ids: Iterable[str],
        allow_unsafe: bool = False,
    ) -> ToolSelection:
        """Enable only the named tools; unknown or unsafe names are dropped."""
        wanted = set(tool_ids or [])
        selected = [tool for tool in self.available_tools(allow_unsafe) if tool.name in wanted]
        dropped = wanted - {tool.name for tool in selected}
        if dropped:
            log.info("Tools not enabled", tools=sorted(dropped), allow_unsafe=allow_unsafe)
        return ToolSelection(tools=selected)

    @staticmethod
    async def _cancel_task(task: asyncio.Task[Any] | None) -> None:
        """Cancel task and await it to avoid pending task warnings."""
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception as e:
            log.debug("Cancelled task raised", error=str(e))

    async def invoke(
        self,
        name: str,
        arguments: dict[str, Any] | None,
        enabled: Iterable[str] | None = None,
        abort_event: asyncio.Event | None = None,
    ) -> ToolResult:
        """Execute a tool by name.

        Args:
            name: Tool name
            arguments: Tool input
            enabled: Names enabled for the calling conversation (None = any)
            abort_event: Set by the caller to stop the tool co-operatively

        Returns:
            ToolResult from execution

        Raises:
            ToolNotFoundError if tool not found
            ToolBlockedError if tool is not enabled
            ToolExecutionError if execution fails or is aborted
        """
        tool = self.get(name)
        if enabled is not None and name not in set(enabled):
            raise ToolBlockedError(name, "Not enabled for this conversation")

        arguments = dict(arguments or {})
        tool.validate_arguments(arguments)

        tool_abort_event = abort_event or asyncio.Event()
        execute_task: asyncio.Task[ToolResult] | None = None
        abort_wait_task: asyncio.Task[bool] | None = None
        try:
            log.info("Executing tool", tool=name, args=arguments)
            execute_task = asyncio.create_task(tool.execute(**arguments, _abort_event=tool_abort_event))
            abort_wait_task = asyncio.create_task(tool_abort_event.wait())
            done, _ = await asyncio.wait(
                {execute_task, abort_wait_task},
                return_when=asyncio.FIRST_COMPLETED,
            )

            if execute_task in done:
                result = await execute_task
                if not isinstance(result, ToolResult):
                    raise ToolExecutionError(name, "Tool returned invalid result payload")
                log.info("Tool executed", tool=name, success=result.success)
                return result

            await self._cancel_task(execute_task)
            raise ToolExecutionError(name, "Execution aborted")
        except asyncio.CancelledError:
            tool_abort_event.set()
            await self._cancel_task(execute_task)
            raise
        except ToolExecutionError:
            raise
        except Exception as e:
            log.error("Tool execution failed", tool=name, error=str(e))
            raise ToolExecutionError(name, str(e))
        finally:
            await self._cancel_task(abort_wait_task)


# Global registry
_registry: ToolRegistry | None = None


def get_tool_registry() -> ToolRegistry:
    """Get the global tool registry."""
    global _registry
    if _registry is None:
        _registry = ToolRegistry()
    return _registry


def set_tool_registry(registry: ToolRegistry) -> None:
    """Set the global tool registry."""
    global _registry
    _registry = registry
