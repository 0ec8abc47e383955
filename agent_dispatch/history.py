"""Conversation records: history entries, turn results and final results.

History holds only what the agent said and what its tools returned. The goal
never goes in here; it is re-injected by the message builder on every turn.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union


class ConversationStatus(str, Enum):
    """Lifecycle status stored on a conversation record."""

    STARTED = "started"
    WORKING = "working"
    CANCEL_REQUESTED = "cancel-requested"
    TASK_COMPLETE = "task-complete"
    MAX_TURNS_REACHED = "max-turns-reached"
    AGENT_FINISHED = "agent-finished"
    CANCELLED = "cancelled"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATUSES


_TERMINAL_STATUSES = frozenset({
    ConversationStatus.TASK_COMPLETE,
    ConversationStatus.MAX_TURNS_REACHED,
    ConversationStatus.AGENT_FINISHED,
    ConversationStatus.CANCELLED,
    ConversationStatus.ERROR,
})


class OutcomeReason(str, Enum):
    """Why a finished turn continues or stops the loop."""

    MAX_TURNS_REACHED = "max-turns-reached"
    TOOLS_EXECUTING = "tools-executing"
    TASK_COMPLETE = "task-complete"
    AGENT_CONTINUING = "agent-continuing"
    AGENT_FINISHED = "agent-finished"


class TerminalReason(str, Enum):
    """Reason attached to a finished conversation."""

    TASK_COMPLETE = "task-complete"
    MAX_TURNS_REACHED = "max-turns-reached"
    AGENT_FINISHED = "agent-finished"
    CANCELLED = "cancelled"
    ERROR = "error"
    MODEL_NOT_FOUND_ERROR = "model-not-found-error"

    @classmethod
    def from_outcome(cls, reason: OutcomeReason) -> "TerminalReason":
        if reason is OutcomeReason.TASK_COMPLETE:
            return cls.TASK_COMPLETE
        if reason is OutcomeReason.MAX_TURNS_REACHED:
            return cls.MAX_TURNS_REACHED
        if reason is OutcomeReason.AGENT_FINISHED:
            return cls.AGENT_FINISHED
        raise ValueError(f"Outcome {reason.value} does not stop a conversation")

    def to_status(self) -> ConversationStatus:
        if self is TerminalReason.MODEL_NOT_FOUND_ERROR:
            return ConversationStatus.ERROR
        return ConversationStatus(self.value)


@dataclass(frozen=True)
class ToolCall:
    """A tool invocation requested by the model."""

    call_id: str
    name: str
    input: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ToolCallResult:
    """Outcome of one tool call: a result text or an error text."""

    call_id: str
    tool_name: str
    result: str | None = None
    error: str | None = None
    timed_out: bool = False

    @property
    def succeeded(self) -> bool:
        return self.error is None

    def to_text(self) -> str:
        """Text shown to the agent on the next turn."""
        if self.error is not None:
            return f"{self.tool_name} ({self.call_id}) error: {self.error}"
        return f"{self.tool_name} ({self.call_id}): {self.result or ''}"


@dataclass(frozen=True)
class AssistantEntry:
    content: str
    tool_calls: tuple[ToolCall, ...] = ()
    turn: int = 0


@dataclass(frozen=True)
class ToolResultsEntry:
    results: tuple[ToolCallResult, ...] = ()
    turn: int = 0


HistoryEntry = Union[AssistantEntry, ToolResultsEntry]
History = tuple[HistoryEntry, ...]


def add_assistant_response(
    history: History,
    text: str,
    tool_calls: list[ToolCall] | tuple[ToolCall, ...] | None,
    turn: int,
) -> History:
    """Return history with the assistant's turn appended."""
    entry = AssistantEntry(content=text or "", tool_calls=tuple(tool_calls or ()), turn=turn)
    return history + (entry,)


def add_tool_results(
    history: History,
    results: list[ToolCallResult] | tuple[ToolCallResult, ...],
    turn: int,
) -> History:
    """Return history with a turn's tool results appended."""
    return history + (ToolResultsEntry(results=tuple(results), turn=turn),)


@dataclass(frozen=True)
class TurnResult:
    """Accumulated output of one model request."""

    text: str
    tool_calls: tuple[ToolCall, ...]
    turn: int


@dataclass(frozen=True)
class TurnError:
    """A turn that failed before producing a result."""

    message: str
    turn: int


@dataclass
class ConversationResult:
    """What a caller gets back once a conversation terminates."""

    history: History
    reason: TerminalReason
    final_response: TurnResult | None = None
    error_message: str | None = None

    @property
    def assistant_turns(self) -> int:
        return sum(1 for entry in self.history if isinstance(entry, AssistantEntry))
