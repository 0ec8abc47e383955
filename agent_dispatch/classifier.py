"""Completion detection over the agent's free-text output.

These are heuristics, not a contract with the model. The classifier sits
behind ``CompletionClassifier`` so a structured "done" signal can replace it
without touching the conversation loop.
"""

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Sequence

from agent_dispatch.history import OutcomeReason, ToolCall

GOAL_ACHIEVED_MARKER = "~~~GOAL-ACHIEVED~~~"
CONTINUING_MARKER = "~~~CONTINUING~~~"

_COMPLETION_RE = re.compile(
    r"(~~~GOAL-ACHIEVED~~~"
    r"|task.*(complete|done|finished)"
    r"|goal.*(achieved|reached|accomplished)"
    r"|mission.*(complete|success)"
    r"|successfully (completed|finished))",
    re.IGNORECASE,
)
_NEGATION_RE = re.compile(
    r"(not|n't|hasn't|haven't|isn't|aren't).{0,10}"
    r"(complete|done|finished|achieved|reached|accomplished)",
    re.IGNORECASE,
)
_CONTINUATION_RE = re.compile(
    r"(~~~CONTINUING~~~|next.*(step|action)|i'll|i.will|let.me|continu|proceed)",
    re.IGNORECASE,
)


class CompletionClassifier(ABC):
    """Decides whether a turn's text claims completion or continuation."""

    @abstractmethod
    def indicates_completion(self, text: str | None) -> bool:
        pass

    @abstractmethod
    def indicates_continuation(self, text: str | None) -> bool:
        pass


class HeuristicCompletionClassifier(CompletionClassifier):
    """Regex classifier with a short negation window."""

    def indicates_completion(self, text: str | None) -> bool:
        if not text:
            return False
        return bool(_COMPLETION_RE.search(text)) and not _NEGATION_RE.search(text)

    def indicates_continuation(self, text: str | None) -> bool:
        if not text:
            return False
        return bool(_CONTINUATION_RE.search(text))


_default_classifier = HeuristicCompletionClassifier()


def agent_indicates_completion(text: str | None) -> bool:
    return _default_classifier.indicates_completion(text)


def agent_indicates_continuation(text: str | None) -> bool:
    return _default_classifier.indicates_continuation(text)


@dataclass(frozen=True)
class Outcome:
    should_continue: bool
    reason: OutcomeReason


def determine_conversation_outcome(
    text: str | None,
    tool_calls: Sequence[ToolCall] | None,
    turn: int,
    max_turns: int,
    classifier: CompletionClassifier | None = None,
) -> Outcome:
    """Decide whether the loop continues after a finished turn.

    Requested tool calls always win over completion language in the same
    turn; only the turn ceiling ranks above them.
    """
    classifier = classifier or _default_classifier
    if turn >= max_turns:
        return Outcome(False, OutcomeReason.MAX_TURNS_REACHED)
    if tool_calls:
        return Outcome(True, OutcomeReason.TOOLS_EXECUTING)
    if classifier.indicates_completion(text):
        return Outcome(False, OutcomeReason.TASK_COMPLETE)
    if classifier.indicates_continuation(text):
        return Outcome(True, OutcomeReason.AGENT_CONTINUING)
    return Outcome(False, OutcomeReason.AGENT_FINISHED)
