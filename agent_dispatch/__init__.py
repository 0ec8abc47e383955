"""Agent Dispatch - drive a language model toward a goal, turn by turn."""

__version__ = "0.1.0"

from agent_dispatch.config import Config
from agent_dispatch.orchestrator import (
    AgentOrchestrator,
    autonomous_conversation,
    cancel_conversation,
    delete_conversation,
)

__all__ = [
    "AgentOrchestrator",
    "Config",
    "autonomous_conversation",
    "cancel_conversation",
    "delete_conversation",
    "__version__",
]
