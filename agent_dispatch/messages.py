"""Per-turn message assembly for agentic conversations."""

from agent_dispatch.history import AssistantEntry, History, ToolResultsEntry
from agent_dispatch.instructions import InstructionLoader, get_instruction_loader
from agent_dispatch.llm import Message

SYSTEM_PROMPT_TEMPLATE = "agentic_system_prompt.md"
GOAL_PROMPT_TEMPLATE = "goal_user_prompt.md"
TOOL_RESULT_PROMPT_TEMPLATE = "tool_result_user_prompt.md"


def agentic_system_prompt(loader: InstructionLoader | None = None) -> str:
    return (loader or get_instruction_loader()).load(SYSTEM_PROMPT_TEMPLATE)


def build_agentic_messages(
    history: History,
    instructions: str,
    goal: str,
    loader: InstructionLoader | None = None,
) -> list[Message]:
    """Build the message list for one turn.

    The goal message always comes first and is rebuilt from ``goal`` on every
    call, so it can never fall out of the conversation. History replays as
    assistant messages and one user directive per tool result.

    Args:
        history: Assistant and tool-result entries so far
        instructions: Text placed before the goal (may be empty)
        goal: The task; never part of ``history``
        loader: Template loader override

    Returns:
        Messages for the model, goal first
    """
    loader = loader or get_instruction_loader()
    messages = [
        Message(
            role="user",
            content=loader.render(GOAL_PROMPT_TEMPLATE, instructions=instructions or "", goal=goal),
        )
    ]
    for entry in history:
        if isinstance(entry, AssistantEntry):
            messages.append(Message(role="assistant", content=entry.content))
        elif isinstance(entry, ToolResultsEntry):
            for result in entry.results:
                messages.append(
                    Message(
                        role="user",
                        content=loader.render(TOOL_RESULT_PROMPT_TEMPLATE, result=result.to_text()),
                    )
                )
    return messages
