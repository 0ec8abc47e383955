from agent_dispatch.history import (
    AssistantEntry,
    ToolCall,
    ToolCallResult,
    ToolResultsEntry,
    add_assistant_response,
    add_tool_results,
)
from agent_dispatch.instructions import InstructionLoader
from agent_dispatch.messages import agentic_system_prompt, build_agentic_messages


def test_first_turn_is_only_the_goal_message():
    messages = build_agentic_messages((), "Be brief.", "Count files")

    assert len(messages) == 1
    assert messages[0].role == "user"
    assert messages[0].content.startswith("Be brief.")
    assert "<GOAL>\nCount files\n</GOAL>" in messages[0].content
    assert "work autonomously" in messages[0].content


def test_history_replays_after_goal():
    history = add_assistant_response((), "Looking around", [ToolCall("c1", "echo", {"value": "x"})], 1)
    history = add_tool_results(
        history,
        [
            ToolCallResult(call_id="c1", tool_name="echo", result="x"),
            ToolCallResult(call_id="c2", tool_name="echo", error="boom"),
        ],
        1,
    )
    history = add_assistant_response(history, "All done", [], 2)

    messages = build_agentic_messages(history, "", "Count files")

    assert [m.role for m in messages] == ["user", "assistant", "user", "user", "assistant"]
    assert "<GOAL>" in messages[0].content
    assert messages[1].content == "Looking around"
    assert messages[2].content.startswith("TOOL RESULT: echo (c1): x")
    assert "~~~GOAL-ACHIEVED~~~" in messages[2].content
    assert "~~~CONTINUING~~~" in messages[2].content
    assert "error: boom" in messages[3].content
    assert messages[4].content == "All done"


def test_history_helpers_never_store_the_goal():
    goal = "Count files"
    history = add_assistant_response((), "working", [], 1)
    history = add_tool_results(history, [], 1)

    assert isinstance(history[0], AssistantEntry)
    assert isinstance(history[1], ToolResultsEntry)
    assert all(getattr(entry, "content", None) != goal for entry in history)
    # goal reappears on every build
    assert goal in build_agentic_messages(history, "", goal)[0].content


def test_history_append_returns_new_tuple():
    first = add_assistant_response((), "one", None, 1)
    second = add_assistant_response(first, "two", None, 2)
    assert len(first) == 1
    assert len(second) == 2
    assert second[0] is first[0]


def test_system_prompt_mentions_markers():
    prompt = agentic_system_prompt()
    assert "autonomous AI agent" in prompt
    assert "~~~GOAL-ACHIEVED~~~" in prompt


def test_personal_template_override(tmp_path):
    personal = tmp_path / "personal"
    personal.mkdir()
    (personal / "goal_user_prompt.md").write_text("GOAL={goal} INSTR={instructions} {unknown}", encoding="utf-8")
    loader = InstructionLoader(personal_dir=personal)

    messages = build_agentic_messages((), "go", "ship it", loader=loader)

    assert messages[0].content == "GOAL=ship it INSTR=go {unknown}"
    assert loader.is_overridden("goal_user_prompt.md")
    assert not loader.is_overridden("agentic_system_prompt.md")
