import pytest

from agent_dispatch import orchestrator as orchestrator_module
from agent_dispatch.agent_core import AgentCore
from agent_dispatch.config import Config
from agent_dispatch.exceptions import ConversationNotFoundError
from agent_dispatch.history import (
    AssistantEntry,
    ConversationResult,
    ConversationStatus,
    TerminalReason,
    ToolResultsEntry,
    TurnResult,
)
from agent_dispatch.llm import ChatResponse, ModelGateway, ModelInfo, TextFragment
from agent_dispatch.orchestrator import (
    AgentOrchestrator,
    format_conversation_results,
    format_conversation_summary,
)
from agent_dispatch.state import ConversationStore
from agent_dispatch.tools.registry import ToolRegistry


class OneShotGateway(ModelGateway):
    async def list_models(self):
        return [ModelInfo(id="test-model")]

    async def send_request(self, model_id, system_prompt, messages, options=None):
        async def stream():
            yield TextFragment("Finished. ~~~GOAL-ACHIEVED~~~")

        return ChatResponse(stream=stream(), model_id=model_id)

    async def count_tokens(self, model_id, messages):
        return 1


def make_orchestrator(config: Config | None = None) -> AgentOrchestrator:
    core = AgentCore(
        store=ConversationStore(),
        gateway=OneShotGateway(),
        registry=ToolRegistry(unsafe_tools=[]),
        config=config or Config(),
    )
    return AgentOrchestrator(core)


def test_summary_counts_turns_and_steps():
    history = (
        AssistantEntry(content="a", turn=1),
        ToolResultsEntry(turn=1),
        AssistantEntry(content="b", turn=2),
    )
    result = ConversationResult(
        history=history,
        reason=TerminalReason.TASK_COMPLETE,
        final_response=TurnResult(text="  All good.  ", tool_calls=(), turn=2),
    )

    assert format_conversation_summary(result) == (
        "🎯 Agentic task COMPLETED successfully! (2 turns, 3 conversation steps)"
    )
    assert format_conversation_results(result).endswith("\n\nAll good.")


def test_summary_includes_error_line():
    result = ConversationResult(history=(), reason=TerminalReason.ERROR, error_message="boom")

    summary = format_conversation_summary(result)

    assert "encountered an ERROR" in summary
    assert summary.endswith("\nError: boom")
    assert format_conversation_results(result) == summary


def test_register_applies_config_defaults():
    config = Config()
    config.conversation.title = "Nightly"
    orchestrator = make_orchestrator(config)

    conv_id = orchestrator.register_conversation("Tidy the repo")

    record = orchestrator.store.get(conv_id)
    assert record.title == "Nightly"
    assert record.caller == "Unknown"
    assert record.model_id == "grok-code-fast-1"
    assert record.max_turns == 10
    assert record.status is ConversationStatus.STARTED


def test_cancel_and_delete_unknown_ids():
    orchestrator = make_orchestrator()

    assert orchestrator.cancel_conversation(42) is False
    assert orchestrator.delete_conversation(42) is False


def test_delete_removes_record():
    orchestrator = make_orchestrator()
    conv_id = orchestrator.register_conversation("Tidy the repo", model_id="test-model")

    assert orchestrator.delete_conversation(conv_id) is True
    assert orchestrator.store.get(conv_id) is None


@pytest.mark.asyncio
async def test_run_registered_unknown_id():
    orchestrator = make_orchestrator()

    with pytest.raises(ConversationNotFoundError):
        await orchestrator.run_registered(7)


@pytest.mark.asyncio
async def test_start_conversation_returns_id_and_task():
    orchestrator = make_orchestrator()

    conv_id, task = orchestrator.start_conversation(
        "Tidy the repo", model_id="test-model", max_turns=2, title="Cleanup"
    )
    assert orchestrator.store.get(conv_id).title == "Cleanup"

    result = await task

    assert result.reason is TerminalReason.TASK_COMPLETE
    assert "Finished." in orchestrator.store.get(conv_id).results


@pytest.mark.asyncio
async def test_module_level_entry_points(monkeypatch):
    orchestrator = make_orchestrator()
    monkeypatch.setattr(orchestrator_module, "_orchestrator", orchestrator)

    result = await orchestrator_module.autonomous_conversation("Tidy the repo", model_id="test-model")

    assert result.reason is TerminalReason.TASK_COMPLETE
    # finished conversations keep their terminal status
    assert orchestrator_module.cancel_conversation(1) is False
    assert orchestrator.store.get(1).status is ConversationStatus.TASK_COMPLETE
    assert orchestrator_module.delete_conversation(1) is True
    assert orchestrator_module.delete_conversation(1) is False


def test_cancel_running_conversation():
    orchestrator = make_orchestrator()
    conv_id = orchestrator.register_conversation("Tidy the repo", model_id="test-model")
    orchestrator.store.update(conv_id, status=ConversationStatus.WORKING)

    assert orchestrator.cancel_conversation(conv_id) is True
    record = orchestrator.store.get(conv_id)
    assert record.cancelled is True
    assert record.status is ConversationStatus.CANCEL_REQUESTED


def test_cancel_ignores_terminal_statuses():
    orchestrator = make_orchestrator()
    conv_id = orchestrator.register_conversation("Tidy the repo", model_id="test-model")

    for status in ConversationStatus:
        orchestrator.store.update(conv_id, status=status, cancelled=False)
        expected = not status.is_terminal
        assert orchestrator.cancel_conversation(conv_id) is expected
        assert orchestrator.store.get(conv_id).cancelled is expected


def test_register_rejects_negative_max_turns():
    orchestrator = make_orchestrator()

    with pytest.raises(ValueError):
        orchestrator.register_conversation("Tidy the repo", max_turns=-1)
    assert orchestrator.store.get_all() == ()
