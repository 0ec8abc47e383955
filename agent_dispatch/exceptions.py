"""Custom exceptions for Agent Dispatch."""

CANCELLED_MESSAGE = "Cancelled"


class AgentDispatchError(Exception):
    """Base exception for Agent Dispatch."""

    pass


class ConfigurationError(AgentDispatchError):
    """Configuration-related errors."""

    pass


class LLMError(AgentDispatchError):
    """LLM-related errors."""

    pass


class LLMAPIError(LLMError):
    """LLM API errors (rate limit, auth, etc.)."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class ModelNotFoundError(LLMError):
    """No model handle matches the requested model id."""

    def __init__(self, model_id: str):
        super().__init__(f"Model not found: {model_id}")
        self.model_id = model_id


class ToolError(AgentDispatchError):
    """Tool execution errors."""

    pass


class ToolExecutionError(ToolError):
    """Tool execution failed."""

    def __init__(self, tool_name: str, message: str):
        super().__init__(f"Tool '{tool_name}' failed: {message}")
        self.tool_name = tool_name


class ToolNotFoundError(ToolError):
    """Tool not found in registry."""

    def __init__(self, tool_name: str):
        super().__init__(f"Tool not found: {tool_name}")
        self.tool_name = tool_name


class ToolBlockedError(ToolError):
    """Tool is not enabled for the conversation."""

    def __init__(self, tool_name: str, reason: str):
        super().__init__(f"Tool '{tool_name}' blocked: {reason}")
        self.tool_name = tool_name
        self.reason = reason


class ConversationError(AgentDispatchError):
    """Conversation-related errors."""

    pass


class ConversationNotFoundError(ConversationError):
    """Conversation id is not registered in the store."""

    def __init__(self, conv_id: int):
        super().__init__(f"Conversation not found: {conv_id}")
        self.conv_id = conv_id


class ConversationCancelledError(AgentDispatchError):
    """Cancellation was requested while a turn was in flight.

    The message is always ``CANCELLED_MESSAGE`` so that callers which only see
    the error text can still tell cancellation apart from other failures.
    """

    def __init__(self) -> None:
        super().__init__(CANCELLED_MESSAGE)


def is_cancellation_message(message: str | None) -> bool:
    """Return whether an error message carries the cancellation signature."""
    if not message:
        return False
    return message == CANCELLED_MESSAGE or "cancel" in message
