"""Model gateway interface and the Ollama HTTP gateway."""

import json
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Union

import httpx

from agent_dispatch.exceptions import LLMAPIError, LLMError
from agent_dispatch.logging import get_logger

log = get_logger(__name__)


OLLAMA_NATIVE_BASE_URL = "http://127.0.0.1:11434"


@dataclass
class Message:
    """A message in the conversation."""

    role: str  # "system", "user", "assistant"
    content: str


@dataclass
class ToolDefinition:
    """Definition of a tool for the LLM."""

    name: str
    description: str
    parameters: dict[str, Any]  # JSON Schema


@dataclass
class TextFragment:
    """A text delta from a streaming response."""

    value: str


@dataclass
class ToolCallFragment:
    """A tool call announced by a streaming response."""

    call_id: str
    name: str
    input: dict[str, Any] = field(default_factory=dict)


StreamFragment = Union[TextFragment, ToolCallFragment]


@dataclass
class ModelInfo:
    """A model the gateway can talk to."""

    id: str
    name: str = ""
    vendor: str = ""
    family: str = ""
    version: str = ""
    max_input_tokens: int = 0


@dataclass
class RequestOptions:
    """Per-request tool configuration."""

    tools: list[ToolDefinition] = field(default_factory=list)
    tool_mode: str = "auto"


@dataclass
class ChatResponse:
    """Handle for one streaming request.

    ``stream`` yields ``TextFragment`` and ``ToolCallFragment`` objects until the
    response is done. Other fragment kinds may appear and should be skipped.
    """

    stream: AsyncIterator[Any]
    model_id: str = ""


class ModelGateway(ABC):
    """Abstract base class for model gateways."""

    @abstractmethod
    async def list_models(self) -> list[ModelInfo]:
        pass

    async def get_model(self, model_id: str) -> ModelInfo | None:
        """Return the model with ``model_id`` or None."""
        for model in await self.list_models():
            if model.id == model_id:
                return model
        return None

    @abstractmethod
    async def send_request(
        self,
        model_id: str,
        system_prompt: str,
        messages: list[Message],
        options: RequestOptions | None = None,
    ) -> ChatResponse:
        pass

    @abstractmethod
    async def count_tokens(self, model_id: str, messages: list[Message]) -> int:
        pass


class OllamaGateway(ModelGateway):
    """Direct Ollama API gateway."""

    def __init__(
        self,
        base_url: str = OLLAMA_NATIVE_BASE_URL,
        temperature: float = 0.7,
        api_key: str | None = None,
        timeout: float = 120.0,
    ):
        """Initialize Ollama gateway.

        Args:
            base_url: Ollama API base URL
            temperature: Sampling temperature
            api_key: Optional API key (Ollama usually doesn't need one locally)
            timeout: HTTP timeout in seconds
        """
        self.base_url = base_url.rstrip("/")
        self.temperature = temperature
        self.api_key = api_key

        self.client = httpx.AsyncClient(
            timeout=timeout,
            follow_redirects=True,
        )

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    @staticmethod
    def _convert_messages(system_prompt: str, messages: list[Message]) -> list[dict[str, Any]]:
        """Convert messages to Ollama format, system prompt first."""
        result: list[dict[str, Any]] = []
        if system_prompt:
            result.append({"role": "system", "content": system_prompt})
        for msg in messages:
            result.append({"role": msg.role, "content": msg.content or ""})
        return result

    @staticmethod
    def _convert_tools(tools: list[ToolDefinition]) -> list[dict[str, Any]]:
        """Convert tools to Ollama format."""
        return [
            {
                "type": "function",
                "function": {
                    "name": tool.name,
                    "description": tool.description or "",
                    "parameters": tool.parameters or {},
                },
            }
            for tool in tools
            if tool.name
        ]

    async def list_models(self) -> list[ModelInfo]:
        """List locally available models from ``/api/tags``."""
        url = f"{self.base_url}/api/tags"
        try:
            response = await self.client.get(url, headers=self._headers())
        except httpx.HTTPError as e:
            raise LLMAPIError(f"Ollama HTTP error: {e}")
        if not response.is_success:
            raise LLMAPIError(
                f"Ollama API error {response.status_code}: {response.text}",
                status_code=response.status_code,
            )
        try:
            data = response.json()
        except json.JSONDecodeError as e:
            raise LLMError(f"Ollama response decode error: {e}")

        models: list[ModelInfo] = []
        for item in data.get("models", []):
            details = item.get("details") or {}
            model_id = item.get("model") or item.get("name") or ""
            if not model_id:
                continue
            models.append(ModelInfo(
                id=model_id,
                name=item.get("name", model_id),
                vendor="ollama",
                family=details.get("family", ""),
                version=details.get("parameter_size", ""),
            ))
        return models

    async def send_request(
        self,
        model_id: str,
        system_prompt: str,
        messages: list[Message],
        options: RequestOptions | None = None,
    ) -> ChatResponse:
        """Start a streaming chat request."""
        options = options or RequestOptions()
        body: dict[str, Any] = {
            "model": model_id,
            "messages": self._convert_messages(system_prompt, messages),
            "stream": True,
            "options": {"temperature": self.temperature},
        }
        if options.tools and options.tool_mode != "none":
            body["tools"] = self._convert_tools(options.tools)

        log.debug("Calling Ollama", model=model_id, msg_count=len(body["messages"]))
        return ChatResponse(stream=self._stream_chat(body), model_id=model_id)

    async def _stream_chat(self, body: dict[str, Any]) -> AsyncIterator[StreamFragment]:
        url = f"{self.base_url}/api/chat"
        try:
            async with self.client.stream("POST", url, json=body, headers=self._headers()) as response:
                if not response.is_success:
                    error_text = (await response.aread()).decode("utf-8", errors="replace")
                    raise LLMAPIError(
                        f"Ollama API error {response.status_code}: {error_text}",
                        status_code=response.status_code,
                    )

                async for line in response.aiter_lines():
                    if not line.strip():
                        continue
                    try:
                        chunk = json.loads(line)
                    except json.JSONDecodeError:
                        continue
                    message = chunk.get("message") or {}
                    if message.get("content"):
                        yield TextFragment(message["content"])
                    for tc in message.get("tool_calls") or []:
                        function = tc.get("function") or {}
                        arguments = function.get("arguments") or {}
                        if isinstance(arguments, str):
                            try:
                                arguments = json.loads(arguments)
                            except json.JSONDecodeError:
                                arguments = {"raw": arguments}
                        yield ToolCallFragment(
                            call_id=tc.get("id") or f"call_{uuid.uuid4().hex[:12]}",
                            name=function.get("name", ""),
                            input=arguments,
                        )
                    if chunk.get("done"):
                        break
        except httpx.HTTPError as e:
            raise LLMAPIError(f"Ollama streaming error: {e}")

    async def count_tokens(self, model_id: str, messages: list[Message]) -> int:
        """Count tokens (rough estimate for Ollama models)."""
        # ~1 token per 4 characters for English
        return sum(len(msg.content or "") // 4 for msg in messages)

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()


def create_gateway(
    provider: str = "ollama",
    base_url: str | None = None,
    api_key: str | None = None,
    temperature: float = 0.7,
    timeout: float = 120.0,
) -> ModelGateway:
    """Create a model gateway.

    Args:
        provider: Provider name (only ollama is bundled)
        base_url: Optional base URL
        api_key: Optional API key
        temperature: Default temperature
        timeout: HTTP timeout in seconds

    Returns:
        Configured ModelGateway instance
    """
    if provider == "ollama":
        return OllamaGateway(
            base_url=base_url or OLLAMA_NATIVE_BASE_URL,
            temperature=temperature,
            api_key=api_key,
            timeout=timeout,
        )
    raise ValueError(f"Provider '{provider}' not supported. Use 'ollama' or set a gateway with set_model_gateway().")


# Global gateway instance
_gateway: ModelGateway | None = None


def get_model_gateway() -> ModelGateway:
    """Get the global model gateway instance."""
    global _gateway
    if _gateway is None:
        from agent_dispatch.config import get_config
        cfg = get_config()
        _gateway = create_gateway(
            provider=cfg.model.provider,
            base_url=cfg.model.base_url or None,
            api_key=cfg.model.api_key or None,
            temperature=cfg.model.temperature,
            timeout=cfg.model.request_timeout,
        )
    return _gateway


def set_model_gateway(gateway: ModelGateway | None) -> None:
    """Set the global model gateway instance."""
    global _gateway
    _gateway = gateway
