"""
mcpagent Provider Base - chat-completion collaborators.

This module defines the message and turn types exchanged with a
chat-completion API, the appendable ChatSession the orchestration loop
resubmits, the interface that all LLM providers must implement, and a
factory for creating provider instances.
"""

import json
import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Type

import httpx

from mcpagent.validation.config import Config

logger = logging.getLogger(__name__)


@dataclass
class ToolCallRequest:
    """A tool call requested by the model; ``arguments`` is the raw JSON blob."""

    call_id: str
    tool_name: str
    arguments: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.call_id,
            "type": "function",
            "function": {"name": self.tool_name, "arguments": self.arguments},
        }


@dataclass
class ChatMessage:
    """One message of the conversation (system, user, assistant or tool)."""

    role: str
    content: Optional[str] = None
    tool_calls: List[ToolCallRequest] = field(default_factory=list)
    tool_call_id: Optional[str] = None

    @classmethod
    def system(cls, content: str) -> "ChatMessage":
        return cls(role="system", content=content)

    @classmethod
    def user(cls, content: str) -> "ChatMessage":
        return cls(role="user", content=content)

    @classmethod
    def from_tool_result(cls, text: str, call_id: str) -> "ChatMessage":
        return cls(role="tool", content=text, tool_call_id=call_id)

    def to_dict(self) -> Dict[str, Any]:
        """OpenAI chat wire format."""
        data: Dict[str, Any] = {"role": self.role, "content": self.content}
        if self.tool_calls:
            data["tool_calls"] = [call.to_dict() for call in self.tool_calls]
        if self.tool_call_id is not None:
            data["tool_call_id"] = self.tool_call_id
        return data


@dataclass
class ChatChoice:
    message: ChatMessage
    finish_reason: Optional[str] = None
    index: int = 0


@dataclass
class ProviderResponse:
    """Response from an LLM provider: one turn with zero or more choices."""

    choices: List[ChatChoice]
    model: str
    provider: str
    token_usage: int = 0
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def content(self) -> str:
        if not self.choices:
            return ""
        return self.choices[0].message.content or ""


class ChatSession:
    """
    Ordered, append-only conversation history.

    The orchestration loop appends assistant tool-call turns and tool
    results here before resubmitting it to the provider.
    """

    def __init__(self, messages: Optional[List[ChatMessage]] = None):
        self.messages: List[ChatMessage] = list(messages or [])

    def add_message(self, message: ChatMessage) -> None:
        self.messages.append(message)

    def add_system(self, content: str) -> None:
        self.add_message(ChatMessage.system(content))

    def add_user(self, content: str) -> None:
        self.add_message(ChatMessage.user(content))

    def __len__(self) -> int:
        return len(self.messages)


def parse_chat_completion(data: Dict[str, Any], provider: str, model: str) -> ProviderResponse:
    """Build a ProviderResponse from an OpenAI-style chat completion payload."""
    choices: List[ChatChoice] = []
    for i, raw in enumerate(data.get("choices") or []):
        msg = raw.get("message") or {}
        calls = []
        for tc in msg.get("tool_calls") or []:
            function = tc.get("function") or {}
            arguments = function.get("arguments")
            if isinstance(arguments, dict):
                # some OpenAI-compatible servers send an object instead of a string
                arguments = json.dumps(arguments)
            calls.append(ToolCallRequest(
                call_id=tc.get("id") or "",
                tool_name=function.get("name") or "",
                arguments=arguments or "",
            ))
        choices.append(ChatChoice(
            message=ChatMessage(
                role=msg.get("role") or "assistant",
                content=msg.get("content"),
                tool_calls=calls,
            ),
            finish_reason=raw.get("finish_reason"),
            index=raw.get("index", i),
        ))

    usage = data.get("usage") or {}
    return ProviderResponse(
        choices=choices,
        model=data.get("model") or model,
        provider=provider,
        token_usage=usage.get("total_tokens") or 0,
    )


class Provider(ABC):
    """
    A chat-completion backend the tool loop submits conversations to.

    ``complete()`` receives the whole history plus the function-call
    schemas of the tool catalog and returns one turn. Exceptions are left
    to propagate; the loop turns them into ``CollaboratorError``.

    Example:
        >>> class EchoProvider(Provider):
        ...     def complete(self, messages, tools=None, **kwargs):
        ...         return ProviderResponse(choices=[], model=self.model, provider="echo")
    """

    def __init__(self, model: str, config: Config):
        self.model = model
        self.config = config

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Key used for config lookup, e.g. ``"groq"``."""
        pass

    @abstractmethod
    def complete(
        self,
        messages: List[ChatMessage],
        tools: Optional[List[Dict[str, Any]]] = None,
        **kwargs,
    ) -> ProviderResponse:
        """
        Submit the conversation and tool catalog, return the model's turn.

        Args:
            messages: The full conversation so far.
            tools: Function-call schemas the model may call.
            **kwargs: ``max_tokens`` / ``temperature`` overrides.

        Returns:
            ProviderResponse with zero or more choices.
        """
        pass

    @abstractmethod
    def validate_connection(self) -> bool:
        """Cheap check that credentials are present (and, where possible, accepted)."""
        pass

    def get_api_key(self) -> Optional[str]:
        """Get the API key for this provider."""
        return self.config.get_api_key(self.provider_name)

    def _request_body(
        self,
        messages: List[ChatMessage],
        tools: Optional[List[Dict[str, Any]]],
        **kwargs,
    ) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "model": self.model,
            "messages": [message.to_dict() for message in messages],
            "max_tokens": kwargs.get("max_tokens", self.config.merged.agent.max_tokens),
            "temperature": kwargs.get("temperature", self.config.merged.agent.temperature),
        }
        if tools:
            body["tools"] = tools
        return body


class OpenAIProvider(Provider):
    """OpenAI through the official SDK (``pip install mcpagent[openai]``)."""

    @property
    def provider_name(self) -> str:
        return "openai"

    def _client(self):
        try:
            import openai
        except ImportError:
            raise ImportError("openai package required. Install with: pip install mcpagent[openai]")

        api_key = self.get_api_key()
        if not api_key:
            raise ValueError("OpenAI API key not configured: export OPENAI_API_KEY")

        provider_config = self.config.get_provider_config(self.provider_name)
        return openai.OpenAI(
            api_key=api_key,
            base_url=provider_config.api_base if provider_config else None,
            timeout=self.config.merged.agent.timeout,
        )

    def complete(
        self,
        messages: List[ChatMessage],
        tools: Optional[List[Dict[str, Any]]] = None,
        **kwargs,
    ) -> ProviderResponse:
        response = self._client().chat.completions.create(**self._request_body(messages, tools, **kwargs))
        return parse_chat_completion(response.model_dump(), self.provider_name, self.model)

    def validate_connection(self) -> bool:
        try:
            self._client().models.list()
            return True
        except Exception:
            return False


class OpenAICompatibleProvider(Provider):
    """
    Any server speaking the ``/chat/completions`` wire format, called over httpx.

    Subclasses set ``_base_url``, ``_env_key`` and ``provider_name``; the
    base URL can be overridden per provider with ``api_base`` in config.
    """

    _base_url: str = ""
    _env_key: str = ""
    _requires_key: bool = True

    def _get_key(self) -> Optional[str]:
        return self.get_api_key() or os.environ.get(self._env_key)

    def _get_base_url(self) -> str:
        provider_config = self.config.get_provider_config(self.provider_name)
        if provider_config and provider_config.api_base:
            return provider_config.api_base.rstrip("/")
        return self._base_url

    def complete(
        self,
        messages: List[ChatMessage],
        tools: Optional[List[Dict[str, Any]]] = None,
        **kwargs,
    ) -> ProviderResponse:
        api_key = self._get_key()
        if self._requires_key and not api_key:
            raise ValueError(
                f"{self.provider_name} API key not configured: "
                f"export {self._env_key} or set providers.{self.provider_name}.api_key"
            )

        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"

        url = f"{self._get_base_url()}/chat/completions"
        logger.debug("POST %s (model %s, %d messages)", url, self.model, len(messages))
        response = httpx.post(
            url,
            headers=headers,
            json=self._request_body(messages, tools, **kwargs),
            timeout=self.config.merged.agent.timeout,
        )
        response.raise_for_status()
        return parse_chat_completion(response.json(), self.provider_name, self.model)

    def validate_connection(self) -> bool:
        return not self._requires_key or self._get_key() is not None


class OpenRouterProvider(OpenAICompatibleProvider):
    """OpenRouter's hosted catalog; the fallback for unrecognised model names."""

    _base_url = "https://openrouter.ai/api/v1"
    _env_key = "OPENROUTER_API_KEY"

    @property
    def provider_name(self) -> str:
        return "openrouter"


class TogetherProvider(OpenAICompatibleProvider):
    _base_url = "https://api.together.xyz/v1"
    _env_key = "TOGETHER_API_KEY"

    @property
    def provider_name(self) -> str:
        return "together"


class GroqProvider(OpenAICompatibleProvider):
    _base_url = "https://api.groq.com/openai/v1"
    _env_key = "GROQ_API_KEY"

    @property
    def provider_name(self) -> str:
        return "groq"


class OllamaProvider(OpenAICompatibleProvider):
    """Ollama local server through its OpenAI-compatible /v1 endpoint. No key needed."""

    _base_url = "http://localhost:11434/v1"
    _env_key = "OLLAMA_API_KEY"
    _requires_key = False

    @property
    def provider_name(self) -> str:
        return "ollama"


class ProviderFactory:
    """Resolve ``"provider/model"`` (or a bare model name) to a Provider."""

    _providers: Dict[str, Type[Provider]] = {
        "openai": OpenAIProvider,
        "ollama": OllamaProvider,
        "openrouter": OpenRouterProvider,
        "together": TogetherProvider,
        "groq": GroqProvider,
    }

    # bare model name prefix -> provider
    _prefixes = (
        (("gpt", "o1", "o3", "o4"), "openai"),
        (("llama", "deepseek"), "groq"),
        (("mixtral", "qwen"), "together"),
    )
    _local_models = ("codellama", "phi", "phi-2", "mistral")

    @classmethod
    def create(cls, model: str, config: Config) -> Provider:
        """
        Build the provider for ``model``.

        Args:
            model: ``"ollama/llama3"`` style, or a bare name such as ``"gpt-4o-mini"``
                whose provider is inferred.
            config: Loaded configuration, handed to the provider.

        Raises:
            ValueError: If the provider part names no registered provider.
        """
        provider_name, _, model_name = model.partition("/")
        if not model_name:
            provider_name, model_name = cls._infer_provider(model), model

        provider_class = cls._providers.get(provider_name)
        if provider_class is None:
            raise ValueError(f"Unknown provider: {provider_name}")
        return provider_class(model=model_name, config=config)

    @classmethod
    def _infer_provider(cls, model: str) -> str:
        name = model.lower()
        if name in cls._local_models:
            return "ollama"
        for prefixes, provider_name in cls._prefixes:
            if name.startswith(prefixes):
                return provider_name
        return "openrouter"

    @classmethod
    def available_providers(cls) -> List[str]:
        return list(cls._providers)
