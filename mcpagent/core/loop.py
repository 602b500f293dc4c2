"""
mcpagent Tool Loop - drive a chat session until the model stops calling tools.

Each round:
1. Submit the conversation and the tool catalog to the provider
2. No choices -> stop (EMPTY_CHOICES); no tool calls -> stop (DONE)
3. Resolve and decode every requested call before touching any transport
4. Dispatch each call on a fresh session, in request order
5. Append the assistant turn, then one tool result per call_id
6. Repeat

Any error aborts the round and ends the loop with a FAILED result; the
session history is left as it was before the failing round.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from mcpagent.mcp.bridge import decode_arguments
from mcpagent.mcp.client import run_tool
from mcpagent.mcp.errors import CollaboratorError, MCPAgentError, ToolNotFound
from mcpagent.mcp.registry import ToolRegistry
from mcpagent.mcp.schema import ToolDescriptor
from mcpagent.providers.base import (
    ChatMessage,
    ChatSession,
    Provider,
    ProviderFactory,
    ProviderResponse,
    ToolCallRequest,
)
from mcpagent.validation.config import AgentConfig, Config, ConfigError, TransportConfig

logger = logging.getLogger(__name__)

ToolRunner = Callable[[ToolDescriptor, Optional[TransportConfig]], str]


class LoopStatus(str, Enum):
    DONE = "done"
    EMPTY_CHOICES = "empty_choices"
    FAILED = "failed"
    ROUND_LIMIT = "round_limit"


@dataclass
class LoopResult:
    """Terminal result of one ``ToolLoop.run()``."""

    status: LoopStatus
    rounds: int
    response: Optional[ProviderResponse] = None
    error: Optional[MCPAgentError] = None
    messages: List[ChatMessage] = field(default_factory=list)
    tool_calls: int = 0
    token_usage: int = 0

    @property
    def completed(self) -> bool:
        return self.status in (LoopStatus.DONE, LoopStatus.EMPTY_CHOICES)

    @property
    def answer(self) -> Optional[ChatMessage]:
        if self.response is None or not self.response.choices:
            return None
        return self.response.choices[0].message

    @property
    def output(self) -> str:
        answer = self.answer
        return (answer.content or "") if answer else ""

    @property
    def error_kind(self) -> Optional[str]:
        return self.error.kind if self.error else None

    @property
    def tool_name(self) -> Optional[str]:
        return self.error.tool_name if self.error else None

    @property
    def call_id(self) -> Optional[str]:
        return self.error.call_id if self.error else None


class ToolLoop:
    """
    Orchestrates model turns and tool calls over one ``ChatSession``.

    Tool calls go through ``runner`` (``run_tool`` by default), which opens
    a fresh session per call. Swapping the runner is how pooling or test
    doubles plug in without touching the loop.
    """

    def __init__(
        self,
        provider: Provider,
        registry: ToolRegistry,
        agent_settings: Optional[AgentConfig] = None,
        transport_settings: Optional[TransportConfig] = None,
        runner: ToolRunner = run_tool,
    ):
        self.provider = provider
        self.registry = registry
        self.agent_settings = agent_settings or AgentConfig()
        self.transport_settings = transport_settings or TransportConfig()
        self.runner = runner

    @classmethod
    def from_config(cls, config: Config, model: Optional[str] = None) -> "ToolLoop":
        """Build provider and tool catalog from configuration."""
        model = model or config.get_default_model()
        if not model:
            raise ConfigError("No model configured. Set agent.model in config.yaml")

        merged = config.merged
        return cls(
            provider=ProviderFactory.create(model, config),
            registry=ToolRegistry.from_config(merged),
            agent_settings=merged.agent,
            transport_settings=merged.transport,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def run(self, session: ChatSession) -> LoopResult:
        """
        Run rounds until the model answers without tool calls.

        Args:
            session: Conversation to submit; tool turns are appended to it.

        Returns:
            LoopResult describing the final answer or the fatal error.
        """
        tools = self.registry.function_schemas()
        max_rounds = self.agent_settings.max_rounds
        rounds = 0
        tool_calls = 0
        token_usage = 0
        response: Optional[ProviderResponse] = None

        def finish(status: LoopStatus, error: Optional[MCPAgentError] = None) -> LoopResult:
            return LoopResult(
                status=status,
                rounds=rounds,
                response=response,
                error=error,
                messages=list(session.messages),
                tool_calls=tool_calls,
                token_usage=token_usage,
            )

        while True:
            if max_rounds is not None and rounds >= max_rounds:
                logger.warning("Stopping after %d rounds: model keeps requesting tools", rounds)
                return finish(LoopStatus.ROUND_LIMIT)

            rounds += 1
            try:
                response = self._ask_model(session, tools)
            except CollaboratorError as exc:
                logger.error("Chat completion failed in round %d: %s", rounds, exc)
                return finish(LoopStatus.FAILED, exc)
            token_usage += response.token_usage

            if not response.choices:
                logger.warning("No choices in response, exiting loop.")
                return finish(LoopStatus.EMPTY_CHOICES)

            message = response.choices[0].message
            if not message.tool_calls:
                logger.info("No tool calls in response, exiting loop.")
                return finish(LoopStatus.DONE)

            try:
                results = self._execute_tools(message.tool_calls)
            except MCPAgentError as exc:
                logger.error("Round %d aborted: %s", rounds, exc)
                return finish(LoopStatus.FAILED, exc)

            session.add_message(message)
            for call, text in zip(message.tool_calls, results):
                session.add_message(ChatMessage.from_tool_result(text, call.call_id))
            tool_calls += len(results)

    # ------------------------------------------------------------------
    # Rounds
    # ------------------------------------------------------------------

    def _ask_model(self, session: ChatSession, tools: List[Dict[str, Any]]) -> ProviderResponse:
        logger.debug("Submitting %d messages and %d tools", len(session), len(tools))
        try:
            return self.provider.complete(session.messages, tools=tools or None)
        except MCPAgentError:
            raise
        except Exception as exc:
            raise CollaboratorError(f"Chat completion failed: {exc}") from exc

    def _execute_tools(self, calls: List[ToolCallRequest]) -> List[str]:
        """Dispatch every call of one turn; results come back in request order."""
        planned = [self._plan(call) for call in calls]

        if self.agent_settings.parallel_tool_calls and len(planned) > 1:
            with ThreadPoolExecutor(max_workers=len(planned)) as pool:
                futures = [pool.submit(self._dispatch, call, tool) for call, tool in zip(calls, planned)]
                return [future.result() for future in futures]

        return [self._dispatch(call, tool) for call, tool in zip(calls, planned)]

    def _plan(self, call: ToolCallRequest) -> ToolDescriptor:
        """Resolve a call against the catalog and attach its decoded arguments."""
        tool = self.registry.get_tool(call.tool_name)
        if tool is None:
            raise ToolNotFound(
                "Tool not found in provided tools",
                tool_name=call.tool_name,
                call_id=call.call_id,
            )
        return tool.for_call(decode_arguments(call))

    def _dispatch(self, call: ToolCallRequest, tool: ToolDescriptor) -> str:
        logger.debug("Dispatching %s (call_id=%s)", tool.name, call.call_id)
        try:
            return self.runner(tool, self.transport_settings)
        except MCPAgentError as exc:
            exc.tool_name = exc.tool_name or tool.name
            exc.call_id = exc.call_id or call.call_id
            raise
