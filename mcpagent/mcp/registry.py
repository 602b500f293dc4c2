"""Tool registry: the explicit name -> descriptor catalog of one orchestration session."""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, Iterator, List, Optional

from pydantic import ValidationError

from mcpagent.mcp.bridge import to_function_tools
from mcpagent.mcp.client import open_session
from mcpagent.mcp.errors import ProtocolError
from mcpagent.mcp.schema import ToolDescriptor, ToolSummary
from mcpagent.validation.config import ConfigError, MCPAgentConfig, ToolConfig, TransportConfig

logger = logging.getLogger(__name__)


class ToolRegistry:
    """
    Catalog of the tools offered to the model.

    Built once at startup (from config or by hand), then looked up by name
    at dispatch time. Names are unique within a registry.
    """

    def __init__(self, tools: Optional[Iterable[ToolDescriptor]] = None):
        self._tools: Dict[str, ToolDescriptor] = {}
        for tool in tools or []:
            self.register(tool)

    # ── Building ──────────────────────────────────────────────────────────

    def register(self, tool: ToolDescriptor) -> None:
        if tool.name in self._tools:
            raise ValueError(f"Tool already registered: {tool.name}")
        self._tools[tool.name] = tool

    @classmethod
    def from_config(cls, config: MCPAgentConfig) -> "ToolRegistry":
        """Build descriptors for every enabled tool in ``config.tools``."""
        registry = cls()
        for name, tool_config in config.tools.items():
            if not tool_config.enabled:
                continue
            registry.register(cls._descriptor_from_config(name, tool_config))
        return registry

    @staticmethod
    def _descriptor_from_config(name: str, tool_config: ToolConfig) -> ToolDescriptor:
        try:
            if tool_config.command:
                return ToolDescriptor.with_stdio_transport(
                    name,
                    tool_config.description,
                    tool_config.parameters,
                    command=tool_config.command,
                    args=tool_config.args,
                    env=tool_config.env,
                )
            return ToolDescriptor.with_sse_transport(
                name, tool_config.description, tool_config.parameters, url=tool_config.url
            )
        except ValidationError as e:
            raise ConfigError(f"Invalid tool '{name}': {e}")

    # ── Discovery from a live server ──────────────────────────────────────

    def discover(
        self,
        tool: ToolDescriptor,
        settings: Optional[TransportConfig] = None,
    ) -> List[ToolSummary]:
        """Connect to ``tool``'s server and return what it advertises."""
        session = open_session(tool, settings)
        try:
            session.connect()
            return session.list_tools()
        finally:
            try:
                session.cancel()
            except ProtocolError as exc:
                logger.warning("Cancelling discovery session for %s failed: %s", tool.name, exc)

    def import_server(
        self,
        tool: ToolDescriptor,
        settings: Optional[TransportConfig] = None,
    ) -> List[ToolDescriptor]:
        """
        Register every tool a server advertises, sharing ``tool``'s binding.

        Names already in the registry are skipped.
        """
        added: List[ToolDescriptor] = []
        for summary in self.discover(tool, settings):
            if summary.name in self._tools:
                logger.debug("Skipping %s: already registered", summary.name)
                continue
            descriptor = ToolDescriptor(
                name=summary.name,
                description=summary.description,
                parameters=summary.parameters,
                binding=tool.binding,
            )
            self.register(descriptor)
            added.append(descriptor)
        return added

    # ── Lookup ────────────────────────────────────────────────────────────

    def get_tool(self, name: str) -> Optional[ToolDescriptor]:
        return self._tools.get(name)

    def list_tools(self) -> List[ToolDescriptor]:
        return list(self._tools.values())

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __iter__(self) -> Iterator[ToolDescriptor]:
        return iter(self._tools.values())

    def __len__(self) -> int:
        return len(self._tools)

    # ── Prompt Building ───────────────────────────────────────────────────

    def function_schemas(self) -> List[Dict[str, Any]]:
        """The whole catalog in the model's function-call schema."""
        return to_function_tools(self._tools.values())

    def build_prompt_fragment(self) -> str:
        """
        Build a short tool list for a system prompt.

        Returns something like::

            Available tools: [add, sub]
        """
        if not self._tools:
            return ""
        return f"Available tools: [{', '.join(self._tools)}]"
