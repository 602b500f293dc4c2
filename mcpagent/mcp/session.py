"""
Protocol session contract shared by the stdio and SSE transports.

A session drives one connect -> discover -> invoke -> cancel lifecycle
against a single tool server using MCP's JSON-RPC 2.0 messages. Subclasses
only provide the physical transport: open, write one message, read the
response for a request id, and close.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Type

from mcpagent.mcp.bridge import parameters_from_schema
from mcpagent.mcp.errors import (
    InvocationError,
    InvocationFailure,
    MCPAgentError,
    ProtocolError,
)
from mcpagent.mcp.schema import ToolDescriptor, ToolSummary
from mcpagent.validation.config import TransportConfig

logger = logging.getLogger(__name__)

JSONRPC_VERSION = "2.0"


def extract_text(result: Dict[str, Any], tool_name: Optional[str] = None) -> str:
    """
    Return the first textual content block of a ``tools/call`` result.

    Only the first block is looked at; multi-block and binary results are
    not supported.
    """
    content = result.get("content")
    if content is None:
        content = []
    if not isinstance(content, list):
        raise InvocationError(
            f"Tool result content must be a list, got {type(content).__name__}",
            reason=InvocationFailure.UNSUPPORTED_CONTENT,
            tool_name=tool_name,
        )

    if result.get("isError"):
        detail = ""
        if content and isinstance(content[0], dict):
            detail = content[0].get("text", "")
        raise InvocationError(
            f"Tool reported an error: {detail or '(no details)'}",
            reason=InvocationFailure.TOOL_ERROR,
            tool_name=tool_name,
        )

    if not content:
        raise InvocationError(
            "Tool returned no content blocks",
            reason=InvocationFailure.EMPTY_RESULT,
            tool_name=tool_name,
        )

    first = content[0]
    kind = first.get("type") if isinstance(first, dict) else type(first).__name__
    text = first.get("text") if kind == "text" else None
    if not isinstance(text, str):
        raise InvocationError(
            f"Unsupported content type: {kind}",
            reason=InvocationFailure.UNSUPPORTED_CONTENT,
            tool_name=tool_name,
        )
    return text


class ProtocolSession(ABC):
    """
    One MCP session against the transport bound to ``tool``.

    The session object is its own handle: ``connect()`` opens it,
    ``list_tools()`` and ``invoke()`` use it, ``cancel()`` tears it down.
    Usable as a context manager.
    """

    transport_name = "base"

    def __init__(self, tool: ToolDescriptor, settings: Optional[TransportConfig] = None):
        self.tool = tool
        self.settings = settings or TransportConfig()
        self.server_info: Dict[str, Any] = {}
        self._request_id = 0
        self._connected = False

    # ── Transport hooks ───────────────────────────────────────────────────

    @abstractmethod
    def _open(self) -> None:
        """Establish the physical channel. Raise ``ConnectError`` on failure."""

    @abstractmethod
    def _write(self, message: Dict[str, Any]) -> None:
        """Send one JSON-RPC message. Raise ``ProtocolError`` on failure."""

    @abstractmethod
    def _read_response(self, request_id: int, timeout: float) -> Dict[str, Any]:
        """Return the response for ``request_id``. Raise ``ProtocolError`` on failure."""

    @abstractmethod
    def _close(self) -> None:
        """Release the channel. Must be idempotent."""

    # ── Lifecycle ─────────────────────────────────────────────────────────

    @property
    def is_connected(self) -> bool:
        return self._connected

    def connect(self) -> Dict[str, Any]:
        """Open the transport and perform the MCP initialize handshake."""
        if self._connected:
            return self.server_info

        try:
            self._open()
            self.server_info = self._request(
                "initialize",
                {
                    "protocolVersion": self.settings.protocol_version,
                    "capabilities": {},
                    "clientInfo": {
                        "name": self.settings.client_name,
                        "version": self.settings.client_version,
                    },
                },
                timeout=self.settings.connect_timeout,
            )
            self._notify("notifications/initialized")
        except MCPAgentError as exc:
            try:
                self._close()
            except (OSError, ProtocolError) as close_exc:
                logger.debug("Cleanup after failed connect to %s: %s", self.tool.name, close_exc)
            raise exc

        self._connected = True
        peer = self.server_info.get("serverInfo", {})
        logger.info(
            "Connected to %s over %s (server %s %s)",
            self.tool.name,
            self.transport_name,
            peer.get("name", "?"),
            peer.get("version", ""),
        )
        return self.server_info

    def list_tools(self) -> List[ToolSummary]:
        """Fetch every tool the server advertises, following pagination cursors."""
        self._ensure_connected()

        raw_tools: List[Dict[str, Any]] = []
        cursor: Optional[str] = None
        while True:
            result = self._request("tools/list", {"cursor": cursor} if cursor else None)
            page = result.get("tools") or []
            if not isinstance(page, list):
                raise ProtocolError(
                    f"tools/list returned {type(page).__name__} tools, expected a list",
                    tool_name=self.tool.name,
                )
            raw_tools.extend(page)
            cursor = result.get("nextCursor")
            if not cursor:
                break

        summaries = []
        for raw in raw_tools:
            if not isinstance(raw, dict) or "name" not in raw:
                raise ProtocolError(f"Malformed tool entry: {raw!r}", tool_name=self.tool.name)
            summaries.append(ToolSummary(
                name=raw["name"],
                description=raw.get("description") or "",
                parameters=parameters_from_schema(raw.get("inputSchema") or {}),
            ))
        logger.debug("%s advertises tools: %s", self.tool.name, [s.name for s in summaries])
        return summaries

    def invoke(self, name: str, arguments: Optional[Dict[str, Any]] = None) -> str:
        """Call a tool and return the text of its first content block."""
        self._ensure_connected()
        result = self._request(
            "tools/call",
            {"name": name, "arguments": arguments or {}},
            error_cls=InvocationError,
        )
        return extract_text(result, tool_name=name)

    def cancel(self) -> None:
        """End the session and release the transport. Safe to call more than once."""
        self._connected = False
        try:
            self._close()
        except OSError as exc:
            raise ProtocolError(f"Failed to cancel session: {exc}", tool_name=self.tool.name) from exc

    # ── JSON-RPC ──────────────────────────────────────────────────────────

    def _request(
        self,
        method: str,
        params: Optional[Dict[str, Any]] = None,
        error_cls: Type[MCPAgentError] = ProtocolError,
        timeout: Optional[float] = None,
    ) -> Dict[str, Any]:
        self._request_id += 1
        request_id = self._request_id
        message: Dict[str, Any] = {"jsonrpc": JSONRPC_VERSION, "id": request_id, "method": method}
        if params is not None:
            message["params"] = params

        try:
            self._write(message)
            response = self._read_response(
                request_id, timeout if timeout is not None else self.settings.request_timeout
            )
        except ProtocolError as exc:
            if error_cls is ProtocolError:
                raise
            raise error_cls(f"{method} failed: {exc.message}", tool_name=self.tool.name) from exc

        if "error" in response:
            err = response["error"]
            if not isinstance(err, dict):
                err = {"message": err}
            raise error_cls(
                f"MCP error {err.get('code')}: {err.get('message')}",
                tool_name=self.tool.name,
            )

        result = response.get("result")
        if result is None:
            return {}
        if not isinstance(result, dict):
            raise error_cls(
                f"{method} returned a {type(result).__name__} result, expected an object",
                tool_name=self.tool.name,
            )
        return result

    def _notify(self, method: str, params: Optional[Dict[str, Any]] = None) -> None:
        message: Dict[str, Any] = {"jsonrpc": JSONRPC_VERSION, "method": method}
        if params is not None:
            message["params"] = params
        self._write(message)

    def _ensure_connected(self) -> None:
        if not self._connected:
            raise ProtocolError("Session is not connected", tool_name=self.tool.name)

    # ── Context manager ───────────────────────────────────────────────────

    def __enter__(self) -> "ProtocolSession":
        self.connect()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.cancel()
