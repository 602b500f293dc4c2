"""Fresh-session tool invocation: one connect/list/invoke/cancel cycle per call."""

from __future__ import annotations

import logging
from typing import Optional

from mcpagent.mcp.errors import ProtocolError
from mcpagent.mcp.schema import ToolDescriptor
from mcpagent.mcp.session import ProtocolSession
from mcpagent.mcp.sse import SSESession
from mcpagent.mcp.stdio import StdioSession
from mcpagent.validation.config import TransportConfig

logger = logging.getLogger(__name__)

_SESSIONS = {
    "stdio": StdioSession,
    "sse": SSESession,
}


def open_session(tool: ToolDescriptor, settings: Optional[TransportConfig] = None) -> ProtocolSession:
    """Create an unconnected session for the tool's transport."""
    session_class = _SESSIONS[tool.transport_kind]
    return session_class(tool, settings)


def run_tool(tool: ToolDescriptor, settings: Optional[TransportConfig] = None) -> str:
    """
    Invoke ``tool`` with its call-scoped ``arguments`` on a fresh session.

    The session is always cancelled, even when connecting or invoking
    fails. A failing cancel is logged and never replaces the invoke's
    result or error.
    """
    session = open_session(tool, settings)
    try:
        session.connect()
        if session.settings.list_tools:
            advertised = {summary.name for summary in session.list_tools()}
            if tool.name not in advertised:
                logger.warning(
                    "Server for %s does not advertise it (has: %s); calling anyway",
                    tool.name,
                    ", ".join(sorted(advertised)) or "none",
                )
        logger.info("Calling %s with %s", tool.name, tool.arguments or {})
        result = session.invoke(tool.name, tool.arguments or {})
        logger.debug("%s returned: %s", tool.name, result)
        return result
    finally:
        try:
            session.cancel()
        except ProtocolError as exc:
            logger.warning("Cancelling session for %s failed: %s", tool.name, exc)
