"""
MCP tool layer for mcpagent.

A tool is described once (``ToolDescriptor``) and bound to exactly one
transport: a local executable spoken to over stdin/stdout, or an SSE
endpoint. Every call opens a fresh session:

    connect (initialize) -> tools/list -> tools/call -> cancel

Sessions live in ``mcpagent.mcp.stdio`` / ``mcpagent.mcp.sse``; the
per-call lifecycle is ``mcpagent.mcp.client.run_tool``.
"""

from mcpagent.mcp.bridge import decode_arguments, parameters_from_schema, to_function_tool, to_function_tools
from mcpagent.mcp.errors import (
    ArgumentDecodeError,
    CollaboratorError,
    ConnectError,
    InvocationError,
    InvocationFailure,
    MCPAgentError,
    ProtocolError,
    ToolNotFound,
)
from mcpagent.mcp.schema import ParameterSetting, SSEBinding, StdioBinding, ToolDescriptor, ToolSummary

__all__ = [
    "ArgumentDecodeError",
    "CollaboratorError",
    "ConnectError",
    "InvocationError",
    "InvocationFailure",
    "MCPAgentError",
    "ParameterSetting",
    "ProtocolError",
    "SSEBinding",
    "StdioBinding",
    "ToolDescriptor",
    "ToolNotFound",
    "ToolSummary",
    "decode_arguments",
    "parameters_from_schema",
    "to_function_tool",
    "to_function_tools",
]
