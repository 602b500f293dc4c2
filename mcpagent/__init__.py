"""
mcpagent - let a chat model call MCP tools until it has an answer.

Tools are described once and reached over either transport:
- stdio: a local executable spawned per call
- sse: a long-lived server-sent events endpoint

Architecture:
- ToolDescriptor + schema bridge turn tools into function-call schemas
- Every tool call opens a fresh MCP session (connect, list, call, cancel)
- ToolLoop resubmits the conversation until no tool calls remain
"""

__version__ = "0.1.0"
__license__ = "Apache-2.0"

from mcpagent.core.loop import LoopResult, LoopStatus, ToolLoop
from mcpagent.mcp.registry import ToolRegistry
from mcpagent.mcp.schema import ParameterSetting, ToolDescriptor
from mcpagent.providers.base import ChatMessage, ChatSession

__all__ = [
    "ChatMessage",
    "ChatSession",
    "LoopResult",
    "LoopStatus",
    "ParameterSetting",
    "ToolDescriptor",
    "ToolLoop",
    "ToolRegistry",
    "__version__",
]
