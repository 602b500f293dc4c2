"""Error taxonomy for tool sessions and the orchestration loop."""

from __future__ import annotations

from enum import Enum
from typing import Optional


class MCPAgentError(Exception):
    """Base class for every failure the orchestration loop can surface."""

    kind = "error"

    def __init__(
        self,
        message: str,
        tool_name: Optional[str] = None,
        call_id: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.tool_name = tool_name
        self.call_id = call_id

    def __str__(self) -> str:
        where = []
        if self.tool_name:
            where.append(f"tool={self.tool_name}")
        if self.call_id:
            where.append(f"call_id={self.call_id}")
        if where:
            return f"{self.message} ({', '.join(where)})"
        return self.message


class ConnectError(MCPAgentError):
    """Raised when a transport cannot establish a session."""

    kind = "connect_error"


class ProtocolError(MCPAgentError):
    """Raised when the handshake or tool discovery fails against a connected peer."""

    kind = "protocol_error"


class ToolNotFound(MCPAgentError):
    """Raised when the model requests a tool that is not in the catalog."""

    kind = "tool_not_found"


class ArgumentDecodeError(MCPAgentError):
    """Raised when a call's serialized arguments cannot be parsed into a mapping."""

    kind = "argument_decode_error"


class InvocationFailure(str, Enum):
    CALL_FAILED = "call_failed"
    TOOL_ERROR = "tool_error"
    EMPTY_RESULT = "empty_result"
    UNSUPPORTED_CONTENT = "unsupported_content_type"


class InvocationError(MCPAgentError):
    """Raised when a tool call fails or returns no usable text."""

    kind = "invocation_error"

    def __init__(
        self,
        message: str,
        reason: InvocationFailure = InvocationFailure.CALL_FAILED,
        tool_name: Optional[str] = None,
        call_id: Optional[str] = None,
    ):
        super().__init__(message, tool_name=tool_name, call_id=call_id)
        self.reason = reason


class CollaboratorError(MCPAgentError):
    """Raised when the chat-completion call itself fails."""

    kind = "collaborator_error"
