"""
mcpagent providers module.

This module provides abstractions for chat-completion providers.
"""

from mcpagent.providers.base import (
    ChatMessage,
    ChatSession,
    Provider,
    ProviderFactory,
    ProviderResponse,
    ToolCallRequest,
)

__all__ = [
    "ChatMessage",
    "ChatSession",
    "Provider",
    "ProviderFactory",
    "ProviderResponse",
    "ToolCallRequest",
]
