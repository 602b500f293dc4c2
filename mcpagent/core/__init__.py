"""
mcpagent core module.

This module contains the tool orchestration loop.
"""

from mcpagent.core.loop import LoopResult, LoopStatus, ToolLoop

__all__ = ["LoopResult", "LoopStatus", "ToolLoop"]
