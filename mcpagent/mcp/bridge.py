"""
Schema bridge between tool descriptors and the model's function-call schema.

Forward: ``ToolDescriptor`` -> OpenAI-style ``{"type": "function", ...}`` tool.
Reverse: a JSON-Schema object (function ``parameters`` or a server's
``inputSchema``) -> ``ParameterSetting`` list, and a call's serialized
argument blob -> argument mapping.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any, Dict, Iterable, List

from mcpagent.mcp.errors import ArgumentDecodeError
from mcpagent.mcp.schema import ParameterSetting, ToolDescriptor

if TYPE_CHECKING:
    from mcpagent.providers.base import ToolCallRequest


def to_property(param: ParameterSetting) -> Dict[str, Any]:
    prop: Dict[str, Any] = {"type": param.type, "description": param.description}
    if param.enum:
        prop["enum"] = list(param.enum)
    return prop


def to_function_tool(tool: ToolDescriptor) -> Dict[str, Any]:
    """Function-schema representation of one descriptor. Never fails for a valid descriptor."""
    return {
        "type": "function",
        "function": {
            "name": tool.name,
            "description": tool.description,
            "parameters": {
                "type": "object",
                "properties": {p.name: to_property(p) for p in tool.parameters},
                "required": [p.name for p in tool.parameters if p.required],
            },
        },
    }


def to_function_tools(tools: Iterable[ToolDescriptor]) -> List[Dict[str, Any]]:
    return [to_function_tool(tool) for tool in tools]


def parameters_from_schema(schema: Dict[str, Any]) -> List[ParameterSetting]:
    """
    Read parameters back out of a JSON-Schema object.

    Accepts either a function schema's ``parameters`` block or a server's
    ``inputSchema``. Property order is preserved.
    """
    properties = schema.get("properties") or {}
    required = set(schema.get("required") or [])

    params: List[ParameterSetting] = []
    for name, info in properties.items():
        info = info or {}
        type_name = info.get("type", "string")
        if isinstance(type_name, list):
            # e.g. ["integer", "null"] for optional fields
            type_name = next((t for t in type_name if t != "null"), "string")
        enum = info.get("enum")
        params.append(ParameterSetting(
            name=name,
            type=type_name,
            description=info.get("description", ""),
            enum=[str(v) for v in enum] if enum else None,
            required=name in required,
        ))
    return params


def decode_arguments(call: "ToolCallRequest") -> Dict[str, Any]:
    """Parse a tool call's serialized arguments into a mapping."""
    raw = call.arguments
    if raw is None or not raw.strip():
        return {}

    try:
        value = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ArgumentDecodeError(
            f"Failed to parse function arguments as JSON: {exc}",
            tool_name=call.tool_name,
            call_id=call.call_id,
        ) from exc

    if not isinstance(value, dict):
        raise ArgumentDecodeError(
            f"Function arguments must be a JSON object, got {type(value).__name__}",
            tool_name=call.tool_name,
            call_id=call.call_id,
        )
    return value
