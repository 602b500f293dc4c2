"""Data models for tool descriptors, parameters, and transport bindings."""

from __future__ import annotations

import shutil
from typing import Annotated, Any, Dict, List, Literal, Optional, Sequence, Tuple, Union

import httpx
from pydantic import BaseModel, ConfigDict, Field, field_validator


class ParameterSetting(BaseModel):
    """A single named parameter of a tool."""

    name: str
    type: str = "string"
    description: str = ""
    enum: Optional[List[str]] = None
    required: bool = True


class StdioBinding(BaseModel):
    """Reach a tool by spawning a local executable and talking over stdin/stdout."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["stdio"] = "stdio"
    command: str
    args: Tuple[str, ...] = ()
    env: Dict[str, str] = Field(default_factory=dict)

    @field_validator("command")
    @classmethod
    def _command_exists(cls, value: str) -> str:
        if not shutil.which(value):
            raise ValueError(f"No such executable: {value}")
        return value

    @property
    def argv(self) -> List[str]:
        return [self.command, *self.args]


class SSEBinding(BaseModel):
    """Reach a tool over a long-lived server-sent events stream."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["sse"] = "sse"
    url: str

    @field_validator("url")
    @classmethod
    def _absolute_http_url(cls, value: str) -> str:
        try:
            url = httpx.URL(value)
        except httpx.InvalidURL as exc:
            raise ValueError(f"Invalid SSE url {value!r}: {exc}") from exc
        if url.scheme not in ("http", "https") or not url.host:
            raise ValueError(f"SSE url must be an absolute http(s) url, got {value!r}")
        return value


TransportBinding = Annotated[Union[StdioBinding, SSEBinding], Field(discriminator="kind")]


class ToolDescriptor(BaseModel):
    """
    Transport-agnostic description of one invocable tool.

    The binding is fixed at construction. ``arguments`` is call-scoped:
    use ``for_call()`` to get a private copy for a single invocation.
    """

    name: str
    description: str = ""
    parameters: List[ParameterSetting] = Field(default_factory=list)
    binding: TransportBinding = Field(frozen=True)
    arguments: Optional[Dict[str, Any]] = None

    @classmethod
    def with_stdio_transport(
        cls,
        name: str,
        description: str,
        parameters: Sequence[ParameterSetting],
        command: str,
        args: Sequence[str] = (),
        env: Optional[Dict[str, str]] = None,
    ) -> "ToolDescriptor":
        return cls(
            name=name,
            description=description,
            parameters=list(parameters),
            binding=StdioBinding(command=str(command), args=tuple(args), env=env or {}),
        )

    @classmethod
    def with_sse_transport(
        cls,
        name: str,
        description: str,
        parameters: Sequence[ParameterSetting],
        url: str,
    ) -> "ToolDescriptor":
        return cls(
            name=name,
            description=description,
            parameters=list(parameters),
            binding=SSEBinding(url=str(url)),
        )

    @property
    def transport_kind(self) -> str:
        return self.binding.kind

    def for_call(self, arguments: Dict[str, Any]) -> "ToolDescriptor":
        """Copy of this descriptor carrying the arguments of one invocation."""
        return self.model_copy(update={"arguments": dict(arguments)})


class ToolSummary(BaseModel):
    """A tool as advertised by a connected server's ``tools/list``."""

    name: str
    description: str = ""
    parameters: List[ParameterSetting] = Field(default_factory=list)
