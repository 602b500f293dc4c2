"""MCP session over a server-sent events stream plus message POSTs."""

from __future__ import annotations

import json
import logging
import time
from contextlib import ExitStack
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Iterator, List, Optional

import httpx

from mcpagent.mcp.errors import ConnectError, ProtocolError
from mcpagent.mcp.schema import SSEBinding, ToolDescriptor
from mcpagent.mcp.session import ProtocolSession
from mcpagent.validation.config import TransportConfig

logger = logging.getLogger(__name__)


@dataclass
class ServerSentEvent:
    event: str = "message"
    data: str = ""


def iter_events(lines: Iterable[str]) -> Iterator[ServerSentEvent]:
    """Group ``text/event-stream`` lines into events."""
    event = ""
    data: List[str] = []
    for line in lines:
        line = line.rstrip("\r\n")
        if not line:
            if event or data:
                yield ServerSentEvent(event=event or "message", data="\n".join(data))
            event, data = "", []
            continue
        if line.startswith(":"):
            continue  # comment / keep-alive

        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if field == "event":
            event = value
        elif field == "data":
            data.append(value)

    if data:
        yield ServerSentEvent(event=event or "message", data="\n".join(data))


class SSESession(ProtocolSession):
    """
    Connect to a long-lived MCP event stream.

    Server-to-client messages arrive on the ``GET`` event stream; the first
    ``endpoint`` event names the URL that client-to-server messages are
    POSTed to. The stream is held for one connect/cancel pair.

    Waits are bounded by ``connect_timeout`` / ``request_timeout`` checked on
    every stream line, so keep-alive comments cannot extend them. A silent
    stream is bounded by the client's read timeout; an injected ``client``
    keeps its own timeouts for that case.
    """

    transport_name = "sse"

    def __init__(
        self,
        tool: ToolDescriptor,
        settings: Optional[TransportConfig] = None,
        client: Optional[httpx.Client] = None,
    ):
        if not isinstance(tool.binding, SSEBinding):
            raise TypeError(f"Tool {tool.name} is not bound to an SSE transport")
        super().__init__(tool, settings)
        self.url = tool.binding.url
        self.endpoint: Optional[str] = None
        self._client = client
        self._owns_client = client is None
        self._stack: Optional[ExitStack] = None
        self._events: Optional[Iterator[ServerSentEvent]] = None
        self._deadline: Optional[float] = None
        self._timeout = 0.0
        self._waiting_for = ""

    # ── Transport hooks ───────────────────────────────────────────────────

    def _open(self) -> None:
        if self._client is None:
            self._client = httpx.Client(
                timeout=httpx.Timeout(
                    self.settings.request_timeout, connect=self.settings.connect_timeout
                )
            )

        self._stack = ExitStack()
        try:
            response = self._stack.enter_context(
                self._client.stream("GET", self.url, headers={"Accept": "text/event-stream"})
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise ConnectError(
                f"Failed to open event stream at {self.url}: {exc}", tool_name=self.tool.name
            ) from exc

        self._events = iter_events(self._timed_lines(response.iter_lines()))
        self._start_wait(self.settings.connect_timeout, "the endpoint event")
        try:
            event = self._next_event()
        except ProtocolError as exc:
            raise ConnectError(exc.message, tool_name=self.tool.name) from exc
        if event.event != "endpoint" or not event.data.strip():
            raise ConnectError(
                f"Expected an endpoint event from {self.url}, got {event.event!r}",
                tool_name=self.tool.name,
            )
        self.endpoint = str(httpx.URL(self.url).join(event.data.strip()))
        logger.debug("Event stream %s posts messages to %s", self.url, self.endpoint)

    def _write(self, message: Dict[str, Any]) -> None:
        if self._client is None or self.endpoint is None:
            raise ProtocolError("Event stream is not open", tool_name=self.tool.name)
        try:
            response = self._client.post(self.endpoint, json=message)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise ProtocolError(f"MCP transport error: {exc}", tool_name=self.tool.name) from exc

    def _read_response(self, request_id: int, timeout: float) -> Dict[str, Any]:
        self._start_wait(timeout, f"response {request_id}")
        while True:
            event = self._next_event()
            if event.event != "message":
                logger.debug("Skipping %s event from %s", event.event, self.tool.name)
                continue
            try:
                message = json.loads(event.data)
            except json.JSONDecodeError:
                logger.debug("Ignoring non-JSON event data from %s: %s", self.tool.name, event.data)
                continue
            if (
                isinstance(message, dict)
                and message.get("id") == request_id
                and ("result" in message or "error" in message)
            ):
                return message
            logger.debug("Skipping unrelated message from %s: %s", self.tool.name, message)

    def _close(self) -> None:
        stack, self._stack = self._stack, None
        self._events = None
        self._deadline = None
        self.endpoint = None
        try:
            if stack is not None:
                stack.close()
        except httpx.HTTPError as exc:
            raise ProtocolError(f"Closing event stream failed: {exc}", tool_name=self.tool.name) from exc
        finally:
            if self._owns_client and self._client is not None:
                self._client.close()
                self._client = None

    # ── Helpers ───────────────────────────────────────────────────────────

    def _start_wait(self, timeout: float, waiting_for: str) -> None:
        self._deadline = time.monotonic() + timeout
        self._timeout = timeout
        self._waiting_for = waiting_for

    def _timed_lines(self, lines: Iterable[str]) -> Iterator[str]:
        for line in lines:
            if self._deadline is not None and time.monotonic() > self._deadline:
                raise ProtocolError(
                    f"Timed out after {self._timeout}s waiting for {self._waiting_for}",
                    tool_name=self.tool.name,
                )
            yield line

    def _next_event(self) -> ServerSentEvent:
        if self._events is None:
            raise ProtocolError("Event stream is not open", tool_name=self.tool.name)
        try:
            return next(self._events)
        except StopIteration:
            raise ProtocolError("Event stream closed by server", tool_name=self.tool.name)
        except httpx.HTTPError as exc:
            raise ProtocolError(f"Event stream error: {exc}", tool_name=self.tool.name) from exc
