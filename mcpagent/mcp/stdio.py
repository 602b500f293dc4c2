"""MCP session over a child process's stdin/stdout."""

from __future__ import annotations

import json
import logging
import os
import queue
import subprocess
import threading
import time
from typing import IO, Any, Dict, List, Optional

from mcpagent.mcp.errors import ConnectError, ProtocolError
from mcpagent.mcp.schema import StdioBinding, ToolDescriptor
from mcpagent.mcp.session import ProtocolSession
from mcpagent.validation.config import TransportConfig

logger = logging.getLogger(__name__)


class StdioSession(ProtocolSession):
    """
    Spawn the bound executable and speak newline-delimited JSON-RPC with it.

    The session exclusively owns the child process. ``cancel()`` closes the
    child's stdin, waits for it to exit, and escalates to terminate/kill, so
    no process outlives its session.
    """

    transport_name = "stdio"

    def __init__(self, tool: ToolDescriptor, settings: Optional[TransportConfig] = None):
        if not isinstance(tool.binding, StdioBinding):
            raise TypeError(f"Tool {tool.name} is not bound to a stdio transport")
        super().__init__(tool, settings)
        self.binding: StdioBinding = tool.binding
        self._process: Optional[subprocess.Popen] = None
        self._lines: "queue.Queue[Optional[bytes]]" = queue.Queue()
        self._readers: List[threading.Thread] = []
        self._lock = threading.Lock()

    @property
    def process(self) -> Optional[subprocess.Popen]:
        return self._process

    @property
    def is_running(self) -> bool:
        return self._process is not None and self._process.poll() is None

    # ── Transport hooks ───────────────────────────────────────────────────

    def _open(self) -> None:
        merged_env = {**os.environ, **self.binding.env}
        try:
            self._process = subprocess.Popen(
                self.binding.argv,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                env=merged_env,
            )
        except OSError as exc:
            raise ConnectError(
                f"Failed to start tool server {self.binding.command}: {exc}",
                tool_name=self.tool.name,
            ) from exc

        self._lines = queue.Queue()
        self._readers = [
            threading.Thread(
                target=self._pump_stdout,
                args=(self._process.stdout, self._lines),
                name=f"mcp-stdout-{self.tool.name}",
                daemon=True,
            ),
            threading.Thread(
                target=self._drain_stderr,
                args=(self._process.stderr,),
                name=f"mcp-stderr-{self.tool.name}",
                daemon=True,
            ),
        ]
        for reader in self._readers:
            reader.start()
        logger.debug("Spawned %s (pid %s)", " ".join(self.binding.argv), self._process.pid)

    def _write(self, message: Dict[str, Any]) -> None:
        process = self._process
        if process is None or process.poll() is not None:
            raise ProtocolError("MCP server is not running", tool_name=self.tool.name)

        line = json.dumps(message) + "\n"
        with self._lock:
            try:
                process.stdin.write(line.encode())
                process.stdin.flush()
            except (BrokenPipeError, OSError) as exc:
                raise ProtocolError(f"MCP transport error: {exc}", tool_name=self.tool.name) from exc

    def _read_response(self, request_id: int, timeout: float) -> Dict[str, Any]:
        deadline = time.monotonic() + timeout
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise ProtocolError(
                    f"Timed out after {timeout}s waiting for response {request_id}",
                    tool_name=self.tool.name,
                )
            try:
                raw = self._lines.get(timeout=remaining)
            except queue.Empty:
                continue

            if raw is None:
                # keep EOF visible to any later read
                self._lines.put(None)
                raise ProtocolError(
                    "MCP server closed connection (empty response)", tool_name=self.tool.name
                )

            message = self._decode_line(raw)
            if message is None:
                continue
            if message.get("id") == request_id and ("result" in message or "error" in message):
                return message
            logger.debug("Skipping unrelated message from %s: %s", self.tool.name, message)

    def _close(self) -> None:
        process = self._process
        self._process = None
        if process is None:
            return

        try:
            if process.stdin and not process.stdin.closed:
                process.stdin.close()
        except OSError as exc:
            logger.debug("Closing stdin of %s failed: %s", self.tool.name, exc)

        timeout = self.settings.shutdown_timeout
        try:
            process.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            logger.debug("%s did not exit after stdin closed, terminating", self.tool.name)
            process.terminate()
            try:
                process.wait(timeout=timeout)
            except subprocess.TimeoutExpired:
                process.kill()
                process.wait()

        for reader in self._readers:
            reader.join(timeout=1)
        self._readers = []
        for stream in (process.stdout, process.stderr):
            if stream:
                stream.close()
        logger.debug("Tool server %s exited with code %s", self.tool.name, process.returncode)

    # ── Pipe readers ──────────────────────────────────────────────────────

    @staticmethod
    def _pump_stdout(stream: IO[bytes], lines: "queue.Queue[Optional[bytes]]") -> None:
        try:
            for raw in iter(stream.readline, b""):
                lines.put(raw)
        except (OSError, ValueError) as exc:
            logger.debug("stdout reader stopped: %s", exc)
        finally:
            lines.put(None)

    def _drain_stderr(self, stream: IO[bytes]) -> None:
        try:
            for raw in iter(stream.readline, b""):
                logger.debug("[%s stderr] %s", self.tool.name, raw.decode(errors="replace").rstrip())
        except (OSError, ValueError) as exc:
            logger.debug("stderr reader stopped: %s", exc)

    def _decode_line(self, raw: bytes) -> Optional[Dict[str, Any]]:
        text = raw.decode(errors="replace").strip()
        if not text:
            return None
        try:
            message = json.loads(text)
        except json.JSONDecodeError:
            logger.debug("Ignoring non-JSON output from %s: %s", self.tool.name, text)
            return None
        return message if isinstance(message, dict) else None

    # ── Cleanup ───────────────────────────────────────────────────────────

    def __del__(self):
        if getattr(self, "_process", None) is not None:
            self._close()
