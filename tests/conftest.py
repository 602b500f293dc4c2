"""Shared fixtures: the stdio test server and tool descriptors bound to it."""

import sys
from pathlib import Path

import pytest

from mcpagent.mcp.schema import ParameterSetting, ToolDescriptor
from mcpagent.validation.config import TransportConfig

SERVER_SCRIPT = Path(__file__).parent / "mcp_test_server.py"

NUMBER_PARAMS = [
    ParameterSetting(name="a", type="number", description="First operand"),
    ParameterSetting(name="b", type="number", description="Second operand"),
]


@pytest.fixture
def transport_settings():
    """Short timeouts so misbehaving servers don't stall the suite."""
    return TransportConfig(connect_timeout=10, request_timeout=10, shutdown_timeout=2)


@pytest.fixture
def make_stdio_tool():
    """Build a descriptor for one tool of the stdio test server."""

    def _make(name="add", parameters=None, mode=None, description="A simple calculator tool"):
        env = {"MCP_TEST_MODE": mode} if mode else {}
        return ToolDescriptor.with_stdio_transport(
            name,
            description,
            NUMBER_PARAMS if parameters is None else parameters,
            command=sys.executable,
            args=[str(SERVER_SCRIPT)],
            env=env,
        )

    return _make
