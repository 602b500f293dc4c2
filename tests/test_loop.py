"""Tests for the tool-calling orchestration loop."""

import threading
import time

import pytest

from mcpagent.core.loop import LoopStatus, ToolLoop
from mcpagent.mcp.errors import InvocationError, InvocationFailure, ProtocolError
from mcpagent.mcp.registry import ToolRegistry
from mcpagent.providers.base import ChatMessage, ChatSession
from mcpagent.validation.config import AgentConfig, Config, ConfigError
from scripted import ScriptedProvider, answer_turn, call, empty_turn, tool_turn


def _session(task="Calculate 25 + 17 using the add tool."):
    session = ChatSession()
    session.add_system("You are a helpful assistant.")
    session.add_user(task)
    return session


def _never_called(tool, settings):
    raise AssertionError(f"transport contacted for {tool.name}")


class RecordingRunner:
    """Stand-in for run_tool that records calls and returns canned text."""

    def __init__(self, results=None, error=None):
        self.results = results or {}
        self.error = error
        self.calls = []

    def __call__(self, tool, settings):
        self.calls.append((tool.name, tool.arguments))
        if self.error is not None:
            raise self.error
        return self.results.get(tool.name, "ok")


@pytest.fixture
def registry(make_stdio_tool):
    return ToolRegistry([make_stdio_tool("add"), make_stdio_tool("sub")])


# ---------------------------------------------------------------------------
# End to end against the stdio test server
# ---------------------------------------------------------------------------


class TestAddScenario:
    def test_add_with_real_server(self, registry, transport_settings):
        provider = ScriptedProvider([
            tool_turn(call("c1", "add", {"a": 25, "b": 17})),
            answer_turn("25 + 17 = 42"),
        ])
        session = _session()
        loop = ToolLoop(provider, registry, transport_settings=transport_settings)

        result = loop.run(session)

        assert result.status == LoopStatus.DONE
        assert result.completed
        assert result.rounds == 2
        assert result.tool_calls == 1
        assert result.output == "25 + 17 = 42"

        roles = [m.role for m in session.messages]
        assert roles == ["system", "user", "assistant", "tool"]
        assistant, tool_msg = session.messages[2], session.messages[3]
        assert [c.call_id for c in assistant.tool_calls] == ["c1"]
        assert tool_msg.tool_call_id == "c1"
        assert tool_msg.content == "42"

        # the second submission carries the tool result
        assert provider.submissions[1][-1] == {"role": "tool", "content": "42", "tool_call_id": "c1"}

    def test_tool_failure_from_server(self, registry, transport_settings, make_stdio_tool):
        registry.register(make_stdio_tool("empty", parameters=[]))
        provider = ScriptedProvider([tool_turn(call("c9", "empty"))])
        session = _session()

        result = ToolLoop(provider, registry, transport_settings=transport_settings).run(session)

        assert result.status == LoopStatus.FAILED
        assert isinstance(result.error, InvocationError)
        assert result.error.reason == InvocationFailure.EMPTY_RESULT
        assert result.call_id == "c9"
        assert result.tool_name == "empty"
        assert len(session) == 2

    @pytest.mark.parametrize("mode", ["bad-result", "list-result", "bad-content"])
    def test_malformed_reply_ends_in_failed_result(self, transport_settings, make_stdio_tool, mode):
        registry = ToolRegistry([make_stdio_tool("add", mode=mode)])
        provider = ScriptedProvider([tool_turn(call("c1", "add", {"a": 1, "b": 2}))])
        session = _session()

        result = ToolLoop(provider, registry, transport_settings=transport_settings).run(session)

        assert result.status == LoopStatus.FAILED
        assert isinstance(result.error, InvocationError)
        assert result.call_id == "c1"
        assert len(session) == 2


# ---------------------------------------------------------------------------
# Loop behaviour with a recording runner
# ---------------------------------------------------------------------------


class TestTermination:
    def test_answer_without_tools_is_one_round(self, registry):
        provider = ScriptedProvider([answer_turn("hello")])
        result = ToolLoop(provider, registry, runner=_never_called).run(_session("hi"))

        assert result.status == LoopStatus.DONE
        assert result.rounds == 1
        assert result.output == "hello"

    def test_rounds_count_tool_turns_plus_one(self, registry):
        runner = RecordingRunner({"add": "42", "sub": "8"})
        provider = ScriptedProvider([
            tool_turn(call("c1", "add", {"a": 25, "b": 17})),
            tool_turn(call("c2", "sub", {"a": 50, "b": 42})),
            answer_turn("8"),
        ])

        result = ToolLoop(provider, registry, runner=runner).run(_session())

        assert result.rounds == 3
        assert result.tool_calls == 2
        assert runner.calls == [("add", {"a": 25, "b": 17}), ("sub", {"a": 50, "b": 42})]

    def test_empty_choices(self, registry):
        session = _session()
        result = ToolLoop(ScriptedProvider([empty_turn()]), registry).run(session)

        assert result.status == LoopStatus.EMPTY_CHOICES
        assert result.completed
        assert result.answer is None
        assert result.output == ""
        assert len(session) == 2

    def test_round_limit(self, registry):
        runner = RecordingRunner({"add": "42"})
        provider = ScriptedProvider([tool_turn(call("c1", "add", {"a": 1, "b": 1}))], repeat_last=True)
        loop = ToolLoop(provider, registry, agent_settings=AgentConfig(max_rounds=3), runner=runner)

        result = loop.run(_session())

        assert result.status == LoopStatus.ROUND_LIMIT
        assert not result.completed
        assert result.rounds == 3
        assert len(runner.calls) == 3
        assert len(provider.submissions) == 3

    def test_token_usage_accumulates(self, registry):
        provider = ScriptedProvider([
            tool_turn(call("c1", "add", {"a": 1, "b": 2}), usage=30),
            answer_turn("3", usage=12),
        ])
        result = ToolLoop(provider, registry, runner=RecordingRunner()).run(_session())
        assert result.token_usage == 42


class TestCorrelation:
    def test_results_follow_request_order(self, registry):
        runner = RecordingRunner({"add": "42", "sub": "8"})
        provider = ScriptedProvider([
            tool_turn(
                call("c1", "add", {"a": 25, "b": 17}),
                call("c2", "sub", {"a": 50, "b": 42}),
            ),
            answer_turn("done"),
        ])
        session = _session()

        ToolLoop(provider, registry, runner=runner).run(session)

        tool_messages = [m for m in session.messages if m.role == "tool"]
        assert [(m.tool_call_id, m.content) for m in tool_messages] == [("c1", "42"), ("c2", "8")]
        assert session.messages[2].role == "assistant"

    def test_parallel_dispatch_keeps_order(self, registry):
        started = []
        lock = threading.Lock()

        def slow_runner(tool, settings):
            with lock:
                started.append(tool.name)
            # the first call finishes last
            time.sleep(0.3 if tool.name == "add" else 0.0)
            return f"{tool.name}-result"

        provider = ScriptedProvider([
            tool_turn(call("c1", "add", {"a": 1, "b": 2}), call("c2", "sub", {"a": 3, "b": 4})),
            answer_turn("done"),
        ])
        session = _session()
        loop = ToolLoop(
            provider, registry, agent_settings=AgentConfig(parallel_tool_calls=True), runner=slow_runner
        )

        result = loop.run(session)

        assert result.status == LoopStatus.DONE
        assert sorted(started) == ["add", "sub"]
        tool_messages = [m for m in session.messages if m.role == "tool"]
        assert [(m.tool_call_id, m.content) for m in tool_messages] == [
            ("c1", "add-result"),
            ("c2", "sub-result"),
        ]

    def test_each_call_gets_its_own_arguments(self, registry):
        runner = RecordingRunner()
        provider = ScriptedProvider([
            tool_turn(call("c1", "add", {"a": 1, "b": 2}), call("c2", "add", {"a": 3, "b": 4})),
            answer_turn("done"),
        ])

        ToolLoop(provider, registry, runner=runner).run(_session())

        assert runner.calls == [("add", {"a": 1, "b": 2}), ("add", {"a": 3, "b": 4})]
        assert registry.get_tool("add").arguments is None

    def test_tools_are_offered_every_round(self, registry):
        provider = ScriptedProvider([tool_turn(call("c1", "add", {"a": 1, "b": 2})), answer_turn("3")])
        ToolLoop(provider, registry, runner=RecordingRunner()).run(_session())

        assert len(provider.tools_seen) == 2
        for tools in provider.tools_seen:
            assert [t["function"]["name"] for t in tools] == ["add", "sub"]

    def test_empty_registry_offers_no_tools(self):
        provider = ScriptedProvider([answer_turn("no tools")])
        ToolLoop(provider, ToolRegistry()).run(_session())
        assert provider.tools_seen == [None]


class TestFailures:
    def test_unknown_tool(self, registry):
        provider = ScriptedProvider([tool_turn(call("c1", "mul", {"a": 2, "b": 3}))])
        session = _session()

        result = ToolLoop(provider, registry, runner=_never_called).run(session)

        assert result.status == LoopStatus.FAILED
        assert result.error_kind == "tool_not_found"
        assert result.tool_name == "mul"
        assert result.call_id == "c1"
        assert "Tool not found in provided tools" in str(result.error)
        assert len(session) == 2

    def test_unknown_tool_in_later_call_stops_whole_round(self, registry):
        # nothing is dispatched when any call in the turn cannot be resolved
        provider = ScriptedProvider([
            tool_turn(call("c1", "add", {"a": 1, "b": 2}), call("c2", "mul", {"a": 2, "b": 3})),
        ])
        result = ToolLoop(provider, registry, runner=_never_called).run(_session())

        assert result.error_kind == "tool_not_found"
        assert result.call_id == "c2"

    def test_malformed_arguments(self, registry):
        provider = ScriptedProvider([tool_turn(call("c3", "add", raw='{"a": 25, "b": '))])
        session = _session()

        result = ToolLoop(provider, registry, runner=_never_called).run(session)

        assert result.status == LoopStatus.FAILED
        assert result.error_kind == "argument_decode_error"
        assert result.call_id == "c3"
        assert len(session) == 2

    def test_invocation_error_carries_call_id(self, registry):
        runner = RecordingRunner(error=InvocationError("Tool reported an error: boom",
                                                       reason=InvocationFailure.TOOL_ERROR))
        provider = ScriptedProvider([tool_turn(call("c5", "sub", {"a": 1, "b": 2}))])

        result = ToolLoop(provider, registry, runner=runner).run(_session())

        assert result.error_kind == "invocation_error"
        assert result.error.reason == InvocationFailure.TOOL_ERROR
        assert result.tool_name == "sub"
        assert result.call_id == "c5"

    def test_transport_error_keeps_its_kind(self, registry):
        runner = RecordingRunner(error=ProtocolError("MCP server closed connection (empty response)"))
        provider = ScriptedProvider([tool_turn(call("c1", "add", {"a": 1, "b": 2}))])

        result = ToolLoop(provider, registry, runner=runner).run(_session())

        assert result.error_kind == "protocol_error"
        assert result.call_id == "c1"

    def test_failed_round_leaves_history_untouched(self, registry):
        runner = RecordingRunner()

        def flaky(tool, settings):
            if tool.arguments == {"a": 3, "b": 4}:
                raise InvocationError("call failed")
            return runner(tool, settings)

        provider = ScriptedProvider([
            tool_turn(call("c1", "add", {"a": 1, "b": 2})),
            tool_turn(call("c2", "add", {"a": 2, "b": 2}), call("c3", "add", {"a": 3, "b": 4})),
        ])
        session = _session()

        result = ToolLoop(provider, registry, runner=flaky).run(session)

        assert result.status == LoopStatus.FAILED
        assert result.rounds == 2
        # first round kept, second round dropped even though c2 succeeded
        assert [m.role for m in session.messages] == ["system", "user", "assistant", "tool"]
        assert session.messages[3].tool_call_id == "c1"
        assert len(runner.calls) == 2

    def test_provider_exception(self, registry):
        provider = ScriptedProvider([RuntimeError("503 Service Unavailable")])
        result = ToolLoop(provider, registry).run(_session())

        assert result.status == LoopStatus.FAILED
        assert result.error_kind == "collaborator_error"
        assert "503" in str(result.error)
        assert result.rounds == 1


class TestFromConfig:
    def test_builds_provider_and_catalog(self):
        config = Config(global_config={
            "agent": {"model": "ollama/llama3", "max_rounds": 4},
            "transport": {"request_timeout": 15},
            "tools": {"remote": {"url": "http://127.0.0.1:8000/sse"}},
        })

        loop = ToolLoop.from_config(config)

        assert loop.provider.provider_name == "ollama"
        assert loop.provider.model == "llama3"
        assert [t.name for t in loop.registry] == ["remote"]
        assert loop.agent_settings.max_rounds == 4
        assert loop.transport_settings.request_timeout == 15

    def test_requires_model(self):
        with pytest.raises(ConfigError, match="No model configured"):
            ToolLoop.from_config(Config())


def test_chat_message_tool_result_shape():
    message = ChatMessage.from_tool_result("42", "c1")
    assert message.to_dict() == {"role": "tool", "content": "42", "tool_call_id": "c1"}
