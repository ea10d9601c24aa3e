"""Tests for the LangChain tool-calling runtime using a scripted chat model."""

from __future__ import annotations

import json

import pytest
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage, ToolMessage

from agent.agent import LangChainAgentRuntime, build_agent
from agent.errors import AgentRunError
from agent.events import ACTION_CALL, ACTION_RESULT, INPUT, OUTPUT, THOUGHT, extract_reply
from agent.tools import build_fetch_schema_tool
from config.settings import ConfigurationError, Settings
from conftest import PAYWALL_BODY, ScriptedChatModel, make_mock_client, paywalled_handler


def _tool_call(url: str, call_id: str = "call_1", name: str = "fetch-schema") -> dict:
    return {"name": name, "args": {"urlToFetch": url}, "id": call_id}


def _runtime(replies, max_steps=6):
    model = ScriptedChatModel(replies)
    runtime = LangChainAgentRuntime(model, instructions="INSTRUCTIONS", max_steps=max_steps)
    runtime.start()
    return runtime, model


def _tools(session_id="s"):
    invocations = []
    tool = build_fetch_schema_tool(
        session_id, invocations, client=make_mock_client(paywalled_handler)
    )
    return [tool], invocations


class TestLangChainAgentRuntime:
    @pytest.mark.asyncio
    async def test_direct_answer(self):
        runtime, model = _runtime([AIMessage(content="Hello!")])
        tools, _ = _tools()

        events = await runtime.run_turn("Session: s", {"sessionId": "s"}, tools, "hi")

        assert [e.kind for e in events] == [INPUT, OUTPUT]
        assert extract_reply(events) == "Hello!"
        system, human = model.seen[0]
        assert isinstance(system, SystemMessage)
        assert system.content.startswith("INSTRUCTIONS")
        assert "Session: s" in system.content
        assert isinstance(human, HumanMessage)
        assert human.content == "hi"
        assert [t.name for t in model.bound_tools] == ["fetch-schema"]

    @pytest.mark.asyncio
    async def test_tool_round_trip_is_logged(self):
        runtime, model = _runtime(
            [
                AIMessage(content="Let me check.", tool_calls=[_tool_call("https://api.test/paid")]),
                AIMessage(content="It costs 0.01 USDC on base."),
            ]
        )
        tools, invocations = _tools()

        events = await runtime.run_turn("ctx", {"sessionId": "s"}, tools, "what is /paid?")

        assert [e.kind for e in events] == [INPUT, THOUGHT, ACTION_CALL, ACTION_RESULT, OUTPUT]
        assert events[2].payload == {"urlToFetch": "https://api.test/paid"}
        assert events[3].payload["status"] == 402
        assert events[3].payload["body"] == PAYWALL_BODY
        assert extract_reply(events) == "It costs 0.01 USDC on base."
        assert len(invocations) == 1

        tool_message = model.seen[1][-1]
        assert isinstance(tool_message, ToolMessage)
        assert tool_message.tool_call_id == "call_1"
        assert json.loads(tool_message.content)["status"] == 402

    @pytest.mark.asyncio
    async def test_unknown_tool_is_reported_to_model(self):
        runtime, _ = _runtime(
            [
                AIMessage(content="", tool_calls=[_tool_call("https://x.test", name="delete-all")]),
                AIMessage(content="Sorry."),
            ]
        )
        tools, invocations = _tools()

        events = await runtime.run_turn("ctx", {"sessionId": "s"}, tools, "go")

        result = next(e for e in events if e.kind == ACTION_RESULT)
        assert result.payload == {"ok": False, "error": "Unknown tool: delete-all"}
        assert invocations == []

    @pytest.mark.asyncio
    async def test_step_limit_ends_without_output(self):
        looping = [
            AIMessage(content="", tool_calls=[_tool_call("https://api.test/paid", f"c{i}")])
            for i in range(2)
        ]
        runtime, _ = _runtime(looping, max_steps=2)
        tools, _ = _tools()

        events = await runtime.run_turn("ctx", {"sessionId": "s"}, tools, "loop")

        assert OUTPUT not in [e.kind for e in events]

    @pytest.mark.asyncio
    async def test_content_blocks_are_flattened(self):
        runtime, _ = _runtime(
            [AIMessage(content=[{"type": "text", "text": "part one, "}, {"type": "text", "text": "part two"}])]
        )
        events = await runtime.run_turn("ctx", {"sessionId": "s"}, [], "hi")
        assert extract_reply(events) == "part one, part two"

    @pytest.mark.asyncio
    async def test_model_error_becomes_run_error(self):
        runtime, _ = _runtime([RuntimeError("429 from upstream")])
        tools, _ = _tools()

        with pytest.raises(AgentRunError) as excinfo:
            await runtime.run_turn("ctx", {"sessionId": "s"}, tools, "hi")

        assert "429 from upstream" in str(excinfo.value)

    @pytest.mark.asyncio
    async def test_requires_start(self):
        runtime = LangChainAgentRuntime(ScriptedChatModel([]))
        with pytest.raises(AgentRunError):
            await runtime.run_turn("ctx", {"sessionId": "s"}, [], "hi")


class TestBuildAgent:
    def test_missing_key(self):
        with pytest.raises(ConfigurationError):
            build_agent(Settings(openrouter_api_key=None))

    def test_builds_runtime(self):
        runtime = build_agent(Settings(openrouter_api_key="sk-test", max_agent_steps=3))
        assert isinstance(runtime, LangChainAgentRuntime)
        assert runtime.started is False
