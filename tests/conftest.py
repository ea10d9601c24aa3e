"""
Shared fixtures and fakes for the schema explorer tests.

- FakeRuntime: a scripted agent runtime standing in for the LLM
- ScriptedChatModel: a LangChain-shaped chat model replaying canned replies
- mock_client: an httpx.AsyncClient backed by MockTransport
"""

from __future__ import annotations

import inspect
from datetime import datetime, timezone
from typing import Any, Callable, List, Optional

import httpx
import pytest

from agent.core.sessions import SessionRegistry
from agent.events import OUTPUT, AgentEvent
from agent.orchestrator import RunOrchestrator
from config.settings import Settings


FIXED_TIME = datetime(2025, 1, 2, 3, 4, 5, tzinfo=timezone.utc)

PAYWALL_BODY = {
    "x402Version": 1,
    "error": "X-PAYMENT header is required",
    "accepts": [
        {
            "scheme": "exact",
            "network": "base",
            "maxAmountRequired": "10000",
            "payTo": "0xpay",
        }
    ],
}


class FakeRuntime:
    """Agent runtime whose turns are produced by ``script``.

    ``script(summary, session_args, tools, message)`` may return events or an
    awaitable of events. Without a script every turn echoes the message.
    """

    def __init__(self, script: Optional[Callable[..., Any]] = None) -> None:
        self.script = script
        self.calls: List[dict] = []
        self.started = False

    def start(self) -> None:
        self.started = True

    async def run_turn(self, context_summary, session_args, tools, input_message):
        self.calls.append(
            {
                "summary": context_summary,
                "session_args": dict(session_args),
                "tools": list(tools),
                "message": input_message,
            }
        )
        if self.script is None:
            return [AgentEvent(kind=OUTPUT, payload=f"echo: {input_message}")]
        result = self.script(context_summary, session_args, tools, input_message)
        if inspect.isawaitable(result):
            result = await result
        return result


class ScriptedChatModel:
    """Replays canned ``AIMessage`` replies; exceptions in the script are raised."""

    def __init__(self, replies: List[Any]) -> None:
        self.replies = list(replies)
        self.bound_tools: Optional[list] = None
        self.seen: List[list] = []

    def bind_tools(self, tools):
        self.bound_tools = list(tools)
        return self

    async def ainvoke(self, messages):
        self.seen.append(list(messages))
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply


def paywalled_handler(request: httpx.Request) -> httpx.Response:
    return httpx.Response(402, json=PAYWALL_BODY)


def make_mock_client(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.fixture
def registry() -> SessionRegistry:
    return SessionRegistry()


@pytest.fixture
def runtime() -> FakeRuntime:
    runtime = FakeRuntime()
    runtime.start()
    return runtime


@pytest.fixture
def orchestrator(registry, runtime) -> RunOrchestrator:
    return RunOrchestrator(
        registry,
        runtime,
        client=make_mock_client(paywalled_handler),
        clock=lambda: FIXED_TIME,
    )


@pytest.fixture
def settings() -> Settings:
    return Settings(
        openrouter_api_key="test-key",
        disable_payments=True,
        cors_origin="*",
        max_sessions=None,
        session_ttl_seconds=None,
    )


@pytest.fixture
def paid_settings() -> Settings:
    return Settings(
        openrouter_api_key="test-key",
        disable_payments=False,
        default_price="$0.01",
        facilitator_url="https://facilitator.test",
        pay_to="0xpay",
        network="base-sepolia",
        cors_origin="*",
        max_sessions=None,
        session_ttl_seconds=None,
    )
