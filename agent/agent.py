from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Mapping, Protocol, Sequence

from langchain_core.messages import BaseMessage, HumanMessage, SystemMessage, ToolMessage
from langchain_core.tools import BaseTool, ToolException
from langchain_openai import ChatOpenAI
from pydantic import ValidationError

from agent.core.prompt import SYSTEM_PROMPT
from agent.errors import AgentRunError
from agent.events import (
    ACTION_CALL,
    ACTION_RESULT,
    INPUT,
    OUTPUT,
    THOUGHT,
    AgentEvent,
)
from config.settings import ConfigurationError, Settings


logger = logging.getLogger(__name__)


class AgentRuntime(Protocol):
    def start(self) -> None:
        ...

    async def run_turn(
        self,
        context_summary: str,
        session_args: Mapping[str, Any],
        tools: Sequence[BaseTool],
        input_message: str,
    ) -> List[AgentEvent]:
        ...


def _content_text(content: Any) -> Any:
    """Flatten provider content blocks into text; leave other shapes alone."""
    if isinstance(content, list):
        parts = [
            block.get("text", "") if isinstance(block, dict) else str(block)
            for block in content
            if isinstance(block, str) or (isinstance(block, dict) and block.get("type") == "text")
        ]
        if parts:
            return "".join(parts)
    return content


class LangChainAgentRuntime:
    """Tool-calling loop over a LangChain chat model.

    Every step is recorded as an ``AgentEvent`` so callers can inspect the run
    afterwards: the input, any thoughts accompanying tool calls, each call and
    its result, and finally the ``output`` carrying the reply. If the model is
    still calling tools after ``max_steps`` the run ends with no output event.
    """

    def __init__(self, llm: Any, instructions: str = SYSTEM_PROMPT, max_steps: int = 6) -> None:
        self._llm = llm
        self._instructions = instructions
        self._max_steps = max_steps
        self._started = False

    @property
    def started(self) -> bool:
        return self._started

    def start(self) -> None:
        self._started = True
        logger.info("Agent runtime started: max_steps=%s", self._max_steps)

    def _system_prompt(self, context_summary: str) -> str:
        return f"{self._instructions}\n\nSession context:\n{context_summary}"

    async def _call_tool(self, tools: Dict[str, BaseTool], call: Mapping[str, Any]) -> Any:
        tool = tools.get(call.get("name", ""))
        if tool is None:
            return {"ok": False, "error": f"Unknown tool: {call.get('name')}"}
        try:
            return await tool.ainvoke(call.get("args") or {})
        except (ValidationError, ToolException, ValueError) as exc:
            return {"ok": False, "error": str(exc)}

    async def run_turn(
        self,
        context_summary: str,
        session_args: Mapping[str, Any],
        tools: Sequence[BaseTool],
        input_message: str,
    ) -> List[AgentEvent]:
        if not self._started:
            raise AgentRunError("Agent runtime has not been started")

        events: List[AgentEvent] = [AgentEvent(kind=INPUT, payload=input_message)]
        by_name = {tool.name: tool for tool in tools}
        model = self._llm.bind_tools(list(tools)) if tools else self._llm
        messages: List[BaseMessage] = [
            SystemMessage(content=self._system_prompt(context_summary)),
            HumanMessage(content=input_message),
        ]

        try:
            for step in range(self._max_steps):
                reply = await model.ainvoke(messages)
                messages.append(reply)
                tool_calls = getattr(reply, "tool_calls", None) or []
                content = _content_text(reply.content)

                if not tool_calls:
                    events.append(AgentEvent(kind=OUTPUT, payload=content))
                    return events

                if content:
                    events.append(AgentEvent(kind=THOUGHT, payload=content))
                for call in tool_calls:
                    name = call.get("name")
                    logger.debug(
                        "Tool call: session=%s step=%s tool=%s",
                        session_args.get("sessionId"),
                        step,
                        name,
                    )
                    events.append(AgentEvent(kind=ACTION_CALL, name=name, payload=call.get("args")))
                    result = await self._call_tool(by_name, call)
                    events.append(AgentEvent(kind=ACTION_RESULT, name=name, payload=result))
                    messages.append(
                        ToolMessage(
                            content=json.dumps(result, default=str),
                            tool_call_id=call.get("id") or "",
                            name=name,
                        )
                    )
        except AgentRunError:
            raise
        except Exception as exc:
            raise AgentRunError(f"Agent run failed: {exc}") from exc

        logger.warning(
            "Agent stopped after %s steps without a reply: session=%s",
            self._max_steps,
            session_args.get("sessionId"),
        )
        return events


def build_agent(settings: Settings) -> LangChainAgentRuntime:
    if not settings.openrouter_api_key:
        raise ConfigurationError(
            "OPENROUTER_API_KEY not set. Please configure it in environment or .env"
        )

    llm = ChatOpenAI(
        model=settings.openrouter_model,
        api_key=settings.openrouter_api_key,
        base_url=settings.openrouter_base_url,
        temperature=settings.temperature,
    )
    return LangChainAgentRuntime(llm, max_steps=settings.max_agent_steps)
