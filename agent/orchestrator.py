from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Callable, List, Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field

from agent.agent import AgentRuntime
from agent.core.memory import TranscriptEntry, append_entry, render_summary, utc_now
from agent.core.sessions import SessionRegistry
from agent.errors import AgentRunError
from agent.events import FALLBACK_REPLY, extract_reply
from agent.tools import ToolInvocation, build_fetch_schema_tool
from agent.tools.fetch_schema import DEFAULT_TIMEOUT


logger = logging.getLogger(__name__)


class RunResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(..., alias="sessionId")
    response: str
    total_requests: int = Field(..., alias="totalRequests")


def new_session_id() -> str:
    return str(uuid.uuid4())


class RunOrchestrator:
    """Drives one conversational turn for a session.

    Turns for the same session are serialized through the registry's
    per-session lock. The user's message is committed to the transcript before
    the agent runs, so it survives a failed or cancelled run; the assistant
    reply and the request counter are only written once the run completes.
    """

    def __init__(
        self,
        registry: SessionRegistry,
        runtime: AgentRuntime,
        *,
        client: Optional[httpx.AsyncClient] = None,
        tool_timeout: float = DEFAULT_TIMEOUT,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.registry = registry
        self.runtime = runtime
        self._client = client
        self._tool_timeout = tool_timeout
        self._clock = clock

    async def run_turn(self, session_id: Optional[str], user_message: str) -> RunResult:
        session_id = session_id or new_session_id()

        async with self.registry.session(session_id) as memory:
            memory.last_user_message = user_message
            append_entry(
                memory,
                TranscriptEntry(role="user", message=user_message, occurred_at=self._clock()),
            )

            invocations: List[ToolInvocation] = []
            tool = build_fetch_schema_tool(
                session_id,
                invocations,
                client=self._client,
                timeout=self._tool_timeout,
            )
            summary = render_summary(memory, session_id)

            try:
                events = await self.runtime.run_turn(
                    summary, {"sessionId": session_id}, [tool], user_message
                )
            except AgentRunError as exc:
                logger.error("Agent run failed: session=%s error=%s", session_id, exc)
                raise
            except Exception as exc:
                logger.error("Agent run failed: session=%s error=%s", session_id, exc)
                raise AgentRunError(f"Agent run failed: {exc}") from exc

            reply = extract_reply(events)
            if reply == FALLBACK_REPLY:
                logger.warning(
                    "No usable output event: session=%s events=%s", session_id, len(events or [])
                )

            append_entry(
                memory,
                TranscriptEntry(role="assistant", message=reply, occurred_at=self._clock()),
            )
            memory.request_count += 1

            logger.info(
                "Turn complete: session=%s requests=%s tool_calls=%s reply_len=%s",
                session_id,
                memory.request_count,
                len(invocations),
                len(reply),
            )
            return RunResult(
                session_id=session_id,
                response=reply,
                total_requests=memory.request_count,
            )
