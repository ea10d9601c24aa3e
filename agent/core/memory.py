from __future__ import annotations

"""Per-session conversational memory.

Memory lives for the lifetime of the process only. The transcript is a bounded
log: once it grows past ``MAX_TRANSCRIPT_ENTRIES`` the oldest entries are
dropped, so it is a prompting aid rather than a durable history.
"""

from datetime import datetime, timezone
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


MAX_TRANSCRIPT_ENTRIES = 20
SUMMARY_WINDOW = 5


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class TranscriptEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: Literal["user", "assistant"] = Field(..., description="'user' or 'assistant'")
    message: str
    occurred_at: datetime = Field(default_factory=utc_now)

    def render(self) -> str:
        return f"{self.occurred_at.isoformat()} {self.role.upper()}: {self.message}"


class SessionMemory(BaseModel):
    request_count: int = 0
    transcript: List[TranscriptEntry] = Field(default_factory=list)
    last_user_message: Optional[str] = None


def append_entry(memory: SessionMemory, entry: TranscriptEntry) -> None:
    memory.transcript.append(entry)
    overflow = len(memory.transcript) - MAX_TRANSCRIPT_ENTRIES
    if overflow > 0:
        del memory.transcript[:overflow]


def render_summary(memory: SessionMemory, session_id: str) -> str:
    recent = "\n".join(
        entry.render() for entry in memory.transcript[-SUMMARY_WINDOW:]
    )
    lines = [
        f"Session: {session_id}",
        f"Requests: {memory.request_count}",
        (
            f"Last user message: {memory.last_user_message}"
            if memory.last_user_message
            else "No user messages yet."
        ),
        f"Recent transcript:\n{recent}" if recent else "Transcript is empty.",
    ]
    return "\n".join(lines)
