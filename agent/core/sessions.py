from __future__ import annotations

import asyncio
import logging
import time
from collections import OrderedDict
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, List, Optional, Protocol

from agent.core.memory import SessionMemory


logger = logging.getLogger(__name__)


class SessionRecord:
    """A session's memory plus the bookkeeping the registry needs around it."""

    __slots__ = ("memory", "lock", "last_access", "holders")

    def __init__(self, now: float) -> None:
        self.memory = SessionMemory()
        self.lock = asyncio.Lock()
        self.last_access = now
        self.holders = 0

    @property
    def busy(self) -> bool:
        return self.holders > 0 or self.lock.locked()


class EvictionPolicy(Protocol):
    def select_victims(
        self, records: "OrderedDict[str, SessionRecord]", now: float
    ) -> List[str]:
        ...


class NoEviction:
    """Keep every session for the life of the process."""

    def select_victims(self, records, now):
        return []


class LRUEviction:
    """Drop the least recently used idle sessions beyond ``max_sessions``."""

    def __init__(self, max_sessions: int) -> None:
        if max_sessions < 1:
            raise ValueError("max_sessions must be at least 1")
        self.max_sessions = max_sessions

    def select_victims(self, records, now):
        excess = len(records) - self.max_sessions
        if excess <= 0:
            return []
        victims: List[str] = []
        # records are kept in access order, oldest first
        for session_id, record in records.items():
            if len(victims) >= excess:
                break
            if not record.busy:
                victims.append(session_id)
        return victims


class TTLEviction:
    """Drop idle sessions not touched for ``ttl_seconds``."""

    def __init__(self, ttl_seconds: float) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self.ttl_seconds = ttl_seconds

    def select_victims(self, records, now):
        return [
            session_id
            for session_id, record in records.items()
            if not record.busy and now - record.last_access > self.ttl_seconds
        ]


def build_eviction_policy(
    max_sessions: Optional[int] = None, ttl_seconds: Optional[float] = None
) -> EvictionPolicy:
    if max_sessions:
        return LRUEviction(max_sessions)
    if ttl_seconds:
        return TTLEviction(ttl_seconds)
    return NoEviction()


class SessionRegistry:
    """Process-wide table mapping session identifiers to their memory.

    A given identifier maps to the same ``SessionMemory`` instance for as long
    as the record is held. With the default ``NoEviction`` policy the table
    grows without bound; pass an ``LRUEviction`` or ``TTLEviction`` to cap it.
    Sessions with a turn in flight are never evicted.
    """

    def __init__(
        self,
        eviction: Optional[EvictionPolicy] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._records: "OrderedDict[str, SessionRecord]" = OrderedDict()
        self._eviction = eviction or NoEviction()
        self._clock = clock

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._records

    def __len__(self) -> int:
        return len(self._records)

    def _touch(self, session_id: str) -> SessionRecord:
        if not session_id:
            raise ValueError("session_id must be a non-empty string")
        now = self._clock()
        record = self._records.get(session_id)
        if record is None:
            record = SessionRecord(now)
            self._records[session_id] = record
            logger.debug("Created session memory: session=%s", session_id)
        else:
            record.last_access = now
            self._records.move_to_end(session_id)
        return record

    def get_or_create(self, session_id: str) -> SessionMemory:
        record = self._touch(session_id)
        self.evict_idle(keep=session_id)
        return record.memory

    @asynccontextmanager
    async def session(self, session_id: str) -> AsyncIterator[SessionMemory]:
        """Hold the session's run lock and yield its memory.

        At most one holder mutates a given session's memory at a time.
        """
        record = self._touch(session_id)
        record.holders += 1
        try:
            async with record.lock:
                yield self.get_or_create(session_id)
        finally:
            record.holders -= 1
            record.last_access = self._clock()

    def evict_idle(self, keep: Optional[str] = None) -> List[str]:
        victims = [
            session_id
            for session_id in self._eviction.select_victims(self._records, self._clock())
            if session_id != keep
        ]
        for session_id in victims:
            self._records.pop(session_id, None)
        if victims:
            logger.info("Evicted %s idle session(s)", len(victims))
        return victims
