"""In-process conversation state, one record per sender.

Mutations for a single sender are serialized through a per-sender lock held by
``session()``; different senders never wait on each other.
"""

import asyncio
import copy
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import AsyncIterator, Optional

from relay.logging_config import get_logger
from relay.services.stage import Stage

logger = get_logger("conversation_store")

USER_ROLE = "user"
ASSISTANT_ROLE = "assistant"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class HistoryEntry:
    role: str
    text: str
    timestamp: datetime

    def to_payload(self) -> dict:
        return {"role": self.role, "content": self.text, "timestamp": self.timestamp.isoformat()}


@dataclass
class ConversationState:
    sender: str
    first_contact_at: datetime
    last_activity_at: datetime
    stage: Stage = Stage.NEW
    history: list[HistoryEntry] = field(default_factory=list)


class ConversationStore:
    def __init__(self):
        self._states: dict[str, ConversationState] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def __len__(self) -> int:
        return len(self._states)

    def __contains__(self, sender: object) -> bool:
        return sender in self._states

    def _lock_for(self, sender: str) -> asyncio.Lock:
        lock = self._locks.get(sender)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[sender] = lock
        return lock

    def get_or_create(self, sender: str, now: Optional[datetime] = None) -> ConversationState:
        """Return the sender's state, creating it on first contact."""
        state = self._states.get(sender)
        if state is None:
            now = now or _utcnow()
            state = ConversationState(sender=sender, first_contact_at=now, last_activity_at=now)
            self._states[sender] = state
            logger.info("Conversation created", extra={"context": {"sender": sender}})
        return state

    def append_user(self, sender: str, text: str, now: Optional[datetime] = None) -> HistoryEntry:
        now = now or _utcnow()
        state = self.get_or_create(sender, now)
        entry = HistoryEntry(role=USER_ROLE, text=text, timestamp=now)
        state.history.append(entry)
        # Clock skew must not break first_contact_at <= last_activity_at.
        state.last_activity_at = max(now, state.first_contact_at)
        return entry

    def append_assistant(self, sender: str, text: str, now: Optional[datetime] = None) -> HistoryEntry:
        now = now or _utcnow()
        state = self.get_or_create(sender, now)
        entry = HistoryEntry(role=ASSISTANT_ROLE, text=text, timestamp=now)
        state.history.append(entry)
        return entry

    def set_stage(self, sender: str, stage: Stage) -> None:
        self.get_or_create(sender).stage = stage

    def recent_context(self, sender: str, limit: int) -> list[HistoryEntry]:
        """Last ``limit`` history entries, oldest first."""
        state = self._states.get(sender)
        if state is None or limit <= 0:
            return []
        return list(state.history[-limit:])

    def snapshot(self, sender: str) -> Optional[ConversationState]:
        state = self._states.get(sender)
        if state is None:
            return None
        return copy.deepcopy(state)

    def snapshots(self) -> list[ConversationState]:
        return [copy.deepcopy(state) for state in self._states.values()]

    async def delete(self, sender: str) -> bool:
        """Drop a sender's state once any in-flight session for it has finished.

        The sender's lock is kept, so sessions already waiting on it and
        sessions started afterwards still share one queue.
        """
        async with self._lock_for(sender):
            state = self._states.pop(sender, None)
        if state is None:
            return False
        logger.info("Conversation deleted", extra={"context": {"sender": sender}})
        return True

    @asynccontextmanager
    async def session(self, sender: str, now: Optional[datetime] = None) -> AsyncIterator[ConversationState]:
        """Hold the sender's lock and yield the live state."""
        lock = self._lock_for(sender)
        async with lock:
            yield self.get_or_create(sender, now)
