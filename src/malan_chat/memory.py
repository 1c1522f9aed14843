"""In-process conversation history keyed by conversation id."""
from __future__ import annotations

import asyncio
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from .messages import Message, system


@dataclass
class Conversation:
    id: str
    messages: List[Message] = field(default_factory=list)
    created_at: float = 0.0
    updated_at: float = 0.0


class HistoryStore(ABC):
    """Storage interface for conversations.

    Implementations own every Conversation; callers get copies of the
    message list, never the live one.
    """

    @abstractmethod
    def get_or_create(self, conversation_id: str, system_prompt: str) -> Conversation:
        ...

    @abstractmethod
    def append(self, conversation_id: str, message: Message) -> None:
        ...

    @abstractmethod
    def messages(self, conversation_id: str) -> List[Message]:
        ...

    @abstractmethod
    def lock(self, conversation_id: str) -> asyncio.Lock:
        ...

    @abstractmethod
    def clear(self, conversation_id: str) -> bool:
        ...

    @abstractmethod
    def list_conversations(self) -> List[str]:
        ...


class InMemoryHistoryStore(HistoryStore):
    """Process-lifetime store with optional idle expiry.

    Layout:
        {conversation_id: Conversation}, plus one asyncio.Lock per id so a
        whole turn (user content, completion, reply) can run exclusively.

    With ``max_idle_seconds=None`` nothing is ever evicted. Otherwise a
    conversation untouched for longer than that is dropped the next time
    the store is accessed.
    """

    def __init__(
        self,
        *,
        max_idle_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_idle_seconds = max_idle_seconds
        self._clock = clock
        self._conversations: Dict[str, Conversation] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    # --------- core API ----------
    def get_or_create(self, conversation_id: str, system_prompt: str) -> Conversation:
        """Return the conversation, seeding a new one with the system prompt."""
        self._expire()
        conv = self._conversations.get(conversation_id)
        if conv is None:
            now = self._clock()
            conv = Conversation(
                id=conversation_id,
                messages=[system(system_prompt)],
                created_at=now,
                updated_at=now,
            )
            self._conversations[conversation_id] = conv
        return conv

    def append(self, conversation_id: str, message: Message) -> None:
        conv = self._conversations.get(conversation_id)
        if conv is None:
            raise KeyError(f"Unknown conversation: {conversation_id!r}")
        if message.role == "system":
            raise ValueError("system message is only inserted when a conversation is created")
        conv.messages.append(message)
        conv.updated_at = self._clock()

    def messages(self, conversation_id: str) -> List[Message]:
        conv = self._conversations.get(conversation_id)
        return list(conv.messages) if conv else []

    def lock(self, conversation_id: str) -> asyncio.Lock:
        lock = self._locks.get(conversation_id)
        if lock is None:
            lock = self._locks[conversation_id] = asyncio.Lock()
        return lock

    # --------- convenience ----------
    def clear(self, conversation_id: str) -> bool:
        """Drop a conversation and its lock; True if it existed.

        A lock that is currently held is kept for the turn using it.
        """
        lock = self._locks.get(conversation_id)
        if lock is not None and not lock.locked():
            del self._locks[conversation_id]
        return self._conversations.pop(conversation_id, None) is not None

    def list_conversations(self) -> List[str]:
        self._expire()
        return sorted(self._conversations)

    def __len__(self) -> int:
        return len(self._conversations)

    # --------- internals ----------
    def _expire(self) -> None:
        if self.max_idle_seconds is None:
            return
        cutoff = self._clock() - self.max_idle_seconds
        for cid in [c.id for c in self._conversations.values() if c.updated_at < cutoff]:
            lock = self._locks.get(cid)
            if lock is not None and lock.locked():
                continue
            del self._conversations[cid]
            self._locks.pop(cid, None)
