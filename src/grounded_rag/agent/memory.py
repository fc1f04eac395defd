"""Bounded per-session conversation history."""

from __future__ import annotations

from collections import deque

from grounded_rag.config import MemoryConfig
from grounded_rag.types import ChatMessage


class SessionMemory:
    """Keeps the most recent `max_messages` per session, evicting oldest first.

    Concurrent queries on the same session id are not serialized; sessions
    are assumed to have a single writer.
    """

    def __init__(self, config: MemoryConfig | None = None) -> None:
        self.config = config or MemoryConfig()
        self._sessions: dict[str, deque[ChatMessage]] = {}

    async def add_message(self, session_id: str, message: ChatMessage) -> None:
        history = self._sessions.get(session_id)
        if history is None:
            history = deque(maxlen=self.config.max_messages)
            self._sessions[session_id] = history
        history.append(message)

    async def get_history(self, session_id: str) -> list[ChatMessage]:
        return list(self._sessions.get(session_id, ()))

    async def clear_history(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)
