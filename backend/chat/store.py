"""
Course chat: message records and the in-memory ConversationStore.

Why:
    Chat lives in a document store, separate from the relational data. The web
    adapter only needs an append-only, per-course ordered log it can read
    newest-first, so the contract stays tiny and is easy to fake in tests.

Ordering:
    `recent()` returns the store's native order (newest first). Callers
    reverse it for chronological display.
"""
from __future__ import annotations

from dataclasses import dataclass, asdict
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Protocol
import threading
import uuid

DEFAULT_HISTORY_LIMIT = 50
MAX_MESSAGE_LENGTH = 2000


@dataclass(frozen=True)
class ChatMessage:
    id: str
    course_id: int
    message: str
    sender_id: int
    sender_email: str
    sender_role: str
    timestamp: datetime

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        return data


class ConversationStore(Protocol):
    def append(self, course_id: int, *, message: str, sender_id: int, sender_email: str, sender_role: str) -> ChatMessage: ...

    def recent(self, course_id: int, *, limit: int = DEFAULT_HISTORY_LIMIT) -> List[ChatMessage]: ...

    def get(self, course_id: int, message_id: str) -> Optional[ChatMessage]: ...

    def delete(self, course_id: int, message_id: str) -> bool: ...


def chronological(messages: List[ChatMessage]) -> List[ChatMessage]:
    """Reverse a newest-first page into display order."""
    return list(reversed(messages))


class InMemoryConversationStore:
    """Per-course message lists with a strictly increasing server timestamp."""

    def __init__(self) -> None:
        self._messages: Dict[int, List[ChatMessage]] = {}
        self._last_ts: datetime | None = None
        self._lock = threading.Lock()

    def _next_timestamp(self) -> datetime:
        now = datetime.now(timezone.utc)
        if self._last_ts is not None and now <= self._last_ts:
            now = self._last_ts + timedelta(microseconds=1)
        self._last_ts = now
        return now

    def append(self, course_id: int, *, message: str, sender_id: int, sender_email: str, sender_role: str) -> ChatMessage:
        with self._lock:
            msg = ChatMessage(
                id=uuid.uuid4().hex,
                course_id=course_id,
                message=message,
                sender_id=sender_id,
                sender_email=sender_email,
                sender_role=sender_role,
                timestamp=self._next_timestamp(),
            )
            self._messages.setdefault(course_id, []).append(msg)
        return msg

    def recent(self, course_id: int, *, limit: int = DEFAULT_HISTORY_LIMIT) -> List[ChatMessage]:
        items = sorted(self._messages.get(course_id, []), key=lambda m: m.timestamp, reverse=True)
        return items[:limit]

    def get(self, course_id: int, message_id: str) -> Optional[ChatMessage]:
        for msg in self._messages.get(course_id, []):
            if msg.id == message_id:
                return msg
        return None

    def delete(self, course_id: int, message_id: str) -> bool:
        with self._lock:
            bucket = self._messages.get(course_id, [])
            for idx, msg in enumerate(bucket):
                if msg.id == message_id:
                    del bucket[idx]
                    return True
        return False


__all__ = [
    "ChatMessage",
    "ConversationStore",
    "InMemoryConversationStore",
    "chronological",
    "DEFAULT_HISTORY_LIMIT",
    "MAX_MESSAGE_LENGTH",
]
