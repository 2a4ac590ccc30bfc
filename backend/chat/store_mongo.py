"""
MongoDB-backed ConversationStore.

Design:
- One `course_chat` collection; each document carries its `course_id` scope.
- The server assigns `timestamp` at write time. Reads sort newest first by
  (`timestamp`, `_id`), so equal timestamps still order by insertion.
- A single `MongoClient` is shared; pymongo pools connections and is
  thread-safe.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
import logging
import os

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.errors import PyMongoError

from backend.identity_access.accounts import StoreError

from .store import DEFAULT_HISTORY_LIMIT, ChatMessage

logger = logging.getLogger("polyglot.chat.store_mongo")

COLLECTION = "course_chat"


def _doc_to_message(doc: Dict[str, Any]) -> ChatMessage:
    ts = doc["timestamp"]
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ChatMessage(
        id=str(doc["_id"]),
        course_id=int(doc["course_id"]),
        message=doc["message"],
        sender_id=int(doc["sender_id"]),
        sender_email=doc.get("sender_email") or "",
        sender_role=doc.get("sender_role") or "",
        timestamp=ts,
    )


def _now_ms() -> datetime:
    """Current UTC time truncated to the millisecond precision BSON dates keep."""
    now = datetime.now(timezone.utc)
    return now.replace(microsecond=now.microsecond // 1000 * 1000)


def _object_id(message_id: str) -> Optional[ObjectId]:
    try:
        return ObjectId(message_id)
    except (InvalidId, TypeError):
        return None


class MongoConversationStore:
    def __init__(self, url: str | None = None, database: str | None = None, client: MongoClient | None = None) -> None:
        url = url or os.getenv("MONGO_URL", "")
        if client is None and not url:
            raise RuntimeError("No MongoDB URL provided for MongoConversationStore")
        self._client = client or MongoClient(url, tz_aware=True, serverSelectionTimeoutMS=5000)
        db_name = database or os.getenv("MONGO_DATABASE", "polyglot")
        self._collection = self._client[db_name][COLLECTION]

    def ensure_indexes(self) -> None:
        self._collection.create_index([("course_id", ASCENDING), ("timestamp", DESCENDING)])

    def append(self, course_id: int, *, message: str, sender_id: int, sender_email: str, sender_role: str) -> ChatMessage:
        doc = {
            "course_id": course_id,
            "message": message,
            "sender_id": sender_id,
            "sender_email": sender_email,
            "sender_role": sender_role,
            "timestamp": _now_ms(),
        }
        try:
            result = self._collection.insert_one(doc)
        except PyMongoError as exc:
            logger.warning("Chat insert failed: %s", exc.__class__.__name__)
            raise StoreError("Error sending message") from exc
        doc["_id"] = result.inserted_id
        return _doc_to_message(doc)

    def recent(self, course_id: int, *, limit: int = DEFAULT_HISTORY_LIMIT) -> List[ChatMessage]:
        try:
            cursor = (
                self._collection.find({"course_id": course_id})
                .sort([("timestamp", DESCENDING), ("_id", DESCENDING)])
                .limit(limit)
            )
            return [_doc_to_message(doc) for doc in cursor]
        except PyMongoError as exc:
            raise StoreError("Error fetching chat messages") from exc

    def get(self, course_id: int, message_id: str) -> Optional[ChatMessage]:
        oid = _object_id(message_id)
        if oid is None:
            return None
        try:
            doc = self._collection.find_one({"_id": oid, "course_id": course_id})
        except PyMongoError as exc:
            raise StoreError("Error fetching chat message") from exc
        return _doc_to_message(doc) if doc else None

    def delete(self, course_id: int, message_id: str) -> bool:
        oid = _object_id(message_id)
        if oid is None:
            return False
        try:
            result = self._collection.delete_one({"_id": oid, "course_id": course_id})
        except PyMongoError as exc:
            raise StoreError("Error deleting message") from exc
        return result.deleted_count > 0


__all__ = ["MongoConversationStore", "COLLECTION"]
