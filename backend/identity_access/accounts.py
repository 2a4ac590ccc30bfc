"""
Account records and the in-memory AccountStore for development and tests.

Why: Every authorization decision is rooted in the local account that a
verified subject identifier maps to. Keep the storage contract small so the
web layer can be wired against Postgres in production and an in-memory fake
in tests.

Invariant: at most one account per `firebase_uid`.
"""
from __future__ import annotations

from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Protocol
import threading

from .domain import ALLOWED_ROLES, DEFAULT_ROLE


class StoreError(Exception):
    """Raised when an underlying store fails; message is safe, cause is chained."""


class DuplicateError(StoreError):
    """Raised when a uniqueness constraint would be violated."""


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class Account:
    id: int
    firebase_uid: str
    email: str
    role: str
    created_at: str
    updated_at: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class AccountStore(Protocol):
    def create(self, *, firebase_uid: str, email: str, role: str = DEFAULT_ROLE) -> Account: ...

    def get(self, account_id: int) -> Optional[Account]: ...

    def find_by_firebase_uid(self, firebase_uid: str) -> Optional[Account]: ...

    def update(self, account_id: int, updates: Mapping[str, Any]) -> Optional[Account]: ...

    def delete(self, account_id: int) -> bool: ...

    def list(self, *, limit: int = 10, offset: int = 0, role: str | None = None) -> List[Account]: ...


class InMemoryAccountStore:
    """Dict-backed AccountStore. Ids are assigned sequentially from 1."""

    def __init__(self) -> None:
        self._data: Dict[int, Account] = {}
        self._next_id = 1
        self._lock = threading.Lock()

    def create(self, *, firebase_uid: str, email: str, role: str = DEFAULT_ROLE) -> Account:
        if role not in ALLOWED_ROLES:
            raise ValueError("invalid_role")
        with self._lock:
            if any(a.firebase_uid == firebase_uid for a in self._data.values()):
                raise DuplicateError("account_exists")
            now = _now_iso()
            acc = Account(
                id=self._next_id,
                firebase_uid=firebase_uid,
                email=email,
                role=role,
                created_at=now,
                updated_at=now,
            )
            self._data[acc.id] = acc
            self._next_id += 1
        return acc

    def get(self, account_id: int) -> Optional[Account]:
        return self._data.get(account_id)

    def find_by_firebase_uid(self, firebase_uid: str) -> Optional[Account]:
        for acc in self._data.values():
            if acc.firebase_uid == firebase_uid:
                return acc
        return None

    def update(self, account_id: int, updates: Mapping[str, Any]) -> Optional[Account]:
        acc = self._data.get(account_id)
        if not acc:
            return None
        if "role" in updates and updates["role"] not in ALLOWED_ROLES:
            raise ValueError("invalid_role")
        for key in ("email", "role"):
            if key in updates:
                setattr(acc, key, updates[key])
        acc.updated_at = _now_iso()
        return acc

    def delete(self, account_id: int) -> bool:
        return self._data.pop(account_id, None) is not None

    def list(self, *, limit: int = 10, offset: int = 0, role: str | None = None) -> List[Account]:
        items = [a for a in sorted(self._data.values(), key=lambda a: a.id) if role is None or a.role == role]
        return items[offset: offset + limit]


__all__ = [
    "Account",
    "AccountStore",
    "InMemoryAccountStore",
    "StoreError",
    "DuplicateError",
]
