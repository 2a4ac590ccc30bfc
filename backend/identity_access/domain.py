"""
Identity domain constants and simple helpers.

Why:
- Centralize allowed roles to avoid drift between stores, policy and web layer.
- Declare which account fields may change, and by whom, in one place.
"""

from __future__ import annotations

from enum import Enum
from typing import Mapping

ROLE_STUDENT = "student"
ROLE_TEACHER = "teacher"
ROLE_ADMIN = "admin"

# Keep roles minimal and explicit. Immutable to prevent accidental mutation.
ALLOWED_ROLES = frozenset({ROLE_STUDENT, ROLE_TEACHER, ROLE_ADMIN})

# Roles allowed to own courses.
INSTRUCTOR_ROLES = frozenset({ROLE_TEACHER, ROLE_ADMIN})

DEFAULT_ROLE = ROLE_STUDENT


class Mutability(str, Enum):
    """Who may change a field after the record exists."""

    SELF = "self"
    OWNER = "owner"
    ADMIN = "admin"
    IMMUTABLE = "immutable"


# Account update schema. Admins may change everything except IMMUTABLE fields.
ACCOUNT_FIELDS: Mapping[str, Mutability] = {
    "email": Mutability.SELF,
    "role": Mutability.ADMIN,
    "firebase_uid": Mutability.IMMUTABLE,
}


def writable_fields(schema: Mapping[str, Mutability], *, granted: set[Mutability]) -> frozenset[str]:
    """Return the field names a caller holding `granted` tags may change.

    ADMIN implies every non-immutable tag.
    """
    if Mutability.ADMIN in granted:
        return frozenset(k for k, m in schema.items() if m is not Mutability.IMMUTABLE)
    return frozenset(k for k, m in schema.items() if m in granted)


def rejected_fields(updates: Mapping[str, object], allowed: frozenset[str]) -> list[str]:
    return sorted(k for k in updates.keys() if k not in allowed)


__all__ = [
    "ROLE_STUDENT",
    "ROLE_TEACHER",
    "ROLE_ADMIN",
    "ALLOWED_ROLES",
    "INSTRUCTOR_ROLES",
    "DEFAULT_ROLE",
    "Mutability",
    "ACCOUNT_FIELDS",
    "writable_fields",
    "rejected_fields",
]
