"""
Course domain: enumerations, records and the course update schema.
"""
from __future__ import annotations

from dataclasses import dataclass, asdict
from typing import Any, Dict, Mapping, Optional

from backend.identity_access.domain import Mutability

# Proficiency tiers, ordered from beginner to advanced.
LEVELS = ("A1", "A2", "B1", "B2", "C1")
CATEGORIES = ("medical", "engineering", "general")

COURSE_FIELDS: Mapping[str, Mutability] = {
    "title": Mutability.OWNER,
    "description": Mutability.OWNER,
    "level": Mutability.OWNER,
    "category": Mutability.OWNER,
    "teacher_id": Mutability.ADMIN,
}

MIN_PROGRESS = 0
MAX_PROGRESS = 100


@dataclass
class Course:
    id: int
    title: str
    description: str
    level: str
    category: str
    teacher_id: Optional[int]
    created_at: str
    updated_at: str
    teacher_email: Optional[str] = None
    enrollment_count: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        if data["enrollment_count"] is None:
            data.pop("enrollment_count")
        return data


@dataclass
class Enrollment:
    course_id: int
    user_id: int
    progress: int
    enrolled_at: str
    email: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


__all__ = [
    "LEVELS",
    "CATEGORIES",
    "COURSE_FIELDS",
    "MIN_PROGRESS",
    "MAX_PROGRESS",
    "Course",
    "Enrollment",
]
