"""
Course repository contract and in-memory implementation.

Why:
    The web adapter depends on the `CourseRepo` protocol only. Postgres backs
    it in production (`repo_db.DBCourseRepo`); this in-memory version serves
    local offline work and tests.

Notes:
    - Owner email is resolved through the injected account store, mirroring the
      join the SQL repository performs.
    - One enrollment per (course, learner); a second attempt raises
      `DuplicateError`.
    - Deleting an account clears course ownership and drops the account's
      enrollments, as the foreign keys do in Postgres.
"""
from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Protocol, Tuple
import threading

from backend.identity_access.accounts import AccountStore, DuplicateError

from .domain import CATEGORIES, LEVELS, MAX_PROGRESS, MIN_PROGRESS, Course, Enrollment


class CourseRepo(Protocol):
    def create_course(self, *, title: str, description: str, level: str, category: str, teacher_id: int) -> Course: ...

    def get_course(self, course_id: int) -> Optional[Course]: ...

    def list_courses(
        self,
        *,
        limit: int = 10,
        offset: int = 0,
        level: str | None = None,
        category: str | None = None,
        search: str | None = None,
    ) -> List[Course]: ...

    def update_course(self, course_id: int, updates: Mapping[str, Any]) -> Optional[Course]: ...

    def delete_course(self, course_id: int) -> bool: ...

    def enroll(self, course_id: int, user_id: int) -> Enrollment: ...

    def update_progress(self, course_id: int, user_id: int, progress: int) -> bool: ...

    def list_enrollments(self, course_id: int) -> List[Enrollment]: ...


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def validate_course_fields(values: Mapping[str, Any]) -> None:
    if "title" in values:
        title = (values["title"] or "").strip()
        if not title or len(title) > 200:
            raise ValueError("invalid_title")
    if "description" in values and not (values["description"] or "").strip():
        raise ValueError("invalid_description")
    if "level" in values and values["level"] not in LEVELS:
        raise ValueError("invalid_level")
    if "category" in values and values["category"] not in CATEGORIES:
        raise ValueError("invalid_category")


class InMemoryCourseRepo:
    def __init__(self, accounts: AccountStore | None = None) -> None:
        self._accounts = accounts
        self.courses: Dict[int, Course] = {}
        # enrollments[(course_id, user_id)] = Enrollment
        self.enrollments: Dict[Tuple[int, int], Enrollment] = {}
        self._next_id = 1
        self._lock = threading.Lock()

    def _email_of(self, account_id: Optional[int]) -> Optional[str]:
        if self._accounts is None or account_id is None:
            return None
        acc = self._accounts.get(account_id)
        return acc.email if acc else None

    def _account_gone(self, account_id: Optional[int]) -> bool:
        if self._accounts is None or account_id is None:
            return False
        return self._accounts.get(account_id) is None

    def _forget_deleted_accounts(self) -> None:
        """Apply the DB foreign-key actions for accounts deleted since the last read.

        Owner references are cleared (`on delete set null`) and the account's
        enrollments are removed (`on delete cascade`).
        """
        if self._accounts is None:
            return
        with self._lock:
            for course in self.courses.values():
                if self._account_gone(course.teacher_id):
                    course.teacher_id = None
            for key in [k for k in self.enrollments if self._account_gone(k[1])]:
                del self.enrollments[key]

    def _read_model(self, course: Course, *, with_count: bool = False) -> Course:
        self._forget_deleted_accounts()
        count = None
        if with_count:
            count = sum(1 for (cid, _uid) in self.enrollments if cid == course.id)
        return replace(course, teacher_email=self._email_of(course.teacher_id), enrollment_count=count)

    def create_course(self, *, title: str, description: str, level: str, category: str, teacher_id: int) -> Course:
        values = {"title": title, "description": description, "level": level, "category": category}
        validate_course_fields(values)
        now = _now()
        with self._lock:
            course = Course(
                id=self._next_id,
                title=title.strip(),
                description=description.strip(),
                level=level,
                category=category,
                teacher_id=teacher_id,
                created_at=now,
                updated_at=now,
            )
            self.courses[course.id] = course
            self._next_id += 1
        return self._read_model(course)

    def get_course(self, course_id: int) -> Optional[Course]:
        course = self.courses.get(course_id)
        return self._read_model(course) if course else None

    def list_courses(
        self,
        *,
        limit: int = 10,
        offset: int = 0,
        level: str | None = None,
        category: str | None = None,
        search: str | None = None,
    ) -> List[Course]:
        needle = (search or "").lower()
        items = []
        for course in sorted(self.courses.values(), key=lambda c: c.id):
            if level and course.level != level:
                continue
            if category and course.category != category:
                continue
            if needle and needle not in course.title.lower() and needle not in course.description.lower():
                continue
            items.append(course)
        return [self._read_model(c, with_count=True) for c in items[offset: offset + limit]]

    def update_course(self, course_id: int, updates: Mapping[str, Any]) -> Optional[Course]:
        course = self.courses.get(course_id)
        if not course:
            return None
        validate_course_fields(updates)
        for key in ("title", "description"):
            if key in updates:
                setattr(course, key, updates[key].strip())
        for key in ("level", "category", "teacher_id"):
            if key in updates:
                setattr(course, key, updates[key])
        course.updated_at = _now()
        return self._read_model(course)

    def delete_course(self, course_id: int) -> bool:
        with self._lock:
            if self.courses.pop(course_id, None) is None:
                return False
            # Enrollments follow the course (FK cascade in the DB schema).
            for key in [k for k in self.enrollments if k[0] == course_id]:
                del self.enrollments[key]
        return True

    def enroll(self, course_id: int, user_id: int) -> Enrollment:
        with self._lock:
            key = (course_id, user_id)
            if key in self.enrollments:
                raise DuplicateError("already_enrolled")
            enrollment = Enrollment(course_id=course_id, user_id=user_id, progress=MIN_PROGRESS, enrolled_at=_now())
            self.enrollments[key] = enrollment
        return replace(enrollment)

    def update_progress(self, course_id: int, user_id: int, progress: int) -> bool:
        if not (MIN_PROGRESS <= progress <= MAX_PROGRESS):
            raise ValueError("invalid_progress")
        self._forget_deleted_accounts()
        enrollment = self.enrollments.get((course_id, user_id))
        if not enrollment:
            return False
        enrollment.progress = progress
        return True

    def list_enrollments(self, course_id: int) -> List[Enrollment]:
        self._forget_deleted_accounts()
        items = [e for (cid, _uid), e in self.enrollments.items() if cid == course_id]
        return [replace(e, email=self._email_of(e.user_id)) for e in items]


__all__ = ["CourseRepo", "InMemoryCourseRepo", "validate_course_fields"]
