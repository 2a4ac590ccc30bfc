"""
Course API routes: catalogue, course management, enrollment and progress.

Why:
    Courses are public to browse but owned by the instructor who created them.
    The adapter enforces authorization through the mediation dependencies and
    delegates persistence to the injected `CourseRepo`.

Notes:
    - Update, delete and enrollment listing load the course before deciding on
      ownership: an unknown id is 404 for every caller, a foreign course is 403.
    - Owners may change the descriptive fields; reassigning `teacher_id` is
      reserved to administrators and must name an instructor account.
    - One enrollment per (course, learner), enforced by the repository.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, ConfigDict, Field, field_validator

from backend.courses.domain import CATEGORIES, COURSE_FIELDS, LEVELS, MAX_PROGRESS, MIN_PROGRESS, Course
from backend.courses.repo import CourseRepo
from backend.identity_access.accounts import Account, AccountStore, DuplicateError
from backend.identity_access.domain import INSTRUCTOR_ROLES, ROLE_ADMIN, Mutability, rejected_fields, writable_fields

from ..errors import ResourceNotFound, ValidationError
from ..policy import (
    get_accounts,
    get_courses,
    path_int,
    require_owner_or_role,
    require_role,
    resolve_account,
)
from ..responses import ok

courses_router = APIRouter(tags=["Courses"])
logger = logging.getLogger("polyglot.web.courses")

_FIELD_ERRORS = {
    "invalid_title": ("title", "must be 1-200 characters"),
    "invalid_description": ("description", "must not be empty"),
    "invalid_level": ("level", f"must be one of {', '.join(LEVELS)}"),
    "invalid_category": ("category", f"must be one of {', '.join(CATEGORIES)}"),
}


def _fetch_course(request: Request) -> Optional[Course]:
    return get_courses(request).get_course(path_int(request, "course_id"))


def _course_owner(course: Course) -> Optional[int]:
    return course.teacher_id


_require_instructor = require_role(INSTRUCTOR_ROLES)
_course_for_update = require_owner_or_role(
    _fetch_course,
    owner_of=_course_owner,
    roles={ROLE_ADMIN},
    not_found_message="Course not found",
    denied_message="Not authorized to update this course",
)
_course_for_delete = require_owner_or_role(
    _fetch_course,
    owner_of=_course_owner,
    roles={ROLE_ADMIN},
    not_found_message="Course not found",
    denied_message="Not authorized to delete this course",
)
_course_for_roster = require_owner_or_role(
    _fetch_course,
    owner_of=_course_owner,
    roles={ROLE_ADMIN},
    not_found_message="Course not found",
    denied_message="Not authorized to view enrollments",
)


# --- Request models -------------------------------------------------------------

def _check_level(value: Optional[str]) -> Optional[str]:
    if value is not None and value not in LEVELS:
        raise ValueError(f"level must be one of {', '.join(LEVELS)}")
    return value


def _check_category(value: Optional[str]) -> Optional[str]:
    if value is not None and value not in CATEGORIES:
        raise ValueError(f"category must be one of {', '.join(CATEGORIES)}")
    return value


def _strip_required(value: Optional[str]) -> Optional[str]:
    if value is None:
        return value
    value = value.strip()
    if not value:
        raise ValueError("must not be empty")
    return value


class _CourseFieldChecks(BaseModel):
    @field_validator("title", "description", check_fields=False)
    @classmethod
    def strip_text(cls, v: Optional[str]) -> Optional[str]:
        return _strip_required(v)

    @field_validator("level", check_fields=False)
    @classmethod
    def level_known(cls, v: Optional[str]) -> Optional[str]:
        return _check_level(v)

    @field_validator("category", check_fields=False)
    @classmethod
    def category_known(cls, v: Optional[str]) -> Optional[str]:
        return _check_category(v)


class CourseCreate(_CourseFieldChecks):
    title: str = Field(..., min_length=1, max_length=200)
    description: str = Field(..., min_length=1)
    level: str
    category: str


class CourseUpdate(_CourseFieldChecks):
    """Every field of the course update schema; unknown keys are rejected."""

    model_config = ConfigDict(extra="forbid")

    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = None
    level: Optional[str] = None
    category: Optional[str] = None
    teacher_id: Optional[int] = Field(default=None, ge=1)


class ProgressUpdate(BaseModel):
    progress: int = Field(..., ge=MIN_PROGRESS, le=MAX_PROGRESS)


def _repo_validation_error(exc: ValueError) -> ValidationError:
    code = str(exc)
    field, msg = _FIELD_ERRORS.get(code, (None, code))
    return ValidationError("Validation failed", detail=code, errors=[{"field": field, "msg": msg}])


def _course_updates(payload: CourseUpdate, account: Account, course: Course, accounts: AccountStore) -> Dict[str, Any]:
    updates = payload.model_dump(include=payload.model_fields_set)
    if not updates:
        raise ValidationError("No fields to update")
    nulls = sorted(k for k, v in updates.items() if v is None)
    if nulls:
        raise ValidationError(
            "Validation failed",
            errors=[{"field": name, "msg": "must not be null"} for name in nulls],
        )
    granted = {Mutability.ADMIN} if account.role == ROLE_ADMIN else set()
    if course.teacher_id == account.id:
        granted.add(Mutability.OWNER)
    rejected = rejected_fields(updates, writable_fields(COURSE_FIELDS, granted=granted))
    if rejected:
        raise ValidationError(
            f"Field(s) not updatable: {', '.join(rejected)}",
            errors=[{"field": name, "msg": "not updatable by caller"} for name in rejected],
        )
    if "teacher_id" in updates:
        new_owner = accounts.get(updates["teacher_id"])
        if new_owner is None or new_owner.role not in INSTRUCTOR_ROLES:
            raise ValidationError(
                "Invalid teacher_id",
                errors=[{"field": "teacher_id", "msg": "must reference a teacher or admin account"}],
            )
    return updates


# --- Catalogue ------------------------------------------------------------------

@courses_router.get("/api/courses")
def list_courses(
    limit: int = Query(10, ge=1, le=100),
    offset: int = Query(0, ge=0),
    level: Optional[str] = Query(None),
    category: Optional[str] = Query(None),
    search: Optional[str] = Query(None, max_length=200),
    courses: CourseRepo = Depends(get_courses),
):
    """Public course catalogue with optional filters and enrollment counts."""
    for field, check, value in (("level", _check_level, level), ("category", _check_category, category)):
        try:
            check(value)
        except ValueError as exc:
            raise ValidationError("Validation failed", errors=[{"field": field, "msg": str(exc)}])
    items = courses.list_courses(
        limit=limit,
        offset=offset,
        level=level,
        category=category,
        search=(search or "").strip() or None,
    )
    return ok([c.to_dict() for c in items])


@courses_router.get("/api/courses/{course_id}")
def get_course(request: Request, courses: CourseRepo = Depends(get_courses)):
    course = courses.get_course(path_int(request, "course_id"))
    if course is None:
        raise ResourceNotFound("Course not found")
    return ok(course.to_dict())


# --- Course management ----------------------------------------------------------

@courses_router.post("/api/courses", dependencies=[Depends(resolve_account), Depends(_require_instructor)])
def create_course(
    payload: CourseCreate,
    account: Account = Depends(resolve_account),
    courses: CourseRepo = Depends(get_courses),
):
    """Create a course owned by the caller (teacher or admin).

    Behavior:
        - 201 with the course on success
        - 400 on invalid fields
        - 403 when the caller is a student
    """
    try:
        course = courses.create_course(
            title=payload.title,
            description=payload.description,
            level=payload.level,
            category=payload.category,
            teacher_id=account.id,
        )
    except ValueError as exc:
        raise _repo_validation_error(exc)
    logger.info("Course %s created by account %s", course.id, account.id)
    return ok(course.to_dict(), status_code=201)


@courses_router.put("/api/courses/{course_id}", dependencies=[Depends(resolve_account)])
def update_course(
    payload: CourseUpdate,
    course: Course = Depends(_course_for_update),
    account: Account = Depends(resolve_account),
    courses: CourseRepo = Depends(get_courses),
    accounts: AccountStore = Depends(get_accounts),
):
    """Update a course (owner or admin).

    Behavior:
        - 200 with the updated course
        - 400 on invalid fields or fields the caller may not change
        - 403 when the caller neither owns the course nor is an admin
        - 404 when the course does not exist
    """
    updates = _course_updates(payload, account, course, accounts)
    try:
        updated = courses.update_course(course.id, updates)
    except ValueError as exc:
        raise _repo_validation_error(exc)
    if updated is None:
        raise ResourceNotFound("Course not found")
    logger.info("Course %s updated by account %s: %s", course.id, account.id, ", ".join(sorted(updates)))
    return ok(updated.to_dict(), message="Course updated successfully")


@courses_router.delete("/api/courses/{course_id}", dependencies=[Depends(resolve_account)])
def delete_course(
    course: Course = Depends(_course_for_delete),
    account: Account = Depends(resolve_account),
    courses: CourseRepo = Depends(get_courses),
):
    if not courses.delete_course(course.id):
        raise ResourceNotFound("Course not found")
    logger.info("Course %s deleted by account %s", course.id, account.id)
    return ok(message="Course deleted successfully")


# --- Enrollment -----------------------------------------------------------------

@courses_router.post("/api/courses/{course_id}/enroll")
def enroll(
    request: Request,
    account: Account = Depends(resolve_account),
    courses: CourseRepo = Depends(get_courses),
):
    course = courses.get_course(path_int(request, "course_id"))
    if course is None:
        raise ResourceNotFound("Course not found")
    try:
        enrollment = courses.enroll(course.id, account.id)
    except DuplicateError:
        raise ValidationError("Already enrolled in this course")
    logger.info("Account %s enrolled in course %s", account.id, course.id)
    return ok(enrollment.to_dict(), message="Successfully enrolled in course")


@courses_router.put("/api/courses/{course_id}/progress")
def update_progress(
    request: Request,
    payload: ProgressUpdate,
    account: Account = Depends(resolve_account),
    courses: CourseRepo = Depends(get_courses),
):
    """Set the caller's own progress (0-100) in a course they are enrolled in."""
    course_id = path_int(request, "course_id")
    if courses.get_course(course_id) is None:
        raise ResourceNotFound("Course not found")
    try:
        updated = courses.update_progress(course_id, account.id, payload.progress)
    except ValueError:
        raise ValidationError("Validation failed", errors=[{"field": "progress", "msg": "must be between 0 and 100"}])
    if not updated:
        raise ResourceNotFound("Enrollment not found")
    return ok(message="Progress updated successfully")


@courses_router.get("/api/courses/{course_id}/enrollments", dependencies=[Depends(resolve_account)])
def list_enrollments(
    course: Course = Depends(_course_for_roster),
    courses: CourseRepo = Depends(get_courses),
):
    return ok([e.to_dict() for e in courses.list_enrollments(course.id)])


__all__ = ["courses_router"]
