"""
Postgres-backed repository for courses and enrollments.

Design:
- Minimal psycopg3 usage; each call opens a short-lived connection.
- Returns domain dataclasses to keep the web adapter independent of the driver.
- Read-then-write sequences are not wrapped in a transaction by callers; the
  (course_id, user_id) primary key guards duplicate enrollments.
"""
from __future__ import annotations

from typing import Any, List, Mapping, Optional, Tuple
import logging
import os

try:
    import psycopg
    from psycopg import errors as pg_errors, sql
    HAVE_PSYCOPG = True
except Exception:  # pragma: no cover - optional in some dev envs
    psycopg = None  # type: ignore
    sql = pg_errors = None  # type: ignore
    HAVE_PSYCOPG = False

from backend.identity_access.accounts import DuplicateError, StoreError

from .domain import CATEGORIES, LEVELS, MAX_PROGRESS, MIN_PROGRESS, Course, Enrollment
from .repo import validate_course_fields

logger = logging.getLogger("polyglot.courses.repo_db")

SCHEMA_SQL = """
create table if not exists courses (
    id bigserial primary key,
    title text not null check (char_length(title) between 1 and 200),
    description text not null,
    level text not null check (level in ({levels})),
    category text not null check (category in ({categories})),
    teacher_id bigint references users(id) on delete set null,
    created_at timestamptz not null default now(),
    updated_at timestamptz not null default now()
);
create table if not exists enrollments (
    course_id bigint not null references courses(id) on delete cascade,
    user_id bigint not null references users(id) on delete cascade,
    progress integer not null default 0 check (progress between {min_p} and {max_p}),
    enrolled_at timestamptz not null default now(),
    primary key (course_id, user_id)
);
""".format(
    levels=", ".join(f"'{lvl}'" for lvl in LEVELS),
    categories=", ".join(f"'{cat}'" for cat in CATEGORIES),
    min_p=MIN_PROGRESS,
    max_p=MAX_PROGRESS,
)

_TS = "to_char({} at time zone 'utc', 'YYYY-MM-DD\"T\"HH24:MI:SS\"+00:00\"')"

_COURSE_COLUMNS = f"""
    c.id,
    c.title,
    c.description,
    c.level,
    c.category,
    c.teacher_id,
    {_TS.format('c.created_at')},
    {_TS.format('c.updated_at')},
    u.email
"""


def _row_to_course(row: Tuple, *, with_count: bool = False) -> Course:
    return Course(
        id=int(row[0]),
        title=row[1],
        description=row[2],
        level=row[3],
        category=row[4],
        teacher_id=int(row[5]) if row[5] is not None else None,
        created_at=row[6],
        updated_at=row[7],
        teacher_email=row[8],
        enrollment_count=int(row[9]) if with_count else None,
    )


def _contains_pattern(search: str) -> str:
    """ILIKE pattern matching `search` as a literal substring (escape char `\\`)."""
    escaped = search.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def _dsn() -> str:
    dsn = os.getenv("COURSES_DATABASE_URL") or os.getenv("DATABASE_URL")
    if not dsn:
        raise RuntimeError("Database DSN unavailable for DBCourseRepo")
    return dsn


class DBCourseRepo:
    def __init__(self, dsn: Optional[str] = None) -> None:
        if not HAVE_PSYCOPG:
            raise RuntimeError("psycopg3 is required for DBCourseRepo")
        self._dsn = dsn or _dsn()

    def ensure_schema(self) -> None:
        with psycopg.connect(self._dsn, autocommit=True) as conn:
            conn.execute(SCHEMA_SQL)

    def _fetchone(self, query, params: tuple) -> Optional[Tuple]:
        try:
            with psycopg.connect(self._dsn) as conn:
                with conn.cursor() as cur:
                    cur.execute(query, params)
                    return cur.fetchone()
        except psycopg.Error as exc:
            logger.warning("Course query failed: %s", exc.__class__.__name__)
            raise StoreError("Error fetching course") from exc

    def create_course(self, *, title: str, description: str, level: str, category: str, teacher_id: int) -> Course:
        validate_course_fields({"title": title, "description": description, "level": level, "category": category})
        try:
            with psycopg.connect(self._dsn, autocommit=True) as conn:
                with conn.cursor() as cur:
                    cur.execute(
                        "insert into courses (title, description, level, category, teacher_id) "
                        "values (%s, %s, %s, %s, %s) returning id",
                        (title.strip(), description.strip(), level, category, teacher_id),
                    )
                    row = cur.fetchone()
        except psycopg.Error as exc:
            logger.warning("Course insert failed: %s", exc.__class__.__name__)
            raise StoreError("Error creating course") from exc
        course = self.get_course(int(row[0]))
        if course is None:  # pragma: no cover - row vanished between statements
            raise StoreError("Error creating course")
        return course

    def get_course(self, course_id: int) -> Optional[Course]:
        row = self._fetchone(
            f"select {_COURSE_COLUMNS} from courses c left join users u on c.teacher_id = u.id where c.id = %s",
            (course_id,),
        )
        return _row_to_course(row) if row else None

    def list_courses(
        self,
        *,
        limit: int = 10,
        offset: int = 0,
        level: str | None = None,
        category: str | None = None,
        search: str | None = None,
    ) -> List[Course]:
        query = (
            f"select {_COURSE_COLUMNS}, count(e.user_id) "
            "from courses c "
            "left join users u on c.teacher_id = u.id "
            "left join enrollments e on c.id = e.course_id"
        )
        conditions: list[str] = []
        params: list[Any] = []
        if level:
            conditions.append("c.level = %s")
            params.append(level)
        if category:
            conditions.append("c.category = %s")
            params.append(category)
        if search:
            pattern = _contains_pattern(search)
            conditions.append("(c.title ilike %s escape '\\' or c.description ilike %s escape '\\')")
            params.extend([pattern, pattern])
        if conditions:
            query += " where " + " and ".join(conditions)
        query += " group by c.id, u.email order by c.id limit %s offset %s"
        params.extend([limit, offset])
        try:
            with psycopg.connect(self._dsn) as conn:
                with conn.cursor() as cur:
                    cur.execute(query, tuple(params))
                    rows = cur.fetchall()
        except psycopg.Error as exc:
            raise StoreError("Error fetching courses") from exc
        return [_row_to_course(r, with_count=True) for r in rows]

    def update_course(self, course_id: int, updates: Mapping[str, Any]) -> Optional[Course]:
        validate_course_fields(updates)
        fields = [f for f in ("title", "description", "level", "category", "teacher_id") if f in updates]
        if not fields:
            return self.get_course(course_id)
        values = [updates[f].strip() if f in ("title", "description") else updates[f] for f in fields]
        assignments = sql.SQL(", ").join(sql.SQL("{} = %s").format(sql.Identifier(f)) for f in fields)
        stmt = sql.SQL("update courses set {}, updated_at = now() where id = %s").format(assignments)
        try:
            with psycopg.connect(self._dsn, autocommit=True) as conn:
                with conn.cursor() as cur:
                    cur.execute(stmt, (*values, course_id))
                    if cur.rowcount == 0:
                        return None
        except psycopg.Error as exc:
            raise StoreError("Error updating course") from exc
        return self.get_course(course_id)

    def delete_course(self, course_id: int) -> bool:
        try:
            with psycopg.connect(self._dsn, autocommit=True) as conn:
                with conn.cursor() as cur:
                    cur.execute("delete from courses where id = %s", (course_id,))
                    return cur.rowcount > 0
        except psycopg.Error as exc:
            raise StoreError("Error deleting course") from exc

    def enroll(self, course_id: int, user_id: int) -> Enrollment:
        try:
            with psycopg.connect(self._dsn, autocommit=True) as conn:
                with conn.cursor() as cur:
                    cur.execute(
                        "insert into enrollments (course_id, user_id, progress) values (%s, %s, 0) "
                        f"returning course_id, user_id, progress, {_TS.format('enrolled_at')}",
                        (course_id, user_id),
                    )
                    row = cur.fetchone()
        except pg_errors.UniqueViolation as exc:
            raise DuplicateError("already_enrolled") from exc
        except psycopg.Error as exc:
            raise StoreError("Error enrolling in course") from exc
        return Enrollment(course_id=int(row[0]), user_id=int(row[1]), progress=int(row[2]), enrolled_at=row[3])

    def update_progress(self, course_id: int, user_id: int, progress: int) -> bool:
        if not (MIN_PROGRESS <= progress <= MAX_PROGRESS):
            raise ValueError("invalid_progress")
        try:
            with psycopg.connect(self._dsn, autocommit=True) as conn:
                with conn.cursor() as cur:
                    cur.execute(
                        "update enrollments set progress = %s where course_id = %s and user_id = %s",
                        (progress, course_id, user_id),
                    )
                    return cur.rowcount > 0
        except psycopg.Error as exc:
            raise StoreError("Error updating course progress") from exc

    def list_enrollments(self, course_id: int) -> List[Enrollment]:
        try:
            with psycopg.connect(self._dsn) as conn:
                with conn.cursor() as cur:
                    cur.execute(
                        f"select e.course_id, e.user_id, e.progress, {_TS.format('e.enrolled_at')}, u.email "
                        "from enrollments e join users u on e.user_id = u.id "
                        "where e.course_id = %s order by e.enrolled_at",
                        (course_id,),
                    )
                    rows = cur.fetchall()
        except psycopg.Error as exc:
            raise StoreError("Error fetching course enrollments") from exc
        return [
            Enrollment(course_id=int(r[0]), user_id=int(r[1]), progress=int(r[2]), enrolled_at=r[3], email=r[4])
            for r in rows
        ]


__all__ = ["DBCourseRepo", "SCHEMA_SQL"]
