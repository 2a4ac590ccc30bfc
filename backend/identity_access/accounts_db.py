"""
Database-backed AccountStore for production use (Postgres).

Why: Accounts must be durable and shared across worker processes. This store
keeps the same contract as `InMemoryAccountStore` so the web layer does not
care which one it receives.

Note: This module uses psycopg3. It is imported only when enabled via
`STORES_BACKEND=db`. Tests continue to use the in-memory store.
"""
from __future__ import annotations

from typing import Any, List, Mapping, Optional, Tuple
import logging
import os

try:
    import psycopg
    from psycopg import errors as pg_errors, sql
    HAVE_PSYCOPG = True
except Exception:  # pragma: no cover - optional dependency in dev
    psycopg = None  # type: ignore
    sql = pg_errors = None  # type: ignore
    HAVE_PSYCOPG = False

from .accounts import Account, DuplicateError, StoreError
from .domain import ALLOWED_ROLES, DEFAULT_ROLE

logger = logging.getLogger("polyglot.identity_access.accounts_db")

SCHEMA_SQL = """
create table if not exists users (
    id bigserial primary key,
    firebase_uid text not null unique,
    email text not null,
    role text not null default 'student' check (role in ('student', 'teacher', 'admin')),
    created_at timestamptz not null default now(),
    updated_at timestamptz not null default now()
)
"""

_COLUMNS = """
    id,
    firebase_uid,
    email,
    role,
    to_char(created_at at time zone 'utc', 'YYYY-MM-DD"T"HH24:MI:SS"+00:00"'),
    to_char(updated_at at time zone 'utc', 'YYYY-MM-DD"T"HH24:MI:SS"+00:00"')
"""


def _row_to_account(row: Tuple) -> Account:
    return Account(
        id=int(row[0]),
        firebase_uid=row[1],
        email=row[2],
        role=row[3],
        created_at=row[4],
        updated_at=row[5],
    )


class DBAccountStore:
    """Postgres-backed account store.

    Parameters
    ----------
    dsn:
        Psycopg3 connection string. Defaults to `DATABASE_URL`.
    """

    def __init__(self, dsn: str | None = None) -> None:
        if not HAVE_PSYCOPG:
            raise RuntimeError("psycopg3 is required for DBAccountStore")
        self._dsn = dsn or os.getenv("DATABASE_URL", "")
        if not self._dsn:
            raise RuntimeError("No database DSN provided for DBAccountStore")

    def ensure_schema(self) -> None:
        with psycopg.connect(self._dsn, autocommit=True) as conn:
            conn.execute(SCHEMA_SQL)

    def create(self, *, firebase_uid: str, email: str, role: str = DEFAULT_ROLE) -> Account:
        if role not in ALLOWED_ROLES:
            raise ValueError("invalid_role")
        try:
            with psycopg.connect(self._dsn, autocommit=True) as conn:
                with conn.cursor() as cur:
                    cur.execute(
                        f"insert into users (firebase_uid, email, role) values (%s, %s, %s) returning {_COLUMNS}",
                        (firebase_uid, email, role),
                    )
                    row = cur.fetchone()
        except pg_errors.UniqueViolation as exc:
            raise DuplicateError("account_exists") from exc
        except psycopg.Error as exc:
            logger.warning("Account insert failed: %s", exc.__class__.__name__)
            raise StoreError("Error creating user") from exc
        return _row_to_account(row)

    def _fetch_one(self, where: str, params: tuple) -> Optional[Account]:
        try:
            with psycopg.connect(self._dsn) as conn:
                with conn.cursor() as cur:
                    cur.execute(f"select {_COLUMNS} from users where {where}", params)
                    row = cur.fetchone()
        except psycopg.Error as exc:
            raise StoreError("Error finding user") from exc
        return _row_to_account(row) if row else None

    def get(self, account_id: int) -> Optional[Account]:
        return self._fetch_one("id = %s", (account_id,))

    def find_by_firebase_uid(self, firebase_uid: str) -> Optional[Account]:
        return self._fetch_one("firebase_uid = %s", (firebase_uid,))

    def update(self, account_id: int, updates: Mapping[str, Any]) -> Optional[Account]:
        fields = [k for k in ("email", "role") if k in updates]
        if "role" in updates and updates["role"] not in ALLOWED_ROLES:
            raise ValueError("invalid_role")
        if not fields:
            return self.get(account_id)
        assignments = sql.SQL(", ").join(
            sql.SQL("{} = %s").format(sql.Identifier(f)) for f in fields
        )
        stmt = sql.SQL("update users set {}, updated_at = now() where id = %s returning " + _COLUMNS).format(assignments)
        try:
            with psycopg.connect(self._dsn, autocommit=True) as conn:
                with conn.cursor() as cur:
                    cur.execute(stmt, (*[updates[f] for f in fields], account_id))
                    row = cur.fetchone()
        except psycopg.Error as exc:
            raise StoreError("Error updating user") from exc
        return _row_to_account(row) if row else None

    def delete(self, account_id: int) -> bool:
        try:
            with psycopg.connect(self._dsn, autocommit=True) as conn:
                with conn.cursor() as cur:
                    cur.execute("delete from users where id = %s", (account_id,))
                    return cur.rowcount > 0
        except psycopg.Error as exc:
            raise StoreError("Error deleting user") from exc

    def list(self, *, limit: int = 10, offset: int = 0, role: str | None = None) -> List[Account]:
        query = f"select {_COLUMNS} from users"
        params: list[Any] = []
        if role:
            query += " where role = %s"
            params.append(role)
        query += " order by id limit %s offset %s"
        params.extend([limit, offset])
        try:
            with psycopg.connect(self._dsn) as conn:
                with conn.cursor() as cur:
                    cur.execute(query, tuple(params))
                    rows = cur.fetchall()
        except psycopg.Error as exc:
            raise StoreError("Error fetching users") from exc
        return [_row_to_account(r) for r in rows]


__all__ = ["DBAccountStore", "SCHEMA_SQL"]
