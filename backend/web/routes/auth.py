"""
Account API routes: signup, own profile and account administration.

Why:
    Signup creates the local account a verified subject maps to; every other
    route resolves that account first. Updates go through the declared account
    update schema so a caller can only touch the fields their standing allows.

Notes:
    - Role changes are admin-only (`PUT /api/auth/users/{id}`); `PUT /me`
      rejects them like any other field the caller may not change.
    - With `SIGNUP_REQUIRE_TOKEN=true` signup must carry a bearer token whose
      subject equals `firebase_uid`.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from backend.identity_access.accounts import Account, AccountStore, DuplicateError
from backend.identity_access.domain import (
    ACCOUNT_FIELDS,
    ALLOWED_ROLES,
    DEFAULT_ROLE,
    ROLE_ADMIN,
    Mutability,
    rejected_fields,
    writable_fields,
)
from backend.identity_access.tokens import IdentityVerifier, VerifiedIdentity

from ..config import Settings
from ..errors import PermissionDenied, ResourceNotFound, ValidationError
from ..policy import (
    get_accounts,
    get_settings,
    get_verifier,
    path_int,
    require_role,
    resolve_account,
    verify_bearer,
)
from ..responses import ok

auth_router = APIRouter(tags=["Auth"])
logger = logging.getLogger("polyglot.web.auth")

_require_admin = require_role(ROLE_ADMIN)


# --- Request models -------------------------------------------------------------

def _check_role(value: Optional[str]) -> Optional[str]:
    if value is not None and value not in ALLOWED_ROLES:
        raise ValueError("Invalid role")
    return value


class SignupRequest(BaseModel):
    email: EmailStr
    firebase_uid: str = Field(..., min_length=1, max_length=128)
    role: str = DEFAULT_ROLE

    @field_validator("firebase_uid")
    @classmethod
    def strip_uid(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("firebase_uid must not be blank")
        return v

    @field_validator("role")
    @classmethod
    def role_allowed(cls, v: str) -> str:
        return _check_role(v)


class AccountUpdate(BaseModel):
    """Every field of the account update schema; unknown keys are rejected."""

    model_config = ConfigDict(extra="forbid")

    email: Optional[EmailStr] = None
    role: Optional[str] = None
    firebase_uid: Optional[str] = None

    @field_validator("role")
    @classmethod
    def role_allowed(cls, v: Optional[str]) -> Optional[str]:
        return _check_role(v)


def _updates_for(payload: AccountUpdate, *, granted: set[Mutability]) -> Dict[str, Any]:
    """Return the validated changes, or raise when a named field is not writable."""
    updates = payload.model_dump(include=payload.model_fields_set)
    if not updates:
        raise ValidationError("No fields to update")
    allowed = writable_fields(ACCOUNT_FIELDS, granted=granted)
    rejected = rejected_fields(updates, allowed)
    if rejected:
        raise ValidationError(
            f"Field(s) not updatable: {', '.join(rejected)}",
            errors=[{"field": name, "msg": "not updatable by caller"} for name in rejected],
        )
    if "email" in updates:
        if updates["email"] is None:
            raise ValidationError("Invalid email", errors=[{"field": "email", "msg": "must not be null"}])
        updates["email"] = str(updates["email"]).strip().lower()
    if "role" in updates and updates["role"] is None:
        raise ValidationError("Invalid role", errors=[{"field": "role", "msg": "must not be null"}])
    return updates


def _signup_binding(
    request: Request,
    settings: Settings = Depends(get_settings),
    verifier: IdentityVerifier = Depends(get_verifier),
) -> Optional[VerifiedIdentity]:
    if not settings.signup_require_token:
        return None
    return verify_bearer(request, verifier)


# --- Routes ---------------------------------------------------------------------

@auth_router.post("/api/auth/signup")
def signup(
    payload: SignupRequest,
    identity: Optional[VerifiedIdentity] = Depends(_signup_binding),
    accounts: AccountStore = Depends(get_accounts),
):
    """Create the local account for a subject.

    Behavior:
        - 201 with the account on success
        - 400 when the subject already has an account or the body is invalid
        - 401/403 when token binding is enabled and the token is missing or
          belongs to another subject
    """
    if identity is not None and identity.subject != payload.firebase_uid:
        raise PermissionDenied("Token subject does not match firebase_uid")
    if accounts.find_by_firebase_uid(payload.firebase_uid) is not None:
        raise ValidationError("User already exists")
    try:
        account = accounts.create(
            firebase_uid=payload.firebase_uid,
            email=str(payload.email).strip().lower(),
            role=payload.role,
        )
    except DuplicateError:
        # Lost a race against a concurrent signup for the same subject.
        raise ValidationError("User already exists")
    logger.info("Account %s created with role %s", account.id, account.role)
    return ok(account.to_dict(), message="User created successfully", status_code=201)


@auth_router.get("/api/auth/me")
def get_me(account: Account = Depends(resolve_account)):
    return ok(account.to_dict())


@auth_router.put("/api/auth/me")
def update_me(
    payload: AccountUpdate,
    account: Account = Depends(resolve_account),
    accounts: AccountStore = Depends(get_accounts),
):
    """Update the caller's own profile (self-mutable fields only)."""
    updates = _updates_for(payload, granted={Mutability.SELF})
    updated = accounts.update(account.id, updates)
    if updated is None:
        raise ResourceNotFound("User not found")
    return ok(updated.to_dict(), message="Profile updated successfully")


@auth_router.get("/api/auth/users", dependencies=[Depends(resolve_account), Depends(_require_admin)])
def list_users(
    limit: int = Query(10, ge=1, le=100),
    offset: int = Query(0, ge=0),
    role: Optional[str] = Query(None),
    accounts: AccountStore = Depends(get_accounts),
):
    if role is not None and role not in ALLOWED_ROLES:
        raise ValidationError("Invalid role", errors=[{"field": "role", "msg": "unknown role"}])
    items = accounts.list(limit=limit, offset=offset, role=role)
    return ok([a.to_dict() for a in items])


@auth_router.put("/api/auth/users/{user_id}", dependencies=[Depends(resolve_account), Depends(_require_admin)])
def update_user(
    request: Request,
    payload: AccountUpdate,
    accounts: AccountStore = Depends(get_accounts),
):
    """Administrator update of any account (email and role)."""
    user_id = path_int(request, "user_id")
    updates = _updates_for(payload, granted={Mutability.ADMIN})
    updated = accounts.update(user_id, updates)
    if updated is None:
        raise ResourceNotFound("User not found")
    logger.info("Account %s updated by admin: %s", user_id, ", ".join(sorted(updates)))
    return ok(updated.to_dict(), message="User updated successfully")


@auth_router.delete("/api/auth/users/{user_id}", dependencies=[Depends(resolve_account), Depends(_require_admin)])
def delete_user(request: Request, accounts: AccountStore = Depends(get_accounts)):
    user_id = path_int(request, "user_id")
    if not accounts.delete(user_id):
        raise ResourceNotFound("User not found")
    logger.info("Account %s deleted", user_id)
    return ok(message="User deleted successfully")


__all__ = ["auth_router"]
