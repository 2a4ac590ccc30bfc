"""
Request mediation: identity, account and authorization dependencies.

Why:
    Authorization is decided before any handler body runs. Each gate is a
    FastAPI dependency that either returns what the handler needs or raises an
    `AppError`, so a denied request never reaches the store mutation.

Order of checks:
    1. `resolve_identity`   401 when the bearer token is missing or invalid.
    2. `resolve_account`    404 when no local account maps to the subject.
    3. `require_role`       401 without an attached account, 403 on role.
    4. `require_owner_or_role`
                            404 when the target is missing, then 403 unless the
                            caller owns it or holds one of the roles.

Notes:
    - Capabilities (stores, verifier, settings) live on `app.state`; nothing is
      cached across requests, so role changes apply on the next call.
    - Route-level `dependencies=[...]` resolve in declaration order, which is
      how `resolve_account` attaches the account before a role gate reads it.
"""
from __future__ import annotations

import logging
from typing import Any, Callable, Iterable, Optional

from fastapi import Depends, Request

from backend.chat.store import ConversationStore
from backend.courses.repo import CourseRepo
from backend.identity_access.accounts import Account, AccountStore
from backend.identity_access.domain import ROLE_ADMIN
from backend.identity_access.tokens import IdentityVerifier, IDTokenVerificationError, VerifiedIdentity

from .config import Settings
from .errors import AccountNotFound, AuthenticationError, PermissionDenied, ResourceNotFound, ValidationError

logger = logging.getLogger("polyglot.web.policy")

BEARER_PREFIX = "Bearer "


# --- Capability accessors -----------------------------------------------------

def get_accounts(request: Request) -> AccountStore:
    return request.app.state.accounts


def get_courses(request: Request) -> CourseRepo:
    return request.app.state.courses


def get_conversations(request: Request) -> ConversationStore:
    return request.app.state.conversations


def get_verifier(request: Request) -> IdentityVerifier:
    return request.app.state.verifier


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def path_int(request: Request, name: str) -> int:
    """Read an integer path parameter; 400 when it is not a positive integer."""
    raw = request.path_params.get(name, "")
    try:
        value = int(raw)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid {name}", errors=[{"field": name, "msg": "must be an integer"}])
    if value < 1:
        raise ValidationError(f"Invalid {name}", errors=[{"field": name, "msg": "must be positive"}])
    return value


# --- Identity and account -----------------------------------------------------

def bearer_token(request: Request) -> str:
    header = request.headers.get("authorization") or ""
    if not header.startswith(BEARER_PREFIX):
        raise AuthenticationError("No token provided")
    token = header[len(BEARER_PREFIX):].strip()
    if not token:
        raise AuthenticationError("No token provided")
    return token


def verify_bearer(request: Request, verifier: IdentityVerifier) -> VerifiedIdentity:
    token = bearer_token(request)
    try:
        return verifier.verify(token)
    except IDTokenVerificationError as exc:
        # Log the cause code only, never the token.
        logger.info("Token rejected on %s %s: %s", request.method, request.url.path, exc.code)
        raise AuthenticationError("Invalid token", detail=exc.code)


def resolve_identity(request: Request, verifier: IdentityVerifier = Depends(get_verifier)) -> VerifiedIdentity:
    identity = verify_bearer(request, verifier)
    request.state.identity = identity
    return identity


def resolve_account(
    request: Request,
    identity: VerifiedIdentity = Depends(resolve_identity),
    accounts: AccountStore = Depends(get_accounts),
) -> Account:
    account = accounts.find_by_firebase_uid(identity.subject)
    if account is None:
        raise AccountNotFound("User not found in database")
    request.state.account = account
    return account


def attached_account(request: Request) -> Account:
    account: Optional[Account] = getattr(request.state, "account", None)
    if account is None:
        raise AuthenticationError("Authentication required")
    return account


# --- Authorization gates ------------------------------------------------------

def _role_set(roles: Iterable[Any]) -> frozenset[str]:
    out: set[str] = set()
    for role in roles:
        if isinstance(role, str):
            out.add(role)
        else:
            out.update(role)
    return frozenset(out)


def require_role(*roles: Any) -> Callable[[Request], Account]:
    """Build a gate admitting only accounts whose role is in `roles`.

    Accepts role names or iterables of them: `require_role("admin")`,
    `require_role(INSTRUCTOR_ROLES)`.
    """
    allowed = _role_set(roles)

    def _gate(request: Request) -> Account:
        account = attached_account(request)
        if account.role not in allowed:
            logger.info("Role %s denied on %s %s", account.role, request.method, request.url.path)
            raise PermissionDenied("Insufficient permissions")
        return account

    return _gate


def require_owner_or_role(
    fetch: Callable[[Request], Any],
    *,
    owner_of: Callable[[Any], Optional[int]],
    roles: Iterable[str] = (ROLE_ADMIN,),
    not_found_message: str = "Resource not found",
    denied_message: str = "Insufficient permissions",
) -> Callable[[Request], Any]:
    """Build a gate that loads the target and admits its owner or `roles`.

    `fetch(request)` returns the resource or None; `owner_of(resource)` returns
    the owning account id. The gate returns the fetched resource.
    """
    allowed = _role_set(roles)

    def _gate(request: Request) -> Any:
        account = attached_account(request)
        resource = fetch(request)
        if resource is None:
            raise ResourceNotFound(not_found_message)
        if account.role in allowed:
            return resource
        if owner_of(resource) == account.id:
            return resource
        logger.info("Ownership denied for account %s on %s %s", account.id, request.method, request.url.path)
        raise PermissionDenied(denied_message)

    return _gate


__all__ = [
    "get_accounts",
    "get_courses",
    "get_conversations",
    "get_verifier",
    "get_settings",
    "path_int",
    "bearer_token",
    "verify_bearer",
    "resolve_identity",
    "resolve_account",
    "attached_account",
    "require_role",
    "require_owner_or_role",
]
