"""
Firebase ID token verification for the identity_access bounded context.

Why: Keep cryptographic validation of bearer tokens outside the web adapter so
we can unit test it independently and substitute a fake verifier in tests.

Security: Validates the ID token signature with Google's published JWKS for
the Firebase secure token service and checks issuer, audience, subject and
expiry. Only public keys are cached; identity data is never cached.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Protocol
import os
import threading
import time

import requests
from jose import jwt
from jose.exceptions import JOSEError

JWKS_URL = "https://www.googleapis.com/service_accounts/v1/jwk/securetoken@system.gserviceaccount.com"
ISSUER_PREFIX = "https://securetoken.google.com/"


class IDTokenVerificationError(Exception):
    """Raised when the ID token fails verification."""

    def __init__(self, code: str):
        super().__init__(code)
        self.code = code


@dataclass(frozen=True)
class FirebaseConfig:
    project_id: str
    jwks_url: str = JWKS_URL

    @property
    def issuer(self) -> str:
        return f"{ISSUER_PREFIX}{self.project_id}"


def load_firebase_config() -> FirebaseConfig:
    return FirebaseConfig(
        project_id=os.getenv("FIREBASE_PROJECT_ID", ""),
        jwks_url=os.getenv("FIREBASE_JWKS_URL", JWKS_URL),
    )


@dataclass(frozen=True)
class VerifiedIdentity:
    """Subject identifier plus the raw claims of a verified token."""

    subject: str
    claims: Dict[str, object] = field(default_factory=dict)

    @property
    def email(self) -> str | None:
        value = self.claims.get("email")
        return str(value) if value else None


class IdentityVerifier(Protocol):
    def verify(self, token: str) -> VerifiedIdentity: ...


@dataclass
class _CacheEntry:
    jwks: Dict[str, object]
    expires_at: float


class JWKSCache:
    """Small in-memory cache for JWKS responses, keyed by URL."""

    def __init__(self, ttl_seconds: int = 3600):
        self.ttl_seconds = ttl_seconds
        self._entries: Dict[str, _CacheEntry] = {}
        self._lock = threading.Lock()

    def get(self, url: str) -> Dict[str, object]:
        now = time.time()
        with self._lock:
            entry = self._entries.get(url)
            if entry and entry.expires_at > now:
                return entry.jwks

        jwks = self._fetch(url)
        with self._lock:
            self._entries[url] = _CacheEntry(jwks=jwks, expires_at=now + self.ttl_seconds)
        return jwks

    def invalidate(self, url: str) -> None:
        with self._lock:
            self._entries.pop(url, None)

    def _fetch(self, url: str) -> Dict[str, object]:
        try:
            resp = requests.get(url, timeout=5)
        except requests.RequestException as exc:
            raise IDTokenVerificationError("jwks_fetch_failed") from exc
        if resp.status_code != 200:
            raise IDTokenVerificationError("jwks_fetch_failed")
        try:
            jwks = resp.json()
        except ValueError as exc:
            raise IDTokenVerificationError("jwks_invalid") from exc
        if not isinstance(jwks, dict) or "keys" not in jwks:
            raise IDTokenVerificationError("jwks_invalid")
        return jwks


JWKS_CACHE = JWKSCache()

MAX_CLOCK_SKEW_SECONDS = 5  # Allow minimal skew between servers


def verify_id_token(
    *,
    id_token: str,
    cfg: FirebaseConfig,
    cache: JWKSCache | None = None,
) -> Dict[str, object]:
    """Validate a Firebase ID token and return its claims.

    Raises
    ------
    IDTokenVerificationError:
        When the token is invalid (format, signature, issuer, audience,
        expiry, kid, subject).
    """
    if not cfg.project_id:
        raise IDTokenVerificationError("verifier_not_configured")
    cache = cache or JWKS_CACHE
    try:
        header = jwt.get_unverified_header(id_token)
    except JOSEError as exc:
        raise IDTokenVerificationError("malformed_token") from exc
    kid = header.get("kid")
    if not kid:
        raise IDTokenVerificationError("missing_kid")
    key_dict = _find_key(cache.get(cfg.jwks_url), kid)
    if not key_dict:
        # Google rotates keys; refetch once before giving up.
        cache.invalidate(cfg.jwks_url)
        key_dict = _find_key(cache.get(cfg.jwks_url), kid)
    if not key_dict:
        raise IDTokenVerificationError("unknown_kid")

    try:
        claims = jwt.decode(
            id_token,
            key_dict,
            algorithms=["RS256"],
            audience=cfg.project_id,
            issuer=cfg.issuer,
            options={
                "verify_signature": True,
                "verify_aud": True,
                "verify_exp": False,
                "verify_iat": False,
                "verify_nbf": False,
                "verify_at_hash": False,
            },
        )
    except JOSEError as exc:
        raise IDTokenVerificationError("invalid_id_token") from exc

    _validate_temporal_claims(claims)
    sub = claims.get("sub")
    if not isinstance(sub, str) or not sub or len(sub) > 128:
        raise IDTokenVerificationError("invalid_subject")
    return claims


def _find_key(jwks: Dict[str, object], kid: str) -> Dict[str, object] | None:
    keys = jwks.get("keys")
    if not isinstance(keys, list):
        return None
    for key in keys:
        if isinstance(key, dict) and key.get("kid") == kid:
            return key
    return None


def _validate_temporal_claims(claims: Dict[str, object]) -> None:
    now = time.time()
    exp = claims.get("exp")
    if not isinstance(exp, (int, float)):
        raise IDTokenVerificationError("invalid_id_token")
    if exp + MAX_CLOCK_SKEW_SECONDS < now:
        raise IDTokenVerificationError("token_expired")

    iat = claims.get("iat")
    if isinstance(iat, (int, float)) and iat - MAX_CLOCK_SKEW_SECONDS > now:
        raise IDTokenVerificationError("invalid_id_token")

    auth_time = claims.get("auth_time")
    if isinstance(auth_time, (int, float)) and auth_time - MAX_CLOCK_SKEW_SECONDS > now:
        raise IDTokenVerificationError("invalid_id_token")


class FirebaseTokenVerifier:
    """IdentityVerifier backed by `verify_id_token`."""

    def __init__(self, cfg: FirebaseConfig, cache: JWKSCache | None = None) -> None:
        self.cfg = cfg
        self.cache = cache

    def verify(self, token: str) -> VerifiedIdentity:
        claims = verify_id_token(id_token=token, cfg=self.cfg, cache=self.cache)
        return VerifiedIdentity(subject=str(claims["sub"]), claims=dict(claims))


__all__ = [
    "IDTokenVerificationError",
    "FirebaseConfig",
    "load_firebase_config",
    "VerifiedIdentity",
    "IdentityVerifier",
    "JWKSCache",
    "verify_id_token",
    "FirebaseTokenVerifier",
]
