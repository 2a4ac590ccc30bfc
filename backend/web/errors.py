"""
Error taxonomy and response shaping for the API.

Why:
    Every denial and failure leaves the service through one envelope,
    `{"success": false, "message": ..., "error"?, "errors"?, "stack"?}`, so
    clients can rely on a stable `message` while diagnostics (`error`,
    `stack`) appear only outside production.

Usage:
    Raise the `AppError` subclasses from dependencies and handlers; call
    `install_error_handlers(app, settings)` once on the app.
"""
from __future__ import annotations

import logging
import traceback
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from backend.identity_access.accounts import DuplicateError, StoreError

from .config import Settings

logger = logging.getLogger("polyglot.web.errors")

PRIVATE_HEADERS = {"Cache-Control": "private, no-store"}
GENERIC_ERROR_MESSAGE = "Something went wrong"


class AppError(Exception):
    status_code = 500
    default_message = GENERIC_ERROR_MESSAGE

    def __init__(self, message: Optional[str] = None, *, detail: Optional[str] = None, errors: Optional[List[Dict[str, Any]]] = None):
        self.message = message or self.default_message
        self.detail = detail
        self.errors = errors
        super().__init__(self.message)


class AuthenticationError(AppError):
    status_code = 401
    default_message = "Authentication required"


class AccountNotFound(AppError):
    status_code = 404
    default_message = "User not found in database"


class PermissionDenied(AppError):
    status_code = 403
    default_message = "Insufficient permissions"


class ValidationError(AppError):
    status_code = 400
    default_message = "Validation failed"


class ResourceNotFound(AppError):
    status_code = 404
    default_message = "Resource not found"


def error_body(
    message: str,
    *,
    settings: Settings,
    detail: Optional[str] = None,
    errors: Optional[List[Dict[str, Any]]] = None,
    stack: Optional[str] = None,
) -> Dict[str, Any]:
    body: Dict[str, Any] = {"success": False, "message": message}
    if errors:
        body["errors"] = errors
    if settings.expose_error_details:
        if detail:
            body["error"] = detail
        if stack:
            body["stack"] = stack
    return body


def _json_error(status_code: int, body: Dict[str, Any]) -> JSONResponse:
    return JSONResponse(body, status_code=status_code, headers=PRIVATE_HEADERS)


def _validation_errors(exc: RequestValidationError) -> List[Dict[str, Any]]:
    out: List[Dict[str, Any]] = []
    for err in exc.errors():
        loc = [str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path")]
        out.append({"field": ".".join(loc) or None, "msg": str(err.get("msg", "invalid"))})
    return out


def install_error_handlers(app: FastAPI, settings: Settings) -> None:
    @app.exception_handler(AppError)
    async def _app_error(request: Request, exc: AppError):
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.detail or exc.message)
        return _json_error(exc.status_code, error_body(exc.message, settings=settings, detail=exc.detail, errors=exc.errors))

    @app.exception_handler(RequestValidationError)
    async def _request_validation(request: Request, exc: RequestValidationError):
        return _json_error(400, error_body("Validation failed", settings=settings, errors=_validation_errors(exc)))

    @app.exception_handler(DuplicateError)
    async def _duplicate(request: Request, exc: DuplicateError):
        # Routes map known duplicates to specific messages; this covers the rest.
        return _json_error(400, error_body("Resource already exists", settings=settings, detail=str(exc)))

    @app.exception_handler(StoreError)
    async def _store_error(request: Request, exc: StoreError):
        cause = exc.__cause__
        logger.error(
            "Store failure on %s %s: %s (%s)",
            request.method,
            request.url.path,
            exc,
            cause.__class__.__name__ if cause else "-",
        )
        message = str(exc) if settings.expose_error_details else GENERIC_ERROR_MESSAGE
        detail = str(cause) if cause else None
        return _json_error(500, error_body(message, settings=settings, detail=detail))

    @app.exception_handler(StarletteHTTPException)
    async def _http_error(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404:
            message = f"Can't find {request.url.path} on this server!"
        elif exc.status_code == 405:
            message = "Method not allowed"
        else:
            message = str(exc.detail)
        return _json_error(exc.status_code, error_body(message, settings=settings))

    @app.exception_handler(Exception)
    async def _unexpected(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        if settings.expose_error_details:
            return _json_error(
                500,
                error_body(
                    str(exc) or GENERIC_ERROR_MESSAGE,
                    settings=settings,
                    detail=exc.__class__.__name__,
                    stack="".join(traceback.format_exception(type(exc), exc, exc.__traceback__)),
                ),
            )
        return _json_error(500, error_body(GENERIC_ERROR_MESSAGE, settings=settings))


__all__ = [
    "AppError",
    "AuthenticationError",
    "AccountNotFound",
    "PermissionDenied",
    "ValidationError",
    "ResourceNotFound",
    "PRIVATE_HEADERS",
    "error_body",
    "install_error_handlers",
]
