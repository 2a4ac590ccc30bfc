"""
Success envelope helpers shared by the routers.

Every API response is user- or role-scoped, so it is sent with
`Cache-Control: private, no-store` to keep proxies and browsers from caching it.
"""
from __future__ import annotations

from typing import Any, Dict

from fastapi.responses import JSONResponse

from .errors import PRIVATE_HEADERS


def json_private(payload: Dict[str, Any], *, status_code: int = 200) -> JSONResponse:
    return JSONResponse(content=payload, status_code=status_code, headers=PRIVATE_HEADERS)


def ok(data: Any = None, *, message: str | None = None, status_code: int = 200) -> JSONResponse:
    body: Dict[str, Any] = {"success": True}
    if message is not None:
        body["message"] = message
    if data is not None:
        body["data"] = data
    return json_private(body, status_code=status_code)


__all__ = ["json_private", "ok"]
