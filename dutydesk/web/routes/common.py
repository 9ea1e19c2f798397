"""
Shared helpers for route modules: private JSON responses, session guards and
domain error mapping.
"""
from __future__ import annotations

from fastapi import Request
from fastapi.responses import JSONResponse

from dutydesk.identity_access.stores import SessionRecord
from dutydesk.live.errors import ConflictError, DomainError, ForbiddenError, NotFoundError, ValidationFailure

_STATUS_BY_ERROR = (
    (NotFoundError, 404),
    (ForbiddenError, 403),
    (ConflictError, 409),
    (ValidationFailure, 400),
)


def private_headers() -> dict:
    return {"Cache-Control": "private, no-store"}


def private_json(body, *, status_code: int = 200) -> JSONResponse:
    return JSONResponse(body, status_code=status_code, headers=private_headers())


def error_response(error: str, *, status_code: int, detail: str | None = None) -> JSONResponse:
    body = {"error": error}
    if detail:
        body["detail"] = detail
    return private_json(body, status_code=status_code)


def domain_error_response(exc: DomainError) -> JSONResponse:
    status_code = next((code for cls, code in _STATUS_BY_ERROR if isinstance(exc, cls)), 400)
    return error_response(exc.code, status_code=status_code, detail=exc.detail)


def current_session(request: Request) -> SessionRecord | None:
    return getattr(request.state, "session", None)


def require_session(request: Request):
    """Return (session, None) or (None, 401 response)."""
    sess = current_session(request)
    if sess is None:
        return None, error_response("unauthenticated", status_code=401)
    return sess, None
