"""
Authentication-related FastAPI routes.

Why:
    Keep the Discord login, session introspection and logout in a dedicated
    router. The orchestration itself lives in `SessionResolver`; this module
    only translates between HTTP and the resolver.

Notes:
    - Sessions are opaque server-side records; the cookie carries only the id.
    - Every response here is `Cache-Control: private, no-store`.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Request
from fastapi.responses import RedirectResponse, Response

from dutydesk.identity_access.resolver import AuthenticationError
from dutydesk.identity_access.stores import SessionRecord

from ..auth_utils import cookie_opts, is_cross_site
from ..context import get_ctx
from .common import error_response, private_headers, private_json, require_session

auth_router = APIRouter(tags=["Auth"])  # explicit paths, no prefix
logger = logging.getLogger("dutydesk.web.auth")

SESSION_COOKIE_NAME = "dutydesk_session"


def _set_session_cookie(request: Request, response: Response, value: str, *, max_age: int | None) -> None:
    settings = get_ctx(request).settings
    opts = cookie_opts(cross_site=is_cross_site(settings.frontend_base_url, settings.discord.redirect_uri))
    response.set_cookie(
        key=SESSION_COOKIE_NAME,
        value=value,
        httponly=True,
        secure=opts["secure"],
        samesite=opts["samesite"],
        path="/",
        max_age=max_age,
    )


async def session_summary(request: Request, sess: SessionRecord) -> dict:
    """Authentication + capability summary for a session."""
    code = None
    if sess.capabilities.is_tester:
        code = await get_ctx(request).testers.code_for_user(sess.user_id)
    return {
        "authenticated": True,
        "id": sess.user_id,
        "discord_tag": sess.tag,
        **sess.capabilities.as_dict(),
        "testerCode": code,
    }


@auth_router.get("/auth/login")
async def auth_login(request: Request):
    """
    Start the Discord OAuth flow with a server-side `state`; redirect to Discord.

    Permissions:
        Public.
    """
    ctx = get_ctx(request)
    rec = ctx.states.create()
    url = ctx.provider.build_authorization_url(state=rec.state)
    return RedirectResponse(url=url, status_code=302, headers=private_headers())


@auth_router.get("/auth/callback")
async def auth_callback(request: Request, code: str | None = None, state: str | None = None):
    """
    Finish the OAuth flow: resolve identity and capabilities, open a session.

    Behavior:
        - 400 when `code`/`state` is missing, unknown or expired.
        - 401 when the token exchange, profile or role lookup fails; no
          session is created.
        - 302 to `<frontend>/dashboard` with the session cookie otherwise.
    """
    ctx = get_ctx(request)
    if not code or not state or not ctx.states.pop_valid(state):
        return error_response("invalid_code_or_state", status_code=400)
    try:
        sess = await ctx.resolver.login(code=code)
    except AuthenticationError as exc:
        return error_response("authentication_failed", status_code=401, detail=exc.code)
    resp = RedirectResponse(url=f"{ctx.settings.frontend_base_url}/dashboard", status_code=302, headers=private_headers())
    _set_session_cookie(request, resp, sess.session_id, max_age=sess.ttl_seconds)
    return resp


@auth_router.get("/check-tester")
async def check_tester(request: Request):
    """Return `{authenticated: false}` or the caller's capability summary.

    Permissions:
        Public; the answer depends on the session cookie.
    """
    sess = getattr(request.state, "session", None)
    if sess is None:
        return private_json({"authenticated": False})
    return private_json(await session_summary(request, sess))


@auth_router.get("/tester-code")
async def tester_code(request: Request):
    """Return the caller's tester code, or null when none was allocated."""
    sess, error = require_session(request)
    if error:
        return error
    code = await get_ctx(request).testers.code_for_user(sess.user_id)
    return private_json({"code": code})


@auth_router.post("/auth/refresh")
async def auth_refresh(request: Request):
    """Re-read live guild roles and update the session's capabilities."""
    sess, error = require_session(request)
    if error:
        return error
    updated = await get_ctx(request).resolver.refresh(sess)
    request.state.session = updated
    return private_json(await session_summary(request, updated))


@auth_router.get("/logout")
async def logout(request: Request):
    """Destroy the session (if any), clear the cookie, return to the frontend."""
    ctx = get_ctx(request)
    sid = request.cookies.get(SESSION_COOKIE_NAME)
    if sid:
        ctx.sessions.delete(sid)
    resp = RedirectResponse(url=ctx.settings.frontend_base_url or "/", status_code=302, headers=private_headers())
    opts = cookie_opts(cross_site=is_cross_site(ctx.settings.frontend_base_url, ctx.settings.discord.redirect_uri))
    resp.delete_cookie(SESSION_COOKIE_NAME, path="/", secure=opts["secure"], httponly=True, samesite=opts["samesite"])
    return resp
