"""
Duty routes: join/leave the registry, list it, ask whether a test type is
currently supervised.

Permissions:
    `/duty/on` and `/duty/off` require a session; the roles recorded are the
    session's cached capabilities. Listing and coverage checks are public.
"""
from __future__ import annotations

from fastapi import APIRouter, Request

from dutydesk.identity_access.domain import TEST_TYPES, normalize_test_type

from ..context import get_ctx
from .common import private_json, require_session

duty_router = APIRouter(tags=["Duty"])


@duty_router.post("/duty/on")
async def duty_on(request: Request):
    sess, error = require_session(request)
    if error:
        return error
    record = await get_ctx(request).duty.go_on_duty(sess.identity)
    return private_json({"ok": True, "duty": record})


@duty_router.post("/duty/off")
async def duty_off(request: Request):
    sess, error = require_session(request)
    if error:
        return error
    removed = await get_ctx(request).duty.go_off_duty(sess.identity)
    return private_json({"ok": True, "removed": removed})


@duty_router.get("/duty/list")
async def duty_list(request: Request):
    return private_json(await get_ctx(request).duty.list())


@duty_router.get("/duty/allow/{test_type}")
async def duty_allow(request: Request, test_type: str):
    """`{allowed, duty}` for a known test type, `{allowed: false}` otherwise."""
    if normalize_test_type(test_type) not in TEST_TYPES:
        return private_json({"allowed": False})
    registry = get_ctx(request).duty
    allowed = await registry.is_covered(test_type)
    return private_json({"allowed": allowed, "duty": list((await registry.list()).values())})
