"""
Live routes: the push-event stream and the instructor ping workflow.

Behavior:
    - `GET /events` keeps a text/event-stream open per dashboard. The first
      frame is `hello`; idle periods produce SSE comment keepalives; the
      server closes the stream after `EVENTS_MAX_STREAM_SECONDS` (clients
      reconnect and may catch up through `GET /pings`).
    - `POST /call-instructor` creates an open ping; `POST /ack-ping` accepts
      one. Both broadcast to every connected client.

Permissions:
    All endpoints require a session. Accepting a ping additionally requires
    the capability matching the ping's test type (403 otherwise).
"""
from __future__ import annotations

import logging
import time
from typing import AsyncIterator, Callable, Optional

from fastapi import APIRouter, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel

from dutydesk.live.broadcast import BroadcastClient, BroadcastHub, next_frame
from dutydesk.live.errors import DomainError
from dutydesk.live.pings import PING_STATUSES

from ..context import get_ctx
from .common import domain_error_response, error_response, private_json, require_session

live_router = APIRouter(tags=["Live"])
logger = logging.getLogger("dutydesk.web.live")


class CallInstructorPayload(BaseModel):
    testType: str
    note: Optional[str] = None


class AckPingPayload(BaseModel):
    id: str


async def event_stream(
    hub: BroadcastHub,
    client: BroadcastClient,
    request: Request,
    *,
    keepalive_seconds: float,
    max_seconds: float,
    clock: Callable[[], float] = time.monotonic,
) -> AsyncIterator[str]:
    """Yield SSE frames for one client until it disconnects or the lifetime ends.

    The client is always unsubscribed when the generator finishes.
    """
    deadline = clock() + max_seconds if max_seconds else None
    try:
        while True:
            if await request.is_disconnected():
                break
            timeout: Optional[float] = keepalive_seconds or None
            if deadline is not None:
                remaining = deadline - clock()
                if remaining <= 0:
                    break
                timeout = min(timeout, remaining) if timeout else remaining
            yield await next_frame(client, timeout=timeout)
    finally:
        hub.unsubscribe(client)


@live_router.get("/events")
async def events(request: Request):
    sess, error = require_session(request)
    if error:
        return error
    ctx = get_ctx(request)
    client = ctx.hub.subscribe(sess.user_id)
    stream = event_stream(
        ctx.hub,
        client,
        request,
        keepalive_seconds=ctx.settings.events_keepalive_seconds,
        max_seconds=ctx.settings.events_max_stream_seconds,
    )
    return StreamingResponse(
        stream,
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive", "X-Accel-Buffering": "no"},
    )


@live_router.post("/call-instructor")
async def call_instructor(request: Request, payload: CallInstructorPayload):
    sess, error = require_session(request)
    if error:
        return error
    try:
        ping = await get_ctx(request).pings.create(sess.identity, payload.testType, payload.note)
    except DomainError as exc:
        return domain_error_response(exc)
    return private_json({"ok": True, "id": ping["id"]})


@live_router.post("/ack-ping")
async def ack_ping(request: Request, payload: AckPingPayload):
    """Accept an open ping: 404 unknown id, 403 missing capability, 409 already accepted."""
    sess, error = require_session(request)
    if error:
        return error
    try:
        ping = await get_ctx(request).pings.accept(sess.identity, payload.id)
    except DomainError as exc:
        return domain_error_response(exc)
    return private_json({"ok": True, "ping": ping})


@live_router.get("/pings")
async def list_pings(request: Request, status: Optional[str] = None):
    sess, error = require_session(request)
    if error:
        return error
    if status is not None and status not in PING_STATUSES:
        return error_response("invalid_status", status_code=400)
    return private_json({"pings": await get_ctx(request).pings.list(status=status)})
