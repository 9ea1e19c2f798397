"""
Exam routes: test configuration CRUD, submission history/stats and the
code-gated submission endpoint.

Permissions:
    - Reading configs, history and stats is public.
    - Config mutations require a session whose *live* role membership grants
      editor capability (re-checked on every mutation via the resolver).
    - `POST /submit-test` is public; the tester code is the gate.
"""
from __future__ import annotations

import logging
from typing import Any, Optional

from fastapi import APIRouter, BackgroundTasks, Request
from pydantic import BaseModel, StrictInt, ValidationError

from dutydesk.exams.configs import build_config
from dutydesk.exams.submissions import SubmissionInput
from dutydesk.live.errors import DomainError

from ..context import get_ctx
from .common import domain_error_response, error_response, private_json, require_session

exams_router = APIRouter(tags=["Exams"])
logger = logging.getLogger("dutydesk.web.exams")


class ConfigPayload(BaseModel):
    testName: str
    timeLimitSeconds: StrictInt
    questionsCount: StrictInt
    maxMistakes: StrictInt


class SubmitTestPayload(BaseModel):
    testerCode: str
    testType: str
    result: str
    details: Optional[Any] = None


def _invalid_fields(exc: ValueError) -> str:
    if isinstance(exc, ValidationError):
        fields = sorted({".".join(str(p) for p in err.get("loc", ())) for err in exc.errors()})
        return ",".join(f for f in fields if f) or "invalid_body"
    return "invalid_json"


async def _require_editor(request: Request):
    """Return (session, None) when the caller is an editor right now, else (None, error)."""
    sess, error = require_session(request)
    if error:
        return None, error
    sess = await get_ctx(request).resolver.refresh(sess)
    request.state.session = sess
    if not sess.capabilities.is_editor:
        return None, error_response("forbidden", status_code=403, detail="editor_required")
    return sess, None


@exams_router.get("/config")
async def list_configs(request: Request):
    return private_json(await get_ctx(request).configs.list())


@exams_router.get("/config/{name}")
async def get_config(request: Request, name: str):
    try:
        rec = await get_ctx(request).configs.get(name)
    except DomainError as exc:
        return domain_error_response(exc)
    return private_json(rec)


@exams_router.post("/config")
@exams_router.post("/manage-tests/config", include_in_schema=False)
async def put_config(request: Request):
    """Create or replace a test configuration (last write wins).

    The body is read only after the editor check, so anonymous and
    non-editor callers get 401/403 regardless of what they send.
    """
    sess, error = await _require_editor(request)
    if error:
        return error
    try:
        payload = ConfigPayload.model_validate(await request.json())
    except ValueError as exc:
        return error_response("bad_request", status_code=400, detail=_invalid_fields(exc))
    try:
        config = build_config(
            test_name=payload.testName,
            time_limit_seconds=payload.timeLimitSeconds,
            questions_count=payload.questionsCount,
            max_mistakes=payload.maxMistakes,
        )
    except DomainError as exc:
        return domain_error_response(exc)
    body = await get_ctx(request).configs.put(config)
    logger.info("config.saved name=%s by=%s", config.testName, sess.user_id)
    return private_json({"ok": True, "config": body})


@exams_router.delete("/config/{name}")
@exams_router.delete("/manage-tests/config/{name}", include_in_schema=False)
async def delete_config(request: Request, name: str):
    sess, error = await _require_editor(request)
    if error:
        return error
    removed = await get_ctx(request).configs.delete(name)
    if not removed:
        return error_response("config_not_found", status_code=404)
    logger.info("config.deleted name=%s by=%s", name, sess.user_id)
    return private_json({"ok": True})


@exams_router.get("/tests/history")
async def tests_history(request: Request):
    return private_json({"tests": await get_ctx(request).submissions.history()})


@exams_router.get("/tests/stats")
async def tests_stats(request: Request):
    return private_json(await get_ctx(request).submissions.stats())


@exams_router.post("/submit-test")
async def submit_test(request: Request, payload: SubmitTestPayload, background: BackgroundTasks):
    """
    Record a submission attributed through its tester code.

    Behavior:
        - 400 `invalid_tester_code` for an unknown code; nothing is written.
        - The report channel is notified after the response (best effort).
    """
    ctx = get_ctx(request)
    try:
        record = await ctx.submissions.submit(
            SubmissionInput(
                tester_code=payload.testerCode,
                test_type=payload.testType,
                result=payload.result,
                details=payload.details,
            )
        )
    except DomainError as exc:
        return domain_error_response(exc)
    background.add_task(ctx.notifier.notify_submission, record)
    return private_json({"ok": True, "id": record["id"]}, status_code=201)
