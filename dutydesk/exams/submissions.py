"""
Test submissions: recording, history and statistics.

Why:
    Submissions form an append-only log. Each one is attributed to a tester
    through the tester code typed into the form; the code is the only gate on
    the (otherwise public) submission endpoint.

Permissions:
    None at this layer; the tester code must exist in the registry.
"""
from __future__ import annotations

from dataclasses import dataclass
import logging
import secrets
from typing import Any, Optional

from dutydesk.identity_access.domain import RESULTS
from dutydesk.live.errors import ValidationFailure
from dutydesk.storage.ports import TESTS, DocumentStore, parse_iso, utc_now_iso

from .testers import TesterRegistry, normalize_code

logger = logging.getLogger("dutydesk.exams.submissions")


@dataclass
class SubmissionInput:
    tester_code: str
    test_type: str
    result: str
    details: Optional[Any] = None


class SubmissionService:
    def __init__(self, store: DocumentStore, testers: TesterRegistry) -> None:
        self._store = store
        self._testers = testers

    async def submit(self, req: SubmissionInput) -> dict:
        """Validate and append a submission; return the stored record.

        Raises ValidationFailure for an unknown tester code, an empty test
        type or a result outside ADMIS/RESPINS. Nothing is written then.
        """
        code = normalize_code(req.tester_code)
        test_type = str(req.test_type or "").strip()
        result = str(req.result or "").strip().upper()
        if not test_type:
            raise ValidationFailure("invalid_test_type")
        if result not in RESULTS:
            raise ValidationFailure("invalid_result", f"result must be one of {sorted(RESULTS)}")
        tester = await self._testers.lookup(code)
        if not tester:
            raise ValidationFailure("invalid_tester_code")
        record = {
            "testerCode": code,
            "userId": tester.get("userId"),
            "testType": test_type,
            "result": result,
            "details": req.details,
            "createdAt": utc_now_iso(),
        }
        while True:
            sid = secrets.token_hex(8)
            record["id"] = sid
            if await self._store.insert_if_absent(TESTS, sid, record):
                break
        logger.info("submission.recorded id=%s type=%s result=%s", sid, test_type, result)
        return record

    async def history(self) -> list[dict]:
        """All submissions, newest first."""
        tests = list((await self._store.snapshot(TESTS)).values())
        return sorted(tests, key=_created_sort_key, reverse=True)

    async def stats(self) -> dict:
        tests = (await self._store.snapshot(TESTS)).values()
        return aggregate_stats(tests)


def _created_sort_key(rec: dict):
    parsed = parse_iso(rec.get("createdAt"))
    return parsed.timestamp() if parsed else 0.0


def aggregate_stats(tests) -> dict:
    """Count submissions by type, result and calendar day (UTC date prefix).

    Each dimension sums to `total`. ADMIS and RESPINS are always present.
    """
    by_type: dict[str, int] = {}
    by_result: dict[str, int] = {r: 0 for r in sorted(RESULTS)}
    by_day: dict[str, int] = {}
    total = 0
    for t in tests:
        total += 1
        test_type = str(t.get("testType") or "")
        by_type[test_type] = by_type.get(test_type, 0) + 1
        result = str(t.get("result") or "")
        by_result[result] = by_result.get(result, 0) + 1
        day = str(t.get("createdAt") or "").split("T")[0]
        by_day[day] = by_day.get(day, 0) + 1
    return {"byType": by_type, "byResult": by_result, "byDay": by_day, "total": total}


__all__ = ["SubmissionInput", "SubmissionService", "aggregate_stats"]
