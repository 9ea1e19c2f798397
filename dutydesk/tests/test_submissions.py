"""Submission recording, history ordering and statistics aggregation."""
from __future__ import annotations

import pytest

from dutydesk.exams.submissions import SubmissionInput, SubmissionService, aggregate_stats
from dutydesk.exams.testers import TesterRegistry
from dutydesk.live.errors import ValidationFailure
from dutydesk.storage.json_file import MemoryDocumentStore
from dutydesk.storage.ports import TESTS

pytestmark = pytest.mark.anyio("asyncio")


@pytest.fixture
async def service(anyio_backend):
    store = MemoryDocumentStore()
    testers = TesterRegistry(store, code_factory=lambda: "C0FFEE")
    await testers.allocate("tester-1")
    return SubmissionService(store, testers), store


async def test_submit_records_attributed_submission(service):
    svc, store = service
    rec = await svc.submit(SubmissionInput(tester_code="c0ffee", test_type="radio", result="admis", details={"score": 9}))
    assert rec["testerCode"] == "C0FFEE"
    assert rec["userId"] == "tester-1"
    assert rec["result"] == "ADMIS"
    assert rec["details"] == {"score": 9}
    assert rec["createdAt"].endswith("Z")
    assert (await store.get(TESTS, rec["id"])) == rec


async def test_unknown_code_is_rejected_and_nothing_written(service):
    svc, store = service
    with pytest.raises(ValidationFailure) as exc:
        await svc.submit(SubmissionInput(tester_code="ZZZZZZ", test_type="radio", result="ADMIS"))
    assert exc.value.code == "invalid_tester_code"
    assert await store.snapshot(TESTS) == {}


@pytest.mark.parametrize(
    "test_type,result,code",
    [("radio", "MAYBE", "invalid_result"), ("", "ADMIS", "invalid_test_type")],
)
async def test_invalid_fields_are_rejected(service, test_type, result, code):
    svc, store = service
    with pytest.raises(ValidationFailure) as exc:
        await svc.submit(SubmissionInput(tester_code="C0FFEE", test_type=test_type, result=result))
    assert exc.value.code == code
    assert await store.snapshot(TESTS) == {}


async def test_history_is_newest_first(service):
    svc, store = service
    await store.put(TESTS, "a", {"id": "a", "createdAt": "2024-01-01T10:00:00.000Z"})
    await store.put(TESTS, "c", {"id": "c", "createdAt": "2024-01-03T10:00:00.000Z"})
    await store.put(TESTS, "b", {"id": "b", "createdAt": "2024-01-02T10:00:00.000Z"})
    assert [t["id"] for t in await svc.history()] == ["c", "b", "a"]


def test_stats_example():
    tests = [
        {"testType": "radio", "result": "ADMIS", "createdAt": "2024-01-01T10:00:00Z"},
        {"testType": "radio", "result": "RESPINS", "createdAt": "2024-01-01T11:00:00Z"},
        {"testType": "mdt", "result": "ADMIS", "createdAt": "2024-01-02T09:00:00Z"},
    ]
    stats = aggregate_stats(tests)
    assert stats["byType"] == {"radio": 2, "mdt": 1}
    assert stats["byResult"] == {"ADMIS": 2, "RESPINS": 1}
    assert stats["byDay"] == {"2024-01-01": 2, "2024-01-02": 1}
    assert stats["total"] == 3
    for dim in ("byType", "byResult", "byDay"):
        assert sum(stats[dim].values()) == stats["total"]


def test_stats_on_empty_log_keeps_result_keys():
    assert aggregate_stats([]) == {"byType": {}, "byResult": {"ADMIS": 0, "RESPINS": 0}, "byDay": {}, "total": 0}
