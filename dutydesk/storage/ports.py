"""
Document store port shared by every bounded context.

Keep this small and framework-agnostic so tests can supply the in-memory
store. Each operation is atomic on its own: implementations serialize writes
(JSON file) or rely on row-level atomicity (Postgres). No caller performs a
whole-document read-modify-write.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Mapping, Protocol

TESTERS = "testers"
TESTS = "tests"
CONFIGS = "configs"
DUTY = "duty"
PINGS = "pings"

KEYED_COLLECTIONS = (TESTERS, TESTS, CONFIGS, DUTY)
LIST_COLLECTIONS = (PINGS,)
COLLECTIONS = KEYED_COLLECTIONS + LIST_COLLECTIONS


def utc_now_iso() -> str:
    """UTC timestamp in the persisted format, e.g. 2024-01-01T10:00:00.000Z."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_iso(value: object) -> datetime | None:
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except (TypeError, ValueError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def empty_document() -> dict[str, Any]:
    return {TESTERS: {}, TESTS: {}, CONFIGS: {}, DUTY: {}, PINGS: []}


def matches(record: Mapping[str, Any] | None, expected: Mapping[str, Any] | None) -> bool:
    """Return True when `record` carries every key/value pair of `expected`."""
    if record is None:
        return False
    return all(record.get(k) == v for k, v in (expected or {}).items())


class DocumentStore(Protocol):
    """Per-collection atomic operations over the persisted document.

    Keyed collections map key -> record. List collections hold records in
    insertion order and are addressed by each record's `id`.
    """

    async def snapshot(self, collection: str) -> dict[str, dict] | list[dict]: ...

    async def get(self, collection: str, key: str) -> dict | None: ...

    async def put(self, collection: str, key: str, value: Mapping[str, Any]) -> None: ...

    async def insert_if_absent(self, collection: str, key: str, value: Mapping[str, Any]) -> bool: ...

    async def delete(self, collection: str, key: str, *, expected: Mapping[str, Any] | None = None) -> bool: ...

    async def append(self, collection: str, item: Mapping[str, Any]) -> None: ...

    async def compare_and_swap(
        self,
        collection: str,
        key: str,
        *,
        expected: Mapping[str, Any],
        changes: Mapping[str, Any],
    ) -> dict | None:
        """Apply `changes` when the record matches `expected`.

        Returns the updated record, None when the record does not match, and
        raises KeyError when no record exists for `key`.
        """
        ...


__all__ = [
    "DocumentStore",
    "COLLECTIONS",
    "KEYED_COLLECTIONS",
    "LIST_COLLECTIONS",
    "TESTERS",
    "TESTS",
    "CONFIGS",
    "DUTY",
    "PINGS",
    "empty_document",
    "matches",
    "parse_iso",
    "utc_now_iso",
]
