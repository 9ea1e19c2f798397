"""
Tester code registry.

Why:
    Every identity with tester capability gets exactly one short code on its
    first login. Candidates type that code into the test form, which is how a
    submission is attributed to its tester.

Behavior:
    - Codes are 6 uppercase hex characters, unique across the registry.
    - Allocation is serialized in-process: the lookup by user id and the insert
      of a fresh code cannot interleave with another login of the same user.
    - A collision on the code retries with a fresh candidate.
"""
from __future__ import annotations

import asyncio
import logging
import secrets
from typing import Callable

from dutydesk.storage.ports import TESTERS, DocumentStore, utc_now_iso

logger = logging.getLogger("dutydesk.exams.testers")

CODE_LENGTH = 6
MAX_ALLOCATION_ATTEMPTS = 1000


def generate_code() -> str:
    return secrets.token_hex(CODE_LENGTH // 2).upper()


def normalize_code(value: object) -> str:
    return str(value or "").strip().upper()


class TesterRegistry:
    __test__ = False  # not a pytest test class

    def __init__(self, store: DocumentStore, *, code_factory: Callable[[], str] = generate_code) -> None:
        self._store = store
        self._code_factory = code_factory
        self._lock = asyncio.Lock()

    async def code_for_user(self, user_id: str) -> str | None:
        testers = await self._store.snapshot(TESTERS)
        for code, rec in testers.items():
            if rec.get("userId") == user_id:
                return code
        return None

    async def lookup(self, code: str) -> dict | None:
        normalized = normalize_code(code)
        if not normalized:
            return None
        return await self._store.get(TESTERS, normalized)

    async def allocate(self, user_id: str) -> str:
        """Return the user's code, creating one on first call.

        Raises RuntimeError when no free code could be found.
        """
        async with self._lock:
            existing = await self.code_for_user(user_id)
            if existing:
                return existing
            for _ in range(MAX_ALLOCATION_ATTEMPTS):
                candidate = self._code_factory()
                if await self._store.insert_if_absent(TESTERS, candidate, {"userId": user_id, "createdAt": utc_now_iso()}):
                    logger.info("tester_code.allocated user=%s", user_id)
                    return candidate
                logger.debug("tester_code.collision")
        raise RuntimeError("tester_code_space_exhausted")


__all__ = ["TesterRegistry", "generate_code", "normalize_code"]
