"""Test configuration CRUD (editor-only mutations; last write wins)."""
from __future__ import annotations

from dataclasses import dataclass, asdict

from dutydesk.live.errors import NotFoundError, ValidationFailure
from dutydesk.storage.ports import CONFIGS, DocumentStore


@dataclass(frozen=True)
class TestConfig:
    testName: str
    timeLimitSeconds: int
    questionsCount: int
    maxMistakes: int

    __test__ = False  # not a pytest test class


def _non_negative_int(name: str, value: object) -> int:
    if isinstance(value, bool):
        raise ValidationFailure("invalid_config", f"{name} must be an integer")
    try:
        parsed = int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        raise ValidationFailure("invalid_config", f"{name} must be an integer")
    if parsed < 0:
        raise ValidationFailure("invalid_config", f"{name} must be >= 0")
    return parsed


def build_config(*, test_name: object, time_limit_seconds: object, questions_count: object, max_mistakes: object) -> TestConfig:
    name = str(test_name or "").strip()
    if not name or len(name) > 100:
        raise ValidationFailure("invalid_config", "testName is required (max 100 chars)")
    return TestConfig(
        testName=name,
        timeLimitSeconds=_non_negative_int("timeLimitSeconds", time_limit_seconds),
        questionsCount=_non_negative_int("questionsCount", questions_count),
        maxMistakes=_non_negative_int("maxMistakes", max_mistakes),
    )


class ConfigService:
    def __init__(self, store: DocumentStore) -> None:
        self._store = store

    async def list(self) -> dict[str, dict]:
        return await self._store.snapshot(CONFIGS)

    async def get(self, name: str) -> dict:
        rec = await self._store.get(CONFIGS, name)
        if rec is None:
            raise NotFoundError("config_not_found")
        return rec

    async def put(self, config: TestConfig) -> dict:
        body = asdict(config)
        await self._store.put(CONFIGS, config.testName, body)
        return body

    async def delete(self, name: str) -> bool:
        """Remove a config; returns False when it did not exist."""
        return await self._store.delete(CONFIGS, name)


__all__ = ["TestConfig", "ConfigService", "build_config"]
