"""
Flat-file JSON document store.

Why:
    The service keeps its state in one small JSON document
    (`{testers, tests, configs, duty, pings}`). The document is loaded once at
    startup and stays authoritative in memory; every mutation rewrites the
    whole file.

Behavior:
    - Writes are serialized by an `asyncio.Lock`, so concurrent handlers can
      no longer lose updates to each other.
    - A mutation is committed to memory only after the new document was
      written to a temp file and atomically renamed over the old one.
    - File I/O runs in the default executor to keep the event loop free.
"""
from __future__ import annotations

import asyncio
import copy
import json
import logging
import os
from pathlib import Path
from typing import Any, Callable, Mapping

from .ports import COLLECTIONS, LIST_COLLECTIONS, empty_document, matches

logger = logging.getLogger("dutydesk.storage.json_file")


def _check_collection(collection: str) -> None:
    if collection not in COLLECTIONS:
        raise ValueError(f"unknown_collection:{collection}")


class JsonFileStore:
    def __init__(self, path: str | os.PathLike[str] | None) -> None:
        self._path = Path(path) if path else None
        self._lock = asyncio.Lock()
        self._doc = self._load()

    @property
    def path(self) -> Path | None:
        return self._path

    def _load(self) -> dict[str, Any]:
        doc = empty_document()
        if self._path is None or not self._path.exists():
            return doc
        raw = self._path.read_text(encoding="utf-8").strip()
        if not raw:
            return doc
        data = json.loads(raw)
        if not isinstance(data, dict):
            raise ValueError("document_store_corrupt")
        for name in COLLECTIONS:
            value = data.get(name)
            if name in LIST_COLLECTIONS:
                doc[name] = list(value) if isinstance(value, list) else []
            else:
                doc[name] = dict(value) if isinstance(value, dict) else {}
        logger.info("document_store.loaded path=%s", self._path)
        return doc

    def _write_file(self, doc: Mapping[str, Any]) -> None:
        if self._path is None:
            return
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_name(self._path.name + ".tmp")
        tmp.write_text(json.dumps(doc, ensure_ascii=False, indent=2), encoding="utf-8")
        os.replace(tmp, self._path)

    async def _commit(self, collection: str, mutate: Callable[[Any], Any]) -> Any:
        """Run `mutate` on a copy of the collection, persist, then swap it in."""
        _check_collection(collection)
        async with self._lock:
            working = copy.deepcopy(self._doc[collection])
            changed, value = mutate(working)
            if not changed:
                return value
            new_doc = dict(self._doc)
            new_doc[collection] = working
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(None, self._write_file, new_doc)
            self._doc = new_doc
            return value

    async def snapshot(self, collection: str):
        _check_collection(collection)
        return copy.deepcopy(self._doc[collection])

    async def get(self, collection: str, key: str) -> dict | None:
        _check_collection(collection)
        data = self._doc[collection]
        if collection in LIST_COLLECTIONS:
            for item in data:
                if item.get("id") == key:
                    return copy.deepcopy(item)
            return None
        rec = data.get(key)
        return copy.deepcopy(rec) if rec is not None else None

    async def put(self, collection: str, key: str, value: Mapping[str, Any]) -> None:
        if collection in LIST_COLLECTIONS:
            raise ValueError(f"keyed_operation_on_list:{collection}")

        def _mutate(data: dict):
            data[key] = dict(value)
            return True, None

        await self._commit(collection, _mutate)

    async def insert_if_absent(self, collection: str, key: str, value: Mapping[str, Any]) -> bool:
        if collection in LIST_COLLECTIONS:
            raise ValueError(f"keyed_operation_on_list:{collection}")

        def _mutate(data: dict):
            if key in data:
                return False, False
            data[key] = dict(value)
            return True, True

        return bool(await self._commit(collection, _mutate))

    async def delete(self, collection: str, key: str, *, expected: Mapping[str, Any] | None = None) -> bool:
        def _mutate(data):
            if collection in LIST_COLLECTIONS:
                for idx, item in enumerate(data):
                    if item.get("id") == key and matches(item, expected):
                        del data[idx]
                        return True, True
                return False, False
            current = data.get(key)
            if current is None or not matches(current, expected):
                return False, False
            del data[key]
            return True, True

        return bool(await self._commit(collection, _mutate))

    async def append(self, collection: str, item: Mapping[str, Any]) -> None:
        if collection not in LIST_COLLECTIONS:
            raise ValueError(f"list_operation_on_keyed:{collection}")
        if not item.get("id"):
            raise ValueError("missing_id")

        def _mutate(data: list):
            data.append(dict(item))
            return True, None

        await self._commit(collection, _mutate)

    async def compare_and_swap(
        self,
        collection: str,
        key: str,
        *,
        expected: Mapping[str, Any],
        changes: Mapping[str, Any],
    ) -> dict | None:
        missing = object()

        def _mutate(data):
            if collection in LIST_COLLECTIONS:
                current = next((item for item in data if item.get("id") == key), None)
            else:
                current = data.get(key)
            if current is None:
                return False, missing
            if not matches(current, expected):
                return False, None
            current.update(changes)
            return True, copy.deepcopy(current)

        result = await self._commit(collection, _mutate)
        if result is missing:
            raise KeyError(key)
        return result


class MemoryDocumentStore(JsonFileStore):
    """Same semantics without a backing file (tests, throwaway dev runs)."""

    def __init__(self) -> None:
        super().__init__(None)


__all__ = ["JsonFileStore", "MemoryDocumentStore"]
