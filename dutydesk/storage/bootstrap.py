"""
Document store selection.

Intent:
    Pick the store implementation from configuration so the web layer never
    imports a concrete backend directly.

Behavior:
    - "json" (default): flat file at `path`.
    - "memory": process memory only (tests, throwaway dev runs).
    - "db": Postgres via psycopg; the table is created when missing.
"""
from __future__ import annotations

import logging

from .json_file import JsonFileStore, MemoryDocumentStore
from .ports import DocumentStore

logger = logging.getLogger("dutydesk.storage.bootstrap")

STORE_BACKENDS = frozenset({"json", "memory", "db"})


def build_store(backend: str, *, path: str | None = None, dsn: str | None = None) -> DocumentStore:
    backend = (backend or "json").strip().lower()
    if backend not in STORE_BACKENDS:
        raise ValueError(f"DOCUMENT_STORE must be one of {sorted(STORE_BACKENDS)}, got: {backend!r}")
    if backend == "memory":
        logger.info("document_store.selected backend=memory")
        return MemoryDocumentStore()
    if backend == "db":
        from .repo_db import DBDocumentStore

        store = DBDocumentStore(dsn)
        store.ensure_schema()
        logger.info("document_store.selected backend=db")
        return store
    logger.info("document_store.selected backend=json path=%s", path)
    return JsonFileStore(path or "db.json")


__all__ = ["build_store", "STORE_BACKENDS"]
