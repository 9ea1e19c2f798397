"""
Postgres-backed DocumentStore (psycopg 3).

Why: The flat JSON file is fine for a single small process, but a real
transactional store gives per-record atomicity without an in-process lock.
Each record is one row keyed by (collection, key) with a JSONB body; list
collections keep insertion order through a sequence column.

Security:
- Use an environment-specific login role; the table holds no secrets.
- Table identifiers are validated and composed with `psycopg.sql`.

Note: Imported only when `DOCUMENT_STORE=db`. Blocking psycopg calls run in
the default executor so the event loop stays responsive.
"""
from __future__ import annotations

import asyncio
import functools
import re
from typing import Any, Mapping

from .ports import COLLECTIONS, LIST_COLLECTIONS

try:
    import psycopg
    from psycopg import sql
    from psycopg.types.json import Jsonb
    HAVE_PSYCOPG = True
except Exception:  # pragma: no cover - optional dependency in dev
    psycopg = None  # type: ignore
    sql = None  # type: ignore
    Jsonb = None  # type: ignore
    HAVE_PSYCOPG = False

_TABLE_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]{0,62}(?:\.[A-Za-z_][A-Za-z0-9_]{0,62})?$")


def _check_collection(collection: str) -> None:
    if collection not in COLLECTIONS:
        raise ValueError(f"unknown_collection:{collection}")


class DBDocumentStore:
    """Document store on a single Postgres table.

    Parameters
    ----------
    dsn:
        Psycopg3 connection string.
    table:
        Optionally schema-qualified table name. Defaults to `public.dutydesk_documents`.
    """

    def __init__(self, dsn: str | None, table: str = "public.dutydesk_documents") -> None:
        if not HAVE_PSYCOPG:
            raise RuntimeError("psycopg3 is required for DBDocumentStore")
        if not dsn:
            raise RuntimeError("No database DSN provided for DBDocumentStore")
        if not _TABLE_RE.match(table or ""):
            raise ValueError("Invalid table name")
        self._dsn = dsn
        self._table = table

    def _ident(self):
        if "." in self._table:
            schema, name = self._table.split(".", 1)
            return sql.Identifier(schema, name)
        return sql.Identifier(self._table)

    def _query(self, template: str):
        return sql.SQL(template).format(table=self._ident())

    async def _run(self, fn, *args, **kwargs):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(fn, *args, **kwargs))

    def _execute(self, template: str, params: tuple, *, fetch: str | None = None):
        with psycopg.connect(self._dsn, autocommit=True) as conn:
            with conn.cursor() as cur:
                cur.execute(self._query(template), params)
                if fetch == "one":
                    return cur.fetchone()
                if fetch == "all":
                    return cur.fetchall()
                return None

    def ensure_schema(self) -> None:
        self._execute(
            "create table if not exists {table} ("
            " collection text not null,"
            " key text not null,"
            " seq bigserial,"
            " body jsonb not null,"
            " primary key (collection, key))",
            (),
        )

    async def snapshot(self, collection: str):
        _check_collection(collection)
        rows = await self._run(
            self._execute,
            "select key, body from {table} where collection = %s order by seq",
            (collection,),
            fetch="all",
        )
        if collection in LIST_COLLECTIONS:
            return [row[1] for row in rows or []]
        return {row[0]: row[1] for row in rows or []}

    async def get(self, collection: str, key: str) -> dict | None:
        _check_collection(collection)
        row = await self._run(
            self._execute,
            "select body from {table} where collection = %s and key = %s",
            (collection, key),
            fetch="one",
        )
        return row[0] if row else None

    async def put(self, collection: str, key: str, value: Mapping[str, Any]) -> None:
        _check_collection(collection)
        if collection in LIST_COLLECTIONS:
            raise ValueError(f"keyed_operation_on_list:{collection}")
        await self._run(
            self._execute,
            "insert into {table} (collection, key, body) values (%s, %s, %s) "
            "on conflict (collection, key) do update set body = excluded.body",
            (collection, key, Jsonb(dict(value))),
        )

    async def insert_if_absent(self, collection: str, key: str, value: Mapping[str, Any]) -> bool:
        _check_collection(collection)
        if collection in LIST_COLLECTIONS:
            raise ValueError(f"keyed_operation_on_list:{collection}")
        row = await self._run(
            self._execute,
            "insert into {table} (collection, key, body) values (%s, %s, %s) "
            "on conflict (collection, key) do nothing returning key",
            (collection, key, Jsonb(dict(value))),
            fetch="one",
        )
        return row is not None

    async def delete(self, collection: str, key: str, *, expected: Mapping[str, Any] | None = None) -> bool:
        _check_collection(collection)
        row = await self._run(
            self._execute,
            "delete from {table} where collection = %s and key = %s and body @> %s returning key",
            (collection, key, Jsonb(dict(expected or {}))),
            fetch="one",
        )
        return row is not None

    async def append(self, collection: str, item: Mapping[str, Any]) -> None:
        _check_collection(collection)
        if collection not in LIST_COLLECTIONS:
            raise ValueError(f"list_operation_on_keyed:{collection}")
        key = item.get("id")
        if not key:
            raise ValueError("missing_id")
        await self._run(
            self._execute,
            "insert into {table} (collection, key, body) values (%s, %s, %s)",
            (collection, str(key), Jsonb(dict(item))),
        )

    async def compare_and_swap(
        self,
        collection: str,
        key: str,
        *,
        expected: Mapping[str, Any],
        changes: Mapping[str, Any],
    ) -> dict | None:
        _check_collection(collection)
        row = await self._run(
            self._execute,
            "update {table} set body = body || %s where collection = %s and key = %s and body @> %s returning body",
            (Jsonb(dict(changes)), collection, key, Jsonb(dict(expected))),
            fetch="one",
        )
        if row:
            return row[0]
        exists = await self.get(collection, key)
        if exists is None:
            raise KeyError(key)
        return None


__all__ = ["DBDocumentStore", "HAVE_PSYCOPG"]
