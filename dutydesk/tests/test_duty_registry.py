"""Duty registry: idempotent join, leave, coverage query and TTL expiry."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
import json

import pytest

from dutydesk.identity_access.capabilities import Capabilities
from dutydesk.identity_access.stores import Identity
from dutydesk.live.broadcast import BroadcastHub
from dutydesk.live.duty import DutyRegistry
from dutydesk.storage.json_file import MemoryDocumentStore
from dutydesk.storage.ports import DUTY

pytestmark = pytest.mark.anyio("asyncio")

RADIO = Identity(user_id="u1", tag="radio#0001", capabilities=Capabilities(can_radio=True))
TESTER = Identity(user_id="u2", tag="tester", capabilities=Capabilities(is_tester=True, can_mdt=True))


def _drain(client) -> list[dict]:
    frames = []
    while not client.queue.empty():
        frame = client.queue.get_nowait()
        frames.append(json.loads(frame[len("data: "):]))
    return frames


async def test_go_on_duty_twice_keeps_one_refreshed_record():
    store = MemoryDocumentStore()
    reg = DutyRegistry(store, BroadcastHub())
    first = await reg.go_on_duty(RADIO)
    await store.put(DUTY, "u1", {**first, "since": "2000-01-01T00:00:00.000Z"})
    second = await reg.go_on_duty(RADIO)
    listing = await reg.list()
    assert list(listing) == ["u1"]
    assert listing["u1"]["since"] == second["since"] != "2000-01-01T00:00:00.000Z"
    assert listing["u1"] == {"id": "u1", "tag": "radio#0001", "roles": ["radio"], "since": second["since"]}


async def test_roles_are_derived_from_capabilities():
    reg = DutyRegistry(MemoryDocumentStore(), BroadcastHub())
    rec = await reg.go_on_duty(TESTER)
    assert rec["roles"] == ["mdt", "general"]


async def test_go_off_duty_removes_and_is_noop_when_absent():
    reg = DutyRegistry(MemoryDocumentStore(), BroadcastHub())
    await reg.go_on_duty(RADIO)
    assert await reg.go_off_duty(RADIO) is True
    assert await reg.go_off_duty(RADIO) is False
    assert await reg.list() == {}


async def test_coverage_by_test_type():
    store = MemoryDocumentStore()
    await store.put(DUTY, "u1", {"id": "u1", "tag": "x", "roles": ["radio"], "since": "2024-01-01T00:00:00.000Z"})
    reg = DutyRegistry(store, BroadcastHub())
    assert await reg.is_covered("radio") is True
    assert await reg.is_covered("mdt") is False
    assert await reg.is_covered("academie") is False
    assert await reg.is_covered("unknown") is False


async def test_each_change_emits_full_snapshot():
    hub = BroadcastHub()
    client = hub.subscribe("watcher")
    reg = DutyRegistry(MemoryDocumentStore(), hub)
    await reg.go_on_duty(RADIO)
    await reg.go_on_duty(TESTER)
    await reg.go_off_duty(RADIO)
    events = _drain(client)
    assert [e["type"] for e in events] == ["hello", "duty-update", "duty-update", "duty-update"]
    assert set(events[2]["payload"]) == {"u1", "u2"}
    assert set(events[3]["payload"]) == {"u2"}


async def test_expired_records_are_hidden_and_pruned():
    now = datetime(2024, 1, 2, 12, 0, tzinfo=timezone.utc)
    store = MemoryDocumentStore()
    hub = BroadcastHub()
    reg = DutyRegistry(store, hub, ttl_seconds=3600, clock=lambda: now)
    stale = (now - timedelta(hours=2)).isoformat().replace("+00:00", "Z")
    fresh = (now - timedelta(minutes=5)).isoformat().replace("+00:00", "Z")
    await store.put(DUTY, "old", {"id": "old", "tag": "a", "roles": ["radio"], "since": stale})
    await store.put(DUTY, "new", {"id": "new", "tag": "b", "roles": ["mdt"], "since": fresh})

    assert list(await reg.list()) == ["new"]
    assert await reg.is_covered("radio") is False

    client = hub.subscribe("watcher")
    assert await reg.prune_expired() == 1
    assert set(await store.snapshot(DUTY)) == {"new"}
    assert [e["type"] for e in _drain(client)] == ["hello", "duty-update"]
    assert await reg.prune_expired() == 0


async def test_prune_is_disabled_without_ttl():
    store = MemoryDocumentStore()
    await store.put(DUTY, "old", {"id": "old", "tag": "a", "roles": ["radio"], "since": "2000-01-01T00:00:00.000Z"})
    reg = DutyRegistry(store, BroadcastHub())
    assert await reg.prune_expired() == 0
    assert list(await reg.list()) == ["old"]
