"""In-memory OAuth state and session stores."""
from __future__ import annotations

from dutydesk.identity_access.capabilities import Capabilities
from dutydesk.identity_access.stores import Identity, SessionStore, StateStore


def _identity(user_id: str = "u1") -> Identity:
    return Identity(user_id=user_id, tag="alice", capabilities=Capabilities(is_tester=True))


def test_state_is_single_use():
    store = StateStore()
    rec = store.create()
    assert store.pop_valid(rec.state) is not None
    assert store.pop_valid(rec.state) is None


def test_expired_state_is_rejected():
    store = StateStore()
    rec = store.create(ttl_seconds=-5)
    assert store.pop_valid(rec.state) is None
    assert store.pop_valid("unknown") is None


def test_session_roundtrip_and_identity():
    store = SessionStore()
    rec = store.create(identity=_identity(), ttl_seconds=60)
    got = store.get(rec.session_id)
    assert got is not None
    assert got.identity == _identity()
    assert got.ttl_seconds == 60


def test_expired_session_is_dropped():
    store = SessionStore()
    rec = store.create(identity=_identity(), ttl_seconds=-1)
    assert store.get(rec.session_id) is None


def test_update_capabilities_replaces_cached_flags():
    store = SessionStore()
    rec = store.create(identity=_identity())
    updated = store.update_capabilities(rec.session_id, Capabilities(is_editor=True))
    assert updated is not None and updated.capabilities.is_editor
    assert store.get(rec.session_id).capabilities == Capabilities(is_editor=True)
    assert store.update_capabilities("missing", Capabilities()) is None


def test_delete_session():
    store = SessionStore()
    rec = store.create(identity=_identity())
    store.delete(rec.session_id)
    store.delete(rec.session_id)
    assert store.get(rec.session_id) is None


def test_abandoned_states_are_purged_on_create():
    store = StateStore()
    for _ in range(1000):
        store.create(ttl_seconds=-1)
    fresh = store.create()
    assert list(store._states) == [fresh.state]


def test_pending_states_are_capped_oldest_first():
    store = StateStore()
    store.max_pending = 3
    first = store.create()
    later = [store.create() for _ in range(3)]
    assert len(store._states) == 3
    assert store.pop_valid(first.state) is None
    assert all(store.pop_valid(rec.state) is not None for rec in later)


def test_expired_sessions_are_purged_on_create():
    store = SessionStore()
    stale = [store.create(identity=_identity(f"u{i}"), ttl_seconds=-1) for i in range(50)]
    live = store.create(identity=_identity("fresh"))
    assert list(store._data) == [live.session_id]
    assert all(store.get(rec.session_id) is None for rec in stale)
