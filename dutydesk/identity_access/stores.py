"""
In-memory stores for the login flow: StateStore and SessionStore.

Why: Keep the anti-CSRF `state` of the OAuth redirect and the sessions
server-side. The service is a single process, so process memory is the
session backend; a restart logs everyone out.

Security: Cookies carry only an opaque session id. Identity and capability
flags never leave the server.
"""
from __future__ import annotations

from dataclasses import dataclass, replace
import secrets
import time
from typing import Any, Dict, Optional

from .capabilities import Capabilities


def _now() -> int:
    return int(time.time())


def _expired(expires_at: Optional[int]) -> bool:
    return expires_at is not None and expires_at < _now()


def _purge_expired(records: Dict[str, Any]) -> None:
    for key in [k for k, rec in records.items() if _expired(rec.expires_at)]:
        del records[key]


@dataclass
class StateRecord:
    state: str
    expires_at: int


class StateStore:
    """One-shot OAuth `state` values with a short lifetime."""

    max_pending = 10_000

    def __init__(self):
        self._states: Dict[str, StateRecord] = {}

    def create(self, *, ttl_seconds: int = 900) -> StateRecord:
        _purge_expired(self._states)
        while len(self._states) >= self.max_pending:
            # Oldest pending state first (insertion order).
            del self._states[next(iter(self._states))]
        record = StateRecord(state=secrets.token_urlsafe(24), expires_at=_now() + ttl_seconds)
        self._states[record.state] = record
        return record

    def pop_valid(self, state: str) -> Optional[StateRecord]:
        """Consume `state`; None when unknown, already used or expired."""
        record = self._states.pop(state, None)
        if record is None or _expired(record.expires_at):
            return None
        return record


@dataclass(frozen=True)
class Identity:
    user_id: str
    tag: str
    capabilities: Capabilities


@dataclass
class SessionRecord:
    session_id: str
    user_id: str
    tag: str
    capabilities: Capabilities
    expires_at: Optional[int] = None
    ttl_seconds: int = 3600

    @property
    def identity(self) -> Identity:
        return Identity(user_id=self.user_id, tag=self.tag, capabilities=self.capabilities)


class SessionStore:
    def __init__(self):
        self._data: Dict[str, SessionRecord] = {}

    def create(self, *, identity: Identity, ttl_seconds: int = 3600) -> SessionRecord:
        _purge_expired(self._data)
        record = SessionRecord(
            session_id=secrets.token_urlsafe(24),
            user_id=identity.user_id,
            tag=identity.tag,
            capabilities=identity.capabilities,
            expires_at=_now() + ttl_seconds,
            ttl_seconds=ttl_seconds,
        )
        self._data[record.session_id] = record
        return record

    def get(self, session_id: str) -> Optional[SessionRecord]:
        """Live session or None; expired sessions are evicted on access."""
        record = self._data.get(session_id)
        if record is not None and _expired(record.expires_at):
            del self._data[session_id]
            record = None
        return record

    def update_capabilities(self, session_id: str, capabilities: Capabilities) -> Optional[SessionRecord]:
        current = self.get(session_id)
        if current is None:
            return None
        self._data[session_id] = replace(current, capabilities=capabilities)
        return self._data[session_id]

    def delete(self, session_id: str) -> None:
        self._data.pop(session_id, None)


__all__ = ["StateStore", "StateRecord", "SessionStore", "SessionRecord", "Identity"]
