"""
Duty registry: who is on duty, for which duty roles, since when.

Why:
    Candidates may only start a capability-gated test when someone able to
    supervise it is on duty. Records are persisted so a restart keeps the
    registry, and they expire `ttl_seconds` after the last `go_on_duty` so a
    client that vanished without going off duty does not stay listed forever.

Notes:
    - One record per user id; going on duty again replaces the record and
      refreshes `since`.
    - Roles are captured at `go_on_duty` time. A role revoked mid-shift stays
      listed until the next `go_on_duty` or expiry (known limitation).
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
import logging
from typing import Callable

from dutydesk.identity_access.domain import DUTY_ROLE_FOR_TEST_TYPE, normalize_test_type
from dutydesk.identity_access.stores import Identity
from dutydesk.storage.ports import DUTY, DocumentStore, parse_iso, utc_now_iso

from .broadcast import BroadcastHub

logger = logging.getLogger("dutydesk.live.duty")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DutyRegistry:
    def __init__(
        self,
        store: DocumentStore,
        hub: BroadcastHub,
        *,
        ttl_seconds: int = 0,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._hub = hub
        self._ttl = max(0, int(ttl_seconds))
        self._clock = clock

    def _expired(self, rec: dict) -> bool:
        if not self._ttl:
            return False
        since = parse_iso(rec.get("since"))
        if since is None:
            return True
        return since + timedelta(seconds=self._ttl) < self._clock()

    async def go_on_duty(self, identity: Identity) -> dict:
        record = {
            "id": identity.user_id,
            "tag": identity.tag,
            "roles": identity.capabilities.duty_roles(),
            "since": utc_now_iso(),
        }
        await self._store.put(DUTY, identity.user_id, record)
        logger.info("duty.on user=%s roles=%s", identity.user_id, ",".join(record["roles"]))
        self._hub.publish("duty-update", await self.list())
        return record

    async def go_off_duty(self, identity: Identity) -> bool:
        """Remove the identity's record; returns False when it was not on duty."""
        removed = await self._store.delete(DUTY, identity.user_id)
        logger.info("duty.off user=%s removed=%s", identity.user_id, removed)
        self._hub.publish("duty-update", await self.list())
        return removed

    async def list(self) -> dict[str, dict]:
        """Snapshot of all non-expired records keyed by user id."""
        records = await self._store.snapshot(DUTY)
        return {uid: rec for uid, rec in records.items() if not self._expired(rec)}

    async def is_covered(self, test_type: str) -> bool:
        role = DUTY_ROLE_FOR_TEST_TYPE.get(normalize_test_type(test_type))
        if role is None:
            return False
        return any(role in (rec.get("roles") or []) for rec in (await self.list()).values())

    async def prune_expired(self) -> int:
        """Delete expired records; emit `duty-update` when anything was removed."""
        if not self._ttl:
            return 0
        removed = 0
        for uid, rec in (await self._store.snapshot(DUTY)).items():
            if not self._expired(rec):
                continue
            # Only delete the exact record we judged; a concurrent refresh wins.
            if await self._store.delete(DUTY, uid, expected={"since": rec.get("since")}):
                removed += 1
        if removed:
            logger.info("duty.pruned count=%s", removed)
            self._hub.publish("duty-update", await self.list())
        return removed


__all__ = ["DutyRegistry"]
