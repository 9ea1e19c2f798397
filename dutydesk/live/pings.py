"""
Instructor pings: help requests from candidates to on-duty instructors.

State machine:
    open -> accepted (terminal). There is no cancel or expiry.

Behavior:
    - `create` appends an open ping and broadcasts `ping`. Duplicate open pings
      from the same requester are allowed (a candidate may ask again).
    - `accept` checks the acceptor's capability for the ping's test type and
      flips `status` with a compare-and-swap on `status == "open"`, so exactly
      one of several concurrent acceptors wins; the others get ConflictError.
      Broadcasts `ack` with the accepted record.
"""
from __future__ import annotations

import logging
import secrets

from dutydesk.identity_access.domain import TEST_TYPES, normalize_test_type
from dutydesk.identity_access.stores import Identity
from dutydesk.storage.ports import PINGS, DocumentStore, utc_now_iso

from .broadcast import BroadcastHub
from .errors import ConflictError, ForbiddenError, NotFoundError, ValidationFailure

logger = logging.getLogger("dutydesk.live.pings")

STATUS_OPEN = "open"
STATUS_ACCEPTED = "accepted"
PING_STATUSES = frozenset({STATUS_OPEN, STATUS_ACCEPTED})
MAX_NOTE_LENGTH = 500


class PingWorkflow:
    def __init__(self, store: DocumentStore, hub: BroadcastHub) -> None:
        self._store = store
        self._hub = hub

    async def create(self, identity: Identity, test_type: str, note: str | None = None) -> dict:
        normalized = normalize_test_type(test_type)
        if normalized not in TEST_TYPES:
            raise ValidationFailure("invalid_test_type", f"testType must be one of {sorted(TEST_TYPES)}")
        ping = {
            "testType": normalized,
            "note": (str(note) if note is not None else "")[:MAX_NOTE_LENGTH],
            "requester": {"id": identity.user_id, "tag": identity.tag},
            "time": utc_now_iso(),
            "status": STATUS_OPEN,
        }
        while True:
            pid = secrets.token_hex(6)
            if await self._store.get(PINGS, pid) is None:
                break
        ping = {"id": pid, **ping}
        await self._store.append(PINGS, ping)
        logger.info("ping.created id=%s type=%s requester=%s", pid, normalized, identity.user_id)
        self._hub.publish("ping", ping)
        return ping

    async def accept(self, identity: Identity, ping_id: str) -> dict:
        """Accept an open ping as `identity`.

        Raises NotFoundError (unknown id), ForbiddenError (missing capability)
        or ConflictError (already accepted).
        """
        ping = await self._store.get(PINGS, str(ping_id or ""))
        if ping is None:
            raise NotFoundError("ping_not_found")
        if not identity.capabilities.can_accept(ping.get("testType", "")):
            raise ForbiddenError("missing_capability", f"cannot accept {ping.get('testType')} pings")
        try:
            updated = await self._store.compare_and_swap(
                PINGS,
                ping["id"],
                expected={"status": STATUS_OPEN},
                changes={
                    "status": STATUS_ACCEPTED,
                    "acceptedBy": {"id": identity.user_id, "tag": identity.tag},
                    "acceptedAt": utc_now_iso(),
                },
            )
        except KeyError:
            raise NotFoundError("ping_not_found")
        if updated is None:
            raise ConflictError("ping_already_accepted")
        logger.info("ping.accepted id=%s by=%s", ping["id"], identity.user_id)
        self._hub.publish("ack", updated)
        return updated

    async def list(self, *, status: str | None = None) -> list[dict]:
        """Pings newest first (the log is append-only), optionally filtered by status."""
        pings = await self._store.snapshot(PINGS)
        if status:
            pings = [p for p in pings if p.get("status") == status]
        return list(reversed(pings))


__all__ = ["PingWorkflow", "STATUS_OPEN", "STATUS_ACCEPTED", "PING_STATUSES"]
