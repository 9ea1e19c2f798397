"""
Broadcast channel: registry of connected push clients and event fan-out.

Why:
    Duty and ping changes must reach every open dashboard immediately. Each
    connection owns a bounded outbound queue; `publish` only enqueues, so a
    slow or stalled client can never block the request that triggered the
    event nor the delivery to other clients.

Behavior:
    - `subscribe` registers a client and queues the greeting event.
    - `publish` encodes once and enqueues for every registered client. When a
      queue is full the oldest pending message is dropped.
    - `unsubscribe` removes the client; later broadcasts skip it.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
import itertools
import json
import logging
from typing import Any

logger = logging.getLogger("dutydesk.live.broadcast")

KEEPALIVE_FRAME = ": keepalive\n\n"

_ids = itertools.count(1)


def encode_event(event_type: str, payload: Any = None) -> str:
    """Return one SSE frame: `data: <JSON>\\n\\n` with `{type, payload}`."""
    body = json.dumps({"type": event_type, "payload": payload}, separators=(",", ":"), ensure_ascii=False)
    return f"data: {body}\n\n"


@dataclass(eq=False)
class BroadcastClient:
    user_id: str
    queue: asyncio.Queue
    client_id: int = field(default_factory=lambda: next(_ids))
    dropped: int = 0

    def offer(self, frame: str) -> None:
        try:
            self.queue.put_nowait(frame)
            return
        except asyncio.QueueFull:
            pass
        try:
            self.queue.get_nowait()
        except asyncio.QueueEmpty:  # pragma: no cover - consumer raced us
            pass
        self.dropped += 1
        self.queue.put_nowait(frame)


class BroadcastHub:
    def __init__(self, *, queue_size: int = 100) -> None:
        self._queue_size = max(1, int(queue_size))
        self._clients: set[BroadcastClient] = set()

    def __len__(self) -> int:
        return len(self._clients)

    def subscribe(self, user_id: str) -> BroadcastClient:
        client = BroadcastClient(user_id=user_id, queue=asyncio.Queue(maxsize=self._queue_size))
        client.offer(encode_event("hello", {"userId": user_id}))
        self._clients.add(client)
        logger.info("events.subscribed client=%s clients=%s", client.client_id, len(self._clients))
        return client

    def unsubscribe(self, client: BroadcastClient) -> None:
        self._clients.discard(client)
        if client.dropped:
            logger.warning("events.client_dropped_messages client=%s dropped=%s", client.client_id, client.dropped)
        logger.info("events.unsubscribed client=%s clients=%s", client.client_id, len(self._clients))

    def publish(self, event_type: str, payload: Any = None) -> int:
        """Enqueue an event for every registered client; return the fan-out count."""
        frame = encode_event(event_type, payload)
        targets = list(self._clients)
        for client in targets:
            try:
                client.offer(frame)
            except Exception as exc:
                logger.warning("events.offer_failed client=%s error=%s", client.client_id, exc.__class__.__name__)
        return len(targets)


async def next_frame(client: BroadcastClient, *, timeout: float | None) -> str:
    """Wait for the client's next frame; a keepalive comment when idle."""
    try:
        return await asyncio.wait_for(client.queue.get(), timeout=timeout)
    except asyncio.TimeoutError:
        return KEEPALIVE_FRAME


__all__ = ["BroadcastHub", "BroadcastClient", "encode_event", "next_frame", "KEEPALIVE_FRAME"]
