"""In-process fan-out of identity change notices to SSE subscribers."""

from __future__ import annotations

import asyncio
import json
import logging
from collections import defaultdict
from datetime import datetime
from typing import Any, AsyncIterator, Dict, Optional, Set

from app.models.identity import to_storage, utcnow

logger = logging.getLogger(__name__)

KEEPALIVE_FRAME = ": keepalive\n\n"


def format_event(payload: Dict[str, Any]) -> str:
    """Frame ``payload`` as a single server-sent event."""
    return f"data: {json.dumps(payload, separators=(',', ':'))}\n\n"


class SyncBroadcaster:
    """Per-user queues; a notice for one user never reaches another's stream.

    Queues are only touched from the event loop that serves the stream.
    """

    def __init__(self, *, keepalive_seconds: float = 20.0, queue_size: int = 100) -> None:
        self._keepalive = keepalive_seconds
        self._queue_size = queue_size
        self._subscribers: Dict[str, Set[asyncio.Queue]] = defaultdict(set)

    def subscriber_count(self, user_id: str) -> int:
        return len(self._subscribers.get(user_id, ()))

    def publish_update(self, user_id: str, updated_at: Optional[datetime] = None) -> int:
        """Queue a ``user-update`` notice for every stream open for ``user_id``."""
        payload = {
            "type": "user-update",
            "userId": user_id,
            "updatedAt": to_storage(updated_at or utcnow()),
        }
        delivered = 0
        for queue in list(self._subscribers.get(user_id, ())):
            try:
                queue.put_nowait(payload)
            except asyncio.QueueFull:
                logger.warning("Dropping update for slow subscriber", extra={"user_id": user_id})
                continue
            delivered += 1
        return delivered

    async def stream(self, user_id: str) -> AsyncIterator[str]:
        """Yield SSE frames for ``user_id`` until the client disconnects."""
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._queue_size)
        self._subscribers[user_id].add(queue)
        logger.info("Sync stream opened", extra={"user_id": user_id})
        try:
            yield format_event({"type": "connection-ready"})
            while True:
                try:
                    payload = await asyncio.wait_for(queue.get(), timeout=self._keepalive)
                except asyncio.TimeoutError:
                    yield KEEPALIVE_FRAME
                    continue
                yield format_event(payload)
        finally:
            subscribers = self._subscribers.get(user_id)
            if subscribers is not None:
                subscribers.discard(queue)
                if not subscribers:
                    self._subscribers.pop(user_id, None)
            logger.info("Sync stream closed", extra={"user_id": user_id})


__all__ = ["KEEPALIVE_FRAME", "SyncBroadcaster", "format_event"]
