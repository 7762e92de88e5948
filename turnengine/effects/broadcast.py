"""BroadcastHub — pushes newly stored messages to each owner's live listeners."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_SIZE = 100


class BroadcastHub:
    """In-process fan-out keyed by owner id.

    Each subscriber gets its own bounded queue. A subscriber that falls
    behind loses its oldest events; publishing never blocks.
    """

    def __init__(self, queue_size: int = DEFAULT_QUEUE_SIZE) -> None:
        self._queue_size = queue_size
        self._subscribers: dict[str, set[asyncio.Queue[dict[str, Any]]]] = {}

    def subscribe(self, owner_id: str) -> asyncio.Queue[dict[str, Any]]:
        queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue(maxsize=self._queue_size)
        self._subscribers.setdefault(owner_id, set()).add(queue)
        logger.debug("Live subscriber added for %s", owner_id)
        return queue

    def unsubscribe(self, owner_id: str, queue: asyncio.Queue[dict[str, Any]]) -> None:
        queues = self._subscribers.get(owner_id)
        if not queues:
            return
        queues.discard(queue)
        if not queues:
            del self._subscribers[owner_id]

    def subscriber_count(self, owner_id: str) -> int:
        return len(self._subscribers.get(owner_id, ()))

    def publish(self, owner_id: str, event: dict[str, Any]) -> int:
        """Deliver *event* to every subscriber of *owner_id*. Returns deliveries."""
        delivered = 0
        for queue in self._subscribers.get(owner_id, set()):
            if queue.full():
                queue.get_nowait()
                logger.warning("Live queue full for %s, dropped oldest event", owner_id)
            queue.put_nowait(event)
            delivered += 1
        return delivered
