"""Notification service — fan events out to subscriber queues.

Emission is gated by the boolean ``notifications`` storage key, which the
user toggles from the options UI.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from nos2bch.notifications.events import RawEvent
    from nos2bch.storage.client import Storage

logger = logging.getLogger(__name__)

NOTIFICATIONS_KEY = "notifications"
_QUEUE_SIZE = 100


class NotificationService:
    """Delivers events to every registered subscriber queue.

    Usage::

        svc = NotificationService(storage)
        q = svc.add_subscriber("ui")
        await svc.notify(PermissionEvent(host="x.com", operation="signEvent", allowed=True))
        event = await q.get()
    """

    def __init__(self, storage: Storage) -> None:
        self._storage = storage
        self._subscribers: dict[str, asyncio.Queue[RawEvent]] = {}

    def add_subscriber(self, key: str, *, buffer: int = _QUEUE_SIZE) -> asyncio.Queue[RawEvent]:
        """Register a subscriber and return its queue."""
        queue: asyncio.Queue[RawEvent] = asyncio.Queue(maxsize=buffer)
        self._subscribers[key] = queue
        return queue

    def remove_subscriber(self, key: str) -> None:
        self._subscribers.pop(key, None)

    async def enabled(self) -> bool:
        return bool(await self._storage.get(NOTIFICATIONS_KEY))

    async def notify(self, event: RawEvent) -> int:
        """Deliver *event* if notifications are enabled.

        Returns:
            Number of subscribers that received the event.
        """
        if not await self.enabled():
            return 0
        delivered = 0
        for key, queue in list(self._subscribers.items()):
            try:
                queue.put_nowait(event)
                delivered += 1
            except asyncio.QueueFull:
                logger.warning("Subscriber %s queue full, dropping %s event", key, event.type)
        return delivered
