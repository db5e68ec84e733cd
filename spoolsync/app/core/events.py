"""In-process publish/subscribe channel for spool synchronization events."""

import logging
from collections.abc import Callable

from spoolsync.app.schemas.events import SyncEventBase

logger = logging.getLogger(__name__)

Subscriber = Callable[[SyncEventBase], None]


class SpoolEventBroadcaster:
    """Fans out sync events to every registered subscriber.

    Delivery is synchronous, in registration order, and best effort: a failing
    subscriber is logged and skipped. Events published while nobody listens
    are dropped; there is no backlog.
    """

    def __init__(self):
        self._subscribers: list[Subscriber] = []
        self._closed = False

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    @property
    def closed(self) -> bool:
        return self._closed

    def subscribe(self, callback: Subscriber) -> Subscriber:
        if self._closed:
            raise RuntimeError("Broadcaster is closed")
        self._subscribers.append(callback)
        logger.debug("Subscriber added (%d active)", len(self._subscribers))
        return callback

    def unsubscribe(self, callback: Subscriber) -> None:
        if callback in self._subscribers:
            self._subscribers.remove(callback)
            logger.debug("Subscriber removed (%d active)", len(self._subscribers))

    def publish(self, event: SyncEventBase) -> int:
        """Deliver an event to all current subscribers.

        Returns:
            Number of subscribers that received the event without error.
        """
        if self._closed:
            logger.debug("Dropping %s event, broadcaster closed", getattr(event, "type", "?"))
            return 0

        delivered = 0
        # Snapshot so callbacks may unsubscribe themselves during delivery
        for callback in list(self._subscribers):
            try:
                callback(event)
                delivered += 1
            except Exception as e:
                logger.warning("Event subscriber %r failed: %s", callback, e)
        return delivered

    def close(self) -> None:
        self._subscribers.clear()
        self._closed = True
