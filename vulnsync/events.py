"""Index commit notifications for downstream search indexing."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable

from vulnsync.models import IndexEvent

logger = logging.getLogger(__name__)

Subscriber = Callable[[IndexEvent], None]


class IndexNotifier:
    """Fan-out of IndexEvents to registered subscribers.

    Subscriber failures are logged and do not reach the publisher.
    """

    def __init__(self) -> None:
        self._subscribers: list[Subscriber] = []
        self._lock = threading.Lock()

    def subscribe(self, subscriber: Subscriber) -> None:
        with self._lock:
            self._subscribers.append(subscriber)

    def commit(self, entity: str = "vulnerability") -> IndexEvent:
        """Publish a COMMIT event for an entity type."""
        event = IndexEvent(entity=entity)
        with self._lock:
            subscribers = list(self._subscribers)
        logger.debug("Index commit for %s (%d subscriber(s))", entity, len(subscribers))
        for subscriber in subscribers:
            try:
                subscriber(event)
            except Exception:
                logger.exception("Index subscriber failed for %s", entity)
        return event
