"""Cache invalidation signal — tells client caches the registry changed.

The registry never pushes diffs. After every successful mutation it
publishes "this collection is stale" under a fixed key, and clients
re-fetch the collection themselves. Two ways to observe the signal:

    bus.subscribe(REGISTRY_COLLECTION_KEY, lambda key: refetch())

    seen = bus.generation(REGISTRY_COLLECTION_KEY)
    ...
    if bus.generation(REGISTRY_COLLECTION_KEY) != seen:
        refetch()
"""

from __future__ import annotations

import logging
import threading
from typing import Callable

logger = logging.getLogger(__name__)

# Key under which the registration collection is cached by clients.
REGISTRY_COLLECTION_KEY = "/api/v1.0/registry_ui/namespaces"

Subscriber = Callable[[str], None]


class InvalidationBus:
    """Fan-out of collection-stale signals to subscribers and pollers."""

    def __init__(self) -> None:
        self._subscribers: dict[str, list[Subscriber]] = {}
        self._generations: dict[str, int] = {}
        self._lock = threading.Lock()

    def subscribe(self, key: str, callback: Subscriber) -> None:
        with self._lock:
            self._subscribers.setdefault(key, []).append(callback)

    def unsubscribe(self, key: str, callback: Subscriber) -> bool:
        """Remove a subscriber. Returns True if it was registered."""
        with self._lock:
            callbacks = self._subscribers.get(key, [])
            if callback in callbacks:
                callbacks.remove(callback)
                return True
        return False

    def publish(self, key: str) -> int:
        """Mark a collection stale and notify subscribers.

        Returns the new generation number for the key. A failing
        subscriber is logged and skipped: the mutation that triggered
        the signal is already committed.
        """
        with self._lock:
            generation = self._generations.get(key, 0) + 1
            self._generations[key] = generation
            callbacks = list(self._subscribers.get(key, []))

        for callback in callbacks:
            try:
                callback(key)
            except Exception:
                logger.exception("Invalidation subscriber failed for %s", key)
        return generation

    def generation(self, key: str) -> int:
        """Number of times the key has been invalidated."""
        with self._lock:
            return self._generations.get(key, 0)
