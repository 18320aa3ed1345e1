"""Per-record exclusion for moderation mutations.

At most one mutation per record id is in flight at any time. Different
record ids never contend. Lock entries are created on demand and dropped
once nobody holds or waits on them, so the table does not grow with the
number of records ever touched.

Acquisition is always bounded: a waiter that cannot get the lock within
the timeout gives up with StoreUnavailable instead of queueing forever
behind a stuck writer.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Iterator

from nsregistry.errors import StoreUnavailable

logger = logging.getLogger(__name__)


@dataclass
class _Entry:
    lock: threading.Lock = field(default_factory=threading.Lock)
    users: int = 0  # holders + waiters


class RecordLocks:
    """Table of per-record locks."""

    def __init__(self, timeout: float = 10.0) -> None:
        if timeout <= 0:
            raise ValueError("Lock timeout must be positive")
        self.timeout = timeout
        self._entries: dict[str, _Entry] = {}
        self._guard = threading.Lock()

    @contextmanager
    def hold(self, record_id: str) -> Iterator[None]:
        """Hold the exclusive lock for a record id.

        Raises:
            StoreUnavailable: If the lock was not acquired in time.
        """
        with self._guard:
            entry = self._entries.setdefault(record_id, _Entry())
            entry.users += 1

        acquired = entry.lock.acquire(timeout=self.timeout)
        try:
            if not acquired:
                logger.warning(
                    "Timed out after %.1fs waiting for lock on %s",
                    self.timeout, record_id,
                )
                raise StoreUnavailable(f"record {record_id} is busy")
            yield
        finally:
            if acquired:
                entry.lock.release()
            with self._guard:
                entry.users -= 1
                if entry.users == 0:
                    del self._entries[record_id]

    def is_locked(self, record_id: str) -> bool:
        with self._guard:
            entry = self._entries.get(record_id)
            return entry is not None and entry.lock.locked()

    @property
    def active_count(self) -> int:
        """Number of record ids with a holder or waiter."""
        with self._guard:
            return len(self._entries)
