"""Registration record store — the authoritative state of every registration.

The moderation core talks to persistence only through RegistrationStore.
Two implementations ship with the registry:
- InMemoryRegistrationStore: process-local, for tests and embedding.
- JsonFileRegistrationStore: a single JSON document on disk, committed
  with a temp file and os.replace so readers never see a partial write.
  Safe to share between processes through a sidecar file lock.

Write contract (replace / remove):
- expected_version must match the stored version, otherwise
  ConcurrentModification is raised and nothing is written.
- timeout bounds the whole call. The deadline is checked at the commit
  point: a write that misses it is abandoned and raises TimeoutError,
  so it can never become visible after the caller gave up.
- I/O failures surface as OSError (TimeoutError is one).
- timeout is enforced by the store itself. Callers hold the per-record
  lock for as long as a write call runs, so an implementation must not
  block past its deadline before it checks it. Reads (get, list) take
  no timeout and must return promptly.
"""

from __future__ import annotations

import abc
import json
import logging
import os
import tempfile
import threading
import time
from pathlib import Path
from typing import Optional

from nsregistry.errors import ConcurrentModification
from nsregistry.models.registration import Registration, RegistrationState
from nsregistry.persistence.file_lock import lock_path_for, locked

logger = logging.getLogger(__name__)


class RegistrationStore(abc.ABC):
    """Query/mutate interface over registration records.

    The moderation coordinator relies on the store to honour the write
    timeout; it has no way to interrupt a call that blocks. See the
    module docstring for the full write contract.
    """

    @abc.abstractmethod
    def get(self, record_id: str) -> Optional[Registration]:
        """Return the current record, or None if it does not exist."""

    @abc.abstractmethod
    def list(self, state: Optional[RegistrationState] = None) -> list[Registration]:
        """Return all records, optionally filtered by state."""

    @abc.abstractmethod
    def add(self, record: Registration) -> None:
        """Insert a new record.

        Raises:
            ValueError: If the id or prefix is already registered.
        """

    @abc.abstractmethod
    def replace(
        self, record: Registration, expected_version: int, timeout: float,
    ) -> None:
        """Overwrite a record if it is still at expected_version.

        Must return or raise TimeoutError within timeout seconds.
        """

    @abc.abstractmethod
    def remove(self, record_id: str, expected_version: int, timeout: float) -> None:
        """Delete a record if it is still at expected_version.

        Must return or raise TimeoutError within timeout seconds.
        """

    def find_by_prefix(self, prefix: str) -> Optional[Registration]:
        for record in self.list():
            if record.prefix == prefix:
                return record
        return None

    @property
    def count(self) -> int:
        return len(self.list())


class InMemoryRegistrationStore(RegistrationStore):
    """Thread-safe dict-backed store."""

    def __init__(self, records: Optional[list[Registration]] = None) -> None:
        self._records: dict[str, Registration] = {}
        self._lock = threading.Lock()
        for record in records or []:
            self.add(record)

    def get(self, record_id: str) -> Optional[Registration]:
        with self._lock:
            return self._records.get(record_id)

    def list(self, state: Optional[RegistrationState] = None) -> list[Registration]:
        with self._lock:
            records = list(self._records.values())
        if state is None:
            return records
        return [r for r in records if r.state == state]

    def add(self, record: Registration) -> None:
        with self._lock:
            _check_unique(self._records, record)
            self._records[record.id] = record

    def replace(
        self, record: Registration, expected_version: int, timeout: float,
    ) -> None:
        deadline = time.monotonic() + timeout
        self._acquire(timeout)
        try:
            _check_version(self._records, record.id, expected_version)
            _check_deadline(deadline, record.id)
            self._records[record.id] = record
        finally:
            self._lock.release()

    def remove(self, record_id: str, expected_version: int, timeout: float) -> None:
        deadline = time.monotonic() + timeout
        self._acquire(timeout)
        try:
            _check_version(self._records, record_id, expected_version)
            _check_deadline(deadline, record_id)
            del self._records[record_id]
        finally:
            self._lock.release()

    def _acquire(self, timeout: float) -> None:
        if not self._lock.acquire(timeout=timeout):
            raise TimeoutError("store lock not acquired in time")


class JsonFileRegistrationStore(RegistrationStore):
    """Registration store persisted as one JSON document.

    The whole document is rewritten on every commit. Several processes
    may share the file: writers take the sidecar file lock, reload the
    document from disk, check the version and commit, so the version
    check always runs against what is actually stored. Readers reload
    whenever the file has been swapped since they last looked.
    """

    def __init__(self, storage_path: Path) -> None:
        self._storage_path = storage_path
        self._lock_path = lock_path_for(storage_path)
        self._records: dict[str, Registration] = {}
        self._signature: Optional[tuple[int, int, int]] = None
        self._lock = threading.Lock()

        self._refresh()

    def get(self, record_id: str) -> Optional[Registration]:
        with self._lock:
            self._refresh()
            return self._records.get(record_id)

    def list(self, state: Optional[RegistrationState] = None) -> list[Registration]:
        with self._lock:
            self._refresh()
            records = list(self._records.values())
        if state is None:
            return records
        return [r for r in records if r.state == state]

    def add(self, record: Registration) -> None:
        with self._lock, locked(self._lock_path):
            self._refresh(force=True)
            _check_unique(self._records, record)
            updated = dict(self._records)
            updated[record.id] = record
            self._commit(updated, deadline=None)

    def replace(
        self, record: Registration, expected_version: int, timeout: float,
    ) -> None:
        deadline = time.monotonic() + timeout
        if not self._lock.acquire(timeout=timeout):
            raise TimeoutError("store lock not acquired in time")
        try:
            with locked(self._lock_path, timeout=_remaining(deadline)):
                self._refresh(force=True)
                _check_version(self._records, record.id, expected_version)
                updated = dict(self._records)
                updated[record.id] = record
                self._commit(updated, deadline)
        finally:
            self._lock.release()

    def remove(self, record_id: str, expected_version: int, timeout: float) -> None:
        deadline = time.monotonic() + timeout
        if not self._lock.acquire(timeout=timeout):
            raise TimeoutError("store lock not acquired in time")
        try:
            with locked(self._lock_path, timeout=_remaining(deadline)):
                self._refresh(force=True)
                _check_version(self._records, record_id, expected_version)
                updated = dict(self._records)
                del updated[record_id]
                self._commit(updated, deadline)
        finally:
            self._lock.release()

    def _commit(
        self, records: dict[str, Registration], deadline: Optional[float],
    ) -> None:
        """Write the document to a temp file, then atomically swap it in.

        In-memory state is only updated after the swap succeeds.
        """
        document = {
            "registrations": [r.to_dict() for r in records.values()],
        }
        self._storage_path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            prefix=".registrations-", suffix=".tmp", dir=self._storage_path.parent,
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(document, f, indent=2, sort_keys=True)
                f.flush()
                os.fsync(f.fileno())
            if deadline is not None:
                _check_deadline(deadline, "document")
            os.replace(tmp_name, self._storage_path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise
        self._records = records
        self._signature = self._stat()

    def _stat(self) -> Optional[tuple[int, int, int]]:
        try:
            st = self._storage_path.stat()
        except FileNotFoundError:
            return None
        return (st.st_ino, st.st_mtime_ns, st.st_size)

    def _refresh(self, force: bool = False) -> None:
        """Reload the document if another writer has swapped it.

        Writers pass force=True under the file lock; the stat signature
        alone can miss a swap that reuses an inode within one mtime tick.
        """
        signature = self._stat()
        if not force and signature == self._signature:
            return
        self._records = (
            self._load_from_file(self._storage_path) if signature is not None else {}
        )
        self._signature = signature

    def _load_from_file(self, path: Path) -> dict[str, Registration]:
        """Load records, rejecting duplicate ids (fail-closed)."""
        with path.open("r", encoding="utf-8") as f:
            document = json.load(f)
        records: dict[str, Registration] = {}
        for data in document.get("registrations", []):
            record = Registration.from_dict(data)
            if record.id in records:
                raise ValueError(f"Duplicate registration ID on load: {record.id}")
            records[record.id] = record
        logger.debug("Loaded %d registrations from %s", len(records), path)
        return records


def _check_unique(records: dict[str, Registration], record: Registration) -> None:
    if record.id in records:
        raise ValueError(f"Registration already exists: {record.id}")
    for existing in records.values():
        if existing.prefix == record.prefix:
            raise ValueError(
                f"Prefix {record.prefix} is already registered as {existing.id}"
            )


def _check_version(
    records: dict[str, Registration], record_id: str, expected_version: int,
) -> None:
    current = records.get(record_id)
    actual = current.version if current is not None else None
    if actual != expected_version:
        raise ConcurrentModification(record_id, expected_version, actual)


def _check_deadline(deadline: float, what: str) -> None:
    if time.monotonic() > deadline:
        raise TimeoutError(f"write of {what} missed its deadline")


def _remaining(deadline: float) -> float:
    return max(0.0, deadline - time.monotonic())
