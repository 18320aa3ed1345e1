"""Append-only event log — the audit trail of registry moderation.

Every committed moderation decision produces an event record that is
appended to the log. Events are immutable once written. The log answers
"who approved, denied or deleted this prefix, and when" long after the
registration itself has changed or been removed.
"""

from __future__ import annotations

import contextlib
import enum
import hashlib
import json
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from nsregistry.persistence.file_lock import lock_path_for, locked


class EventKind(str, enum.Enum):
    """Classification of registry events."""
    REGISTRATION_SUBMITTED = "registration_submitted"
    REGISTRATION_APPROVED = "registration_approved"
    REGISTRATION_DENIED = "registration_denied"
    REGISTRATION_DELETED = "registration_deleted"


def _canonical_hash(
    event_id: str,
    event_kind: str,
    timestamp_utc: str,
    actor_id: str,
    payload: dict[str, Any],
) -> str:
    canonical = json.dumps(
        {
            "event_id": event_id,
            "event_kind": event_kind,
            "timestamp_utc": timestamp_utc,
            "actor_id": actor_id,
            "payload": payload,
        },
        sort_keys=True,
        ensure_ascii=False,
    ).encode("utf-8")
    return f"sha256:{hashlib.sha256(canonical).hexdigest()}"


@dataclass(frozen=True)
class EventRecord:
    """A single immutable event in the registry log."""
    event_id: str
    event_kind: EventKind
    timestamp_utc: str
    actor_id: str
    payload: dict[str, Any]
    event_hash: str  # SHA-256 of canonical JSON

    @staticmethod
    def create(
        event_id: str,
        event_kind: EventKind,
        actor_id: str,
        payload: dict[str, Any],
        timestamp_utc: Optional[datetime] = None,
    ) -> EventRecord:
        """Create a new event record with computed hash."""
        ts = timestamp_utc or datetime.now(timezone.utc)
        ts_str = ts.strftime("%Y-%m-%dT%H:%M:%SZ")
        return EventRecord(
            event_id=event_id,
            event_kind=event_kind,
            timestamp_utc=ts_str,
            actor_id=actor_id,
            payload=payload,
            event_hash=_canonical_hash(
                event_id, event_kind.value, ts_str, actor_id, payload,
            ),
        )


class EventLog:
    """Append-only event log with optional file persistence.

    Events can only be appended, never modified or deleted. The log can
    be persisted to a JSONL file (one JSON object per line) and loaded
    back for recovery. Appends are serialised, so concurrent moderators
    never interleave partial lines.

    With a storage path, several processes may share the file. Appends
    take the sidecar file lock and first read any lines other writers
    added, so `record` allocates ids that are unique across processes.
    """

    def __init__(self, storage_path: Optional[Path] = None) -> None:
        self._events: list[EventRecord] = []
        self._storage_path = storage_path
        self._lock_path = lock_path_for(storage_path) if storage_path else None
        self._event_ids: set[str] = set()
        self._lock = threading.Lock()
        self._counter = 0
        self._offset = 0

        self._refresh()

    def next_event_id(self) -> str:
        """Generate a monotonically increasing unique event ID."""
        with self._lock:
            self._refresh()
            self._counter += 1
            return f"EVT-{self._counter:08d}"

    def record(
        self,
        event_kind: EventKind,
        actor_id: str,
        payload: dict[str, Any],
    ) -> EventRecord:
        """Allocate an id, create the event and append it in one step."""
        with self._lock, self._file_lock():
            self._refresh()
            self._counter += 1
            event = EventRecord.create(
                event_id=f"EVT-{self._counter:08d}",
                event_kind=event_kind,
                actor_id=actor_id,
                payload=payload,
            )
            self._append_locked(event)
        return event

    def append(self, event: EventRecord) -> None:
        """Append an event to the log.

        Raises ValueError if event_id is a duplicate (replay protection).
        """
        with self._lock, self._file_lock():
            self._refresh()
            self._append_locked(event)

    def events(self, kind: Optional[EventKind] = None) -> list[EventRecord]:
        """Return events, optionally filtered by kind."""
        with self._lock:
            self._refresh()
            events = list(self._events)
        if kind is None:
            return events
        return [e for e in events if e.event_kind == kind]

    def events_for(self, record_id: str) -> list[EventRecord]:
        """Return the history of one registration, oldest first."""
        return [e for e in self.events() if e.payload.get("record_id") == record_id]

    @property
    def count(self) -> int:
        with self._lock:
            self._refresh()
            return len(self._events)

    @property
    def last_event(self) -> Optional[EventRecord]:
        with self._lock:
            self._refresh()
            return self._events[-1] if self._events else None

    def _file_lock(self):
        if self._lock_path is None:
            return contextlib.nullcontext()
        return locked(self._lock_path)

    def _append_locked(self, event: EventRecord) -> None:
        if event.event_id in self._event_ids:
            raise ValueError(f"Duplicate event ID: {event.event_id}")

        if self._storage_path:
            self._append_to_file(event)

        self._events.append(event)
        self._event_ids.add(event.event_id)
        self._counter = max(self._counter, len(self._events))

    def _append_to_file(self, event: EventRecord) -> None:
        """Append a single event to the JSONL file."""
        record = {
            "event_id": event.event_id,
            "event_kind": event.event_kind.value,
            "timestamp_utc": event.timestamp_utc,
            "actor_id": event.actor_id,
            "payload": event.payload,
            "event_hash": event.event_hash,
        }
        self._storage_path.parent.mkdir(parents=True, exist_ok=True)
        line = (json.dumps(record, sort_keys=True, ensure_ascii=False) + "\n").encode("utf-8")
        with self._storage_path.open("ab") as f:
            f.write(line)
            self._offset = f.tell()

    def _refresh(self) -> None:
        """Pick up events other writers appended since the last read."""
        if self._storage_path is None or not self._storage_path.exists():
            return
        if self._storage_path.stat().st_size == self._offset:
            return
        self._load_from_file(self._storage_path)
        self._counter = max(self._counter, len(self._events))

    def _load_from_file(self, path: Path) -> None:
        """Load events from a JSONL file with integrity verification.

        Reads from where the previous load stopped. A trailing line
        without its newline is an append still in progress and is left
        for the next read.

        Fail-closed: rejects tampered records (hash mismatch) and
        duplicate event IDs (replay protection on recovery).
        """
        with path.open("rb") as f:
            f.seek(self._offset)
            line_num = len(self._events)
            while True:
                raw = f.readline()
                if not raw.endswith(b"\n"):
                    break
                self._offset += len(raw)
                line = raw.decode("utf-8").strip()
                if not line:
                    continue
                line_num += 1
                data = json.loads(line)

                event_id = data["event_id"]
                if event_id in self._event_ids:
                    raise ValueError(
                        f"Duplicate event ID on recovery (line {line_num}): {event_id}"
                    )

                expected_hash = _canonical_hash(
                    data["event_id"],
                    data["event_kind"],
                    data["timestamp_utc"],
                    data["actor_id"],
                    data["payload"],
                )
                if data["event_hash"] != expected_hash:
                    raise ValueError(
                        f"Integrity check failed (line {line_num}): event {event_id} "
                        f"stored hash {data['event_hash']} != computed {expected_hash}"
                    )

                event = EventRecord(
                    event_id=data["event_id"],
                    event_kind=EventKind(data["event_kind"]),
                    timestamp_utc=data["timestamp_utc"],
                    actor_id=data["actor_id"],
                    payload=data["payload"],
                    event_hash=data["event_hash"],
                )
                self._events.append(event)
                self._event_ids.add(event.event_id)
