"""Tests for the append-only moderation audit log."""

import json
from pathlib import Path

import pytest

from nsregistry.persistence.event_log import EventKind, EventLog, EventRecord


def _event(log: EventLog, record_id: str = "r1", kind: EventKind = EventKind.REGISTRATION_APPROVED) -> EventRecord:
    return EventRecord.create(
        event_id=log.next_event_id(),
        event_kind=kind,
        actor_id="bob",
        payload={"record_id": record_id, "prefix": "/foo"},
    )


class TestAppend:
    def test_append_and_filter(self) -> None:
        log = EventLog()
        log.append(_event(log, "r1", EventKind.REGISTRATION_SUBMITTED))
        log.append(_event(log, "r1", EventKind.REGISTRATION_APPROVED))
        log.append(_event(log, "r2", EventKind.REGISTRATION_DENIED))
        assert log.count == 3
        assert len(log.events(EventKind.REGISTRATION_DENIED)) == 1
        assert [e.event_kind for e in log.events_for("r1")] == [
            EventKind.REGISTRATION_SUBMITTED, EventKind.REGISTRATION_APPROVED,
        ]
        assert log.last_event.payload["record_id"] == "r2"

    def test_duplicate_id_rejected(self) -> None:
        log = EventLog()
        event = _event(log)
        log.append(event)
        with pytest.raises(ValueError, match="Duplicate"):
            log.append(event)

    def test_hash_is_stable(self) -> None:
        log = EventLog()
        event = _event(log)
        assert event.event_hash.startswith("sha256:")


class TestFilePersistence:
    def test_reload_continues_ids(self, tmp_path: Path) -> None:
        path = tmp_path / "events.jsonl"
        log = EventLog(storage_path=path)
        log.append(_event(log))
        log.append(_event(log))

        reloaded = EventLog(storage_path=path)
        assert reloaded.count == 2
        assert reloaded.next_event_id() == "EVT-00000003"

    def test_tampered_line_rejected(self, tmp_path: Path) -> None:
        path = tmp_path / "events.jsonl"
        log = EventLog(storage_path=path)
        log.append(_event(log))

        data = json.loads(path.read_text(encoding="utf-8"))
        data["actor_id"] = "mallory"
        path.write_text(json.dumps(data) + "\n", encoding="utf-8")

        with pytest.raises(ValueError, match="Integrity check failed"):
            EventLog(storage_path=path)


class TestSharedFile:
    def test_record_allocates_unique_ids_across_instances(self, tmp_path: Path) -> None:
        path = tmp_path / "events.jsonl"
        first = EventLog(storage_path=path)
        second = EventLog(storage_path=path)

        a = first.record(EventKind.REGISTRATION_APPROVED, "bob", {"record_id": "r1"})
        b = second.record(EventKind.REGISTRATION_DENIED, "dave", {"record_id": "r2"})
        c = first.record(EventKind.REGISTRATION_DELETED, "bob", {"record_id": "r2"})

        assert [a.event_id, b.event_id, c.event_id] == [
            "EVT-00000001", "EVT-00000002", "EVT-00000003",
        ]
        reloaded = EventLog(storage_path=path)
        assert reloaded.count == 3
        assert first.count == 3
        assert [e.actor_id for e in second.events()] == ["bob", "dave", "bob"]

    def test_incomplete_trailing_line_is_deferred(self, tmp_path: Path) -> None:
        path = tmp_path / "events.jsonl"
        log = EventLog(storage_path=path)
        log.record(EventKind.REGISTRATION_SUBMITTED, "alice", {"record_id": "r1"})
        with path.open("a", encoding="utf-8") as f:
            f.write('{"event_id": "EVT-0000')

        assert EventLog(storage_path=path).count == 1
