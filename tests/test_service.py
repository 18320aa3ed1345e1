"""Tests for RegistryService — proves the facade orchestrates moderation correctly.

Includes the end-to-end moderation scenarios:
- An admin approves a pending request; the requester cannot then
  delete the approved registration.
- A requester withdraws their own pending request; it is gone for good.
- A store timeout during approval commits nothing; a retry succeeds.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from nsregistry.config import RegistryConfig
from nsregistry.identity import ActorResolver
from nsregistry.invalidation import REGISTRY_COLLECTION_KEY
from nsregistry.models.actor import Actor, ActorRole
from nsregistry.models.registration import RegistrationState, ServerType
from nsregistry.persistence.event_log import EventKind, EventLog
from nsregistry.persistence.store import (
    InMemoryRegistrationStore,
    JsonFileRegistrationStore,
)
from nsregistry.service import RegistryService

CONFIG = RegistryConfig(admin_users=["bob", "dave"])
RESOLVER = ActorResolver(CONFIG.admin_users)
ALICE = RESOLVER.resolve("alice")
BOB = RESOLVER.resolve("bob")
CAROL = RESOLVER.resolve("carol")
DAVE = RESOLVER.resolve("dave")


class TimeoutOnceStore(InMemoryRegistrationStore):
    def __init__(self) -> None:
        super().__init__()
        self.fail_next = False

    def replace(self, record, expected_version, timeout):
        if self.fail_next:
            self.fail_next = False
            raise TimeoutError("store did not answer in time")
        super().replace(record, expected_version, timeout)


@pytest.fixture
def log() -> EventLog:
    return EventLog()


@pytest.fixture
def service(log: EventLog) -> RegistryService:
    return RegistryService(CONFIG, event_log=log)


def _submit(service: RegistryService, actor: Actor, prefix: str) -> str:
    result = service.submit_registration(actor, prefix)
    assert result.success, result.errors
    return result.data["id"]


class TestSubmission:
    def test_submit_creates_pending(self, service: RegistryService) -> None:
        result = service.submit_registration(
            ALICE, "/origins/alice.example.org", institution="Example U",
        )
        assert result.success
        assert result.data["state"] == "pending"
        assert result.data["type"] == "origin"
        assert result.data["admin_metadata"]["created_by"] == "alice"
        assert result.data["admin_metadata"]["approved_by"] is None
        assert result.data["admin_metadata"]["institution"] == "Example U"

    def test_submit_empty_prefix_fails(self, service: RegistryService) -> None:
        assert not service.submit_registration(ALICE, "  ").success

    def test_submit_duplicate_prefix_fails(self, service: RegistryService) -> None:
        _submit(service, ALICE, "/foo")
        result = service.submit_registration(CAROL, "/foo")
        assert not result.success

    def test_explicit_server_type(self, service: RegistryService) -> None:
        result = service.submit_registration(ALICE, "/foo", server_type=ServerType.CACHE)
        assert result.data["type"] == "cache"

    def test_submission_is_audited_and_signalled(self, service, log) -> None:
        _submit(service, ALICE, "/foo")
        assert log.events()[0].event_kind == EventKind.REGISTRATION_SUBMITTED
        assert service.invalidation.generation(REGISTRY_COLLECTION_KEY) == 1


class TestScenarios:
    def test_approve_then_creator_delete_is_invalid(self, service: RegistryService) -> None:
        r1 = _submit(service, ALICE, "/origins/r1")

        result = service.approve(BOB, r1)
        assert result.success
        assert result.data["state"] == "approved"
        assert result.data["admin_metadata"]["approved_by"] == "bob"

        result = service.delete(ALICE, r1)
        assert not result.success
        assert result.data["error"]["kind"] == "invalid_transition"
        assert result.data["error"]["state"] == "approved"
        assert result.data["error"]["action"] == "delete"

    def test_creator_withdraws_pending(self, service: RegistryService) -> None:
        r2 = _submit(service, CAROL, "/data/carol")

        result = service.delete(CAROL, r2)
        assert result.success
        assert result.data["deleted"]

        result = service.approve(BOB, r2)
        assert not result.success
        assert result.data["error"]["kind"] == "not_found"

        assert service.get_registration(BOB, r2).data["error"]["kind"] == "not_found"

    def test_store_timeout_then_retry(self) -> None:
        store = TimeoutOnceStore()
        service = RegistryService(CONFIG, store=store)
        r3 = _submit(service, ALICE, "/origins/r3")

        store.fail_next = True
        result = service.approve(BOB, r3)
        assert not result.success
        assert result.data["error"]["kind"] == "store_unavailable"
        assert result.data["error"]["retryable"]
        assert service.get_registration(BOB, r3).data["state"] == "pending"

        result = service.approve(BOB, r3)
        assert result.success
        assert result.data["state"] == "approved"


class TestModeration:
    def test_non_admin_approve_forbidden(self, service: RegistryService) -> None:
        rid = _submit(service, ALICE, "/foo")
        result = service.approve(ALICE, rid)
        assert not result.success
        assert result.data["error"]["kind"] == "forbidden"
        assert result.data["error"]["required_role"] == "admin"
        assert service.get_registration(ALICE, rid).data["state"] == "pending"

    def test_approve_twice_keeps_first_approver(self, service: RegistryService) -> None:
        rid = _submit(service, ALICE, "/foo")
        first = service.approve(BOB, rid)
        second = service.approve(DAVE, rid)
        assert first.success and second.success
        assert second.data["state"] == "approved"
        assert second.data["changed"] is False
        assert second.data["admin_metadata"]["approved_by"] == "bob"

    def test_reversal_by_another_admin(self, service: RegistryService) -> None:
        rid = _submit(service, ALICE, "/foo")
        service.deny(BOB, rid)
        result = service.approve(DAVE, rid)
        assert result.data["state"] == "approved"
        assert result.data["admin_metadata"]["approved_by"] == "dave"
        assert result.data["admin_metadata"]["denied_by"] is None

    def test_admin_deletes_denied(self, service: RegistryService) -> None:
        rid = _submit(service, ALICE, "/foo")
        service.deny(BOB, rid)
        assert service.delete(BOB, rid).success

    def test_stranger_cannot_delete(self, service: RegistryService) -> None:
        rid = _submit(service, ALICE, "/foo")
        result = service.delete(CAROL, rid)
        assert result.data["error"]["kind"] == "forbidden"

    def test_expected_version_guards_stale_action(self, service: RegistryService) -> None:
        rid = _submit(service, ALICE, "/foo")
        seen = service.get_registration(BOB, rid).data["version"]
        service.deny(DAVE, rid, expected_version=seen)
        result = service.approve(BOB, rid, expected_version=seen)
        assert result.data["error"]["kind"] == "concurrent_modification"


class TestQueries:
    def test_allowed_actions_per_actor(self, service: RegistryService) -> None:
        rid = _submit(service, ALICE, "/foo")
        assert service.get_registration(BOB, rid).data["allowed_actions"] == [
            "approve", "delete", "deny",
        ]
        assert service.get_registration(ALICE, rid).data["allowed_actions"] == ["delete"]
        assert service.get_registration(CAROL, rid).data["allowed_actions"] == []

    def test_list_filters(self, service: RegistryService) -> None:
        a = _submit(service, ALICE, "/origins/a")
        _submit(service, ALICE, "/caches/b")
        c = _submit(service, CAROL, "/c")
        service.approve(BOB, a)
        service.deny(BOB, c)

        everything = service.list_registrations(CAROL)
        assert everything.data["total"] == 3

        pending = service.list_registrations(BOB, RegistrationState.PENDING)
        assert [r["prefix"] for r in pending.data["registrations"]] == ["/caches/b"]

        origins = service.list_registrations(BOB, server_type=ServerType.ORIGIN)
        assert [r["id"] for r in origins.data["registrations"]] == [a]

    def test_generation_advances_on_mutation(self, service: RegistryService) -> None:
        rid = _submit(service, ALICE, "/foo")
        before = service.list_registrations(BOB).data["generation"]
        service.approve(BOB, rid)
        assert service.list_registrations(BOB).data["generation"] == before + 1

    def test_status_reports_store_failure(self) -> None:
        class UnreadableStore(InMemoryRegistrationStore):
            def list(self, state=None):
                raise OSError("disk gone")

        status = RegistryService(CONFIG, store=UnreadableStore()).status()
        assert status["registrations"]["error"]["kind"] == "store_unavailable"
        assert status["registrations"]["error"]["retryable"]

    def test_status_summary(self, service: RegistryService) -> None:
        rid = _submit(service, ALICE, "/foo")
        _submit(service, ALICE, "/bar")
        service.approve(BOB, rid)
        status = service.status()
        assert status["registrations"]["total"] == 2
        assert status["registrations"]["by_state"] == {
            "pending": 1, "approved": 1, "denied": 0,
        }
        assert status["events"] == 3
        assert status["audit_degraded"] is False


class TestNamespaceStatus:
    def test_unknown_prefix(self, service: RegistryService) -> None:
        result = service.check_namespace_status("/nope")
        assert result.data["error"]["kind"] == "not_found"

    def test_pending_requires_approval(self, service: RegistryService) -> None:
        _submit(service, ALICE, "/origins/o1")
        assert service.check_namespace_status("/origins/o1").data["approved"] is False

    def test_approved(self, service: RegistryService) -> None:
        rid = _submit(service, ALICE, "/origins/o1")
        service.approve(BOB, rid)
        assert service.check_namespace_status("/origins/o1").data["approved"] is True

    def test_approval_not_required_for_caches(self) -> None:
        config = RegistryConfig(admin_users=["bob"], require_cache_approval=False)
        service = RegistryService(config)
        _submit(service, ALICE, "/caches/c1")
        _submit(service, ALICE, "/origins/o1")
        assert service.check_namespace_status("/caches/c1").data["approved"] is True
        assert service.check_namespace_status("/origins/o1").data["approved"] is False

    def test_denied_never_passes(self) -> None:
        config = RegistryConfig(admin_users=["bob"], require_origin_approval=False)
        service = RegistryService(config)
        rid = _submit(service, ALICE, "/origins/o1")
        service.deny(Actor("bob", ActorRole.ADMIN), rid)
        assert service.check_namespace_status("/origins/o1").data["approved"] is False


class TestPersistence:
    def test_state_survives_restart(self, tmp_path: Path) -> None:
        db = tmp_path / "registrations.json"
        events = tmp_path / "events.jsonl"
        first = RegistryService(
            CONFIG, store=JsonFileRegistrationStore(db), event_log=EventLog(events),
        )
        rid = _submit(first, ALICE, "/origins/o1")
        first.approve(BOB, rid)

        second = RegistryService(
            CONFIG, store=JsonFileRegistrationStore(db), event_log=EventLog(events),
        )
        result = second.get_registration(CAROL, rid)
        assert result.data["state"] == "approved"
        assert result.data["admin_metadata"]["approved_by"] == "bob"
        assert second.status()["events"] == 2

    def test_two_services_share_files(self, tmp_path: Path) -> None:
        db = tmp_path / "registrations.json"
        events = tmp_path / "events.jsonl"
        a = RegistryService(
            CONFIG, store=JsonFileRegistrationStore(db), event_log=EventLog(events),
        )
        b = RegistryService(
            CONFIG, store=JsonFileRegistrationStore(db), event_log=EventLog(events),
        )
        rid = _submit(a, ALICE, "/origins/o1")

        assert a.approve(BOB, rid, expected_version=0).success
        result = b.deny(DAVE, rid, expected_version=0)
        assert result.data["error"]["kind"] == "concurrent_modification"

        other = _submit(a, CAROL, "/origins/o2")
        assert b.approve(BOB, other).success
        assert a.get_registration(BOB, other).data["state"] == "approved"

        assert b.deny(DAVE, rid).success
        reloaded = EventLog(events)
        assert reloaded.count == 5
        assert len({e.event_id for e in reloaded.events()}) == 5


class TestActorResolver:
    def test_role_from_admin_list(self) -> None:
        assert BOB.role == ActorRole.ADMIN
        assert ALICE.role == ActorRole.USER

    def test_blank_user_rejected(self) -> None:
        with pytest.raises(ValueError):
            RESOLVER.resolve("")
