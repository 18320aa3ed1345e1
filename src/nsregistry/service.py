"""Registry service — unified facade for namespace registration moderation.

This is the primary interface for programmatic access to the registry.
It orchestrates:
- Registration intake (a new request enters as PENDING)
- Moderation (approve, deny, delete) through the mutation coordinator
- Queries (single record, filtered collection, prefix status)
- Audit trail and cache invalidation wiring

All operations produce typed results. Moderation errors never escape
the facade: a failed ServiceResult carries the error message in
`errors` and the structured error in `data["error"]`.
"""

from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from nsregistry import __version__
from nsregistry.config import RegistryConfig
from nsregistry.errors import ModerationError, NotFound, StoreUnavailable
from nsregistry.invalidation import REGISTRY_COLLECTION_KEY, InvalidationBus
from nsregistry.models.actor import Action, Actor
from nsregistry.models.registration import (
    AdminMetadata,
    Registration,
    RegistrationState,
    ServerType,
)
from nsregistry.moderation.authorization import AuthorizationEvaluator, Permit
from nsregistry.moderation.coordinator import MutationCoordinator
from nsregistry.moderation.locks import RecordLocks
from nsregistry.moderation.state_machine import ModerationStateMachine
from nsregistry.persistence.event_log import EventKind, EventLog
from nsregistry.persistence.store import InMemoryRegistrationStore, RegistrationStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ServiceResult:
    """Result of a service operation."""
    success: bool
    errors: list[str] = field(default_factory=list)
    data: dict[str, Any] = field(default_factory=dict)


def _failure(error: ModerationError) -> ServiceResult:
    return ServiceResult(success=False, errors=[str(error)], data={"error": error.to_dict()})


class RegistryService:
    """Namespace registry facade.

    Usage:
        config = RegistryConfig.from_config_dir(config_dir)
        service = RegistryService(config)
        actor = ActorResolver(config.admin_users).resolve(user_id)

        result = service.submit_registration(actor, "/foo/bar")
        result = service.approve(admin, result.data["id"])
        result = service.list_registrations(admin, RegistrationState.PENDING)

    Persistence (optional):
        service = RegistryService(config, store=JsonFileRegistrationStore(path),
                                  event_log=EventLog(log_path))
    """

    def __init__(
        self,
        config: Optional[RegistryConfig] = None,
        store: Optional[RegistrationStore] = None,
        event_log: Optional[EventLog] = None,
        invalidation: Optional[InvalidationBus] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._config = config or RegistryConfig()
        self._store = store if store is not None else InMemoryRegistrationStore()
        self._event_log = event_log
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._coordinator = MutationCoordinator(
            self._store,
            locks=RecordLocks(timeout=self._config.lock_timeout_seconds),
            invalidation=invalidation,
            event_log=event_log,
            store_timeout=self._config.store_timeout_seconds,
            clock=self._clock,
        )

    @property
    def invalidation(self) -> InvalidationBus:
        return self._coordinator.invalidation

    # ------------------------------------------------------------------
    # Intake
    # ------------------------------------------------------------------

    def submit_registration(
        self,
        actor: Actor,
        prefix: str,
        server_type: Optional[ServerType] = None,
        description: str = "",
        site_name: str = "",
        institution: str = "",
        security_contact: str = "",
    ) -> ServiceResult:
        """Create a new registration request in PENDING state."""
        if not prefix or not prefix.strip():
            return ServiceResult(success=False, errors=["Prefix cannot be empty"])

        now = self._clock()
        record = Registration(
            id=f"ns_{uuid.uuid4().hex[:12]}",
            prefix=prefix.strip(),
            type=server_type or ServerType.from_prefix(prefix.strip()),
            state=RegistrationState.PENDING,
            admin_metadata=AdminMetadata(
                created_by=actor.identity,
                created_at=now,
                updated_at=now,
                description=description,
                site_name=site_name,
                institution=institution,
                security_contact=security_contact,
            ),
        )

        try:
            self._store.add(record)
        except ValueError as e:
            return ServiceResult(success=False, errors=[str(e)])
        except OSError as e:
            logger.warning("Store write failed for new registration %s: %s", prefix, e)
            return _failure(StoreUnavailable(str(e)))

        data: dict[str, Any] = record.to_dict()
        warning = self._record_submission(actor, record)
        if warning:
            data["warning"] = warning
        logger.info("Registration %s submitted for %s by %s", record.id, record.prefix, actor.identity)
        self.invalidation.publish(REGISTRY_COLLECTION_KEY)
        return ServiceResult(success=True, data=data)

    # ------------------------------------------------------------------
    # Moderation
    # ------------------------------------------------------------------

    def approve(
        self, actor: Actor, record_id: str, expected_version: Optional[int] = None,
    ) -> ServiceResult:
        """Approve a pending or denied registration."""
        return self.moderate(actor, Action.APPROVE, record_id, expected_version)

    def deny(
        self, actor: Actor, record_id: str, expected_version: Optional[int] = None,
    ) -> ServiceResult:
        """Deny a pending or approved registration."""
        return self.moderate(actor, Action.DENY, record_id, expected_version)

    def delete(
        self, actor: Actor, record_id: str, expected_version: Optional[int] = None,
    ) -> ServiceResult:
        """Permanently remove a pending or denied registration."""
        return self.moderate(actor, Action.DELETE, record_id, expected_version)

    def moderate(
        self,
        actor: Actor,
        action: Action,
        record_id: str,
        expected_version: Optional[int] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> ServiceResult:
        try:
            result = self._coordinator.apply(
                actor, action, record_id,
                expected_version=expected_version,
                cancel_event=cancel_event,
            )
        except ModerationError as e:
            return _failure(e)
        return ServiceResult(success=True, data=result.to_dict())

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_registration(self, actor: Actor, record_id: str) -> ServiceResult:
        """Return one registration and the actions this actor may take on it."""
        try:
            record = self._store.get(record_id)
            if record is None:
                raise NotFound(record_id)
            AuthorizationEvaluator.require(actor, Action.VIEW, record)
        except ModerationError as e:
            return _failure(e)
        except OSError as e:
            return _failure(StoreUnavailable(str(e)))

        data = record.to_dict()
        data["allowed_actions"] = sorted(
            a.value for a in self._allowed_actions(actor, record)
        )
        return ServiceResult(success=True, data=data)

    def list_registrations(
        self,
        actor: Actor,
        state: Optional[RegistrationState] = None,
        server_type: Optional[ServerType] = None,
    ) -> ServiceResult:
        """Return the registration collection, optionally filtered."""
        try:
            records = self._store.list(state)
        except OSError as e:
            return _failure(StoreUnavailable(str(e)))

        results: list[dict[str, Any]] = []
        for record in sorted(records, key=lambda r: r.admin_metadata.created_at):
            if server_type is not None and record.type != server_type:
                continue
            if not isinstance(
                AuthorizationEvaluator.evaluate(actor, Action.VIEW, record), Permit,
            ):
                continue
            results.append(record.to_dict())

        return ServiceResult(
            success=True,
            data={
                "registrations": results,
                "total": len(results),
                "generation": self.invalidation.generation(REGISTRY_COLLECTION_KEY),
            },
        )

    def check_namespace_status(self, prefix: str) -> ServiceResult:
        """Report whether a prefix may be served.

        Approved registrations always pass. Origins and caches also pass
        while pending when approval is not required for their type.
        Denied registrations never pass.
        """
        try:
            record = self._store.find_by_prefix(prefix)
        except OSError as e:
            return _failure(StoreUnavailable(str(e)))
        if record is None:
            return _failure(NotFound(prefix))

        if record.state == RegistrationState.APPROVED:
            approved = True
        elif record.state == RegistrationState.DENIED:
            approved = False
        elif record.type == ServerType.ORIGIN:
            approved = not self._config.require_origin_approval
        elif record.type == ServerType.CACHE:
            approved = not self._config.require_cache_approval
        else:
            approved = False

        return ServiceResult(
            success=True,
            data={"prefix": prefix, "approved": approved, "state": record.state.value},
        )

    def status(self) -> dict[str, Any]:
        """Return registry-wide status summary.

        A store failure is reported in the summary, never raised.
        """
        counts: dict[str, int] = {s.value: 0 for s in RegistrationState}
        try:
            for record in self._store.list():
                counts[record.state.value] += 1
            registrations: dict[str, Any] = {
                "total": sum(counts.values()),
                "by_state": counts,
            }
        except OSError as e:
            logger.warning("Store read failed during status: %s", e)
            registrations = {"error": StoreUnavailable(str(e)).to_dict()}
        return {
            "version": __version__,
            "registrations": registrations,
            "events": self._event_log.count if self._event_log is not None else 0,
            "generation": self.invalidation.generation(REGISTRY_COLLECTION_KEY),
            "audit_degraded": self._coordinator.audit_degraded,
        }

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _allowed_actions(actor: Actor, record: Registration) -> set[Action]:
        allowed = ModerationStateMachine.allowed_actions(record.state)
        return {
            a for a in allowed
            if isinstance(AuthorizationEvaluator.evaluate(actor, a, record), Permit)
        }

    def _record_submission(self, actor: Actor, record: Registration) -> Optional[str]:
        """Record a submission event. Returns a warning string or None."""
        if self._event_log is None:
            return None
        try:
            self._event_log.record(
                event_kind=EventKind.REGISTRATION_SUBMITTED,
                actor_id=actor.identity,
                payload={
                    "record_id": record.id,
                    "prefix": record.prefix,
                    "type": record.type.value,
                },
            )
        except (ValueError, OSError) as e:
            logger.error("Audit append failed for %s: %s", record.id, e)
            return f"Audit degraded: {e}"
        return None
