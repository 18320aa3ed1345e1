"""Mutation coordinator — the only path by which a registration changes.

For one action on one record:
1. Take the per-record lock (bounded wait).
2. Load the record; NotFound if absent.
3. Authorize; Forbidden leaves the record untouched.
4. Compute the transition; InvalidTransition if illegal.
5. Commit through the store with a bounded timeout. Any store failure
   is StoreUnavailable and nothing is committed.
6. Record the audit event, release the lock, return the new state.
7. Publish the collection-stale signal.

Steps 1-4 only read. The coordinator never retries: one call, at most
one commit attempt. Retrying StoreUnavailable or ConcurrentModification
is the caller's decision.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from nsregistry.errors import (
    ConcurrentModification,
    Forbidden,
    InvalidTransition,
    MutationCancelled,
    NotFound,
    StoreUnavailable,
)
from nsregistry.invalidation import REGISTRY_COLLECTION_KEY, InvalidationBus
from nsregistry.models.actor import Action, Actor
from nsregistry.models.registration import Registration, RegistrationState
from nsregistry.moderation.authorization import AuthorizationEvaluator, Deny
from nsregistry.moderation.locks import RecordLocks
from nsregistry.moderation.state_machine import ModerationStateMachine, Transition
from nsregistry.persistence.event_log import EventKind, EventLog
from nsregistry.persistence.store import RegistrationStore

logger = logging.getLogger(__name__)

_EVENT_KINDS = {
    Action.APPROVE: EventKind.REGISTRATION_APPROVED,
    Action.DENY: EventKind.REGISTRATION_DENIED,
    Action.DELETE: EventKind.REGISTRATION_DELETED,
}


@dataclass(frozen=True)
class MutationResult:
    """Outcome of a committed moderation action.

    For a delete, state is None and record is the last stored version.
    changed is False for the idempotent re-approval.
    """
    record_id: str
    action: Action
    state: Optional[RegistrationState]
    record: Registration
    deleted: bool = False
    changed: bool = True
    warning: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "record_id": self.record_id,
            "action": self.action.value,
            "state": self.state.value if self.state is not None else None,
            "deleted": self.deleted,
            "changed": self.changed,
            "admin_metadata": self.record.admin_metadata.to_dict(),
            "version": self.record.version,
        }
        if self.warning:
            data["warning"] = self.warning
        return data


class MutationCoordinator:
    """Serialises, authorizes, applies and commits moderation actions."""

    def __init__(
        self,
        store: RegistrationStore,
        locks: Optional[RecordLocks] = None,
        invalidation: Optional[InvalidationBus] = None,
        event_log: Optional[EventLog] = None,
        store_timeout: float = 5.0,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        if store_timeout <= 0:
            raise ValueError("Store timeout must be positive")
        self._store = store
        self._locks = locks or RecordLocks()
        self._invalidation = invalidation or InvalidationBus()
        self._event_log = event_log
        self._store_timeout = store_timeout
        self._clock = clock or (lambda: datetime.now(timezone.utc))

        # Set when an audit append fails after a committed write. The
        # store is correct; the audit trail is missing an event.
        self.audit_degraded = False

    @property
    def invalidation(self) -> InvalidationBus:
        return self._invalidation

    def apply(
        self,
        actor: Actor,
        action: Action,
        record_id: str,
        expected_version: Optional[int] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> MutationResult:
        """Apply one moderation action to one registration.

        Args:
            actor: The authenticated actor.
            action: APPROVE, DENY or DELETE.
            record_id: Target registration.
            expected_version: If given, the version the caller last saw.
                The action is refused if the record has moved on.
            cancel_event: Set by the caller to abandon the action. Only
                honoured before the commit.

        Raises:
            NotFound, Forbidden, InvalidTransition, StoreUnavailable,
            ConcurrentModification, MutationCancelled.
        """
        with self._locks.hold(record_id):
            record = self._load(record_id)

            if expected_version is not None and record.version != expected_version:
                raise ConcurrentModification(record_id, expected_version, record.version)

            decision = AuthorizationEvaluator.evaluate(actor, action, record)
            if isinstance(decision, Deny):
                logger.warning(
                    "Denied %s on %s for %s: %s",
                    action.value, record_id, actor.identity, decision.reason,
                )
                raise Forbidden(
                    action.value,
                    decision.reason,
                    decision.required_role.value if decision.required_role else None,
                )

            try:
                transition = ModerationStateMachine.transition(
                    record, action, actor, now=self._clock(),
                )
            except InvalidTransition as e:
                logger.warning("Rejected %s on %s: %s", action.value, record_id, e)
                raise

            if cancel_event is not None and cancel_event.is_set():
                raise MutationCancelled(record_id)

            warning = None
            if transition.changed:
                self._commit(transition)
                warning = self._record_event(actor, transition)

        if transition.changed:
            logger.info(
                "%s %s (%s) by %s",
                action.value, record_id, record.prefix, actor.identity,
            )
        self._invalidation.publish(REGISTRY_COLLECTION_KEY)

        final = transition.next_record or transition.previous
        return MutationResult(
            record_id=record_id,
            action=action,
            state=None if transition.removes else final.state,
            record=final,
            deleted=transition.removes,
            changed=transition.changed,
            warning=warning,
        )

    def _load(self, record_id: str) -> Registration:
        try:
            record = self._store.get(record_id)
        except OSError as e:
            logger.exception("Failed to load %s", record_id)
            raise StoreUnavailable(str(e)) from e
        if record is None:
            raise NotFound(record_id)
        return record

    def _commit(self, transition: Transition) -> None:
        """Write the transition. Raises StoreUnavailable on any failure."""
        previous = transition.previous
        try:
            if transition.removes:
                self._store.remove(previous.id, previous.version, self._store_timeout)
            else:
                self._store.replace(
                    transition.next_record, previous.version, self._store_timeout,
                )
        except OSError as e:
            logger.warning("Store write failed for %s: %s", previous.id, e)
            raise StoreUnavailable(str(e)) from e

    def _record_event(self, actor: Actor, transition: Transition) -> Optional[str]:
        """Append an audit event. Returns a warning string or None.

        The write is already committed, so an audit failure degrades
        rather than fails the call.
        """
        if self._event_log is None:
            return None
        record = transition.previous
        try:
            self._event_log.record(
                event_kind=_EVENT_KINDS[transition.action],
                actor_id=actor.identity,
                payload={
                    "record_id": record.id,
                    "prefix": record.prefix,
                    "from_state": record.state.value,
                    "to_state": (
                        transition.next_record.state.value
                        if transition.next_record is not None else None
                    ),
                },
            )
        except (ValueError, OSError) as e:
            self.audit_degraded = True
            logger.error("Audit append failed for %s: %s", record.id, e)
            return f"Audit degraded: {e}; change committed but not recorded in event log"
        return None
