"""Moderation state machine — enforces the registration transition rules.

    PENDING  --approve-->  APPROVED   stamps approved_by
    PENDING  --deny----->  DENIED     stamps denied_by
    PENDING  --delete--->  (removed)
    DENIED   --delete--->  (removed)
    APPROVED --approve-->  APPROVED   idempotent, nothing re-stamped
    DENIED   --approve-->  APPROVED   clears denied_by, stamps approved_by
    APPROVED --deny----->  DENIED     clears approved_by, stamps denied_by

Fail-closed: any (state, action) pair not listed raises
InvalidTransition. Deleting an approved registration is not a moderation
action and is always rejected here.

Pure computation: the input record is never mutated. Persistence and
notification are handled by the mutation coordinator.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Optional

from nsregistry.errors import InvalidTransition
from nsregistry.models.actor import Action, Actor
from nsregistry.models.registration import Registration, RegistrationState

# Target of a delete.
REMOVED = None

# Legal transitions: {(from_state, action): to_state or REMOVED}
_TRANSITIONS: dict[tuple[RegistrationState, Action], Optional[RegistrationState]] = {
    (RegistrationState.PENDING, Action.APPROVE): RegistrationState.APPROVED,
    (RegistrationState.PENDING, Action.DENY): RegistrationState.DENIED,
    (RegistrationState.PENDING, Action.DELETE): REMOVED,
    (RegistrationState.DENIED, Action.DELETE): REMOVED,
    (RegistrationState.APPROVED, Action.APPROVE): RegistrationState.APPROVED,
    (RegistrationState.DENIED, Action.APPROVE): RegistrationState.APPROVED,
    (RegistrationState.APPROVED, Action.DENY): RegistrationState.DENIED,
}


@dataclass(frozen=True)
class Transition:
    """Outcome of a legal transition.

    next_record is None when the registration is to be removed.
    changed is False for the idempotent re-approval, in which case
    next_record is the unchanged input.
    """
    action: Action
    previous: Registration
    next_record: Optional[Registration]
    changed: bool = True

    @property
    def removes(self) -> bool:
        return self.next_record is None


class ModerationStateMachine:
    """Computes the next registration for a moderation action."""

    @staticmethod
    def transition(
        record: Registration,
        action: Action,
        actor: Actor,
        now: Optional[datetime] = None,
    ) -> Transition:
        """Compute the result of applying an action to a record.

        Raises:
            InvalidTransition: If the action is not legal from the
                record's current state.
        """
        key = (record.state, action)
        if key not in _TRANSITIONS:
            allowed = sorted(
                a.value for a in ModerationStateMachine.allowed_actions(record.state)
            )
            raise InvalidTransition(action.value, record.state.value, allowed)

        target = _TRANSITIONS[key]
        if target is REMOVED:
            return Transition(action=action, previous=record, next_record=None)

        if target == record.state:
            return Transition(
                action=action, previous=record, next_record=record, changed=False,
            )

        if now is None:
            now = datetime.now(timezone.utc)

        if target == RegistrationState.APPROVED:
            metadata = replace(
                record.admin_metadata,
                approved_by=actor.identity, denied_by=None, updated_at=now,
            )
        else:
            metadata = replace(
                record.admin_metadata,
                approved_by=None, denied_by=actor.identity, updated_at=now,
            )

        return Transition(
            action=action,
            previous=record,
            next_record=record.evolve(state=target, admin_metadata=metadata),
        )

    @staticmethod
    def allowed_actions(state: RegistrationState) -> set[Action]:
        """Return the set of actions legal from the given state."""
        return {action for (s, action) in _TRANSITIONS if s == state}

    @staticmethod
    def is_terminal(state: RegistrationState) -> bool:
        """Check if a state is terminal (the request has been moderated)."""
        return state != RegistrationState.PENDING

