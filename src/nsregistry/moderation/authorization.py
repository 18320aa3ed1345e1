"""Authorization evaluator — who may do what to a registration.

Rules:
- APPROVE and DENY require the admin role.
- DELETE requires the admin role, or that the actor created the record
  (withdrawing one's own request).
- VIEW is always permitted.

Pure function of its inputs. Decisions are re-evaluated on every
attempt and never cached: roles can change between requests.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Union

from nsregistry.errors import Forbidden
from nsregistry.models.actor import Action, Actor, ActorRole
from nsregistry.models.registration import Registration


@dataclass(frozen=True)
class Permit:
    """The actor may perform the action."""

    @property
    def permitted(self) -> bool:
        return True


@dataclass(frozen=True)
class Deny:
    """The actor may not perform the action."""
    reason: str
    required_role: Optional[ActorRole] = None

    @property
    def permitted(self) -> bool:
        return False


Decision = Union[Permit, Deny]

_ADMIN_ONLY = frozenset({Action.APPROVE, Action.DENY})


class AuthorizationEvaluator:
    """Stateless permission check over the capability set.

    Safe to share across threads without synchronisation.
    """

    @staticmethod
    def evaluate(actor: Actor, action: Action, record: Registration) -> Decision:
        if action == Action.VIEW:
            return Permit()

        if action in _ADMIN_ONLY:
            if actor.is_admin:
                return Permit()
            return Deny("insufficient privilege", required_role=ActorRole.ADMIN)

        if action == Action.DELETE:
            if actor.is_admin or actor.identity == record.created_by:
                return Permit()
            return Deny(
                "only an admin or the requester may delete a registration",
                required_role=ActorRole.ADMIN,
            )

        return Deny(f"unknown action: {action}")

    @classmethod
    def require(cls, actor: Actor, action: Action, record: Registration) -> None:
        """Raise Forbidden unless the actor is permitted."""
        decision = cls.evaluate(actor, action, record)
        if isinstance(decision, Deny):
            raise Forbidden(
                action.value,
                decision.reason,
                decision.required_role.value if decision.required_role else None,
            )
