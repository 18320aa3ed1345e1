"""Actor model — the authenticated identity performing an action.

Actors are produced by the identity layer from an already-authenticated
user id. Nothing in the moderation core accepts a role from a caller.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass


class ActorRole(str, enum.Enum):
    """Registry role of an actor."""
    ADMIN = "admin"
    USER = "user"


class Action(str, enum.Enum):
    """Capability set an actor can exercise on a registration."""
    APPROVE = "approve"
    DENY = "deny"
    DELETE = "delete"
    VIEW = "view"


@dataclass(frozen=True)
class Actor:
    identity: str
    role: ActorRole = ActorRole.USER

    @property
    def is_admin(self) -> bool:
        return self.role == ActorRole.ADMIN
