"""Actor resolution — maps an authenticated user id to an Actor.

Authentication itself happens outside the registry. By the time a user
id reaches this module it has been verified; the only decision made
here is the role, which comes from the configured admin list and never
from the request.
"""

from __future__ import annotations

from typing import Iterable

from nsregistry.models.actor import Actor, ActorRole


class ActorResolver:

    def __init__(self, admin_users: Iterable[str]) -> None:
        self._admins = frozenset(admin_users)

    def resolve(self, user_id: str) -> Actor:
        if not user_id or not user_id.strip():
            raise ValueError("Authenticated user id cannot be empty")
        role = ActorRole.ADMIN if user_id in self._admins else ActorRole.USER
        return Actor(identity=user_id, role=role)
