"""Registration models — namespace prefix claims under moderation.

Registration lifecycle:
    PENDING → APPROVED
    PENDING → DENIED
    APPROVED ⇄ DENIED (moderation decisions are corrigible)
    PENDING / DENIED → removed (explicit delete only)

STRUCTURAL INVARIANT: `id`, `prefix` and `type` never change after
creation. Only the moderation state machine produces a new `state`.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Optional


class RegistrationState(str, enum.Enum):
    """Moderation state of a registration."""
    PENDING = "pending"
    APPROVED = "approved"
    DENIED = "denied"


class ServerType(str, enum.Enum):
    """Kind of entity that owns the registered prefix."""
    ORIGIN = "origin"
    CACHE = "cache"
    NAMESPACE = "namespace"

    @classmethod
    def from_prefix(cls, prefix: str) -> ServerType:
        """Infer the server type from the registry's prefix convention."""
        if prefix.startswith("/caches/"):
            return cls.CACHE
        if prefix.startswith("/origins/"):
            return cls.ORIGIN
        return cls.NAMESPACE


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


@dataclass(frozen=True)
class AdminMetadata:
    """Who asked for the prefix, and who moderated it.

    approved_by and denied_by are mutually exclusive and both are None
    while the registration is pending.
    """
    created_by: str
    created_at: datetime
    updated_at: datetime
    approved_by: Optional[str] = None
    denied_by: Optional[str] = None
    # Informational only; never consulted by moderation.
    description: str = ""
    site_name: str = ""
    institution: str = ""
    security_contact: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "created_by": self.created_by,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
            "approved_by": self.approved_by,
            "denied_by": self.denied_by,
            "description": self.description,
            "site_name": self.site_name,
            "institution": self.institution,
            "security_contact": self.security_contact,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AdminMetadata:
        return cls(
            created_by=data["created_by"],
            created_at=datetime.fromisoformat(data["created_at"]),
            updated_at=datetime.fromisoformat(data["updated_at"]),
            approved_by=data.get("approved_by"),
            denied_by=data.get("denied_by"),
            description=data.get("description", ""),
            site_name=data.get("site_name", ""),
            institution=data.get("institution", ""),
            security_contact=data.get("security_contact", ""),
        )


@dataclass(frozen=True)
class Registration:
    """A namespace prefix claim.

    Frozen: a transition produces a new Registration with a bumped
    version rather than mutating the stored one, so a failed write can
    never leave a half-applied record behind.
    """
    id: str
    prefix: str
    type: ServerType
    state: RegistrationState
    admin_metadata: AdminMetadata
    version: int = 0

    @property
    def created_by(self) -> str:
        return self.admin_metadata.created_by

    def evolve(self, **changes: Any) -> Registration:
        """Return a copy with the given fields replaced and version bumped."""
        changes.setdefault("version", self.version + 1)
        return replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "prefix": self.prefix,
            "type": self.type.value,
            "state": self.state.value,
            "admin_metadata": self.admin_metadata.to_dict(),
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Registration:
        return cls(
            id=data["id"],
            prefix=data["prefix"],
            type=ServerType(data["type"]),
            state=RegistrationState(data["state"]),
            admin_metadata=AdminMetadata.from_dict(data["admin_metadata"]),
            version=int(data.get("version", 0)),
        )
