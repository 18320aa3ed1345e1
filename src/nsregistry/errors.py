"""Moderation error taxonomy.

Every failed moderation call ends in exactly one of these errors. Each
carries enough detail (current state, attempted action, missing role)
for a caller to render a precise message, and a stable `kind` code for
the response boundary.

Retry guidance:
- NotFound, Forbidden: never retried.
- InvalidTransition: re-fetch state, then decide on a different action.
- StoreUnavailable, ConcurrentModification: safe to retry with backoff;
  nothing was committed. Retries belong to the caller, never the core.
"""

from __future__ import annotations

from typing import Any, Optional


class ModerationError(Exception):
    """Base class for all moderation failures."""

    kind = "moderation_error"
    retryable = False

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "message": str(self), "retryable": self.retryable}


class NotFound(ModerationError):
    kind = "not_found"

    def __init__(self, record_id: str) -> None:
        super().__init__(f"Registration not found: {record_id}")
        self.record_id = record_id

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "record_id": self.record_id}


class Forbidden(ModerationError):
    kind = "forbidden"

    def __init__(
        self,
        action: str,
        reason: str,
        required_role: Optional[str] = None,
    ) -> None:
        super().__init__(f"Forbidden to {action}: {reason}")
        self.action = action
        self.reason = reason
        self.required_role = required_role

    def to_dict(self) -> dict[str, Any]:
        return {
            **super().to_dict(),
            "action": self.action,
            "reason": self.reason,
            "required_role": self.required_role,
        }


class InvalidTransition(ModerationError):
    kind = "invalid_transition"

    def __init__(self, action: str, state: str, allowed: Optional[list[str]] = None) -> None:
        allowed = allowed or []
        super().__init__(
            f"Cannot {action} a registration in state {state}. "
            f"Allowed from {state}: [{', '.join(allowed)}]"
        )
        self.action = action
        self.state = state
        self.allowed = allowed

    def to_dict(self) -> dict[str, Any]:
        return {
            **super().to_dict(),
            "action": self.action,
            "state": self.state,
            "allowed": list(self.allowed),
        }


class StoreUnavailable(ModerationError):
    kind = "store_unavailable"
    retryable = True

    def __init__(self, reason: str) -> None:
        super().__init__(f"Registration store unavailable: {reason}")
        self.reason = reason


class ConcurrentModification(ModerationError):
    kind = "concurrent_modification"
    retryable = True

    def __init__(
        self,
        record_id: str,
        expected_version: int,
        actual_version: Optional[int],
    ) -> None:
        super().__init__(
            f"Registration {record_id} changed concurrently: "
            f"expected version {expected_version}, found {actual_version}"
        )
        self.record_id = record_id
        self.expected_version = expected_version
        self.actual_version = actual_version

    def to_dict(self) -> dict[str, Any]:
        return {
            **super().to_dict(),
            "record_id": self.record_id,
            "expected_version": self.expected_version,
            "actual_version": self.actual_version,
        }


class MutationCancelled(ModerationError):
    """The caller went away before the write was committed."""

    kind = "cancelled"
    retryable = True

    def __init__(self, record_id: str) -> None:
        super().__init__(f"Mutation of {record_id} cancelled before commit")
        self.record_id = record_id
