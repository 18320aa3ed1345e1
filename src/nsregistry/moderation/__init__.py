"""Moderation core — authorization, state machine and mutation coordination."""

from nsregistry.moderation.authorization import AuthorizationEvaluator, Deny, Permit
from nsregistry.moderation.coordinator import MutationCoordinator, MutationResult
from nsregistry.moderation.locks import RecordLocks
from nsregistry.moderation.state_machine import ModerationStateMachine, Transition

__all__ = [
    "AuthorizationEvaluator",
    "Deny",
    "ModerationStateMachine",
    "MutationCoordinator",
    "MutationResult",
    "Permit",
    "RecordLocks",
    "Transition",
]
