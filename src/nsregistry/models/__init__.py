"""Core data models for the namespace registry."""

from nsregistry.models.actor import Action, Actor, ActorRole
from nsregistry.models.registration import (
    AdminMetadata,
    Registration,
    RegistrationState,
    ServerType,
)

__all__ = [
    "Action",
    "Actor",
    "ActorRole",
    "AdminMetadata",
    "Registration",
    "RegistrationState",
    "ServerType",
]
