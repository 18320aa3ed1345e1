"""Persistence — registration records and the moderation audit trail."""

from nsregistry.persistence.event_log import EventKind, EventLog, EventRecord
from nsregistry.persistence.store import (
    InMemoryRegistrationStore,
    JsonFileRegistrationStore,
    RegistrationStore,
)

__all__ = [
    "EventKind",
    "EventLog",
    "EventRecord",
    "InMemoryRegistrationStore",
    "JsonFileRegistrationStore",
    "RegistrationStore",
]
