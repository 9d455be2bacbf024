"""Registration domain events and the outbox-backed publisher."""

from app.events.publisher import EventHandler, EventPublisher
from app.events.registration_events import (
    REGISTRATION_EVENT_TYPES,
    RegistrationCancelled,
    RegistrationCreated,
    RegistrationEvent,
    RegistrationFailed,
    RegistrationStatusChanged,
)

__all__ = [
    "EventHandler",
    "EventPublisher",
    "REGISTRATION_EVENT_TYPES",
    "RegistrationCancelled",
    "RegistrationCreated",
    "RegistrationEvent",
    "RegistrationFailed",
    "RegistrationStatusChanged",
]
