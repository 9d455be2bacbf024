"""Pydantic request and response schemas for the registration API."""

from .registration import (
    HealthResponse,
    LessonScheduleEntry,
    RegistrationCancel,
    RegistrationCancelResponse,
    RegistrationCreate,
    RegistrationCreateResponse,
    RegistrationDetailsResponse,
    RegistrationResponse,
    RegistrationStatusResponse,
    RegistrationStatusUpdate,
)

__all__ = [
    "HealthResponse",
    "LessonScheduleEntry",
    "RegistrationCancel",
    "RegistrationCancelResponse",
    "RegistrationCreate",
    "RegistrationCreateResponse",
    "RegistrationDetailsResponse",
    "RegistrationResponse",
    "RegistrationStatusResponse",
    "RegistrationStatusUpdate",
]
