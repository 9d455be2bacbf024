"""Typed registration domain events."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
import ulid


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


class RegistrationEvent(BaseModel):
    """Base class for registration domain events."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    event_id: str = Field(default_factory=lambda: str(ulid.ULID()))
    occurred_at: datetime = Field(default_factory=_now_utc)


class RegistrationCreated(RegistrationEvent):
    """Fired after a registration is persisted."""

    registration_id: str
    registration: Dict[str, Any]
    registered_by: str
    student: Optional[Dict[str, Any]] = None
    instructor: Optional[Dict[str, Any]] = None
    first_lesson: Optional[str] = None


class RegistrationCancelled(RegistrationEvent):
    """Fired after a registration is cancelled (soft) or deleted (hard)."""

    registration_id: str
    registration: Dict[str, Any]
    cancelled_by: str
    mode: Literal["soft", "hard"] = "soft"
    reason: Optional[str] = None
    refund_eligible: bool = False
    cancellation_fee: float = 0.0
    student: Optional[Dict[str, Any]] = None
    instructor: Optional[Dict[str, Any]] = None


class RegistrationFailed(RegistrationEvent):
    """Fired when a workflow fails after validation; audited only."""

    workflow: Literal["create", "cancel", "update_status"]
    actor_id: Optional[str] = None
    registration_id: Optional[str] = None
    student_id: Optional[str] = None
    error_code: str
    error_message: str
    details: Dict[str, Any] = Field(default_factory=dict)


class RegistrationStatusChanged(RegistrationEvent):
    registration_id: str
    previous_status: str
    new_status: str
    changed_by: str


REGISTRATION_EVENT_TYPES: List[type[RegistrationEvent]] = [
    RegistrationCreated,
    RegistrationCancelled,
    RegistrationFailed,
    RegistrationStatusChanged,
]
