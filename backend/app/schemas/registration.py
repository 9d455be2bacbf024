# backend/app/schemas/registration.py
"""
Registration schemas for the lesson registration API.

Request models only shape the payload. Required fields, formats and allowed
values are checked by RegistrationValidationService so that every problem
is reported together; a request missing several fields therefore still
parses and fails later with the full error list.
"""

from datetime import date
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import Field

from ..core.constants import MAX_REASON_LENGTH
from ..core.enums import RegistrationStatus
from ._strict_base import StrictModel, StrictRequestModel


class RegistrationCreate(StrictRequestModel):
    """Request body for ``POST /api/registrations``."""

    student_id: Optional[str] = None
    registration_type: Optional[str] = Field(None, description="group or private")
    class_id: Optional[str] = None
    instructor_id: Optional[str] = None
    instrument: Optional[str] = None
    day: Optional[str] = Field(None, description="Monday through Friday")
    start_time: Optional[str] = Field(None, description="24-hour HH:MM")
    length: Optional[Union[int, str]] = Field(None, description="15, 30, 45 or 60 minutes")
    room_id: Optional[str] = None
    transportation_type: Optional[str] = None
    notes: Optional[str] = None
    school_year: Optional[str] = Field(None, description="YYYY-YYYY; defaults to the current term")
    trimester: Optional[str] = Field(None, description="Fall, Winter or Spring")
    expected_start_date: Optional[date] = None
    skip_capacity_check: bool = Field(False, description="Admin override for full classes")

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True, exclude={"skip_capacity_check"})


class RegistrationCancel(StrictRequestModel):
    reason: Optional[str] = Field(None, max_length=MAX_REASON_LENGTH)
    manager_approved: bool = False


class RegistrationStatusUpdate(StrictRequestModel):
    status: RegistrationStatus


class RegistrationResponse(StrictModel):
    id: str
    student_id: str
    instructor_id: Optional[str] = None
    class_id: Optional[str] = None
    class_title: Optional[str] = None
    registration_type: str
    day: Optional[str] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    length: Optional[int] = None
    room_id: Optional[str] = None
    instrument: Optional[str] = None
    transportation_type: Optional[str] = None
    notes: Optional[str] = None
    school_year: str
    trimester: str
    status: str
    is_active: bool
    expected_start_date: Optional[str] = None
    lesson_cost: Optional[float] = None
    registered_by: Optional[str] = None
    registered_at: Optional[str] = None
    status_changed_at: Optional[str] = None
    cancelled_by: Optional[str] = None
    cancellation_reason: Optional[str] = None


class LessonScheduleEntry(StrictModel):
    lesson_number: int
    date: str
    start_time: Optional[str] = None
    length: Optional[int] = None
    expected_end_time: Optional[str] = None


class RegistrationCreateResponse(StrictModel):
    success: bool
    registration: RegistrationResponse
    enrollment_info: Dict[str, Any]
    lesson_schedule: List[LessonScheduleEntry]


class RegistrationCancelResponse(StrictModel):
    """Either a completed cancellation or a pending-approval result."""

    success: bool
    status: Optional[Literal["pending_approval"]] = None
    approval_required: bool = False
    message: Optional[str] = None
    registration_id: Optional[str] = None
    policy: Optional[Dict[str, Any]] = None
    cancellation_info: Optional[Dict[str, Any]] = None
    refund_eligible: Optional[bool] = None
    cancellation_fee: Optional[float] = None


class RegistrationStatusResponse(StrictModel):
    success: bool
    registration: RegistrationResponse


class RegistrationDetailsResponse(StrictModel):
    registration: RegistrationResponse
    student: Optional[Dict[str, Any]] = None
    instructor: Optional[Dict[str, Any]] = None
    group_class: Optional[Dict[str, Any]] = None
    room: Optional[Dict[str, Any]] = None
    lesson_schedule: List[LessonScheduleEntry]
    total_cost: float
    next_lesson_date: Optional[str] = None
    requires_transportation: bool
    can_be_modified: bool


class HealthResponse(StrictModel):
    healthy: bool
    repositories: Dict[str, Dict[str, Any]]
    cache: Dict[str, Any]
    checked_at: str
