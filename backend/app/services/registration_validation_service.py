# backend/app/services/registration_validation_service.py
"""
Field- and rule-level validation of proposed registrations.

Pure and stateless: ``validate`` never touches storage and never raises for
bad input. Every failure is accumulated so the caller can show the complete
list in one round trip.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
import re
from typing import Any, List, Mapping, Optional

from ..core.constants import MAX_NOTES_LENGTH, VALID_LESSON_LENGTHS, VALID_TRIMESTERS, WEEKDAYS
from ..core.enums import RegistrationType, TransportationType
from .base import BaseService

logger = logging.getLogger(__name__)

SCHOOL_YEAR_PATTERN = re.compile(r"^\d{4}-\d{4}$")
START_TIME_PATTERN = re.compile(r"^(\d{1,2}):(\d{2})$")

# Required for PRIVATE registrations, in reporting order
PRIVATE_REQUIRED_FIELDS = (
    ("instructor_id", "Instructor ID"),
    ("instrument", "Instrument"),
    ("day", "Day"),
    ("start_time", "Start time"),
    ("length", "Lesson length"),
    ("transportation_type", "Transportation type"),
)


@dataclass(frozen=True)
class ValidationResult:
    is_valid: bool
    errors: List[str] = field(default_factory=list)

    @classmethod
    def from_errors(cls, errors: List[str]) -> "ValidationResult":
        return cls(is_valid=not errors, errors=list(errors))


def _value(data: Mapping[str, Any], key: str) -> Any:
    raw = data.get(key)
    raw = getattr(raw, "value", raw)
    if isinstance(raw, str):
        raw = raw.strip()
        return raw or None
    return raw


def is_valid_school_year(value: Any) -> bool:
    """``YYYY-YYYY`` where the second year is the first plus one."""
    if not isinstance(value, str) or not SCHOOL_YEAR_PATTERN.match(value):
        return False
    first, second = value.split("-")
    return int(second) == int(first) + 1


def is_valid_trimester(value: Any) -> bool:
    return getattr(value, "value", value) in VALID_TRIMESTERS


def is_valid_start_time(value: Any) -> bool:
    """24-hour ``HH:MM`` with hours 0-23 and minutes 0-59."""
    if not isinstance(value, str):
        return False
    match = START_TIME_PATTERN.match(value)
    if not match:
        return False
    hours, minutes = int(match.group(1)), int(match.group(2))
    return 0 <= hours <= 23 and 0 <= minutes <= 59


def coerce_length(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def is_valid_lesson_length(value: Any) -> bool:
    return coerce_length(value) in VALID_LESSON_LENGTHS


def is_valid_registration_id(registration_id: Any, registration_type: Any) -> bool:
    """
    Shape check for derived ids.

    GROUP ids have two parts (student, class); PRIVATE ids end with a weekday
    and an ``HH:MM`` start time.
    """
    if not isinstance(registration_id, str) or not registration_id:
        return False
    kind = getattr(registration_type, "value", registration_type)
    parts = registration_id.split("_")
    if kind == RegistrationType.GROUP.value:
        return len(parts) >= 2 and all(parts)
    if kind == RegistrationType.PRIVATE.value:
        return (
            len(parts) >= 4
            and all(parts)
            and parts[-2] in WEEKDAYS
            and is_valid_start_time(parts[-1])
        )
    return False


class RegistrationValidationService(BaseService):
    """Stateless validation of registration payloads."""

    @BaseService.measure_operation("validate_registration")
    def validate(self, data: Mapping[str, Any]) -> ValidationResult:
        errors: List[str] = []

        if not _value(data, "student_id"):
            errors.append("Student ID is required")

        registration_type = _value(data, "registration_type")
        if not registration_type:
            errors.append("Registration type is required")
        elif registration_type not in {t.value for t in RegistrationType}:
            errors.append(
                f"Registration type must be one of: {', '.join(t.value for t in RegistrationType)}"
            )

        is_private = registration_type == RegistrationType.PRIVATE.value
        if registration_type == RegistrationType.GROUP.value and not _value(data, "class_id"):
            errors.append("Class ID is required for group registrations")
        if is_private:
            for key, label in PRIVATE_REQUIRED_FIELDS:
                if _value(data, key) is None:
                    errors.append(f"{label} is required for private lessons")

        school_year = _value(data, "school_year")
        if not school_year:
            errors.append("School year is required")
        elif not is_valid_school_year(school_year):
            errors.append("School year must be in format YYYY-YYYY with consecutive years")

        if not is_valid_trimester(_value(data, "trimester")):
            errors.append(f"Trimester must be one of: {', '.join(VALID_TRIMESTERS)}")

        start_time = _value(data, "start_time")
        if is_private and start_time is not None and not is_valid_start_time(start_time):
            errors.append("Start time must be in HH:MM format (24-hour)")

        length = _value(data, "length")
        if length is not None and not is_valid_lesson_length(length):
            errors.append(
                "Lesson length must be one of: "
                f"{', '.join(str(v) for v in VALID_LESSON_LENGTHS)} minutes"
            )

        day = _value(data, "day")
        if day is not None and day not in WEEKDAYS:
            errors.append(f"Day must be one of: {', '.join(WEEKDAYS)}")

        transportation = _value(data, "transportation_type")
        if transportation is not None and transportation not in {t.value for t in TransportationType}:
            errors.append(
                "Transportation type must be one of: "
                f"{', '.join(t.value for t in TransportationType)}"
            )

        notes = data.get("notes")
        if isinstance(notes, str) and len(notes) > MAX_NOTES_LENGTH:
            errors.append(f"Notes must be at most {MAX_NOTES_LENGTH} characters")

        if errors:
            logger.debug(f"Registration payload rejected with {len(errors)} errors")
        return ValidationResult.from_errors(errors)
