# backend/app/services/program_validation_service.py
"""
Program-specific rules checked after eligibility and before conflicts.

Private lessons need an active instructor who teaches the instrument on the
requested day. Group registrations need an active, fully scheduled class
taught by the resolved instructor, with a free seat.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional

from ..core.config import settings
from ..core.enums import RegistrationType
from ..models.group_class import GroupClass
from ..models.instructor import Instructor
from .base import BaseService
from .registration_validation_service import ValidationResult

logger = logging.getLogger(__name__)


def _plain(value: Any) -> Any:
    return getattr(value, "value", value)


class ProgramValidationService(BaseService):
    def __init__(self, default_class_capacity: Optional[int] = None):
        super().__init__()
        self.default_class_capacity = default_class_capacity or settings.default_class_capacity

    @staticmethod
    def apply_group_class_defaults(
        data: Mapping[str, Any], group_class: GroupClass
    ) -> Dict[str, Any]:
        """
        Copy the class slot onto a GROUP payload.

        The class is authoritative for day, start time, length, instrument and
        title. Instructor and room are copied only when the payload has none, so
        a mismatched instructor is still reported by validate_registration.
        """
        merged = dict(data)
        merged["day"] = group_class.day
        merged["start_time"] = group_class.start_time
        merged["length"] = group_class.length
        merged["instructor_id"] = merged.get("instructor_id") or group_class.instructor_id
        merged["instrument"] = group_class.instrument
        merged["class_title"] = group_class.title
        if not merged.get("room_id"):
            merged["room_id"] = group_class.room_id
        return merged

    @staticmethod
    def resolve_room(instructor: Optional[Instructor], day: Optional[str]) -> Optional[str]:
        """The instructor's assigned room for ``day``, if any."""
        if instructor is None:
            return None
        return instructor.room_for(_plain(day))

    @BaseService.measure_operation("validate_program_rules")
    def validate_registration(
        self,
        data: Mapping[str, Any],
        group_class: Optional[GroupClass],
        instructor: Optional[Instructor],
        active_class_count: int = 0,
        *,
        skip_capacity_check: bool = False,
    ) -> ValidationResult:
        errors: List[str] = []
        registration_type = _plain(data.get("registration_type"))

        if instructor is None:
            errors.append("Instructor not found")
        elif not instructor.is_active:
            errors.append(f"Instructor {instructor.full_name} is not active")

        if registration_type == RegistrationType.PRIVATE.value and instructor is not None:
            instrument = data.get("instrument")
            if not instructor.teaches(instrument):
                errors.append(f"Instructor {instructor.full_name} does not teach {instrument}")
            day = _plain(data.get("day"))
            if not instructor.is_available_on(day):
                errors.append(f"Instructor {instructor.full_name} is not available on {day}")

        if registration_type == RegistrationType.GROUP.value:
            errors.extend(
                self._group_class_errors(
                    data, group_class, instructor, active_class_count, skip_capacity_check
                )
            )

        return ValidationResult.from_errors(errors)

    def _group_class_errors(
        self,
        data: Mapping[str, Any],
        group_class: Optional[GroupClass],
        instructor: Optional[Instructor],
        active_class_count: int,
        skip_capacity_check: bool,
    ) -> List[str]:
        if group_class is None:
            return [f"Class {data.get('class_id')} not found"]

        errors: List[str] = []
        if not group_class.is_active:
            errors.append(f"Class {group_class.title or group_class.id} is not active")

        missing = [
            label
            for label, value in (
                ("day", group_class.day),
                ("start time", group_class.start_time),
                ("length", group_class.length),
                ("title", group_class.title),
            )
            if not value
        ]
        if missing:
            errors.append(f"Class {group_class.id} is missing {', '.join(missing)}")

        if instructor is not None and group_class.instructor_id != instructor.id:
            errors.append(
                f"Class {group_class.title or group_class.id} is not taught by instructor {instructor.id}"
            )

        capacity = group_class.capacity(self.default_class_capacity)
        if not skip_capacity_check and active_class_count >= capacity:
            errors.append(
                f"Class {group_class.title or group_class.id} is full ({active_class_count}/{capacity})"
            )
        return errors
