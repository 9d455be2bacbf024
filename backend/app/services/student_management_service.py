# backend/app/services/student_management_service.py
"""
Enrollment eligibility checks for students.

A student may enroll when their age is inside the configured bounds, their
grade is a known level, and at least one parent can be reached by email or
phone. All failures are collected and returned together.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
import logging
import re
from typing import Any, Dict, List, Optional, Sequence

from ..core.config import settings
from ..core.constants import GRADE_LEVELS
from ..core.enums import TransportationType
from ..models.student import Parent, Student
from .base import BaseService

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


@dataclass(frozen=True)
class EligibilityResult:
    is_eligible: bool
    errors: List[str] = field(default_factory=list)
    age: Optional[int] = None
    permission_requirements: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_eligible": self.is_eligible,
            "errors": list(self.errors),
            "age": self.age,
            "permission_requirements": list(self.permission_requirements),
        }


class StudentManagementService(BaseService):
    """Eligibility rules applied before a student is registered."""

    def __init__(self, min_age: Optional[int] = None, max_age: Optional[int] = None):
        super().__init__()
        self.min_age = settings.min_student_age if min_age is None else min_age
        self.max_age = settings.max_student_age if max_age is None else max_age

    @BaseService.measure_operation("validate_enrollment_eligibility")
    def validate_enrollment_eligibility(
        self,
        student: Student,
        parents: Sequence[Parent],
        today: date,
        transportation_type: Optional[str] = None,
    ) -> EligibilityResult:
        errors: List[str] = []

        age = student.age_on(today)
        if age is not None and not (self.min_age <= age <= self.max_age):
            errors.append(
                f"Student age {age} is outside the allowed range "
                f"{self.min_age}-{self.max_age}"
            )

        if student.grade is not None and student.grade not in GRADE_LEVELS:
            errors.append(
                f"Invalid grade '{student.grade}'; must be one of {', '.join(GRADE_LEVELS)}"
            )

        if not any(parent.has_contact() for parent in parents):
            errors.append("At least one parent with an email address or phone number is required")

        for parent in parents:
            if parent.email and not EMAIL_PATTERN.match(parent.email.strip()):
                errors.append(f"Parent {parent.full_name} has an invalid email address")

        if errors:
            self.logger.info(f"Student {student.id} not eligible: {errors}")

        return EligibilityResult(
            is_eligible=not errors,
            errors=errors,
            age=age,
            permission_requirements=self.get_permission_requirements(transportation_type),
        )

    @staticmethod
    def get_permission_requirements(transportation_type: Optional[str] = None) -> List[str]:
        """Signed permissions the family must provide for this registration."""
        requirements = ["media_release"]
        if getattr(transportation_type, "value", transportation_type) == TransportationType.BUS.value:
            requirements.append("transportation_permission")
        return requirements
