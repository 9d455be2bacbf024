# backend/app/services/registration_service.py
"""
Registration Service

Orchestrates the registration workflows on top of a UnitOfWork:

process_registration:
    validate -> resolve student/instructor/class concurrently -> eligibility ->
    program rules -> conflict check -> persist -> publish (audit, email) -> result

cancel_registration:
    load -> cancellation policy -> soft cancel or hard delete -> publish -> result

Validation failures have no side effects at all: no repository call, no
event. Later failures publish RegistrationFailed for the audit trail.
Audit and email run as event handlers fed from the event outbox; their
failures are retried by the outbox worker and never reach callers.
"""

from __future__ import annotations

import asyncio
from datetime import date, datetime, timezone
import logging
from typing import Any, Callable, Dict, List, Mapping, Optional

import pytz

from ..core.config import settings
from ..core.enums import RegistrationStatus, RegistrationType
from ..core.exceptions import (
    ApprovalRequiredException,
    BusinessRuleException,
    DomainException,
    EligibilityException,
    NotFoundException,
    RegistrationConflictException,
    ValidationException,
)
from ..events.publisher import EventPublisher
from ..events.registration_events import (
    RegistrationCancelled,
    RegistrationCreated,
    RegistrationFailed,
    RegistrationStatusChanged,
)
from ..models.registration import Registration
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.event_outbox_repository import EventOutboxRepository
from ..repositories.unit_of_work import UnitOfWork
from .base import BaseService
from .cancellation_policy import CancellationDecision, CancellationPolicy
from .conflict_checker import ConflictChecker
from .program_validation_service import ProgramValidationService
from .registration_validation_service import RegistrationValidationService
from .student_management_service import StudentManagementService

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

_OUTCOMES = (
    (ValidationException, "validation"),
    (NotFoundException, "not_found"),
    (EligibilityException, "eligibility"),
    (RegistrationConflictException, "conflict"),
    (BusinessRuleException, "business_rule"),
)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _outcome_for(exc: Exception) -> str:
    for exc_type, label in _OUTCOMES:
        if isinstance(exc, exc_type):
            return label
    return "error"


def _plain(value: Any) -> Any:
    return getattr(value, "value", value)


class RegistrationService(BaseService):
    """
    Application service for the registration and cancellation workflows.

    Every collaborator is injectable; defaults come from settings.
    """

    def __init__(
        self,
        uow: UnitOfWork,
        publisher: Optional[EventPublisher] = None,
        clock: Optional[Clock] = None,
        *,
        validator: Optional[RegistrationValidationService] = None,
        conflict_checker: Optional[ConflictChecker] = None,
        student_management: Optional[StudentManagementService] = None,
        program_validation: Optional[ProgramValidationService] = None,
        cancellation_policy: Optional[CancellationPolicy] = None,
        cancellation_mode: Optional[str] = None,
    ):
        super().__init__()
        self.uow = uow
        self.publisher = publisher or EventPublisher(EventOutboxRepository(uow.session_factory))
        self.clock = clock or _utc_now
        self.validator = validator or RegistrationValidationService()
        self.conflict_checker = conflict_checker or ConflictChecker()
        self.student_management = student_management or StudentManagementService()
        self.program_validation = program_validation or ProgramValidationService()
        self.cancellation_policy = cancellation_policy or CancellationPolicy()
        self.cancellation_mode = cancellation_mode or settings.cancellation_mode
        self.tz = pytz.timezone(settings.school_timezone)

    # Registration

    @BaseService.measure_operation("process_registration")
    async def process_registration(
        self,
        data: Mapping[str, Any],
        user_id: str,
        *,
        skip_capacity_check: bool = False,
    ) -> Dict[str, Any]:
        """
        Register a student into a slot.

        Returns:
            ``{success, registration, enrollment_info, lesson_schedule}``

        Raises:
            ValidationException: Payload invalid; nothing was read or written
            NotFoundException: Student, instructor or class missing
            EligibilityException: Student may not enroll
            BusinessRuleException: Program rules rejected the request
            RegistrationConflictException: Slot collides with an active registration
            StorageException: Backing store failure
        """
        payload = self._normalize_payload(data)

        validation = self.validator.validate(payload)
        if not validation.is_valid:
            prometheus_metrics.record_registration_outcome("create", "validation")
            raise ValidationException("Registration validation failed", errors=validation.errors)

        try:
            result = await self._register(payload, user_id, skip_capacity_check)
        except Exception as e:
            prometheus_metrics.record_registration_outcome("create", _outcome_for(e))
            await self._publish_failure("create", e, user_id, student_id=payload.get("student_id"))
            raise

        prometheus_metrics.record_registration_outcome("create", "success")
        return result

    async def _register(
        self, payload: Dict[str, Any], user_id: str, skip_capacity_check: bool
    ) -> Dict[str, Any]:
        student_id = payload["student_id"]
        is_group = payload["registration_type"] == RegistrationType.GROUP.value

        # Step 2: resolve related entities concurrently
        family, instructor, group_class = await asyncio.gather(
            self.uow.get_family_info(student_id),
            self._get_optional(self.uow.instructors, payload.get("instructor_id")),
            self._get_optional(self.uow.classes, payload.get("class_id") if is_group else None),
        )
        if family is None:
            raise NotFoundException(f"Student {student_id} not found", code="STUDENT_NOT_FOUND")
        if is_group:
            if group_class is None:
                raise NotFoundException(
                    f"Class {payload['class_id']} not found", code="CLASS_NOT_FOUND"
                )
            payload = self.program_validation.apply_group_class_defaults(payload, group_class)
            if instructor is None and payload.get("instructor_id"):
                instructor = await asyncio.to_thread(
                    self.uow.instructors.get_by_id, payload["instructor_id"]
                )
        if instructor is None:
            raise NotFoundException(
                f"Instructor {payload.get('instructor_id')} not found",
                code="INSTRUCTOR_NOT_FOUND",
            )

        # Step 3: eligibility
        eligibility = self.student_management.validate_enrollment_eligibility(
            family.student, family.parents, self._today(), payload.get("transportation_type")
        )
        if not eligibility.is_eligible:
            raise EligibilityException(eligibility.errors)

        # Step 4: program rules
        if not payload.get("room_id"):
            payload["room_id"] = self.program_validation.resolve_room(instructor, payload.get("day"))
        active_class_count = 0
        if is_group:
            active_class_count = await asyncio.to_thread(
                self.uow.registrations.count_active_in_class,
                payload["class_id"],
                payload["school_year"],
                payload["trimester"],
            )
        program = self.program_validation.validate_registration(
            payload,
            group_class,
            instructor,
            active_class_count,
            skip_capacity_check=skip_capacity_check,
        )
        if not program.is_valid:
            raise BusinessRuleException(
                f"Program requirements not met: {', '.join(program.errors)}",
                code="PROGRAM_VALIDATION_FAILED",
                details={"errors": program.errors},
            )

        # Step 5: conflict check against this unit's view of the partition.
        # The repository repeats it on a fresh snapshot under the slot lock.
        existing = await asyncio.to_thread(
            self.uow.registrations.find_active_for_partition,
            payload["school_year"],
            payload["trimester"],
        )
        conflicts = self.conflict_checker.check_conflicts(
            payload, existing, group_class=group_class, skip_capacity_check=skip_capacity_check
        )
        if conflicts.has_conflicts:
            raise RegistrationConflictException(conflicts.to_dicts())

        # Step 6: persist
        payload["lesson_cost"] = self._lesson_cost(payload, group_class)
        payload.setdefault("expected_start_date", None)
        payload["expected_start_date"] = payload["expected_start_date"] or self._today()
        registration = await asyncio.to_thread(
            self.uow.registrations.create,
            payload,
            user_id,
            group_class=group_class,
            skip_capacity_check=skip_capacity_check,
            registered_at=self.clock(),
        )

        lessons = settings.lessons_per_trimester
        schedule = registration.generate_lesson_schedule(lessons)
        registration_dict = registration.to_dict()

        # Steps 7-8: audit and notifications are event handlers
        await self.publisher.publish(
            RegistrationCreated(
                registration_id=registration.id,
                registration=registration_dict,
                registered_by=user_id,
                student=family.student.to_dict(),
                instructor=instructor.to_dict(),
                first_lesson=schedule[0]["date"] if schedule else None,
            )
        )

        self.log_operation("registration_created", registration_id=registration.id)
        return {
            "success": True,
            "registration": registration_dict,
            "enrollment_info": {
                **eligibility.to_dict(),
                "student_name": family.student.full_name,
                "instructor_name": instructor.full_name,
                "class_title": registration.class_title,
                "lessons_in_trimester": lessons,
                "total_cost": registration.calculate_lesson_cost(lessons),
                "requires_transportation": registration.requires_transportation(),
            },
            "lesson_schedule": schedule,
        }

    # Cancellation

    @BaseService.measure_operation("cancel_registration")
    async def cancel_registration(
        self,
        registration_id: str,
        reason: Optional[str],
        user_id: str,
        *,
        manager_approved: bool = False,
        school_year: Optional[str] = None,
        trimester: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Cancel a registration according to the cancellation policy.

        ``school_year``/``trimester`` pin the term when the same registration
        id exists in more than one.

        Returns:
            ``{success, cancellation_info, refund_eligible, cancellation_fee}``, or
            ``{success: False, status: "pending_approval", approval_required: True}``
            when the request falls inside the no-cancel window. The pending
            result performs no mutation.
        """
        try:
            result = await self._cancel(
                registration_id, reason, user_id, manager_approved, school_year, trimester
            )
        except ApprovalRequiredException as e:
            prometheus_metrics.record_registration_outcome("cancel", "pending_approval")
            self.logger.info(f"Cancellation of {registration_id} awaits managerial approval")
            return {
                "success": False,
                "status": "pending_approval",
                "approval_required": True,
                "message": e.message,
                "registration_id": registration_id,
                "policy": e.details,
            }
        except Exception as e:
            prometheus_metrics.record_registration_outcome("cancel", _outcome_for(e))
            await self._publish_failure("cancel", e, user_id, registration_id=registration_id)
            raise

        prometheus_metrics.record_registration_outcome("cancel", "success")
        return result

    async def _cancel(
        self,
        registration_id: str,
        reason: Optional[str],
        user_id: str,
        manager_approved: bool,
        school_year: Optional[str],
        trimester: Optional[str],
    ) -> Dict[str, Any]:
        registration = await self._require_registration(registration_id, school_year, trimester)
        partition = {"school_year": registration.school_year, "trimester": registration.trimester}

        decision = self._check_cancellation_policy(registration, manager_approved)

        if self.cancellation_mode == "hard":
            await asyncio.to_thread(
                self.uow.registrations.delete, registration_id, user_id, **partition
            )
            cancelled = registration
        else:
            cancelled = await asyncio.to_thread(
                self.uow.registrations.cancel, registration_id, user_id, reason, **partition
            )

        student, instructor = await asyncio.gather(
            self._get_optional(self.uow.students, registration.student_id),
            self._get_optional(self.uow.instructors, registration.instructor_id),
        )
        registration_dict = cancelled.to_dict()
        cancelled_at = self.clock()

        await self.publisher.publish(
            RegistrationCancelled(
                registration_id=registration_id,
                registration=registration_dict,
                cancelled_by=user_id,
                mode=self.cancellation_mode,
                reason=reason,
                refund_eligible=decision.refund_eligible,
                cancellation_fee=decision.cancellation_fee,
                student=student.to_dict() if student else None,
                instructor=instructor.to_dict() if instructor else None,
            )
        )

        self.log_operation("registration_cancelled", registration_id=registration_id)
        return {
            "success": True,
            "cancellation_info": {
                "registration_id": registration_id,
                "cancelled_by": user_id,
                "cancelled_at": cancelled_at.isoformat(),
                "reason": reason,
                "mode": self.cancellation_mode,
                "manager_approved": manager_approved,
                "registration": registration_dict,
                "policy": decision.to_payload(),
            },
            "refund_eligible": decision.refund_eligible,
            "cancellation_fee": decision.cancellation_fee,
        }

    def _check_cancellation_policy(
        self, registration: Registration, manager_approved: bool
    ) -> CancellationDecision:
        decision = self.cancellation_policy.evaluate(
            registration, self.clock(), ignore_window=manager_approved
        )
        if decision.requires_managerial_approval:
            raise ApprovalRequiredException(
                decision.reason or "Managerial approval required", details=decision.to_payload()
            )
        if not decision.can_cancel:
            raise BusinessRuleException(
                decision.reason or "Registration cannot be cancelled",
                code="CANCELLATION_NOT_ALLOWED",
                details=decision.to_payload(),
            )
        return decision

    # Status changes

    @BaseService.measure_operation("update_registration_status")
    async def update_registration_status(
        self,
        registration_id: str,
        status: RegistrationStatus | str,
        user_id: str,
        *,
        school_year: Optional[str] = None,
        trimester: Optional[str] = None,
    ) -> Dict[str, Any]:
        try:
            current = await self._require_registration(registration_id, school_year, trimester)
            updated = await asyncio.to_thread(
                self.uow.registrations.update_status,
                registration_id,
                status,
                user_id,
                school_year=current.school_year,
                trimester=current.trimester,
            )
        except Exception as e:
            await self._publish_failure(
                "update_status", e, user_id, registration_id=registration_id
            )
            raise

        await self.publisher.publish(
            RegistrationStatusChanged(
                registration_id=registration_id,
                previous_status=current.status,
                new_status=updated.status,
                changed_by=user_id,
            )
        )
        return {"success": True, "registration": updated.to_dict()}

    # Queries

    @BaseService.measure_operation("get_registration_details")
    async def get_registration_details(
        self,
        registration_id: str,
        *,
        school_year: Optional[str] = None,
        trimester: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Registration enriched with student, instructor, class, room and derived fields."""
        registration = await self._require_registration(registration_id, school_year, trimester)
        student, instructor, group_class, room = await asyncio.gather(
            self._get_optional(self.uow.students, registration.student_id),
            self._get_optional(self.uow.instructors, registration.instructor_id),
            self._get_optional(self.uow.classes, registration.class_id),
            self._get_optional(self.uow.rooms, registration.room_id),
        )
        lessons = settings.lessons_per_trimester
        next_lesson = registration.next_lesson_date(self._today())
        return {
            "registration": registration.to_dict(),
            "student": student.to_dict() if student else None,
            "instructor": instructor.to_dict() if instructor else None,
            "group_class": group_class.to_dict() if group_class else None,
            "room": room.to_dict() if room else None,
            "lesson_schedule": registration.generate_lesson_schedule(lessons),
            "total_cost": registration.calculate_lesson_cost(lessons),
            "next_lesson_date": next_lesson.isoformat() if next_lesson else None,
            "requires_transportation": registration.requires_transportation(),
            "can_be_modified": registration.can_be_modified(),
        }

    @BaseService.measure_operation("get_student_registrations")
    async def get_student_registrations(self, student_id: str) -> List[Dict[str, Any]]:
        student, registrations, instructors = await asyncio.gather(
            asyncio.to_thread(self.uow.students.get_by_id, student_id),
            asyncio.to_thread(self.uow.registrations.find_by_student_id, student_id),
            asyncio.to_thread(self.uow.instructors.find_all),
        )
        if student is None:
            raise NotFoundException(f"Student {student_id} not found", code="STUDENT_NOT_FOUND")
        return self._enrich(registrations, {student.id: student}, instructors)

    @BaseService.measure_operation("get_registrations")
    async def get_registrations(
        self, school_year: Optional[str] = None, trimester: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """All registrations of a term (defaults to the configured current term), enriched."""
        registrations, students, instructors = await asyncio.gather(
            asyncio.to_thread(
                self.uow.registrations.find_by_school_year_and_trimester,
                school_year or settings.current_school_year,
                trimester or settings.current_trimester,
            ),
            asyncio.to_thread(self.uow.students.find_all),
            asyncio.to_thread(self.uow.instructors.find_all),
        )
        return self._enrich(registrations, {s.id: s for s in students}, instructors)

    def _enrich(self, registrations, students_by_id, instructors) -> List[Dict[str, Any]]:
        instructors_by_id = {i.id: i for i in instructors}
        lessons = settings.lessons_per_trimester
        enriched = []
        for registration in sorted(
            registrations, key=lambda r: (r.school_year, r.trimester, r.day or "", r.start_time or "")
        ):
            student = students_by_id.get(registration.student_id)
            instructor = instructors_by_id.get(registration.instructor_id)
            enriched.append(
                {
                    **registration.to_dict(),
                    "student_name": student.full_name if student else None,
                    "instructor_name": instructor.full_name if instructor else None,
                    "total_cost": registration.calculate_lesson_cost(lessons),
                }
            )
        return enriched

    # Helpers

    async def _require_registration(
        self,
        registration_id: str,
        school_year: Optional[str] = None,
        trimester: Optional[str] = None,
    ) -> Registration:
        registration = await asyncio.to_thread(
            self.uow.registrations.get_by_id, registration_id, school_year, trimester
        )
        if registration is None:
            raise NotFoundException(
                f"Registration {registration_id} not found", code="REGISTRATION_NOT_FOUND"
            )
        return registration

    @staticmethod
    async def _get_optional(repository, entity_id: Optional[str]):
        if not entity_id:
            return None
        return await asyncio.to_thread(repository.get_by_id, entity_id)

    def _normalize_payload(self, data: Mapping[str, Any]) -> Dict[str, Any]:
        payload = {key: _plain(value) for key, value in dict(data).items()}
        for key, value in list(payload.items()):
            if isinstance(value, str):
                payload[key] = value.strip() or None
        # The operative period defaults to the configured current term
        payload["school_year"] = payload.get("school_year") or settings.current_school_year
        payload["trimester"] = payload.get("trimester") or settings.current_trimester
        return payload

    def _lesson_cost(self, payload: Mapping[str, Any], group_class: Any) -> float:
        if payload["registration_type"] == RegistrationType.GROUP.value and group_class is not None:
            return group_class.per_lesson_fee(settings.group_class_default_fee)
        length = int(payload.get("length") or 0)
        return round(settings.private_lesson_hourly_rate * length / 60, 2)

    def _today(self) -> date:
        return self.clock().astimezone(self.tz).date()

    async def _publish_failure(
        self,
        workflow: str,
        error: Exception,
        user_id: Optional[str],
        *,
        registration_id: Optional[str] = None,
        student_id: Optional[str] = None,
    ) -> None:
        if isinstance(error, ValidationException):
            return
        if isinstance(error, DomainException):
            code, message, details = error.code, error.message, error.details
        else:
            code, message, details = type(error).__name__, str(error), {}
        await self.publisher.publish(
            RegistrationFailed(
                workflow=workflow,
                actor_id=user_id,
                registration_id=registration_id,
                student_id=student_id,
                error_code=code,
                error_message=message,
                details=dict(details),
            )
        )
