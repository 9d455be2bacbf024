# backend/app/services/conflict_checker.py
"""
Conflict & identity service for registrations.

Handles:
- Deterministic registration ids derived from the identity fields
- Overlap detection against a snapshot of existing registrations
  (instructor, room and student double-booking)
- Duplicate and class-capacity checks

Intervals are half-open ``[start, start + length)`` in minutes since
midnight, so back-to-back slots that only touch never conflict. Only active
registrations in the candidate's ``(school_year, trimester)`` partition are
considered; other terms are independent scheduling universes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from ..core.config import settings
from ..core.enums import ACTIVE_REGISTRATION_STATUSES, ConflictType, RegistrationType
from ..models.registration import minutes_to_time, time_to_minutes
from .base import BaseService

logger = logging.getLogger(__name__)

_ACTIVE = {s.value for s in ACTIVE_REGISTRATION_STATUSES}


@dataclass(frozen=True)
class RegistrationConflict:
    type: ConflictType
    message: str
    conflicting_registration_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "message": self.message,
            "conflicting_registration_id": self.conflicting_registration_id,
        }


@dataclass(frozen=True)
class ConflictCheckResult:
    conflicts: List[RegistrationConflict] = field(default_factory=list)

    @property
    def has_conflicts(self) -> bool:
        return len(self.conflicts) > 0

    def to_dicts(self) -> List[Dict[str, Any]]:
        return [c.to_dict() for c in self.conflicts]


def times_overlap(first: Tuple[int, int], second: Tuple[int, int]) -> bool:
    """Half-open overlap: touching endpoints do not count."""
    start, end = first
    other_start, other_end = second
    return start < other_end and other_start < end


def calculate_end_time(start_time: str, length: int) -> str:
    return minutes_to_time(time_to_minutes(start_time) + int(length))


def _get(obj: Any, name: str) -> Any:
    if isinstance(obj, Mapping):
        value = obj.get(name)
    else:
        value = getattr(obj, name, None)
    return getattr(value, "value", value)


def _interval_of(obj: Any) -> Optional[Tuple[int, int]]:
    start_time = _get(obj, "start_time")
    length = _get(obj, "length")
    if not start_time or not length:
        return None
    start = time_to_minutes(start_time)
    return start, start + int(length)


class ConflictChecker(BaseService):
    """
    Service for registration identity and conflict detection.

    Works on a caller-supplied snapshot; it never reads storage itself, which
    lets the repository run the same check on a fresh snapshot while holding
    the slot lock.
    """

    def __init__(self, default_class_capacity: Optional[int] = None):
        super().__init__()
        self.default_class_capacity = default_class_capacity or settings.default_class_capacity

    @staticmethod
    def generate_registration_id(data: Any) -> str:
        """
        Derive the registration id from identity fields.

        GROUP: ``student_class``. PRIVATE: ``student_instructor_day_start``.

        Raises:
            ValueError: If the identity fields for the type are missing
        """
        student_id = _get(data, "student_id")
        registration_type = _get(data, "registration_type")
        if not student_id:
            raise ValueError("student_id is required to derive a registration id")

        if registration_type == RegistrationType.GROUP.value:
            class_id = _get(data, "class_id")
            if not class_id:
                raise ValueError("class_id is required to derive a group registration id")
            return f"{student_id}_{class_id}"

        if registration_type == RegistrationType.PRIVATE.value:
            parts = [_get(data, k) for k in ("instructor_id", "day", "start_time")]
            if not all(parts):
                raise ValueError(
                    "instructor_id, day and start_time are required to derive a private registration id"
                )
            return "_".join([student_id, *parts])

        raise ValueError(f"Unknown registration type: {registration_type!r}")

    @BaseService.measure_operation("check_conflicts")
    def check_conflicts(
        self,
        candidate: Any,
        existing: Iterable[Any],
        *,
        group_class: Any = None,
        skip_capacity_check: bool = False,
    ) -> ConflictCheckResult:
        """
        Collect every collision between ``candidate`` and ``existing``.

        Args:
            candidate: Registration payload or entity being created
            existing: Snapshot of stored registrations (any partition)
            group_class: The candidate's class, for the capacity check
            skip_capacity_check: Admin override for full classes

        Returns:
            ConflictCheckResult listing all conflicts, not just the first
        """
        school_year = _get(candidate, "school_year")
        trimester = _get(candidate, "trimester")
        in_partition = [
            r
            for r in existing
            if _get(r, "school_year") == school_year
            and _get(r, "trimester") == trimester
            and _get(r, "status") in _ACTIVE
        ]

        conflicts: List[RegistrationConflict] = []
        candidate_id = self._safe_registration_id(candidate)

        duplicate = next((r for r in in_partition if _get(r, "id") == candidate_id), None)
        if duplicate is not None:
            conflicts.append(
                RegistrationConflict(
                    type=ConflictType.DUPLICATE,
                    message=(
                        f"duplicate registration: student {_get(candidate, 'student_id')} "
                        f"is already registered as {candidate_id}"
                    ),
                    conflicting_registration_id=candidate_id,
                )
            )

        conflicts.extend(self._overlap_conflicts(candidate, in_partition, candidate_id))

        if (
            _get(candidate, "registration_type") == RegistrationType.GROUP.value
            and group_class is not None
            and not skip_capacity_check
        ):
            capacity_conflict = self._capacity_conflict(
                candidate, group_class, in_partition, candidate_id
            )
            if capacity_conflict is not None:
                conflicts.append(capacity_conflict)

        if conflicts:
            self.logger.warning(
                f"Found {len(conflicts)} conflicts for {candidate_id or 'candidate'} "
                f"in {school_year} {trimester}"
            )
        return ConflictCheckResult(conflicts=conflicts)

    def _overlap_conflicts(
        self, candidate: Any, in_partition: List[Any], candidate_id: Optional[str]
    ) -> List[RegistrationConflict]:
        window = _interval_of(candidate)
        day = _get(candidate, "day")
        if window is None or not day:
            return []

        student_id = _get(candidate, "student_id")
        instructor_id = _get(candidate, "instructor_id")
        room_id = _get(candidate, "room_id")
        class_id = _get(candidate, "class_id")
        is_group = _get(candidate, "registration_type") == RegistrationType.GROUP.value
        slot = f"{day} {minutes_to_time(window[0])}-{minutes_to_time(window[1])}"

        conflicts: List[RegistrationConflict] = []
        for other in in_partition:
            other_id = _get(other, "id")
            if other_id == candidate_id or _get(other, "day") != day:
                continue
            other_window = _interval_of(other)
            if other_window is None or not times_overlap(window, other_window):
                continue

            # Seats in the same class share the instructor and the room
            same_class = (
                is_group
                and _get(other, "registration_type") == RegistrationType.GROUP.value
                and class_id is not None
                and _get(other, "class_id") == class_id
            )
            other_slot = (
                f"{minutes_to_time(other_window[0])}-{minutes_to_time(other_window[1])}"
            )

            if not same_class and instructor_id and _get(other, "instructor_id") == instructor_id:
                conflicts.append(
                    RegistrationConflict(
                        type=ConflictType.INSTRUCTOR_SCHEDULE,
                        message=(
                            f"instructor double-booked: instructor {instructor_id} already has "
                            f"{other_id} at {other_slot} overlapping {slot}"
                        ),
                        conflicting_registration_id=other_id,
                    )
                )
            if not same_class and room_id and _get(other, "room_id") == room_id:
                conflicts.append(
                    RegistrationConflict(
                        type=ConflictType.ROOM_SCHEDULE,
                        message=(
                            f"room double-booked: room {room_id} is used by {other_id} "
                            f"at {other_slot} overlapping {slot}"
                        ),
                        conflicting_registration_id=other_id,
                    )
                )
            if student_id and _get(other, "student_id") == student_id:
                conflicts.append(
                    RegistrationConflict(
                        type=ConflictType.STUDENT_SCHEDULE,
                        message=(
                            f"student double-booked: student {student_id} is already in "
                            f"{other_id} at {other_slot} overlapping {slot}"
                        ),
                        conflicting_registration_id=other_id,
                    )
                )
        return conflicts

    def _capacity_conflict(
        self,
        candidate: Any,
        group_class: Any,
        in_partition: List[Any],
        candidate_id: Optional[str],
    ) -> Optional[RegistrationConflict]:
        class_id = _get(candidate, "class_id")
        enrolled = sum(
            1
            for r in in_partition
            if _get(r, "class_id") == class_id and _get(r, "id") != candidate_id
        )
        capacity = group_class.capacity(self.default_class_capacity)
        if enrolled < capacity:
            return None
        return RegistrationConflict(
            type=ConflictType.CLASS_CAPACITY,
            message=(
                f"class full: {group_class.title or class_id} has {enrolled} of "
                f"{capacity} seats taken"
            ),
        )

    def _safe_registration_id(self, candidate: Any) -> Optional[str]:
        try:
            return self.generate_registration_id(candidate)
        except ValueError:
            return None
