# backend/app/models/registration.py
"""
Registration model for the lesson registration engine.

A registration books a student into a recurring weekly slot: a private lesson
with one instructor, or a seat in a roster-based group class. The slot is the
``(day, start_time, length)`` triple; the ``(school_year, trimester)`` pair is
the partition that keeps otherwise identical slots in different terms apart.

The registration id is derived from the identity fields (see ConflictChecker),
so re-registering the same student into the same slot yields the same id. It
is unique only among the active rows of one partition: the same id may exist in
another term, and cancelled or completed rows stay beside a newer active one.
Each row has its own surrogate ``row_id``.

References to students, instructors, classes and rooms are plain ids; nothing
cascades.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
import logging
from typing import Any, Dict, List, Mapping, Optional, Tuple

from sqlalchemy import Column, Date, DateTime, Index, Integer, Numeric, String, Text, text
import ulid

from ..core.constants import WEEKDAYS
from ..core.enums import (
    ACTIVE_REGISTRATION_STATUSES,
    RegistrationStatus,
    RegistrationType,
    TransportationType,
)
from ..database import Base

logger = logging.getLogger(__name__)


def time_to_minutes(value: Optional[str]) -> int:
    """Convert ``HH:MM`` to minutes since midnight (0 when missing)."""
    if not value:
        return 0
    hours, minutes = value.split(":")[:2]
    return int(hours) * 60 + int(minutes)


def minutes_to_time(total: int) -> str:
    return f"{total // 60:02d}:{total % 60:02d}"


_ACTIVE_CLAUSE = "status IN ('pending', 'approved')"


class Registration(Base):
    """A student's booking into a recurring lesson slot."""

    __tablename__ = "registrations"

    row_id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    # Derived identity: see ConflictChecker.generate_registration_id
    id = Column(String(255), nullable=False, index=True)

    student_id = Column(String(64), nullable=False, index=True)
    instructor_id = Column(String(64), nullable=True, index=True)
    class_id = Column(String(64), nullable=True, index=True)
    class_title = Column(String(255), nullable=True)
    registration_type = Column(String(16), nullable=False)

    # Slot
    day = Column(String(16), nullable=True)
    start_time = Column(String(5), nullable=True)  # HH:MM, minute precision
    length = Column(Integer, nullable=True)  # minutes

    room_id = Column(String(64), nullable=True)
    instrument = Column(String(64), nullable=True)
    transportation_type = Column(String(32), nullable=True)
    notes = Column(Text, nullable=True)

    # Partition
    school_year = Column(String(9), nullable=False)
    trimester = Column(String(16), nullable=False)

    status = Column(String(16), nullable=False, default=RegistrationStatus.PENDING.value)
    expected_start_date = Column(Date, nullable=True)
    lesson_cost = Column(Numeric(10, 2), nullable=True)

    # Audit stamps, set once at creation
    registered_by = Column(String(64), nullable=False)
    registered_at = Column(DateTime(timezone=True), nullable=False)

    status_changed_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_by = Column(String(64), nullable=True)
    cancellation_reason = Column(Text, nullable=True)

    __table_args__ = (
        Index("ix_registrations_partition_day", "school_year", "trimester", "day"),
        Index(
            "uq_registrations_active_id",
            "id",
            "school_year",
            "trimester",
            unique=True,
            sqlite_where=text(_ACTIVE_CLAUSE),
            postgresql_where=text(_ACTIVE_CLAUSE),
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<Registration {self.id}: student={self.student_id}, "
            f"instructor={self.instructor_id}, class={self.class_id}, "
            f"slot={self.day} {self.start_time}/{self.length}, "
            f"term={self.school_year} {self.trimester}, status={self.status}>"
        )

    # Factories

    @classmethod
    def from_payload(
        cls,
        data: Mapping[str, Any],
        *,
        registration_id: str,
        registered_by: str,
        registered_at: Optional[datetime] = None,
    ) -> "Registration":
        """Build a new registration from a validated request payload."""
        stamped_at = registered_at or datetime.now(timezone.utc)
        length = data.get("length")
        return cls(
            row_id=str(ulid.ULID()),
            id=registration_id,
            student_id=data["student_id"],
            instructor_id=data.get("instructor_id"),
            class_id=data.get("class_id"),
            class_title=data.get("class_title"),
            registration_type=_enum_value(data["registration_type"]),
            day=_enum_value(data.get("day")),
            start_time=data.get("start_time"),
            length=int(length) if length is not None else None,
            room_id=data.get("room_id"),
            instrument=data.get("instrument"),
            transportation_type=_enum_value(data.get("transportation_type")),
            notes=data.get("notes"),
            school_year=data["school_year"],
            trimester=_enum_value(data["trimester"]),
            status=_enum_value(data.get("status")) or RegistrationStatus.PENDING.value,
            expected_start_date=data.get("expected_start_date") or stamped_at.date(),
            lesson_cost=data.get("lesson_cost"),
            registered_by=registered_by,
            registered_at=stamped_at,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "student_id": self.student_id,
            "instructor_id": self.instructor_id,
            "class_id": self.class_id,
            "class_title": self.class_title,
            "registration_type": self.registration_type,
            "day": self.day,
            "start_time": self.start_time,
            "end_time": self.end_time(),
            "length": self.length,
            "room_id": self.room_id,
            "instrument": self.instrument,
            "transportation_type": self.transportation_type,
            "notes": self.notes,
            "school_year": self.school_year,
            "trimester": self.trimester,
            "status": self.status,
            "is_active": self.is_active,
            "expected_start_date": (
                self.expected_start_date.isoformat() if self.expected_start_date else None
            ),
            "lesson_cost": float(self.lesson_cost) if self.lesson_cost is not None else None,
            "registered_by": self.registered_by,
            "registered_at": self.registered_at.isoformat() if self.registered_at else None,
            "status_changed_at": (
                self.status_changed_at.isoformat() if self.status_changed_at else None
            ),
            "cancelled_by": self.cancelled_by,
            "cancellation_reason": self.cancellation_reason,
        }

    # Domain helpers

    @property
    def is_active(self) -> bool:
        return self.status in {s.value for s in ACTIVE_REGISTRATION_STATUSES}

    @property
    def is_group(self) -> bool:
        return self.registration_type == RegistrationType.GROUP.value

    @property
    def is_private(self) -> bool:
        return self.registration_type == RegistrationType.PRIVATE.value

    def has_slot(self) -> bool:
        return bool(self.day and self.start_time and self.length)

    def interval(self) -> Optional[Tuple[int, int]]:
        """Half-open ``[start, end)`` in minutes since midnight, or None without a slot."""
        if not self.has_slot():
            return None
        start = time_to_minutes(self.start_time)
        return start, start + int(self.length)

    def end_time(self) -> Optional[str]:
        window = self.interval()
        return minutes_to_time(window[1]) if window else None

    def first_lesson_date(self) -> Optional[date]:
        """First occurrence of ``day`` on or after the expected start date."""
        if not self.day or self.day not in WEEKDAYS or not self.expected_start_date:
            return None
        target = WEEKDAYS.index(self.day)
        start = self.expected_start_date
        return start + timedelta(days=(target - start.weekday()) % 7)

    def generate_lesson_schedule(self, number_of_lessons: int) -> List[Dict[str, Any]]:
        """Expected weekly lesson dates starting at the first lesson."""
        first = self.first_lesson_date()
        if first is None or not self.has_slot():
            return []
        return [
            {
                "lesson_number": i + 1,
                "date": (first + timedelta(weeks=i)).isoformat(),
                "start_time": self.start_time,
                "length": self.length,
                "expected_end_time": self.end_time(),
            }
            for i in range(number_of_lessons)
        ]

    def next_lesson_date(self, today: date) -> Optional[date]:
        """Next lesson on or after ``today`` (never before the first lesson)."""
        first = self.first_lesson_date()
        if first is None:
            return None
        if today <= first:
            return first
        weeks_ahead = -(-(today - first).days // 7)
        return first + timedelta(weeks=weeks_ahead)

    def can_be_modified(self) -> bool:
        return self.is_active

    def calculate_lesson_cost(self, number_of_lessons: int) -> float:
        """Total cost of the trimester: per-lesson cost times the schedule size."""
        if self.lesson_cost is None:
            return 0.0
        return round(float(self.lesson_cost) * number_of_lessons, 2)

    def requires_transportation(self) -> bool:
        return self.transportation_type == TransportationType.BUS.value


def _enum_value(value: Any) -> Any:
    return getattr(value, "value", value)
