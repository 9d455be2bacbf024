"""Enumerations shared by models, schemas and services."""

from enum import Enum


class RegistrationType(str, Enum):
    """Kind of lesson a registration books."""

    GROUP = "group"  # roster-based class
    PRIVATE = "private"  # one student with one instructor


class Trimester(str, Enum):
    FALL = "Fall"
    WINTER = "Winter"
    SPRING = "Spring"


class RegistrationStatus(str, Enum):
    """Registration lifecycle statuses."""

    PENDING = "pending"
    APPROVED = "approved"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


ACTIVE_REGISTRATION_STATUSES = frozenset({RegistrationStatus.PENDING, RegistrationStatus.APPROVED})

# Allowed update_status moves; cancelled and completed are terminal.
REGISTRATION_STATUS_TRANSITIONS = {
    RegistrationStatus.PENDING: frozenset({RegistrationStatus.APPROVED, RegistrationStatus.CANCELLED}),
    RegistrationStatus.APPROVED: frozenset(
        {RegistrationStatus.COMPLETED, RegistrationStatus.CANCELLED}
    ),
    RegistrationStatus.CANCELLED: frozenset(),
    RegistrationStatus.COMPLETED: frozenset(),
}


class Weekday(str, Enum):
    MONDAY = "Monday"
    TUESDAY = "Tuesday"
    WEDNESDAY = "Wednesday"
    THURSDAY = "Thursday"
    FRIDAY = "Friday"


class TransportationType(str, Enum):
    """How the student gets home after the lesson."""

    BUS = "bus"
    PICKUP = "pickup"


class ConflictType(str, Enum):
    DUPLICATE = "duplicate"
    INSTRUCTOR_SCHEDULE = "instructor_schedule"
    ROOM_SCHEDULE = "room_schedule"
    STUDENT_SCHEDULE = "student_schedule"
    CLASS_CAPACITY = "class_capacity"
