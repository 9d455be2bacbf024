"""
Database models for the lesson registration engine.

Registration is the central entity. Students, parents, instructors, admins,
group classes and rooms are read-only collaborators; audit log rows are
written by the audit side channel, which is fed from the event outbox.
"""

from .audit_log import AuditLog
from .event_outbox import EventOutbox, EventOutboxStatus
from .group_class import GroupClass, Room
from .instructor import Admin, Instructor
from .registration import Registration
from .student import Parent, Student

__all__ = [
    "Admin",
    "AuditLog",
    "EventOutbox",
    "EventOutboxStatus",
    "GroupClass",
    "Instructor",
    "Parent",
    "Registration",
    "Room",
    "Student",
]
