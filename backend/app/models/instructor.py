# backend/app/models/instructor.py
"""
Instructor and Admin models.

Instructors teach private lessons and group classes. Each instructor lists the
instruments they teach, the weekdays they are available and the grade range
they accept, plus a fixed room assignment per weekday. Admins are staff users
who register students on behalf of families.
"""

from typing import Any, Dict, Optional

from sqlalchemy import JSON, Boolean, Column, String

from ..core.constants import GRADE_LEVELS
from ..database import Base


class Instructor(Base):
    """
    Instructor profile used for matching and conflict checks.

    Attributes:
        instruments: Instruments taught (JSON list, case-insensitive match)
        available_days: Weekday names the instructor teaches
        min_grade / max_grade: Inclusive grade range accepted (PK..12)
        monday_room_id .. friday_room_id: Room used on each weekday
    """

    __tablename__ = "instructors"

    id = Column(String(64), primary_key=True)
    first_name = Column(String(50), nullable=False)
    last_name = Column(String(50), nullable=False)
    email = Column(String(255), nullable=True, index=True)
    phone = Column(String(20), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    instruments = Column(JSON, nullable=False, default=list)
    available_days = Column(JSON, nullable=False, default=list)
    min_grade = Column(String(4), nullable=True)
    max_grade = Column(String(4), nullable=True)
    monday_room_id = Column(String(64), nullable=True)
    tuesday_room_id = Column(String(64), nullable=True)
    wednesday_room_id = Column(String(64), nullable=True)
    thursday_room_id = Column(String(64), nullable=True)
    friday_room_id = Column(String(64), nullable=True)

    def __repr__(self) -> str:
        return f"<Instructor {self.id}: {self.first_name} {self.last_name}>"

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    def teaches(self, instrument: Optional[str]) -> bool:
        if not instrument:
            return False
        wanted = instrument.strip().lower()
        return any(str(i).strip().lower() == wanted for i in (self.instruments or []))

    def is_available_on(self, day: Optional[str]) -> bool:
        return bool(day) and day in (self.available_days or [])

    def accepts_grade(self, grade: Optional[str]) -> bool:
        """True when ``grade`` lies inside the instructor's range (open ends accept all)."""
        if grade not in GRADE_LEVELS:
            return False
        index = GRADE_LEVELS.index(grade)
        if self.min_grade in GRADE_LEVELS and index < GRADE_LEVELS.index(self.min_grade):
            return False
        if self.max_grade in GRADE_LEVELS and index > GRADE_LEVELS.index(self.max_grade):
            return False
        return True

    def room_for(self, day: Optional[str]) -> Optional[str]:
        if not day:
            return None
        return getattr(self, f"{day.lower()}_room_id", None)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "full_name": self.full_name,
            "email": self.email,
            "phone": self.phone,
            "is_active": self.is_active,
            "instruments": list(self.instruments or []),
            "available_days": list(self.available_days or []),
            "min_grade": self.min_grade,
            "max_grade": self.max_grade,
        }


class Admin(Base):
    """Staff user allowed to register and cancel on behalf of families."""

    __tablename__ = "admins"

    id = Column(String(64), primary_key=True)
    first_name = Column(String(50), nullable=False)
    last_name = Column(String(50), nullable=False)
    email = Column(String(255), nullable=False, index=True)
    role = Column(String(30), nullable=False, default="admin")

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "full_name": self.full_name,
            "email": self.email,
            "role": self.role,
        }

