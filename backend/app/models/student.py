# backend/app/models/student.py
"""
Student and Parent models.

Both are read-only collaborators of the registration engine: they are looked
up by id to check enrollment eligibility and to address notifications, never
created or mutated by it. A student references up to two parents by id.
"""

from datetime import date
from typing import Any, Dict, List, Optional

from sqlalchemy import Boolean, Column, Date, String

from ..database import Base


class Parent(Base):
    """A parent or guardian reachable by email and/or phone."""

    __tablename__ = "parents"

    id = Column(String(64), primary_key=True)
    first_name = Column(String(50), nullable=False)
    last_name = Column(String(50), nullable=False)
    email = Column(String(255), nullable=True, index=True)
    phone = Column(String(20), nullable=True)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    def has_contact(self) -> bool:
        return bool((self.email or "").strip() or (self.phone or "").strip())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "full_name": self.full_name,
            "email": self.email,
            "phone": self.phone,
        }


class Student(Base):
    """A student who can be registered for lessons."""

    __tablename__ = "students"

    id = Column(String(64), primary_key=True)
    first_name = Column(String(50), nullable=False)
    last_name = Column(String(50), nullable=False)
    email = Column(String(255), nullable=True)
    grade = Column(String(4), nullable=True)  # PK, K, 1..12
    birth_date = Column(Date, nullable=True)
    parent1_id = Column(String(64), nullable=True)
    parent2_id = Column(String(64), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<Student {self.id}: {self.first_name} {self.last_name}, grade={self.grade}>"

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    @property
    def parent_ids(self) -> List[str]:
        return [pid for pid in (self.parent1_id, self.parent2_id) if pid]

    def age_on(self, today: date) -> Optional[int]:
        if self.birth_date is None:
            return None
        born = self.birth_date
        return today.year - born.year - ((today.month, today.day) < (born.month, born.day))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "full_name": self.full_name,
            "email": self.email,
            "grade": self.grade,
            "birth_date": self.birth_date.isoformat() if self.birth_date else None,
            "parent1_id": self.parent1_id,
            "parent2_id": self.parent2_id,
            "is_active": self.is_active,
        }
