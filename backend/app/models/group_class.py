# backend/app/models/group_class.py
"""Group classes and the rooms lessons are held in."""

from typing import Any, Dict, Optional

from sqlalchemy import Boolean, Column, Integer, Numeric, String

from ..database import Base


class GroupClass(Base):
    """A roster-based class with a fixed weekly slot."""

    __tablename__ = "classes"

    id = Column(String(64), primary_key=True)
    instructor_id = Column(String(64), nullable=True, index=True)
    title = Column(String(255), nullable=True)
    instrument = Column(String(64), nullable=True)
    day = Column(String(16), nullable=True)
    start_time = Column(String(5), nullable=True)
    length = Column(Integer, nullable=True)
    room_id = Column(String(64), nullable=True)
    size = Column(Integer, nullable=True)  # capacity; falls back to the configured default
    fee = Column(Numeric(10, 2), nullable=True)  # per lesson
    is_active = Column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<GroupClass {self.id}: {self.title} {self.day} {self.start_time}>"

    def capacity(self, default: int) -> int:
        return int(self.size) if self.size else default

    def per_lesson_fee(self, default: float) -> float:
        return float(self.fee) if self.fee is not None else default

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "instructor_id": self.instructor_id,
            "title": self.title,
            "instrument": self.instrument,
            "day": self.day,
            "start_time": self.start_time,
            "length": self.length,
            "room_id": self.room_id,
            "size": self.size,
            "fee": float(self.fee) if self.fee is not None else None,
            "is_active": self.is_active,
        }


class Room(Base):
    __tablename__ = "rooms"

    id = Column(String(64), primary_key=True)
    name = Column(String(100), nullable=False)
    capacity = Column(Integer, nullable=True)

    def to_dict(self) -> Dict[str, Optional[Any]]:
        return {"id": self.id, "name": self.name, "capacity": self.capacity}
