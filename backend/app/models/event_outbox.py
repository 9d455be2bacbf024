# backend/app/models/event_outbox.py
"""
Event outbox persistence model.

Every (event, handler) pair a registration workflow publishes becomes one
row here before any handler runs, so audit and email work survives a crash
or restart and is retried by the outbox worker.
"""

from __future__ import annotations

from enum import Enum

from sqlalchemy import Column, DateTime, Integer, String, Text, UniqueConstraint
from sqlalchemy.sql import func
from sqlalchemy.types import JSON
import ulid

from app.database import Base


class EventOutboxStatus(str, Enum):
    """Lifecycle states for an outbox job."""

    PENDING = "PENDING"
    SENT = "SENT"
    FAILED = "FAILED"


class EventOutbox(Base):
    """One pending delivery of an event to a named handler."""

    __tablename__ = "event_outbox"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    event_type = Column(String(100), nullable=False, index=True)
    handler = Column(String(100), nullable=False)
    aggregate_id = Column(String(255), nullable=True, index=True)
    idempotency_key = Column(String(255), nullable=False)
    payload = Column(JSON, nullable=False, default=dict)
    status = Column(String(20), nullable=False, default=EventOutboxStatus.PENDING.value, index=True)
    attempt_count = Column(Integer, nullable=False, default=0)
    next_attempt_at = Column(DateTime(timezone=True), nullable=False, index=True)
    last_error = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    __table_args__ = (UniqueConstraint("idempotency_key", name="uq_event_outbox_idempotency_key"),)

    @property
    def is_pending(self) -> bool:
        return self.status == EventOutboxStatus.PENDING.value
