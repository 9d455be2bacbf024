# backend/app/models/audit_log.py
"""
Audit logging model for registration lifecycle events.

Rows are append-only and written best-effort by the audit event handlers;
a failed write is logged and never affects the registration itself.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Mapping

from sqlalchemy import Column, DateTime, String, Text
from sqlalchemy.sql import func
from sqlalchemy.types import JSON
import ulid

from app.database import Base


def _now_utc() -> datetime:
    """Return timezone-aware UTC timestamp for defaults."""
    return datetime.now(timezone.utc)


class AuditLog(Base):
    """Persistence model for audit trail entries."""

    __tablename__ = "audit_log"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    entity_type = Column(String(50), nullable=False)
    entity_id = Column(String(255), nullable=False, index=True)
    action = Column(String(30), nullable=False)
    actor_id = Column(String(64), nullable=True)
    status = Column(String(16), nullable=False, default="success")
    occurred_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=_now_utc,
        server_default=func.now(),
    )
    details = Column(JSON, nullable=True)
    error_message = Column(Text, nullable=True)

    @classmethod
    def from_event(
        cls,
        entity_type: str,
        entity_id: str,
        action: str,
        actor_id: str | None,
        details: Mapping[str, Any] | None = None,
        *,
        status: str = "success",
        error_message: str | None = None,
    ) -> "AuditLog":
        """Factory helper to build an AuditLog row from a domain event."""
        return cls(
            id=str(ulid.ULID()),
            entity_type=entity_type,
            entity_id=entity_id,
            action=action,
            actor_id=actor_id,
            status=status,
            occurred_at=_now_utc(),
            details=dict(details) if details is not None else None,
            error_message=error_message,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "action": self.action,
            "actor_id": self.actor_id,
            "status": self.status,
            "occurred_at": self.occurred_at.isoformat() if self.occurred_at else None,
            "details": self.details,
            "error_message": self.error_message,
        }
