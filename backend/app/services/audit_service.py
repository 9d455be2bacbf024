"""Service for creating registration audit log entries."""

from __future__ import annotations

import asyncio
from datetime import date, datetime, time
from decimal import Decimal
from enum import Enum
from typing import Any, Literal, Mapping

from app.models.audit_log import AuditLog
from app.repositories.audit_log_repository import AuditLogRepository

Status = Literal["success", "failed"]

ENTITY_TYPE = "registration"


class AuditService:
    """Create and persist audit log entries for the registration lifecycle."""

    def __init__(self, repository: AuditLogRepository):
        self.repository = repository

    async def log(
        self,
        action: str,
        entity_id: str,
        *,
        actor_id: str | None = None,
        details: Mapping[str, Any] | None = None,
        status: Status = "success",
        error_message: str | None = None,
    ) -> AuditLog:
        """Create an audit log entry on a worker thread."""
        return await asyncio.to_thread(
            self.repository.write,
            ENTITY_TYPE,
            entity_id,
            action,
            actor_id,
            _sanitize_details(details),
            status=status,
            error_message=error_message,
        )

    async def log_registration_created(
        self, registration: Mapping[str, Any], actor_id: str
    ) -> AuditLog:
        return await self.log(
            "created", str(registration["id"]), actor_id=actor_id, details={"after": registration}
        )

    async def log_registration_cancelled(
        self,
        registration: Mapping[str, Any],
        actor_id: str,
        *,
        reason: str | None = None,
        mode: str = "soft",
        refund_eligible: bool = False,
        cancellation_fee: float = 0.0,
    ) -> AuditLog:
        return await self.log(
            "cancelled" if mode == "soft" else "deleted",
            str(registration["id"]),
            actor_id=actor_id,
            details={
                "before": registration,
                "reason": reason,
                "mode": mode,
                "refund_eligible": refund_eligible,
                "cancellation_fee": cancellation_fee,
            },
        )

    async def log_registration_failed(
        self,
        workflow: str,
        entity_id: str | None,
        actor_id: str | None,
        *,
        error_code: str,
        error_message: str,
        details: Mapping[str, Any] | None = None,
    ) -> AuditLog:
        return await self.log(
            f"{workflow}_failed",
            entity_id or "unknown",
            actor_id=actor_id,
            details={"error_code": error_code, **dict(details or {})},
            status="failed",
            error_message=error_message,
        )

    async def log_status_changed(
        self, registration_id: str, previous_status: str, new_status: str, actor_id: str
    ) -> AuditLog:
        return await self.log(
            "status_changed",
            registration_id,
            actor_id=actor_id,
            details={"status": {"old": previous_status, "new": new_status}},
        )


def _sanitize_details(details: Mapping[str, Any] | None) -> dict[str, Any] | None:
    if not details:
        return None
    return {key: _normalize_value(value) for key, value in details.items()}


def _normalize_value(value: Any) -> Any:
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Mapping):
        return {k: _normalize_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_normalize_value(v) for v in value]
    return value
