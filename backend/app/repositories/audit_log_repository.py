# backend/app/repositories/audit_log_repository.py
"""Append-only access to the audit trail."""

import logging
from typing import Any, List, Mapping, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from ..models.audit_log import AuditLog
from .base_repository import BaseRepository
from .cache import RepositoryCache

logger = logging.getLogger(__name__)


class AuditLogRepository(BaseRepository[AuditLog]):
    """Writes and reads audit entries; rows are never updated."""

    def __init__(self, session_factory: sessionmaker[Session], cache: Optional[RepositoryCache] = None):
        super().__init__(session_factory, AuditLog, cache)

    def write(
        self,
        entity_type: str,
        entity_id: str,
        action: str,
        actor_id: Optional[str],
        details: Optional[Mapping[str, Any]] = None,
        *,
        status: str = "success",
        error_message: Optional[str] = None,
    ) -> AuditLog:
        entry = AuditLog.from_event(
            entity_type,
            entity_id,
            action,
            actor_id,
            details,
            status=status,
            error_message=error_message,
        )
        with self.session_scope("write") as session:
            session.add(entry)
        self.invalidate_all_cache()
        return entry

    def find_for_entity(self, entity_type: str, entity_id: str) -> List[AuditLog]:
        """Entries for one entity, oldest first."""
        with self.session_scope("list") as session:
            stmt = (
                select(AuditLog)
                .where(AuditLog.entity_type == entity_type, AuditLog.entity_id == entity_id)
                .order_by(AuditLog.occurred_at, AuditLog.id)
            )
            return list(session.scalars(stmt).all())
