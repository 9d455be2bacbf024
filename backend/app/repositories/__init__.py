# backend/app/repositories/__init__.py
"""
Repository Pattern Implementation for the registration engine.

This package provides the repository layer for data access,
separating business logic from database queries.

Key Components:
- BaseRepository: Foundation for all repositories with generic CRUD operations
- IRepository: Interface defining required methods for all repositories
- RepositoryCache: Per-unit TTL + version-token cache
- RepositoryFactory: Factory for creating repository instances
- RegistrationRepository: Conflict-guarded registration writes and queries
- EventOutboxRepository: Persisted side-channel jobs for the event publisher
- UnitOfWork: Request-scoped repository holder with composite queries

Usage:
    from app.repositories import UnitOfWork

    async with UnitOfWork() as uow:
        family = await uow.get_family_info(student_id)
"""

from .audit_log_repository import AuditLogRepository
from .base_repository import BaseRepository, IRepository
from .cache import RepositoryCache
from .event_outbox_repository import EventOutboxRepository
from .factory import RepositoryFactory
from .group_class_repository import GroupClassRepository, RoomRepository
from .instructor_repository import AdminRepository, InstructorRepository
from .registration_repository import RegistrationRepository
from .student_repository import ParentRepository, StudentRepository
from .unit_of_work import FamilyInfo, UnitOfWork, UserMatch

__all__ = [
    "BaseRepository",
    "IRepository",
    "RepositoryCache",
    "RepositoryFactory",
    "AdminRepository",
    "AuditLogRepository",
    "EventOutboxRepository",
    "GroupClassRepository",
    "InstructorRepository",
    "ParentRepository",
    "RegistrationRepository",
    "RoomRepository",
    "StudentRepository",
    "FamilyInfo",
    "UnitOfWork",
    "UserMatch",
]
