# backend/app/repositories/factory.py
"""
Repository Factory

Provides centralized creation of repository instances,
ensuring consistent initialization and dependency injection.
"""

from typing import TYPE_CHECKING, Optional

from sqlalchemy.orm import Session, sessionmaker

from .cache import RepositoryCache

# Avoid circular imports
if TYPE_CHECKING:
    from .audit_log_repository import AuditLogRepository
    from .event_outbox_repository import EventOutboxRepository
    from .group_class_repository import GroupClassRepository, RoomRepository
    from .instructor_repository import AdminRepository, InstructorRepository
    from .registration_repository import RegistrationRepository
    from .student_repository import ParentRepository, StudentRepository

SessionFactory = sessionmaker[Session]


class RepositoryFactory:
    """
    Factory class for creating repository instances.

    Every repository receives the session factory and, optionally, the
    RepositoryCache of the unit of work that owns it.
    """

    @staticmethod
    def create_student_repository(
        session_factory: SessionFactory, cache: Optional[RepositoryCache] = None
    ) -> "StudentRepository":
        from .student_repository import StudentRepository

        return StudentRepository(session_factory, cache)

    @staticmethod
    def create_parent_repository(
        session_factory: SessionFactory, cache: Optional[RepositoryCache] = None
    ) -> "ParentRepository":
        from .student_repository import ParentRepository

        return ParentRepository(session_factory, cache)

    @staticmethod
    def create_instructor_repository(
        session_factory: SessionFactory, cache: Optional[RepositoryCache] = None
    ) -> "InstructorRepository":
        """Create repository for instructor lookups and matching."""
        from .instructor_repository import InstructorRepository

        return InstructorRepository(session_factory, cache)

    @staticmethod
    def create_admin_repository(
        session_factory: SessionFactory, cache: Optional[RepositoryCache] = None
    ) -> "AdminRepository":
        from .instructor_repository import AdminRepository

        return AdminRepository(session_factory, cache)

    @staticmethod
    def create_group_class_repository(
        session_factory: SessionFactory, cache: Optional[RepositoryCache] = None
    ) -> "GroupClassRepository":
        from .group_class_repository import GroupClassRepository

        return GroupClassRepository(session_factory, cache)

    @staticmethod
    def create_room_repository(
        session_factory: SessionFactory, cache: Optional[RepositoryCache] = None
    ) -> "RoomRepository":
        from .group_class_repository import RoomRepository

        return RoomRepository(session_factory, cache)

    @staticmethod
    def create_registration_repository(
        session_factory: SessionFactory, cache: Optional[RepositoryCache] = None
    ) -> "RegistrationRepository":
        """Create repository for registrations with the conflict-guarded create."""
        from .registration_repository import RegistrationRepository

        return RegistrationRepository(session_factory, cache)

    @staticmethod
    def create_audit_log_repository(
        session_factory: SessionFactory, cache: Optional[RepositoryCache] = None
    ) -> "AuditLogRepository":
        from .audit_log_repository import AuditLogRepository

        return AuditLogRepository(session_factory, cache)

    @staticmethod
    def create_event_outbox_repository(
        session_factory: SessionFactory, cache: Optional[RepositoryCache] = None
    ) -> "EventOutboxRepository":
        """Create repository for the registration event outbox."""
        from .event_outbox_repository import EventOutboxRepository

        return EventOutboxRepository(session_factory, cache)
