# backend/app/repositories/unit_of_work.py
"""
Unit of Work for the registration engine.

A UnitOfWork is request scoped. It lazily creates and memoizes one repository
per entity kind, owns the RepositoryCache those repositories share, and
offers cross-entity queries that fan out to the repositories concurrently.

Repositories are synchronous; every fan-out runs them on worker threads via
``asyncio.to_thread`` and joins with ``asyncio.gather``. Each repository call
opens its own session, so the threads never share one.

After ``dispose()`` the unit is unusable: any repository access raises
UnitOfWorkDisposedException instead of silently rebuilding state.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
import logging
import threading
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.orm import Session, sessionmaker

from ..core.config import settings
from ..core.exceptions import NotFoundException, UnitOfWorkDisposedException
from ..models.instructor import Admin, Instructor
from ..models.student import Parent, Student
from .audit_log_repository import AuditLogRepository
from .base_repository import BaseRepository
from .cache import RepositoryCache
from .factory import RepositoryFactory
from .group_class_repository import GroupClassRepository, RoomRepository
from .instructor_repository import AdminRepository, InstructorRepository
from .registration_repository import RegistrationRepository
from .student_repository import ParentRepository, StudentRepository

logger = logging.getLogger(__name__)

_FACTORIES: Dict[str, Callable[..., BaseRepository]] = {
    "students": RepositoryFactory.create_student_repository,
    "parents": RepositoryFactory.create_parent_repository,
    "instructors": RepositoryFactory.create_instructor_repository,
    "admins": RepositoryFactory.create_admin_repository,
    "classes": RepositoryFactory.create_group_class_repository,
    "rooms": RepositoryFactory.create_room_repository,
    "registrations": RepositoryFactory.create_registration_repository,
    "audit_logs": RepositoryFactory.create_audit_log_repository,
}

ENTITY_KINDS = tuple(_FACTORIES)


@dataclass(frozen=True)
class UserMatch:
    """Result of a cross-partition email lookup."""

    user_type: str  # "admin" or "instructor"
    user: Admin | Instructor

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.user_type, "user": self.user.to_dict()}


@dataclass(frozen=True)
class FamilyInfo:
    student: Student
    parents: List[Parent] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "student": self.student.to_dict(),
            "parents": [p.to_dict() for p in self.parents],
        }


class UnitOfWork:
    """Request-scoped holder of memoized repositories and composite queries."""

    def __init__(
        self,
        session_factory: Optional[sessionmaker[Session]] = None,
        cache: Optional[RepositoryCache] = None,
    ):
        if session_factory is None:
            from ..database import SessionLocal

            session_factory = SessionLocal
        self.session_factory = session_factory
        self.cache = cache or RepositoryCache(ttl_seconds=settings.repository_cache_ttl_seconds)
        self._repositories: Dict[str, BaseRepository] = {}
        self._lock = threading.Lock()
        self._disposed = False

    async def __aenter__(self) -> "UnitOfWork":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.dispose()

    # Repository access

    @property
    def is_disposed(self) -> bool:
        return self._disposed

    def repository(self, kind: str) -> BaseRepository:
        """Memoized repository for ``kind``; created on first access."""
        with self._lock:
            if self._disposed:
                raise UnitOfWorkDisposedException()
            repo = self._repositories.get(kind)
            if repo is None:
                try:
                    factory = _FACTORIES[kind]
                except KeyError:
                    raise ValueError(f"Unknown entity kind: {kind}") from None
                repo = factory(self.session_factory, self.cache)
                self._repositories[kind] = repo
            return repo

    @property
    def students(self) -> StudentRepository:
        return self.repository("students")  # type: ignore[return-value]

    @property
    def parents(self) -> ParentRepository:
        return self.repository("parents")  # type: ignore[return-value]

    @property
    def instructors(self) -> InstructorRepository:
        return self.repository("instructors")  # type: ignore[return-value]

    @property
    def admins(self) -> AdminRepository:
        return self.repository("admins")  # type: ignore[return-value]

    @property
    def classes(self) -> GroupClassRepository:
        return self.repository("classes")  # type: ignore[return-value]

    @property
    def rooms(self) -> RoomRepository:
        return self.repository("rooms")  # type: ignore[return-value]

    @property
    def registrations(self) -> RegistrationRepository:
        return self.repository("registrations")  # type: ignore[return-value]

    @property
    def audit_logs(self) -> AuditLogRepository:
        return self.repository("audit_logs")  # type: ignore[return-value]

    # Composite queries

    async def find_user_by_email(self, email: str) -> Optional[UserMatch]:
        """Search admins and instructors concurrently; admins win a tie."""
        admin, instructor = await asyncio.gather(
            asyncio.to_thread(self.admins.find_by_email, email),
            asyncio.to_thread(self.instructors.find_by_email, email),
        )
        if admin is not None:
            return UserMatch("admin", admin)
        if instructor is not None:
            return UserMatch("instructor", instructor)
        return None

    async def get_family_info(self, student_id: str) -> Optional[FamilyInfo]:
        """The student plus up to two parents, resolved in parallel. None if no such student."""
        student = await asyncio.to_thread(self.students.get_by_id, student_id)
        if student is None:
            return None
        parents = await asyncio.gather(
            *(asyncio.to_thread(self.parents.get_by_id, pid) for pid in student.parent_ids)
        )
        return FamilyInfo(student=student, parents=[p for p in parents if p is not None])

    async def find_available_instructors(
        self,
        student_id: str,
        instrument: Optional[str] = None,
        day: Optional[str] = None,
    ) -> List[Instructor]:
        student = await asyncio.to_thread(self.students.get_by_id, student_id)
        if student is None:
            raise NotFoundException(f"Student {student_id} not found", code="STUDENT_NOT_FOUND")
        return await asyncio.to_thread(
            self.instructors.find_matching, student.grade, instrument, day
        )

    async def get_dashboard_data(self) -> Dict[str, Any]:
        """
        Counts for every entity kind, gathered in parallel.

        Kinds with a status (students, instructors, classes, registrations)
        report ``total`` and ``active``; parents, admins and rooms only ``total``.
        """
        (
            students_total,
            students_active,
            instructors_total,
            instructors_active,
            classes_total,
            classes_active,
            registrations_total,
            registrations_active,
            parents_total,
            admins_total,
            rooms_total,
        ) = await asyncio.gather(
            asyncio.to_thread(self.students.count),
            asyncio.to_thread(self.students.count, is_active=True),
            asyncio.to_thread(self.instructors.count),
            asyncio.to_thread(self.instructors.count, is_active=True),
            asyncio.to_thread(self.classes.count),
            asyncio.to_thread(self.classes.count, is_active=True),
            asyncio.to_thread(self.registrations.count),
            asyncio.to_thread(self.registrations.count_active),
            asyncio.to_thread(self.parents.count),
            asyncio.to_thread(self.admins.count),
            asyncio.to_thread(self.rooms.count),
        )
        return {
            "students": {"total": students_total, "active": students_active},
            "instructors": {"total": instructors_total, "active": instructors_active},
            "classes": {"total": classes_total, "active": classes_active},
            "registrations": {"total": registrations_total, "active": registrations_active},
            "parents": {"total": parents_total},
            "admins": {"total": admins_total},
            "rooms": {"total": rooms_total},
            "generated_at": datetime.now(timezone.utc).isoformat(),
        }

    async def get_health_status(self) -> Dict[str, Any]:
        """
        Check every repository with ``count()``.

        A failing repository marks the unit unhealthy but never stops the
        remaining checks; every result is collected.
        """
        repos = {kind: self.repository(kind) for kind in ENTITY_KINDS}
        results = await asyncio.gather(
            *(asyncio.to_thread(repo.count) for repo in repos.values()),
            return_exceptions=True,
        )

        report: Dict[str, Dict[str, Any]] = {}
        for kind, outcome in zip(repos, results):
            if isinstance(outcome, BaseException):
                logger.error(f"Health check failed for {kind}: {outcome}")
                report[kind] = {"healthy": False, "error": str(outcome)}
            else:
                report[kind] = {"healthy": True, "count": outcome}

        return {
            "healthy": all(r["healthy"] for r in report.values()),
            "repositories": report,
            "cache": self.cache.stats(),
            "checked_at": datetime.now(timezone.utc).isoformat(),
        }

    # Cache control

    def clear_all_caches(self) -> None:
        if self._disposed:
            raise UnitOfWorkDisposedException()
        self.cache.clear()
        logger.debug("Cleared all repository caches")

    async def refresh_all(self) -> Dict[str, int]:
        """Drop cached reads and reload every entity list from storage."""
        self.clear_all_caches()
        repos = {kind: self.repository(kind) for kind in ENTITY_KINDS}
        rows = await asyncio.gather(
            *(asyncio.to_thread(repo.find_all, force_refresh=True) for repo in repos.values())
        )
        return {kind: len(items) for kind, items in zip(repos, rows)}

    def dispose(self) -> None:
        """Drop repositories and cache; later access fails fast. Safe to call twice."""
        with self._lock:
            if self._disposed:
                return
            self._disposed = True
            self._repositories.clear()
        self.cache.clear()
