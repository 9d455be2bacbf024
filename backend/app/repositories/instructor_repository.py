# backend/app/repositories/instructor_repository.py
"""
Instructor and Admin repositories.

Email lookups are case-insensitive and run against the cached full list;
there are only a few dozen staff rows per program.
"""

import logging
from typing import List, Optional

from sqlalchemy.orm import Session, sessionmaker

from ..models.instructor import Admin, Instructor
from .base_repository import BaseRepository
from .cache import RepositoryCache

logger = logging.getLogger(__name__)


class InstructorRepository(BaseRepository[Instructor]):
    """Repository for instructor lookups and matching."""

    def __init__(self, session_factory: sessionmaker[Session], cache: Optional[RepositoryCache] = None):
        super().__init__(session_factory, Instructor, cache)

    def find_by_email(self, email: str) -> Optional[Instructor]:
        wanted = email.strip().lower()
        return next((i for i in self.find_all() if (i.email or "").lower() == wanted), None)

    def find_active(self) -> List[Instructor]:
        return [i for i in self.find_all() if i.is_active]

    def find_matching(
        self,
        grade: Optional[str],
        instrument: Optional[str] = None,
        day: Optional[str] = None,
    ) -> List[Instructor]:
        """
        Active instructors who accept ``grade`` and, when given, teach
        ``instrument`` and are available on ``day``.
        """
        matches = []
        for instructor in self.find_active():
            if not instructor.accepts_grade(grade):
                continue
            if instrument and not instructor.teaches(instrument):
                continue
            if day and not instructor.is_available_on(day):
                continue
            matches.append(instructor)
        return matches


class AdminRepository(BaseRepository[Admin]):
    def __init__(self, session_factory: sessionmaker[Session], cache: Optional[RepositoryCache] = None):
        super().__init__(session_factory, Admin, cache)

    def find_by_email(self, email: str) -> Optional[Admin]:
        wanted = email.strip().lower()
        return next((a for a in self.find_all() if (a.email or "").lower() == wanted), None)
