# backend/app/repositories/student_repository.py
"""Read access to students and their parents."""

import logging
from typing import List, Optional

from sqlalchemy.orm import Session, sessionmaker

from ..models.student import Parent, Student
from .base_repository import BaseRepository
from .cache import RepositoryCache

logger = logging.getLogger(__name__)


class StudentRepository(BaseRepository[Student]):
    def __init__(self, session_factory: sessionmaker[Session], cache: Optional[RepositoryCache] = None):
        super().__init__(session_factory, Student, cache)

    def find_active(self) -> List[Student]:
        return self.find_by(is_active=True)

    def find_by_parent_id(self, parent_id: str) -> List[Student]:
        return [s for s in self.find_all() if parent_id in s.parent_ids]


class ParentRepository(BaseRepository[Parent]):
    def __init__(self, session_factory: sessionmaker[Session], cache: Optional[RepositoryCache] = None):
        super().__init__(session_factory, Parent, cache)

    def find_by_email(self, email: str) -> Optional[Parent]:
        wanted = email.strip().lower()
        return next((p for p in self.find_all() if (p.email or "").lower() == wanted), None)
