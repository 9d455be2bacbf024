# backend/app/repositories/group_class_repository.py
"""Group class and room repositories."""

from typing import List, Optional

from sqlalchemy.orm import Session, sessionmaker

from ..models.group_class import GroupClass, Room
from .base_repository import BaseRepository
from .cache import RepositoryCache


class GroupClassRepository(BaseRepository[GroupClass]):
    def __init__(self, session_factory: sessionmaker[Session], cache: Optional[RepositoryCache] = None):
        super().__init__(session_factory, GroupClass, cache)

    def find_active(self) -> List[GroupClass]:
        return [c for c in self.find_all() if c.is_active]

    def find_by_instructor_id(self, instructor_id: str) -> List[GroupClass]:
        return self.find_by(instructor_id=instructor_id)


class RoomRepository(BaseRepository[Room]):
    def __init__(self, session_factory: sessionmaker[Session], cache: Optional[RepositoryCache] = None):
        super().__init__(session_factory, Room, cache)
