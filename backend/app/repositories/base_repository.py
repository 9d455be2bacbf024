# backend/app/repositories/base_repository.py
"""
Base Repository Pattern for the registration engine.

Provides the foundation for all repository classes with:
- Common CRUD operations
- Type safety with generics
- One short-lived session per operation
- Optional per-unit caching of list reads

Repositories hold a ``sessionmaker`` rather than a Session. Every public
method opens its own session, so the async layer can fan calls out to worker
threads without two threads ever sharing a Session. Returned rows are
detached (``expire_on_commit=False``) and safe to read after the call.
"""

from abc import ABC, abstractmethod
from contextlib import contextmanager
import logging
from typing import Any, Generic, Iterator, List, Optional, Type, TypeVar

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from ..core.exceptions import StorageException
from .cache import RepositoryCache
from .cached_repository_mixin import CachedRepositoryMixin, cached_method

# Type variable for generic model support
T = TypeVar("T")

logger = logging.getLogger(__name__)


class IRepository(ABC, Generic[T]):
    """
    Abstract repository interface defining core data access methods.

    All repositories must implement these methods to ensure consistency
    across the application.
    """

    @abstractmethod
    def get_by_id(self, id: str) -> Optional[T]:
        """
        Retrieve an entity by its primary key.

        Returns:
            The entity if found, None otherwise
        """

    @abstractmethod
    def find_all(self) -> List[T]:
        """Retrieve every entity of this kind."""

    @abstractmethod
    def delete(self, id: str) -> bool:
        """
        Delete an entity by its primary key.

        Returns:
            True if deleted, False if not found

        Raises:
            StorageException: If deletion fails
        """

    @abstractmethod
    def exists(self, **kwargs) -> bool:
        """Check if an entity exists with given criteria."""

    @abstractmethod
    def count(self, **kwargs) -> int:
        """Count entities matching given criteria."""


class BaseRepository(CachedRepositoryMixin, IRepository[T]):
    """
    Concrete base repository implementation with common data access patterns.

    Attributes:
        session_factory: sessionmaker producing short-lived sessions
        model: SQLAlchemy model class
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        model: Type[T],
        cache: Optional[RepositoryCache] = None,
    ):
        self.session_factory = session_factory
        self.model = model
        self.logger = logging.getLogger(f"{__name__}.{model.__name__}")
        self.init_cache(cache)

    @property
    def entity_name(self) -> str:
        return self.model.__name__

    @contextmanager
    def session_scope(self, operation: str) -> Iterator[Session]:
        """
        Open a session, commit on success, roll back on error, always close.

        SQLAlchemy errors surface as StorageException; anything else (domain
        exceptions raised inside the block) propagates untouched.
        """
        session = self.session_factory()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            self.logger.error(f"Error during {operation} on {self.entity_name}: {str(e)}")
            raise StorageException(
                f"Failed to {operation} {self.entity_name}: {str(e)}",
                details={"entity": self.entity_name, "operation": operation},
            ) from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def get_by_id(self, id: str) -> Optional[T]:
        with self.session_scope("get") as session:
            return session.get(self.model, id)

    @cached_method
    def find_all(self) -> List[T]:
        """All entities. Served from the unit's cache unless ``force_refresh=True``."""
        with self.session_scope("list") as session:
            return list(session.scalars(select(self.model)).all())

    def create(self, **kwargs: Any) -> T:
        with self.session_scope("create") as session:
            entity = self.model(**kwargs)
            session.add(entity)
        self.invalidate_all_cache()
        return entity

    def update(self, id: str, **kwargs: Any) -> Optional[T]:
        """Update only the provided fields; returns None when the entity is missing."""
        with self.session_scope("update") as session:
            entity = session.get(self.model, id)
            if entity is None:
                return None
            for key, value in kwargs.items():
                if hasattr(entity, key):
                    setattr(entity, key, value)
        self.invalidate_all_cache()
        return entity

    def delete(self, id: str) -> bool:
        with self.session_scope("delete") as session:
            entity = session.get(self.model, id)
            if entity is None:
                return False
            session.delete(entity)
        self.invalidate_all_cache()
        return True

    def exists(self, **kwargs: Any) -> bool:
        with self.session_scope("check") as session:
            stmt = select(self.model).filter_by(**kwargs).limit(1)
            return session.scalars(stmt).first() is not None

    def count(self, **kwargs: Any) -> int:
        with self.session_scope("count") as session:
            matching = select(self.model).filter_by(**kwargs).subquery()
            stmt = select(func.count()).select_from(matching)
            return int(session.scalar(stmt) or 0)

    def find_by(self, **kwargs: Any) -> List[T]:
        """Find entities by exact-match criteria."""
        with self.session_scope("find") as session:
            return list(session.scalars(select(self.model).filter_by(**kwargs)).all())
