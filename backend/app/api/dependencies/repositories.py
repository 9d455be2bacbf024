"""Repository-level dependency providers."""

from typing import AsyncGenerator

from fastapi import Depends
from sqlalchemy.orm import Session, sessionmaker

from ...repositories.unit_of_work import UnitOfWork
from .database import get_session_factory


async def get_unit_of_work(
    session_factory: sessionmaker[Session] = Depends(get_session_factory),
) -> AsyncGenerator[UnitOfWork, None]:
    """Provide a request-scoped UnitOfWork, disposed when the request ends."""
    async with UnitOfWork(session_factory) as uow:
        yield uow
