"""
Database-related dependencies.
"""

from fastapi import Request
from sqlalchemy.orm import Session, sessionmaker

from ...database import SessionLocal


def get_session_factory(request: Request) -> sessionmaker[Session]:
    """
    Session factory dependency.

    The application may install its own factory on ``app.state`` (tests point
    it at a temporary database); otherwise the module default is used.
    """
    return getattr(request.app.state, "session_factory", SessionLocal)
