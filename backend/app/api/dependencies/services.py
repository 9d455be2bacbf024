"""
Service layer dependencies for dependency injection.

This module provides factory functions that create service instances
with their required dependencies properly injected.
"""

import logging

from fastapi import Depends, Request
from sqlalchemy.orm import Session, sessionmaker

from ...events.publisher import EventPublisher
from ...repositories.event_outbox_repository import EventOutboxRepository
from ...repositories.unit_of_work import UnitOfWork
from ...services.registration_service import RegistrationService
from .database import get_session_factory
from .repositories import get_unit_of_work

logger = logging.getLogger(__name__)


def get_event_publisher(
    request: Request,
    session_factory: sessionmaker[Session] = Depends(get_session_factory),
) -> EventPublisher:
    """The application-wide publisher created at startup."""
    publisher = getattr(request.app.state, "publisher", None)
    if publisher is None:
        logger.warning("No event publisher on app state; side channels are disabled")
        publisher = EventPublisher(EventOutboxRepository(session_factory))
    return publisher


def get_registration_service(
    uow: UnitOfWork = Depends(get_unit_of_work),
    publisher: EventPublisher = Depends(get_event_publisher),
) -> RegistrationService:
    """
    Get registration service instance.

    Args:
        uow: Request-scoped unit of work
        publisher: Application event publisher

    Returns:
        RegistrationService instance
    """
    return RegistrationService(uow, publisher)
