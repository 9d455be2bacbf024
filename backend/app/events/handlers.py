"""Event handlers - audit and notification side channels for registration events."""

from __future__ import annotations

import logging
from typing import Callable

from app.events.publisher import EventPublisher
from app.events.registration_events import (
    RegistrationCancelled,
    RegistrationCreated,
    RegistrationFailed,
    RegistrationStatusChanged,
)
from app.repositories.unit_of_work import UnitOfWork
from app.services.audit_service import AuditService
from app.services.notification_service import NotificationService

logger = logging.getLogger(__name__)

UnitOfWorkFactory = Callable[[], UnitOfWork]


class RegistrationEventHandlers:
    """
    Handlers bound to a unit-of-work factory and a notification service.

    Each audit write gets its own UnitOfWork: the request that published the
    event may already have disposed its own.
    """

    def __init__(self, uow_factory: UnitOfWorkFactory, notification_service: NotificationService):
        self.uow_factory = uow_factory
        self.notification_service = notification_service

    async def audit_created(self, event: RegistrationCreated) -> None:
        async with self.uow_factory() as uow:
            await AuditService(uow.audit_logs).log_registration_created(
                event.registration, event.registered_by
            )

    async def audit_cancelled(self, event: RegistrationCancelled) -> None:
        async with self.uow_factory() as uow:
            await AuditService(uow.audit_logs).log_registration_cancelled(
                event.registration,
                event.cancelled_by,
                reason=event.reason,
                mode=event.mode,
                refund_eligible=event.refund_eligible,
                cancellation_fee=event.cancellation_fee,
            )

    async def audit_failed(self, event: RegistrationFailed) -> None:
        async with self.uow_factory() as uow:
            await AuditService(uow.audit_logs).log_registration_failed(
                event.workflow,
                event.registration_id or event.student_id,
                event.actor_id,
                error_code=event.error_code,
                error_message=event.error_message,
                details=event.details,
            )

    async def audit_status_changed(self, event: RegistrationStatusChanged) -> None:
        async with self.uow_factory() as uow:
            await AuditService(uow.audit_logs).log_status_changed(
                event.registration_id, event.previous_status, event.new_status, event.changed_by
            )

    async def notify_created(self, event: RegistrationCreated) -> None:
        await self.notification_service.send_registration_confirmation(
            event.registration, event.student, event.instructor, event.first_lesson
        )
        logger.info("Sent registration confirmation for %s", event.registration_id)

    async def notify_cancelled(self, event: RegistrationCancelled) -> None:
        await self.notification_service.send_cancellation_notification(
            event.registration,
            event.student,
            event.instructor,
            reason=event.reason,
            refund_eligible=event.refund_eligible,
            cancellation_fee=event.cancellation_fee,
        )
        logger.info("Sent cancellation notification for %s", event.registration_id)


def register_default_handlers(
    publisher: EventPublisher,
    uow_factory: UnitOfWorkFactory,
    notification_service: NotificationService,
) -> RegistrationEventHandlers:
    """Subscribe audit and notification handlers for every registration event."""
    handlers = RegistrationEventHandlers(uow_factory, notification_service)
    publisher.subscribe(RegistrationCreated, handlers.audit_created, name="audit")
    publisher.subscribe(RegistrationCreated, handlers.notify_created, name="email")
    publisher.subscribe(RegistrationCancelled, handlers.audit_cancelled, name="audit")
    publisher.subscribe(RegistrationCancelled, handlers.notify_cancelled, name="email")
    publisher.subscribe(RegistrationFailed, handlers.audit_failed, name="audit")
    publisher.subscribe(RegistrationStatusChanged, handlers.audit_status_changed, name="audit")
    return handlers
