"""
Outbox-backed asynchronous event publisher.

Publishing writes one outbox row per subscribed handler, then schedules an
immediate delivery task for each row and returns; the registration workflow
waits for the outbox write and never for audit or email work. A failing
handler is logged and counted, its row is rescheduled with backoff, and the
outbox worker (``run_worker``) retries it until it succeeds or runs out of
attempts. Rows left behind by a crash or restart are picked up the same way.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Set, Tuple, Type

from pydantic_core import to_jsonable_python

from app.core.config import settings
from app.core.exceptions import StorageException
from app.events.registration_events import REGISTRATION_EVENT_TYPES, RegistrationEvent
from app.monitoring.prometheus_metrics import prometheus_metrics
from app.repositories.event_outbox_repository import EventOutboxRepository

logger = logging.getLogger(__name__)

EventHandler = Callable[[RegistrationEvent], Awaitable[None]]


class EventPublisher:
    """Routes registration events to subscribed async handlers through the outbox."""

    def __init__(self, outbox: EventOutboxRepository) -> None:
        self.outbox = outbox
        self._handlers: Dict[Type[RegistrationEvent], List[Tuple[str, EventHandler]]] = {}
        self._event_types: Dict[str, Type[RegistrationEvent]] = {
            cls.__name__: cls for cls in REGISTRATION_EVENT_TYPES
        }
        self._tasks: Set[asyncio.Task] = set()

    def subscribe(
        self,
        event_type: Type[RegistrationEvent],
        handler: EventHandler,
        *,
        name: str | None = None,
    ) -> None:
        """
        Attach ``handler`` to ``event_type`` and its subclasses.

        The name is stored on outbox rows to find the handler again on retry,
        so it must be unique per event type.
        """
        handler_name = name or getattr(handler, "__name__", repr(handler))
        registered = self._handlers.setdefault(event_type, [])
        if any(existing == handler_name for existing, _ in registered):
            raise ValueError(
                f"Handler {handler_name!r} is already subscribed to {event_type.__name__}"
            )
        registered.append((handler_name, handler))
        self._event_types.setdefault(event_type.__name__, event_type)

    def unsubscribe(self, event_type: Type[RegistrationEvent], handler: EventHandler) -> None:
        self._handlers[event_type] = [
            entry for entry in self._handlers.get(event_type, []) if entry[1] is not handler
        ]

    def handlers_for(self, event: RegistrationEvent) -> List[Tuple[str, EventHandler]]:
        matched: List[Tuple[str, EventHandler]] = []
        for event_type, handlers in self._handlers.items():
            if isinstance(event, event_type):
                matched.extend(handlers)
        return matched

    async def publish(self, event: RegistrationEvent) -> int:
        """
        Persist one outbox job per matching handler and start delivering them.

        Returns the number of jobs. Must be called from a running event loop.
        If the outbox cannot be written the handlers still run once, without
        a durable record to retry from.
        """
        handlers = self.handlers_for(event)
        event_type = event.__class__.__name__
        if not handlers:
            logger.info("registration_event=%s handlers=0", event_type)
            return 0

        # Unknown values in free-form details are stored by their str()
        payload = to_jsonable_python(event, fallback=str)
        aggregate_id = getattr(event, "registration_id", None)
        jobs = [
            {
                "event_type": event_type,
                "handler": handler_name,
                "payload": payload,
                "aggregate_id": aggregate_id,
                "idempotency_key": f"{event.event_id}:{handler_name}",
            }
            for handler_name, _ in handlers
        ]
        try:
            rows = await asyncio.to_thread(self.outbox.enqueue_many, jobs)
        except StorageException:
            logger.exception("Failed to persist %s to the event outbox", event_type)
            for handler_name, _ in handlers:
                self._schedule(None, event_type, handler_name, payload)
        else:
            for row in rows:
                self._schedule(row.id, row.event_type, row.handler, payload)

        logger.info("registration_event=%s handlers=%d", event_type, len(handlers))
        return len(handlers)

    def _schedule(
        self, job_id: Optional[str], event_type: str, handler_name: str, payload: Mapping[str, Any]
    ) -> None:
        task = asyncio.create_task(self._dispatch(job_id, event_type, handler_name, payload))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _resolve(self, event_type: str, handler_name: str, payload: Mapping[str, Any]):
        cls = self._event_types.get(event_type)
        if cls is None:
            raise LookupError(f"Unknown event type {event_type}")
        event = cls.model_validate(dict(payload))
        for name, handler in self.handlers_for(event):
            if name == handler_name:
                return event, handler
        raise LookupError(f"No handler {handler_name!r} subscribed to {event_type}")

    async def _dispatch(
        self, job_id: Optional[str], event_type: str, handler_name: str, payload: Mapping[str, Any]
    ) -> bool:
        """Claim, run and settle one job; returns True when the handler succeeded."""
        if job_id is not None:
            try:
                if not await asyncio.to_thread(self.outbox.claim, job_id):
                    return False
            except StorageException:
                logger.exception("Failed to claim outbox job %s", job_id)
                return False

        try:
            event, handler = self._resolve(event_type, handler_name, payload)
            await handler(event)
        except Exception as exc:
            logger.exception(
                "Registration event handler %s failed for %s", handler_name, event_type
            )
            prometheus_metrics.record_side_channel_failure(event_type, handler_name)
            if job_id is not None:
                await self._settle_failed(job_id, event_type, handler_name, exc)
            return False

        if job_id is not None:
            try:
                await asyncio.to_thread(self.outbox.mark_sent, job_id)
            except StorageException:
                # The claim lease runs out and the job is delivered again
                logger.exception("Failed to mark outbox job %s sent", job_id)
        return True

    async def _settle_failed(
        self, job_id: str, event_type: str, handler_name: str, exc: Exception
    ) -> None:
        try:
            terminal = await asyncio.to_thread(
                self.outbox.mark_failed, job_id, f"{type(exc).__name__}: {exc}"
            )
        except StorageException:
            logger.exception("Failed to reschedule outbox job %s", job_id)
            return
        if terminal:
            logger.error(
                "Outbox job moved to dead-letter state",
                extra={"job_id": job_id, "event_type": event_type, "handler": handler_name},
            )
            prometheus_metrics.record_event_dead_letter(event_type, handler_name)

    async def process_due(self, limit: Optional[int] = None) -> int:
        """Deliver every due outbox job once; returns how many succeeded."""
        jobs = await asyncio.to_thread(
            self.outbox.fetch_due, limit or settings.event_worker_batch_size
        )
        delivered = 0
        for job in jobs:
            if await self._dispatch(job.id, job.event_type, job.handler, job.payload):
                delivered += 1
        return delivered

    async def run_worker(
        self, stop_event: asyncio.Event, poll_interval: Optional[float] = None
    ) -> None:
        """Poll the outbox until ``stop_event`` is set."""
        interval = poll_interval or settings.event_worker_poll_interval_seconds
        logger.info("Event outbox worker started (poll every %.1fs)", interval)
        while not stop_event.is_set():
            try:
                await self.process_due()
            except Exception as exc:
                logger.exception("Event outbox worker loop error: %s", str(exc))
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                continue
        logger.info("Event outbox worker stopped")

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait until every scheduled delivery task has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))
