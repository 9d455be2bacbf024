# backend/app/main.py
from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager, suppress
import logging
from typing import AsyncGenerator, Optional

from fastapi import FastAPI
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from .core.config import is_running_tests, settings
from .core.constants import API_DESCRIPTION, API_TITLE, API_VERSION, BRAND_NAME
from .database import SessionLocal, engine, init_db
from .errors import register_error_handlers
from .events.handlers import register_default_handlers
from .events.publisher import EventPublisher
from .repositories.event_outbox_repository import EventOutboxRepository
from .repositories.unit_of_work import UnitOfWork
from .routes import prometheus, registrations
from .services.email import EmailClient, create_email_client
from .services.notification_service import NotificationService

logger = logging.getLogger(__name__)


def create_app(
    session_factory: Optional[sessionmaker[Session]] = None,
    bind: Optional[Engine] = None,
    email_client: Optional[EmailClient] = None,
) -> FastAPI:
    """
    Build the registration API.

    The application owns one EventPublisher with the audit and email
    handlers attached. Outside tests an outbox worker retries failed and
    orphaned side-channel jobs; on shutdown in-flight deliveries are drained
    and the worker is stopped.
    """
    factory = session_factory or SessionLocal
    publisher = EventPublisher(EventOutboxRepository(factory))
    notification_service = NotificationService(email_client or create_email_client(settings))
    register_default_handlers(publisher, lambda: UnitOfWork(factory), notification_service)

    @asynccontextmanager
    async def app_lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Handle application startup/shutdown without deprecated events."""
        logger.info(f"{BRAND_NAME} registration API starting up...")
        logger.info(f"Environment: {settings.environment}")
        if is_running_tests():
            logger.info("Running under pytest (test mode active)")
        init_db(bind or factory.kw.get("bind") or engine)
        logger.info(
            f"Operative term: {settings.current_school_year} {settings.current_trimester}"
        )

        worker_task: asyncio.Task[None] | None = None
        worker_stop_event: asyncio.Event | None = None
        if not settings.is_testing:
            worker_stop_event = asyncio.Event()
            worker_task = asyncio.create_task(publisher.run_worker(worker_stop_event))

        yield

        pending = publisher.pending
        if pending:
            logger.info(f"Draining {pending} side-channel task(s) before shutdown")
        await publisher.drain()
        if worker_task is not None:
            if worker_stop_event is not None:
                worker_stop_event.set()
            with suppress(BaseException):
                await worker_task
        logger.info(f"{BRAND_NAME} registration API shut down")

    app = FastAPI(
        title=API_TITLE,
        description=API_DESCRIPTION,
        version=API_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=app_lifespan,
    )
    app.state.session_factory = factory
    app.state.publisher = publisher
    app.state.notification_service = notification_service

    register_error_handlers(app)
    app.include_router(registrations.router, prefix="/api")
    app.include_router(prometheus.router)
    return app


app = create_app()
