# backend/app/repositories/event_outbox_repository.py
"""
Repository for the registration event outbox.

Implements the enqueue, claim and settle steps the EventPublisher and its
worker need. A job is claimed by pushing its ``next_attempt_at`` past the
lease with a conditional UPDATE; only one dispatcher sees that UPDATE hit a
row, and a claim that is never settled (a crashed worker) simply falls due
again once the lease runs out.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
import logging
from typing import Any, Iterable, List, Mapping, Optional, Sequence

from sqlalchemy import select, update
from sqlalchemy.orm import Session, sessionmaker
import ulid

from ..core.config import settings
from ..models.event_outbox import EventOutbox, EventOutboxStatus
from .base_repository import BaseRepository
from .cache import RepositoryCache

logger = logging.getLogger(__name__)


def _now_utc() -> datetime:
    """Return timezone-aware utcnow suitable for DB comparisons."""
    return datetime.now(timezone.utc)


def retry_delay_seconds(attempt_count: int) -> float:
    """Exponential backoff after the ``attempt_count``-th failure, capped."""
    base = settings.event_retry_base_seconds
    cap = settings.event_retry_cap_seconds
    return min(cap, base * (2 ** max(attempt_count - 1, 0)))


class EventOutboxRepository(BaseRepository[EventOutbox]):
    """Data access helpers for event outbox rows."""

    def __init__(self, session_factory: sessionmaker[Session], cache: Optional[RepositoryCache] = None):
        super().__init__(session_factory, EventOutbox, cache)

    # ------------------------------------------------------------------ enqueue
    def enqueue(
        self,
        event_type: str,
        handler: str,
        payload: Optional[Mapping[str, Any]] = None,
        *,
        aggregate_id: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> EventOutbox:
        """Persist one job ready for immediate delivery."""
        (job,) = self.enqueue_many(
            [
                {
                    "event_type": event_type,
                    "handler": handler,
                    "payload": payload,
                    "aggregate_id": aggregate_id,
                    "idempotency_key": idempotency_key,
                }
            ]
        )
        return job

    def enqueue_many(self, jobs: Sequence[Mapping[str, Any]]) -> List[EventOutbox]:
        """
        Persist several jobs in one transaction; all of them or none.

        Each mapping takes ``event_type``, ``handler`` and optionally
        ``payload``, ``aggregate_id`` and ``idempotency_key``.
        """
        now = _now_utc()
        rows = []
        for job in jobs:
            job_id = str(ulid.ULID())
            rows.append(
                EventOutbox(
                    id=job_id,
                    event_type=job["event_type"],
                    handler=job["handler"],
                    aggregate_id=job.get("aggregate_id"),
                    idempotency_key=job.get("idempotency_key") or job_id,
                    payload=dict(job.get("payload") or {}),
                    status=EventOutboxStatus.PENDING.value,
                    attempt_count=0,
                    next_attempt_at=now,
                )
            )
        if not rows:
            return rows
        with self.session_scope("enqueue") as session:
            session.add_all(rows)
        return rows

    # ---------------------------------------------------------------- fetchers
    def fetch_due(self, limit: int = 50) -> List[EventOutbox]:
        """Pending jobs whose next attempt is due, oldest first."""
        now = _now_utc()
        with self.session_scope("fetch_due") as session:
            stmt = (
                select(EventOutbox)
                .where(EventOutbox.status == EventOutboxStatus.PENDING.value)
                .where(EventOutbox.next_attempt_at <= now)
                .order_by(EventOutbox.next_attempt_at.asc(), EventOutbox.id.asc())
                .limit(limit)
            )
            return list(session.scalars(stmt).all())

    def find_for_aggregate(self, aggregate_id: str) -> List[EventOutbox]:
        with self.session_scope("list") as session:
            stmt = (
                select(EventOutbox)
                .where(EventOutbox.aggregate_id == aggregate_id)
                .order_by(EventOutbox.id)
            )
            return list(session.scalars(stmt).all())

    # ------------------------------------------------------------- state updates
    def claim(self, job_id: str, lease_seconds: Optional[float] = None) -> bool:
        """
        Take a due pending job for delivery.

        Returns False when the job is not due, already settled, or claimed
        by another dispatcher.
        """
        now = _now_utc()
        lease = settings.event_claim_lease_seconds if lease_seconds is None else lease_seconds
        with self.session_scope("claim") as session:
            result = session.execute(
                update(EventOutbox)
                .where(EventOutbox.id == job_id)
                .where(EventOutbox.status == EventOutboxStatus.PENDING.value)
                .where(EventOutbox.next_attempt_at <= now)
                .values(next_attempt_at=now + timedelta(seconds=lease), updated_at=now)
            )
            return result.rowcount == 1

    def mark_sent(self, job_id: str) -> None:
        now = _now_utc()
        with self.session_scope("mark_sent") as session:
            session.execute(
                update(EventOutbox)
                .where(EventOutbox.id == job_id)
                .values(
                    status=EventOutboxStatus.SENT.value,
                    attempt_count=EventOutbox.attempt_count + 1,
                    last_error=None,
                    updated_at=now,
                )
            )

    def mark_failed(self, job_id: str, error: Optional[str] = None) -> bool:
        """
        Record a failed attempt and schedule the retry.

        Returns True when this was the last allowed attempt and the job is
        now FAILED (dead-lettered).
        """
        now = _now_utc()
        with self.session_scope("mark_failed") as session:
            job = session.get(EventOutbox, job_id)
            if job is None:
                self.logger.warning("Attempted to mark missing outbox job %s failed", job_id)
                return False

            attempts = (job.attempt_count or 0) + 1
            terminal = attempts >= settings.event_max_attempts
            job.attempt_count = attempts
            job.last_error = error[:1000] if error else None
            job.updated_at = now
            if terminal:
                job.status = EventOutboxStatus.FAILED.value
                job.next_attempt_at = now
            else:
                job.status = EventOutboxStatus.PENDING.value
                job.next_attempt_at = now + timedelta(seconds=retry_delay_seconds(attempts))
            return terminal

    def reset_failed(self, job_ids: Iterable[str]) -> int:
        """Put dead-lettered jobs back in the queue (maintenance helper)."""
        ids = list(job_ids)
        if not ids:
            return 0
        now = _now_utc()
        with self.session_scope("reset_failed") as session:
            result = session.execute(
                update(EventOutbox)
                .where(EventOutbox.id.in_(ids))
                .where(EventOutbox.status == EventOutboxStatus.FAILED.value)
                .values(
                    status=EventOutboxStatus.PENDING.value,
                    attempt_count=0,
                    next_attempt_at=now,
                    updated_at=now,
                )
            )
            return int(result.rowcount or 0)
