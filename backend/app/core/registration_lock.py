"""
Single-writer locks for registration slots.

Conflict checking is check-then-act: read the existing registrations, decide,
then insert. Writes are serialized per ``(school_year, trimester, day)`` so the
read and the insert happen without another writer slipping in between. Every
instructor, room and student collision lives on one day of one partition, which
makes that key sufficient for all three invariants.

Two layers make up the lock:

- a process-local mutex per key, so threads of one worker queue up locally
- a Redis ``SET NX EX`` mutex shared by every worker process when
  ``REDIS_URL`` is configured

Without Redis (not configured, unreachable, or failing mid-request) the
process-local mutex is all there is and the partial unique index on active
registration ids is the last line of defence against duplicates.
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass, field
import logging
import threading
import time
from typing import Dict, Iterator, Optional, Tuple

from redis import Redis
import ulid

from app.core.config import settings
from app.monitoring.prometheus_metrics import prometheus_metrics

logger = logging.getLogger(__name__)

SlotKey = Tuple[str, str, str]

_SYNC_REDIS: Optional[Redis] = None
_SYNC_REDIS_LOCK = threading.Lock()
_SYNC_REDIS_RETRY_AT = 0.0
_REDIS_RETRY_INTERVAL_S = 30.0


def slot_key(school_year: Optional[str], trimester: Optional[str], day: Optional[str]) -> SlotKey:
    return (school_year or "", trimester or "", day or "")


def _lock_key(key: SlotKey) -> str:
    return "registration-slot:" + ":".join(key)


def _namespaced_key(key: str) -> str:
    return f"{settings.redis_namespace}:lock:{key}"


def _get_sync_redis() -> Optional[Redis]:
    """Shared client for ``settings.redis_url``; None when unset or unreachable."""
    global _SYNC_REDIS, _SYNC_REDIS_RETRY_AT
    if _SYNC_REDIS is not None:
        return _SYNC_REDIS
    if not settings.redis_url:
        return None
    with _SYNC_REDIS_LOCK:
        if _SYNC_REDIS is not None:
            return _SYNC_REDIS
        if time.monotonic() < _SYNC_REDIS_RETRY_AT:
            return None
        try:
            client = Redis.from_url(
                settings.redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
            client.ping()
        except Exception as exc:
            _SYNC_REDIS_RETRY_AT = time.monotonic() + _REDIS_RETRY_INTERVAL_S
            logger.warning("registration_lock_sync_redis_unavailable: %s", exc)
            return None
        _SYNC_REDIS = client
        return _SYNC_REDIS


@dataclass
class _LocalSlot:
    lock: threading.Lock = field(default_factory=threading.Lock)
    users: int = 0


class RegistrationSlotLock:
    """
    Per-slot mutex shared by every repository that holds this instance.

    Local entries live only while some thread holds or waits for them, so the
    registry does not grow with the number of slots ever written.
    """

    def __init__(
        self,
        redis_client: Optional[Redis] = None,
        *,
        use_redis: bool = True,
        ttl_s: Optional[int] = None,
        poll_interval_s: float = 0.05,
    ) -> None:
        self._guard = threading.Lock()
        self._slots: Dict[SlotKey, _LocalSlot] = {}
        self._redis = redis_client
        self._use_redis = use_redis
        self.ttl_s = ttl_s or settings.registration_lock_ttl_seconds
        self.poll_interval_s = poll_interval_s

    def _client(self) -> Optional[Redis]:
        if self._redis is not None:
            return self._redis
        if not self._use_redis:
            return None
        return _get_sync_redis()

    def _checkout(self, key: SlotKey) -> _LocalSlot:
        with self._guard:
            slot = self._slots.get(key)
            if slot is None:
                slot = _LocalSlot()
                self._slots[key] = slot
            slot.users += 1
            return slot

    def _checkin(self, key: SlotKey, slot: _LocalSlot) -> None:
        with self._guard:
            slot.users -= 1
            if slot.users == 0 and self._slots.get(key) is slot:
                del self._slots[key]

    @contextmanager
    def hold(self, key: SlotKey, timeout_s: float = 30.0) -> Iterator[None]:
        """
        Hold the slot for the duration of the block.

        Raises:
            TimeoutError: The slot stayed busy for ``timeout_s``
        """
        started = time.monotonic()
        deadline = started + timeout_s
        slot = self._checkout(key)
        try:
            if not slot.lock.acquire(timeout=timeout_s):
                prometheus_metrics.record_registration_lock("acquire", "timeout")
                raise TimeoutError(f"Timed out waiting for registration slot lock {key}")
            try:
                token = self._acquire_shared(key, deadline)
                waited = time.monotonic() - started
                prometheus_metrics.record_registration_lock("acquire", "success")
                if waited > 1.0:
                    logger.warning(
                        "registration_slot_lock_contended key=%s waited=%.2fs", key, waited
                    )
                try:
                    yield
                finally:
                    self._release_shared(key, token)
            finally:
                slot.lock.release()
        finally:
            self._checkin(key, slot)

    def _acquire_shared(self, key: SlotKey, deadline: float) -> Optional[str]:
        """Take the Redis mutex; returns its token, or None when running local-only."""
        client = self._client()
        if client is None:
            if self._use_redis and settings.redis_url:
                prometheus_metrics.record_registration_lock("acquire", "redis_unavailable")
            return None

        name = _namespaced_key(_lock_key(key))
        token = str(ulid.ULID())
        blocked = False
        while True:
            try:
                if client.set(name, token, nx=True, ex=self.ttl_s):
                    return token
            except Exception as exc:
                prometheus_metrics.record_registration_lock("acquire", "error")
                logger.warning(
                    "registration_lock_redis_acquire_failed",
                    extra={"slot": list(key), "error": str(exc), "error_type": type(exc).__name__},
                )
                return None
            if not blocked:
                blocked = True
                prometheus_metrics.record_registration_lock("acquire", "blocked")
            if time.monotonic() >= deadline:
                prometheus_metrics.record_registration_lock("acquire", "timeout")
                raise TimeoutError(f"Timed out waiting for registration slot lock {key}")
            time.sleep(self.poll_interval_s)

    def _release_shared(self, key: SlotKey, token: Optional[str]) -> None:
        if token is None:
            prometheus_metrics.record_registration_lock("release", "success")
            return
        client = self._client()
        name = _namespaced_key(_lock_key(key))
        try:
            # After the TTL another worker may own the key; leave theirs alone
            if client is not None and client.get(name) == token:
                client.delete(name)
                prometheus_metrics.record_registration_lock("release", "success")
            else:
                prometheus_metrics.record_registration_lock("release", "expired")
                logger.warning("registration_slot_lock_expired_before_release key=%s", key)
        except Exception as exc:
            prometheus_metrics.record_registration_lock("release", "error")
            logger.warning(
                "registration_lock_redis_release_failed",
                extra={"slot": list(key), "error": str(exc), "error_type": type(exc).__name__},
            )


registration_slot_lock = RegistrationSlotLock()
