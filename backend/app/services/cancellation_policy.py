# backend/app/services/cancellation_policy.py
"""
Cancellation policy for registrations.

Decides whether a registration may be cancelled now:
- cancelled and completed registrations are blocked outright
- inside the no-cancel window before the next lesson, managerial approval
  is required and nothing is mutated
- otherwise cancellation is allowed; it is refund eligible until the first
  lesson has started, after which the late cancellation fee applies
- once the trimester's last scheduled lesson has begun there is no window left
  to protect

Lesson times are wall-clock times in the school's timezone.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import pytz

from app.core.config import settings
from app.core.enums import RegistrationStatus
from app.models.registration import Registration, time_to_minutes

TERMINAL_STATUSES = frozenset({RegistrationStatus.CANCELLED.value, RegistrationStatus.COMPLETED.value})


@dataclass(frozen=True)
class CancellationDecision:
    can_cancel: bool
    requires_managerial_approval: bool = False
    reason: Optional[str] = None
    refund_eligible: bool = False
    cancellation_fee: float = 0.0
    hours_until_next_lesson: Optional[float] = None
    next_lesson_at: Optional[datetime] = None

    def to_payload(self) -> Dict[str, Any]:
        return {
            "can_cancel": self.can_cancel,
            "requires_managerial_approval": self.requires_managerial_approval,
            "reason": self.reason,
            "refund_eligible": self.refund_eligible,
            "cancellation_fee": round(float(self.cancellation_fee), 2),
            "hours_until_next_lesson": (
                round(self.hours_until_next_lesson, 2)
                if self.hours_until_next_lesson is not None
                else None
            ),
            "next_lesson_at": self.next_lesson_at.isoformat() if self.next_lesson_at else None,
        }


class CancellationPolicy:
    """Evaluates cancellation requests against the no-cancel window and fee rules."""

    def __init__(
        self,
        window_hours: Optional[int] = None,
        late_cancellation_fee: Optional[float] = None,
        school_timezone: Optional[str] = None,
        lessons_per_trimester: Optional[int] = None,
    ):
        self.window_hours = settings.cancellation_window_hours if window_hours is None else window_hours
        self.late_cancellation_fee = (
            settings.late_cancellation_fee if late_cancellation_fee is None else late_cancellation_fee
        )
        self.tz = pytz.timezone(school_timezone or settings.school_timezone)
        self.lessons_per_trimester = lessons_per_trimester or settings.lessons_per_trimester

    def evaluate(
        self,
        registration: Registration,
        now: Optional[datetime] = None,
        *,
        ignore_window: bool = False,
    ) -> CancellationDecision:
        """
        Decide whether ``registration`` may be cancelled at ``now``.

        ``ignore_window`` is used once a manager has approved a cancellation
        inside the no-cancel window; fees still apply.
        """
        if registration.status in TERMINAL_STATUSES:
            return CancellationDecision(
                can_cancel=False,
                reason=f"Registration is already {registration.status}",
            )

        local_now = self._to_local(now or datetime.now(timezone.utc))
        next_lesson_at = self._next_lesson_at(registration, local_now)
        hours_until = None
        if next_lesson_at is not None:
            hours_until = (next_lesson_at - local_now).total_seconds() / 3600
            if not ignore_window and hours_until < self.window_hours:
                return CancellationDecision(
                    can_cancel=False,
                    requires_managerial_approval=True,
                    reason=(
                        f"Cancellation within {self.window_hours} hours of the next lesson "
                        "requires managerial approval"
                    ),
                    hours_until_next_lesson=hours_until,
                    next_lesson_at=next_lesson_at,
                )

        first_lesson = registration.first_lesson_date()
        started = (
            first_lesson is not None
            and self._localize(first_lesson, registration.start_time) <= local_now
        )
        return CancellationDecision(
            can_cancel=True,
            refund_eligible=not started,
            cancellation_fee=self.late_cancellation_fee if started else 0.0,
            hours_until_next_lesson=hours_until,
            next_lesson_at=next_lesson_at,
        )

    def _next_lesson_at(self, registration: Registration, local_now: datetime) -> Optional[datetime]:
        next_date = registration.next_lesson_date(local_now.date())
        if next_date is None or not registration.start_time:
            return None
        candidate = self._localize(next_date, registration.start_time)
        if candidate < local_now:
            # Today's lesson already began; the next one is a week out
            candidate = self._localize(next_date + timedelta(weeks=1), registration.start_time)
        last_date = registration.first_lesson_date() + timedelta(
            weeks=self.lessons_per_trimester - 1
        )
        if candidate.date() > last_date:
            return None
        return candidate

    def _localize(self, day, start_time: Optional[str]) -> datetime:
        minutes = time_to_minutes(start_time)
        naive = datetime(day.year, day.month, day.day, minutes // 60, minutes % 60)
        return self.tz.localize(naive)

    def _to_local(self, moment: datetime) -> datetime:
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=timezone.utc)
        return moment.astimezone(self.tz)
