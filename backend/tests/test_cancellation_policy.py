"""
Tests for CancellationPolicy (no-cancel window, refunds and late fees).

Now is Monday 2025-09-01 09:00 in America/Los_Angeles.
"""

from datetime import date, datetime, timezone

import pytest

from app.models.registration import Registration
from app.services.cancellation_policy import CancellationPolicy

NOW = datetime(2025, 9, 1, 16, 0, tzinfo=timezone.utc)


def _registration(day="Wednesday", start_time="15:00", expected_start=date(2025, 9, 1), **extra):
    data = {
        "student_id": "S1",
        "registration_type": "private",
        "instructor_id": "I1",
        "day": day,
        "start_time": start_time,
        "length": 30,
        "school_year": "2025-2026",
        "trimester": "Fall",
        "expected_start_date": expected_start,
    }
    data.update(extra)
    return Registration.from_payload(
        data, registration_id="S1_I1_x", registered_by="A1", registered_at=NOW
    )


@pytest.fixture
def policy() -> CancellationPolicy:
    return CancellationPolicy(
        window_hours=24,
        late_cancellation_fee=25.0,
        school_timezone="America/Los_Angeles",
        lessons_per_trimester=12,
    )


def test_before_first_lesson_is_refund_eligible(policy):
    decision = policy.evaluate(_registration(), NOW)

    assert decision.can_cancel
    assert decision.refund_eligible
    assert decision.cancellation_fee == 0.0
    assert decision.hours_until_next_lesson == pytest.approx(54.0)
    assert decision.next_lesson_at.isoformat() == "2025-09-03T15:00:00-07:00"


def test_inside_window_requires_approval(policy):
    decision = policy.evaluate(_registration(day="Monday"), NOW)

    assert not decision.can_cancel
    assert decision.requires_managerial_approval
    assert decision.hours_until_next_lesson == pytest.approx(6.0)
    assert "requires managerial approval" in decision.reason


def test_manager_approval_skips_window(policy):
    decision = policy.evaluate(_registration(day="Monday"), NOW, ignore_window=True)

    assert decision.can_cancel
    assert not decision.requires_managerial_approval
    assert decision.refund_eligible


def test_after_lessons_started_charges_fee(policy):
    decision = policy.evaluate(_registration(expected_start=date(2025, 8, 18)), NOW)

    assert decision.can_cancel
    assert not decision.refund_eligible
    assert decision.cancellation_fee == 25.0


def test_todays_lesson_already_running_looks_at_next_week(policy):
    decision = policy.evaluate(_registration(day="Monday", start_time="08:00"), NOW)

    assert decision.can_cancel
    assert decision.next_lesson_at.date() == date(2025, 9, 8)
    assert decision.cancellation_fee == 25.0


@pytest.mark.parametrize("status", ["cancelled", "completed"])
def test_terminal_statuses_are_blocked(policy, status):
    decision = policy.evaluate(_registration(status=status), NOW)

    assert not decision.can_cancel
    assert not decision.requires_managerial_approval
    assert decision.reason == f"Registration is already {status}"


def test_without_schedule_cancellation_is_free(policy):
    decision = policy.evaluate(_registration(day=None, start_time=None), NOW)

    assert decision.can_cancel
    assert decision.refund_eligible
    assert decision.next_lesson_at is None


def test_naive_now_is_treated_as_utc(policy):
    decision = policy.evaluate(_registration(day="Monday"), NOW.replace(tzinfo=None))

    assert decision.requires_managerial_approval


def test_payload_shape(policy):
    payload = policy.evaluate(_registration(), NOW).to_payload()

    assert payload == {
        "can_cancel": True,
        "requires_managerial_approval": False,
        "reason": None,
        "refund_eligible": True,
        "cancellation_fee": 0.0,
        "hours_until_next_lesson": 54.0,
        "next_lesson_at": "2025-09-03T15:00:00-07:00",
    }


def test_last_scheduled_lesson_is_still_protected(policy):
    # Twelfth Monday lesson from 2025-06-16 falls on 2025-09-01
    decision = policy.evaluate(
        _registration(day="Monday", start_time="13:00", expected_start=date(2025, 6, 16)), NOW
    )

    assert decision.requires_managerial_approval
    assert decision.next_lesson_at.date() == date(2025, 9, 1)


def test_no_window_once_the_schedule_has_ended(policy):
    # Twelfth Monday lesson from 2025-06-02 was 2025-08-18
    decision = policy.evaluate(
        _registration(day="Monday", start_time="13:00", expected_start=date(2025, 6, 2)), NOW
    )

    assert decision.can_cancel
    assert not decision.requires_managerial_approval
    assert decision.next_lesson_at is None
    assert decision.hours_until_next_lesson is None
    assert not decision.refund_eligible
    assert decision.cancellation_fee == 25.0


def test_schedule_length_is_configurable():
    short_term = CancellationPolicy(
        window_hours=24, school_timezone="America/Los_Angeles", lessons_per_trimester=2
    )

    decision = short_term.evaluate(
        _registration(day="Monday", start_time="13:00", expected_start=date(2025, 8, 18)), NOW
    )

    assert decision.next_lesson_at is None
    assert decision.can_cancel
