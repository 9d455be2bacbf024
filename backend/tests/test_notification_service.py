"""Tests for NotificationService and the email templates it renders."""

from datetime import date

import pytest

from app.services.notification_service import NotificationService
from app.services.template_service import TemplateService

REGISTRATION = {
    "id": "S1_I1_Wednesday_15:00",
    "instrument": "Piano",
    "class_title": None,
    "day": "Wednesday",
    "start_time": "15:00",
    "end_time": "15:30",
    "length": 30,
    "school_year": "2025-2026",
    "trimester": "Fall",
    "lesson_cost": 30.0,
}
STUDENT = {"first_name": "Ava", "last_name": "Reyes", "email": "ava@example.org"}
INSTRUCTOR = {"full_name": "Nora Lind", "email": "nora@example.org"}


@pytest.fixture
def fast_retry(monkeypatch):
    async def no_sleep(_seconds):
        return None

    monkeypatch.setattr("app.services.notification_service.asyncio.sleep", no_sleep)


class TestConfirmation:
    @pytest.mark.asyncio
    async def test_sends_to_student_and_instructor(self, notification_service, email_client):
        result = await notification_service.send_registration_confirmation(
            REGISTRATION, STUDENT, INSTRUCTOR, "2025-09-03"
        )

        assert result == {"student": True, "instructor": True}
        by_recipient = {m["to"]: m for m in email_client.sent}
        student_mail = by_recipient["ava@example.org"]
        assert student_mail["subject"].endswith("registration confirmed")
        assert "Hello Ava Reyes" in student_mail["html"]
        assert "with Nora Lind is confirmed" in student_mail["html"]
        assert "September 03, 2025" in student_mail["html"]
        assert "$30.00" in student_mail["html"]
        assert "Ava Reyes has been registered" in by_recipient["nora@example.org"]["html"]

    @pytest.mark.asyncio
    async def test_skips_people_without_email(self, notification_service, email_client):
        result = await notification_service.send_registration_confirmation(
            REGISTRATION, {"first_name": "Ava"}, INSTRUCTOR
        )

        assert result == {"instructor": True}
        assert email_client.recipients() == ["nora@example.org"]

    @pytest.mark.asyncio
    async def test_no_recipients(self, notification_service, email_client):
        assert await notification_service.send_registration_confirmation(REGISTRATION, None, None) == {}
        assert email_client.attempts == 0

    @pytest.mark.asyncio
    async def test_retries_once_then_reports_failure(
        self, notification_service, email_client, fast_retry
    ):
        email_client.fail_for.add("nora@example.org")

        result = await notification_service.send_registration_confirmation(
            REGISTRATION, STUDENT, INSTRUCTOR
        )

        assert result == {"student": True, "instructor": False}
        assert email_client.attempts == 3
        assert email_client.recipients() == ["ava@example.org"]

    @pytest.mark.asyncio
    async def test_transient_failure_recovers(self, email_client, fast_retry):
        class FlakyClient:
            def __init__(self):
                self.calls = 0

            async def send_email(self, to, subject, html):
                self.calls += 1
                if self.calls == 1:
                    raise TimeoutError("relay timeout")
                return await email_client.send_email(to, subject, html)

        flaky = FlakyClient()
        service = NotificationService(flaky)

        result = await service.send_registration_confirmation(REGISTRATION, STUDENT, None)

        assert result == {"student": True}
        assert flaky.calls == 2


class TestCancellation:
    @pytest.mark.asyncio
    async def test_refund_only_shown_to_student(self, notification_service, email_client):
        await notification_service.send_cancellation_notification(
            REGISTRATION, STUDENT, INSTRUCTOR, reason="moving", refund_eligible=True
        )

        by_recipient = {m["to"]: m["html"] for m in email_client.sent}
        assert "Reason: moving" in by_recipient["ava@example.org"]
        assert "full refund" in by_recipient["ava@example.org"]
        assert "full refund" not in by_recipient["nora@example.org"]

    @pytest.mark.asyncio
    async def test_fee_is_formatted(self, notification_service, email_client):
        await notification_service.send_cancellation_notification(
            REGISTRATION, STUDENT, None, cancellation_fee=25.0
        )

        assert "A cancellation fee of $25.00 applies" in email_client.sent[0]["html"]


class TestTemplateService:
    def test_filters(self):
        env = TemplateService().env

        assert env.filters["currency"](1234.5) == "$1,234.50"
        assert env.filters["currency"](None) == "$0.00"
        assert env.filters["format_date"](date(2025, 9, 3)) == "September 03, 2025"
        assert env.filters["format_date"]("not-a-date") == "not-a-date"

    def test_template_exists(self):
        service = TemplateService()

        assert service.template_exists("email/registration_confirmation.html")
        assert not service.template_exists("email/missing.html")

    def test_common_context_is_merged(self):
        html = TemplateService().render_template(
            "email/registration_cancelled.html",
            {"registration": REGISTRATION, "student_name": "Ava Reyes"},
            recipient_role="student",
            recipient_name="Ava Reyes",
        )

        assert "Questions? Reply to" in html
        assert "has been cancelled" in html
