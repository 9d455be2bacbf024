"""
Tests for RegistrationService workflows.

Side channels run as event handlers; tests call ``publisher.drain()`` before
asserting on audit rows or emails.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import update

from app.core.exceptions import (
    BusinessRuleException,
    EligibilityException,
    InvalidStatusTransitionException,
    NotFoundException,
    RegistrationConflictException,
    ValidationException,
)
from app.models.event_outbox import EventOutbox, EventOutboxStatus
from app.repositories.event_outbox_repository import EventOutboxRepository
from app.repositories.registration_repository import RegistrationRepository
from app.repositories.unit_of_work import UnitOfWork
from app.services.registration_service import RegistrationService


def _audit_actions(uow, entity_id):
    return [(e.action, e.status) for e in uow.audit_logs.find_for_entity("registration", entity_id)]


class TestProcessRegistration:
    @pytest.mark.asyncio
    async def test_private_registration(
        self, registration_service, publisher, uow, email_client, private_payload
    ):
        result = await registration_service.process_registration(private_payload(), "A1")
        await publisher.drain()

        registration = result["registration"]
        assert result["success"] is True
        assert registration["id"] == "S1_I1_Wednesday_15:00"
        assert registration["room_id"] == "R1"
        assert registration["lesson_cost"] == 30.0
        assert registration["expected_start_date"] == "2025-09-01"
        assert registration["registered_by"] == "A1"

        info = result["enrollment_info"]
        assert info["is_eligible"] is True
        assert info["age"] == 9
        assert info["total_cost"] == 360.0
        assert info["requires_transportation"] is False
        assert info["permission_requirements"] == ["media_release"]
        assert info["student_name"] == "Ava Reyes"

        schedule = result["lesson_schedule"]
        assert len(schedule) == 12
        assert schedule[0]["date"] == "2025-09-03"
        assert schedule[0]["expected_end_time"] == "15:30"

        assert _audit_actions(uow, registration["id"]) == [("created", "success")]
        assert sorted(email_client.recipients()) == ["ava@example.org", "nora@example.org"]

    @pytest.mark.asyncio
    async def test_group_registration_takes_slot_from_class(
        self, registration_service, publisher, group_payload
    ):
        result = await registration_service.process_registration(group_payload(), "A1")
        await publisher.drain()

        registration = result["registration"]
        assert registration["id"] == "S1_C1"
        assert registration["instructor_id"] == "I1"
        assert registration["class_title"] == "Beginner Piano"
        assert (registration["day"], registration["start_time"], registration["length"]) == (
            "Monday",
            "15:00",
            45,
        )
        assert registration["lesson_cost"] == 20.0
        assert result["enrollment_info"]["requires_transportation"] is True
        assert result["enrollment_info"]["permission_requirements"] == [
            "media_release",
            "transportation_permission",
        ]

    @pytest.mark.asyncio
    async def test_term_defaults_to_current(self, registration_service, private_payload):
        payload = private_payload(school_year=None, trimester=None)

        result = await registration_service.process_registration(payload, "A1")

        assert result["registration"]["school_year"] == "2025-2026"
        assert result["registration"]["trimester"] == "Fall"

    @pytest.mark.asyncio
    async def test_validation_failure_has_no_side_effects(
        self, registration_service, publisher, uow, email_client, private_payload
    ):
        with patch.object(UnitOfWork, "get_family_info", new_callable=AsyncMock) as family, patch.object(
            RegistrationRepository, "create"
        ) as create:
            with pytest.raises(ValidationException) as exc_info:
                await registration_service.process_registration(
                    private_payload(instrument=None), "A1"
                )

        assert exc_info.value.errors == ["Instrument is required for private lessons"]
        assert publisher.pending == 0
        family.assert_not_awaited()
        create.assert_not_called()

        await publisher.drain()
        assert uow.registrations.count() == 0
        assert uow.audit_logs.count() == 0
        assert email_client.attempts == 0

    @pytest.mark.asyncio
    async def test_invalid_length_rejected(self, registration_service, uow, private_payload):
        with pytest.raises(ValidationException):
            await registration_service.process_registration(private_payload(length=20), "A1")

        assert uow.registrations.count() == 0

    @pytest.mark.asyncio
    async def test_unknown_student_is_audited(
        self, registration_service, publisher, uow, private_payload
    ):
        with pytest.raises(NotFoundException) as exc_info:
            await registration_service.process_registration(private_payload(student_id="S9"), "A1")
        await publisher.drain()

        assert exc_info.value.code == "STUDENT_NOT_FOUND"
        failures = uow.audit_logs.find_for_entity("registration", "S9")
        assert [(e.action, e.status) for e in failures] == [("create_failed", "failed")]
        assert failures[0].details["error_code"] == "STUDENT_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_unknown_class(self, registration_service, group_payload):
        with pytest.raises(NotFoundException) as exc_info:
            await registration_service.process_registration(group_payload(class_id="C9"), "A1")

        assert exc_info.value.code == "CLASS_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_ineligible_student(self, registration_service, private_payload):
        with pytest.raises(EligibilityException) as exc_info:
            await registration_service.process_registration(private_payload(student_id="S3"), "A1")

        assert exc_info.value.errors == [
            "At least one parent with an email address or phone number is required"
        ]

    @pytest.mark.asyncio
    async def test_program_rules(self, registration_service, private_payload):
        with pytest.raises(BusinessRuleException) as exc_info:
            await registration_service.process_registration(
                private_payload(instructor_id="I2", day="Wednesday"), "A1"
            )

        assert exc_info.value.code == "PROGRAM_VALIDATION_FAILED"
        assert exc_info.value.details["errors"] == ["Instructor Omar Haddad does not teach Piano"]

    @pytest.mark.asyncio
    async def test_inactive_instructor(self, registration_service, private_payload):
        with pytest.raises(BusinessRuleException) as exc_info:
            await registration_service.process_registration(
                private_payload(instructor_id="I3", day="Monday"), "A1"
            )

        assert "Instructor Past Teacher is not active" in exc_info.value.details["errors"]

    @pytest.mark.asyncio
    async def test_conflict_lists_messages(self, registration_service, private_payload):
        await registration_service.process_registration(private_payload(), "A1")

        with pytest.raises(RegistrationConflictException) as exc_info:
            await registration_service.process_registration(
                private_payload(student_id="S2", start_time="15:15"), "A1"
            )

        types = {c["type"] for c in exc_info.value.conflicts}
        assert types == {"instructor_schedule", "room_schedule"}

    @pytest.mark.asyncio
    async def test_full_class_and_admin_override(self, registration_service, uow, group_payload):
        uow.classes.update("C1", size=1)
        await registration_service.process_registration(group_payload(), "A1")

        with pytest.raises(BusinessRuleException) as exc_info:
            await registration_service.process_registration(group_payload(student_id="S2"), "A1")
        assert "is full (1/1)" in exc_info.value.details["errors"][0]

        result = await registration_service.process_registration(
            group_payload(student_id="S2"), "A1", skip_capacity_check=True
        )
        assert result["registration"]["id"] == "S2_C1"

    @pytest.mark.asyncio
    async def test_email_failure_never_fails_registration(
        self, registration_service, publisher, uow, email_client, private_payload
    ):
        email_client.fail_for = {"*"}

        result = await registration_service.process_registration(private_payload(), "A1")
        await publisher.drain()

        assert result["success"] is True
        assert uow.registrations.get_by_id(result["registration"]["id"]) is not None
        assert _audit_actions(uow, result["registration"]["id"]) == [("created", "success")]
        # Two recipients, two attempts each
        assert email_client.attempts == 4
        assert email_client.sent == []

    @pytest.mark.asyncio
    async def test_audit_failure_never_fails_registration(
        self, registration_service, publisher, uow, email_client, private_payload
    ):
        with patch(
            "app.services.audit_service.AuditService.log_registration_created",
            new_callable=AsyncMock,
            side_effect=RuntimeError("audit store down"),
        ):
            result = await registration_service.process_registration(private_payload(), "A1")
            await publisher.drain()

        assert result["success"] is True
        assert len(email_client.sent) == 2

    @pytest.mark.asyncio
    async def test_failed_audit_stays_queued_for_the_worker(
        self, registration_service, publisher, seeded, uow, private_payload
    ):
        with patch(
            "app.services.audit_service.AuditService.log_registration_created",
            new_callable=AsyncMock,
            side_effect=RuntimeError("audit store down"),
        ):
            result = await registration_service.process_registration(private_payload(), "A1")
            await publisher.drain()

        registration_id = result["registration"]["id"]
        outbox = EventOutboxRepository(seeded)
        jobs = {j.handler: j for j in outbox.find_for_aggregate(registration_id)}
        assert jobs["email"].status == EventOutboxStatus.SENT.value
        assert jobs["audit"].status == EventOutboxStatus.PENDING.value
        assert jobs["audit"].attempt_count == 1

        with seeded() as session:
            session.execute(
                update(EventOutbox)
                .where(EventOutbox.id == jobs["audit"].id)
                .values(next_attempt_at=datetime.now(timezone.utc) - timedelta(seconds=1))
            )
            session.commit()
        assert await publisher.process_due() == 1

        assert _audit_actions(uow, registration_id) == [("created", "success")]
        assert outbox.get_by_id(jobs["audit"].id).status == EventOutboxStatus.SENT.value

    @pytest.mark.asyncio
    async def test_concurrent_creates_for_one_slot(
        self, registration_service, uow, private_payload
    ):
        outcomes = await asyncio.gather(
            registration_service.process_registration(private_payload(student_id="S1"), "A1"),
            registration_service.process_registration(
                private_payload(student_id="S2", start_time="15:10"), "A1"
            ),
            return_exceptions=True,
        )

        successes = [o for o in outcomes if isinstance(o, dict)]
        conflicts = [o for o in outcomes if isinstance(o, RegistrationConflictException)]
        assert len(successes) == 1
        assert len(conflicts) == 1
        assert uow.registrations.count() == 1

    @pytest.mark.asyncio
    async def test_same_slot_in_consecutive_terms(
        self, registration_service, publisher, uow, private_payload
    ):
        fall = await registration_service.process_registration(private_payload(), "A1")
        winter = await registration_service.process_registration(
            private_payload(trimester="Winter"), "A1"
        )
        await publisher.drain()

        assert fall["registration"]["id"] == winter["registration"]["id"] == "S1_I1_Wednesday_15:00"
        assert winter["registration"]["trimester"] == "Winter"
        assert sorted(r.trimester for r in uow.registrations.find_by_student_id("S1")) == [
            "Fall",
            "Winter",
        ]

        with pytest.raises(RegistrationConflictException) as exc_info:
            await registration_service.process_registration(
                private_payload(trimester="Winter"), "A1"
            )
        assert exc_info.value.conflicts[0]["type"] == "duplicate"

    @pytest.mark.asyncio
    async def test_reregistration_after_cancel_keeps_history(
        self, registration_service, publisher, uow, private_payload
    ):
        created = await registration_service.process_registration(private_payload(), "A1")
        registration_id = created["registration"]["id"]
        await registration_service.cancel_registration(registration_id, "moving", "P1")

        again = await registration_service.process_registration(private_payload(), "A2")
        await publisher.drain()

        assert again["registration"]["id"] == registration_id
        history = uow.registrations.find_history(registration_id)
        assert sorted((r.status, r.registered_by) for r in history) == [
            ("cancelled", "A1"),
            ("pending", "A2"),
        ]
        details = await registration_service.get_registration_details(registration_id)
        assert details["registration"]["registered_by"] == "A2"


class TestCancelRegistration:
    @pytest.mark.asyncio
    async def test_soft_cancel_before_first_lesson(
        self, registration_service, publisher, uow, email_client, private_payload
    ):
        created = await registration_service.process_registration(private_payload(), "A1")
        await publisher.drain()
        registration_id = created["registration"]["id"]

        result = await registration_service.cancel_registration(registration_id, "moving", "P1")
        await publisher.drain()

        assert result["success"] is True
        assert result["refund_eligible"] is True
        assert result["cancellation_fee"] == 0.0
        assert result["cancellation_info"]["mode"] == "soft"
        assert result["cancellation_info"]["cancelled_by"] == "P1"

        stored = uow.registrations.get_by_id(registration_id)
        assert stored.status == "cancelled"
        assert stored.cancellation_reason == "moving"
        assert _audit_actions(uow, registration_id) == [
            ("created", "success"),
            ("cancelled", "success"),
        ]
        assert sum("cancelled" in m["subject"] for m in email_client.sent) == 2

    @pytest.mark.asyncio
    async def test_scenario_d_inside_window_needs_approval(
        self, registration_service, publisher, uow, email_client, private_payload
    ):
        created = await registration_service.process_registration(
            private_payload(day="Monday"), "A1"
        )
        await publisher.drain()
        registration_id = created["registration"]["id"]
        sent_before = len(email_client.sent)

        result = await registration_service.cancel_registration(registration_id, "sick", "P1")
        await publisher.drain()

        assert result["success"] is False
        assert result["status"] == "pending_approval"
        assert result["approval_required"] is True
        assert result["policy"]["requires_managerial_approval"] is True
        stored = uow.registrations.get_by_id(registration_id)
        assert stored.status == "pending"
        assert stored.cancelled_by is None
        assert _audit_actions(uow, registration_id) == [("created", "success")]
        assert len(email_client.sent) == sent_before

    @pytest.mark.asyncio
    async def test_manager_approval_inside_window(
        self, registration_service, uow, private_payload
    ):
        created = await registration_service.process_registration(
            private_payload(day="Monday"), "A1"
        )

        result = await registration_service.cancel_registration(
            created["registration"]["id"], "sick", "A1", manager_approved=True
        )

        assert result["success"] is True
        assert result["cancellation_info"]["manager_approved"] is True
        assert uow.registrations.get_by_id(created["registration"]["id"]).status == "cancelled"

    @pytest.mark.asyncio
    async def test_already_cancelled(self, registration_service, private_payload):
        created = await registration_service.process_registration(private_payload(), "A1")
        registration_id = created["registration"]["id"]
        await registration_service.cancel_registration(registration_id, None, "A1")

        with pytest.raises(BusinessRuleException) as exc_info:
            await registration_service.cancel_registration(registration_id, None, "A1")

        assert exc_info.value.code == "CANCELLATION_NOT_ALLOWED"

    @pytest.mark.asyncio
    async def test_unknown_registration(self, registration_service):
        with pytest.raises(NotFoundException) as exc_info:
            await registration_service.cancel_registration("nope", None, "A1")

        assert exc_info.value.code == "REGISTRATION_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_hard_mode_deletes(self, uow, publisher, clock, private_payload):
        service = RegistrationService(uow, publisher, clock, cancellation_mode="hard")
        created = await service.process_registration(private_payload(), "A1")
        await publisher.drain()
        registration_id = created["registration"]["id"]

        result = await service.cancel_registration(registration_id, "duplicate entry", "A1")
        await publisher.drain()

        assert result["cancellation_info"]["mode"] == "hard"
        assert uow.registrations.get_by_id(registration_id) is None
        assert _audit_actions(uow, registration_id)[-1] == ("deleted", "success")


class TestQueriesAndStatus:
    @pytest.mark.asyncio
    async def test_registration_details(self, registration_service, private_payload):
        created = await registration_service.process_registration(private_payload(), "A1")

        details = await registration_service.get_registration_details(
            created["registration"]["id"]
        )

        assert details["student"]["id"] == "S1"
        assert details["instructor"]["id"] == "I1"
        assert details["room"]["name"] == "Music Room"
        assert details["group_class"] is None
        assert details["total_cost"] == 360.0
        assert details["next_lesson_date"] == "2025-09-03"
        assert details["can_be_modified"] is True
        assert len(details["lesson_schedule"]) == 12

    @pytest.mark.asyncio
    async def test_details_for_missing_registration(self, registration_service):
        with pytest.raises(NotFoundException):
            await registration_service.get_registration_details("nope")

    @pytest.mark.asyncio
    async def test_student_registrations(self, registration_service, private_payload, group_payload):
        await registration_service.process_registration(private_payload(), "A1")
        await registration_service.process_registration(group_payload(), "A1")

        listing = await registration_service.get_student_registrations("S1")

        assert [r["id"] for r in listing] == ["S1_C1", "S1_I1_Wednesday_15:00"]
        assert {r["student_name"] for r in listing} == {"Ava Reyes"}
        assert {r["instructor_name"] for r in listing} == {"Nora Lind"}

        with pytest.raises(NotFoundException):
            await registration_service.get_student_registrations("S9")

    @pytest.mark.asyncio
    async def test_registrations_for_term(self, registration_service, private_payload):
        await registration_service.process_registration(private_payload(), "A1")
        await registration_service.process_registration(
            private_payload(student_id="S2", trimester="Winter"), "A1"
        )

        current = await registration_service.get_registrations()
        winter = await registration_service.get_registrations("2025-2026", "Winter")

        assert [r["student_id"] for r in current] == ["S1"]
        assert [r["student_id"] for r in winter] == ["S2"]

    @pytest.mark.asyncio
    async def test_status_update_is_audited(
        self, registration_service, publisher, uow, private_payload
    ):
        created = await registration_service.process_registration(private_payload(), "A1")
        registration_id = created["registration"]["id"]

        result = await registration_service.update_registration_status(
            registration_id, "approved", "A1"
        )
        await publisher.drain()
        with pytest.raises(InvalidStatusTransitionException):
            await registration_service.update_registration_status(
                registration_id, "pending", "A1"
            )
        await publisher.drain()

        assert result["registration"]["status"] == "approved"
        assert _audit_actions(uow, registration_id) == [
            ("created", "success"),
            ("status_changed", "success"),
            ("update_status_failed", "failed"),
        ]
