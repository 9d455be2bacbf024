"""Tests for enrollment eligibility and the program-specific registration rules."""

from datetime import date

import pytest

from app.models.group_class import GroupClass
from app.models.instructor import Instructor
from app.models.student import Parent, Student
from app.services.program_validation_service import ProgramValidationService
from app.services.student_management_service import StudentManagementService

TODAY = date(2025, 9, 1)


def _student(**overrides):
    fields = {
        "id": "S1",
        "first_name": "Ava",
        "last_name": "Reyes",
        "grade": "3",
        "birth_date": date(2016, 5, 1),
        "parent1_id": "P1",
    }
    fields.update(overrides)
    return Student(**fields)


def _parent(**overrides):
    fields = {"id": "P1", "first_name": "Dana", "last_name": "Reyes", "email": "dana@example.org"}
    fields.update(overrides)
    return Parent(**fields)


def _instructor(**overrides):
    fields = {
        "id": "I1",
        "first_name": "Nora",
        "last_name": "Lind",
        "is_active": True,
        "instruments": ["Piano"],
        "available_days": ["Monday", "Wednesday"],
        "wednesday_room_id": "R1",
    }
    fields.update(overrides)
    return Instructor(**fields)


def _group_class(**overrides):
    fields = {
        "id": "C1",
        "instructor_id": "I1",
        "title": "Beginner Piano",
        "instrument": "Piano",
        "day": "Monday",
        "start_time": "15:00",
        "length": 45,
        "room_id": "R1",
        "size": 2,
        "is_active": True,
    }
    fields.update(overrides)
    return GroupClass(**fields)


class TestEnrollmentEligibility:
    @pytest.fixture
    def service(self):
        return StudentManagementService(min_age=4, max_age=18)

    def test_eligible_student(self, service):
        result = service.validate_enrollment_eligibility(_student(), [_parent()], TODAY, "pickup")

        assert result.is_eligible
        assert result.age == 9
        assert result.permission_requirements == ["media_release"]

    def test_age_is_computed_in_whole_years(self, service):
        result = service.validate_enrollment_eligibility(
            _student(birth_date=date(2021, 9, 2)), [_parent()], TODAY
        )

        assert result.age == 3
        assert result.errors == ["Student age 3 is outside the allowed range 4-18"]

    def test_unknown_grade(self, service):
        result = service.validate_enrollment_eligibility(_student(grade="13"), [_parent()], TODAY)

        assert not result.is_eligible
        assert result.errors[0].startswith("Invalid grade '13'")

    def test_parent_contact_required(self, service):
        phone_only = _parent(email=None, phone="555-0101")

        assert service.validate_enrollment_eligibility(_student(), [phone_only], TODAY).is_eligible

        result = service.validate_enrollment_eligibility(_student(), [], TODAY)
        assert result.errors == [
            "At least one parent with an email address or phone number is required"
        ]

    def test_malformed_parent_email(self, service):
        result = service.validate_enrollment_eligibility(
            _student(), [_parent(email="dana-at-example")], TODAY
        )

        assert "Parent Dana Reyes has an invalid email address" in result.errors

    def test_missing_birth_date_skips_age_check(self, service):
        result = service.validate_enrollment_eligibility(_student(birth_date=None), [_parent()], TODAY)

        assert result.is_eligible
        assert result.age is None

    def test_bus_needs_transportation_permission(self):
        assert StudentManagementService.get_permission_requirements("bus") == [
            "media_release",
            "transportation_permission",
        ]
        assert StudentManagementService.get_permission_requirements(None) == ["media_release"]


class TestPrivateLessonRules:
    @pytest.fixture
    def service(self):
        return ProgramValidationService(default_class_capacity=12)

    def _private(self, **overrides):
        data = {"registration_type": "private", "instrument": "piano", "day": "Wednesday"}
        data.update(overrides)
        return data

    def test_valid(self, service):
        assert service.validate_registration(self._private(), None, _instructor()).is_valid

    def test_missing_instructor(self, service):
        assert service.validate_registration(self._private(), None, None).errors == [
            "Instructor not found"
        ]

    def test_instrument_and_day_are_both_reported(self, service):
        result = service.validate_registration(
            self._private(instrument="Cello", day="Friday"), None, _instructor()
        )

        assert result.errors == [
            "Instructor Nora Lind does not teach Cello",
            "Instructor Nora Lind is not available on Friday",
        ]

    def test_inactive_instructor(self, service):
        result = service.validate_registration(self._private(), None, _instructor(is_active=False))

        assert result.errors == ["Instructor Nora Lind is not active"]


class TestGroupClassRules:
    @pytest.fixture
    def service(self):
        return ProgramValidationService(default_class_capacity=12)

    def _group(self, **overrides):
        data = {"registration_type": "group", "class_id": "C1"}
        data.update(overrides)
        return data

    def test_valid(self, service):
        result = service.validate_registration(self._group(), _group_class(), _instructor(), 1)

        assert result.is_valid

    def test_class_not_found(self, service):
        result = service.validate_registration(self._group(class_id="C9"), None, _instructor())

        assert result.errors == ["Class C9 not found"]

    def test_full_class_and_override(self, service):
        full = service.validate_registration(self._group(), _group_class(), _instructor(), 2)
        overridden = service.validate_registration(
            self._group(), _group_class(), _instructor(), 2, skip_capacity_check=True
        )

        assert full.errors == ["Class Beginner Piano is full (2/2)"]
        assert overridden.is_valid

    def test_default_capacity_when_size_missing(self, service):
        result = service.validate_registration(
            self._group(), _group_class(size=None), _instructor(), 11
        )

        assert result.is_valid

    def test_incomplete_inactive_class_taught_by_someone_else(self, service):
        result = service.validate_registration(
            self._group(),
            _group_class(is_active=False, start_time=None, instructor_id="I2"),
            _instructor(),
        )

        assert result.errors == [
            "Class Beginner Piano is not active",
            "Class C1 is missing start time",
            "Class Beginner Piano is not taught by instructor I1",
        ]

    def test_apply_group_class_defaults(self):
        merged = ProgramValidationService.apply_group_class_defaults(
            {"registration_type": "group", "class_id": "C1", "day": "Friday"}, _group_class()
        )

        assert merged["day"] == "Monday"
        assert merged["start_time"] == "15:00"
        assert merged["length"] == 45
        assert merged["instructor_id"] == "I1"
        assert merged["class_title"] == "Beginner Piano"
        assert merged["room_id"] == "R1"

    def test_apply_defaults_keeps_explicit_instructor(self):
        merged = ProgramValidationService.apply_group_class_defaults(
            {"instructor_id": "I2", "room_id": "R9"}, _group_class()
        )

        assert merged["instructor_id"] == "I2"
        assert merged["room_id"] == "R9"

    def test_resolve_room(self):
        instructor = _instructor()

        assert ProgramValidationService.resolve_room(instructor, "Wednesday") == "R1"
        assert ProgramValidationService.resolve_room(instructor, "Monday") is None
        assert ProgramValidationService.resolve_room(None, "Wednesday") is None
