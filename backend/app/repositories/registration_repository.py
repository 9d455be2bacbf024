# backend/app/repositories/registration_repository.py
"""
Registration Repository

Data access for registrations, including the guarded create path:

    validate -> take slot lock -> read a fresh active snapshot ->
    check conflicts -> derive id -> stamp audit fields -> persist

The snapshot used for conflict checking is always read from storage while the
``(school_year, trimester, day)`` slot lock is held; it never comes from the
unit's cache. Errors are typed so callers can tell validation failures,
conflicts and storage failures apart.
"""

from datetime import datetime, timezone
import logging
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy import case, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from ..core.config import settings
from ..core.enums import (
    ACTIVE_REGISTRATION_STATUSES,
    REGISTRATION_STATUS_TRANSITIONS,
    ConflictType,
    RegistrationStatus,
)
from ..core.exceptions import (
    InvalidStatusTransitionException,
    NotFoundException,
    RegistrationConflictException,
    StorageException,
    ValidationException,
)
from ..core.registration_lock import RegistrationSlotLock, registration_slot_lock, slot_key
from ..models.registration import Registration
from ..services.conflict_checker import ConflictChecker
from ..services.registration_validation_service import RegistrationValidationService
from .base_repository import BaseRepository
from .cache import RepositoryCache
from .cached_repository_mixin import cached_method

logger = logging.getLogger(__name__)

_ACTIVE_VALUES = [s.value for s in ACTIVE_REGISTRATION_STATUSES]


class RegistrationRepository(BaseRepository[Registration]):
    """Repository for registrations and the conflict-guarded create."""

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        cache: Optional[RepositoryCache] = None,
        *,
        validator: Optional[RegistrationValidationService] = None,
        conflict_checker: Optional[ConflictChecker] = None,
        slot_lock: Optional[RegistrationSlotLock] = None,
        lock_timeout_s: float = 30.0,
    ):
        super().__init__(session_factory, Registration, cache)
        self.validator = validator or RegistrationValidationService()
        self.conflict_checker = conflict_checker or ConflictChecker()
        self.slot_lock = slot_lock or registration_slot_lock
        self.lock_timeout_s = lock_timeout_s

    # Create

    def create(  # type: ignore[override]
        self,
        data: Mapping[str, Any],
        registered_by: str,
        *,
        group_class: Any = None,
        skip_capacity_check: bool = False,
        registered_at: Optional[datetime] = None,
    ) -> Registration:
        """
        Validate, conflict-check and persist a new registration.

        Raises:
            ValidationException: Payload is invalid (nothing written)
            RegistrationConflictException: Collides with an active registration
            StorageException: The backing store failed or the slot lock timed out
        """
        result = self.validator.validate(data)
        if not result.is_valid:
            raise ValidationException("Registration validation failed", errors=result.errors)

        key = slot_key(
            data.get("school_year"),
            _plain(data.get("trimester")),
            _plain(data.get("day")),
        )
        try:
            with self.slot_lock.hold(key, timeout_s=self.lock_timeout_s):
                registration = self._create_locked(
                    data,
                    registered_by,
                    group_class=group_class,
                    skip_capacity_check=skip_capacity_check,
                    registered_at=registered_at,
                )
        except TimeoutError as e:
            raise StorageException(
                "Timed out waiting for the registration slot lock",
                details={"slot": list(key)},
            ) from e

        self.invalidate_all_cache()
        self.logger.info(
            f"Created registration {registration.id} for student {registration.student_id} "
            f"({registration.school_year} {registration.trimester})"
        )
        return registration

    def _create_locked(
        self,
        data: Mapping[str, Any],
        registered_by: str,
        *,
        group_class: Any,
        skip_capacity_check: bool,
        registered_at: Optional[datetime],
    ) -> Registration:
        snapshot = self._query_active_for_partition(data["school_year"], _plain(data["trimester"]))
        check = self.conflict_checker.check_conflicts(
            data,
            snapshot,
            group_class=group_class,
            skip_capacity_check=skip_capacity_check,
        )
        if check.has_conflicts:
            raise RegistrationConflictException(check.to_dicts())

        registration_id = self.conflict_checker.generate_registration_id(data)
        registration = Registration.from_payload(
            data,
            registration_id=registration_id,
            registered_by=registered_by,
            registered_at=registered_at or datetime.now(timezone.utc),
        )

        with self.session_scope("create") as session:
            # Cancelled and completed rows with the same id stay as history
            session.add(registration)
            try:
                session.flush()
            except IntegrityError as e:
                session.rollback()
                raise RegistrationConflictException([_duplicate_conflict(registration_id)]) from e
        return registration

    # Queries

    def get_by_id(  # type: ignore[override]
        self,
        registration_id: str,
        school_year: Optional[str] = None,
        trimester: Optional[str] = None,
    ) -> Optional[Registration]:
        """
        The row for a derived registration id.

        The same id can exist in several terms and, once cancelled, beside a
        newer active row. Active rows win, then the configured current term,
        then the most recently registered. Pass ``school_year``/``trimester``
        to pin the partition.
        """
        with self.session_scope("get") as session:
            return self._select_row(session, registration_id, school_year, trimester)

    def find_history(self, registration_id: str) -> List[Registration]:
        """Every row ever stored under ``registration_id``, oldest first."""
        with self.session_scope("find") as session:
            stmt = (
                select(Registration)
                .where(Registration.id == registration_id)
                .order_by(Registration.registered_at, Registration.row_id)
            )
            return list(session.scalars(stmt).all())

    def find_by_student_id(self, student_id: str) -> List[Registration]:
        return self.find_by(student_id=student_id)

    def find_by_instructor_id(self, instructor_id: str) -> List[Registration]:
        return self.find_by(instructor_id=instructor_id)

    def find_by_class_id(self, class_id: str) -> List[Registration]:
        return self.find_by(class_id=class_id)

    def find_by_school_year_and_trimester(
        self, school_year: str, trimester: str
    ) -> List[Registration]:
        return self.find_by(school_year=school_year, trimester=_plain(trimester))

    @cached_method
    def find_active_for_partition(self, school_year: str, trimester: str) -> List[Registration]:
        """Active registrations of one term; cached, pass ``force_refresh=True`` to bypass."""
        return self._query_active_for_partition(school_year, _plain(trimester))

    def find_active_registrations(
        self, school_year: Optional[str] = None, trimester: Optional[str] = None
    ) -> List[Registration]:
        """
        Active registrations for an explicit period.

        Without arguments the configured ``current_school_year`` and
        ``current_trimester`` are used.
        """
        return self._query_active_for_partition(
            school_year or settings.current_school_year,
            _plain(trimester) or settings.current_trimester,
        )

    def count_active_in_class(self, class_id: str, school_year: str, trimester: str) -> int:
        with self.session_scope("count") as session:
            stmt = select(func.count()).select_from(Registration).where(
                Registration.class_id == class_id,
                Registration.school_year == school_year,
                Registration.trimester == _plain(trimester),
                Registration.status.in_(_ACTIVE_VALUES),
            )
            return int(session.scalar(stmt) or 0)

    def count_active(self) -> int:
        with self.session_scope("count") as session:
            stmt = (
                select(func.count())
                .select_from(Registration)
                .where(Registration.status.in_(_ACTIVE_VALUES))
            )
            return int(session.scalar(stmt) or 0)

    def _select_row(
        self,
        session: Session,
        registration_id: str,
        school_year: Optional[str],
        trimester: Optional[str],
    ) -> Optional[Registration]:
        stmt = select(Registration).where(Registration.id == registration_id)
        if school_year:
            stmt = stmt.where(Registration.school_year == school_year)
        if trimester:
            stmt = stmt.where(Registration.trimester == _plain(trimester))
        stmt = stmt.order_by(
            case((Registration.status.in_(_ACTIVE_VALUES), 0), else_=1),
            case(
                (
                    (Registration.school_year == settings.current_school_year)
                    & (Registration.trimester == settings.current_trimester),
                    0,
                ),
                else_=1,
            ),
            Registration.registered_at.desc(),
        )
        return session.scalars(stmt.limit(1)).first()

    def _query_active_for_partition(self, school_year: str, trimester: str) -> List[Registration]:
        with self.session_scope("list") as session:
            stmt = select(Registration).where(
                Registration.school_year == school_year,
                Registration.trimester == trimester,
                Registration.status.in_(_ACTIVE_VALUES),
            )
            return list(session.scalars(stmt).all())

    # Mutations

    def update_status(
        self,
        registration_id: str,
        status: RegistrationStatus | str,
        user_id: str,
        *,
        reason: Optional[str] = None,
        school_year: Optional[str] = None,
        trimester: Optional[str] = None,
    ) -> Registration:
        """
        Move a registration along the allowed transition set.

        The row is chosen the way ``get_by_id`` chooses it.

        Raises:
            NotFoundException: Unknown registration id
            InvalidStatusTransitionException: Transition not allowed
        """
        try:
            target = RegistrationStatus(_plain(status))
        except ValueError as e:
            raise ValidationException(
                "Invalid registration status",
                errors=[f"Status must be one of: {', '.join(s.value for s in RegistrationStatus)}"],
            ) from e
        with self.session_scope("update") as session:
            registration = self._select_row(session, registration_id, school_year, trimester)
            if registration is None:
                raise NotFoundException(
                    f"Registration {registration_id} not found",
                    code="REGISTRATION_NOT_FOUND",
                )
            current = RegistrationStatus(registration.status)
            if target not in REGISTRATION_STATUS_TRANSITIONS[current]:
                raise InvalidStatusTransitionException(current.value, target.value)

            registration.status = target.value
            registration.status_changed_at = datetime.now(timezone.utc)
            if target == RegistrationStatus.CANCELLED:
                registration.cancelled_by = user_id
                registration.cancellation_reason = reason
        self.invalidate_all_cache()
        self.logger.info(
            f"Registration {registration_id} ({registration.school_year} {registration.trimester}) "
            f"status {current.value} -> {target.value} by {user_id}"
        )
        return registration

    def cancel(
        self,
        registration_id: str,
        user_id: str,
        reason: Optional[str] = None,
        *,
        school_year: Optional[str] = None,
        trimester: Optional[str] = None,
    ) -> Registration:
        """Soft cancel: the row stays with status ``cancelled``."""
        return self.update_status(
            registration_id,
            RegistrationStatus.CANCELLED,
            user_id,
            reason=reason,
            school_year=school_year,
            trimester=trimester,
        )

    def delete(  # type: ignore[override]
        self,
        registration_id: str,
        user_id: Optional[str] = None,
        *,
        school_year: Optional[str] = None,
        trimester: Optional[str] = None,
    ) -> bool:
        """Hard delete of the one row ``get_by_id`` would return."""
        with self.session_scope("delete") as session:
            registration = self._select_row(session, registration_id, school_year, trimester)
            if registration is None:
                return False
            session.delete(registration)
        self.invalidate_all_cache()
        self.logger.info(
            f"Deleted registration {registration_id} ({registration.school_year} "
            f"{registration.trimester}) by {user_id or 'unknown'}"
        )
        return True

    def get_statistics(self) -> Dict[str, int]:
        """Counts by status across all terms."""
        registrations = self.find_all()
        stats: Dict[str, int] = {s.value: 0 for s in RegistrationStatus}
        for registration in registrations:
            stats[registration.status] = stats.get(registration.status, 0) + 1
        stats["total"] = len(registrations)
        return stats


def _plain(value: Any) -> Any:
    return getattr(value, "value", value)


def _duplicate_conflict(registration_id: str) -> Dict[str, Any]:
    return {
        "type": ConflictType.DUPLICATE.value,
        "message": f"duplicate registration: {registration_id} already exists",
        "conflicting_registration_id": registration_id,
    }
