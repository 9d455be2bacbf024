# backend/app/core/config.py
from datetime import date
import logging
import os
from pathlib import Path
from typing import Literal, Optional

from dotenv import load_dotenv
from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .constants import BRAND_NAME, TRIMESTER_START_MONTHS, VALID_TRIMESTERS

logger = logging.getLogger(__name__)


def is_running_tests() -> bool:
    """
    Detect if code is running under pytest.

    PYTEST_CURRENT_TEST is set automatically by pytest during test runs, and is
    not expected to be present in production environments.
    """
    return os.getenv("PYTEST_CURRENT_TEST") is not None


# Load .env file only if not in CI
if not os.getenv("CI"):
    env_path = Path(__file__).parent.parent.parent / ".env"  # Goes up to backend/.env
    logger.debug(f"[CONFIG] Looking for .env at: {env_path}")
    load_dotenv(env_path)


def school_year_for(today: date) -> str:
    """Return the ``YYYY-YYYY`` school year containing ``today`` (August rollover)."""
    start_year = today.year if today.month >= 8 else today.year - 1
    return f"{start_year}-{start_year + 1}"


def trimester_for(today: date) -> str:
    """Return the trimester containing ``today``: Fall Aug-Nov, Winter Dec-Feb, Spring Mar-Jul."""
    month = today.month
    if TRIMESTER_START_MONTHS["Fall"] <= month < TRIMESTER_START_MONTHS["Winter"]:
        return "Fall"
    if month >= TRIMESTER_START_MONTHS["Winter"] or month < TRIMESTER_START_MONTHS["Spring"]:
        return "Winter"
    return "Spring"


class Settings(BaseSettings):
    """Runtime settings for the registration engine."""

    environment: str = Field(default="development", description="Deployment environment name")
    database_url: str = Field(
        default="sqlite:///./registrations.db",
        description="SQLAlchemy URL of the backing tabular store",
    )

    # Operative period. Queries that need "the current term" read these
    # instead of guessing from the wall clock.
    current_school_year: str = Field(default_factory=lambda: school_year_for(date.today()))
    current_trimester: str = Field(default_factory=lambda: trimester_for(date.today()))

    # Cancellation policy
    cancellation_window_hours: int = Field(
        default=24, ge=0, description="Cancelling inside this window needs managerial approval"
    )
    cancellation_mode: Literal["soft", "hard"] = Field(
        default="soft", description="soft keeps the row as cancelled, hard deletes it"
    )
    late_cancellation_fee: float = Field(default=25.00, ge=0)

    # Cost fields
    private_lesson_hourly_rate: float = Field(default=60.00, ge=0)
    group_class_default_fee: float = Field(default=15.00, ge=0)
    lessons_per_trimester: int = Field(default=12, ge=1)

    # Enrollment eligibility
    min_student_age: int = Field(default=4, ge=0)
    max_student_age: int = Field(default=18, ge=0)
    default_class_capacity: int = Field(default=12, ge=1)

    repository_cache_ttl_seconds: float = Field(
        default=300.0, ge=0, description="TTL for the per-unit-of-work repository cache"
    )
    school_timezone: str = Field(default="America/Los_Angeles")

    # Cross-process slot lock. Unset means process-local locking only.
    redis_url: Optional[str] = Field(default=None, description="e.g. redis://localhost:6379/0")
    redis_namespace: str = Field(default="registrations")
    registration_lock_ttl_seconds: int = Field(
        default=30, ge=1, description="Expiry of a held slot lock if its worker dies"
    )

    # Event outbox: audit and email work persisted before it runs
    event_worker_poll_interval_seconds: float = Field(default=2.0, gt=0)
    event_worker_batch_size: int = Field(default=50, ge=1)
    event_max_attempts: int = Field(default=5, ge=1)
    event_retry_base_seconds: float = Field(default=5.0, ge=0)
    event_retry_cap_seconds: float = Field(default=300.0, ge=0)
    event_claim_lease_seconds: float = Field(
        default=300.0, gt=0, description="A claimed job not settled within this becomes due again"
    )

    # Email
    email_provider: Literal["console", "resend"] = Field(
        default="console", description="console logs emails, resend delivers them"
    )
    resend_api_key: Optional[SecretStr] = Field(default=None)
    from_email: str = f"{BRAND_NAME} <registrations@example.org>"
    brand_name: str = BRAND_NAME

    is_testing: bool = False  # Set to True when running tests

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("current_school_year")
    @classmethod
    def _validate_school_year(cls, value: str) -> str:
        parts = value.split("-")
        if (
            len(parts) != 2
            or not all(len(p) == 4 and p.isdigit() for p in parts)
            or int(parts[1]) != int(parts[0]) + 1
        ):
            raise ValueError("current_school_year must look like YYYY-YYYY with consecutive years")
        return value

    @field_validator("current_trimester")
    @classmethod
    def _validate_trimester(cls, value: str) -> str:
        if value not in VALID_TRIMESTERS:
            raise ValueError(f"current_trimester must be one of {', '.join(VALID_TRIMESTERS)}")
        return value


settings = Settings()
