# backend/app/services/notification_service.py
"""
Notification Service for registration emails.

Renders Jinja2 templates and sends them to the student and the instructor
concurrently. Delivery is best-effort: each recipient is retried briefly,
and a failure is logged and reported as ``False`` for that recipient,
never raised to the caller.
"""

import asyncio
from functools import wraps
import logging
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, ParamSpec, Tuple, TypeVar

from ..core.config import settings
from ..monitoring.prometheus_metrics import prometheus_metrics
from .base import BaseService
from .email import EmailClient, create_email_client
from .template_service import TemplateService

logger = logging.getLogger(__name__)

P = ParamSpec("P")
R = TypeVar("R")

CONFIRMATION_TEMPLATE = "email/registration_confirmation.html"
CANCELLATION_TEMPLATE = "email/registration_cancelled.html"


def retry(
    max_attempts: int = 2, backoff_seconds: float = 0.25
) -> Callable[[Callable[P, Awaitable[R]]], Callable[P, Awaitable[R]]]:
    """
    Decorator for retrying failed operations with exponential backoff.

    Args:
        max_attempts: Maximum number of attempts
        backoff_seconds: Initial backoff time in seconds
    """

    def decorator(func: Callable[P, Awaitable[R]]) -> Callable[P, Awaitable[R]]:
        @wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            last_exception: Exception | None = None

            for attempt in range(max_attempts):
                try:
                    return await func(*args, **kwargs)
                except Exception as e:
                    last_exception = e
                    if attempt < max_attempts - 1:
                        wait_time = backoff_seconds * (2**attempt)
                        logger.warning(
                            f"Attempt {attempt + 1}/{max_attempts} failed for {func.__name__}: {str(e)}. "
                            f"Retrying in {wait_time}s..."
                        )
                        await asyncio.sleep(wait_time)
                    else:
                        logger.error(
                            f"All {max_attempts} attempts failed for {func.__name__}: {str(e)}"
                        )

            if last_exception is not None:
                raise last_exception
            raise RuntimeError("Retry failed without capturing exception")

        return wrapper

    return decorator


# (role, display name, email)
Recipient = Tuple[str, str, str]


class NotificationService(BaseService):
    """
    Sends registration confirmation and cancellation emails.

    Uses dependency injection for the email client and TemplateService.
    """

    def __init__(
        self,
        email_client: Optional[EmailClient] = None,
        template_service: Optional[TemplateService] = None,
    ) -> None:
        super().__init__()
        self.email_client = email_client or create_email_client(settings)
        self.template_service = template_service or TemplateService()

    @BaseService.measure_operation("send_registration_confirmation")
    async def send_registration_confirmation(
        self,
        registration: Mapping[str, Any],
        student: Optional[Mapping[str, Any]],
        instructor: Optional[Mapping[str, Any]],
        first_lesson: Optional[str] = None,
    ) -> Dict[str, bool]:
        """
        Email the student and the instructor about a new registration.

        Returns:
            Delivery result per recipient role; missing addresses are skipped
        """
        subject = f"{settings.brand_name}: registration confirmed"
        context = {
            "registration": dict(registration),
            "student_name": _name(student),
            "instructor_name": _name(instructor),
            "first_lesson": first_lesson,
        }
        return await self._notify_all(
            _recipients(student, instructor), CONFIRMATION_TEMPLATE, subject, context, registration
        )

    @BaseService.measure_operation("send_cancellation_notification")
    async def send_cancellation_notification(
        self,
        registration: Mapping[str, Any],
        student: Optional[Mapping[str, Any]],
        instructor: Optional[Mapping[str, Any]],
        *,
        reason: Optional[str] = None,
        refund_eligible: bool = False,
        cancellation_fee: float = 0.0,
    ) -> Dict[str, bool]:
        subject = f"{settings.brand_name}: registration cancelled"
        context = {
            "registration": dict(registration),
            "student_name": _name(student),
            "instructor_name": _name(instructor),
            "reason": reason,
            "refund_eligible": refund_eligible,
            "cancellation_fee": cancellation_fee,
        }
        return await self._notify_all(
            _recipients(student, instructor), CANCELLATION_TEMPLATE, subject, context, registration
        )

    async def _notify_all(
        self,
        recipients: List[Recipient],
        template_name: str,
        subject: str,
        context: Dict[str, Any],
        registration: Mapping[str, Any],
    ) -> Dict[str, bool]:
        if not recipients:
            self.logger.info(f"No recipients with email for registration {registration.get('id')}")
            return {}

        results = await asyncio.gather(
            *(
                self._safe_send(role, name, email, template_name, subject, context)
                for role, name, email in recipients
            )
        )
        outcome = {role: ok for (role, _, _), ok in zip(recipients, results)}
        if not all(outcome.values()):
            self.logger.warning(
                f"Some notification emails failed for registration {registration.get('id')}: {outcome}"
            )
        return outcome

    async def _safe_send(
        self,
        role: str,
        name: str,
        email: str,
        template_name: str,
        subject: str,
        context: Dict[str, Any],
    ) -> bool:
        try:
            html = self.template_service.render_template(
                template_name, context, recipient_role=role, recipient_name=name
            )
            await self._deliver(email, subject, html)
            return True
        except Exception as e:
            self.logger.error(f"Failed to send {role} notification to {email}: {str(e)}")
            prometheus_metrics.record_side_channel_failure(template_name, f"email:{role}")
            return False

    @retry()
    async def _deliver(self, to: str, subject: str, html: str) -> None:
        await self.email_client.send_email(to, subject, html)


def _name(person: Optional[Mapping[str, Any]]) -> str:
    if not person:
        return ""
    return person.get("full_name") or " ".join(
        p for p in (person.get("first_name"), person.get("last_name")) if p
    )


def _recipients(
    student: Optional[Mapping[str, Any]], instructor: Optional[Mapping[str, Any]]
) -> List[Recipient]:
    recipients: List[Recipient] = []
    for role, person in (("student", student), ("instructor", instructor)):
        if person and person.get("email"):
            recipients.append((role, _name(person), person["email"]))
    return recipients
