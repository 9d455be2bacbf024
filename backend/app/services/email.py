# backend/app/services/email.py
"""
Email clients for registration notifications.

Two implementations of the EmailClient protocol:
- ConsoleEmailClient logs the message and delivers nothing (development, tests)
- ResendEmailClient sends through the Resend API

The Resend SDK is synchronous, so sends run on a worker thread. Callers treat
email as best-effort: failures raise ServiceException here and are caught by
NotificationService.
"""

import asyncio
import logging
import re
from typing import Any, Dict, Optional, Protocol

import resend

from ..core.config import Settings, settings
from ..core.exceptions import ServiceException
from .base import BaseService

logger = logging.getLogger(__name__)


class EmailClient(Protocol):
    async def send_email(self, to: str, subject: str, html: str) -> Any:
        ...


def html_to_text(html_content: str) -> str:
    """Convert HTML content to plain text for better deliverability."""
    text = re.sub(r"<[^>]+>", "", html_content)
    text = re.sub(r"\s+", " ", text)
    return text.strip()


class ConsoleEmailClient(BaseService):
    """Logs emails instead of sending them."""

    def __init__(self, from_email: Optional[str] = None):
        super().__init__()
        self.from_email = from_email or settings.from_email

    @BaseService.measure_operation("send_email")
    async def send_email(self, to: str, subject: str, html: str) -> Dict[str, Any]:
        self.logger.info(f"[console email] from={self.from_email} to={to} subject={subject}")
        self.logger.debug(html_to_text(html))
        return {"id": None, "to": to, "delivered": False}


class ResendEmailClient(BaseService):
    """Sends email through Resend."""

    def __init__(self, api_key: str, from_email: Optional[str] = None):
        super().__init__()
        if not api_key:
            raise ServiceException("Resend API key not configured")
        resend.api_key = api_key
        self.from_email = from_email or settings.from_email

    @BaseService.measure_operation("send_email")
    async def send_email(self, to: str, subject: str, html: str) -> Dict[str, Any]:
        email_data = {
            "from": self.from_email,
            "to": to,
            "subject": subject,
            "html": html,
            "text": html_to_text(html),
        }
        try:
            response = await asyncio.to_thread(resend.Emails.send, email_data)
        except Exception as e:
            self.logger.error(f"Failed to send email to {to}: {str(e)}")
            raise ServiceException(f"Failed to send email: {str(e)}") from e

        self.logger.info(f"Email sent successfully to {to} - Subject: {subject}")
        return dict(response) if response else {}


def create_email_client(config: Optional[Settings] = None) -> EmailClient:
    """Build the client selected by ``email_provider``."""
    config = config or settings
    if config.email_provider == "resend":
        api_key = config.resend_api_key.get_secret_value() if config.resend_api_key else ""
        return ResendEmailClient(api_key, config.from_email)
    return ConsoleEmailClient(config.from_email)
