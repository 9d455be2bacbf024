# backend/app/services/template_service.py
"""
Template rendering service for registration emails.

Provides centralized template rendering using Jinja2 with common context
variables (brand name, current year, sender) merged into every render.
"""

from datetime import date, datetime
import logging
from pathlib import Path
from typing import Any, Dict, Optional

from jinja2 import Environment, FileSystemLoader, TemplateNotFound

from ..core.config import settings
from .base import BaseService

logger = logging.getLogger(__name__)

TEMPLATE_DIR = Path(__file__).parent.parent / "templates"


class TemplateService(BaseService):
    """
    Centralized template rendering service using Jinja2.

    Uses dependency injection pattern - no singleton.
    """

    def __init__(self, template_dir: Optional[Path] = None):
        super().__init__()
        template_dir = template_dir or TEMPLATE_DIR

        self.env = Environment(
            loader=FileSystemLoader(template_dir),
            autoescape=True,
            trim_blocks=True,
            lstrip_blocks=True,
        )
        self._register_custom_filters()

        self.logger.debug(f"Template service initialized with template directory: {template_dir}")

    def _register_custom_filters(self) -> None:
        def currency(value: Any) -> str:
            """Format a number as currency."""
            return f"${float(value or 0):,.2f}"

        self.env.filters["currency"] = currency

        def format_date(value: Any, format_str: str = "%B %d, %Y") -> str:
            if isinstance(value, str):
                try:
                    value = date.fromisoformat(value)
                except ValueError:
                    return value
            return value.strftime(format_str)

        self.env.filters["format_date"] = format_date

    def get_common_context(self) -> Dict[str, Any]:
        return {
            "brand_name": settings.brand_name,
            "current_year": datetime.now().year,
            "support_email": settings.from_email,
        }

    @BaseService.measure_operation("render_template")
    def render_template(self, template_name: str, context: Optional[Dict[str, Any]] = None, **kwargs) -> str:
        """
        Render a template with the given context.

        Args:
            template_name: Path to template relative to the templates directory
            context: Dictionary of template variables
            **kwargs: Additional template variables

        Raises:
            TemplateNotFound: If template doesn't exist
        """
        try:
            template = self.env.get_template(template_name)
        except TemplateNotFound:
            self.logger.error(f"Template not found: {template_name}")
            raise

        full_context = self.get_common_context()
        if context:
            full_context.update(context)
        full_context.update(kwargs)
        return template.render(full_context)

    def template_exists(self, template_name: str) -> bool:
        try:
            self.env.get_template(template_name)
            return True
        except TemplateNotFound:
            return False
