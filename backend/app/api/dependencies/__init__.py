# backend/app/api/dependencies/__init__.py
"""
Central export point for all dependencies.

This module re-exports all dependencies from submodules
for convenient access throughout the application.
"""

from .auth import get_current_user_id
from .authz import get_current_admin_optional, require_admin_for_overrides
from .database import get_session_factory
from .repositories import get_unit_of_work
from .services import get_event_publisher, get_registration_service

__all__ = [
    # Auth
    "get_current_user_id",
    "get_current_admin_optional",
    "require_admin_for_overrides",
    # Database
    "get_session_factory",
    "get_unit_of_work",
    # Services
    "get_event_publisher",
    "get_registration_service",
]
