# backend/app/api/dependencies/authz.py
"""
Authorization helpers for registration routes.

Some request flags override registration rules: ``manager_approved`` lifts
the no-cancel window and ``skip_capacity_check`` lets a class run over its
size. Only admins may set them. The caller is resolved through the admin
repository of the request's UnitOfWork.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from fastapi import Depends, HTTPException, status

from ...core.constants import SYSTEM_USER_ID
from ...models.instructor import Admin
from ...repositories.unit_of_work import UnitOfWork
from .auth import get_current_user_id
from .repositories import get_unit_of_work

logger = logging.getLogger(__name__)


async def get_current_admin_optional(
    user_id: str = Depends(get_current_user_id),
    uow: UnitOfWork = Depends(get_unit_of_work),
) -> Optional[Admin]:
    """The calling admin, or None for anyone else (including the system user)."""
    if user_id == SYSTEM_USER_ID:
        return None
    return await asyncio.to_thread(uow.admins.get_by_id, user_id)


def require_admin_for_overrides(
    admin: Optional[Admin], user_id: str, **overrides: bool
) -> None:
    """
    Reject the request when a non-admin sets any override flag.

    Raises:
        HTTPException: 403 with code ``ADMIN_REQUIRED``
    """
    requested = sorted(name for name, enabled in overrides.items() if enabled)
    if not requested or admin is not None:
        return
    logger.warning(f"User {user_id} attempted admin override(s): {', '.join(requested)}")
    raise HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail={
            "message": f"Only admins may set: {', '.join(requested)}",
            "code": "ADMIN_REQUIRED",
            "details": {"overrides": requested, "user_id": user_id},
        },
    )
