"""
Caller identity dependency.

Authentication lives in front of this service; the gateway forwards the
authenticated user id in ``X-User-Id``. Requests without it act as the
system user.
"""

from typing import Optional

from fastapi import Header

from ...core.constants import SYSTEM_USER_ID


def get_current_user_id(x_user_id: Optional[str] = Header(None)) -> str:
    return (x_user_id or "").strip() or SYSTEM_USER_ID
