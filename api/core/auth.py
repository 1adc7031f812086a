"""Session authentication utilities.

Sign-in happens in the LMS front end, which writes ``user_id`` and ``role``
into the signed session cookie (Starlette ``SessionMiddleware``). This module
only reads that session and exposes FastAPI dependencies for routes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Annotated

from fastapi import Depends, HTTPException, Request

logger = logging.getLogger(__name__)

ADMIN_ROLE = "admin"


@dataclass(frozen=True)
class CurrentUser:
    id: int
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN_ROLE


def get_user_from_request(req: Request) -> CurrentUser | None:
    """Get the signed-in user from the session, or None."""
    session = req.scope.get("session")
    if not session:
        return None

    raw_id = session.get("user_id")
    try:
        user_id = int(raw_id)
    except (TypeError, ValueError):
        if raw_id is not None:
            logger.warning("auth.session.invalid_user_id")
        return None

    return CurrentUser(id=user_id, role=str(session.get("role") or ""))


def require_user(request: Request) -> CurrentUser:
    """Raises 401 if not authenticated. Sets request.state.user_id."""
    user = get_user_from_request(request)
    if user is None:
        raise HTTPException(status_code=401, detail="Unauthorized")

    request.state.user_id = user.id
    return user


def require_auth(request: Request) -> int:
    return require_user(request).id


def require_admin(request: Request) -> int:
    """Raises 401 if not authenticated, 403 if not an admin."""
    user = require_user(request)
    if not user.is_admin:
        logger.warning("auth.admin.denied", extra={"user_id": user.id})
        raise HTTPException(status_code=403, detail="Admin access required")
    return user.id


def optional_auth(request: Request) -> CurrentUser | None:
    """Returns the user or None. Does not raise."""
    user = get_user_from_request(request)
    if user is not None:
        request.state.user_id = user.id
    return user


CurrentUserDep = Annotated[CurrentUser, Depends(require_user)]
UserId = Annotated[int, Depends(require_auth)]
AdminUserId = Annotated[int, Depends(require_admin)]
OptionalUser = Annotated[CurrentUser | None, Depends(optional_auth)]
