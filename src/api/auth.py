"""Caller identity for API routes.

The signed-in user's id arrives in the X-User-Id header, set by the gateway that
terminates authentication. Routes receive it as an explicit Session.
"""

from typing import Optional

from fastapi import Depends, Header

from src.backend.utils.errors import AuthRequired
from src.models.social_models import Session


async def get_session(x_user_id: Optional[str] = Header(None)) -> Session:
    """Session for the caller; unauthenticated when the header is missing or blank."""
    user_id = (x_user_id or "").strip() or None
    return Session(user_id=user_id)


async def require_session(session: Session = Depends(get_session)) -> Session:
    """Session for routes that need a signed-in user.

    Raises:
        AuthRequired: When no user id was supplied (rendered as 401 AUTH_REQUIRED)
    """
    if not session.is_authenticated:
        raise AuthRequired("Sign in required")
    return session
