"""Profile endpoints for the signed-in user.

- GET /profile: The caller's profile (defaults when never saved)
- PUT /profile: Update display name, bio and default post anonymity
"""

from typing import Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from src import storage
from src.api.auth import require_session
from src.api.responses import raise_storage_error, wrap_response
from src.models.social_models import Session

router = APIRouter(prefix="/profile", tags=["profile"])


class ProfileUpdate(BaseModel):
    display_name: Optional[str] = None
    bio: Optional[str] = None
    is_anonymous_default: Optional[bool] = None


@router.get("")
async def get_profile(request: Request, session: Session = Depends(require_session)):
    return wrap_response(storage.get_profile(request.app.state.db, session.user_id))


@router.put("")
async def update_profile(request: Request, body: ProfileUpdate, session: Session = Depends(require_session)):
    """Update the caller's profile; omitted fields keep their value, "" clears one."""
    try:
        profile = storage.update_profile(
            request.app.state.db,
            session.user_id,
            display_name=body.display_name,
            bio=body.bio,
            is_anonymous_default=body.is_anonymous_default,
        )
    except storage.StorageError as e:
        raise_storage_error(e)
    return wrap_response(profile)
