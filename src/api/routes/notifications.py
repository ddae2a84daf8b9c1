"""Notification endpoints (owner only).

- GET /notifications: 50 newest notifications plus the unread count
- POST /notifications/{id}/read: Mark one notification read
- POST /notifications/read-all: Mark every notification read
"""

from fastapi import APIRouter, Depends, Request

from src import storage
from src.api.auth import require_session
from src.api.responses import NOT_FOUND, raise_api_error, wrap_response
from src.models.social_models import Session

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("")
async def list_notifications(request: Request, session: Session = Depends(require_session)):
    db = request.app.state.db
    notifications = storage.list_notifications(db, session.user_id)
    return wrap_response(
        {
            "notifications": notifications,
            "unread_count": storage.count_unread(db, session.user_id),
        },
        total=len(notifications)
    )


@router.post("/read-all")
async def mark_all_read(request: Request, session: Session = Depends(require_session)):
    updated = storage.mark_all_notifications_read(request.app.state.db, session.user_id)
    return wrap_response({"updated": updated})


@router.post("/{notification_id}/read")
async def mark_read(request: Request, notification_id: str, session: Session = Depends(require_session)):
    if not storage.mark_notification_read(request.app.state.db, session.user_id, notification_id):
        raise_api_error(NOT_FOUND, f"Notification {notification_id} not found")
    return wrap_response({"id": notification_id, "is_read": True})
