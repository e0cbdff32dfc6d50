import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..auth.security import get_current_user
from ..db import get_db
from ..models.models import User
from ..services import notifications as notification_service


router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("")
def list_notifications(
    limit: Optional[int] = Query(default=50, ge=1, le=200),
    unread_only: Optional[bool] = False,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """List notifications for the current user, newest first."""
    rows = notification_service.list_notifications(db, user.id, limit=limit or 50, unread_only=bool(unread_only))
    return [notification_service.serialize_notification(n) for n in rows]


@router.get("/unread-count")
def get_unread_count(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return {"count": notification_service.unread_count(db, user.id)}


@router.post("/mark-all-read")
def mark_all_read(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    updated = notification_service.mark_all_as_read(db, user.id)
    return {"status": "ok", "updated": updated}


@router.post("/{notification_id}/read")
def mark_read(
    notification_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    notification = notification_service.mark_as_read(db, user.id, notification_id)
    return notification_service.serialize_notification(notification)
