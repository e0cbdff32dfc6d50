"""
In-app notification service.

Notifications are a best-effort side channel of the request workflow: the
engine commits the status change first, then hands an outbox to the
dispatcher. A failed insert is logged and skipped, never re-raised.
"""
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..models.models import Notification, User
from .errors import NotFound, NotificationDeliveryFailure


logger = structlog.get_logger(__name__)


class NotificationEmitter:
    """Persists one notification row per call."""

    def __init__(self, db: Session):
        self.db = db

    def notify(self, user_id: uuid.UUID, request_id: Optional[uuid.UUID], message: str) -> uuid.UUID:
        notification = Notification(
            id=uuid.uuid4(),
            user_id=user_id,
            request_id=request_id,
            message=message,
            read=False,
            created_at=datetime.now(timezone.utc),
        )
        try:
            self.db.add(notification)
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise NotificationDeliveryFailure(f"Could not store notification for user {user_id}") from exc
        return notification.id


@dataclass
class OutboundNotification:
    user_id: uuid.UUID
    request_id: Optional[uuid.UUID]
    message: str


@dataclass
class DispatchReport:
    delivered: List[uuid.UUID] = field(default_factory=list)
    failed: List[OutboundNotification] = field(default_factory=list)

    @property
    def delivered_count(self) -> int:
        return len(self.delivered)

    @property
    def failed_count(self) -> int:
        return len(self.failed)


class NotificationDispatcher:
    """
    Ordered outbox of notifications delivered sequentially after the primary
    write has been committed. Delivery is at-least-once per call to dispatch();
    partial failure leaves the remaining entries to be attempted.

    A recipient gets at most one entry per outbox; the first message queued
    for a user wins.
    """

    def __init__(self, emitter: NotificationEmitter):
        self.emitter = emitter
        self._outbox: List[OutboundNotification] = []

    def enqueue(self, user_id: uuid.UUID, request_id: Optional[uuid.UUID], message: str) -> bool:
        if any(item.user_id == user_id for item in self._outbox):
            return False
        self._outbox.append(OutboundNotification(user_id=user_id, request_id=request_id, message=message))
        return True

    def __len__(self) -> int:
        return len(self._outbox)

    def dispatch(self) -> DispatchReport:
        report = DispatchReport()
        pending, self._outbox = self._outbox, []
        for item in pending:
            try:
                report.delivered.append(self.emitter.notify(item.user_id, item.request_id, item.message))
            except NotificationDeliveryFailure as exc:
                logger.warning(
                    "notification_delivery_failed",
                    user_id=str(item.user_id),
                    request_id=str(item.request_id) if item.request_id else None,
                    error=str(exc),
                )
                report.failed.append(item)
        return report


def active_user_ids_with_role(db: Session, role: str) -> List[uuid.UUID]:
    rows = (
        db.query(User.id)
        .filter(User.role == role, User.is_active.is_(True))
        .order_by(User.created_at)
        .all()
    )
    return [row[0] for row in rows]


def list_notifications(db: Session, user_id: uuid.UUID, limit: int = 50, unread_only: bool = False) -> List[Notification]:
    query = db.query(Notification).filter(Notification.user_id == user_id)
    if unread_only:
        query = query.filter(Notification.read.is_(False))
    return query.order_by(Notification.created_at.desc()).limit(limit).all()


def unread_count(db: Session, user_id: uuid.UUID) -> int:
    return (
        db.query(Notification)
        .filter(Notification.user_id == user_id, Notification.read.is_(False))
        .count()
    )


def mark_as_read(db: Session, user_id: uuid.UUID, notification_id: uuid.UUID) -> Notification:
    """Only the recipient may mark a notification as read."""
    notification = (
        db.query(Notification)
        .filter(Notification.id == notification_id, Notification.user_id == user_id)
        .first()
    )
    if not notification:
        raise NotFound("Notification not found")
    if not notification.read:
        notification.read = True
        db.commit()
        db.refresh(notification)
    return notification


def mark_all_as_read(db: Session, user_id: uuid.UUID) -> int:
    updated = (
        db.query(Notification)
        .filter(Notification.user_id == user_id, Notification.read.is_(False))
        .update({Notification.read: True}, synchronize_session=False)
    )
    db.commit()
    return updated


def serialize_notification(notification: Notification) -> dict:
    return {
        "id": str(notification.id),
        "userId": str(notification.user_id),
        "requestId": str(notification.request_id) if notification.request_id else None,
        "message": notification.message,
        "read": notification.read,
        "createdAt": notification.created_at.isoformat() if notification.created_at else None,
    }
