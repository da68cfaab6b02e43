"""
Notification Service - in-app notification store.

One row per (event, trigger, recipient). Creation is idempotent on that key,
so re-dispatching an event never duplicates a notification. Rows are never
deleted; only read_at changes (unread <=> read_at IS NULL).
"""

import logging
from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from carenotify.core.exceptions import NotFoundError
from carenotify.core.structured_logging import build_log_context
from carenotify.db.models import DomainEvent, Notification, NotificationTrigger
from carenotify.services import audit_service
from carenotify.services.template_renderer import RenderedMessage

logger = logging.getLogger(__name__)


# =============================================================================
# Notification CRUD
# =============================================================================


def get_existing_notification(
    db: Session,
    event_id: UUID,
    trigger_id: UUID,
    recipient_id: int,
) -> Notification | None:
    return db.query(Notification).filter(
        Notification.event_id == event_id,
        Notification.source_trigger_id == trigger_id,
        Notification.recipient_id == recipient_id,
    ).first()


def create_notification(
    db: Session,
    event: DomainEvent,
    trigger: NotificationTrigger,
    recipient_id: int,
    rendered: RenderedMessage,
) -> tuple[Notification, bool]:
    """
    Create a notification, or return the one that already exists.

    Returns (notification, created). Concurrent creates for the same key
    converge on one row: the loser hits the unique constraint, rolls back
    and reads the winner's row. The audit entry commits with the row.
    """
    existing = get_existing_notification(db, event.id, trigger.id, recipient_id)
    if existing:
        return existing, False

    notification = Notification(
        recipient_id=recipient_id,
        event_id=event.id,
        source_trigger_id=trigger.id,
        event_type=event.event_type,
        subject_id=event.subject_id,
        title=rendered.title[:255],
        message=rendered.message,
        priority=trigger.priority,
        action_url=rendered.action_url,
        action_label=rendered.action_label,
    )
    db.add(notification)
    try:
        db.flush()
        audit_service.log_notification_created(
            db,
            notification_id=notification.id,
            event_id=event.id,
            trigger_id=trigger.id,
            recipient_id=recipient_id,
            subject_id=event.subject_id,
        )
        db.commit()
    except IntegrityError:
        db.rollback()
        existing = get_existing_notification(db, event.id, trigger.id, recipient_id)
        if existing is None:
            raise
        logger.info(
            "Notification already created concurrently",
            extra=build_log_context(
                event_id=str(event.id),
                trigger_id=str(trigger.id),
                recipient_id=recipient_id,
            ),
        )
        return existing, False

    db.refresh(notification)
    return notification, True


def list_notifications(
    db: Session,
    recipient_id: int,
    unread_only: bool = False,
    limit: int = 20,
    offset: int = 0,
) -> list[Notification]:
    """Get notifications for a recipient, newest first."""
    query = db.query(Notification).filter(Notification.recipient_id == recipient_id)

    if unread_only:
        query = query.filter(Notification.read_at.is_(None))

    return (
        query.order_by(Notification.created_at.desc(), Notification.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )


def get_unread_count(db: Session, recipient_id: int) -> int:
    """Get count of unread notifications."""
    return db.query(Notification).filter(
        Notification.recipient_id == recipient_id,
        Notification.read_at.is_(None),
    ).count()


def mark_read(db: Session, notification_id: UUID, recipient_id: int) -> Notification:
    """
    Mark a notification as read (scoped to its recipient).

    Idempotent: an already read notification keeps its original read_at.
    """
    notification = db.query(Notification).filter(
        Notification.id == notification_id,
        Notification.recipient_id == recipient_id,
    ).first()
    if not notification:
        raise NotFoundError("Notification not found")

    if notification.read_at is None:
        notification.read_at = datetime.now(timezone.utc)
        db.commit()
        db.refresh(notification)

    return notification


def mark_all_read(db: Session, recipient_id: int) -> int:
    """
    Mark all notifications created up to now as read. Returns count updated.

    The cutoff is captured before the update, so a notification created
    while this runs stays unread.
    """
    cutoff = datetime.now(timezone.utc)
    count = db.query(Notification).filter(
        Notification.recipient_id == recipient_id,
        Notification.read_at.is_(None),
        Notification.created_at <= cutoff,
    ).update({"read_at": cutoff}, synchronize_session=False)
    db.commit()
    return count


# =============================================================================
# Admin
# =============================================================================


def get_notification_stats(db: Session) -> dict:
    """Totals for the admin dashboard (no message content)."""
    total = db.query(func.count(Notification.id)).scalar() or 0
    unread = (
        db.query(func.count(Notification.id))
        .filter(Notification.read_at.is_(None))
        .scalar()
        or 0
    )
    by_priority = dict(
        db.query(Notification.priority, func.count(Notification.id))
        .group_by(Notification.priority)
        .all()
    )
    by_event_type = dict(
        db.query(Notification.event_type, func.count(Notification.id))
        .group_by(Notification.event_type)
        .all()
    )
    return {
        "total": total,
        "unread": unread,
        "by_priority": by_priority,
        "by_event_type": by_event_type,
    }
