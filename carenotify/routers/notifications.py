"""
Notifications Router - /notifications endpoints.

Provides notification listing and read status for one recipient, and the
acting user's own notification preferences.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from carenotify.core.deps import ensure_recipient_access, get_current_actor, get_db
from carenotify.db.models import User
from carenotify.schemas.notification import (
    MarkAllReadResponse,
    NotificationListResponse,
    NotificationRead,
    PreferenceRead,
    PreferenceUpdate,
    UnreadCountResponse,
)
from carenotify.services import notification_service, preference_service

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("", response_model=NotificationListResponse)
def list_notifications(
    recipient_id: int = Query(...),
    unread_only: bool = Query(False),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    actor: User = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    """Get a recipient's notifications, newest first."""
    ensure_recipient_access(actor, recipient_id)
    notifications = notification_service.list_notifications(
        db,
        recipient_id=recipient_id,
        unread_only=unread_only,
        limit=limit,
        offset=offset,
    )
    unread_count = notification_service.get_unread_count(db, recipient_id)
    return NotificationListResponse(
        items=[NotificationRead.model_validate(n) for n in notifications],
        unread_count=unread_count,
    )


@router.get("/unread-count", response_model=UnreadCountResponse)
def get_unread_count(
    recipient_id: int = Query(...),
    actor: User = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    """Get unread notification count (for polling)."""
    ensure_recipient_access(actor, recipient_id)
    return UnreadCountResponse(count=notification_service.get_unread_count(db, recipient_id))


@router.put("/mark-all-read", response_model=MarkAllReadResponse)
def mark_all_read(
    recipient_id: int = Query(...),
    actor: User = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    """Mark everything created up to now as read."""
    ensure_recipient_access(actor, recipient_id)
    return MarkAllReadResponse(updated=notification_service.mark_all_read(db, recipient_id))


@router.get("/preferences", response_model=list[PreferenceRead])
def get_preferences(
    actor: User = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    """Get the acting user's stored preferences (event types without a row use defaults)."""
    return preference_service.get_user_preferences(db, actor.id)


@router.put("/preferences/{event_type}", response_model=PreferenceRead)
def set_preference(
    event_type: str,
    data: PreferenceUpdate,
    actor: User = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    """Create or update the acting user's preference for one event type."""
    return preference_service.set_user_preference(db, actor.id, event_type, data)


@router.put("/{notification_id}/read", response_model=NotificationRead)
def mark_notification_read(
    notification_id: UUID,
    recipient_id: int = Query(...),
    actor: User = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    """Mark a notification as read."""
    ensure_recipient_access(actor, recipient_id)
    notification = notification_service.mark_read(db, notification_id, recipient_id)
    return NotificationRead.model_validate(notification)
