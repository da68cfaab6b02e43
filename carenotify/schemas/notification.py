"""Pydantic schemas for in-app notifications."""

from datetime import datetime, time
from uuid import UUID

from pydantic import BaseModel


class NotificationRead(BaseModel):
    id: UUID
    recipient_id: int
    event_id: UUID
    source_trigger_id: UUID
    event_type: str
    subject_id: int | None
    title: str
    message: str
    priority: str
    action_url: str | None
    action_label: str | None
    is_read: bool
    read_at: datetime | None
    created_at: datetime

    model_config = {"from_attributes": True}


class NotificationListResponse(BaseModel):
    items: list[NotificationRead]
    unread_count: int


class UnreadCountResponse(BaseModel):
    count: int


class MarkAllReadResponse(BaseModel):
    updated: int


class NotificationStats(BaseModel):
    total: int
    unread: int
    by_priority: dict[str, int]
    by_event_type: dict[str, int]


# =============================================================================
# Preferences
# =============================================================================


class PreferenceUpdate(BaseModel):
    """Partial update; fields left out keep their stored (or default) value."""

    enable_in_app: bool | None = None
    enable_log: bool | None = None
    enable_webhook: bool | None = None
    quiet_hours_start: time | None = None
    quiet_hours_end: time | None = None


class PreferenceRead(BaseModel):
    id: UUID
    user_id: int
    event_type: str
    enable_in_app: bool
    enable_log: bool
    enable_webhook: bool
    quiet_hours_start: time | None
    quiet_hours_end: time | None
    updated_at: datetime

    model_config = {"from_attributes": True}
