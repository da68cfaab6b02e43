"""Notification delivery job handlers."""

from __future__ import annotations

import logging
from uuid import UUID

from carenotify.services import delivery_service

logger = logging.getLogger(__name__)


async def process_notification_delivery(db, job) -> None:
    """Deliver a created notification on one external channel."""
    payload = job.payload or {}
    raw_id = payload.get("notification_id")
    channel = payload.get("channel")
    try:
        notification_id = UUID(str(raw_id))
    except (TypeError, ValueError):
        raise ValueError(f"Invalid notification_id in delivery payload: {raw_id!r}")
    if not channel:
        raise ValueError("Missing channel in delivery payload")

    await delivery_service.deliver_notification(
        db,
        notification_id=notification_id,
        channel=channel,
        final_attempt=job.attempts >= job.max_attempts,
    )
