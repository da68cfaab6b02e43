"""Event dispatch job handlers."""

from __future__ import annotations

import logging
from uuid import UUID

from carenotify.core.exceptions import NotFoundError
from carenotify.db.enums import EventStatus
from carenotify.services import event_service

logger = logging.getLogger(__name__)


async def process_dispatch_event(db, job) -> None:
    """Run the dispatcher for one received event."""
    payload = job.payload or {}
    raw_id = payload.get("event_id")
    try:
        event_id = UUID(str(raw_id))
    except (TypeError, ValueError):
        raise ValueError(f"Invalid event_id in dispatch payload: {raw_id!r}")

    event = event_service.get_event(db, event_id)
    if not event:
        raise NotFoundError(f"Event {event_id} not found")
    if event.status == EventStatus.DONE.value:
        logger.info("Event %s already dispatched, skipping", event_id)
        return

    result = event_service.process_event(db, event)
    logger.info(
        "Dispatch job %s: %s notifications created, %s triggers failed",
        job.id,
        result.notifications_created,
        len(result.failed),
    )
