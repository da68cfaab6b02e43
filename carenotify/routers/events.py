"""Events router - intake of domain events from the practice application."""

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from carenotify.core.deps import get_db, get_optional_actor_id
from carenotify.schemas.event import EventAccepted, EventCreate
from carenotify.services import event_service

router = APIRouter(prefix="/events", tags=["events"])


@router.post("", response_model=EventAccepted, status_code=status.HTTP_202_ACCEPTED)
def submit_event(
    data: EventCreate,
    actor_id: int | None = Depends(get_optional_actor_id),
    db: Session = Depends(get_db),
) -> EventAccepted:
    """
    Accept an event for dispatch.

    The event is persisted and queued; notifications are created by the
    worker, so a 202 says nothing about which triggers fired.
    """
    event = event_service.submit_event(
        db,
        event_type=data.event_type,
        subject_id=data.subject_id,
        context=data.context,
        actor_id=actor_id,
        occurred_at=data.occurred_at,
    )
    return EventAccepted(accepted=True, event_id=event.id)
