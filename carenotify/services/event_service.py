"""Event intake - persists domain events and queues them for dispatch."""

import logging
from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from carenotify.core.exceptions import RegistryUnavailableError
from carenotify.core.structured_logging import build_log_context
from carenotify.db.enums import AlertSeverity, AlertType, EventStatus, JobStatus, JobType
from carenotify.db.models import DomainEvent
from carenotify.services import alert_service, job_service
from carenotify.services.dispatcher import DispatchResult, Dispatcher

logger = logging.getLogger(__name__)


def dispatch_idempotency_key(event_id: UUID) -> str:
    return f"dispatch:{event_id}"


def submit_event(
    db: Session,
    event_type: str,
    subject_id: int | None = None,
    context: dict[str, Any] | None = None,
    actor_id: int | None = None,
    occurred_at: datetime | None = None,
) -> DomainEvent:
    """
    Persist an event (status 'received') and schedule its dispatch job.

    The event row commits before the job is scheduled; an event whose job
    was never written is picked up by requeue_unprocessed_events.
    """
    event = DomainEvent(
        event_type=event_type,
        subject_id=subject_id,
        actor_id=actor_id,
        context=context or {},
        occurred_at=occurred_at or datetime.now(timezone.utc),
        status=EventStatus.RECEIVED.value,
    )
    db.add(event)
    db.commit()
    db.refresh(event)

    job_service.schedule_job(
        db,
        job_type=JobType.DISPATCH_EVENT,
        payload={"event_id": str(event.id)},
        idempotency_key=dispatch_idempotency_key(event.id),
    )
    logger.info(
        "Event received",
        extra=build_log_context(
            event_id=str(event.id), event_type=event_type, actor_id=actor_id
        ),
    )
    return event


def get_event(db: Session, event_id: UUID) -> DomainEvent | None:
    return db.query(DomainEvent).filter(DomainEvent.id == event_id).first()


def process_event(
    db: Session,
    event: DomainEvent,
    dispatcher: Dispatcher | None = None,
) -> DispatchResult:
    """
    Run the dispatcher for a received event and record its status.

    'done' means every trigger was processed (individual trigger failures
    are in the result and the logs). A registry failure marks the event
    'failed', raises an alert and re-raises so the job is retried.
    """
    dispatcher = dispatcher or Dispatcher()
    event_id, event_type = event.id, event.event_type

    try:
        result = dispatcher.dispatch(db, event)
    except RegistryUnavailableError as exc:
        db.rollback()
        event.status = EventStatus.FAILED.value
        event.error = str(exc)[:2000]
        event.processed_at = datetime.now(timezone.utc)
        db.commit()
        alert_service.create_or_update_alert(
            db,
            alert_type=AlertType.EVENT_DISPATCH_FAILED,
            severity=AlertSeverity.CRITICAL,
            title="Trigger registry unavailable",
            message=f"Event {event_id} ({event_type}) could not be dispatched",
            alert_key=event_type,
            error_class=type(exc.__cause__ or exc).__name__,
        )
        raise

    event.status = EventStatus.DONE.value
    event.processed_at = datetime.now(timezone.utc)
    event.error = (
        "; ".join(f"{o.trigger_id}: {o.error}" for o in result.failed)[:2000]
        if result.failed
        else None
    )
    db.commit()
    return result


def requeue_unprocessed_events(db: Session, limit: int = 500) -> int:
    """
    Schedule dispatch jobs for events still in 'received'.

    Safe to run repeatedly: jobs are keyed by event id and notification
    creation is idempotent. Returns how many events were found.
    """
    events = (
        db.query(DomainEvent)
        .filter(DomainEvent.status == EventStatus.RECEIVED.value)
        .order_by(DomainEvent.received_at)
        .limit(limit)
        .all()
    )
    event_ids = [event.id for event in events]

    for event_id in event_ids:
        job = job_service.schedule_job(
            db,
            job_type=JobType.DISPATCH_EVENT,
            payload={"event_id": str(event_id)},
            idempotency_key=dispatch_idempotency_key(event_id),
        )
        if job.status in (JobStatus.COMPLETED.value, JobStatus.FAILED.value):
            # The job ended but the event never reached a final status.
            # Running jobs belong to a live worker or to requeue_stale_jobs.
            job_service.reset_job(db, job)

    if event_ids:
        logger.info("Re-queued %s unprocessed events", len(event_ids))
    return len(event_ids)
