"""Dispatcher - turns one domain event into notifications.

Per event:
    triggers looked up -> per trigger: condition evaluated -> skipped, or
    recipients resolved -> opted-out recipients dropped -> rendered per
    recipient -> persisted -> delivery queued on the channels they accept

Condition evaluation and rendering are pure and run on a bounded thread
pool. Everything that touches the database stays on the caller's session
and thread. A failing trigger is logged and recorded in the result; its
siblings still run. Only a registry lookup failure aborts the event.
"""

from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy.orm import Session

from carenotify.core.config import settings
from carenotify.core.structured_logging import build_log_context
from carenotify.db.enums import (
    AlertSeverity,
    AlertType,
    DeliveryChannel,
    DispatchOutcome,
    JobType,
)
from carenotify.db.models import DomainEvent, Notification, NotificationPreference, User
from carenotify.services import (
    alert_service,
    condition_evaluator,
    job_service,
    notification_service,
    preference_service,
    recipient_resolver,
    retry_service,
    template_renderer,
    trigger_registry,
)
from carenotify.services.template_renderer import RenderedMessage, TemplateContent
from carenotify.services.trigger_registry import LoadedTrigger

logger = logging.getLogger(__name__)


@dataclass
class TriggerOutcome:
    trigger_id: UUID
    outcome: DispatchOutcome
    recipients: int = 0
    muted: int = 0
    created: int = 0
    existing: int = 0
    error: str | None = None


@dataclass
class DispatchResult:
    event_id: UUID
    outcomes: list[TriggerOutcome] = field(default_factory=list)

    @property
    def notifications_created(self) -> int:
        return sum(outcome.created for outcome in self.outcomes)

    @property
    def failed(self) -> list[TriggerOutcome]:
        return [o for o in self.outcomes if o.outcome == DispatchOutcome.FAILED]


class StoreWriteFailed(Exception):
    """Persisting a notification failed after every retry."""


class Dispatcher:
    """
    Evaluates an event against the trigger registry.

    Holds configuration only; no state survives between dispatch() calls.
    """

    def __init__(
        self,
        max_workers: int | None = None,
        channels: list[str] | None = None,
        store_retry_attempts: int | None = None,
        store_retry_base_delay: float | None = None,
        store_retry_max_delay: float | None = None,
    ) -> None:
        self.max_workers = max_workers or settings.DISPATCH_MAX_WORKERS
        configured = settings.delivery_channels_list if channels is None else channels
        self.channels = [c for c in configured if c in DeliveryChannel._value2member_map_]
        self.store_retry_attempts = store_retry_attempts or settings.STORE_RETRY_ATTEMPTS
        self.store_retry_base_delay = (
            settings.STORE_RETRY_BASE_DELAY
            if store_retry_base_delay is None
            else store_retry_base_delay
        )
        self.store_retry_max_delay = (
            settings.STORE_RETRY_MAX_DELAY
            if store_retry_max_delay is None
            else store_retry_max_delay
        )

    def dispatch(self, db: Session, event: DomainEvent) -> DispatchResult:
        """
        Dispatch one event.

        Raises RegistryUnavailableError when triggers cannot be looked up;
        every other failure is contained to its trigger.
        """
        event_id = event.id
        event_type = event.event_type
        log_context = build_log_context(event_id=str(event_id), event_type=event_type)

        triggers = trigger_registry.find_triggers(db, event_type)
        result = DispatchResult(event_id=event_id)
        if not triggers:
            logger.info("No enabled triggers for event", extra=log_context)
            return result

        # Snapshots handed to worker threads; ORM rows stay on this thread
        context = dict(event.context or {})
        now = datetime.now(timezone.utc)
        contents = {t.id: TemplateContent.from_model(t.template) for t in triggers}

        with ThreadPoolExecutor(
            max_workers=self.max_workers, thread_name_prefix="dispatch"
        ) as pool:
            condition_futures: list[tuple[LoadedTrigger, Future]] = [
                (t, pool.submit(condition_evaluator.evaluate, t.condition, context, now))
                for t in triggers
            ]

            for loaded, future in condition_futures:
                trigger_id = loaded.id
                try:
                    matched = future.result()
                    if not matched:
                        result.outcomes.append(
                            TriggerOutcome(trigger_id=trigger_id, outcome=DispatchOutcome.SKIPPED)
                        )
                        continue
                    outcome = self._run_trigger(
                        db, pool, event, loaded, contents[trigger_id]
                    )
                except Exception as exc:
                    db.rollback()
                    logger.exception(
                        "Trigger failed during dispatch",
                        extra=build_log_context(
                            event_id=str(event_id),
                            event_type=event_type,
                            trigger_id=str(trigger_id),
                        ),
                    )
                    outcome = TriggerOutcome(
                        trigger_id=trigger_id,
                        outcome=DispatchOutcome.FAILED,
                        error=f"{type(exc).__name__}: {exc}"[:500],
                    )
                result.outcomes.append(outcome)

        logger.info(
            "Event dispatched: %s created, %s failed triggers",
            result.notifications_created,
            len(result.failed),
            extra=log_context,
        )
        return result

    def _run_trigger(
        self,
        db: Session,
        pool: ThreadPoolExecutor,
        event: DomainEvent,
        loaded: LoadedTrigger,
        content: TemplateContent,
    ) -> TriggerOutcome:
        trigger_id = loaded.id
        recipient_ids = sorted(recipient_resolver.resolve(db, loaded.recipient_rule, event))
        outcome = TriggerOutcome(
            trigger_id=trigger_id,
            outcome=DispatchOutcome.PERSISTED,
            recipients=len(recipient_ids),
        )
        if not recipient_ids:
            return outcome

        preferences = preference_service.get_preferences_for(db, recipient_ids, event.event_type)
        wanted = [r for r in recipient_ids if preference_service.wants_in_app(preferences.get(r))]
        outcome.muted = len(recipient_ids) - len(wanted)

        render_futures: list[tuple[int, Future]] = []
        for recipient_id in wanted:
            recipient = db.get(User, recipient_id)
            variables = template_renderer.build_template_variables(db, event, recipient)
            render_futures.append(
                (recipient_id, pool.submit(template_renderer.render_template, content, variables))
            )

        errors: list[str] = []
        for recipient_id, future in render_futures:
            rendered = future.result()
            try:
                notification, created = self._persist(db, event, loaded, recipient_id, rendered)
            except StoreWriteFailed as exc:
                errors.append(str(exc))
                continue
            if created:
                outcome.created += 1
            else:
                outcome.existing += 1
            self._enqueue_deliveries(db, notification, preferences.get(recipient_id))

        if errors:
            outcome.outcome = DispatchOutcome.FAILED
            outcome.error = "; ".join(errors)[:500]
        return outcome

    def _persist(
        self,
        db: Session,
        event: DomainEvent,
        loaded: LoadedTrigger,
        recipient_id: int,
        rendered: RenderedMessage,
    ) -> tuple[Notification, bool]:
        """Create the notification with bounded retries on transient store errors."""
        event_id, event_type, trigger_id = event.id, event.event_type, loaded.id
        try:
            return retry_service.call_with_retries(
                lambda: notification_service.create_notification(
                    db, event, loaded.trigger, recipient_id, rendered
                ),
                max_attempts=self.store_retry_attempts,
                base_delay=self.store_retry_base_delay,
                max_delay=self.store_retry_max_delay,
                on_retry=lambda exc: db.rollback(),
            )
        except retry_service.TRANSIENT_DB_ERRORS as exc:
            db.rollback()
            logger.error(
                "Notification store write failed after %s attempts",
                self.store_retry_attempts,
                extra=build_log_context(
                    event_id=str(event_id),
                    event_type=event_type,
                    trigger_id=str(trigger_id),
                    recipient_id=recipient_id,
                ),
            )
            alert_service.create_or_update_alert(
                db,
                alert_type=AlertType.NOTIFICATION_STORE_FAILED,
                severity=AlertSeverity.ERROR,
                title="Notification could not be stored",
                message=f"Event {event_id}, trigger {trigger_id}",
                alert_key=str(trigger_id),
                error_class=type(exc).__name__,
                details={
                    "event_id": str(event_id),
                    "trigger_id": str(trigger_id),
                    "recipient_id": recipient_id,
                },
            )
            raise StoreWriteFailed(
                f"recipient {recipient_id}: {type(exc).__name__}"
            ) from exc

    def _enqueue_deliveries(
        self,
        db: Session,
        notification: Notification,
        preference: NotificationPreference | None = None,
    ) -> None:
        """
        One delivery job per channel the recipient accepts, deduplicated by
        idempotency key. Inside the recipient's quiet hours the jobs are due
        when the window ends.
        """
        channels = preference_service.enabled_channels(preference, self.channels)
        run_at = preference_service.quiet_hours_end(preference, datetime.now(timezone.utc))
        for channel in channels:
            job_service.schedule_job(
                db,
                job_type=JobType.NOTIFICATION_DELIVERY,
                payload={"notification_id": str(notification.id), "channel": channel},
                run_at=run_at,
                idempotency_key=f"deliver:{notification.id}:{channel}",
                max_attempts=settings.DELIVERY_MAX_ATTEMPTS,
            )
