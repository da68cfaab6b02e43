"""Tests for event dispatch: trigger evaluation, isolation and store retries."""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import OperationalError

from carenotify.core.exceptions import RegistryUnavailableError
from carenotify.db.enums import AlertType, DispatchOutcome, EventStatus, JobType
from carenotify.db.models import DomainEvent, Job, Notification, SystemAlert
from carenotify.services import (
    event_service,
    notification_service,
    preference_service,
    recipient_resolver,
    trigger_registry,
)
from carenotify.schemas.notification import PreferenceUpdate
from carenotify.services.dispatcher import Dispatcher
from carenotify.services.recipient_resolver import EventField


def store_error() -> OperationalError:
    return OperationalError("INSERT INTO notifications", {}, Exception("database is locked"))


@pytest.fixture
def dispatcher():
    return Dispatcher(max_workers=2, channels=["log"], store_retry_base_delay=0)


@pytest.fixture
def overdue_event(db):
    def _make(context=None):
        event = DomainEvent(
            event_type="TaskOverdue",
            context=context if context is not None else {
                "assignedToId": 42,
                "ASSIGNEE_NAME": "Sam",
                "TASK_TITLE": "Write intake notes",
                "DUE_DATE": "2026-03-01",
                "TASK_ID": "T-9",
            },
        )
        db.add(event)
        db.commit()
        return event

    return _make


# =============================================================================
# End to end
# =============================================================================

def test_task_overdue_notifies_assignee(db, make_user, overdue_event, dispatcher):
    make_user(display_name="Sam", user_id=42)
    trigger_registry.seed_default_triggers(db)
    event = overdue_event()

    result = dispatcher.dispatch(db, event)

    assert result.notifications_created == 1
    notification = db.query(Notification).one()
    assert notification.recipient_id == 42
    assert notification.title == "Task overdue: Write intake notes"
    assert "Hi Sam" in notification.message
    assert notification.action_url == "/tasks/T-9"
    assert notification.priority == "high"


def test_redispatch_creates_nothing_new(db, make_user, overdue_event, dispatcher):
    make_user(user_id=42)
    trigger_registry.seed_default_triggers(db)
    event = overdue_event()

    first = dispatcher.dispatch(db, event)
    second = dispatcher.dispatch(db, event)

    assert first.notifications_created == 1
    assert second.notifications_created == 0
    assert second.outcomes[0].existing == 1
    assert db.query(Notification).count() == 1


def test_delivery_jobs_enqueued_once_per_channel(db, make_user, overdue_event, dispatcher):
    make_user(user_id=42)
    trigger_registry.seed_default_triggers(db)
    event = overdue_event()

    dispatcher.dispatch(db, event)
    dispatcher.dispatch(db, event)

    notification = db.query(Notification).one()
    jobs = db.query(Job).filter(Job.job_type == JobType.NOTIFICATION_DELIVERY.value).all()
    assert [job.idempotency_key for job in jobs] == [f"deliver:{notification.id}:log"]


def test_unknown_channels_are_ignored():
    assert Dispatcher(channels=["log", "carrier-pigeon"]).channels == ["log"]


# =============================================================================
# Recipient preferences
# =============================================================================

def delivery_jobs(db) -> list[Job]:
    return db.query(Job).filter(Job.job_type == JobType.NOTIFICATION_DELIVERY.value).all()


def test_in_app_opt_out_drops_recipient(db, make_user, make_trigger, overdue_event, dispatcher):
    make_user(user_id=42)
    make_user(user_id=43)
    make_trigger(recipient_rule={"type": "specific_users", "user_ids": [42, 43]})
    preference_service.set_user_preference(
        db, 43, "TaskOverdue", PreferenceUpdate(enable_in_app=False)
    )

    result = dispatcher.dispatch(db, overdue_event())

    outcome = result.outcomes[0]
    assert (outcome.recipients, outcome.muted, outcome.created) == (2, 1, 1)
    assert [n.recipient_id for n in db.query(Notification).all()] == [42]
    assert len(delivery_jobs(db)) == 1


def test_opt_out_is_per_event_type(db, make_user, make_trigger, overdue_event, dispatcher):
    make_user(user_id=42)
    make_trigger()
    preference_service.set_user_preference(
        db, 42, "SessionScheduled", PreferenceUpdate(enable_in_app=False)
    )

    assert dispatcher.dispatch(db, overdue_event()).notifications_created == 1


def test_channel_opt_out_skips_that_delivery(db, make_user, make_trigger, overdue_event):
    make_user(user_id=42)
    make_trigger()
    preference_service.set_user_preference(
        db, 42, "TaskOverdue", PreferenceUpdate(enable_webhook=False)
    )
    dispatcher = Dispatcher(max_workers=2, channels=["log", "webhook"])

    dispatcher.dispatch(db, overdue_event())

    assert [job.payload["channel"] for job in delivery_jobs(db)] == ["log"]


def test_quiet_hours_defer_delivery(db, make_user, make_trigger, overdue_event, dispatcher):
    make_user(user_id=42)
    make_trigger()
    now = datetime.now(timezone.utc)
    preference_service.set_user_preference(
        db,
        42,
        "TaskOverdue",
        PreferenceUpdate(
            quiet_hours_start=(now - timedelta(hours=1)).time().replace(microsecond=0),
            quiet_hours_end=(now + timedelta(hours=2)).time().replace(microsecond=0),
        ),
    )

    result = dispatcher.dispatch(db, overdue_event())

    assert result.notifications_created == 1
    run_at = delivery_jobs(db)[0].run_at.replace(tzinfo=timezone.utc)
    assert run_at > now + timedelta(hours=1)


def test_no_triggers_for_event_type(db, overdue_event, dispatcher):
    result = dispatcher.dispatch(db, overdue_event())
    assert result.outcomes == []


def test_false_condition_is_skipped(db, make_user, make_trigger, overdue_event, dispatcher):
    make_user(user_id=42)
    trigger = make_trigger(
        condition={"kind": "COMPARE", "field": "daysOverdue", "operator": "greater_than", "value": 7}
    )

    result = dispatcher.dispatch(db, overdue_event({"assignedToId": 42, "daysOverdue": 2}))

    assert [(o.trigger_id, o.outcome) for o in result.outcomes] == [
        (trigger.id, DispatchOutcome.SKIPPED)
    ]
    assert db.query(Notification).count() == 0


def test_rule_resolving_to_nobody_persists_nothing(db, make_trigger, overdue_event, dispatcher):
    make_trigger()

    result = dispatcher.dispatch(db, overdue_event({"assignedToId": 999}))

    assert result.outcomes[0].outcome == DispatchOutcome.PERSISTED
    assert result.outcomes[0].recipients == 0
    assert db.query(Notification).count() == 0


# =============================================================================
# Failure isolation
# =============================================================================

def test_failing_trigger_does_not_block_siblings(
    db, make_user, make_template, make_trigger, overdue_event, dispatcher, monkeypatch
):
    make_user(user_id=42)
    make_user(user_id=43)
    template = make_template()
    healthy = make_trigger(template=template, name="Assignee")
    broken = make_trigger(
        template=template,
        name="Reviewer",
        recipient_rule={"type": "event_field", "path": "reviewerId"},
    )

    real_resolve = recipient_resolver.resolve

    def flaky_resolve(db_, rule, event):
        if rule == EventField("reviewerId"):
            raise RuntimeError("directory lookup exploded")
        return real_resolve(db_, rule, event)

    monkeypatch.setattr(recipient_resolver, "resolve", flaky_resolve)

    result = dispatcher.dispatch(db, overdue_event({"assignedToId": 42, "reviewerId": 43}))

    outcomes = {o.trigger_id: o for o in result.outcomes}
    assert outcomes[healthy.id].outcome == DispatchOutcome.PERSISTED
    assert outcomes[healthy.id].created == 1
    assert outcomes[broken.id].outcome == DispatchOutcome.FAILED
    assert "RuntimeError" in outcomes[broken.id].error
    assert [n.recipient_id for n in db.query(Notification).all()] == [42]


def test_store_write_retried_after_transient_error(
    db, make_user, make_trigger, overdue_event, dispatcher, monkeypatch
):
    make_user(user_id=42)
    make_trigger()
    real_create = notification_service.create_notification
    calls = {"count": 0}

    def flaky_create(*args, **kwargs):
        calls["count"] += 1
        if calls["count"] == 1:
            raise store_error()
        return real_create(*args, **kwargs)

    monkeypatch.setattr(notification_service, "create_notification", flaky_create)

    result = dispatcher.dispatch(db, overdue_event())

    assert calls["count"] == 2
    assert result.notifications_created == 1
    assert db.query(Notification).count() == 1


def test_store_write_exhausted_raises_alert(
    db, make_user, make_trigger, overdue_event, monkeypatch
):
    make_user(user_id=42)
    trigger = make_trigger()
    calls = {"count": 0}

    def failing_create(*args, **kwargs):
        calls["count"] += 1
        raise store_error()

    monkeypatch.setattr(notification_service, "create_notification", failing_create)
    dispatcher = Dispatcher(channels=[], store_retry_attempts=3, store_retry_base_delay=0)

    result = dispatcher.dispatch(db, overdue_event())

    assert calls["count"] == 3
    assert result.outcomes[0].outcome == DispatchOutcome.FAILED
    alert = db.query(SystemAlert).one()
    assert alert.alert_type == AlertType.NOTIFICATION_STORE_FAILED.value
    assert alert.alert_key == str(trigger.id)


# =============================================================================
# Event processing
# =============================================================================

def test_process_event_marks_done(db, make_user, make_trigger, overdue_event, dispatcher):
    make_user(user_id=42)
    make_trigger()
    event = overdue_event()

    result = event_service.process_event(db, event, dispatcher=dispatcher)

    db.refresh(event)
    assert result.notifications_created == 1
    assert event.status == EventStatus.DONE.value
    assert event.processed_at is not None
    assert event.error is None


def test_registry_failure_marks_event_failed(db, overdue_event, dispatcher, monkeypatch):
    def unavailable(db_, event_type):
        raise RegistryUnavailableError(f"Trigger lookup failed for '{event_type}'")

    monkeypatch.setattr(trigger_registry, "find_triggers", unavailable)
    event = overdue_event()

    with pytest.raises(RegistryUnavailableError):
        event_service.process_event(db, event, dispatcher=dispatcher)

    db.refresh(event)
    assert event.status == EventStatus.FAILED.value
    alert = db.query(SystemAlert).one()
    assert alert.alert_type == AlertType.EVENT_DISPATCH_FAILED.value


def test_inactive_template_trigger_is_skipped_at_lookup(db, make_trigger):
    trigger = make_trigger()
    trigger.template.is_active = False
    db.commit()

    assert trigger_registry.find_triggers(db, "TaskOverdue") == []


def test_submit_event_schedules_dispatch_job(db):
    event = event_service.submit_event(db, "TaskOverdue", context={"assignedToId": 42})

    job = db.query(Job).one()
    assert event.status == EventStatus.RECEIVED.value
    assert job.job_type == JobType.DISPATCH_EVENT.value
    assert job.idempotency_key == f"dispatch:{event.id}"


def test_requeue_unprocessed_events_resets_finished_jobs(db):
    event = event_service.submit_event(db, "TaskOverdue", context={})
    job = db.query(Job).one()
    job.status = "completed"
    job.attempts = 3
    db.commit()

    count = event_service.requeue_unprocessed_events(db)

    db.refresh(job)
    assert count == 1
    assert job.status == "pending"
    assert job.attempts == 0
    assert db.query(Job).count() == 1
    assert event.status == EventStatus.RECEIVED.value


def test_requeue_unprocessed_events_leaves_running_jobs_alone(db):
    event_service.submit_event(db, "TaskOverdue", context={})
    job = db.query(Job).one()
    job.status = "running"
    job.attempts = 1
    db.commit()

    assert event_service.requeue_unprocessed_events(db) == 1

    db.refresh(job)
    assert job.status == "running"
    assert job.attempts == 1
