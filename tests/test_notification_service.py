"""Tests for the in-app notification store."""

import uuid
from datetime import datetime, timedelta, timezone

import pytest

from carenotify.core.exceptions import NotFoundError
from carenotify.db.enums import AuditEventType
from carenotify.db.models import AuditLog, DomainEvent, Notification
from carenotify.services import notification_service
from carenotify.services.template_renderer import RenderedMessage


@pytest.fixture
def event(db):
    event = DomainEvent(event_type="TaskOverdue", context={"assignedToId": 1})
    db.add(event)
    db.commit()
    return event


@pytest.fixture
def trigger(make_trigger):
    return make_trigger()


def rendered(title="Task overdue"):
    return RenderedMessage(title=title, message="body")


def test_create_is_idempotent_on_event_trigger_recipient(db, make_user, event, trigger):
    user = make_user()

    first, created = notification_service.create_notification(
        db, event, trigger, user.id, rendered()
    )
    second, created_again = notification_service.create_notification(
        db, event, trigger, user.id, rendered("Different title")
    )

    assert created is True
    assert created_again is False
    assert second.id == first.id
    assert second.title == "Task overdue"
    assert db.query(Notification).count() == 1


def test_create_audits_ids_only(db, make_user, event, trigger):
    user = make_user()
    notification, _ = notification_service.create_notification(
        db, event, trigger, user.id, rendered()
    )

    entry = db.query(AuditLog).filter(
        AuditLog.event_type == AuditEventType.NOTIFICATION_CREATED.value
    ).one()
    assert entry.target_id == str(notification.id)
    assert entry.details == {
        "event_id": str(event.id),
        "trigger_id": str(trigger.id),
        "recipient_id": user.id,
    }


def test_notification_carries_trigger_priority(db, make_user, event, make_trigger):
    trigger = make_trigger(priority="urgent")
    user = make_user()
    notification, _ = notification_service.create_notification(
        db, event, trigger, user.id, rendered()
    )
    assert notification.priority == "urgent"
    assert notification.is_read is False


def test_unread_count_and_listing(db, make_user, event, make_trigger, make_template):
    user = make_user()
    other = make_user()
    template = make_template()
    triggers = [
        make_trigger(template=template, name=f"Trigger {i}") for i in range(3)
    ]
    for trig in triggers:
        notification_service.create_notification(db, event, trig, user.id, rendered())
    notification_service.create_notification(db, event, triggers[0], other.id, rendered())

    assert notification_service.get_unread_count(db, user.id) == 3
    assert len(notification_service.list_notifications(db, user.id)) == 3
    assert len(notification_service.list_notifications(db, user.id, limit=2)) == 2
    assert notification_service.get_unread_count(db, other.id) == 1


def test_mark_read_scoped_to_recipient(db, make_user, event, trigger):
    owner = make_user()
    stranger = make_user()
    notification, _ = notification_service.create_notification(
        db, event, trigger, owner.id, rendered()
    )

    with pytest.raises(NotFoundError):
        notification_service.mark_read(db, notification.id, stranger.id)

    read = notification_service.mark_read(db, notification.id, owner.id)
    assert read.read_at is not None
    assert notification_service.get_unread_count(db, owner.id) == 0


def test_mark_read_is_idempotent(db, make_user, event, trigger):
    user = make_user()
    notification, _ = notification_service.create_notification(
        db, event, trigger, user.id, rendered()
    )
    first = notification_service.mark_read(db, notification.id, user.id).read_at
    second = notification_service.mark_read(db, notification.id, user.id).read_at
    assert first == second


def test_mark_read_unknown_notification(db, make_user):
    user = make_user()
    with pytest.raises(NotFoundError):
        notification_service.mark_read(db, uuid.uuid4(), user.id)


def test_mark_all_read_leaves_later_notifications_unread(db, make_user, event, make_trigger):
    user = make_user()
    template_trigger = make_trigger()
    later_trigger = make_trigger(template=template_trigger.template, name="Later")

    notification_service.create_notification(db, event, template_trigger, user.id, rendered())
    later, _ = notification_service.create_notification(
        db, event, later_trigger, user.id, rendered()
    )
    # Created after the cutoff mark_all_read will capture
    later.created_at = datetime.now(timezone.utc) + timedelta(minutes=5)
    db.commit()

    updated = notification_service.mark_all_read(db, user.id)

    assert updated == 1
    assert notification_service.get_unread_count(db, user.id) == 1
    db.refresh(later)
    assert later.read_at is None


def test_notification_stats(db, make_user, event, make_trigger):
    user = make_user()
    high = make_trigger(priority="high")
    low = make_trigger(template=high.template, name="Low", priority="low")
    notification_service.create_notification(db, event, high, user.id, rendered())
    notification, _ = notification_service.create_notification(
        db, event, low, user.id, rendered()
    )
    notification_service.mark_read(db, notification.id, user.id)

    stats = notification_service.get_notification_stats(db)

    assert stats["total"] == 2
    assert stats["unread"] == 1
    assert stats["by_priority"] == {"high": 1, "low": 1}
    assert stats["by_event_type"] == {"TaskOverdue": 2}
