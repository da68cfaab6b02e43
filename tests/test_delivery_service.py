"""Tests for external notification delivery (log and webhook channels)."""

import json

import httpx
import pytest

from carenotify.core.config import settings
from carenotify.db.enums import AlertType, AuditEventType, DeliveryStatus
from carenotify.db.models import AuditLog, DomainEvent, NotificationDelivery, SystemAlert
from carenotify.services import delivery_service, notification_service
from carenotify.services.template_renderer import RenderedMessage

WEBHOOK_URL = "https://hooks.example.com/notify?token=secret"


@pytest.fixture
def notification(db, make_user, make_trigger):
    user = make_user(user_id=42)
    trigger = make_trigger()
    event = DomainEvent(event_type="TaskOverdue", context={"assignedToId": 42})
    db.add(event)
    db.commit()
    created, _ = notification_service.create_notification(
        db, event, trigger, user.id, RenderedMessage(title="Task overdue", message="Hi")
    )
    return created


@pytest.fixture
def webhook_settings(monkeypatch):
    monkeypatch.setattr(settings, "DELIVERY_WEBHOOK_URL", WEBHOOK_URL)
    monkeypatch.setattr(settings, "DELIVERY_WEBHOOK_SECRET", "shh")


def delivery_audits(db, event_type):
    return db.query(AuditLog).filter(AuditLog.event_type == event_type.value).all()


def test_safe_url_strips_query():
    assert delivery_service.safe_url(WEBHOOK_URL) == "https://hooks.example.com/notify"
    assert delivery_service.safe_url(None) == ""


def test_sign_payload():
    signature = delivery_service.sign_payload(b"{}", "shh")
    assert signature.startswith("sha256=")
    assert signature == delivery_service.sign_payload(b"{}", "shh")
    assert signature != delivery_service.sign_payload(b"{}", "other")


async def test_log_channel_delivers_once(db, notification):
    first = await delivery_service.deliver_notification(db, notification.id, "log")
    second = await delivery_service.deliver_notification(db, notification.id, "log")

    assert first.status == DeliveryStatus.DELIVERED.value
    assert second.id == first.id
    assert second.attempts == 1
    assert db.query(NotificationDelivery).count() == 1
    assert len(delivery_audits(db, AuditEventType.NOTIFICATION_DELIVERED)) == 1


async def test_webhook_posts_signed_payload(db, notification, webhook_settings):
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["body"] = request.content
        seen["signature"] = request.headers.get(delivery_service.SIGNATURE_HEADER)
        return httpx.Response(204)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        delivery = await delivery_service.deliver_notification(
            db, notification.id, "webhook", client=client
        )

    payload = json.loads(seen["body"])
    assert delivery.status == DeliveryStatus.DELIVERED.value
    assert payload["notification_id"] == str(notification.id)
    assert payload["recipient_id"] == 42
    assert seen["signature"] == delivery_service.sign_payload(seen["body"], "shh")


async def test_webhook_failure_retries_then_alerts_on_final_attempt(
    db, notification, webhook_settings
):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        with pytest.raises(httpx.HTTPStatusError):
            await delivery_service.deliver_notification(
                db, notification.id, "webhook", client=client
            )
        delivery = db.query(NotificationDelivery).one()
        assert delivery.status == DeliveryStatus.PENDING.value
        assert db.query(SystemAlert).count() == 0

        with pytest.raises(httpx.HTTPStatusError):
            await delivery_service.deliver_notification(
                db, notification.id, "webhook", final_attempt=True, client=client
            )

    db.refresh(delivery)
    assert delivery.status == DeliveryStatus.FAILED.value
    assert delivery.attempts == 2
    assert len(delivery_audits(db, AuditEventType.NOTIFICATION_DELIVERY_FAILED)) == 2
    alert = db.query(SystemAlert).one()
    assert alert.alert_type == AlertType.DELIVERY_FAILED.value


async def test_webhook_without_url_is_a_config_error(db, notification, monkeypatch):
    monkeypatch.setattr(settings, "DELIVERY_WEBHOOK_URL", "")

    with pytest.raises(delivery_service.DeliveryConfigError):
        await delivery_service.deliver_notification(db, notification.id, "webhook")
