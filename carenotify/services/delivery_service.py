"""External delivery of created notifications.

Keyed by (notification_id, channel): an already delivered pair is a no-op,
so delivery jobs can be retried or re-queued freely.

Channels:
- log: dry run, logs ids only
- webhook: signed JSON POST to DELIVERY_WEBHOOK_URL
"""

import hashlib
import hmac
import json
import logging
from datetime import datetime, timezone
from urllib.parse import urlsplit
from uuid import UUID

import httpx
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from carenotify.core.config import settings
from carenotify.core.exceptions import NotFoundError
from carenotify.core.structured_logging import build_log_context
from carenotify.db.enums import AlertSeverity, AlertType, DeliveryChannel, DeliveryStatus
from carenotify.db.models import Notification, NotificationDelivery
from carenotify.services import alert_service, audit_service
from carenotify.services.retry_service import request_with_retries

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-CareNotify-Signature"


class DeliveryConfigError(RuntimeError):
    """Channel is enabled but not configured."""


def safe_url(url: str | None) -> str:
    if not url:
        return ""
    parts = urlsplit(url)
    return f"{parts.scheme}://{parts.netloc}{parts.path}"


def sign_payload(body: bytes, secret: str) -> str:
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return f"sha256={digest}"


def build_webhook_payload(notification: Notification) -> dict:
    return {
        "notification_id": str(notification.id),
        "recipient_id": notification.recipient_id,
        "event_id": str(notification.event_id),
        "event_type": notification.event_type,
        "priority": notification.priority,
        "title": notification.title,
        "message": notification.message,
        "action_url": notification.action_url,
        "created_at": notification.created_at.isoformat(),
    }


def get_or_create_delivery(
    db: Session, notification_id: UUID, channel: str
) -> NotificationDelivery:
    query = db.query(NotificationDelivery).filter(
        NotificationDelivery.notification_id == notification_id,
        NotificationDelivery.channel == channel,
    )
    delivery = query.first()
    if delivery:
        return delivery

    delivery = NotificationDelivery(
        notification_id=notification_id,
        channel=channel,
        status=DeliveryStatus.PENDING.value,
    )
    db.add(delivery)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        existing = query.first()
        if existing is None:
            raise
        return existing
    db.refresh(delivery)
    return delivery


async def _send_webhook(
    notification: Notification,
    client: httpx.AsyncClient | None,
) -> None:
    url = settings.DELIVERY_WEBHOOK_URL
    if not url:
        raise DeliveryConfigError("DELIVERY_WEBHOOK_URL is not set")

    body = json.dumps(build_webhook_payload(notification), separators=(",", ":")).encode()
    headers = {"Content-Type": "application/json"}
    if settings.DELIVERY_WEBHOOK_SECRET:
        headers[SIGNATURE_HEADER] = sign_payload(body, settings.DELIVERY_WEBHOOK_SECRET)

    async def _post(http: httpx.AsyncClient) -> None:
        response = await request_with_retries(
            lambda: http.post(url, content=body, headers=headers)
        )
        response.raise_for_status()

    if client is not None:
        await _post(client)
    else:
        async with httpx.AsyncClient(timeout=30.0) as http:
            await _post(http)
    logger.info("Webhook delivered: %s", safe_url(url))


async def deliver_notification(
    db: Session,
    notification_id: UUID,
    channel: str,
    final_attempt: bool = False,
    client: httpx.AsyncClient | None = None,
) -> NotificationDelivery:
    """
    Deliver one notification on one channel.

    Raises on failure so the job runner retries. On the final attempt the
    delivery is marked failed and an operational alert is raised.
    """
    channel = DeliveryChannel(channel).value
    notification = db.query(Notification).filter(Notification.id == notification_id).first()
    if not notification:
        raise NotFoundError(f"Notification {notification_id} not found")

    delivery = get_or_create_delivery(db, notification_id, channel)
    if delivery.status == DeliveryStatus.DELIVERED.value:
        logger.info("Notification already delivered on %s, skipping", channel)
        return delivery

    log_context = build_log_context(
        event_id=str(notification.event_id),
        event_type=notification.event_type,
        trigger_id=str(notification.source_trigger_id),
        recipient_id=notification.recipient_id,
    )
    delivery.attempts += 1

    try:
        if channel == DeliveryChannel.LOG.value:
            logger.info("[DRY RUN] Notification %s delivered", notification.id, extra=log_context)
        else:
            await _send_webhook(notification, client)
    except Exception as exc:
        delivery.last_error = f"{type(exc).__name__}: {exc}"[:2000]
        if final_attempt:
            delivery.status = DeliveryStatus.FAILED.value
        audit_service.log_notification_delivery(
            db,
            notification_id=notification.id,
            channel=channel,
            delivered=False,
            attempts=delivery.attempts,
            error_class=type(exc).__name__,
        )
        db.commit()
        logger.error(
            "Notification delivery failed on %s (%s)",
            channel,
            type(exc).__name__,
            extra=log_context,
        )
        if final_attempt:
            alert_service.create_or_update_alert(
                db,
                alert_type=AlertType.DELIVERY_FAILED,
                severity=AlertSeverity.ERROR,
                title=f"Notification delivery failed on {channel}",
                message=f"Notification {notification_id} after {delivery.attempts} attempts",
                alert_key=channel,
                error_class=type(exc).__name__,
            )
        raise

    delivery.status = DeliveryStatus.DELIVERED.value
    delivery.delivered_at = datetime.now(timezone.utc)
    delivery.last_error = None
    audit_service.log_notification_delivery(
        db,
        notification_id=notification.id,
        channel=channel,
        delivered=True,
        attempts=delivery.attempts,
    )
    db.commit()
    db.refresh(delivery)
    return delivery
