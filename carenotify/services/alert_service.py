"""
Operational alerts for failures the engine cannot recover from on its own.

Store retry exhaustion, final delivery failures, dead jobs and registry
outages land here. Repeats of the same failure fold into one row keyed by a
fingerprint, so an outage produces one alert with a rising count rather than
one row per event.
"""

import hashlib
import logging
from datetime import datetime, timezone
from uuid import UUID

from fastapi import Request
from sqlalchemy.orm import Session

from carenotify.db.enums import AlertSeverity, AlertStatus, AlertType, AuditEventType
from carenotify.db.models import SystemAlert
from carenotify.services import audit_service

logger = logging.getLogger(__name__)

SEVERITY_RANK = {
    AlertSeverity.WARN.value: 0,
    AlertSeverity.ERROR.value: 1,
    AlertSeverity.CRITICAL.value: 2,
}


def fingerprint(
    alert_type: AlertType,
    alert_key: str | None,
    error_class: str | None,
) -> str:
    """
    Stable dedupe key for an alert.

    Built from the failure kind only (channel, job type, exception class);
    ids and timestamps stay out so repeats collapse onto one row.
    """
    normalized = "|".join((alert_type.value, alert_key or "-", error_class or "-"))
    return hashlib.sha256(normalized.encode()).hexdigest()[:16]


def _escalate(current: str, incoming: AlertSeverity) -> str:
    if SEVERITY_RANK[incoming.value] > SEVERITY_RANK.get(current, 0):
        return incoming.value
    return current


def create_or_update_alert(
    db: Session,
    alert_type: AlertType,
    severity: AlertSeverity,
    title: str,
    message: str | None = None,
    alert_key: str | None = None,
    error_class: str | None = None,
    details: dict | None = None,
) -> SystemAlert:
    """
    Open an alert, or fold a repeat into the matching one.

    A repeat bumps occurrence_count and last_seen_at, replaces the message,
    keeps the highest severity seen and reopens the alert if it had been
    resolved. Commits.
    """
    dedupe_key = fingerprint(alert_type, alert_key, error_class)
    alert = db.query(SystemAlert).filter(SystemAlert.dedupe_key == dedupe_key).first()

    if alert is None:
        alert = SystemAlert(
            dedupe_key=dedupe_key,
            alert_key=alert_key,
            alert_type=alert_type.value,
            severity=severity.value,
            status=AlertStatus.OPEN.value,
            title=title[:255],
            message=message,
            details=details,
        )
        db.add(alert)
        logger.warning("System alert opened: %s (%s)", alert_type.value, alert_key or "-")
    else:
        alert.last_seen_at = datetime.now(timezone.utc)
        alert.occurrence_count += 1
        alert.message = message
        alert.severity = _escalate(alert.severity, severity)
        if details:
            alert.details = details
        if alert.status == AlertStatus.RESOLVED.value:
            alert.status = AlertStatus.OPEN.value
            alert.resolved_at = None
            alert.resolved_by = None
            logger.warning(
                "System alert reopened: %s (%s)", alert_type.value, alert_key or "-"
            )

    db.commit()
    db.refresh(alert)
    return alert


def list_alerts(
    db: Session,
    status: AlertStatus | None = None,
    severity: AlertSeverity | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[SystemAlert]:
    """Most recently seen first."""
    query = db.query(SystemAlert)
    if status:
        query = query.filter(SystemAlert.status == status.value)
    if severity:
        query = query.filter(SystemAlert.severity == severity.value)
    return query.order_by(SystemAlert.last_seen_at.desc()).offset(offset).limit(limit).all()


def resolve_alert(
    db: Session,
    alert_id: UUID,
    actor_id: int | None = None,
    request: Request | None = None,
) -> SystemAlert | None:
    """Mark an alert resolved and audit who did it. None if the id is unknown."""
    alert = db.get(SystemAlert, alert_id)
    if alert is None:
        return None
    if alert.status == AlertStatus.RESOLVED.value:
        return alert

    alert.status = AlertStatus.RESOLVED.value
    alert.resolved_at = datetime.now(timezone.utc)
    alert.resolved_by = actor_id
    audit_service.log_event(
        db,
        event_type=AuditEventType.ALERT_RESOLVED,
        actor_id=actor_id,
        target_type="system_alert",
        target_id=alert.id,
        details={
            "alert_type": alert.alert_type,
            "occurrence_count": alert.occurrence_count,
        },
        request=request,
    )
    db.commit()
    db.refresh(alert)
    return alert
