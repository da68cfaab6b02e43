"""Audit logging service - compliance event tracking.

Every consent gate decision, consent state change, notification delivery and
trigger/template definition change is written here.

Security guidelines:
- NEVER log rendered message bodies or event context values
- Use IDs instead of raw data where possible
- IP: Trust X-Forwarded-For only in production behind LB

Entries are chained: entry_hash = SHA256(prev_hash | immutable fields), so
editing or deleting a row breaks every hash after it.
"""

import hashlib
import json
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any

from fastapi import Request
from sqlalchemy import select
from sqlalchemy.orm import Session

from carenotify.core.config import settings
from carenotify.db.enums import AuditEventType
from carenotify.db.locks import advisory_xact_lock
from carenotify.db.models import AuditLog

GENESIS_HASH = "0" * 64  # All zeros for first entry
CHAIN_LOCK = "audit_chain"


def get_client_ip(request: Request | None) -> str | None:
    """
    Extract client IP from request.

    Only trusts X-Forwarded-For when TRUST_PROXY_HEADERS=True (behind reverse proxy).
    In development/direct connections, uses request.client.host.
    """
    if not request:
        return None

    if settings.TRUST_PROXY_HEADERS:
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            # X-Forwarded-For: client, proxy1, proxy2 - take first
            return forwarded.split(",")[0].strip()

    if request.client:
        return request.client.host

    return None


def get_user_agent(request: Request | None) -> str | None:
    """Extract user agent from request."""
    if not request:
        return None
    ua = request.headers.get("user-agent", "")
    # Truncate to 500 chars (DB limit)
    return ua[:500] if ua else None


def canonical_json(obj: dict | None) -> str:
    """
    Serialize object to canonical JSON for consistent hashing.

    Uses sorted keys, compact separators, and str() for non-JSON types.
    """
    return json.dumps(obj or {}, sort_keys=True, separators=(",", ":"), default=str)


def compute_entry_hash(entry: AuditLog, prev_hash: str) -> str:
    """Hash = SHA256(prev_hash and every immutable column joined with |)."""
    data = "|".join(
        [
            prev_hash,
            str(entry.id),
            entry.event_type,
            _hash_timestamp(entry.created_at),
            canonical_json(entry.details),
            str(entry.subject_id) if entry.subject_id is not None else "",
            str(entry.actor_id) if entry.actor_id is not None else "",
            entry.target_type or "",
            entry.target_id or "",
            entry.ip_address or "",
            entry.user_agent or "",
        ]
    )
    return hashlib.sha256(data.encode("utf-8")).hexdigest()


def _hash_timestamp(value: datetime) -> str:
    # SQLite hands timestamps back naive, so hash the naive UTC form
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value.isoformat()


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def get_last_audit_entry(db: Session) -> AuditLog | None:
    """Most recent chained entry (created_at + id for deterministic order)."""
    return db.execute(
        select(AuditLog)
        .where(AuditLog.entry_hash.is_not(None))
        .order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
        .limit(1)
    ).scalar_one_or_none()


def log_event(
    db: Session,
    event_type: AuditEventType,
    actor_id: int | None = None,
    subject_id: int | None = None,
    target_type: str | None = None,
    target_id: Any = None,
    details: dict | None = None,
    request: Request | None = None,
) -> AuditLog:
    """
    Log an audit event.

    Does NOT commit - the entry joins the caller's transaction, so an audited
    action and its audit row land (or roll back) together. The entry is
    hashed and flushed before returning, so a second call in the same
    transaction chains onto it. Appends from concurrent transactions queue
    on the chain lock until the holder commits.
    """
    advisory_xact_lock(db, CHAIN_LOCK)
    last = get_last_audit_entry(db)
    prev_hash = last.entry_hash if last else GENESIS_HASH

    # Strictly increasing timestamps keep chain order equal to sort order
    created_at = datetime.now(timezone.utc)
    if last and created_at <= _as_utc(last.created_at):
        created_at = _as_utc(last.created_at) + timedelta(microseconds=1)

    entry = AuditLog(
        id=uuid.uuid4(),
        created_at=created_at,
        event_type=event_type.value,
        actor_id=actor_id,
        subject_id=subject_id,
        target_type=target_type,
        target_id=str(target_id) if target_id is not None else None,
        details=details,
        ip_address=get_client_ip(request),
        user_agent=get_user_agent(request),
        prev_hash=prev_hash,
    )
    entry.entry_hash = compute_entry_hash(entry, prev_hash)
    db.add(entry)
    db.flush()
    return entry


def verify_chain(db: Session) -> tuple[bool, int]:
    """
    Walk the chain oldest-first.

    Returns (ok, checked); ok is False at the first entry whose prev_hash or
    entry_hash does not match.
    """
    entries = db.execute(
        select(AuditLog).order_by(AuditLog.created_at.asc(), AuditLog.id.asc())
    ).scalars()

    expected_prev = GENESIS_HASH
    checked = 0
    for entry in entries:
        if entry.entry_hash is None:
            continue
        if entry.prev_hash != expected_prev:
            return False, checked
        if compute_entry_hash(entry, expected_prev) != entry.entry_hash:
            return False, checked
        expected_prev = entry.entry_hash
        checked += 1
    return True, checked


def list_audit_entries(
    db: Session,
    subject_id: int | None = None,
    event_type: AuditEventType | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[AuditLog], int]:
    """List audit entries newest first with optional filters."""
    query = db.query(AuditLog)
    if subject_id is not None:
        query = query.filter(AuditLog.subject_id == subject_id)
    if event_type:
        query = query.filter(AuditLog.event_type == event_type.value)

    total = query.count()
    items = (
        query.order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
    return items, total


# =============================================================================
# Definition Events
# =============================================================================


def log_definition_changed(
    db: Session,
    event_type: AuditEventType,
    actor_id: int | None,
    target_type: str,
    target_id: Any,
    changed_fields: list[str] | None = None,
    request: Request | None = None,
) -> AuditLog:
    """Log a trigger/template create, update or disable (field names only)."""
    details = {"changed_fields": sorted(changed_fields)} if changed_fields else None
    return log_event(
        db=db,
        event_type=event_type,
        actor_id=actor_id,
        target_type=target_type,
        target_id=target_id,
        details=details,
        request=request,
    )


# =============================================================================
# Notification Events
# =============================================================================


def log_notification_created(
    db: Session,
    notification_id: Any,
    event_id: Any,
    trigger_id: Any,
    recipient_id: int,
    subject_id: int | None = None,
) -> AuditLog:
    """Log a triggered notification (ids only, never the rendered message)."""
    return log_event(
        db=db,
        event_type=AuditEventType.NOTIFICATION_CREATED,
        subject_id=subject_id,
        target_type="notification",
        target_id=notification_id,
        details={
            "event_id": str(event_id),
            "trigger_id": str(trigger_id),
            "recipient_id": recipient_id,
        },
    )


def log_notification_delivery(
    db: Session,
    notification_id: Any,
    channel: str,
    delivered: bool,
    attempts: int,
    error_class: str | None = None,
) -> AuditLog:
    """Log an external delivery outcome."""
    details: dict[str, Any] = {"channel": channel, "attempts": attempts}
    if error_class:
        details["error_class"] = error_class
    return log_event(
        db=db,
        event_type=(
            AuditEventType.NOTIFICATION_DELIVERED
            if delivered
            else AuditEventType.NOTIFICATION_DELIVERY_FAILED
        ),
        target_type="notification",
        target_id=notification_id,
        details=details,
    )
