"""Consent gate - per-client, per-category consent decisions.

Fails closed: a missing, ambiguous or unreadable consent state is DENIED.
Every check writes an audit entry in the same transaction as the read, and
the entry stamps the record id and consent version that was observed.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from uuid import UUID

from fastapi import Request
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from carenotify.core.exceptions import ConsentDeniedError, InvalidDefinitionError
from carenotify.core.structured_logging import build_log_context
from carenotify.db.enums import (
    CURRENT_CONSENT_VERSION,
    AuditEventType,
    ConsentCategory,
    ConsentDecision,
    ConsentDenialReason,
)
from carenotify.db.locks import advisory_xact_lock
from carenotify.db.models import ConsentRecord
from carenotify.services import audit_service

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConsentCheckResult:
    subject_id: int
    category: str
    decision: ConsentDecision = ConsentDecision.DENIED
    reason: str | None = None
    consent_record_id: UUID | None = None
    consent_version: str | None = None
    audit_id: UUID | None = None

    @property
    def granted(self) -> bool:
        return self.decision == ConsentDecision.GRANTED


def _read_latest_records(db: Session, subject_id: int, category: str) -> list[ConsentRecord]:
    """
    All rows sharing the latest recorded_at, locked until the caller commits.

    The (subject, category) advisory lock comes first: row locks alone cannot
    stop a concurrent insert, and a first grant has no row to lock.
    """
    advisory_xact_lock(db, "consent", subject_id, category)
    latest = (
        select(func.max(ConsentRecord.recorded_at))
        .where(
            ConsentRecord.subject_id == subject_id,
            ConsentRecord.category == category,
        )
        .scalar_subquery()
    )
    return list(
        db.execute(
            select(ConsentRecord)
            .where(
                ConsentRecord.subject_id == subject_id,
                ConsentRecord.category == category,
                ConsentRecord.recorded_at == latest,
            )
            .with_for_update()
        ).scalars()
    )


def _decide(rows: list[ConsentRecord]) -> tuple[ConsentDecision, str | None, ConsentRecord | None]:
    if not rows:
        return ConsentDecision.DENIED, ConsentDenialReason.NO_RECORD.value, None
    if len({row.granted for row in rows}) > 1:
        return ConsentDecision.DENIED, ConsentDenialReason.AMBIGUOUS.value, None

    record = rows[0]
    if not record.granted or record.withdrawn_at is not None:
        return ConsentDecision.DENIED, ConsentDenialReason.WITHDRAWN.value, record
    return ConsentDecision.GRANTED, None, record


def check_consent(
    db: Session,
    subject_id: int,
    category: str,
    actor_id: int | None = None,
    request: Request | None = None,
) -> ConsentCheckResult:
    """
    Decide whether processing in `category` may proceed for a client.

    Commits the audit entry. Never raises for a missing or broken consent
    state; those come back as DENIED with a reason.
    """
    record: ConsentRecord | None = None

    if not ConsentCategory.has_value(category):
        decision, reason = ConsentDecision.DENIED, ConsentDenialReason.UNKNOWN_CATEGORY.value
    else:
        try:
            rows = _read_latest_records(db, subject_id, category)
        except SQLAlchemyError:
            db.rollback()
            logger.exception(
                "Consent state unreadable, denying",
                extra=build_log_context(actor_id=actor_id),
            )
            decision, reason = ConsentDecision.DENIED, ConsentDenialReason.UNREADABLE.value
        else:
            decision, reason, record = _decide(rows)

    details = {
        "category": category,
        "decision": decision.value,
        "reason": reason,
        "consent_record_id": str(record.id) if record else None,
        "consent_version": record.consent_version if record else None,
    }
    entry = audit_service.log_event(
        db=db,
        event_type=(
            AuditEventType.CONSENT_CHECK_GRANTED
            if decision == ConsentDecision.GRANTED
            else AuditEventType.CONSENT_CHECK_DENIED
        ),
        actor_id=actor_id,
        subject_id=subject_id,
        target_type="consent_record" if record else None,
        target_id=record.id if record else None,
        details=details,
        request=request,
    )
    db.commit()

    if decision != ConsentDecision.GRANTED:
        logger.info(
            "Consent check denied (%s)",
            reason,
            extra=build_log_context(actor_id=actor_id),
        )

    return ConsentCheckResult(
        subject_id=subject_id,
        category=category,
        decision=decision,
        reason=reason,
        consent_record_id=record.id if record else None,
        consent_version=record.consent_version if record else None,
        audit_id=entry.id,
    )


def require_consent(
    db: Session,
    subject_id: int,
    category: str,
    actor_id: int | None = None,
    request: Request | None = None,
) -> ConsentCheckResult:
    """Check consent and raise ConsentDeniedError unless it is granted."""
    result = check_consent(db, subject_id, category, actor_id=actor_id, request=request)
    if not result.granted:
        raise ConsentDeniedError(subject_id, category, result.reason or "denied")
    return result


# =============================================================================
# Consent state changes
# =============================================================================


def record_consent(
    db: Session,
    subject_id: int,
    category: str,
    granted: bool,
    consent_version: str = CURRENT_CONSENT_VERSION,
    actor_id: int | None = None,
    request: Request | None = None,
) -> ConsentRecord:
    """
    Append a grant or withdrawal.

    Earlier rows are never touched; the new row becomes authoritative.
    Takes the same locks as check_consent, so a check in flight finishes
    (and audits) against the state it read before this row lands.
    """
    if not ConsentCategory.has_value(category):
        raise InvalidDefinitionError(f"Unknown consent category: {category!r}")

    now = datetime.now(timezone.utc)
    current = _read_latest_records(db, subject_id, category)
    if current:
        latest = current[0].recorded_at
        if latest.tzinfo is None:
            latest = latest.replace(tzinfo=timezone.utc)
        if now <= latest:
            # The new row must sort strictly after the one it supersedes
            now = latest + timedelta(microseconds=1)

    record = ConsentRecord(
        subject_id=subject_id,
        category=category,
        granted=granted,
        consent_version=consent_version,
        granted_at=now if granted else None,
        withdrawn_at=None if granted else now,
        recorded_at=now,
        recorded_by=actor_id,
        ip_address=audit_service.get_client_ip(request),
    )
    db.add(record)
    db.flush()

    audit_service.log_event(
        db=db,
        event_type=(
            AuditEventType.CONSENT_GRANTED if granted else AuditEventType.CONSENT_WITHDRAWN
        ),
        actor_id=actor_id,
        subject_id=subject_id,
        target_type="consent_record",
        target_id=record.id,
        details={"category": category, "consent_version": consent_version},
        request=request,
    )
    db.commit()
    db.refresh(record)
    return record


# =============================================================================
# Queries
# =============================================================================


def _latest_per_key(rows: list[ConsentRecord]) -> dict[tuple[int, str], ConsentRecord]:
    """Rows must be ordered newest first."""
    latest: dict[tuple[int, str], ConsentRecord] = {}
    for row in rows:
        latest.setdefault((row.subject_id, row.category), row)
    return latest


def list_subject_consents(db: Session, subject_id: int) -> list[ConsentRecord]:
    """Latest record per category for one client."""
    rows = db.execute(
        select(ConsentRecord)
        .where(ConsentRecord.subject_id == subject_id)
        .order_by(ConsentRecord.recorded_at.desc(), ConsentRecord.id.desc())
    ).scalars().all()
    return sorted(_latest_per_key(list(rows)).values(), key=lambda r: r.category)


def list_consents_report(
    db: Session,
    category: str | None = None,
    granted: bool | None = None,
) -> list[dict]:
    """
    Admin report: latest consent state per client.

    Filters apply to the latest record, so a client who withdrew shows up
    under granted=False only.
    """
    query = select(ConsentRecord).order_by(
        ConsentRecord.recorded_at.desc(), ConsentRecord.id.desc()
    )
    if category:
        query = query.where(ConsentRecord.category == category)
    rows = db.execute(query).scalars().all()

    by_subject: dict[int, list[ConsentRecord]] = {}
    for record in _latest_per_key(list(rows)).values():
        if granted is not None and record.granted != granted:
            continue
        by_subject.setdefault(record.subject_id, []).append(record)

    return [
        {
            "subject_id": subject_id,
            "consents": sorted(records, key=lambda r: r.category),
        }
        for subject_id, records in sorted(by_subject.items())
    ]
