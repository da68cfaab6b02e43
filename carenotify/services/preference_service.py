"""
Preference Service - per-user notification opt-ins.

One optional row per (user, event type). A missing row means every channel
is enabled and there are no quiet hours, so users who never touch their
settings receive everything their triggers address to them.
"""

import logging
from datetime import datetime, time, timedelta, timezone

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from carenotify.core.exceptions import InvalidDefinitionError
from carenotify.core.structured_logging import build_log_context
from carenotify.db.models import NotificationPreference
from carenotify.schemas.notification import PreferenceUpdate

logger = logging.getLogger(__name__)

CHANNEL_FLAGS = ("enable_in_app", "enable_log", "enable_webhook")


def get_user_preferences(db: Session, user_id: int) -> list[NotificationPreference]:
    """Stored preferences for a user, by event type."""
    return (
        db.query(NotificationPreference)
        .filter(NotificationPreference.user_id == user_id)
        .order_by(NotificationPreference.event_type)
        .all()
    )


def get_preference(db: Session, user_id: int, event_type: str) -> NotificationPreference | None:
    return db.query(NotificationPreference).filter(
        NotificationPreference.user_id == user_id,
        NotificationPreference.event_type == event_type,
    ).first()


def get_preferences_for(
    db: Session, user_ids: list[int], event_type: str
) -> dict[int, NotificationPreference]:
    """Stored preferences for several recipients of one event type."""
    if not user_ids:
        return {}
    rows = db.query(NotificationPreference).filter(
        NotificationPreference.user_id.in_(user_ids),
        NotificationPreference.event_type == event_type,
    ).all()
    return {row.user_id: row for row in rows}


def _as_utc_time(value: time) -> time:
    """Quiet hours are stored as naive UTC wall-clock times."""
    if value.tzinfo is None:
        return value
    if value.utcoffset() != timedelta(0):
        raise InvalidDefinitionError("Quiet hours must be given in UTC")
    return value.replace(tzinfo=None)


def set_user_preference(
    db: Session,
    user_id: int,
    event_type: str,
    data: PreferenceUpdate,
) -> NotificationPreference:
    """
    Create or update the preference for (user, event_type).

    Only fields present in the request change. A channel flag sent as null
    is ignored; quiet hours sent as null are cleared. Quiet hours must be
    set or cleared as a pair.

    Raises:
        InvalidDefinitionError: Blank event type, non-UTC or half-set quiet hours
    """
    event_type = event_type.strip()
    if not event_type or len(event_type) > 100:
        raise InvalidDefinitionError("event_type must be 1-100 characters")

    updates = data.model_dump(exclude_unset=True)
    for flag in CHANNEL_FLAGS:
        if updates.get(flag, True) is None:
            updates.pop(flag)
    for key in ("quiet_hours_start", "quiet_hours_end"):
        if updates.get(key) is not None:
            updates[key] = _as_utc_time(updates[key])

    preference = get_preference(db, user_id, event_type)
    if preference is None:
        preference = NotificationPreference(user_id=user_id, event_type=event_type)
        for flag in CHANNEL_FLAGS:
            setattr(preference, flag, True)
        db.add(preference)

    for key, value in updates.items():
        setattr(preference, key, value)

    if (preference.quiet_hours_start is None) != (preference.quiet_hours_end is None):
        db.rollback()
        raise InvalidDefinitionError("quiet_hours_start and quiet_hours_end go together")

    try:
        db.commit()
    except IntegrityError:
        # A concurrent first write for the same pair won; apply ours on top
        db.rollback()
        preference = get_preference(db, user_id, event_type)
        if preference is None:
            raise
        for key, value in updates.items():
            setattr(preference, key, value)
        db.commit()

    db.refresh(preference)
    logger.info(
        "Notification preference saved",
        extra=build_log_context(event_type=event_type, recipient_id=user_id),
    )
    return preference


# =============================================================================
# Evaluation (used by the dispatcher)
# =============================================================================


def wants_in_app(preference: NotificationPreference | None) -> bool:
    return preference is None or preference.enable_in_app


def enabled_channels(
    preference: NotificationPreference | None, channels: list[str]
) -> list[str]:
    """The configured external channels this recipient has not opted out of."""
    if preference is None:
        return list(channels)
    return [c for c in channels if getattr(preference, f"enable_{c}", True)]


def _in_window(moment: time, start: time, end: time) -> bool:
    if start <= end:
        return start <= moment < end
    return moment >= start or moment < end


def quiet_hours_end(
    preference: NotificationPreference | None, now: datetime
) -> datetime | None:
    """
    When external delivery may go out, if `now` falls inside quiet hours.

    Returns None outside quiet hours (or when none are set). A window with
    equal start and end is empty.
    """
    if preference is None or preference.quiet_hours_start is None:
        return None
    start, end = preference.quiet_hours_start, preference.quiet_hours_end
    if end is None or start == end:
        return None

    now = now.astimezone(timezone.utc)
    if not _in_window(now.time(), start, end):
        return None

    resume = datetime.combine(now.date(), end, tzinfo=timezone.utc)
    if resume <= now:
        resume += timedelta(days=1)
    return resume
