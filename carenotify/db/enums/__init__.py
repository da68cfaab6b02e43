"""Enum definitions for application constants."""

from carenotify.db.enums.alerts import AlertSeverity, AlertStatus, AlertType
from carenotify.db.enums.audit import AuditEventType
from carenotify.db.enums.auth import ROLES_CAN_MANAGE_NOTIFICATIONS, Role
from carenotify.db.enums.conditions import (
    ConditionKind,
    ConditionOperator,
    RecipientRuleType,
)
from carenotify.db.enums.consent import (
    CURRENT_CONSENT_VERSION,
    ConsentCategory,
    ConsentDecision,
    ConsentDenialReason,
)
from carenotify.db.enums.jobs import JobStatus, JobType
from carenotify.db.enums.notifications import (
    DeliveryChannel,
    DeliveryStatus,
    DispatchOutcome,
    EventStatus,
    NotificationPriority,
)

__all__ = [
    "AlertSeverity",
    "AlertStatus",
    "AlertType",
    "AuditEventType",
    "ConditionKind",
    "ConditionOperator",
    "ConsentCategory",
    "ConsentDecision",
    "ConsentDenialReason",
    "CURRENT_CONSENT_VERSION",
    "DeliveryChannel",
    "DeliveryStatus",
    "DispatchOutcome",
    "EventStatus",
    "JobStatus",
    "JobType",
    "NotificationPriority",
    "RecipientRuleType",
    "Role",
    "ROLES_CAN_MANAGE_NOTIFICATIONS",
]
