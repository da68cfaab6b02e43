"""SQLAlchemy ORM models."""

from carenotify.db.models.audit import AuditLog
from carenotify.db.models.consent import ConsentRecord
from carenotify.db.models.directory import Client, SupervisorAssignment, User
from carenotify.db.models.events import DomainEvent
from carenotify.db.models.jobs import Job, SystemAlert
from carenotify.db.models.notifications import (
    Notification,
    NotificationDelivery,
    NotificationPreference,
)
from carenotify.db.models.triggers import NotificationTemplate, NotificationTrigger

__all__ = [
    "AuditLog",
    "Client",
    "ConsentRecord",
    "DomainEvent",
    "Job",
    "Notification",
    "NotificationDelivery",
    "NotificationPreference",
    "NotificationTemplate",
    "NotificationTrigger",
    "SupervisorAssignment",
    "SystemAlert",
    "User",
]
