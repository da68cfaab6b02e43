"""Operational alert enums."""

from enum import Enum


class AlertType(str, Enum):
    NOTIFICATION_STORE_FAILED = "notification_store_failed"
    DELIVERY_FAILED = "delivery_failed"
    EVENT_DISPATCH_FAILED = "event_dispatch_failed"
    WORKER_JOB_FAILED = "worker_job_failed"


class AlertSeverity(str, Enum):
    WARN = "warn"
    ERROR = "error"
    CRITICAL = "critical"


class AlertStatus(str, Enum):
    OPEN = "open"
    RESOLVED = "resolved"
