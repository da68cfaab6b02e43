"""Notification-related enums."""

from enum import Enum


class NotificationPriority(str, Enum):
    """Priority carried from the trigger onto each notification."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class EventStatus(str, Enum):
    """Processing state of a submitted domain event."""

    RECEIVED = "received"  # Persisted, dispatch pending
    DONE = "done"  # All triggers processed (individual failures allowed)
    FAILED = "failed"  # Registry/lookup failure, needs external retry


class DispatchOutcome(str, Enum):
    """Per-trigger outcome recorded by the dispatcher."""

    SKIPPED = "skipped"  # Condition evaluated false
    PERSISTED = "persisted"
    FAILED = "failed"


class DeliveryChannel(str, Enum):
    """External delivery channels for created notifications."""

    LOG = "log"  # Dry run, logs only
    WEBHOOK = "webhook"


class DeliveryStatus(str, Enum):
    PENDING = "pending"
    DELIVERED = "delivered"
    FAILED = "failed"
