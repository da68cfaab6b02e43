"""Audit and compliance enums."""

from enum import Enum


class AuditEventType(str, Enum):
    """
    Compliance audit events.

    Groups:
    - CONSENT_*: Consent decisions and consent state changes
    - NOTIFICATION_*: Triggered notification deliveries
    - CONFIG_*: Trigger/template definition changes
    - ALERT_*: Operator actions on system alerts
    """

    # Consent gate
    CONSENT_CHECK_GRANTED = "consent_check_granted"
    CONSENT_CHECK_DENIED = "consent_check_denied"

    # Consent state changes
    CONSENT_GRANTED = "consent_granted"
    CONSENT_WITHDRAWN = "consent_withdrawn"

    # Notifications
    NOTIFICATION_CREATED = "notification_created"
    NOTIFICATION_DELIVERED = "notification_delivered"
    NOTIFICATION_DELIVERY_FAILED = "notification_delivery_failed"

    # Definition changes
    CONFIG_TRIGGER_CREATED = "config_trigger_created"
    CONFIG_TRIGGER_UPDATED = "config_trigger_updated"
    CONFIG_TRIGGER_DISABLED = "config_trigger_disabled"
    CONFIG_TEMPLATE_CREATED = "config_template_created"
    CONFIG_TEMPLATE_UPDATED = "config_template_updated"

    # Operations
    ALERT_RESOLVED = "alert_resolved"
