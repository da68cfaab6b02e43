"""Trigger registry - notification trigger and template definitions.

Definitions are validated when written: condition trees and recipient rules
are parsed and stored in canonical form, templates must exist and be active.
find_triggers therefore only ever hands the dispatcher definitions that parse.
"""

import logging
from dataclasses import dataclass
from uuid import UUID

from fastapi import Request
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from carenotify.core.exceptions import (
    InvalidDefinitionError,
    NotFoundError,
    RegistryUnavailableError,
)
from carenotify.core.structured_logging import build_log_context
from carenotify.db.enums import AuditEventType, NotificationPriority
from carenotify.db.models import NotificationTemplate, NotificationTrigger
from carenotify.schemas.notification_trigger import (
    TemplateCreate,
    TemplateUpdate,
    TriggerCreate,
    TriggerUpdate,
)
from carenotify.services import audit_service, condition_evaluator, recipient_resolver
from carenotify.services.condition_evaluator import ConditionExpr
from carenotify.services.recipient_resolver import RecipientRule

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LoadedTrigger:
    """A trigger row with its parsed condition and recipient rule."""

    trigger: NotificationTrigger
    condition: ConditionExpr
    recipient_rule: RecipientRule

    @property
    def id(self) -> UUID:
        return self.trigger.id

    @property
    def template(self) -> NotificationTemplate:
        return self.trigger.template


# =============================================================================
# Lookup
# =============================================================================


def find_triggers(db: Session, event_type: str) -> list[LoadedTrigger]:
    """
    Enabled triggers for an event type, parsed and ready to evaluate.

    Rows that fail to parse (edited outside this module) or whose template
    is gone or inactive are skipped and logged at error level. A failing
    query raises RegistryUnavailableError.
    """
    try:
        rows = db.execute(
            select(NotificationTrigger)
            .options(selectinload(NotificationTrigger.template))
            .where(
                NotificationTrigger.event_type == event_type,
                NotificationTrigger.enabled.is_(True),
            )
            .order_by(NotificationTrigger.created_at, NotificationTrigger.id)
        ).scalars().all()
    except SQLAlchemyError as exc:
        raise RegistryUnavailableError(f"Trigger lookup failed for '{event_type}'") from exc

    loaded: list[LoadedTrigger] = []
    for row in rows:
        try:
            condition = condition_evaluator.parse_condition(row.condition)
            rule = recipient_resolver.parse_recipient_rule(row.recipient_rule)
            if row.template is None or not row.template.is_active:
                raise InvalidDefinitionError("Template missing or inactive")
        except InvalidDefinitionError as exc:
            logger.error(
                "Skipping unparseable trigger: %s",
                exc,
                extra=build_log_context(trigger_id=str(row.id), event_type=event_type),
            )
            continue
        loaded.append(LoadedTrigger(trigger=row, condition=condition, recipient_rule=rule))
    return loaded


def get_trigger(db: Session, trigger_id: UUID) -> NotificationTrigger | None:
    return db.query(NotificationTrigger).filter(NotificationTrigger.id == trigger_id).first()


def list_triggers(
    db: Session,
    event_type: str | None = None,
    enabled_only: bool = False,
) -> list[NotificationTrigger]:
    query = db.query(NotificationTrigger)
    if event_type:
        query = query.filter(NotificationTrigger.event_type == event_type)
    if enabled_only:
        query = query.filter(NotificationTrigger.enabled.is_(True))
    return query.order_by(NotificationTrigger.event_type, NotificationTrigger.name).all()


def get_template(db: Session, template_id: UUID) -> NotificationTemplate | None:
    return db.query(NotificationTemplate).filter(NotificationTemplate.id == template_id).first()


def list_templates(db: Session, active_only: bool = False) -> list[NotificationTemplate]:
    query = db.query(NotificationTemplate)
    if active_only:
        query = query.filter(NotificationTemplate.is_active.is_(True))
    return query.order_by(NotificationTemplate.name).all()


# =============================================================================
# Validation
# =============================================================================


def _normalize_condition(data) -> dict:
    return condition_evaluator.to_dict(condition_evaluator.parse_condition(data))


def _normalize_recipient_rule(data) -> dict:
    return recipient_resolver.to_dict(recipient_resolver.parse_recipient_rule(data))


def _require_active_template(db: Session, template_id: UUID) -> NotificationTemplate:
    template = get_template(db, template_id)
    if not template:
        raise InvalidDefinitionError(f"Template {template_id} not found")
    if not template.is_active:
        raise InvalidDefinitionError(f"Template {template_id} is inactive")
    return template


def _flush_unique(db: Session, what: str, name: str) -> None:
    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        raise InvalidDefinitionError(f"A {what} named '{name}' already exists")


# =============================================================================
# Trigger writes
# =============================================================================


def create_trigger(
    db: Session,
    data: TriggerCreate,
    actor_id: int | None = None,
    request: Request | None = None,
) -> NotificationTrigger:
    """Create a trigger with validation."""
    condition = _normalize_condition(data.condition)
    recipient_rule = _normalize_recipient_rule(data.recipient_rule)
    _require_active_template(db, data.template_id)

    trigger = NotificationTrigger(
        name=data.name,
        description=data.description,
        event_type=data.event_type,
        condition=condition,
        recipient_rule=recipient_rule,
        template_id=data.template_id,
        priority=data.priority.value,
        enabled=data.enabled,
    )
    db.add(trigger)
    _flush_unique(db, "trigger", data.name)
    audit_service.log_definition_changed(
        db,
        event_type=AuditEventType.CONFIG_TRIGGER_CREATED,
        actor_id=actor_id,
        target_type="notification_trigger",
        target_id=trigger.id,
        request=request,
    )
    db.commit()
    db.refresh(trigger)
    return trigger


def update_trigger(
    db: Session,
    trigger: NotificationTrigger,
    data: TriggerUpdate,
    actor_id: int | None = None,
    request: Request | None = None,
) -> NotificationTrigger:
    """Update an existing trigger with validation."""
    provided = data.model_fields_set
    changed: list[str] = []

    # Validate everything before touching the row
    condition = _normalize_condition(data.condition) if "condition" in provided else None
    recipient_rule = (
        _normalize_recipient_rule(data.recipient_rule)
        if data.recipient_rule is not None
        else None
    )
    if data.template_id is not None:
        _require_active_template(db, data.template_id)

    if data.name is not None:
        trigger.name = data.name
        changed.append("name")
    if "description" in provided:
        trigger.description = data.description
        changed.append("description")
    if data.event_type is not None:
        trigger.event_type = data.event_type
        changed.append("event_type")
    if condition is not None:
        trigger.condition = condition
        changed.append("condition")
    if recipient_rule is not None:
        trigger.recipient_rule = recipient_rule
        changed.append("recipient_rule")
    if data.template_id is not None:
        trigger.template_id = data.template_id
        changed.append("template_id")
    if data.priority is not None:
        trigger.priority = data.priority.value
        changed.append("priority")
    if data.enabled is not None:
        trigger.enabled = data.enabled
        changed.append("enabled")

    _flush_unique(db, "trigger", trigger.name)
    audit_service.log_definition_changed(
        db,
        event_type=AuditEventType.CONFIG_TRIGGER_UPDATED,
        actor_id=actor_id,
        target_type="notification_trigger",
        target_id=trigger.id,
        changed_fields=changed,
        request=request,
    )
    db.commit()
    db.refresh(trigger)
    return trigger


def disable_trigger(
    db: Session,
    trigger_id: UUID,
    actor_id: int | None = None,
    request: Request | None = None,
) -> NotificationTrigger:
    """Disable a trigger. Triggers are never deleted (notifications reference them)."""
    trigger = get_trigger(db, trigger_id)
    if not trigger:
        raise NotFoundError("Trigger not found")

    if trigger.enabled:
        trigger.enabled = False
        audit_service.log_definition_changed(
            db,
            event_type=AuditEventType.CONFIG_TRIGGER_DISABLED,
            actor_id=actor_id,
            target_type="notification_trigger",
            target_id=trigger.id,
            request=request,
        )
        db.commit()
        db.refresh(trigger)
    return trigger


# =============================================================================
# Template writes
# =============================================================================


def create_template(
    db: Session,
    data: TemplateCreate,
    actor_id: int | None = None,
    request: Request | None = None,
) -> NotificationTemplate:
    template = NotificationTemplate(
        name=data.name,
        category=data.category,
        title=data.title,
        body=data.body,
        action_url=data.action_url,
        action_label=data.action_label,
        is_html=data.is_html,
    )
    db.add(template)
    _flush_unique(db, "template", data.name)
    audit_service.log_definition_changed(
        db,
        event_type=AuditEventType.CONFIG_TEMPLATE_CREATED,
        actor_id=actor_id,
        target_type="notification_template",
        target_id=template.id,
        request=request,
    )
    db.commit()
    db.refresh(template)
    return template


def update_template(
    db: Session,
    template: NotificationTemplate,
    data: TemplateUpdate,
    actor_id: int | None = None,
    request: Request | None = None,
) -> NotificationTemplate:
    """
    Update a template.

    Deactivating a template that enabled triggers still use is refused;
    disable the triggers first.
    """
    provided = data.model_fields_set
    if data.is_active is False and template.is_active:
        in_use = db.query(NotificationTrigger).filter(
            NotificationTrigger.template_id == template.id,
            NotificationTrigger.enabled.is_(True),
        ).count()
        if in_use:
            raise InvalidDefinitionError(
                f"Template is used by {in_use} enabled trigger(s)"
            )

    changed: list[str] = []
    for field in ("name", "category", "title", "body", "is_html", "is_active"):
        value = getattr(data, field)
        if value is not None:
            setattr(template, field, value)
            changed.append(field)
    for field in ("action_url", "action_label"):
        if field in provided:
            setattr(template, field, getattr(data, field))
            changed.append(field)

    _flush_unique(db, "template", template.name)
    audit_service.log_definition_changed(
        db,
        event_type=AuditEventType.CONFIG_TEMPLATE_UPDATED,
        actor_id=actor_id,
        target_type="notification_template",
        target_id=template.id,
        changed_fields=changed,
        request=request,
    )
    db.commit()
    db.refresh(template)
    return template


# =============================================================================
# Seeding
# =============================================================================

DEFAULT_TEMPLATES = [
    {
        "name": "Task overdue",
        "category": "tasks",
        "title": "Task overdue: {{TASK_TITLE}}",
        "body": "Hi {{ASSIGNEE_NAME}}, the task \"{{TASK_TITLE}}\" was due {{DUE_DATE}}.",
        "action_url": "/tasks/{{TASK_ID}}",
        "action_label": "View task",
    },
    {
        "name": "Session scheduled",
        "category": "scheduling",
        "title": "New session with {{SUBJECT_NAME}}",
        "body": "A {{SESSION_TYPE}} session with {{SUBJECT_NAME}} is scheduled for {{SESSION_DATE}}.",
        "action_url": "/scheduling",
        "action_label": "Open calendar",
    },
    {
        "name": "Document uploaded",
        "category": "documents",
        "title": "New document for {{SUBJECT_NAME}}",
        "body": "{{ACTOR_NAME}} uploaded \"{{DOCUMENT_NAME}}\" to {{SUBJECT_NAME}}'s chart.",
        "action_url": "/clients/{{SUBJECT_ID}}",
        "action_label": "Open client",
    },
    {
        "name": "Intake session scheduled",
        "category": "scheduling",
        "title": "Intake scheduled for {{SUBJECT_NAME}}",
        "body": "An intake session with {{SUBJECT_NAME}} is scheduled for {{SESSION_DATE}}.",
        "action_url": "/clients/{{SUBJECT_ID}}",
        "action_label": "Open client",
    },
]

DEFAULT_TRIGGERS = [
    {
        "name": "Task overdue - assignee",
        "description": "Tell the assignee when a task passes its due date",
        "event_type": "TaskOverdue",
        "condition": {},
        "recipient_rule": {"type": "event_field", "path": "assignedToId"},
        "template": "Task overdue",
        "priority": NotificationPriority.HIGH,
    },
    {
        "name": "Session scheduled - therapist",
        "description": "Tell the assigned therapist about new sessions",
        "event_type": "SessionScheduled",
        "condition": {},
        "recipient_rule": {"type": "event_field", "path": "assignedTherapistId"},
        "template": "Session scheduled",
        "priority": NotificationPriority.MEDIUM,
    },
    {
        "name": "Intake scheduled - supervisor and admins",
        "description": "Intake sessions go to the therapist's supervisor and administrators",
        "event_type": "SessionScheduled",
        "condition": {
            "kind": "COMPARE",
            "field": "sessionType",
            "operator": "equals",
            "value": "intake",
        },
        "recipient_rule": {
            "type": "union",
            "rules": [
                {"type": "supervisor_of", "path": "assignedTherapistId"},
                {"type": "static_roles", "roles": ["administrator"]},
            ],
        },
        "template": "Intake session scheduled",
        "priority": NotificationPriority.MEDIUM,
    },
    {
        "name": "Document uploaded - therapist",
        "description": "Tell the assigned therapist when a document lands on a chart",
        "event_type": "DocumentUploaded",
        "condition": {},
        "recipient_rule": {"type": "event_field", "path": "assignedTherapistId"},
        "template": "Document uploaded",
        "priority": NotificationPriority.LOW,
    },
]


def seed_default_triggers(db: Session, actor_id: int | None = None) -> dict[str, int]:
    """
    Upsert the default templates and triggers by name.

    Existing rows keep any admin edits; only missing rows are created.
    Returns {"templates_created": n, "triggers_created": m}.
    """
    templates_created = 0
    templates: dict[str, NotificationTemplate] = {}
    for definition in DEFAULT_TEMPLATES:
        existing = db.query(NotificationTemplate).filter(
            NotificationTemplate.name == definition["name"]
        ).first()
        if existing:
            templates[definition["name"]] = existing
            continue
        templates[definition["name"]] = create_template(db, TemplateCreate(**definition), actor_id=actor_id)
        templates_created += 1

    triggers_created = 0
    for definition in DEFAULT_TRIGGERS:
        exists = db.query(NotificationTrigger).filter(
            NotificationTrigger.name == definition["name"]
        ).first()
        if exists:
            continue
        fields = {key: value for key, value in definition.items() if key != "template"}
        create_trigger(
            db,
            TriggerCreate(template_id=templates[definition["template"]].id, **fields),
            actor_id=actor_id,
        )
        triggers_created += 1

    logger.info(
        "Seeded %s templates and %s triggers", templates_created, triggers_created
    )
    return {"templates_created": templates_created, "triggers_created": triggers_created}
