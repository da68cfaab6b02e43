"""Admin router - notification trigger and template management."""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.orm import Session

from carenotify.core.deps import get_db, require_manager
from carenotify.db.models import User
from carenotify.schemas.notification import NotificationStats
from carenotify.schemas.notification_trigger import (
    TemplateCreate,
    TemplateRead,
    TemplateUpdate,
    TemplateVariableRead,
    TriggerCreate,
    TriggerRead,
    TriggerUpdate,
)
from carenotify.services import notification_service, trigger_registry
from carenotify.services.template_variable_catalog import list_builtin_variables

router = APIRouter(prefix="/admin", tags=["admin"])


# =============================================================================
# Triggers
# =============================================================================


@router.get("/notification-triggers", response_model=list[TriggerRead])
def list_triggers(
    event_type: str | None = Query(None),
    enabled_only: bool = Query(False),
    actor: User = Depends(require_manager),
    db: Session = Depends(get_db),
):
    return trigger_registry.list_triggers(db, event_type=event_type, enabled_only=enabled_only)


@router.post("/notification-triggers", response_model=TriggerRead, status_code=201)
def create_trigger(
    data: TriggerCreate,
    request: Request,
    actor: User = Depends(require_manager),
    db: Session = Depends(get_db),
):
    """Create a trigger. Malformed conditions or recipient rules are a 422."""
    return trigger_registry.create_trigger(db, data, actor_id=actor.id, request=request)


@router.put("/notification-triggers/{trigger_id}", response_model=TriggerRead)
def update_trigger(
    trigger_id: UUID,
    data: TriggerUpdate,
    request: Request,
    actor: User = Depends(require_manager),
    db: Session = Depends(get_db),
):
    trigger = trigger_registry.get_trigger(db, trigger_id)
    if not trigger:
        raise HTTPException(status_code=404, detail="Trigger not found")
    return trigger_registry.update_trigger(db, trigger, data, actor_id=actor.id, request=request)


@router.post("/notification-triggers/{trigger_id}/disable", response_model=TriggerRead)
def disable_trigger(
    trigger_id: UUID,
    request: Request,
    actor: User = Depends(require_manager),
    db: Session = Depends(get_db),
):
    return trigger_registry.disable_trigger(db, trigger_id, actor_id=actor.id, request=request)


# =============================================================================
# Templates
# =============================================================================


@router.get("/notification-templates", response_model=list[TemplateRead])
def list_templates(
    active_only: bool = Query(False),
    actor: User = Depends(require_manager),
    db: Session = Depends(get_db),
):
    return trigger_registry.list_templates(db, active_only=active_only)


@router.get("/notification-templates/variables", response_model=list[TemplateVariableRead])
def list_template_variables(actor: User = Depends(require_manager)):
    """Built-in variables; any other {{TOKEN}} is filled from the event context."""
    return [
        TemplateVariableRead(name=v.name, description=v.description, category=v.category)
        for v in list_builtin_variables()
    ]


@router.post("/notification-templates", response_model=TemplateRead, status_code=201)
def create_template(
    data: TemplateCreate,
    request: Request,
    actor: User = Depends(require_manager),
    db: Session = Depends(get_db),
):
    return trigger_registry.create_template(db, data, actor_id=actor.id, request=request)


@router.put("/notification-templates/{template_id}", response_model=TemplateRead)
def update_template(
    template_id: UUID,
    data: TemplateUpdate,
    request: Request,
    actor: User = Depends(require_manager),
    db: Session = Depends(get_db),
):
    template = trigger_registry.get_template(db, template_id)
    if not template:
        raise HTTPException(status_code=404, detail="Template not found")
    return trigger_registry.update_template(
        db, template, data, actor_id=actor.id, request=request
    )


# =============================================================================
# Stats
# =============================================================================


@router.get("/notifications/stats", response_model=NotificationStats)
def notification_stats(
    actor: User = Depends(require_manager),
    db: Session = Depends(get_db),
):
    return notification_service.get_notification_stats(db)
