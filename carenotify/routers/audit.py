"""Audit router - compliance audit trail and operational alerts (managers only)."""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.orm import Session

from carenotify.core.deps import get_db, require_manager
from carenotify.db.enums import AlertStatus, AuditEventType
from carenotify.db.models import User
from carenotify.schemas.audit import (
    AuditChainStatus,
    AuditEntryRead,
    AuditListResponse,
    SystemAlertRead,
)
from carenotify.services import alert_service, audit_service

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/audit", response_model=AuditListResponse)
def list_audit_entries(
    subject_id: int | None = Query(None),
    event_type: AuditEventType | None = Query(None, description="Filter by event type"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    actor: User = Depends(require_manager),
    db: Session = Depends(get_db),
) -> AuditListResponse:
    items, total = audit_service.list_audit_entries(
        db, subject_id=subject_id, event_type=event_type, limit=limit, offset=offset
    )
    return AuditListResponse(
        items=[AuditEntryRead.model_validate(item) for item in items],
        total=total,
    )


@router.get("/audit/verify", response_model=AuditChainStatus)
def verify_audit_chain(
    actor: User = Depends(require_manager),
    db: Session = Depends(get_db),
):
    """Recompute the hash chain; ok=False means an entry was altered or removed."""
    ok, checked = audit_service.verify_chain(db)
    return AuditChainStatus(ok=ok, checked=checked)


@router.get("/alerts", response_model=list[SystemAlertRead])
def list_alerts(
    status: AlertStatus | None = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    actor: User = Depends(require_manager),
    db: Session = Depends(get_db),
):
    return alert_service.list_alerts(db, status=status, limit=limit, offset=offset)


@router.post("/alerts/{alert_id}/resolve", response_model=SystemAlertRead)
def resolve_alert(
    alert_id: UUID,
    request: Request,
    actor: User = Depends(require_manager),
    db: Session = Depends(get_db),
):
    alert = alert_service.resolve_alert(db, alert_id, actor_id=actor.id, request=request)
    if not alert:
        raise HTTPException(status_code=404, detail="Alert not found")
    return alert
