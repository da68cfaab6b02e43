"""Pydantic schemas for audit log and operational alert views."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel


class AuditEntryRead(BaseModel):
    id: UUID
    subject_id: int | None
    actor_id: int | None
    event_type: str
    target_type: str | None
    target_id: str | None
    details: dict | None
    ip_address: str | None
    created_at: datetime

    model_config = {"from_attributes": True}


class AuditListResponse(BaseModel):
    items: list[AuditEntryRead]
    total: int


class AuditChainStatus(BaseModel):
    ok: bool
    checked: int


class SystemAlertRead(BaseModel):
    id: UUID
    alert_type: str
    alert_key: str | None
    severity: str
    status: str
    title: str
    message: str | None
    occurrence_count: int
    first_seen_at: datetime
    last_seen_at: datetime
    resolved_at: datetime | None
    resolved_by: int | None

    model_config = {"from_attributes": True}
