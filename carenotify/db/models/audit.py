"""Audit log model."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import JSON, Index, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from carenotify.db.base import Base
from carenotify.db.models._common import utcnow


class AuditLog(Base):
    """
    Compliance audit log.

    Records every consent gate decision, consent state change and
    triggered notification delivery. Append-only, retained indefinitely.

    Security:
    - Never stores rendered message bodies or event payloads
    - IP captured from X-Forwarded-For (behind proxy) or client IP
    - Hash chain makes tampering detectable
    """

    __tablename__ = "audit_logs"
    __table_args__ = (
        Index("idx_audit_created", "created_at"),
        Index("idx_audit_subject_created", "subject_id", "created_at"),
        Index("idx_audit_event_created", "event_type", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    subject_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    actor_id: Mapped[int | None] = mapped_column(Integer, nullable=True)  # None = system

    # Event classification (AuditEventType)
    event_type: Mapped[str] = mapped_column(String(50), nullable=False)

    # Target entity (optional)
    target_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    target_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    details: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    # Request metadata
    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)  # IPv6 max length
    user_agent: Mapped[str | None] = mapped_column(String(500), nullable=True)

    # Tamper-evident hash chain
    prev_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)  # SHA256 hex
    entry_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)

    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
