"""Domain event intake model."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import JSON, Index, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from carenotify.db.base import Base
from carenotify.db.models._common import utcnow


class DomainEvent(Base):
    """
    Event emitted by the practice application.

    Payload columns are immutable once dispatched; only the processing
    status columns change. Events left in 'received' are re-queued on
    worker start.
    """

    __tablename__ = "domain_events"
    __table_args__ = (
        Index("idx_events_status_received", "status", "received_at"),
        Index("idx_events_type_occurred", "event_type", "occurred_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    subject_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    actor_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    context: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    occurred_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    received_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default="received")
    processed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
