"""Consent record model."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import Boolean, Index, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from carenotify.db.base import Base
from carenotify.db.models._common import utcnow


class ConsentRecord(Base):
    """
    Client consent for one processing category.

    Append-only: a grant or withdrawal adds a row. The most recent row per
    (subject_id, category) is authoritative.
    """

    __tablename__ = "consent_records"
    __table_args__ = (
        Index("idx_consent_subject_category_recorded", "subject_id", "category", "recorded_at"),
        Index("idx_consent_category_recorded", "category", "recorded_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    subject_id: Mapped[int] = mapped_column(Integer, nullable=False)
    category: Mapped[str] = mapped_column(String(50), nullable=False)
    granted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    consent_version: Mapped[str] = mapped_column(String(20), nullable=False)
    granted_at: Mapped[datetime | None] = mapped_column(nullable=True)
    withdrawn_at: Mapped[datetime | None] = mapped_column(nullable=True)

    recorded_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    recorded_by: Mapped[int | None] = mapped_column(Integer, nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)
