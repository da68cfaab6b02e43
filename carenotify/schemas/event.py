"""Pydantic schemas for domain event intake."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field


class EventCreate(BaseModel):
    event_type: str = Field(min_length=1, max_length=100)
    subject_id: int | None = None
    occurred_at: datetime | None = None
    context: dict[str, Any] = Field(default_factory=dict)


class EventAccepted(BaseModel):
    accepted: bool = True
    event_id: UUID
