"""Pydantic schemas for the consent gate."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field

from carenotify.db.enums import CURRENT_CONSENT_VERSION, ConsentCategory, ConsentDecision


class ConsentCheckRequest(BaseModel):
    subject_id: int
    # Plain string: unknown categories are denied and audited, not rejected
    category: str = Field(min_length=1, max_length=50)


class ConsentCheckResponse(BaseModel):
    subject_id: int
    category: str
    decision: ConsentDecision = ConsentDecision.DENIED
    reason: str | None = None
    consent_record_id: UUID | None = None
    consent_version: str | None = None
    audit_id: UUID | None = None

    model_config = {"from_attributes": True}


class ConsentRecordCreate(BaseModel):
    category: ConsentCategory
    granted: bool
    consent_version: str = Field(default=CURRENT_CONSENT_VERSION, max_length=20)


class ConsentRecordRead(BaseModel):
    id: UUID
    subject_id: int
    category: str
    granted: bool
    consent_version: str
    granted_at: datetime | None
    withdrawn_at: datetime | None
    recorded_at: datetime
    recorded_by: int | None

    model_config = {"from_attributes": True}


class ConsentReportRow(BaseModel):
    subject_id: int
    consents: list[ConsentRecordRead]
