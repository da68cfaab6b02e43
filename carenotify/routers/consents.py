"""Consents router - consent gate checks and per-client consent state."""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from carenotify.core.deps import get_current_actor, get_db, get_optional_actor_id
from carenotify.db.models import User
from carenotify.schemas.consent import (
    ConsentCheckRequest,
    ConsentCheckResponse,
    ConsentRecordCreate,
    ConsentRecordRead,
)
from carenotify.services import consent_service

router = APIRouter(tags=["consents"])


@router.post("/consents/check", response_model=ConsentCheckResponse)
def check_consent(
    data: ConsentCheckRequest,
    request: Request,
    actor_id: int | None = Depends(get_optional_actor_id),
    db: Session = Depends(get_db),
):
    """
    Ask the consent gate whether an action may proceed.

    Always 200: a denial is a decision, not an error. Every call is audited.
    """
    result = consent_service.check_consent(
        db,
        subject_id=data.subject_id,
        category=data.category,
        actor_id=actor_id,
        request=request,
    )
    return ConsentCheckResponse.model_validate(result)


@router.get("/subjects/{subject_id}/consents", response_model=list[ConsentRecordRead])
def list_subject_consents(
    subject_id: int,
    actor: User = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    """Current consent state per category for one client."""
    return consent_service.list_subject_consents(db, subject_id)


@router.post(
    "/subjects/{subject_id}/consents",
    response_model=ConsentRecordRead,
    status_code=201,
)
def record_consent(
    subject_id: int,
    data: ConsentRecordCreate,
    request: Request,
    actor: User = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    """Record a grant or withdrawal (appends; history is kept)."""
    return consent_service.record_consent(
        db,
        subject_id=subject_id,
        category=data.category.value,
        granted=data.granted,
        consent_version=data.consent_version,
        actor_id=actor.id,
        request=request,
    )
