"""Admin consent report."""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from carenotify.core.deps import get_db, require_manager
from carenotify.db.enums import ConsentCategory
from carenotify.db.models import User
from carenotify.schemas.consent import ConsentReportRow
from carenotify.services import consent_service

router = APIRouter(prefix="/admin/consents", tags=["admin"])


@router.get("", response_model=list[ConsentReportRow])
def consents_report(
    category: ConsentCategory | None = Query(None),
    granted: bool | None = Query(None),
    actor: User = Depends(require_manager),
    db: Session = Depends(get_db),
):
    """Latest consent state per client, filtered on that latest state."""
    return consent_service.list_consents_report(
        db,
        category=category.value if category else None,
        granted=granted,
    )
