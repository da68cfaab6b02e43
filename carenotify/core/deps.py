"""FastAPI dependencies for the acting user, authorization, and database access.

The acting user is an explicit request parameter (X-Actor-Id header) set by
the practice application's gateway. Nothing about the caller is kept in
process-wide state.
"""

from typing import Generator

from fastapi import Depends, Header, HTTPException
from sqlalchemy.orm import Session

from carenotify.db.enums import ROLES_CAN_MANAGE_NOTIFICATIONS, Role
from carenotify.db.models import User
from carenotify.db.session import SessionLocal

ACTOR_HEADER = "X-Actor-Id"


def get_db() -> Generator[Session, None, None]:
    """
    Database session dependency.

    Yields a database session and ensures it's closed after the request.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_optional_actor_id(
    x_actor_id: str | None = Header(default=None, alias=ACTOR_HEADER),
) -> int | None:
    """Actor id when the caller supplied one (system callers may not)."""
    if x_actor_id is None or not x_actor_id.strip():
        return None
    try:
        return int(x_actor_id)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid {ACTOR_HEADER} header")


def get_current_actor(
    actor_id: int | None = Depends(get_optional_actor_id),
    db: Session = Depends(get_db),
) -> User:
    """
    Resolve the acting user.

    Raises:
        HTTPException 401: Header missing, or user unknown/inactive
    """
    if actor_id is None:
        raise HTTPException(status_code=401, detail=f"Missing {ACTOR_HEADER} header")
    user = db.get(User, actor_id)
    if not user or not user.is_active:
        raise HTTPException(status_code=401, detail="Unknown or inactive actor")
    return user


def require_roles(allowed_roles):
    """
    Dependency factory for role-based authorization.

    Usage:
        @router.post("/admin", dependencies=[Depends(require_roles([Role.ADMIN]))])
    """
    allowed = {role.value if isinstance(role, Role) else role for role in allowed_roles}

    def dependency(actor: User = Depends(get_current_actor)) -> User:
        if actor.role not in allowed:
            raise HTTPException(
                status_code=403,
                detail=f"Role '{actor.role}' not authorized for this action",
            )
        return actor

    return dependency


require_manager = require_roles(ROLES_CAN_MANAGE_NOTIFICATIONS)


def can_manage_notifications(actor: User) -> bool:
    return actor.role in {role.value for role in ROLES_CAN_MANAGE_NOTIFICATIONS}


def ensure_recipient_access(actor: User, recipient_id: int) -> None:
    """Users read their own notifications; managers may read anyone's."""
    if actor.id != recipient_id and not can_manage_notifications(actor):
        raise HTTPException(status_code=403, detail="Not allowed to access these notifications")
