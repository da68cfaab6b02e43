"""
Test configuration and fixtures.

Provides:
- Database session on a fresh in-memory SQLite schema per test
- Directory factories (users, clients, supervisor assignments)
- HTTPX AsyncClient bound to the app with the test session
"""
import os
from typing import AsyncGenerator, Generator

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.orm import Session

# Settings are read at import time
os.environ["DATABASE_URL"] = "sqlite+pysqlite:///:memory:"
os.environ["ENV"] = "test"
os.environ["DELIVERY_CHANNELS"] = "log"
os.environ["STORE_RETRY_BASE_DELAY"] = "0"

from carenotify.core.deps import ACTOR_HEADER, get_db  # noqa: E402
from carenotify.db.base import Base  # noqa: E402
from carenotify.db.enums import Role  # noqa: E402
from carenotify.db.models import Client, SupervisorAssignment, User  # noqa: E402
from carenotify.db.session import SessionLocal, engine  # noqa: E402
from carenotify.main import app  # noqa: E402
from carenotify.schemas.notification_trigger import TemplateCreate, TriggerCreate  # noqa: E402
from carenotify.services import trigger_registry  # noqa: E402


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture(scope="function")
def db() -> Generator[Session, None, None]:
    """
    Session on a freshly created schema.

    App code commits freely; the whole schema is dropped afterwards.
    """
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


# =============================================================================
# Directory Factories
# =============================================================================

@pytest.fixture
def make_user(db: Session):
    def _make_user(
        display_name: str = "Test User",
        role: Role = Role.THERAPIST,
        user_id: int | None = None,
        is_active: bool = True,
    ) -> User:
        user = User(
            id=user_id,
            display_name=display_name,
            role=role.value,
            is_active=is_active,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make_user


@pytest.fixture
def make_client(db: Session):
    def _make_client(full_name: str = "Jane Client", therapist_id: int | None = None) -> Client:
        client = Client(full_name=full_name, assigned_therapist_id=therapist_id)
        db.add(client)
        db.commit()
        db.refresh(client)
        return client

    return _make_client


@pytest.fixture
def assign_supervisor(db: Session):
    def _assign(supervisor_id: int, therapist_id: int, is_active: bool = True):
        assignment = SupervisorAssignment(
            supervisor_id=supervisor_id,
            therapist_id=therapist_id,
            is_active=is_active,
        )
        db.add(assignment)
        db.commit()
        return assignment

    return _assign


@pytest.fixture
def admin_user(make_user) -> User:
    return make_user(display_name="Admin", role=Role.ADMIN)


# =============================================================================
# Definition Factories
# =============================================================================

@pytest.fixture
def make_template(db: Session):
    def _make_template(**overrides):
        data = {
            "name": "Task overdue",
            "title": "Task overdue: {{TASK_TITLE}}",
            "body": "Hi {{ASSIGNEE_NAME}}, \"{{TASK_TITLE}}\" was due {{DUE_DATE}}.",
        }
        data.update(overrides)
        return trigger_registry.create_template(db, TemplateCreate(**data))

    return _make_template


@pytest.fixture
def make_trigger(db: Session, make_template):
    def _make_trigger(template=None, **overrides):
        template = template or make_template()
        data = {
            "name": "Task overdue - assignee",
            "event_type": "TaskOverdue",
            "condition": {},
            "recipient_rule": {"type": "event_field", "path": "assignedToId"},
            "template_id": template.id,
        }
        data.update(overrides)
        return trigger_registry.create_trigger(db, TriggerCreate(**data))

    return _make_trigger


# =============================================================================
# Client Fixtures
# =============================================================================

@pytest.fixture(scope="function")
async def client(db: Session) -> AsyncGenerator[AsyncClient, None]:
    """AsyncClient without an actor header (system callers)."""
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as c:
        yield c

    app.dependency_overrides.clear()


@pytest.fixture(scope="function")
async def admin_client(db: Session, admin_user: User) -> AsyncGenerator[AsyncClient, None]:
    """AsyncClient acting as an admin user."""
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        headers={ACTOR_HEADER: str(admin_user.id)},
    ) as c:
        yield c

    app.dependency_overrides.clear()
