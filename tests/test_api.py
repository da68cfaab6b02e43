"""HTTP-level tests for the events, notifications, consent and admin routers."""

import uuid

import pytest
from httpx import AsyncClient

from carenotify.core.deps import ACTOR_HEADER
from carenotify.db.enums import JobType, Role
from carenotify.db.models import DomainEvent, Job
from carenotify.services import notification_service
from carenotify.services.template_renderer import RenderedMessage


def as_actor(user) -> dict:
    return {ACTOR_HEADER: str(user.id)}


@pytest.fixture
def notify(db, make_trigger):
    """Create notifications directly in the store for a recipient."""
    trigger = make_trigger()
    event = DomainEvent(event_type="TaskOverdue", context={})
    db.add(event)
    db.commit()

    def _notify(recipient_id: int):
        notification, _ = notification_service.create_notification(
            db, event, trigger, recipient_id, RenderedMessage(title="Task overdue", message="Hi")
        )
        return notification

    return _notify


# =============================================================================
# Health and events
# =============================================================================

async def test_health(client: AsyncClient):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


async def test_submit_event_is_accepted_and_queued(client: AsyncClient, db):
    response = await client.post(
        "/events",
        json={"event_type": "TaskOverdue", "subject_id": 3, "context": {"assignedToId": 42}},
    )

    assert response.status_code == 202
    body = response.json()
    assert body["accepted"] is True
    job = db.query(Job).one()
    assert job.job_type == JobType.DISPATCH_EVENT.value
    assert job.payload == {"event_id": body["event_id"]}


async def test_submit_event_requires_event_type(client: AsyncClient):
    response = await client.post("/events", json={"context": {}})
    assert response.status_code == 422


async def test_invalid_actor_header_rejected(client: AsyncClient):
    response = await client.post(
        "/events", json={"event_type": "TaskOverdue"}, headers={ACTOR_HEADER: "abc"}
    )
    assert response.status_code == 400


# =============================================================================
# Notifications
# =============================================================================

async def test_recipient_reads_own_notifications(client: AsyncClient, make_user, notify):
    user = make_user()
    notify(user.id)

    response = await client.get(
        "/notifications", params={"recipient_id": user.id}, headers=as_actor(user)
    )

    assert response.status_code == 200
    body = response.json()
    assert body["unread_count"] == 1
    assert body["items"][0]["title"] == "Task overdue"
    assert body["items"][0]["is_read"] is False


async def test_other_therapist_cannot_read_notifications(
    client: AsyncClient, make_user, notify
):
    owner = make_user()
    other = make_user()
    notify(owner.id)

    response = await client.get(
        "/notifications", params={"recipient_id": owner.id}, headers=as_actor(other)
    )

    assert response.status_code == 403


async def test_missing_actor_is_unauthorized(client: AsyncClient):
    response = await client.get("/notifications/unread-count", params={"recipient_id": 1})
    assert response.status_code == 401


async def test_manager_can_read_any_recipient(admin_client: AsyncClient, make_user, notify):
    user = make_user()
    notify(user.id)

    response = await admin_client.get(
        "/notifications/unread-count", params={"recipient_id": user.id}
    )

    assert response.json() == {"count": 1}


async def test_mark_read_and_mark_all_read(client: AsyncClient, make_user, notify):
    user = make_user()
    notification = notify(user.id)

    response = await client.put(
        f"/notifications/{notification.id}/read",
        params={"recipient_id": user.id},
        headers=as_actor(user),
    )
    assert response.status_code == 200
    assert response.json()["is_read"] is True

    response = await client.put(
        "/notifications/mark-all-read",
        params={"recipient_id": user.id},
        headers=as_actor(user),
    )
    assert response.json() == {"updated": 0}


async def test_mark_read_unknown_notification_is_404(client: AsyncClient, make_user):
    user = make_user()
    response = await client.put(
        f"/notifications/{uuid.uuid4()}/read",
        params={"recipient_id": user.id},
        headers=as_actor(user),
    )
    assert response.status_code == 404


# =============================================================================
# Preferences
# =============================================================================

async def test_set_and_list_own_preferences(client: AsyncClient, make_user):
    user = make_user()
    other = make_user()

    response = await client.put(
        "/notifications/preferences/TaskOverdue",
        json={"enable_webhook": False, "quiet_hours_start": "22:00", "quiet_hours_end": "07:00"},
        headers=as_actor(user),
    )
    assert response.status_code == 200
    body = response.json()
    assert body["user_id"] == user.id
    assert body["enable_in_app"] is True
    assert body["enable_webhook"] is False
    assert body["quiet_hours_start"] == "22:00:00"

    mine = await client.get("/notifications/preferences", headers=as_actor(user))
    theirs = await client.get("/notifications/preferences", headers=as_actor(other))

    assert [p["event_type"] for p in mine.json()] == ["TaskOverdue"]
    assert theirs.json() == []


async def test_preference_named_read_is_not_a_notification_id(client: AsyncClient, make_user):
    user = make_user()
    response = await client.put(
        "/notifications/preferences/read", json={"enable_log": False}, headers=as_actor(user)
    )
    assert response.status_code == 200
    assert response.json()["event_type"] == "read"


async def test_half_set_quiet_hours_is_422(client: AsyncClient, make_user):
    user = make_user()
    response = await client.put(
        "/notifications/preferences/TaskOverdue",
        json={"quiet_hours_start": "22:00"},
        headers=as_actor(user),
    )
    assert response.status_code == 422


async def test_preferences_require_actor(client: AsyncClient):
    response = await client.get("/notifications/preferences")
    assert response.status_code == 401


# =============================================================================
# Consent
# =============================================================================

async def test_consent_check_denial_is_a_200(client: AsyncClient, make_client):
    subject = make_client()

    response = await client.post(
        "/consents/check", json={"subject_id": subject.id, "category": "ai_processing"}
    )

    assert response.status_code == 200
    body = response.json()
    assert body["decision"] == "denied"
    assert body["reason"] == "no_consent_record"
    assert body["audit_id"]


async def test_record_then_check_consent(client: AsyncClient, make_user, make_client):
    actor = make_user()
    subject = make_client()

    response = await client.post(
        f"/subjects/{subject.id}/consents",
        json={"category": "ai_processing", "granted": True},
        headers=as_actor(actor),
    )
    assert response.status_code == 201
    assert response.json()["recorded_by"] == actor.id

    response = await client.post(
        "/consents/check",
        json={"subject_id": subject.id, "category": "ai_processing"},
        headers=as_actor(actor),
    )
    assert response.json()["decision"] == "granted"

    response = await client.get(f"/subjects/{subject.id}/consents", headers=as_actor(actor))
    assert [c["category"] for c in response.json()] == ["ai_processing"]


async def test_record_consent_requires_actor(client: AsyncClient, make_client):
    subject = make_client()
    response = await client.post(
        f"/subjects/{subject.id}/consents",
        json={"category": "ai_processing", "granted": True},
    )
    assert response.status_code == 401


async def test_consent_report_is_manager_only(
    client: AsyncClient, admin_client: AsyncClient, make_user
):
    therapist = make_user(role=Role.THERAPIST)

    denied = await client.get("/admin/consents", headers=as_actor(therapist))
    allowed = await admin_client.get("/admin/consents", params={"category": "ai_processing"})

    assert denied.status_code == 403
    assert allowed.status_code == 200
    assert allowed.json() == []


# =============================================================================
# Admin definitions
# =============================================================================

async def create_template(admin_client: AsyncClient) -> dict:
    response = await admin_client.post(
        "/admin/notification-templates",
        json={"name": "Task overdue", "title": "Overdue: {{TASK_TITLE}}", "body": "Hi"},
    )
    assert response.status_code == 201
    return response.json()


async def test_create_trigger_via_api(admin_client: AsyncClient):
    template = await create_template(admin_client)
    assert template["variables"] == ["TASK_TITLE"]

    response = await admin_client.post(
        "/admin/notification-triggers",
        json={
            "name": "Overdue",
            "event_type": "TaskOverdue",
            "condition": {"daysOverdue": 3},
            "recipient_rule": {"type": "event_field", "path": "assignedToId"},
            "template_id": template["id"],
            "priority": "high",
        },
    )

    assert response.status_code == 201
    body = response.json()
    assert body["condition"]["kind"] == "AND"
    assert body["priority"] == "high"


async def test_malformed_trigger_is_422(admin_client: AsyncClient):
    template = await create_template(admin_client)

    response = await admin_client.post(
        "/admin/notification-triggers",
        json={
            "name": "Broken",
            "event_type": "TaskOverdue",
            "condition": {"kind": "COMPARE", "field": "x", "operator": "resembles"},
            "recipient_rule": {"type": "event_field", "path": "assignedToId"},
            "template_id": template["id"],
        },
    )

    assert response.status_code == 422
    assert "operator" in response.json()["detail"]


async def test_deeply_nested_recipient_rule_is_422(admin_client: AsyncClient):
    template = await create_template(admin_client)
    rule = {"type": "event_field", "path": "assignedToId"}
    for _ in range(50):
        rule = {"type": "union", "rules": [rule]}

    response = await admin_client.post(
        "/admin/notification-triggers",
        json={
            "name": "Nested",
            "event_type": "TaskOverdue",
            "recipient_rule": rule,
            "template_id": template["id"],
        },
    )

    assert response.status_code == 422
    assert "nesting" in response.json()["detail"]


async def test_duplicate_template_name_is_422(admin_client: AsyncClient):
    await create_template(admin_client)
    response = await admin_client.post(
        "/admin/notification-templates",
        json={"name": "Task overdue", "title": "Again", "body": "Hi"},
    )
    assert response.status_code == 422


async def test_trigger_admin_requires_manager(client: AsyncClient, make_user):
    therapist = make_user(role=Role.THERAPIST)
    response = await client.get("/admin/notification-triggers", headers=as_actor(therapist))
    assert response.status_code == 403


async def test_disable_unknown_trigger_is_404(admin_client: AsyncClient):
    response = await admin_client.post(f"/admin/notification-triggers/{uuid.uuid4()}/disable")
    assert response.status_code == 404


async def test_template_variables_listed(admin_client: AsyncClient):
    response = await admin_client.get("/admin/notification-templates/variables")
    names = {v["name"] for v in response.json()}
    assert {"SUBJECT_NAME", "RECIPIENT_NAME", "ORG_NAME"} <= names


async def test_audit_endpoints(admin_client: AsyncClient, client: AsyncClient, make_client):
    subject = make_client()
    await client.post(
        "/consents/check", json={"subject_id": subject.id, "category": "ai_processing"}
    )

    listing = await admin_client.get("/admin/audit", params={"subject_id": subject.id})
    verify = await admin_client.get("/admin/audit/verify")

    assert listing.json()["total"] == 1
    assert listing.json()["items"][0]["event_type"] == "consent_check_denied"
    assert verify.json()["ok"] is True
