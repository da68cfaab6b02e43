"""Tests for recipient rule parsing and resolution."""

import pytest

from carenotify.core.exceptions import InvalidDefinitionError
from carenotify.db.enums import Role
from carenotify.db.models import DomainEvent
from carenotify.services.condition_evaluator import MAX_DEPTH
from carenotify.services.recipient_resolver import (
    EventField,
    StaticRoles,
    SupervisorOf,
    Union,
    parse_recipient_rule,
    resolve,
    to_dict,
)


def make_event(context: dict) -> DomainEvent:
    return DomainEvent(event_type="SessionScheduled", context=context)


# =============================================================================
# Parsing
# =============================================================================

def test_parse_typed_rules():
    rule = parse_recipient_rule(
        {
            "type": "union",
            "rules": [
                {"type": "supervisor_of", "path": "assignedTherapistId"},
                {"type": "static_roles", "roles": ["administrator"]},
            ],
        }
    )
    assert rule == Union(
        (SupervisorOf("assignedTherapistId"), StaticRoles(("administrator",)))
    )


def test_parse_legacy_flags():
    rule = parse_recipient_rule({"roles": ["administrator"], "assignedTherapist": True})
    assert rule == Union((StaticRoles(("administrator",)), EventField("assignedToId")))


def test_to_dict_round_trips_canonical_form():
    data = {"type": "specific_users", "user_ids": [3, 4]}
    assert to_dict(parse_recipient_rule(data)) == data


@pytest.mark.parametrize(
    "data",
    [
        {},
        None,
        {"type": "everyone"},
        {"type": "static_roles", "roles": []},
        {"type": "static_roles", "roles": ["janitor"]},
        {"type": "specific_users", "user_ids": ["abc"]},
        {"type": "event_field"},
        {"type": "union", "rules": []},
        {"assignedTherapist": False},
    ],
)
def test_invalid_rules_rejected(data):
    with pytest.raises(InvalidDefinitionError):
        parse_recipient_rule(data)


def nested_union(levels: int) -> dict:
    rule = {"type": "event_field", "path": "assignedToId"}
    for _ in range(levels):
        rule = {"type": "union", "rules": [rule]}
    return rule


def test_union_nesting_limit():
    assert isinstance(parse_recipient_rule(nested_union(MAX_DEPTH)), Union)
    with pytest.raises(InvalidDefinitionError):
        parse_recipient_rule(nested_union(MAX_DEPTH + 1))

    with pytest.raises(InvalidDefinitionError):
        parse_recipient_rule(nested_union(5000))


# =============================================================================
# Resolution
# =============================================================================

def test_static_roles_returns_active_holders(db, make_user):
    admin_a = make_user(role=Role.ADMINISTRATOR)
    admin_b = make_user(role=Role.ADMINISTRATOR)
    make_user(role=Role.ADMINISTRATOR, is_active=False)
    make_user(role=Role.THERAPIST)

    recipients = resolve(db, StaticRoles(("administrator",)), make_event({}))

    assert recipients == {admin_a.id, admin_b.id}


def test_event_field_resolves_user_id(db, make_user):
    user = make_user(user_id=42)
    rule = EventField("assignedToId")

    assert resolve(db, rule, make_event({"assignedToId": 42})) == {user.id}
    assert resolve(db, rule, make_event({"assignedToId": "42"})) == {user.id}


def test_event_field_missing_or_unknown_user_is_empty(db, make_user):
    make_user(user_id=42, is_active=False)
    rule = EventField("assignedToId")

    assert resolve(db, rule, make_event({})) == set()
    assert resolve(db, rule, make_event({"assignedToId": "not-an-id"})) == set()
    assert resolve(db, rule, make_event({"assignedToId": 42})) == set()
    assert resolve(db, rule, make_event({"assignedToId": 999})) == set()


def test_supervisor_of_follows_one_hop(db, make_user, assign_supervisor):
    therapist = make_user(role=Role.THERAPIST)
    supervisor = make_user(role=Role.SUPERVISOR)
    former = make_user(role=Role.SUPERVISOR)
    assign_supervisor(former.id, therapist.id, is_active=False)
    assign_supervisor(supervisor.id, therapist.id)

    recipients = resolve(
        db, SupervisorOf("assignedTherapistId"), make_event({"assignedTherapistId": therapist.id})
    )

    assert recipients == {supervisor.id}


def test_union_deduplicates(db, make_user, assign_supervisor):
    therapist = make_user(role=Role.THERAPIST)
    supervisor = make_user(role=Role.SUPERVISOR)
    assign_supervisor(supervisor.id, therapist.id)
    rule = Union(
        (
            SupervisorOf("assignedTherapistId"),
            StaticRoles(("supervisor",)),
            EventField("assignedTherapistId"),
        )
    )

    recipients = resolve(db, rule, make_event({"assignedTherapistId": therapist.id}))

    assert recipients == {therapist.id, supervisor.id}
