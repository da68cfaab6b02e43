"""Recipient resolver - expands a recipient rule into concrete user ids.

Rules are a closed set of variants validated when the trigger is written:

- StaticRoles(roles): every active user holding any listed role
- SpecificUsers(user_ids): listed users that are still active
- EventField(path): the user id found at a dot path in the event context
- SupervisorOf(path): active supervisor of the therapist found at path
- Union(rules): deduplicated union of the sub-rules
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Union as TypingUnion

from sqlalchemy import select
from sqlalchemy.orm import Session

from carenotify.core.exceptions import InvalidDefinitionError
from carenotify.core.structured_logging import build_log_context
from carenotify.db.enums import RecipientRuleType, Role
from carenotify.db.models import DomainEvent, SupervisorAssignment, User
from carenotify.services.condition_evaluator import MAX_DEPTH, MISSING, get_field_value

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StaticRoles:
    roles: tuple[str, ...]


@dataclass(frozen=True)
class SpecificUsers:
    user_ids: tuple[int, ...]


@dataclass(frozen=True)
class EventField:
    path: str


@dataclass(frozen=True)
class SupervisorOf:
    path: str


@dataclass(frozen=True)
class Union:
    rules: tuple["RecipientRule", ...]


RecipientRule = TypingUnion[StaticRoles, SpecificUsers, EventField, SupervisorOf, Union]


# =============================================================================
# Parsing (write time)
# =============================================================================


def parse_recipient_rule(data: Any, depth: int = 0) -> RecipientRule:
    """
    Parse a stored recipient rule.

    Canonical form is {"type": <RecipientRuleType>, ...}. The legacy flag
    object ({"roles": [...], "assignedTherapist": true, ...}) is accepted and
    converted to a Union. Unions nest at most MAX_DEPTH levels deep.
    """
    if depth > MAX_DEPTH:
        raise InvalidDefinitionError(f"Recipient rule nesting exceeds {MAX_DEPTH} levels")
    if not isinstance(data, dict) or not data:
        raise InvalidDefinitionError("Recipient rule must be a non-empty object")
    if "type" in data:
        return _parse_typed(data, depth)
    return _parse_legacy(data)


def _parse_typed(data: dict, depth: int = 0) -> RecipientRule:
    raw_type = data.get("type")
    try:
        rule_type = RecipientRuleType(raw_type)
    except ValueError:
        raise InvalidDefinitionError(f"Unknown recipient rule type: {raw_type!r}")

    if rule_type == RecipientRuleType.STATIC_ROLES:
        roles = data.get("roles")
        if not isinstance(roles, list) or not roles:
            raise InvalidDefinitionError("static_roles requires a non-empty 'roles' list")
        unknown = [role for role in roles if not Role.has_value(str(role))]
        if unknown:
            raise InvalidDefinitionError(f"Unknown roles: {', '.join(map(str, unknown))}")
        return StaticRoles(tuple(str(role) for role in roles))

    if rule_type == RecipientRuleType.SPECIFIC_USERS:
        user_ids = data.get("user_ids")
        if not isinstance(user_ids, list) or not user_ids:
            raise InvalidDefinitionError("specific_users requires a non-empty 'user_ids' list")
        try:
            return SpecificUsers(tuple(int(user_id) for user_id in user_ids))
        except (TypeError, ValueError):
            raise InvalidDefinitionError("specific_users ids must be integers")

    if rule_type in (RecipientRuleType.EVENT_FIELD, RecipientRuleType.SUPERVISOR_OF):
        path = data.get("path")
        if not isinstance(path, str) or not path.strip():
            raise InvalidDefinitionError(f"{rule_type.value} requires a 'path'")
        if rule_type == RecipientRuleType.EVENT_FIELD:
            return EventField(path)
        return SupervisorOf(path)

    rules = data.get("rules")
    if not isinstance(rules, list) or not rules:
        raise InvalidDefinitionError("union requires a non-empty 'rules' list")
    return Union(tuple(parse_recipient_rule(rule, depth + 1) for rule in rules))


def _parse_legacy(data: dict) -> RecipientRule:
    parts: list[dict] = []
    if data.get("roles"):
        parts.append({"type": RecipientRuleType.STATIC_ROLES.value, "roles": data["roles"]})
    if data.get("specificUsers"):
        parts.append(
            {"type": RecipientRuleType.SPECIFIC_USERS.value, "user_ids": data["specificUsers"]}
        )
    if data.get("assignedTherapist"):
        parts.append({"type": RecipientRuleType.EVENT_FIELD.value, "path": "assignedToId"})
    if data.get("supervisorOfTherapist"):
        parts.append(
            {"type": RecipientRuleType.SUPERVISOR_OF.value, "path": "assignedTherapistId"}
        )
    if not parts:
        raise InvalidDefinitionError("Recipient rule selects nobody")
    if len(parts) == 1:
        return _parse_typed(parts[0])
    return Union(tuple(_parse_typed(part) for part in parts))


def to_dict(rule: RecipientRule) -> dict:
    """Serialize a rule to its canonical stored form."""
    if isinstance(rule, StaticRoles):
        return {"type": RecipientRuleType.STATIC_ROLES.value, "roles": list(rule.roles)}
    if isinstance(rule, SpecificUsers):
        return {"type": RecipientRuleType.SPECIFIC_USERS.value, "user_ids": list(rule.user_ids)}
    if isinstance(rule, EventField):
        return {"type": RecipientRuleType.EVENT_FIELD.value, "path": rule.path}
    if isinstance(rule, SupervisorOf):
        return {"type": RecipientRuleType.SUPERVISOR_OF.value, "path": rule.path}
    return {"type": RecipientRuleType.UNION.value, "rules": [to_dict(r) for r in rule.rules]}


# =============================================================================
# Resolution
# =============================================================================


def resolve(db: Session, rule: RecipientRule, event: DomainEvent) -> set[int]:
    """Resolve a rule to the set of active user ids it selects."""
    recipients = _resolve(db, rule, event.context or {})
    if not recipients:
        logger.info(
            "Recipient rule resolved to nobody",
            extra=build_log_context(event_id=str(event.id), event_type=event.event_type),
        )
    return recipients


def _resolve(db: Session, rule: RecipientRule, context: dict) -> set[int]:
    if isinstance(rule, StaticRoles):
        rows = db.execute(
            select(User.id).where(User.role.in_(rule.roles), User.is_active.is_(True))
        ).scalars()
        return set(rows)

    if isinstance(rule, SpecificUsers):
        return _active_user_ids(db, rule.user_ids)

    if isinstance(rule, EventField):
        user_id = _user_id_at(context, rule.path)
        if user_id is None:
            return set()
        return _active_user_ids(db, [user_id])

    if isinstance(rule, SupervisorOf):
        therapist_id = _user_id_at(context, rule.path)
        if therapist_id is None:
            return set()
        supervisor_id = db.execute(
            select(SupervisorAssignment.supervisor_id)
            .join(User, User.id == SupervisorAssignment.supervisor_id)
            .where(
                SupervisorAssignment.therapist_id == therapist_id,
                SupervisorAssignment.is_active.is_(True),
                User.is_active.is_(True),
            )
            .order_by(SupervisorAssignment.assigned_at.desc())
            .limit(1)
        ).scalar_one_or_none()
        return {supervisor_id} if supervisor_id is not None else set()

    recipients: set[int] = set()
    for sub_rule in rule.rules:
        recipients |= _resolve(db, sub_rule, context)
    return recipients


def _user_id_at(context: dict, path: str) -> int | None:
    raw = get_field_value(context, path)
    if raw is MISSING or raw is None or isinstance(raw, bool):
        return None
    try:
        return int(raw)
    except (TypeError, ValueError):
        logger.debug("Event field '%s' is not a user id", path)
        return None


def _active_user_ids(db: Session, user_ids) -> set[int]:
    ids = list(user_ids)
    if not ids:
        return set()
    rows = db.execute(
        select(User.id).where(User.id.in_(ids), User.is_active.is_(True))
    ).scalars()
    return set(rows)
