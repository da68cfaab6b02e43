"""Condition tree and recipient rule enums."""

from enum import Enum


class ConditionKind(str, Enum):
    AND = "AND"
    OR = "OR"
    NOT = "NOT"
    COMPARE = "COMPARE"


class ConditionOperator(str, Enum):
    """Operators for COMPARE leaves."""

    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    CONTAINS = "contains"
    IN = "in"
    NOT_IN = "not_in"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    GREATER_OR_EQUAL = "greater_or_equal"
    LESS_OR_EQUAL = "less_or_equal"
    DAYS_SINCE_GREATER_THAN = "days_since_greater_than"  # now - field, in days
    DAYS_SINCE_LESS_THAN = "days_since_less_than"


class RecipientRuleType(str, Enum):
    STATIC_ROLES = "static_roles"
    SPECIFIC_USERS = "specific_users"
    EVENT_FIELD = "event_field"
    SUPERVISOR_OF = "supervisor_of"
    UNION = "union"
