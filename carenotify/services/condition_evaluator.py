"""Condition evaluator - boolean expression trees over event context.

Trees are a closed grammar of AND / OR / NOT / COMPARE nodes. They are parsed
and validated once, when a trigger is written, into frozen dataclasses;
evaluation never raises for a parsed tree. A COMPARE leaf whose field is
missing from the event context (or whose values cannot be compared)
evaluates to False, so a partial payload disables only the affected branch.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Union

from carenotify.core.exceptions import InvalidDefinitionError
from carenotify.db.enums import ConditionKind, ConditionOperator

logger = logging.getLogger(__name__)

# Maximum nesting depth accepted at write time
MAX_DEPTH = 10

MISSING = object()

SET_OPERATORS = {ConditionOperator.IN, ConditionOperator.NOT_IN}
DAYS_SINCE_OPERATORS = {
    ConditionOperator.DAYS_SINCE_GREATER_THAN,
    ConditionOperator.DAYS_SINCE_LESS_THAN,
}


@dataclass(frozen=True)
class AndExpr:
    children: tuple["ConditionExpr", ...] = ()


@dataclass(frozen=True)
class OrExpr:
    children: tuple["ConditionExpr", ...] = ()


@dataclass(frozen=True)
class NotExpr:
    child: "ConditionExpr"


@dataclass(frozen=True)
class CompareExpr:
    field: str
    operator: ConditionOperator
    value: Any = None


ConditionExpr = Union[AndExpr, OrExpr, NotExpr, CompareExpr]

ALWAYS_TRUE = AndExpr()


# =============================================================================
# Parsing (write time)
# =============================================================================


def parse_condition(data: Any) -> ConditionExpr:
    """
    Parse a stored condition into a tree.

    Accepts the canonical tree ({"kind": ..., ...}) plus the legacy shapes
    the practice app stored before trees existed:
    - None / {} -> always true
    - {"sessionType": "intake"} -> AND of equals
    - [{"field": ..., "operator": ..., "value": ...}, ...] -> AND of leaves

    Raises InvalidDefinitionError for anything else.
    """
    if data is None:
        return ALWAYS_TRUE
    if isinstance(data, list):
        return AndExpr(tuple(_parse_leaf_or_node(item, 1) for item in data))
    if not isinstance(data, dict):
        raise InvalidDefinitionError("Condition must be an object or a list")
    if not data:
        return ALWAYS_TRUE
    if "kind" in data:
        return _parse_node(data, 1)
    # Flat {"field": value} mapping
    return AndExpr(
        tuple(
            CompareExpr(field=_validate_field(field), operator=ConditionOperator.EQUALS, value=value)
            for field, value in data.items()
        )
    )


def _parse_leaf_or_node(item: Any, depth: int) -> ConditionExpr:
    if isinstance(item, dict) and "kind" not in item and "field" in item:
        return _parse_compare(item)
    return _parse_node(item, depth)


def _parse_node(node: Any, depth: int) -> ConditionExpr:
    if depth > MAX_DEPTH:
        raise InvalidDefinitionError(f"Condition nesting exceeds {MAX_DEPTH} levels")
    if not isinstance(node, dict):
        raise InvalidDefinitionError("Condition node must be an object")

    raw_kind = node.get("kind")
    try:
        kind = ConditionKind(str(raw_kind).upper())
    except ValueError:
        raise InvalidDefinitionError(f"Unknown condition kind: {raw_kind!r}")

    if kind == ConditionKind.COMPARE:
        return _parse_compare(node)

    children = node.get("children", [])
    if not isinstance(children, list):
        raise InvalidDefinitionError(f"{kind.value} children must be a list")
    parsed = tuple(_parse_leaf_or_node(child, depth + 1) for child in children)

    if kind == ConditionKind.AND:
        return AndExpr(parsed)
    if kind == ConditionKind.OR:
        return OrExpr(parsed)
    if len(parsed) != 1:
        raise InvalidDefinitionError("NOT takes exactly one child")
    return NotExpr(parsed[0])


def _parse_compare(node: dict) -> CompareExpr:
    field = _validate_field(node.get("field"))
    raw_operator = node.get("operator")
    try:
        operator = ConditionOperator(raw_operator)
    except ValueError:
        raise InvalidDefinitionError(f"Unknown condition operator: {raw_operator!r}")

    value = node.get("value")
    if operator in SET_OPERATORS:
        if not isinstance(value, list):
            raise InvalidDefinitionError(f"'{operator.value}' requires a list value")
        value = tuple(value)
    elif operator in DAYS_SINCE_OPERATORS:
        if _to_number(value) is None:
            raise InvalidDefinitionError(f"'{operator.value}' requires a numeric day count")
    elif isinstance(value, (list, dict)):
        raise InvalidDefinitionError(f"'{operator.value}' requires a scalar value")

    return CompareExpr(field=field, operator=operator, value=value)


def _validate_field(field: Any) -> str:
    if not isinstance(field, str) or not field.strip():
        raise InvalidDefinitionError("Condition field must be a non-empty string")
    if any(not part for part in field.split(".")):
        raise InvalidDefinitionError(f"Invalid field path: {field!r}")
    return field


def to_dict(expr: ConditionExpr) -> dict:
    """Serialize a tree to its canonical stored form."""
    if isinstance(expr, CompareExpr):
        value = list(expr.value) if isinstance(expr.value, tuple) else expr.value
        return {
            "kind": ConditionKind.COMPARE.value,
            "field": expr.field,
            "operator": expr.operator.value,
            "value": value,
        }
    if isinstance(expr, NotExpr):
        return {"kind": ConditionKind.NOT.value, "children": [to_dict(expr.child)]}
    kind = ConditionKind.AND if isinstance(expr, AndExpr) else ConditionKind.OR
    return {"kind": kind.value, "children": [to_dict(child) for child in expr.children]}


# =============================================================================
# Evaluation
# =============================================================================


def evaluate(
    expr: ConditionExpr,
    context: dict[str, Any],
    now: datetime | None = None,
) -> bool:
    """
    Evaluate a parsed tree against event context values.

    `now` anchors the days-since operators; a naive value is taken as UTC.
    """
    reference = _to_datetime(now) if now is not None else datetime.now(timezone.utc)
    return _evaluate(expr, context, reference)


def _evaluate(expr: ConditionExpr, context: dict[str, Any], now: datetime) -> bool:
    if isinstance(expr, AndExpr):
        return all(_evaluate(child, context, now) for child in expr.children)
    if isinstance(expr, OrExpr):
        return any(_evaluate(child, context, now) for child in expr.children)
    if isinstance(expr, NotExpr):
        return not _evaluate(expr.child, context, now)
    return _evaluate_compare(expr, context, now)


def get_field_value(context: dict[str, Any], path: str) -> Any:
    """Read a dot-path from nested context; returns MISSING when absent."""
    current: Any = context
    for key in path.split("."):
        if not isinstance(current, dict) or key not in current:
            return MISSING
        current = current[key]
    return current


def _evaluate_compare(
    expr: CompareExpr,
    context: dict[str, Any],
    now: datetime,
) -> bool:
    field_value = get_field_value(context, expr.field)
    if field_value is MISSING or field_value is None:
        logger.debug("Condition field '%s' missing from event context", expr.field)
        return False

    operator = expr.operator
    expected = expr.value

    if operator == ConditionOperator.EQUALS:
        return _loose_equals(field_value, expected)

    if operator == ConditionOperator.NOT_EQUALS:
        return not _loose_equals(field_value, expected)

    if operator == ConditionOperator.CONTAINS:
        if isinstance(field_value, list):
            return any(_loose_equals(item, expected) for item in field_value)
        return str(expected) in str(field_value)

    if operator == ConditionOperator.IN:
        return any(_loose_equals(field_value, candidate) for candidate in expected)

    if operator == ConditionOperator.NOT_IN:
        return not any(_loose_equals(field_value, candidate) for candidate in expected)

    if operator in DAYS_SINCE_OPERATORS:
        moment = _to_datetime(field_value)
        threshold = _to_number(expected)
        if moment is None or threshold is None:
            return False
        # Whole days elapsed, so 7.9 days overdue is still 7
        days = (now - moment).days
        if operator == ConditionOperator.DAYS_SINCE_GREATER_THAN:
            return days > threshold
        return days < threshold

    ordering = _compare_ordered(field_value, expected)
    if ordering is None:
        return False
    if operator == ConditionOperator.GREATER_THAN:
        return ordering > 0
    if operator == ConditionOperator.LESS_THAN:
        return ordering < 0
    if operator == ConditionOperator.GREATER_OR_EQUAL:
        return ordering >= 0
    if operator == ConditionOperator.LESS_OR_EQUAL:
        return ordering <= 0
    return False


def _loose_equals(left: Any, right: Any) -> bool:
    """Equality that treats 42 and "42" alike (payloads mix ids and strings)."""
    if isinstance(left, bool) or isinstance(right, bool):
        return left is right or str(left).lower() == str(right).lower()
    if left == right:
        return True
    return str(left) == str(right)


def _compare_ordered(left: Any, right: Any) -> int | None:
    """Return -1/0/1 for numbers or dates; None when not comparable."""
    left_num, right_num = _to_number(left), _to_number(right)
    if left_num is not None and right_num is not None:
        return (left_num > right_num) - (left_num < right_num)

    left_dt, right_dt = _to_datetime(left), _to_datetime(right)
    if left_dt is not None and right_dt is not None:
        return (left_dt > right_dt) - (left_dt < right_dt)
    return None


def _to_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def _to_datetime(value: Any) -> datetime | None:
    """Parse ISO dates/datetimes; naive values are taken as UTC."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
