"""Template variable catalog for notification templates.

Single source of truth for the fixed variable vocabulary the engine resolves
itself. Triggers may reference any other token; those are filled from the
event context supplied by the caller.
"""

from __future__ import annotations

from dataclasses import dataclass
import re


# Token extraction pattern: {{ VARIABLE }} (whitespace allowed)
VARIABLE_PATTERN = re.compile(r"{{\s*([A-Za-z0-9_]+)\s*}}")


@dataclass(frozen=True)
class TemplateVariableDefinition:
    name: str
    description: str
    category: str


def extract_template_variables(text: str | None) -> set[str]:
    if not text:
        return set()
    return {match.group(1) for match in VARIABLE_PATTERN.finditer(text)}


def list_builtin_variables() -> list[TemplateVariableDefinition]:
    """Variables resolved by the engine for every notification."""
    return [
        # Subject
        TemplateVariableDefinition(
            name="SUBJECT_NAME",
            description="Client full name",
            category="Subject",
        ),
        TemplateVariableDefinition(
            name="SUBJECT_ID",
            description="Client id",
            category="Subject",
        ),
        # Actor
        TemplateVariableDefinition(
            name="ACTOR_NAME",
            description="Staff member whose action emitted the event",
            category="Actor",
        ),
        TemplateVariableDefinition(
            name="RECIPIENT_NAME",
            description="Notification recipient display name",
            category="Actor",
        ),
        # Organization
        TemplateVariableDefinition(
            name="ORG_NAME",
            description="Practice name",
            category="Organization",
        ),
        # Event
        TemplateVariableDefinition(
            name="EVENT_TYPE",
            description="Event type that fired the trigger",
            category="Event",
        ),
        TemplateVariableDefinition(
            name="OCCURRED_AT",
            description="When the event occurred (ISO 8601, UTC)",
            category="Event",
        ),
    ]


BUILTIN_VARIABLE_NAMES = frozenset(var.name for var in list_builtin_variables())
