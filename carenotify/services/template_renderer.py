"""Template renderer - {{VAR}} substitution for notification templates.

Unknown tokens are left in place verbatim. Rendering is pure.
"""

from __future__ import annotations

import html
import re
from dataclasses import dataclass
from typing import Any, Mapping

from sqlalchemy.orm import Session

from carenotify.core.config import settings
from carenotify.db.models import Client, DomainEvent, NotificationTemplate, User
from carenotify.services.template_variable_catalog import VARIABLE_PATTERN


@dataclass(frozen=True)
class RenderedMessage:
    title: str
    message: str
    action_url: str | None = None
    action_label: str | None = None


@dataclass(frozen=True)
class TemplateContent:
    """Detached copy of a template's renderable fields (safe to pass to threads)."""

    title: str
    body: str
    action_url: str | None = None
    action_label: str | None = None
    is_html: bool = False

    @classmethod
    def from_model(cls, template: NotificationTemplate) -> "TemplateContent":
        return cls(
            title=template.title,
            body=template.body,
            action_url=template.action_url,
            action_label=template.action_label,
            is_html=template.is_html,
        )


def render(template_text: str, variables: Mapping[str, str], html_context: bool = False) -> str:
    """
    Substitute {{TOKEN}} placeholders.

    Tokens present in variables are replaced (HTML-escaped when rendering
    into HTML); absent tokens are kept exactly as written.
    """
    if not template_text or "{{" not in template_text:
        return template_text

    def replace_var(match: re.Match) -> str:
        name = match.group(1)
        if name not in variables:
            return match.group(0)
        value = variables[name]
        return html.escape(value, quote=True) if html_context else value

    return VARIABLE_PATTERN.sub(replace_var, template_text)


def render_template(
    template: NotificationTemplate | TemplateContent,
    variables: Mapping[str, str],
) -> RenderedMessage:
    """Render title, body and action URL of a template."""
    return RenderedMessage(
        title=render(template.title, variables),
        message=render(template.body, variables, html_context=template.is_html),
        action_url=render(template.action_url, variables) if template.action_url else None,
        action_label=template.action_label,
    )


def stringify_context(context: Mapping[str, Any]) -> dict[str, str]:
    """Flatten top-level scalar context values to strings."""
    variables: dict[str, str] = {}
    for key, value in context.items():
        if value is None or isinstance(value, (dict, list)):
            continue
        if isinstance(value, bool):
            variables[key] = "Yes" if value else "No"
        else:
            variables[key] = str(value)
    return variables


def build_template_variables(
    db: Session,
    event: DomainEvent,
    recipient: User | None = None,
) -> dict[str, str]:
    """
    Build variables for one recipient.

    Built-in vocabulary first, then the event context on top: values the
    caller supplied always win over looked-up ones.
    """
    subject_name = ""
    if event.subject_id is not None:
        client = db.get(Client, event.subject_id)
        subject_name = client.full_name if client else ""

    actor_name = ""
    if event.actor_id is not None:
        actor = db.get(User, event.actor_id)
        actor_name = actor.display_name if actor else ""

    variables = {
        "SUBJECT_NAME": subject_name,
        "SUBJECT_ID": str(event.subject_id) if event.subject_id is not None else "",
        "ACTOR_NAME": actor_name,
        "RECIPIENT_NAME": recipient.display_name if recipient else "",
        "ORG_NAME": settings.ORGANIZATION_NAME,
        "EVENT_TYPE": event.event_type,
        "OCCURRED_AT": event.occurred_at.isoformat() if event.occurred_at else "",
    }
    variables.update(stringify_context(event.context or {}))
    return variables
