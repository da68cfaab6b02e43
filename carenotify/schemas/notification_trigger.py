"""Pydantic schemas for notification triggers and templates."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field, computed_field

from carenotify.db.enums import NotificationPriority
from carenotify.services.template_variable_catalog import extract_template_variables


# =============================================================================
# Templates
# =============================================================================


class TemplateBase(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    category: str = Field(default="general", max_length=50)
    title: str = Field(min_length=1, max_length=255)
    body: str = Field(min_length=1)
    action_url: str | None = Field(default=None, max_length=500)
    action_label: str | None = Field(default=None, max_length=100)
    is_html: bool = False


class TemplateCreate(TemplateBase):
    pass


class TemplateUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    category: str | None = Field(default=None, max_length=50)
    title: str | None = Field(default=None, min_length=1, max_length=255)
    body: str | None = Field(default=None, min_length=1)
    action_url: str | None = Field(default=None, max_length=500)
    action_label: str | None = Field(default=None, max_length=100)
    is_html: bool | None = None
    is_active: bool | None = None


class TemplateRead(TemplateBase):
    id: UUID
    is_active: bool
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}

    @computed_field
    @property
    def variables(self) -> list[str]:
        """Tokens referenced by the title, body or action URL."""
        found: set[str] = set()
        for text in (self.title, self.body, self.action_url):
            found |= extract_template_variables(text)
        return sorted(found)


class TemplateVariableRead(BaseModel):
    name: str
    description: str
    category: str


# =============================================================================
# Triggers
# =============================================================================


class TriggerCreate(BaseModel):
    """
    condition: tree ({"kind": "AND", "children": [...]}) or a legacy shape.
    recipient_rule: {"type": "static_roles", "roles": [...]} etc.
    """

    name: str = Field(min_length=1, max_length=255)
    description: str | None = None
    event_type: str = Field(min_length=1, max_length=100)
    condition: Any = None
    recipient_rule: dict[str, Any]
    template_id: UUID
    priority: NotificationPriority = NotificationPriority.MEDIUM
    enabled: bool = True


class TriggerUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None
    event_type: str | None = Field(default=None, min_length=1, max_length=100)
    condition: Any = None
    recipient_rule: dict[str, Any] | None = None
    template_id: UUID | None = None
    priority: NotificationPriority | None = None
    enabled: bool | None = None


class TriggerRead(BaseModel):
    id: UUID
    name: str
    description: str | None
    event_type: str
    condition: dict[str, Any]
    recipient_rule: dict[str, Any]
    template_id: UUID
    priority: str
    enabled: bool
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}
