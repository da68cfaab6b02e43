"""Structured logging helpers (PHI-safe)."""

from typing import Any


def build_log_context(
    *,
    event_id: str | None = None,
    event_type: str | None = None,
    trigger_id: str | None = None,
    recipient_id: int | None = None,
    actor_id: int | None = None,
    route: str | None = None,
    method: str | None = None,
) -> dict[str, Any]:
    """Return a PHI-safe log context dict.

    Only identifiers go in here. Event context values and rendered messages
    can carry client details and must never be logged.
    """
    context: dict[str, Any] = {}
    if event_id:
        context["event_id"] = event_id
    if event_type:
        context["event_type"] = event_type
    if trigger_id:
        context["trigger_id"] = trigger_id
    if recipient_id is not None:
        context["recipient_id"] = recipient_id
    if actor_id is not None:
        context["actor_id"] = actor_id
    if route:
        context["route"] = route
    if method:
        context["method"] = method
    return context
