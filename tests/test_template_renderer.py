"""Tests for {{VAR}} template rendering."""

from datetime import datetime, timezone

from carenotify.db.models import DomainEvent
from carenotify.services.template_renderer import (
    TemplateContent,
    build_template_variables,
    render,
    render_template,
    stringify_context,
)
from carenotify.services.template_variable_catalog import (
    BUILTIN_VARIABLE_NAMES,
    extract_template_variables,
)


def test_text_without_tokens_is_unchanged():
    assert render("Plain text", {"X": "1"}) == "Plain text"
    assert render("", {"X": "1"}) == ""


def test_all_tokens_resolved():
    result = render("Hi {{NAME}}, task {{ TASK }} is late", {"NAME": "Sam", "TASK": "Notes"})
    assert result == "Hi Sam, task Notes is late"


def test_unknown_token_kept_verbatim():
    result = render("Hi {{NAME}}, see {{ MISSING_VAR }}", {"NAME": "Sam"})
    assert result == "Hi Sam, see {{ MISSING_VAR }}"


def test_html_context_escapes_values():
    result = render("<p>{{NAME}}</p>", {"NAME": "<b>Sam & Co</b>"}, html_context=True)
    assert result == "<p>&lt;b&gt;Sam &amp; Co&lt;/b&gt;</p>"


def test_plain_context_does_not_escape():
    assert render("{{NAME}}", {"NAME": "Sam & Co"}) == "Sam & Co"


def test_render_template_renders_title_body_and_url():
    content = TemplateContent(
        title="Task overdue: {{TASK_TITLE}}",
        body="<p>{{TASK_TITLE}}</p>",
        action_url="/tasks/{{TASK_ID}}",
        action_label="View task",
        is_html=True,
    )
    rendered = render_template(content, {"TASK_TITLE": "A&B", "TASK_ID": "7"})

    assert rendered.title == "Task overdue: A&B"
    assert rendered.message == "<p>A&amp;B</p>"
    assert rendered.action_url == "/tasks/7"
    assert rendered.action_label == "View task"


def test_stringify_context_skips_nested_and_none():
    variables = stringify_context(
        {"ASSIGNEE_NAME": "Sam", "COUNT": 3, "FLAG": True, "NESTED": {"a": 1}, "NONE": None}
    )
    assert variables == {"ASSIGNEE_NAME": "Sam", "COUNT": "3", "FLAG": "Yes"}


def test_extract_template_variables():
    assert extract_template_variables("{{A}} and {{ B }} and {{A}}") == {"A", "B"}
    assert extract_template_variables(None) == set()


def test_build_template_variables_context_wins(db, make_user, make_client):
    actor = make_user(display_name="Dr. Actor")
    recipient = make_user(display_name="Sam Recipient")
    client = make_client(full_name="Jane Client")
    event = DomainEvent(
        event_type="SessionScheduled",
        subject_id=client.id,
        actor_id=actor.id,
        context={"SESSION_DATE": "2026-03-10", "SUBJECT_NAME": "J. C."},
        occurred_at=datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc),
    )

    variables = build_template_variables(db, event, recipient)

    assert set(BUILTIN_VARIABLE_NAMES) <= set(variables)
    assert variables["ACTOR_NAME"] == "Dr. Actor"
    assert variables["RECIPIENT_NAME"] == "Sam Recipient"
    assert variables["SUBJECT_ID"] == str(client.id)
    assert variables["EVENT_TYPE"] == "SessionScheduled"
    assert variables["SESSION_DATE"] == "2026-03-10"
    # Caller-supplied values override looked-up ones
    assert variables["SUBJECT_NAME"] == "J. C."
