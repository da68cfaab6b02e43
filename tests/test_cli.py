"""Tests for the administration CLI."""

import pytest
from click.testing import CliRunner

from carenotify import cli as cli_module
from carenotify.db.models import NotificationTrigger
from carenotify.services import consent_service


@pytest.fixture
def runner(db, monkeypatch):
    monkeypatch.setattr(cli_module, "SessionLocal", lambda: db)
    return CliRunner()


def test_seed_triggers(runner, db):
    result = runner.invoke(cli_module.cli, ["seed-triggers"])

    assert result.exit_code == 0
    assert "Triggers created: 4" in result.output
    assert db.query(NotificationTrigger).count() == 4


def test_check_consent_exit_codes(runner, db, make_client):
    subject_id = make_client().id
    args = ["check-consent", "--subject-id", str(subject_id), "--category", "ai_processing"]

    denied = runner.invoke(cli_module.cli, args)
    consent_service.record_consent(db, subject_id, "ai_processing", granted=True)
    granted = runner.invoke(cli_module.cli, args)

    assert denied.exit_code == 1
    assert "no_consent_record" in denied.output
    assert granted.exit_code == 0


def test_verify_audit(runner, db, make_client):
    subject = make_client()
    consent_service.check_consent(db, subject.id, "ai_processing")

    result = runner.invoke(cli_module.cli, ["verify-audit"])

    assert result.exit_code == 0
    assert "1 entries" in result.output


def test_requeue_events(runner):
    result = runner.invoke(cli_module.cli, ["requeue-events"])
    assert result.exit_code == 0
    assert "Re-queued 0 event(s)" in result.output
    assert "Recovered 0 stale job(s)" in result.output
