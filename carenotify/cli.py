"""CLI tools for notification engine administration."""

import click

from carenotify.db.session import SessionLocal
from carenotify.services import (
    audit_service,
    consent_service,
    event_service,
    job_service,
    trigger_registry,
)


@click.group()
def cli():
    """CareNotify CLI tools."""
    pass


@cli.command()
@click.option("--actor-id", type=int, default=None, help="User id recorded in the audit log")
def seed_triggers(actor_id: int | None):
    """
    Create the default templates and triggers.

    Upserts by name: rows that already exist (and any admin edits to them)
    are left alone.

    Example:
        carenotify seed-triggers --actor-id 1
    """
    with SessionLocal() as db:
        counts = trigger_registry.seed_default_triggers(db, actor_id=actor_id)
    click.echo(f"✓ Templates created: {counts['templates_created']}")
    click.echo(f"✓ Triggers created: {counts['triggers_created']}")


@cli.command()
@click.option("--limit", default=500, show_default=True, help="Maximum events to re-queue")
def requeue_events(limit: int):
    """
    Re-queue events stuck in 'received' and jobs orphaned mid-run.

    Safe to repeat: dispatch jobs are keyed by event id and notifications
    are never duplicated.
    """
    with SessionLocal() as db:
        recovered = job_service.requeue_stale_jobs(db)
        count = event_service.requeue_unprocessed_events(db, limit=limit)
    click.echo(f"✓ Recovered {recovered} stale job(s)")
    click.echo(f"✓ Re-queued {count} event(s)")


@cli.command()
@click.option("--subject-id", type=int, required=True, help="Client id")
@click.option("--category", required=True, help="Consent category, e.g. ai_processing")
@click.option("--actor-id", type=int, default=None, help="User id recorded in the audit log")
def check_consent(subject_id: int, category: str, actor_id: int | None):
    """
    Run a consent gate check (audited like any other check).

    Exits with status 1 when consent is denied.
    """
    with SessionLocal() as db:
        result = consent_service.check_consent(db, subject_id, category, actor_id=actor_id)
    if result.granted:
        click.echo(f"✓ {category}: granted (version {result.consent_version})")
        return
    click.echo(f"❌ {category}: denied ({result.reason})")
    raise SystemExit(1)


@cli.command()
def verify_audit():
    """Recompute the audit hash chain. Exits with status 1 if it is broken."""
    with SessionLocal() as db:
        ok, checked = audit_service.verify_chain(db)
    if ok:
        click.echo(f"✓ Audit chain intact ({checked} entries)")
        return
    click.echo(f"❌ Audit chain broken after {checked} valid entries")
    raise SystemExit(1)


if __name__ == "__main__":
    cli()
