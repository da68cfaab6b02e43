"""Job queue on the jobs table: scheduling, claiming and attempt bookkeeping."""

from datetime import datetime, timedelta, timezone

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from carenotify.core.config import settings
from carenotify.db.enums import JobStatus, JobType
from carenotify.db.models import Job

ERROR_MAX_LENGTH = 2000


def schedule_job(
    db: Session,
    job_type: JobType,
    payload: dict,
    run_at: datetime | None = None,
    idempotency_key: str | None = None,
    max_attempts: int = 3,
) -> Job:
    """
    Queue a job, due now unless run_at says otherwise.

    A job that already carries idempotency_key is returned as is, whatever
    its status; a concurrent insert of the same key converges on the row
    that won.
    """
    if idempotency_key:
        existing = _find_by_key(db, idempotency_key)
        if existing:
            return existing

    job = Job(
        job_type=job_type.value,
        payload=payload,
        run_at=run_at or datetime.now(timezone.utc),
        status=JobStatus.PENDING.value,
        idempotency_key=idempotency_key,
        max_attempts=max_attempts,
    )
    db.add(job)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        winner = _find_by_key(db, idempotency_key) if idempotency_key else None
        if winner is None:
            raise
        return winner
    db.refresh(job)
    return job


def _find_by_key(db: Session, idempotency_key: str) -> Job | None:
    return db.query(Job).filter(Job.idempotency_key == idempotency_key).first()


def claim_due_jobs(db: Session, limit: int = 10) -> list[Job]:
    """
    Claim up to `limit` due pending jobs, oldest run_at first.

    The rows are locked with SKIP LOCKED and flipped to running (one attempt
    spent) in that same transaction, so a second worker polling concurrently
    skips them and then sees them as running. Backends without row locks
    (SQLite) ignore the clause.
    """
    now = datetime.now(timezone.utc)
    jobs = (
        db.query(Job)
        .filter(
            Job.status == JobStatus.PENDING.value,
            Job.run_at <= now,
        )
        .order_by(Job.run_at)
        .limit(limit)
        .with_for_update(skip_locked=True)
        .all()
    )
    for job in jobs:
        job.status = JobStatus.RUNNING.value
        job.attempts += 1
        job.started_at = now
    db.commit()
    return jobs


def retry_delay(attempts: int) -> timedelta:
    """Backoff before the next attempt: base, 2x base, 4x base, ..."""
    return timedelta(seconds=settings.JOB_RETRY_BASE_DELAY * 2 ** max(attempts - 1, 0))


def requeue_stale_jobs(db: Session, stale_after: int | None = None) -> int:
    """
    Recover jobs left running by a worker that died mid-attempt.

    The lost attempt counts against the budget: with attempts left the job
    is due again now, otherwise it is marked failed. Returns how many jobs
    were recovered.
    """
    seconds = settings.JOB_STALE_AFTER if stale_after is None else stale_after
    now = datetime.now(timezone.utc)
    stale = (
        db.query(Job)
        .filter(
            Job.status == JobStatus.RUNNING.value,
            Job.started_at <= now - timedelta(seconds=seconds),
        )
        .with_for_update(skip_locked=True)
        .all()
    )
    for job in stale:
        job.last_error = "Worker stopped before the attempt finished"
        if job.attempts < job.max_attempts:
            job.status = JobStatus.PENDING.value
            job.run_at = now
        else:
            job.status = JobStatus.FAILED.value
    db.commit()
    return len(stale)


def mark_job_completed(db: Session, job: Job) -> Job:
    job.status = JobStatus.COMPLETED.value
    job.completed_at = datetime.now(timezone.utc)
    job.last_error = None
    db.commit()
    db.refresh(job)
    return job


def mark_job_failed(db: Session, job: Job, error: str) -> Job:
    """
    Record a failed attempt.

    With attempts left the job goes back to pending, due after retry_delay;
    otherwise it stays failed for an operator (or requeue) to pick up.
    """
    job.last_error = error[:ERROR_MAX_LENGTH]
    if job.attempts < job.max_attempts:
        job.status = JobStatus.PENDING.value
        job.run_at = datetime.now(timezone.utc) + retry_delay(job.attempts)
    else:
        job.status = JobStatus.FAILED.value
    db.commit()
    db.refresh(job)
    return job


def reset_job(db: Session, job: Job) -> Job:
    """Put a finished job back in the queue with a fresh attempt budget."""
    job.status = JobStatus.PENDING.value
    job.attempts = 0
    job.run_at = datetime.now(timezone.utc)
    job.completed_at = None
    db.commit()
    db.refresh(job)
    return job
