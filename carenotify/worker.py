"""
Dispatch and delivery worker.

    python -m carenotify.worker

On start, events a previous run left in 'received' are re-queued. The loop
then drains due jobs in batches: dispatch_event runs the trigger pipeline for
one event, notification_delivery pushes one notification to one channel.
Run it as its own process next to the API.
"""

import asyncio
import logging

from carenotify.core.config import settings
from carenotify.core.structured_logging import build_log_context
from carenotify.db.enums import AlertSeverity, AlertType
from carenotify.db.session import SessionLocal
from carenotify.jobs.registry import resolve_job_handler
from carenotify.services import alert_service, event_service, job_service

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)


async def process_job(db, job) -> None:
    """Run the handler registered for the job type."""
    logger.info("Processing job %s (type=%s, attempt=%s)", job.id, job.job_type, job.attempts)
    handler = resolve_job_handler(job.job_type)
    await handler(db, job)


def _record_job_failure(db, job, exception: Exception) -> None:
    """Create an alert once a job has used its last attempt."""
    if job.attempts < job.max_attempts:
        return
    alert_service.create_or_update_alert(
        db=db,
        alert_type=AlertType.WORKER_JOB_FAILED,
        severity=AlertSeverity.ERROR,
        title=f"{job.job_type} failed after {job.attempts} attempts",
        message=(job.last_error or "")[:500],
        alert_key=job.job_type,
        error_class=type(exception).__name__,
    )


async def run_pending_jobs(db, limit: int) -> int:
    """Run one batch of due jobs. Returns how many were picked up."""
    jobs = job_service.claim_due_jobs(db, limit=limit)
    if jobs:
        logger.info("Claimed %s pending jobs", len(jobs))

    for job in jobs:
        try:
            await process_job(db, job)
            job_service.mark_job_completed(db, job)
            logger.info("Job %s completed successfully", job.id)
        except Exception as e:
            db.rollback()
            job_service.mark_job_failed(db, job, f"{type(e).__name__}: {e}")
            logger.error("Job %s failed: %s", job.id, type(e).__name__)
            _record_job_failure(db, job, e)
    return len(jobs)


def requeue_on_start() -> int:
    """Re-queue events stuck in 'received'. Returns how many were found."""
    with SessionLocal() as db:
        return event_service.requeue_unprocessed_events(db)


async def worker_loop() -> None:
    """Poll forever; one session per batch."""
    logger.info(
        "Worker starting (poll interval: %ss, batch size: %s, channels: %s)",
        settings.WORKER_POLL_INTERVAL,
        settings.WORKER_BATCH_SIZE,
        ",".join(settings.delivery_channels_list) or "none",
    )
    requeued = requeue_on_start()
    if requeued:
        logger.info("Re-queued %s events left unprocessed", requeued)

    while True:
        with SessionLocal() as db:
            try:
                recovered = job_service.requeue_stale_jobs(db)
                if recovered:
                    logger.warning("Recovered %s jobs orphaned mid-run", recovered)
                await run_pending_jobs(db, settings.WORKER_BATCH_SIZE)
            except Exception:
                logger.exception("Error in worker loop")

        await asyncio.sleep(settings.WORKER_POLL_INTERVAL)


def main() -> None:
    if settings.SENTRY_DSN and settings.ENV != "dev":
        import sentry_sdk

        sentry_sdk.init(
            dsn=settings.SENTRY_DSN,
            environment=settings.ENV,
            send_default_pii=False,
        )

    try:
        asyncio.run(worker_loop())
    except KeyboardInterrupt:
        logger.info("Worker shutting down")
    except Exception:
        logger.exception(
            "Worker crashed",
            extra=build_log_context(route="worker", method="background"),
        )
        raise


if __name__ == "__main__":
    main()
