"""Notification outbox: staging, claiming and settling background jobs."""

import logging
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from app.core.config import settings
from app.db.base import utcnow
from app.db.enums import JobStatus, JobType
from app.db.models import Job

logger = logging.getLogger(__name__)


def schedule_job(
    db: Session,
    job_type: JobType,
    payload: dict,
    run_at: datetime | None = None,
    idempotency_key: str | None = None,
) -> Job:
    """
    Stage a job on the caller's transaction.

    Flushed, not committed: the worker only sees it once the state change
    that caused it commits. A repeated idempotency key fails at flush with
    IntegrityError.
    """
    job = Job(
        job_type=job_type.value,
        payload=payload,
        run_at=run_at or utcnow(),
        status=JobStatus.PENDING.value,
        idempotency_key=idempotency_key,
    )
    db.add(job)
    db.flush()
    return job


def get_pending_jobs(db: Session, limit: int = 10) -> list[Job]:
    """Due jobs, oldest run_at first."""
    return (
        db.query(Job)
        .filter(Job.status == JobStatus.PENDING.value, Job.run_at <= utcnow())
        .order_by(Job.run_at)
        .limit(limit)
        .all()
    )


def _settle(db: Session, job: Job) -> Job:
    db.commit()
    db.refresh(job)
    return job


def mark_job_running(db: Session, job: Job) -> Job:
    job.status = JobStatus.RUNNING.value
    job.attempts += 1
    return _settle(db, job)


def mark_job_completed(db: Session, job: Job) -> Job:
    job.status = JobStatus.COMPLETED.value
    job.completed_at = utcnow()
    job.last_error = None
    return _settle(db, job)


def retry_delay(attempts: int) -> timedelta:
    """Exponential backoff after the given number of attempts."""
    return timedelta(seconds=settings.WORKER_RETRY_BASE_SECONDS * 2 ** max(attempts - 1, 0))


def mark_job_failed(db: Session, job: Job, error: str) -> Job:
    """
    Record a failed attempt.

    The job goes back to pending with a backed-off run_at until it has used
    max_attempts, then it stays failed.
    """
    job.last_error = error
    if job.attempts < job.max_attempts:
        job.status = JobStatus.PENDING.value
        job.run_at = utcnow() + retry_delay(job.attempts)
    else:
        job.status = JobStatus.FAILED.value
        logger.warning(
            "Notification job gave up",
            extra={"job_id": str(job.id), "job_type": job.job_type, "attempts": job.attempts},
        )
    return _settle(db, job)
