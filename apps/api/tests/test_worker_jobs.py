"""Tests for the notification outbox worker."""

import pytest

from app import worker
from app.core.config import settings
from app.db.base import utcnow
from app.db.enums import JobStatus, JobType
from app.jobs.registry import JOB_HANDLERS, resolve_job_handler
from app.services import job_service, notification_service


def test_job_registry_resolves_known_handlers():
    for job_type in (JobType.NOTIFICATION_EMAIL, JobType.NOTIFICATION_SMS):
        assert callable(resolve_job_handler(job_type.value))
    assert set(JOB_HANDLERS) == {t.value for t in JobType}


def test_job_registry_rejects_unknown_type():
    with pytest.raises(ValueError):
        resolve_job_handler("does_not_exist")


@pytest.mark.asyncio
async def test_email_job_completes_in_dry_run(db, investor, monkeypatch):
    sent = []

    async def fake_send_email(to_email, subject, body):
        sent.append((to_email, subject, body))
        return None

    monkeypatch.setattr(notification_service, "send_email", fake_send_email)
    job = job_service.schedule_job(
        db,
        JobType.NOTIFICATION_EMAIL,
        {"account_id": str(investor.id), "subject": "Update", "body": "Your request has been forwarded"},
    )
    db.commit()

    processed = await worker.run_once(db)

    assert processed == 1
    db.refresh(job)
    assert job.status == JobStatus.COMPLETED.value
    assert sent == [(investor.account.email, "Update", "Your request has been forwarded")]


@pytest.mark.asyncio
async def test_sms_job_skips_accounts_without_phone(db, founder, monkeypatch):
    async def fail_send_sms(to_number, body):
        raise AssertionError("should not send")

    monkeypatch.setattr(notification_service, "send_sms", fail_send_sms)
    job = job_service.schedule_job(
        db, JobType.NOTIFICATION_SMS, {"account_id": str(founder.id), "body": "hello"}
    )
    db.commit()

    await worker.run_once(db)

    db.refresh(job)
    assert job.status == JobStatus.COMPLETED.value


@pytest.mark.asyncio
async def test_failed_job_is_retried_then_failed(db, investor, monkeypatch):
    async def broken_send_email(to_email, subject, body):
        raise RuntimeError("provider down")

    monkeypatch.setattr(notification_service, "send_email", broken_send_email)
    job = job_service.schedule_job(
        db,
        JobType.NOTIFICATION_EMAIL,
        {"account_id": str(investor.id), "subject": "Update", "body": "body"},
    )
    db.commit()

    await worker.run_once(db)
    db.refresh(job)
    assert job.status == JobStatus.PENDING.value
    assert job.attempts == 1
    assert job.last_error == "provider down"

    # Backed off: not due again yet
    assert await worker.run_once(db) == 0

    monkeypatch.setattr(settings, "WORKER_RETRY_BASE_SECONDS", 0)
    job.run_at = utcnow()
    db.commit()
    for _ in range(job.max_attempts - 1):
        await worker.run_once(db)
    db.refresh(job)
    assert job.status == JobStatus.FAILED.value
    assert job.attempts == job.max_attempts


@pytest.mark.asyncio
async def test_send_email_dry_run_without_key(monkeypatch):
    monkeypatch.setattr(settings, "RESEND_API_KEY", "")

    assert await notification_service.send_email("a@example.com", "s", "b") is None


@pytest.mark.asyncio
async def test_request_with_retries_retries_server_errors():
    import httpx

    from app.services.http_service import request_with_retries

    statuses = iter([503, 200])

    async def request_fn():
        return httpx.Response(next(statuses))

    response = await request_with_retries(request_fn, base_delay=0, max_delay=0)

    assert response.status_code == 200


def test_retry_delay_doubles(monkeypatch):
    monkeypatch.setattr(settings, "WORKER_RETRY_BASE_SECONDS", 30)

    assert [job_service.retry_delay(n).total_seconds() for n in (1, 2, 3)] == [30, 60, 120]
