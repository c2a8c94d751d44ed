"""
Notification Service - email/SMS notifications about mediation activity.

Trigger functions stage jobs on the caller's transaction (outbox); the worker
delivers them through Resend (email) and Twilio (SMS). Job payloads carry the
recipient account id, never an address: the address is looked up at send
time. Notification text names parties by alias only.
"""

import logging
from uuid import UUID

import httpx
from sqlalchemy.orm import Session

from app.core.config import settings
from app.db.enums import ROLES_CAN_REVIEW, JobType, MediationStatus
from app.db.models import Account, Conversation, MediationRequest
from app.services import alias_service, job_service
from app.services.http_service import request_with_retries

logger = logging.getLogger(__name__)

RESEND_SEND_URL = "https://api.resend.com/emails"
TWILIO_MESSAGES_URL = "https://api.twilio.com/2010-04-01/Accounts/{sid}/Messages.json"
PROVIDER_TIMEOUT_SECONDS = 15.0
PROVIDER_MAX_ATTEMPTS = 3

STATUS_PHRASES: dict[MediationStatus, str] = {
    MediationStatus.ADMIN_REVIEWING: "is being reviewed by our team",
    MediationStatus.FORWARDED_TO_COUNTERPARTY: "has been forwarded",
    MediationStatus.COUNTERPARTY_RESPONDED: "has received a response",
    MediationStatus.ADMIN_REVIEWING_RESPONSE: "response is being reviewed by our team",
    MediationStatus.APPROVED_DISCLOSED: "has been approved",
    MediationStatus.REVISION_REQUESTED: "needs changes before it can continue",
    MediationStatus.REJECTED: "was not approved",
    MediationStatus.APPROVED: "has been approved",
    MediationStatus.SCHEDULED: "has been scheduled",
    MediationStatus.COMPLETED: "is complete",
    MediationStatus.CLOSED_ACCEPTED: "has been closed as accepted",
    MediationStatus.CLOSED_REJECTED: "has been closed",
}


# =============================================================================
# Enqueue helpers
# =============================================================================


def _enqueue_email(
    db: Session,
    account_id: UUID,
    subject: str,
    body: str,
    dedupe_key: str | None = None,
) -> None:
    job_service.schedule_job(
        db,
        JobType.NOTIFICATION_EMAIL,
        {"account_id": str(account_id), "subject": subject, "body": body},
        idempotency_key=dedupe_key,
    )


def _enqueue_sms(db: Session, account_id: UUID, body: str, dedupe_key: str | None = None) -> None:
    job_service.schedule_job(
        db,
        JobType.NOTIFICATION_SMS,
        {"account_id": str(account_id), "body": body},
        idempotency_key=dedupe_key,
    )


def _admin_account_ids(db: Session) -> list[UUID]:
    rows = (
        db.query(Account.id)
        .filter(
            Account.role.in_([role.value for role in ROLES_CAN_REVIEW]),
            Account.is_active.is_(True),
        )
        .all()
    )
    return [row[0] for row in rows]


def _label(db: Session, account_id: UUID) -> str:
    return alias_service.resolve_alias(db, account_id) or "A member"


# =============================================================================
# Trigger functions (called inside the mediation / channel transactions)
# =============================================================================


def notify_request_submitted(db: Session, request: MediationRequest) -> None:
    """Tell staff a new request is waiting for review."""
    requester = _label(db, request.requester_id)
    subject = f"New {request.kind} request awaiting review"
    body = f"{requester} submitted a {request.kind} request ({request.id})."
    for admin_id in _admin_account_ids(db):
        _enqueue_email(db, admin_id, subject, body)


def notify_request_status_changed(
    db: Session,
    request: MediationRequest,
    to_status: MediationStatus,
    sequence: int,
) -> None:
    """Tell the requester (and, when forwarded, the target) about a status change."""
    phrase = STATUS_PHRASES.get(to_status)
    if phrase:
        _enqueue_email(
            db,
            request.requester_id,
            f"Update on your {request.kind} request",
            f"Your {request.kind} request ({request.id}) {phrase}.",
            dedupe_key=f"request_status:{request.id}:{sequence}:requester",
        )

    if to_status == MediationStatus.FORWARDED_TO_COUNTERPARTY:
        requester = _label(db, request.requester_id)
        body = f"{requester} sent you a {request.kind} request. Sign in to respond."
        _enqueue_email(
            db,
            request.target_id,
            f"New {request.kind} request",
            body,
            dedupe_key=f"request_status:{request.id}:{sequence}:target",
        )
        target = db.get(Account, request.target_id)
        if target and target.phone:
            _enqueue_sms(db, request.target_id, body)

    if to_status == MediationStatus.COUNTERPARTY_RESPONDED:
        target = _label(db, request.target_id)
        for admin_id in _admin_account_ids(db):
            _enqueue_email(
                db,
                admin_id,
                f"Response received on {request.kind} request",
                f"{target} responded to request {request.id}.",
            )


def notify_channel_suspended(db: Session, conversation: Conversation) -> None:
    """Tell staff a conversation hit its message budget and needs re-approval."""
    subject = "Conversation awaiting approval"
    body = (
        f"Conversation {conversation.id} reached its limit of "
        f"{conversation.message_budget} messages and is paused until approved."
    )
    for admin_id in _admin_account_ids(db):
        _enqueue_email(db, admin_id, subject, body)


# =============================================================================
# Delivery (worker side)
# =============================================================================


async def send_email(to_email: str, subject: str, body: str) -> str | None:
    """
    Send an email using the Resend API.

    If RESEND_API_KEY is not set, logs the send instead. Returns the
    provider message id when one is returned.
    """
    if not settings.RESEND_API_KEY:
        logger.info("[DRY RUN] Email send skipped: %s", subject)
        return None

    headers = {
        "Authorization": f"Bearer {settings.RESEND_API_KEY}",
        "Content-Type": "application/json",
    }
    payload = {
        "from": settings.EMAIL_FROM,
        "to": [to_email],
        "subject": subject,
        "text": body,
    }

    async with httpx.AsyncClient(timeout=PROVIDER_TIMEOUT_SECONDS) as client:

        async def request_fn() -> httpx.Response:
            return await client.post(RESEND_SEND_URL, headers=headers, json=payload)

        response = await request_with_retries(request_fn, max_attempts=PROVIDER_MAX_ATTEMPTS)

    response.raise_for_status()
    return response.json().get("id")


async def send_sms(to_number: str, body: str) -> str | None:
    """
    Send an SMS using the Twilio REST API.

    If Twilio credentials are not set, logs the send instead.
    """
    if not (settings.TWILIO_ACCOUNT_SID and settings.TWILIO_AUTH_TOKEN and settings.TWILIO_FROM_NUMBER):
        logger.info("[DRY RUN] SMS send skipped")
        return None

    url = TWILIO_MESSAGES_URL.format(sid=settings.TWILIO_ACCOUNT_SID)
    data = {"From": settings.TWILIO_FROM_NUMBER, "To": to_number, "Body": body}

    async with httpx.AsyncClient(
        timeout=PROVIDER_TIMEOUT_SECONDS,
        auth=(settings.TWILIO_ACCOUNT_SID, settings.TWILIO_AUTH_TOKEN),
    ) as client:

        async def request_fn() -> httpx.Response:
            return await client.post(url, data=data)

        response = await request_with_retries(request_fn, max_attempts=PROVIDER_MAX_ATTEMPTS)

    response.raise_for_status()
    return response.json().get("sid")
