"""Notification job handlers."""

from __future__ import annotations

import logging
from uuid import UUID

from app.db.models import Account
from app.services import notification_service

logger = logging.getLogger(__name__)


def _coerce_uuid(raw_id: str | None) -> UUID | None:
    if not raw_id:
        return None
    try:
        return UUID(str(raw_id))
    except (TypeError, ValueError):
        logger.warning("Invalid UUID value '%s' in notification payload", raw_id)
        return None


def _recipient(db, payload: dict) -> Account | None:
    account_id = _coerce_uuid(payload.get("account_id"))
    if not account_id:
        return None
    account = db.query(Account).filter(Account.id == account_id).first()
    if not account or not account.is_active:
        logger.info("Skipping notification for missing or disabled account %s", account_id)
        return None
    return account


async def process_notification_email(db, job) -> None:
    """Deliver a notification email to the account named in the payload."""
    payload = job.payload or {}
    account = _recipient(db, payload)
    body = payload.get("body")
    if not account or not body:
        return

    message_id = await notification_service.send_email(
        account.email, payload.get("subject") or "Update", body
    )
    logger.info("Notification email for job %s sent (message_id=%s)", job.id, message_id)


async def process_notification_sms(db, job) -> None:
    """Deliver a notification SMS; accounts without a phone are skipped."""
    payload = job.payload or {}
    account = _recipient(db, payload)
    body = payload.get("body")
    if not account or not body or not account.phone:
        return

    sid = await notification_service.send_sms(account.phone, body)
    logger.info("Notification SMS for job %s sent (sid=%s)", job.id, sid)
