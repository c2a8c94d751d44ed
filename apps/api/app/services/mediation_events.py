"""Mediation request realtime events.

Builders run inside the request (they read the database); the returned
coroutine functions run after the response via BackgroundTasks.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy.orm import Session

from app.core.websocket import ConnectionManager, manager
from app.db.enums import ChannelEventType, MediationStatus
from app.db.models import MediationRequest
from app.services import alias_service

# Staff decisions the requester is told about as formReviewed
REVIEW_OUTCOMES = frozenset(
    {
        MediationStatus.FORWARDED_TO_COUNTERPARTY,
        MediationStatus.REJECTED,
        MediationStatus.REVISION_REQUESTED,
        MediationStatus.APPROVED_DISCLOSED,
        MediationStatus.APPROVED,
    }
)


def build_submitted_event(db: Session, request: MediationRequest) -> dict:
    return {
        "type": ChannelEventType.FORM_SUBMITTED.value,
        "data": {
            "request_id": str(request.id),
            "kind": request.kind,
            "status": request.status,
            "requester_alias": alias_service.resolve_alias(db, request.requester_id),
        },
    }


def build_status_event(db: Session, request: MediationRequest) -> dict:
    status = MediationStatus(request.status)
    event_type = (
        ChannelEventType.FORM_REVIEWED if status in REVIEW_OUTCOMES else ChannelEventType.STATUS_CHANGED
    )
    return {
        "type": event_type.value,
        "data": {
            "request_id": str(request.id),
            "kind": request.kind,
            "status": request.status,
            "conversation_id": str(request.conversation_id) if request.conversation_id else None,
        },
    }


def status_recipients(request: MediationRequest) -> list[UUID]:
    """Requester always; target once the request has been shared with them."""
    recipients = [request.requester_id]
    if request.shared_with_target_at is not None:
        recipients.append(request.target_id)
    return recipients


async def publish_submitted(event: dict, transport: ConnectionManager = manager) -> None:
    """New request for the staff review queue."""
    await transport.send_to_admins(event)


async def publish_status_changed(
    recipients: list[UUID],
    event: dict,
    transport: ConnectionManager = manager,
) -> None:
    for account_id in recipients:
        await transport.send_to_user(account_id, event)
    await transport.send_to_admins(
        {"type": ChannelEventType.STATUS_CHANGED.value, "data": event["data"]}
    )
