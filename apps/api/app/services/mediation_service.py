"""Mediation service - request ledger and the mediation state machine.

Requests move only along the edges in ``app.core.mediation_graph``. Every
move is a compare-and-swap on the status the caller last saw, appends one
history entry and stages its side effects (conversation, notifications) on
the same transaction.
"""

import logging
from datetime import datetime
from uuid import UUID

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.core import mediation_graph
from app.core.errors import (
    DuplicatePending,
    InvalidTransition,
    MediationError,
    NotFound,
    ServerError,
    StaleState,
    Unauthorized,
    ValidationError,
)
from app.db.base import utcnow
from app.db.enums import (
    INITIAL_STATUS_BY_KIND,
    ROLES_CAN_REQUEST,
    TERMINAL_STATUSES,
    MediationAction,
    MediationKind,
    MediationStatus,
    Role,
)
from app.db.models import Account, MediationRequest, MediationRequestEvent
from app.schemas.auth import ActorSession
from app.schemas.mediation import PAYLOAD_SCHEMAS
from app.services import alias_service, conversation_service, notification_service
from app.utils.pagination import PaginationParams, paginate_query

logger = logging.getLogger(__name__)

CANCELLED_REASON = "cancelled"

# Statuses after which the target has been shown the request
TARGET_VISIBLE_STATUSES = frozenset(
    {MediationStatus.FORWARDED_TO_COUNTERPARTY, MediationStatus.APPROVED}
)

# Statuses that wait on staff
REVIEW_QUEUE_STATUSES = (
    MediationStatus.SUBMITTED,
    MediationStatus.ADMIN_REVIEWING,
    MediationStatus.COUNTERPARTY_RESPONDED,
    MediationStatus.ADMIN_REVIEWING_RESPONSE,
    MediationStatus.PENDING,
    MediationStatus.APPROVED,
    MediationStatus.SCHEDULED,
)

# Terminal moves that also shut the linked conversation
CHANNEL_CLOSING_STATUSES = frozenset({MediationStatus.REJECTED, MediationStatus.CLOSED_REJECTED})


# =============================================================================
# Parsing / validation
# =============================================================================


def parse_status(value: str | MediationStatus) -> MediationStatus:
    """Accepts enum members, canonical values and role-specific aliases."""
    if isinstance(value, MediationStatus):
        return value
    try:
        return MediationStatus(value)
    except ValueError:
        raise ValidationError(f"Unknown status '{value}'")


def validate_payload(kind: MediationKind, payload: dict) -> dict:
    """
    Validate a request payload against the schema for its kind.

    Returns the normalized payload (JSON-safe).
    """
    schema = PAYLOAD_SCHEMAS[kind]
    try:
        model = schema.model_validate(payload or {})
    except PydanticValidationError as exc:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in exc.errors())
        raise ValidationError(f"Invalid {kind.value} payload: {fields}") from exc
    return model.model_dump(mode="json")


# =============================================================================
# Queries
# =============================================================================


def get_request(db: Session, request_id: UUID) -> MediationRequest | None:
    return db.get(MediationRequest, request_id)


def get_active_for_pair(
    db: Session,
    kind: MediationKind,
    requester_id: UUID,
    target_id: UUID,
) -> MediationRequest | None:
    return (
        db.query(MediationRequest)
        .filter(
            MediationRequest.kind == kind.value,
            MediationRequest.requester_id == requester_id,
            MediationRequest.target_id == target_id,
            MediationRequest.status.notin_([s.value for s in TERMINAL_STATUSES]),
        )
        .first()
    )


def can_view(actor: ActorSession, request: MediationRequest) -> bool:
    if actor.is_admin or request.requester_id == actor.account_id:
        return True
    return request.target_id == actor.account_id and request.shared_with_target_at is not None


def get_for_actor(db: Session, actor: ActorSession, request_id: UUID) -> MediationRequest:
    """
    Load a request visible to the actor.

    Targets only see a request once staff have shared it with them.
    """
    request = get_request(db, request_id)
    if not request or not can_view(actor, request):
        raise NotFound("Request not found")
    return request


def list_requested(
    db: Session,
    actor: ActorSession,
    pagination: PaginationParams,
    kind: MediationKind | None = None,
    status: MediationStatus | None = None,
) -> tuple[list[MediationRequest], int]:
    """Requests the actor opened."""
    query = db.query(MediationRequest).filter(MediationRequest.requester_id == actor.account_id)
    return _filtered_page(query, pagination, kind, status)


def list_incoming(
    db: Session,
    actor: ActorSession,
    pagination: PaginationParams,
    kind: MediationKind | None = None,
) -> tuple[list[MediationRequest], int]:
    """Requests addressed to the actor that staff have shared."""
    query = db.query(MediationRequest).filter(
        MediationRequest.target_id == actor.account_id,
        MediationRequest.shared_with_target_at.is_not(None),
    )
    return _filtered_page(query, pagination, kind, None)


def list_review_queue(
    db: Session,
    actor: ActorSession,
    pagination: PaginationParams,
    kind: MediationKind | None = None,
    status: MediationStatus | None = None,
) -> tuple[list[MediationRequest], int]:
    """Requests waiting on staff (oldest first)."""
    if not actor.is_admin:
        raise Unauthorized("Staff only")
    query = db.query(MediationRequest)
    if status is None:
        query = query.filter(MediationRequest.status.in_([s.value for s in REVIEW_QUEUE_STATUSES]))
    return _filtered_page(query, pagination, kind, status, oldest_first=True)


def list_all(
    db: Session,
    actor: ActorSession,
    pagination: PaginationParams,
    kind: MediationKind | None = None,
    status: MediationStatus | None = None,
) -> tuple[list[MediationRequest], int]:
    """Every request regardless of status (superadmin oversight)."""
    if not actor.is_superadmin:
        raise Unauthorized("Superadmin only")
    return _filtered_page(db.query(MediationRequest), pagination, kind, status)


def _filtered_page(query, pagination, kind, status, oldest_first: bool = False):
    if kind:
        query = query.filter(MediationRequest.kind == kind.value)
    if status:
        query = query.filter(MediationRequest.status == status.value)
    order = MediationRequest.created_at.asc() if oldest_first else MediationRequest.created_at.desc()
    return paginate_query(query.order_by(order, MediationRequest.id), pagination)


# =============================================================================
# Submit
# =============================================================================


def submit_request(
    db: Session,
    actor: ActorSession,
    kind: MediationKind,
    target_id: UUID,
    payload: dict,
) -> MediationRequest:
    """
    Open a new mediation request.

    Raises:
        Unauthorized: actor's role cannot open requests
        ValidationError: bad payload, self-addressed, or target not available
        DuplicatePending: an active request of this kind exists for the pair
    """
    if actor.role not in ROLES_CAN_REQUEST:
        raise Unauthorized("Role cannot open requests")
    if target_id == actor.account_id:
        raise ValidationError("Cannot address a request to yourself")

    normalized = validate_payload(kind, payload)

    requester = db.get(Account, actor.account_id)
    target = db.get(Account, target_id)
    if not requester or not target or not target.is_active:
        raise ValidationError("Target is not available")
    if Role(target.role) not in ROLES_CAN_REQUEST:
        raise ValidationError("Target is not available")

    if get_active_for_pair(db, kind, actor.account_id, target_id):
        raise DuplicatePending()

    # Aliases are bound up front so later side effects never allocate mid-transaction
    alias_service.ensure_alias(db, requester)
    alias_service.ensure_alias(db, target)

    status = INITIAL_STATUS_BY_KIND[kind]
    request = MediationRequest(
        kind=kind.value,
        requester_id=actor.account_id,
        target_id=target_id,
        payload=normalized,
        status=status.value,
    )
    try:
        db.add(request)
        db.flush()
        _append_history(
            db,
            request,
            actor_id=actor.account_id,
            action=MediationAction.SUBMITTED,
            from_status=None,
            to_status=status,
        )
        notification_service.notify_request_submitted(db, request)
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        # Lost the race against a concurrent submit for the same pair
        raise DuplicatePending() from exc
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Request submit failed")
        raise ServerError() from exc

    db.refresh(request)
    logger.info(
        "Mediation request submitted",
        extra={"request_id": str(request.id), "account_id": str(actor.account_id), "kind": kind.value},
    )
    return request


# =============================================================================
# Transition
# =============================================================================


def transition(
    db: Session,
    actor: ActorSession,
    request_id: UUID,
    to_status: str | MediationStatus,
    expected_status: str | MediationStatus,
    *,
    note: str | None = None,
    admin_edited_payload: str | None = None,
    counterparty_response: str | None = None,
    scheduled_for: datetime | None = None,
    meeting_url: str | None = None,
    payload: dict | None = None,
) -> MediationRequest:
    """
    Move a request to ``to_status`` if it is still at ``expected_status``.

    Raises:
        NotFound: request not visible to the actor
        ValidationError: unknown status, bad resubmitted payload, missing schedule
        InvalidTransition: not an edge of the state machine (or terminal)
        Unauthorized: actor may not take this edge or edit the payload
        StaleState: status changed since the caller read it
    """
    request = get_for_actor(db, actor, request_id)
    target = parse_status(to_status)
    expected = parse_status(expected_status)
    kind = MediationKind(request.kind)
    current = MediationStatus(request.status)

    if current != expected:
        raise StaleState()

    is_requester = request.requester_id == actor.account_id
    is_target = request.target_id == actor.account_id

    if is_requester and mediation_graph.is_cancellation(expected, target):
        action = MediationAction.CANCELLED
    else:
        rule = mediation_graph.required_actor(kind, expected, target)
        if not mediation_graph.actor_satisfies(
            rule, is_admin=actor.is_admin, is_requester=is_requester, is_target=is_target
        ):
            logger.warning(
                "Mediation transition denied",
                extra={
                    "request_id": str(request.id),
                    "account_id": str(actor.account_id),
                    "from_status": expected.value,
                    "to_status": target.value,
                },
            )
            raise Unauthorized(f"Not allowed to move request to '{target.value}'")
        action = (
            MediationAction.RESUBMITTED
            if expected == MediationStatus.REVISION_REQUESTED
            else MediationAction.TRANSITIONED
        )

    if admin_edited_payload is not None and not actor.is_admin:
        raise Unauthorized("Only staff can edit the forwarded payload")

    values: dict = {"status": target.value, "updated_at": utcnow()}
    if admin_edited_payload is not None:
        values["admin_edited_payload"] = admin_edited_payload
    if target == MediationStatus.COUNTERPARTY_RESPONDED:
        values["counterparty_response"] = counterparty_response
    if target == MediationStatus.SCHEDULED:
        if scheduled_for is None:
            raise ValidationError("scheduled_for is required to schedule a call")
        values["scheduled_for"] = scheduled_for
        values["meeting_url"] = meeting_url
    if action == MediationAction.RESUBMITTED and payload is not None:
        values["payload"] = validate_payload(kind, payload)
    if action == MediationAction.CANCELLED:
        values["close_reason"] = CANCELLED_REASON
    elif target in TERMINAL_STATUSES:
        values["close_reason"] = target.value
    if target in TARGET_VISIBLE_STATUSES and request.shared_with_target_at is None:
        values["shared_with_target_at"] = utcnow()

    opens_channel = mediation_graph.opens_channel(kind, target)
    if opens_channel:
        # Bind aliases before staging anything (ensure_alias commits)
        alias_service.ensure_alias_for(db, request.requester_id)
        alias_service.ensure_alias_for(db, request.target_id)

    try:
        result = db.execute(
            update(MediationRequest)
            .where(
                MediationRequest.id == request.id,
                MediationRequest.status == expected.value,
            )
            .values(**values)
            .execution_options(synchronize_session="fetch")
        )
        if result.rowcount == 0:
            db.rollback()
            raise StaleState()

        sequence = _append_history(
            db,
            request,
            actor_id=actor.account_id,
            action=action,
            from_status=expected,
            to_status=target,
            note=note,
        )
        _apply_side_effects(db, actor, request, target, opens_channel)
        notification_service.notify_request_status_changed(db, request, target, sequence)
        db.commit()
    except MediationError:
        db.rollback()
        raise
    except IntegrityError as exc:
        # History sequence taken by a concurrent writer
        db.rollback()
        raise StaleState() from exc
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Mediation transition failed", extra={"request_id": str(request_id)})
        raise ServerError() from exc

    db.refresh(request)
    logger.info(
        "Mediation request transitioned",
        extra={
            "request_id": str(request.id),
            "account_id": str(actor.account_id),
            "from_status": expected.value,
            "to_status": target.value,
        },
    )
    return request


def cancel_request(
    db: Session,
    actor: ActorSession,
    request_id: UUID,
    expected_status: str | MediationStatus | None = None,
) -> MediationRequest:
    """
    Requester withdraws a live request: closed-rejected with reason cancelled.

    The linked conversation closes in the same transaction unless another
    live request still shares it.
    """
    request = get_for_actor(db, actor, request_id)
    if request.requester_id != actor.account_id:
        raise Unauthorized("Only the requester can cancel")
    current = MediationStatus(request.status)
    if current in TERMINAL_STATUSES:
        raise InvalidTransition(f"'{current.value}' is terminal")
    return transition(
        db,
        actor,
        request_id,
        MediationStatus.CLOSED_REJECTED,
        expected_status or current,
    )


def _append_history(
    db: Session,
    request: MediationRequest,
    *,
    actor_id: UUID | None,
    action: MediationAction,
    from_status: MediationStatus | None,
    to_status: MediationStatus,
    note: str | None = None,
) -> int:
    last = db.scalar(
        select(func.max(MediationRequestEvent.sequence)).where(
            MediationRequestEvent.request_id == request.id
        )
    )
    sequence = (last or 0) + 1
    db.add(
        MediationRequestEvent(
            request_id=request.id,
            sequence=sequence,
            actor_id=actor_id,
            action=action.value,
            from_status=from_status.value if from_status else None,
            to_status=to_status.value,
            note=note,
        )
    )
    db.flush()
    return sequence


def _apply_side_effects(
    db: Session,
    actor: ActorSession,
    request: MediationRequest,
    target: MediationStatus,
    opens_channel: bool,
) -> None:
    if opens_channel:
        requester = db.get(Account, request.requester_id)
        counterparty = db.get(Account, request.target_id)
        conversation, _ = conversation_service.open_for_pair(db, requester, counterparty)
        request.conversation_id = conversation.id
        db.flush()
    elif target in CHANNEL_CLOSING_STATUSES and request.conversation_id:
        if _channel_held_elsewhere(db, request):
            logger.info(
                "Conversation kept open for another request",
                extra={"conversation_id": str(request.conversation_id), "request_id": str(request.id)},
            )
            return
        conversation_service.close_within(db, request.conversation_id, actor.account_id)


def _channel_held_elsewhere(db: Session, request: MediationRequest) -> bool:
    """True when another request sharing the conversation was not turned down."""
    closing = [status.value for status in CHANNEL_CLOSING_STATUSES]
    other = db.scalar(
        select(MediationRequest.id)
        .where(
            MediationRequest.conversation_id == request.conversation_id,
            MediationRequest.id != request.id,
            MediationRequest.status.not_in(closing),
        )
        .limit(1)
    )
    return other is not None


# =============================================================================
# Presentation
# =============================================================================


def present_request(db: Session, request: MediationRequest, include_history: bool = True) -> dict:
    """Requester / staff view. Parties are named by alias."""
    data = {
        "id": request.id,
        "kind": request.kind,
        "status": request.status,
        "requester_alias": alias_service.resolve_alias(db, request.requester_id),
        "target_alias": alias_service.resolve_alias(db, request.target_id),
        "payload": request.payload,
        "admin_edited_payload": request.admin_edited_payload,
        "counterparty_response": request.counterparty_response,
        "close_reason": request.close_reason,
        "scheduled_for": request.scheduled_for,
        "meeting_url": request.meeting_url,
        "conversation_id": request.conversation_id,
        "created_at": request.created_at,
        "updated_at": request.updated_at,
        "history": [],
    }
    if include_history:
        data["history"] = [
            {
                "sequence": entry.sequence,
                "actor_alias": alias_service.resolve_alias(db, entry.actor_id) if entry.actor_id else None,
                "action": entry.action,
                "from_status": entry.from_status,
                "to_status": entry.to_status,
                "note": entry.note,
                "created_at": entry.created_at,
            }
            for entry in request.history
        ]
    return data


def present_for_target(db: Session, request: MediationRequest) -> dict:
    """
    Counterparty view: the staff-edited text when present, never the raw payload.
    """
    message = request.admin_edited_payload
    if message is None:
        message = (request.payload or {}).get("message")
    return {
        "id": request.id,
        "kind": request.kind,
        "status": request.status,
        "requester_alias": alias_service.resolve_alias(db, request.requester_id),
        "message": message,
        "counterparty_response": request.counterparty_response,
        "scheduled_for": request.scheduled_for,
        "meeting_url": request.meeting_url,
        "conversation_id": request.conversation_id,
        "created_at": request.created_at,
    }


def present_for_actor(db: Session, actor: ActorSession, request: MediationRequest) -> dict:
    if actor.is_admin or request.requester_id == actor.account_id:
        return present_request(db, request)
    return present_for_target(db, request)
