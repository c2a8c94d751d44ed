"""Mediation request API endpoints (interest, communication and call requests)."""

from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request, status
from sqlalchemy.orm import Session

from app.core.deps import get_current_session, get_db, require_roles
from app.core.rate_limit import limiter
from app.db.enums import ROLES_CAN_OVERSEE, ROLES_CAN_REVIEW, MediationKind
from app.schemas.auth import ActorSession
from app.schemas.mediation import (
    CounterpartyRequestListResponse,
    CounterpartyRequestRead,
    MediationCancel,
    MediationRequestCreate,
    MediationRequestListResponse,
    MediationRequestRead,
    MediationTransition,
)
from app.services import mediation_events, mediation_service
from app.utils.pagination import PaginatedResponse, PaginationParams, get_pagination

router = APIRouter(prefix="/requests", tags=["requests"])


def _status_filter(value: str | None):
    return mediation_service.parse_status(value) if value else None


def _page(items: list[dict], total: int, pagination: PaginationParams) -> dict:
    page = PaginatedResponse.create(items, total, pagination)
    return {
        "items": page.items,
        "total": page.total,
        "page": page.page,
        "per_page": page.per_page,
        "pages": page.pages,
    }


@router.post("", response_model=MediationRequestRead, status_code=status.HTTP_201_CREATED)
@limiter.limit("10/minute")
def submit_request(
    request: Request,
    data: MediationRequestCreate,
    background_tasks: BackgroundTasks,
    session: ActorSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    """Open a request. It starts at submitted (calls: pending) and waits for staff."""
    created = mediation_service.submit_request(
        db, session, data.kind, data.target_id, data.payload
    )
    background_tasks.add_task(
        mediation_events.publish_submitted,
        mediation_events.build_submitted_event(db, created),
    )
    return mediation_service.present_request(db, created)


@router.get("/mine", response_model=MediationRequestListResponse)
def list_my_requests(
    kind: MediationKind | None = None,
    status_filter: str | None = Query(None, alias="status"),
    pagination: PaginationParams = Depends(get_pagination),
    session: ActorSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    """Requests the current account opened."""
    items, total = mediation_service.list_requested(
        db, session, pagination, kind, _status_filter(status_filter)
    )
    return _page([mediation_service.present_request(db, r, include_history=False) for r in items], total, pagination)


@router.get("/incoming", response_model=CounterpartyRequestListResponse)
def list_incoming_requests(
    kind: MediationKind | None = None,
    pagination: PaginationParams = Depends(get_pagination),
    session: ActorSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    """Requests staff have forwarded to the current account."""
    items, total = mediation_service.list_incoming(db, session, pagination, kind)
    return _page([mediation_service.present_for_target(db, r) for r in items], total, pagination)


@router.get("/review-queue", response_model=MediationRequestListResponse)
def list_review_queue(
    kind: MediationKind | None = None,
    status_filter: str | None = Query(None, alias="status"),
    pagination: PaginationParams = Depends(get_pagination),
    session: ActorSession = Depends(require_roles(ROLES_CAN_REVIEW)),
    db: Session = Depends(get_db),
):
    """Requests waiting on staff, oldest first."""
    items, total = mediation_service.list_review_queue(
        db, session, pagination, kind, _status_filter(status_filter)
    )
    return _page([mediation_service.present_request(db, r, include_history=False) for r in items], total, pagination)


@router.get("/all", response_model=MediationRequestListResponse)
def list_all_requests(
    kind: MediationKind | None = None,
    status_filter: str | None = Query(None, alias="status"),
    pagination: PaginationParams = Depends(get_pagination),
    session: ActorSession = Depends(require_roles(ROLES_CAN_OVERSEE)),
    db: Session = Depends(get_db),
):
    """Every request (superadmin oversight)."""
    items, total = mediation_service.list_all(
        db, session, pagination, kind, _status_filter(status_filter)
    )
    return _page([mediation_service.present_request(db, r, include_history=False) for r in items], total, pagination)


@router.get("/{request_id}", response_model=MediationRequestRead | CounterpartyRequestRead)
def get_request(
    request_id: UUID,
    session: ActorSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    request = mediation_service.get_for_actor(db, session, request_id)
    return mediation_service.present_for_actor(db, session, request)


@router.post("/{request_id}/transition", response_model=MediationRequestRead | CounterpartyRequestRead)
def transition_request(
    request_id: UUID,
    data: MediationTransition,
    background_tasks: BackgroundTasks,
    session: ActorSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    """
    Move a request along the state machine.

    Returns 409 stale_state when the request is no longer at expected_status.
    """
    request = mediation_service.transition(
        db,
        session,
        request_id,
        data.to_status,
        data.expected_status,
        note=data.note,
        admin_edited_payload=data.admin_edited_payload,
        counterparty_response=data.counterparty_response,
        scheduled_for=data.scheduled_for,
        meeting_url=data.meeting_url,
        payload=data.payload,
    )
    background_tasks.add_task(
        mediation_events.publish_status_changed,
        mediation_events.status_recipients(request),
        mediation_events.build_status_event(db, request),
    )
    return mediation_service.present_for_actor(db, session, request)


@router.post("/{request_id}/cancel", response_model=MediationRequestRead)
def cancel_request(
    request_id: UUID,
    background_tasks: BackgroundTasks,
    data: MediationCancel | None = None,
    session: ActorSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    """Requester withdraws a live request (closes any linked conversation)."""
    request = mediation_service.cancel_request(
        db, session, request_id, data.expected_status if data else None
    )
    background_tasks.add_task(
        mediation_events.publish_status_changed,
        mediation_events.status_recipients(request),
        mediation_events.build_status_event(db, request),
    )
    return mediation_service.present_request(db, request)
