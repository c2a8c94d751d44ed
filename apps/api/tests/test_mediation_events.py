"""Realtime fan-out of mediation request events."""

import pytest

from app.db.enums import MediationKind, MediationStatus as S
from app.services import mediation_events, mediation_service


@pytest.fixture
def request_(db, investor, founder, payloads):
    return mediation_service.submit_request(
        db,
        investor.actor,
        MediationKind.COMMUNICATION,
        founder.id,
        payloads[MediationKind.COMMUNICATION],
    )


@pytest.mark.asyncio
async def test_submitted_event_reaches_admin_room_only(db, connect, transport, request_, investor, founder, admin):
    investor_ws, founder_ws, admin_ws = await connect(investor), await connect(founder), await connect(admin)

    event = mediation_events.build_submitted_event(db, request_)
    await mediation_events.publish_submitted(event, transport)

    assert admin_ws.types() == ["formSubmitted"]
    data = admin_ws.sent[0]["data"]
    assert data["requester_alias"] == "Investor #INV001"
    assert data["status"] == S.SUBMITTED.value
    assert str(investor.id) not in str(data)
    assert investor.account.email not in str(data)
    assert investor_ws.sent == []
    assert founder_ws.sent == []


@pytest.mark.asyncio
async def test_status_change_hidden_from_target_before_sharing(
    db, connect, transport, request_, investor, founder, admin
):
    investor_ws, founder_ws, admin_ws = await connect(investor), await connect(founder), await connect(admin)
    reviewing = mediation_service.transition(db, admin.actor, request_.id, S.ADMIN_REVIEWING, S.SUBMITTED)

    recipients = mediation_events.status_recipients(reviewing)
    await mediation_events.publish_status_changed(
        recipients, mediation_events.build_status_event(db, reviewing), transport
    )

    assert recipients == [investor.id]
    assert investor_ws.types() == ["statusChanged"]
    assert founder_ws.sent == []
    assert admin_ws.types() == ["statusChanged"]


@pytest.mark.asyncio
async def test_forwarded_request_reaches_target_as_review_outcome(
    db, connect, transport, request_, investor, founder, admin
):
    investor_ws, founder_ws, admin_ws = await connect(investor), await connect(founder), await connect(admin)
    forwarded = mediation_service.transition(
        db, admin.actor, request_.id, S.FORWARDED_TO_COUNTERPARTY, S.SUBMITTED
    )

    recipients = mediation_events.status_recipients(forwarded)
    await mediation_events.publish_status_changed(
        recipients, mediation_events.build_status_event(db, forwarded), transport
    )

    assert set(recipients) == {investor.id, founder.id}
    assert investor_ws.types() == ["formReviewed"]
    assert founder_ws.types() == ["formReviewed"]
    assert founder_ws.sent[0]["data"]["conversation_id"] == str(forwarded.conversation_id)
    # Staff get the mirrored event as a plain status change
    assert admin_ws.types() == ["statusChanged"]
    assert admin_ws.sent[0]["data"] == founder_ws.sent[0]["data"]
