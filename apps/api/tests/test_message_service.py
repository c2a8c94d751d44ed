"""Tests for message send orchestration and realtime fan-out."""

import pytest

from app.core.errors import ChannelSuspended, NotFound, RateLimited, ValidationError
from app.core.rate_limit import EventRateLimiter
from app.db.enums import DisclosureBasis, GateState, Role
from app.services import conversation_service, message_service


@pytest.fixture
def limiter():
    return EventRateLimiter(events=100, window_seconds=60)


@pytest.mark.asyncio
async def test_budget_exhaustion_with_alternating_senders(
    db, open_channel, investor, founder, admin, transport, connect, limiter, budget
):
    conversation_id = open_channel()
    investor_ws = await connect(investor)
    founder_ws = await connect(founder)
    admin_ws = await connect(admin)
    senders = [investor, founder]

    for i in range(budget):
        message, outcome = await message_service.send_message(
            db, senders[i % 2].actor, conversation_id, f"message {i}",
            transport=transport, limiter=limiter,
        )
        assert message.delivered is True

    assert "approvalNeeded" in admin_ws.types()
    assert "limitReached" in investor_ws.types()
    assert "approvalNeeded" in founder_ws.types()

    with pytest.raises(ChannelSuspended):
        await message_service.send_message(
            db, investor.actor, conversation_id, "one more",
            transport=transport, limiter=limiter,
        )
    assert investor_ws.types()[-1] == "limitReached"

    await message_service.approve_channel(db, admin.actor, conversation_id, transport=transport)
    assert "adminApproved" in investor_ws.types()
    assert "adminApproved" in admin_ws.types()

    message, outcome = await message_service.send_message(
        db, investor.actor, conversation_id, "back again",
        transport=transport, limiter=limiter,
    )
    assert outcome.count == 1
    assert outcome.gate_state == GateState.OPEN.value


@pytest.mark.asyncio
async def test_delivery_receipt_only_when_other_party_online(
    db, open_channel, investor, founder, transport, connect, limiter
):
    conversation_id = open_channel()
    investor_ws = await connect(investor)

    message, _ = await message_service.send_message(
        db, investor.actor, conversation_id, "anyone there?",
        transport=transport, limiter=limiter,
    )
    assert message.delivered is False
    assert investor_ws.types() == ["chatMessage"]

    founder_ws = await connect(founder)
    message, _ = await message_service.send_message(
        db, investor.actor, conversation_id, "now?",
        transport=transport, limiter=limiter,
    )
    db.refresh(message)
    assert message.delivered is True
    assert investor_ws.types()[-1] == "messageDelivered"
    assert founder_ws.sent[-1]["data"]["content"] == "now?"


@pytest.mark.asyncio
async def test_no_identity_leak_while_locked(
    db, open_channel, investor, founder, transport, connect, limiter
):
    conversation_id = open_channel()
    founder_ws = await connect(founder)

    await message_service.send_message(
        db, investor.actor, conversation_id, "hi from the fund",
        transport=transport, limiter=limiter,
    )

    frame = founder_ws.sent[-1]
    assert frame["data"]["sender_alias"] == "Investor #INV001"
    serialized = str(frame)
    assert "Ivan Investor" not in serialized
    assert investor.account.email not in serialized
    assert str(investor.id) not in serialized

    conversation = conversation_service.get_for_actor(db, founder.actor, conversation_id)
    view = conversation_service.present_conversation(db, conversation)
    assert all("email" not in p and "display_name" not in p for p in view["participants"])
    assert all("account_id" not in p for p in view["participants"])
    assert str(investor.id) not in str(view)


@pytest.mark.asyncio
async def test_disclosure_unlock_broadcasts_identities(
    db, open_channel, investor, founder, admin, transport, connect
):
    conversation_id = open_channel()
    founder_ws = await connect(founder)

    await message_service.unlock_disclosure(
        db, admin.actor, conversation_id, DisclosureBasis.ADMIN, transport=transport
    )

    frame = founder_ws.sent[-1]
    assert frame["type"] == "disclosureUnlocked"
    names = {p.get("display_name") for p in frame["data"]["participants"]}
    assert "Ivan Investor" in names
    assert str(investor.id) in {str(p.get("account_id")) for p in frame["data"]["participants"]}


@pytest.mark.asyncio
async def test_rate_limit_checked_before_gate(db, open_channel, investor, transport):
    conversation_id = open_channel()
    tight = EventRateLimiter(events=2, window_seconds=60)

    for _ in range(2):
        await message_service.send_message(
            db, investor.actor, conversation_id, "quick", transport=transport, limiter=tight
        )
    with pytest.raises(RateLimited):
        await message_service.send_message(
            db, investor.actor, conversation_id, "too quick", transport=transport, limiter=tight
        )

    conversation = conversation_service.get_conversation(db, conversation_id)
    db.refresh(conversation)
    assert conversation.unsupervised_message_count == 2


@pytest.mark.asyncio
async def test_content_validation_and_membership(db, open_channel, make_party, investor, transport, limiter):
    conversation_id = open_channel()
    outsider = make_party(Role.FOUNDER)

    with pytest.raises(ValidationError):
        await message_service.send_message(
            db, investor.actor, conversation_id, "   ", transport=transport, limiter=limiter
        )
    with pytest.raises(ValidationError):
        await message_service.send_message(
            db, investor.actor, conversation_id, "x" * 1001, transport=transport, limiter=limiter
        )
    with pytest.raises(NotFound):
        await message_service.send_message(
            db, outsider.actor, conversation_id, "hello", transport=transport, limiter=limiter
        )


@pytest.mark.asyncio
async def test_history_pages_newest_first_oldest_within(
    db, open_channel, investor, founder, admin, transport, limiter
):
    conversation_id = open_channel()
    conversation_service.unlock_disclosure(db, conversation_id, DisclosureBasis.ADMIN, admin.actor)
    for i in range(5):
        await message_service.send_message(
            db, investor.actor, conversation_id, f"m{i}", transport=transport, limiter=limiter
        )

    page1, pagination = conversation_service.get_history(db, founder.actor, conversation_id, page=1, limit=2)
    page3, _ = conversation_service.get_history(db, founder.actor, conversation_id, page=3, limit=2)

    assert [m.content for m in page1] == ["m3", "m4"]
    assert [m.content for m in page3] == ["m0"]
    assert pagination == {
        "current_page": 1,
        "total_pages": 3,
        "total_messages": 5,
        "has_next": True,
    }


@pytest.mark.asyncio
async def test_mark_as_read_notifies_sender(
    db, open_channel, investor, founder, transport, connect, limiter
):
    conversation_id = open_channel()
    investor_ws = await connect(investor)
    message, _ = await message_service.send_message(
        db, investor.actor, conversation_id, "read me", transport=transport, limiter=limiter
    )

    # Own messages are never marked
    assert await message_service.mark_as_read(db, investor.actor, conversation_id, transport=transport) == []

    ids = await message_service.mark_as_read(db, founder.actor, conversation_id, transport=transport)
    assert ids == [message.id]
    assert investor_ws.sent[-1]["type"] == "messageRead"
    assert investor_ws.sent[-1]["data"]["reader_alias"] == "Founder #FNB001"
    assert str(founder.id) not in str(investor_ws.sent[-1])


@pytest.mark.asyncio
async def test_close_broadcasts_and_is_idempotent(
    db, open_channel, investor, founder, transport, connect
):
    conversation_id = open_channel()
    founder_ws = await connect(founder)

    conversation, changed = await message_service.close_conversation(
        db, investor.actor, conversation_id, transport=transport
    )
    assert changed is True
    assert conversation.gate_state == GateState.CLOSED.value
    assert founder_ws.types() == ["conversationClosed"]

    _, changed = await message_service.close_conversation(
        db, investor.actor, conversation_id, transport=transport
    )
    assert changed is False
    assert founder_ws.types() == ["conversationClosed"]


@pytest.mark.asyncio
async def test_typing_goes_to_others_only(db, open_channel, investor, founder, transport, connect):
    conversation_id = open_channel()
    investor_ws = await connect(investor)
    founder_ws = await connect(founder)

    await message_service.relay_typing(db, investor.actor, conversation_id, True, transport=transport)

    assert investor_ws.sent == []
    assert founder_ws.sent[0]["data"] == {
        "conversation_id": str(conversation_id),
        "alias": "Investor #INV001",
        "is_typing": True,
    }
