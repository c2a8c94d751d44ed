"""Tests for the mediation transition graph."""

import pytest

from app.core import mediation_graph
from app.core.errors import InvalidTransition
from app.db.enums import TERMINAL_STATUSES, MediationKind, MediationStatus

S = MediationStatus


def test_interest_cannot_skip_review_to_disclosure():
    assert S.APPROVED_DISCLOSED not in mediation_graph.allowed_targets(
        MediationKind.PRODUCT_INTEREST, S.SUBMITTED
    )
    with pytest.raises(InvalidTransition):
        mediation_graph.required_actor(MediationKind.COMMUNICATION, S.SUBMITTED, S.APPROVED_DISCLOSED)


def test_approved_disclosed_only_reachable_from_review():
    for kind in (MediationKind.PRODUCT_INTEREST, MediationKind.COMMUNICATION):
        sources = [
            source
            for source, edges in mediation_graph.TRANSITIONS_BY_KIND[kind].items()
            if S.APPROVED_DISCLOSED in edges
        ]
        assert sources == [S.ADMIN_REVIEWING_RESPONSE]


def test_edge_actors():
    kind = MediationKind.PRODUCT_INTEREST
    assert mediation_graph.required_actor(kind, S.SUBMITTED, S.FORWARDED_TO_COUNTERPARTY) == "admin"
    assert mediation_graph.required_actor(kind, S.FORWARDED_TO_COUNTERPARTY, S.COUNTERPARTY_RESPONDED) == "target"
    assert mediation_graph.required_actor(kind, S.REVISION_REQUESTED, S.SUBMITTED) == "requester"


def test_terminal_statuses_have_no_exits():
    for kind in MediationKind:
        for status in TERMINAL_STATUSES:
            assert mediation_graph.allowed_targets(kind, status) == set()
            with pytest.raises(InvalidTransition):
                mediation_graph.required_actor(kind, status, S.SUBMITTED)


def test_call_workflow_is_linear():
    kind = MediationKind.CALL
    assert mediation_graph.allowed_targets(kind, S.PENDING) == {S.APPROVED, S.REJECTED}
    assert mediation_graph.allowed_targets(kind, S.APPROVED) == {S.SCHEDULED}
    assert mediation_graph.allowed_targets(kind, S.SCHEDULED) == {S.COMPLETED}


def test_cancellation_from_any_live_status():
    assert mediation_graph.is_cancellation(S.SUBMITTED, S.CLOSED_REJECTED)
    assert mediation_graph.is_cancellation(S.SCHEDULED, S.CLOSED_REJECTED)
    assert not mediation_graph.is_cancellation(S.REJECTED, S.CLOSED_REJECTED)
    assert not mediation_graph.is_cancellation(S.SUBMITTED, S.REJECTED)


def test_actor_satisfies():
    assert mediation_graph.actor_satisfies("admin", is_admin=True, is_requester=False, is_target=False)
    assert not mediation_graph.actor_satisfies("admin", is_admin=False, is_requester=True, is_target=True)
    assert mediation_graph.actor_satisfies("target", is_admin=False, is_requester=False, is_target=True)
    assert not mediation_graph.actor_satisfies("unknown", is_admin=True, is_requester=True, is_target=True)


def test_only_communication_opens_channel():
    assert mediation_graph.opens_channel(MediationKind.COMMUNICATION, S.FORWARDED_TO_COUNTERPARTY)
    assert mediation_graph.opens_channel(MediationKind.COMMUNICATION, S.APPROVED_DISCLOSED)
    assert not mediation_graph.opens_channel(MediationKind.PRODUCT_INTEREST, S.FORWARDED_TO_COUNTERPARTY)
    assert not mediation_graph.opens_channel(MediationKind.CALL, S.APPROVED)


def test_role_specific_status_names():
    assert MediationStatus("founder-responded") == S.COUNTERPARTY_RESPONDED
    assert MediationStatus("investor-responded") == S.COUNTERPARTY_RESPONDED
