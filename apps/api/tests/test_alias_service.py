"""Tests for alias allocation and disclosure-aware presentation."""

from app.db.enums import DisclosureBasis, Role
from app.services import alias_service, conversation_service


def test_format_code_and_label():
    assert alias_service.format_code("FNB", 14) == "FNB014"
    assert alias_service.format_code("INV", 1234) == "INV1234"
    assert alias_service.format_label(Role.FOUNDER, "FNB014") == "Founder #FNB014"
    assert alias_service.format_label(Role.SUPERADMIN, "SAD001") == "Super Admin #SAD001"


def test_first_binding_per_prefix_starts_at_one(db, make_account):
    founder = make_account(Role.FOUNDER)
    investor = make_account(Role.INVESTOR)

    assert alias_service.ensure_alias(db, founder).code == "FNB001"
    assert alias_service.ensure_alias(db, investor).code == "INV001"


def test_ensure_alias_is_stable(db, make_account):
    founder = make_account(Role.FOUNDER)

    first = alias_service.ensure_alias(db, founder)
    second = alias_service.ensure_alias(db, founder)

    assert first.id == second.id
    assert second.label == "Founder #FNB001"


def test_released_number_is_reused_lowest_first(db, make_account):
    accounts = [make_account(Role.FOUNDER) for _ in range(3)]
    codes = [alias_service.ensure_alias(db, a).code for a in accounts]
    assert codes == ["FNB001", "FNB002", "FNB003"]

    assert alias_service.release_alias(db, accounts[1].id) is True
    newcomer = make_account(Role.FOUNDER)

    assert alias_service.ensure_alias(db, newcomer).code == "FNB002"
    # Existing holders keep their numbers
    assert alias_service.get_binding(db, accounts[2].id).code == "FNB003"


def test_release_without_binding_returns_false(db, make_account):
    account = make_account(Role.MENTOR)
    assert alias_service.release_alias(db, account.id) is False


def test_resolve_alias_unknown_account_is_none(db, make_account):
    account = make_account(Role.INVESTOR)
    assert alias_service.resolve_alias(db, account.id) is None


def test_participant_label_wins_inside_conversation(db, open_channel, investor, make_account):
    conversation_id = open_channel()
    original = alias_service.get_binding(db, investor.id).label

    # Release; another investor takes the freed number and this one rebinds higher
    alias_service.release_alias(db, investor.id)
    alias_service.ensure_alias(db, make_account(Role.INVESTOR))
    rebound = alias_service.ensure_alias(db, investor.account)

    assert original == "Investor #INV001"
    assert rebound.label == "Investor #INV002"
    assert alias_service.resolve_alias(db, investor.id, conversation_id) == original
    assert alias_service.resolve_alias(db, investor.id) == rebound.label


def test_present_account_hides_identity_until_unlocked(db, open_channel, investor, admin):
    conversation_id = open_channel()
    conversation = conversation_service.get_conversation(db, conversation_id)

    locked = alias_service.present_account(db, investor.account, conversation)
    assert locked["alias"] == "Investor #INV001"
    assert "email" not in locked
    assert "display_name" not in locked
    assert "account_id" not in locked
    assert alias_service.can_disclose(db, conversation_id) is False

    conversation_service.unlock_disclosure(db, conversation_id, DisclosureBasis.ADMIN, admin.actor)
    db.refresh(conversation)

    unlocked = alias_service.present_account(db, investor.account, conversation)
    assert unlocked["display_name"] == "Ivan Investor"
    assert unlocked["email"] == investor.account.email
    assert unlocked["account_id"] == str(investor.id)
    assert alias_service.can_disclose(db, conversation_id) is True


def test_present_account_without_conversation_is_alias_only(db, make_account):
    account = make_account(Role.FOUNDER, name="Real Name")
    alias_service.ensure_alias(db, account)

    view = alias_service.present_account(db, account)

    assert view["alias"] == "Founder #FNB001"
    assert "display_name" not in view
