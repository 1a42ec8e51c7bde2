from datetime import datetime

import pytest

from conftest import NOW
from mocards.records import (
    CARD_ACTIVATED,
    CARD_EXPIRED,
    CARD_PENDING_LOCATION,
    CARD_READY,
    CARD_UNASSIGNED,
    TX_ACTIVATED,
    TX_CREATED,
    TX_LOCATION_ASSIGNED,
    TX_PERK_CLAIMED,
)
from mocards.services import clinic_service, ledger_service, lifecycle_service, lookup_service, perk_service
from mocards.services.errors import CardNotFoundError, ClinicNotFoundError, ValidationError


def test_lookup_hides_passcodes(repo, make_clinic, ready_card):
    clinic = make_clinic()
    card, _passcode = ready_card(clinic)

    payload = lookup_service.lookup_card(card.control_number.lower(), repo=repo, now=NOW)

    assert payload["control_number"] == card.control_number
    assert payload["status"] == CARD_READY
    assert "passcode" not in payload
    assert "incomplete_passcode" not in payload
    assert payload["is_expired"] is False
    assert payload["perks_remaining"] == 8
    assert len(payload["perks"]) == 8


def test_lookup_reports_expiry_without_writing(repo, make_clinic, activated_card):
    clinic = make_clinic()
    card = activated_card(clinic, now=datetime(2025, 1, 1, 0, 0, 0))

    payload = lookup_service.lookup_card(card.control_number, repo=repo, now=NOW)

    assert payload["status"] == CARD_EXPIRED
    assert payload["is_expired"] is True
    assert repo.get_card(card.id).status == CARD_ACTIVATED


def test_lookup_unknown_card(repo):
    with pytest.raises(CardNotFoundError):
        lookup_service.lookup_card("MOC-00000000-001", repo=repo, now=NOW)


def test_expire_due_cards(repo, make_clinic, activated_card):
    clinic = make_clinic()
    old = activated_card(clinic, now=datetime(2025, 1, 1, 0, 0, 0))
    fresh = activated_card(clinic)

    assert lifecycle_service.expire_due_cards(now=NOW, repo=repo) == 1
    assert repo.get_card(old.id).status == CARD_EXPIRED
    assert repo.get_card(fresh.id).status == CARD_ACTIVATED
    # Nothing left to do on a second sweep
    assert lifecycle_service.expire_due_cards(now=NOW, repo=repo) == 0


def test_card_still_valid_at_the_expiry_instant(repo, make_clinic, activated_card):
    clinic = make_clinic()
    card = activated_card(clinic, now=datetime(2025, 3, 15, 12, 0, 0))
    assert card.expires_at == NOW

    assert lookup_service.lookup_card(card.control_number, repo=repo, now=NOW)["is_expired"] is False
    assert lifecycle_service.expire_due_cards(now=NOW, repo=repo) == 0

    later = datetime(2026, 3, 15, 12, 0, 1)
    assert lookup_service.lookup_card(card.control_number, repo=repo, now=later)["is_expired"] is True
    assert lifecycle_service.expire_due_cards(now=later, repo=repo) == 1


def test_card_history_is_ordered(repo, make_clinic, activated_card):
    clinic = make_clinic()
    card = activated_card(clinic)
    perk = perk_service.resolve_perk(card.id, "xray", repo=repo)
    perk_service.redeem_perk(clinic.id, card.id, perk.id, repo=repo, now=datetime(2026, 4, 2))

    history = lookup_service.card_history(card.id, repo=repo)

    assert [t.transaction_type for t in history] == [TX_CREATED, TX_LOCATION_ASSIGNED, TX_ACTIVATED, TX_PERK_CLAIMED]
    assert [t.occurred_at for t in history] == sorted(t.occurred_at for t in history)
    assert history[-1].performed_by_id == str(clinic.id)

    with pytest.raises(CardNotFoundError):
        lookup_service.card_history(999999, repo=repo)


def test_ledger_rejects_unknown_types(repo, mint_cards):
    card = mint_cards(1)[0]
    with repo.transaction():
        with pytest.raises(ValidationError):
            ledger_service.append_card_event(repo, card_id=card.id, transaction_type="deleted", performed_by="admin")
        with pytest.raises(ValidationError):
            ledger_service.append_card_event(repo, card_id=card.id, transaction_type=TX_CREATED, performed_by="robot")


def test_status_transitions():
    assert lifecycle_service.can_transition(CARD_UNASSIGNED, CARD_PENDING_LOCATION)
    assert lifecycle_service.can_transition(CARD_READY, CARD_ACTIVATED)
    assert lifecycle_service.can_transition(CARD_ACTIVATED, CARD_EXPIRED)
    assert not lifecycle_service.can_transition(CARD_EXPIRED, CARD_ACTIVATED)
    assert not lifecycle_service.can_transition(CARD_ACTIVATED, CARD_READY)
    assert not lifecycle_service.can_transition(CARD_READY, CARD_READY)
    assert lifecycle_service.sources_for(CARD_ACTIVATED) == (CARD_UNASSIGNED, CARD_PENDING_LOCATION, CARD_READY)
    assert lifecycle_service.sources_for(CARD_READY) == (CARD_UNASSIGNED, CARD_PENDING_LOCATION)
    assert lifecycle_service.sources_for(CARD_UNASSIGNED) == ()
    with pytest.raises(ValidationError):
        lifecycle_service.validate_status("lost")


def test_clinic_sales_and_redemptions_newest_first(repo, make_clinic, activated_card):
    clinic = make_clinic()
    first = activated_card(clinic, now=datetime(2026, 3, 1), sale_amount_cents=500)
    second = activated_card(clinic, now=datetime(2026, 3, 10), sale_amount_cents=700)

    sales = lookup_service.clinic_sales(clinic.id, repo=repo)
    assert [s.card_id for s in sales] == [second.id, first.id]

    since = lookup_service.clinic_sales(clinic.id, since=datetime(2026, 3, 5), repo=repo)
    assert [s.card_id for s in since] == [second.id]

    with pytest.raises(ValidationError):
        lookup_service.clinic_redemptions(clinic.id, limit=0, repo=repo)


def test_dashboard_numbers(repo, make_clinic, activated_card):
    clinic = make_clinic(monthly_card_limit=10, commission_rate_bps=1000)
    activated_card(clinic, now=datetime(2026, 2, 20), sale_amount_cents=2000)
    this_month = activated_card(clinic, now=datetime(2026, 3, 2), sale_amount_cents=1500)
    activated_card(clinic, now=datetime(2026, 3, 3))
    perk = perk_service.resolve_perk(this_month.id, "cleaning", repo=repo)
    perk_service.redeem_perk(clinic.id, this_month.id, perk.id, repo=repo, now=datetime(2026, 3, 4))

    dashboard = clinic_service.get_clinic_dashboard(clinic.id, repo=repo, now=NOW)

    assert dashboard["period"] == "2026-03"
    assert dashboard["total_cards"] == 3
    assert dashboard["active_cards"] == 3
    assert dashboard["activations_this_month"] == 2
    assert dashboard["remaining_monthly_limit"] == 8
    assert dashboard["total_revenue_cents"] == 3500
    assert dashboard["monthly_revenue_cents"] == 1500
    assert dashboard["monthly_commission_cents"] == 150
    assert dashboard["total_perks_redeemed"] == 1
    assert dashboard["monthly_perks_redeemed"] == 1


def test_dashboard_unknown_clinic(repo):
    with pytest.raises(ClinicNotFoundError):
        clinic_service.get_clinic_dashboard(424242, repo=repo, now=NOW)


def test_create_clinic_and_verify_credentials(repo):
    clinic, credentials = clinic_service.create_clinic(
        "Smile Dental",
        subscription_plan="professional",
        contact_email="owner@smile.ph",
        repo=repo,
        now=NOW,
    )

    assert clinic.clinic_code.startswith("SMI")
    assert len(clinic.clinic_code) == 6
    assert clinic.monthly_card_limit == 500
    assert clinic.commission_rate_bps == 1200
    assert clinic.password_hash != credentials.password
    assert len(credentials.password) == 12

    verified = clinic_service.verify_clinic_credentials(clinic.clinic_code.lower(), credentials.password, repo=repo)
    assert verified is not None and verified.id == clinic.id
    assert clinic_service.verify_clinic_credentials(clinic.clinic_code, "wrong-password", repo=repo) is None
    assert clinic_service.verify_clinic_credentials("NOPE999", credentials.password, repo=repo) is None

    clinic_service.set_clinic_active(clinic.id, False, repo=repo)
    assert clinic_service.verify_clinic_credentials(clinic.clinic_code, credentials.password, repo=repo) is None


def test_short_clinic_name_padded():
    assert clinic_service.new_clinic_code("Dr Q")[:3] == "DRQ"
    assert clinic_service.new_clinic_code("A1")[:3] == "AXX"


def test_temporary_password_mixes_character_classes():
    password = clinic_service.new_temporary_password()
    assert any(c.isupper() for c in password)
    assert any(c.islower() for c in password)
    assert any(c.isdigit() for c in password)
    assert any(c in clinic_service.PASSWORD_SYMBOLS for c in password)


@pytest.mark.parametrize("kwargs", [
    {"clinic_name": "  "},
    {"clinic_name": "Smile", "subscription_plan": "platinum"},
    {"clinic_name": "Smile", "contact_email": "not-an-email"},
])
def test_create_clinic_validation(repo, kwargs):
    kwargs = dict(kwargs)
    name = kwargs.pop("clinic_name")
    with pytest.raises(ValidationError):
        clinic_service.create_clinic(name, repo=repo, now=NOW, **kwargs)
    assert repo.list_clinics() == []
