from datetime import datetime

import pytest

from conftest import NOW
from mocards.records import CARD_ACTIVATED, CARD_READY, TX_ACTIVATED, TX_CREATED, TX_LOCATION_ASSIGNED, CustomerInfo
from mocards.services import activation_service
from mocards.services.errors import (
    AlreadyActivatedError,
    CardExpiredError,
    CardNotFoundError,
    ClinicInactiveError,
    QuotaExceededError,
    ValidationError,
)


def _activate(repo, clinic, card, passcode, **kwargs):
    kwargs.setdefault("now", NOW)
    return activation_service.activate_card(clinic.id, card.control_number, passcode, repo=repo, **kwargs)


def test_activation_with_sale(repo, make_clinic, ready_card):
    clinic = make_clinic(commission_rate_bps=1000)
    card, passcode = ready_card(clinic)

    activated, sale = _activate(
        repo, clinic, card, passcode,
        customer=CustomerInfo(name="Maria Santos", phone="09170000000", email="maria@example.com"),
        sale_amount_cents=1000,
        payment_method="cash",
    )

    assert activated.status == CARD_ACTIVATED
    assert activated.activated_at == NOW
    assert activated.expires_at == datetime(2027, 3, 15, 12, 0, 0)
    assert activated.customer_name == "Maria Santos"
    assert activated.assigned_clinic_id == clinic.id

    assert sale.sale_amount_cents == 1000
    assert sale.commission_cents == 100
    assert sale.payment_method == "cash"
    assert sale.customer_email == "maria@example.com"

    refreshed = repo.get_clinic(clinic.id)
    assert refreshed.total_revenue_cents == 1000
    assert refreshed.activations_this_period == 1
    assert refreshed.quota_period == "2026-03"

    history = [t.transaction_type for t in repo.list_transactions(card.id)]
    assert history == [TX_CREATED, TX_LOCATION_ASSIGNED, TX_ACTIVATED]


def test_activation_without_sale_records_nothing(repo, make_clinic, ready_card):
    clinic = make_clinic()
    card, passcode = ready_card(clinic)

    _activated, sale = _activate(repo, clinic, card, passcode, sale_amount_cents=0)

    assert sale is None
    assert repo.list_sales(clinic.id) == []
    assert repo.get_clinic(clinic.id).total_revenue_cents == 0


def test_point_of_sale_activation_sets_location(repo, make_clinic, mint_cards):
    clinic = make_clinic()
    card = mint_cards(1)[0]

    activated, _sale = _activate(repo, clinic, card, "mnl" + card.incomplete_passcode)

    assert activated.status == CARD_ACTIVATED
    assert activated.location_code == "MNL"
    assert activated.passcode == "MNL" + card.incomplete_passcode

    entries = repo.list_transactions(card.id)
    assert [t.transaction_type for t in entries] == [TX_CREATED, TX_LOCATION_ASSIGNED, TX_ACTIVATED]
    assert entries[1].details["at_activation"] is True


def test_triple_mismatch_is_not_found(repo, make_clinic, ready_card):
    owner = make_clinic()
    other = make_clinic()
    card, passcode = ready_card(owner, location_code="CAV")
    wrong_digits = "CAV" + ("0000" if card.incomplete_passcode != "0000" else "1111")

    with pytest.raises(CardNotFoundError):
        _activate(repo, owner, card, wrong_digits)
    with pytest.raises(CardNotFoundError):
        _activate(repo, owner, card, "MNL" + card.incomplete_passcode)
    with pytest.raises(CardNotFoundError):
        _activate(repo, other, card, passcode)
    with pytest.raises(CardNotFoundError):
        activation_service.activate_card(owner.id, "MOC-99999999-001", passcode, repo=repo, now=NOW)

    assert repo.get_card(card.id).status == CARD_READY
    assert repo.get_clinic(owner.id).activations_this_period == 0


def test_second_activation_rejected(repo, make_clinic, ready_card):
    clinic = make_clinic()
    card, passcode = ready_card(clinic)
    first, _sale = _activate(repo, clinic, card, passcode)

    with pytest.raises(AlreadyActivatedError):
        _activate(repo, clinic, card, passcode)

    assert repo.get_card(card.id).activated_at == first.activated_at
    assert repo.get_clinic(clinic.id).activations_this_period == 1


def test_expired_card_cannot_be_activated(repo, make_clinic, ready_card):
    clinic = make_clinic()
    card, passcode = ready_card(clinic)
    _activate(repo, clinic, card, passcode, now=datetime(2024, 3, 15, 12, 0, 0))

    with pytest.raises(CardExpiredError):
        _activate(repo, clinic, card, passcode)


def test_monthly_quota(repo, make_clinic, ready_card):
    clinic = make_clinic(monthly_card_limit=1)
    first, first_passcode = ready_card(clinic)
    second, second_passcode = ready_card(clinic)

    _activate(repo, clinic, first, first_passcode)
    with pytest.raises(QuotaExceededError):
        _activate(repo, clinic, second, second_passcode)
    assert repo.get_card(second.id).status == CARD_READY

    # Next calendar month has a fresh quota
    activated, _sale = _activate(repo, clinic, second, second_passcode, now=datetime(2026, 4, 1, 0, 0, 0))
    assert activated.status == CARD_ACTIVATED
    refreshed = repo.get_clinic(clinic.id)
    assert refreshed.quota_period == "2026-04"
    assert refreshed.activations_this_period == 1


def test_late_request_from_previous_month_cannot_reset_quota(repo, make_clinic, ready_card):
    clinic = make_clinic(monthly_card_limit=1)
    cards = [ready_card(clinic) for _ in range(4)]

    _activate(repo, clinic, *cards[0], now=datetime(2026, 1, 15, 9, 0, 0))
    _activate(repo, clinic, *cards[1], now=datetime(2026, 2, 1, 9, 0, 0))

    # Stamped in January but committed after February's first activation
    with pytest.raises(QuotaExceededError):
        _activate(repo, clinic, *cards[2], now=datetime(2026, 1, 31, 23, 59, 0))
    with pytest.raises(QuotaExceededError):
        _activate(repo, clinic, *cards[3], now=datetime(2026, 2, 1, 10, 0, 0))

    refreshed = repo.get_clinic(clinic.id)
    assert refreshed.quota_period == "2026-02"
    assert refreshed.activations_this_period == 1
    assert repo.count_activations_this_month(clinic.id, now=datetime(2026, 1, 20)) == 1
    assert repo.count_activations_this_month(clinic.id, now=datetime(2026, 2, 20)) == 1
    assert repo.get_card(cards[2][0].id).status == CARD_READY


def test_activation_slot_never_moves_period_backwards(repo, make_clinic):
    clinic = make_clinic(monthly_card_limit=5)
    with repo.transaction():
        assert repo.reserve_activation_slot(clinic.id, now=datetime(2026, 5, 2))
        assert not repo.reserve_activation_slot(clinic.id, now=datetime(2026, 4, 30))
        assert repo.reserve_activation_slot(clinic.id, now=datetime(2026, 5, 3))

    refreshed = repo.get_clinic(clinic.id)
    assert refreshed.quota_period == "2026-05"
    assert refreshed.activations_this_period == 2



def test_zero_limit_allows_no_activations(repo, make_clinic, ready_card):
    clinic = make_clinic(monthly_card_limit=0)
    card, passcode = ready_card(clinic)
    with pytest.raises(QuotaExceededError):
        _activate(repo, clinic, card, passcode)


def test_lost_compare_and_set_releases_quota_slot(repo, make_clinic, ready_card, monkeypatch):
    clinic = make_clinic(monthly_card_limit=5)
    card, passcode = ready_card(clinic)
    monkeypatch.setattr(repo, "conditional_update_card", lambda card_id, **kwargs: None)

    with pytest.raises(AlreadyActivatedError):
        _activate(repo, clinic, card, passcode, sale_amount_cents=500)

    monkeypatch.undo()
    refreshed = repo.get_clinic(clinic.id)
    assert refreshed.activations_this_period == 0
    assert refreshed.total_revenue_cents == 0
    assert repo.list_sales(clinic.id) == []
    assert repo.get_card(card.id).status == CARD_READY


def test_inactive_clinic_cannot_activate(repo, make_clinic, ready_card):
    clinic = make_clinic()
    card, passcode = ready_card(clinic)
    with repo.transaction():
        repo.set_clinic_active(clinic.id, False)

    with pytest.raises(ClinicInactiveError):
        _activate(repo, clinic, card, passcode)


def test_leap_day_activation_expires_on_28_february(repo, make_clinic, ready_card):
    clinic = make_clinic()
    card, passcode = ready_card(clinic)

    activated, _sale = _activate(repo, clinic, card, passcode, now=datetime(2028, 2, 29, 9, 30, 0))

    assert activated.expires_at == datetime(2029, 2, 28, 9, 30, 0)


@pytest.mark.parametrize("kwargs", [
    {"sale_amount_cents": -1},
    {"sale_amount_cents": "1000"},
    {"sale_amount_cents": 10.5},
    {"payment_method": "bitcoin"},
])
def test_invalid_activation_input(repo, make_clinic, ready_card, kwargs):
    clinic = make_clinic()
    card, passcode = ready_card(clinic)
    with pytest.raises(ValidationError):
        _activate(repo, clinic, card, passcode, **kwargs)
    assert repo.get_card(card.id).status == CARD_READY


def test_incomplete_passcode_rejected(repo, make_clinic, ready_card):
    clinic = make_clinic()
    card, _passcode = ready_card(clinic)
    with pytest.raises(ValidationError):
        _activate(repo, clinic, card, card.incomplete_passcode)


@pytest.mark.parametrize("cents,bps,expected", [
    (1000, 1000, 100),
    (1005, 1000, 101),
    (1004, 1000, 100),
    (250000, 1500, 37500),
    (0, 1200, 0),
])
def test_commission_rounding(cents, bps, expected):
    assert activation_service.compute_commission_cents(cents, bps) == expected
