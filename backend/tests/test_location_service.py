import pytest

from conftest import NOW
from mocards.perk_catalog import PERK_CATALOG
from mocards.records import CARD_PENDING_LOCATION, CARD_READY, TX_LOCATION_ASSIGNED
from mocards.services import batch_service, location_service
from mocards.services.errors import (
    AlreadyAssignedError,
    CardNotFoundError,
    ClinicInactiveError,
    ClinicNotFoundError,
    InvalidLocationCodeError,
)


def _card_with_digits(repo, digits, control_number="MOC-00000001-001"):
    with repo.transaction():
        card, _perks = repo.create_card_with_perks(
            batch_id=None,
            control_number=control_number,
            incomplete_passcode=digits,
            perk_types=PERK_CATALOG,
            created_at=NOW,
        )
    return card


def test_assign_location_completes_passcode(repo, make_clinic):
    clinic = make_clinic()
    card = _card_with_digits(repo, "1234")

    updated, passcode = location_service.assign_location(clinic.id, card.id, "cav", repo=repo, now=NOW)

    assert passcode == "CAV1234"
    assert updated.status == CARD_READY
    assert updated.location_code == "CAV"
    assert updated.assigned_clinic_id == clinic.id
    assert updated.passcode == "CAV1234"

    entry = repo.list_transactions(card.id)[-1]
    assert entry.transaction_type == TX_LOCATION_ASSIGNED
    assert entry.performed_by == "clinic"
    assert entry.details["location_code"] == "CAV"


def test_second_assignment_rejected(repo, make_clinic):
    first = make_clinic()
    second = make_clinic()
    card = _card_with_digits(repo, "0042")
    location_service.assign_location(first.id, card.id, "CAV", repo=repo, now=NOW)

    with pytest.raises(AlreadyAssignedError):
        location_service.assign_location(second.id, card.id, "MNL", repo=repo, now=NOW)
    with pytest.raises(AlreadyAssignedError):
        location_service.assign_location(first.id, card.id, "MNL", repo=repo, now=NOW)

    assert repo.get_card(card.id).location_code == "CAV"


@pytest.mark.parametrize("bad", ["CA", "CAVI", "C4V", ""])
def test_invalid_location_code_writes_nothing(repo, make_clinic, bad):
    clinic = make_clinic()
    card = _card_with_digits(repo, "1234")

    with pytest.raises(InvalidLocationCodeError):
        location_service.assign_location(clinic.id, card.id, bad, repo=repo, now=NOW)

    unchanged = repo.get_card(card.id)
    assert unchanged.location_code is None
    assert unchanged.assigned_clinic_id is None
    assert len(repo.list_transactions(card.id)) == 0


def test_distributed_card_only_for_its_clinic(repo, make_clinic):
    owner = make_clinic()
    other = make_clinic()
    batch, _cards = batch_service.generate_batch("admin", 1, repo=repo, now=NOW)
    (card,) = batch_service.distribute_cards(batch.id, owner.id, 1, performed_by="admin", repo=repo, now=NOW)
    assert card.status == CARD_PENDING_LOCATION

    with pytest.raises(AlreadyAssignedError):
        location_service.assign_location(other.id, card.id, "MNL", repo=repo, now=NOW)

    updated, passcode = location_service.assign_location(owner.id, card.id, "CAV", repo=repo, now=NOW)
    assert updated.status == CARD_READY
    assert passcode == "CAV" + card.incomplete_passcode


def test_unknown_card_and_clinic(repo, make_clinic):
    clinic = make_clinic()
    card = _card_with_digits(repo, "1234")

    with pytest.raises(CardNotFoundError):
        location_service.assign_location(clinic.id, 999999, "CAV", repo=repo, now=NOW)
    with pytest.raises(ClinicNotFoundError):
        location_service.assign_location(999999, card.id, "CAV", repo=repo, now=NOW)


def test_inactive_clinic_cannot_assign(repo, make_clinic):
    clinic = make_clinic(is_active=False)
    card = _card_with_digits(repo, "1234")

    with pytest.raises(ClinicInactiveError):
        location_service.assign_location(clinic.id, card.id, "CAV", repo=repo, now=NOW)
    assert repo.get_card(card.id).location_code is None
