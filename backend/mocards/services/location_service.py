# Overview: Clinic-side completion of a card's passcode with a location code.

"""
Location Service

A clinic attaches its 3-letter location code to a card. The complete
passcode is location code + incomplete passcode; it is derived, never
stored on its own.

Allowed starting points:
- unassigned card with no clinic (clinic claims it directly)
- pending_location card distributed to this same clinic

Everything else (another clinic's card, a card that already has a location,
an activated or expired card) is AlreadyAssignedError. The write is a
compare-and-set on (status, assigned_clinic_id, location_code IS NULL), so
two clinics racing for one card cannot both win.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from ..records import CARD_READY, CARD_UNASSIGNED, TX_LOCATION_ASSIGNED, CardRecord
from ..time_utils import utcnow
from .card_repository import CardRepository, get_repository
from .concurrency import run_with_configured_retry
from .errors import AlreadyAssignedError, CardNotFoundError, ClinicInactiveError, ClinicNotFoundError
from .identifier_service import compose_passcode, normalize_location_code
from .ledger_service import append_card_event
from .lifecycle_service import sources_for

logger = logging.getLogger(__name__)


def _assignable(card: CardRecord, clinic_id: int) -> bool:
    if card.location_code is not None or card.status not in sources_for(CARD_READY):
        return False
    if card.status == CARD_UNASSIGNED:
        return card.assigned_clinic_id is None
    return card.assigned_clinic_id == clinic_id


def assign_location(
    clinic_id: int,
    card_id: int,
    location_code: str,
    *,
    repo: Optional[CardRepository] = None,
    now: Optional[datetime] = None,
) -> tuple[CardRecord, str]:
    """
    Complete a card's passcode for a clinic.

    Returns:
        (updated card with status 'ready', complete passcode)

    Raises:
        InvalidLocationCodeError: not exactly 3 letters (checked before any read or write)
        CardNotFoundError / ClinicNotFoundError / ClinicInactiveError
        AlreadyAssignedError: card belongs elsewhere or is past this step
    """
    location_code = normalize_location_code(location_code)
    repo = repo or get_repository()
    now = now or utcnow()

    def _op():
        with repo.transaction():
            clinic = repo.get_clinic(clinic_id)
            if clinic is None:
                raise ClinicNotFoundError(f"Clinic {clinic_id} not found", details={"clinic_id": clinic_id})
            if not clinic.is_active:
                raise ClinicInactiveError(f"Clinic {clinic.clinic_code} is inactive", details={"clinic_id": clinic_id})

            card = repo.get_card(card_id)
            if card is None:
                raise CardNotFoundError(f"Card {card_id} not found", details={"card_id": card_id})
            if not _assignable(card, clinic_id):
                raise AlreadyAssignedError(
                    f"Card {card.control_number} cannot take a location code",
                    details={"card_id": card.id, "status": card.status},
                )

            updated = repo.conditional_update_card(
                card.id,
                expected={
                    "status": card.status,
                    "assigned_clinic_id": card.assigned_clinic_id,
                    "location_code": None,
                },
                fields={
                    "location_code": location_code,
                    "assigned_clinic_id": clinic_id,
                    "status": CARD_READY,
                    "updated_at": now,
                },
            )
            if updated is None:
                raise AlreadyAssignedError(
                    f"Card {card.control_number} was assigned concurrently",
                    details={"card_id": card.id},
                )

            append_card_event(
                repo,
                card_id=updated.id,
                transaction_type=TX_LOCATION_ASSIGNED,
                performed_by="clinic",
                performed_by_id=clinic_id,
                details={"location_code": location_code, "clinic_code": clinic.clinic_code},
                occurred_at=now,
            )
            return updated

    card = run_with_configured_retry(_op)
    logger.info("Card %s assigned location %s by clinic %s", card.control_number, location_code, clinic_id)
    return card, compose_passcode(card.location_code, card.incomplete_passcode)
