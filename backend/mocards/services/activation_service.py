# Overview: Card activation for a customer, with monthly quota and the optional sale record.

"""
Activation Service

================================================================================
PURPOSE: Bind a physical card to a customer and a clinic, starting its validity
================================================================================

AUTHENTICATION (the "triple match"):
    (control_number, passcode, clinic_id) must all agree with the card.
    A passcode alone is not enough; a card assigned to another clinic is
    reported exactly like a card that does not exist (CardNotFoundError).

TWO PATHS:
- Card already carries a location code: passcode must equal it exactly
  and the card must be assigned to this clinic.
- Point of sale: the card has no location code yet (unassigned, or
  pending_location at this clinic). The clinic types the full 7-character
  passcode; its last 4 digits must equal the incomplete passcode and its
  first 3 letters become the card's location code in the same write.

ORDER OF CHECKS:
    triple match -> expired -> already activated -> quota -> compare-and-set

ATOMICITY:
    One repository transaction holds the quota slot, the card update, the
    log entries, the sale and the revenue increment. Losing the card
    compare-and-set raises AlreadyActivatedError, which rolls back the
    quota slot taken a moment earlier.

MONEY:
    Amounts are integer cents. commission = sale * rate_bps / 10000,
    rounded half up, fixed at the moment of sale.

================================================================================
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from ..config import get_setting
from ..records import (
    CARD_ACTIVATED,
    CARD_READY,
    TX_ACTIVATED,
    TX_LOCATION_ASSIGNED,
    CardRecord,
    ClinicRecord,
    CustomerInfo,
    SaleRecord,
)
from ..time_utils import add_years, month_key, to_utc_z, utcnow
from .card_repository import CardRepository, get_repository
from .concurrency import run_with_configured_retry
from .errors import (
    AlreadyActivatedError,
    CardExpiredError,
    CardNotFoundError,
    ClinicInactiveError,
    ClinicNotFoundError,
    QuotaExceededError,
    ValidationError,
)
from .identifier_service import is_complete_passcode, normalize_control_number, normalize_passcode, split_passcode
from .ledger_service import append_card_event
from .lifecycle_service import can_transition, sources_for

logger = logging.getLogger(__name__)


PAYMENT_METHODS = ("cash", "credit_card", "bank_transfer", "gcash")


def compute_commission_cents(sale_amount_cents: int, commission_rate_bps: int) -> int:
    """Commission in cents, rounded half up (1000 cents at 1000 bps -> 100)."""
    return (sale_amount_cents * commission_rate_bps + 5000) // 10000


def _match_card(card: Optional[CardRecord], clinic_id: int, passcode: str) -> Optional[str]:
    """
    Return the location code the activation should write, or None when the
    triple does not match.
    """
    if card is None:
        return None

    if card.location_code is not None:
        if card.passcode == passcode and card.assigned_clinic_id == clinic_id:
            return card.location_code
        return None

    # Point-of-sale completion
    if card.status not in sources_for(CARD_READY):
        return None
    if card.assigned_clinic_id not in (None, clinic_id):
        return None
    location_code, digits = split_passcode(passcode)
    if digits != card.incomplete_passcode:
        return None
    return location_code


def _require_clinic(repo: CardRepository, clinic_id: int) -> ClinicRecord:
    clinic = repo.get_clinic(clinic_id)
    if clinic is None:
        raise ClinicNotFoundError(f"Clinic {clinic_id} not found", details={"clinic_id": clinic_id})
    if not clinic.is_active:
        raise ClinicInactiveError(f"Clinic {clinic.clinic_code} is inactive", details={"clinic_id": clinic_id})
    return clinic


def _validate_sale_amount(sale_amount_cents) -> Optional[int]:
    if sale_amount_cents is None:
        return None
    if isinstance(sale_amount_cents, bool) or not isinstance(sale_amount_cents, int):
        raise ValidationError("sale_amount_cents must be an integer", details={"sale_amount_cents": sale_amount_cents})
    if sale_amount_cents < 0:
        raise ValidationError("sale_amount_cents must be >= 0", details={"sale_amount_cents": sale_amount_cents})
    return sale_amount_cents


def activate_card(
    clinic_id: int,
    control_number: str,
    passcode: str,
    *,
    customer: Optional[CustomerInfo] = None,
    sale_amount_cents: Optional[int] = None,
    payment_method: Optional[str] = None,
    repo: Optional[CardRepository] = None,
    now: Optional[datetime] = None,
) -> tuple[CardRecord, Optional[SaleRecord]]:
    """
    Activate a card for a customer.

    Args:
        clinic_id: activating clinic
        control_number: printed card identifier
        passcode: complete 7-character passcode (3 letters + 4 digits)
        customer: optional customer contact stored on the card and the sale
        sale_amount_cents: when > 0, a sale with commission is recorded
        payment_method: stored on the sale

    Returns:
        (activated card, sale or None)

    Raises:
        ValidationError: malformed input (nothing read or written)
        CardNotFoundError: no card matches (control_number, passcode, clinic_id)
        ClinicNotFoundError / ClinicInactiveError
        CardExpiredError: the card's validity is over
        AlreadyActivatedError: already active, or lost a concurrent activation
        QuotaExceededError: clinic reached its monthly card limit
    """
    control_number = normalize_control_number(control_number)
    passcode = normalize_passcode(passcode)
    if not is_complete_passcode(passcode):
        raise ValidationError(
            "Passcode must be 3 letters followed by 4 digits",
            details={"passcode_length": len(passcode)},
        )
    sale_amount_cents = _validate_sale_amount(sale_amount_cents)
    if payment_method is not None and payment_method not in PAYMENT_METHODS:
        raise ValidationError(
            f"Unknown payment method '{payment_method}'",
            details={"payment_method": payment_method, "allowed": list(PAYMENT_METHODS)},
        )

    customer = customer or CustomerInfo()
    repo = repo or get_repository()
    requested_at = now
    validity_years = int(get_setting("CARD_VALIDITY_YEARS", 1))

    def _op():
        with repo.transaction():
            # Taken under the write lock so commit order follows clock order
            now = requested_at or utcnow()
            card = repo.find_card_by_control_number(control_number)
            clinic = _require_clinic(repo, clinic_id)

            location_code = _match_card(card, clinic_id, passcode)
            if location_code is None:
                raise CardNotFoundError(
                    "No card matches this control number, passcode and clinic",
                    details={"control_number": control_number},
                )

            if card.is_expired(now):
                raise CardExpiredError(
                    f"Card {card.control_number} expired",
                    details={"card_id": card.id, "expires_at": to_utc_z(card.expires_at)},
                )
            if not can_transition(card.status, CARD_ACTIVATED):
                raise AlreadyActivatedError(
                    f"Card {card.control_number} is already activated",
                    details={"card_id": card.id},
                )

            period = month_key(now)
            if clinic.quota_period is not None and clinic.quota_period > period:
                logger.warning(
                    "Clinic %s quota already counts %s, refusing activation stamped %s",
                    clinic.clinic_code, clinic.quota_period, period,
                )
                raise QuotaExceededError(
                    f"Clinic {clinic.clinic_code} quota has moved on to {clinic.quota_period}",
                    details={"clinic_id": clinic.id, "period": period, "quota_period": clinic.quota_period},
                )
            if not repo.reserve_activation_slot(clinic.id, now=now):
                logger.warning(
                    "Clinic %s reached its monthly limit of %d activations",
                    clinic.clinic_code, clinic.monthly_card_limit,
                )
                raise QuotaExceededError(
                    f"Clinic {clinic.clinic_code} reached its monthly card limit",
                    details={
                        "clinic_id": clinic.id,
                        "monthly_card_limit": clinic.monthly_card_limit,
                        "period": period,
                    },
                )

            point_of_sale = card.location_code is None
            expires_at = add_years(now, validity_years)
            updated = repo.conditional_update_card(
                card.id,
                expected={
                    "status": card.status,
                    "location_code": card.location_code,
                    "assigned_clinic_id": card.assigned_clinic_id,
                },
                fields={
                    "status": CARD_ACTIVATED,
                    "location_code": location_code,
                    "assigned_clinic_id": clinic.id,
                    "activated_at": now,
                    "expires_at": expires_at,
                    "customer_name": customer.name,
                    "customer_phone": customer.phone,
                    "customer_email": customer.email,
                    "updated_at": now,
                },
            )
            if updated is None:
                raise AlreadyActivatedError(
                    f"Card {card.control_number} was activated concurrently",
                    details={"card_id": card.id},
                )

            if point_of_sale:
                append_card_event(
                    repo,
                    card_id=card.id,
                    transaction_type=TX_LOCATION_ASSIGNED,
                    performed_by="clinic",
                    performed_by_id=clinic.id,
                    details={"location_code": location_code, "clinic_code": clinic.clinic_code, "at_activation": True},
                    occurred_at=now,
                )

            sale = None
            if sale_amount_cents:
                sale = repo.insert_sale(
                    clinic_id=clinic.id,
                    card_id=card.id,
                    sale_amount_cents=sale_amount_cents,
                    commission_cents=compute_commission_cents(sale_amount_cents, clinic.commission_rate_bps),
                    sale_date=now,
                    payment_method=payment_method,
                    customer_name=customer.name,
                    customer_phone=customer.phone,
                    customer_email=customer.email,
                )
                repo.add_clinic_revenue(clinic.id, sale_amount_cents)

            append_card_event(
                repo,
                card_id=card.id,
                transaction_type=TX_ACTIVATED,
                performed_by="clinic",
                performed_by_id=clinic.id,
                details={
                    "clinic_code": clinic.clinic_code,
                    "expires_at": to_utc_z(expires_at),
                    "sale_id": sale.id if sale else None,
                    "sale_amount_cents": sale_amount_cents,
                },
                occurred_at=now,
            )
            return updated, sale

    card, sale = run_with_configured_retry(_op)
    logger.info(
        "Card %s activated by clinic %s (sale=%s)",
        card.control_number, clinic_id, sale.id if sale else None,
    )
    return card, sale
