# Overview: Service-layer operations for perk redemption; at-most-once claim per perk.

"""
Perk Service

Redeeming a perk flips claimed false -> true exactly once, records the
service delivered, and logs 'perk_claimed', all in one repository
transaction. The flip is a compare-and-set on claimed = false, so two
concurrent redemptions of one perk give one success and one
PerkAlreadyClaimedError.

Checks, in order:
    card exists -> card belongs to this clinic -> not expired ->
    activated -> perk exists on this card -> perk not yet claimed

The card's own status never changes here; a card with every perk used
stays 'activated' until it expires.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from ..perk_catalog import PERK_CATALOG, is_valid_perk_type
from ..records import CARD_ACTIVATED, TX_PERK_CLAIMED, PerkRecord, RedemptionRecord
from ..time_utils import to_utc_z, utcnow
from .card_repository import CardRepository, get_repository
from .concurrency import run_with_configured_retry
from .errors import (
    CardExpiredError,
    CardNotActivatedError,
    CardNotFoundError,
    ClinicMismatchError,
    PerkAlreadyClaimedError,
    PerkNotFoundError,
    ValidationError,
)
from .ledger_service import append_card_event

logger = logging.getLogger(__name__)


def resolve_perk(card_id: int, perk_type: str, *, repo: Optional[CardRepository] = None) -> PerkRecord:
    """Find the perk of a given catalogue type on a card."""
    if not is_valid_perk_type(perk_type):
        raise ValidationError(
            f"Unknown perk type '{perk_type}'",
            details={"perk_type": perk_type, "allowed": list(PERK_CATALOG)},
        )
    repo = repo or get_repository()
    for perk in repo.list_perks(card_id):
        if perk.perk_type == perk_type:
            return perk
    raise PerkNotFoundError(
        f"Card {card_id} has no '{perk_type}' perk",
        details={"card_id": card_id, "perk_type": perk_type},
    )


def redeem_perk(
    clinic_id: int,
    card_id: int,
    perk_id: int,
    *,
    service_provided: Optional[str] = None,
    service_value_cents: Optional[int] = None,
    notes: Optional[str] = None,
    repo: Optional[CardRepository] = None,
    now: Optional[datetime] = None,
) -> tuple[PerkRecord, RedemptionRecord]:
    """
    Claim one perk of an activated card for a clinic.

    Returns:
        (claimed perk, redemption record)

    Raises:
        CardNotFoundError, ClinicMismatchError, CardExpiredError,
        CardNotActivatedError, PerkNotFoundError, PerkAlreadyClaimedError
    """
    if service_value_cents is not None:
        if isinstance(service_value_cents, bool) or not isinstance(service_value_cents, int) or service_value_cents < 0:
            raise ValidationError(
                "service_value_cents must be a non-negative integer",
                details={"service_value_cents": service_value_cents},
            )
    service_provided = (service_provided or "").strip() or None
    repo = repo or get_repository()
    now = now or utcnow()

    def _op():
        with repo.transaction():
            card = repo.get_card(card_id)
            if card is None:
                raise CardNotFoundError(f"Card {card_id} not found", details={"card_id": card_id})
            if card.assigned_clinic_id != clinic_id:
                raise ClinicMismatchError(
                    f"Card {card.control_number} is not assigned to this clinic",
                    details={"card_id": card.id, "clinic_id": clinic_id},
                )
            if card.is_expired(now):
                raise CardExpiredError(
                    f"Card {card.control_number} expired",
                    details={"card_id": card.id, "expires_at": to_utc_z(card.expires_at)},
                )
            if card.status != CARD_ACTIVATED:
                raise CardNotActivatedError(
                    f"Card {card.control_number} is not activated",
                    details={"card_id": card.id, "status": card.status},
                )

            perk = repo.get_perk(perk_id)
            if perk is None or perk.card_id != card.id:
                raise PerkNotFoundError(
                    f"Perk {perk_id} not found on card {card.control_number}",
                    details={"card_id": card.id, "perk_id": perk_id},
                )
            if perk.claimed:
                raise PerkAlreadyClaimedError(
                    f"Perk '{perk.perk_type}' already claimed",
                    details={"perk_id": perk.id, "claimed_at": to_utc_z(perk.claimed_at)},
                )

            claimed = repo.conditional_claim_perk(perk.id, clinic_id=clinic_id, claimed_at=now)
            if claimed is None:
                raise PerkAlreadyClaimedError(
                    f"Perk '{perk.perk_type}' was claimed concurrently",
                    details={"perk_id": perk.id},
                )

            redemption = repo.insert_redemption(
                clinic_id=clinic_id,
                card_id=card.id,
                perk_id=perk.id,
                redeemed_at=now,
                service_provided=service_provided,
                service_value_cents=service_value_cents,
                notes=notes,
            )
            append_card_event(
                repo,
                card_id=card.id,
                transaction_type=TX_PERK_CLAIMED,
                performed_by="clinic",
                performed_by_id=clinic_id,
                details={
                    "perk_id": perk.id,
                    "perk_type": perk.perk_type,
                    "redemption_id": redemption.id,
                    "service_provided": service_provided,
                    "service_value_cents": service_value_cents,
                },
                occurred_at=now,
            )
            return claimed, redemption

    perk, redemption = run_with_configured_retry(_op)
    logger.info("Perk %s (%s) on card %s claimed by clinic %s", perk.id, perk.perk_type, card_id, clinic_id)
    return perk, redemption
