# Overview: Read-only lookups over cards, their perks and clinic history.

"""
Lookup Service

Nothing here writes. Card status is reported with expiry applied lazily,
and card payloads never carry the incomplete or complete passcode.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from ..records import RedemptionRecord, SaleRecord, TransactionRecord
from ..time_utils import utcnow
from .card_repository import CardRepository, get_repository
from .errors import CardNotFoundError, ValidationError
from .identifier_service import normalize_control_number
from .ledger_service import get_card_history

MAX_HISTORY_LIMIT = 500


def _bounded_limit(limit: Optional[int]) -> int:
    if limit is None:
        return 100
    if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
        raise ValidationError("limit must be a positive integer", details={"limit": limit})
    return min(limit, MAX_HISTORY_LIMIT)


def lookup_card(
    control_number: str,
    *,
    repo: Optional[CardRepository] = None,
    now: Optional[datetime] = None,
) -> dict:
    """Card + perks by control number, with effective status and no secrets."""
    control_number = normalize_control_number(control_number)
    repo = repo or get_repository()
    now = now or utcnow()

    card = repo.find_card_by_control_number(control_number)
    if card is None:
        raise CardNotFoundError(
            f"Card {control_number} not found",
            details={"control_number": control_number},
        )

    perks = repo.list_perks(card.id)
    payload = card.to_dict(now=now)
    payload["is_expired"] = card.is_expired(now)
    payload["perks"] = [p.to_dict() for p in perks]
    payload["perks_remaining"] = sum(1 for p in perks if not p.claimed)
    return payload


def card_history(card_id: int, *, repo: Optional[CardRepository] = None) -> list[TransactionRecord]:
    repo = repo or get_repository()
    if repo.get_card(card_id) is None:
        raise CardNotFoundError(f"Card {card_id} not found", details={"card_id": card_id})
    return get_card_history(repo, card_id)


def clinic_sales(
    clinic_id: int,
    *,
    since: Optional[datetime] = None,
    limit: Optional[int] = None,
    repo: Optional[CardRepository] = None,
) -> list[SaleRecord]:
    """Newest first."""
    repo = repo or get_repository()
    return repo.list_sales(clinic_id, since=since, limit=_bounded_limit(limit))


def clinic_redemptions(
    clinic_id: int,
    *,
    since: Optional[datetime] = None,
    limit: Optional[int] = None,
    repo: Optional[CardRepository] = None,
) -> list[RedemptionRecord]:
    """Newest first."""
    repo = repo or get_repository()
    return repo.list_redemptions(clinic_id, since=since, limit=_bounded_limit(limit))
