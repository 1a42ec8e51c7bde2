# Overview: Card lifecycle state machine and the optional expiry sweep.

"""
Card Lifecycle Service

================================================================================
PURPOSE: One place that decides which card status changes are legal
================================================================================

STATE MACHINE:
    unassigned -> pending_location -> ready -> activated -> expired
        |              |                          ^
        |              +--------------------------+   (point-of-sale activation)
        +-------------------> ready                   (location assigned directly)
        +-----------------------------------------+   (point-of-sale activation)

    unassigned:       minted, no clinic, passcode incomplete
    pending_location: distributed to a clinic, passcode still incomplete
    ready:            location code attached, passcode complete, sellable
    activated:        bound to a customer, validity running
    expired:          validity over; terminal

RULES:
1. No backward transitions. expired is terminal.
2. Activation requires a complete passcode. The point-of-sale path supplies
   the location code inside the activation itself.
3. Expiry is lazy: CardRecord.effective_status() reports 'expired' as soon
   as now >= expires_at, without a write. expire_due_cards() only persists
   what reads already see.

================================================================================
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from ..records import (
    CARD_ACTIVATED,
    CARD_EXPIRED,
    CARD_PENDING_LOCATION,
    CARD_READY,
    CARD_STATUSES,
    CARD_UNASSIGNED,
)
from ..time_utils import utcnow
from .card_repository import CardRepository, get_repository
from .errors import ValidationError

logger = logging.getLogger(__name__)


VALID_STATUSES = frozenset(CARD_STATUSES)

VALID_TRANSITIONS = frozenset({
    (CARD_UNASSIGNED, CARD_PENDING_LOCATION),
    (CARD_UNASSIGNED, CARD_READY),
    (CARD_PENDING_LOCATION, CARD_READY),
    (CARD_UNASSIGNED, CARD_ACTIVATED),
    (CARD_PENDING_LOCATION, CARD_ACTIVATED),
    (CARD_READY, CARD_ACTIVATED),
    (CARD_ACTIVATED, CARD_EXPIRED),
})


def validate_status(status: str) -> None:
    if status not in VALID_STATUSES:
        raise ValidationError(
            f"Invalid card status '{status}'. Must be one of: {', '.join(CARD_STATUSES)}",
            details={"status": status},
        )


def can_transition(from_status: str, to_status: str) -> bool:
    """
    Check a card status change against the state machine.

    Same-state "transitions" are rejected: every write in the engine is a
    real move forward, and the compare-and-set guards rely on that.
    """
    validate_status(from_status)
    validate_status(to_status)
    return (from_status, to_status) in VALID_TRANSITIONS


def sources_for(to_status: str) -> tuple[str, ...]:
    """All statuses that may legally move to `to_status` (used as CAS guards)."""
    validate_status(to_status)
    return tuple(s for s in CARD_STATUSES if (s, to_status) in VALID_TRANSITIONS)


def expire_due_cards(
    *,
    now: Optional[datetime] = None,
    repo: Optional[CardRepository] = None,
    limit: Optional[int] = None,
) -> int:
    """
    Persist activated -> expired for every card whose expires_at has passed.

    Each flip is a compare-and-set on status, so a card touched concurrently
    is simply skipped. Returns the number of cards expired.
    """
    repo = repo or get_repository()
    now = now or utcnow()

    expired = 0
    with repo.transaction():
        due = repo.list_cards(statuses=(CARD_ACTIVATED,), expires_before=now, limit=limit)
        for card in due:
            updated = repo.conditional_update_card(
                card.id,
                expected={"status": CARD_ACTIVATED, "expires_at": card.expires_at},
                fields={"status": CARD_EXPIRED, "updated_at": now},
            )
            if updated is not None:
                expired += 1

    logger.info("Expiry sweep as of %s: %d card(s) expired", now.isoformat(), expired)
    return expired
