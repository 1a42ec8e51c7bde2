# Overview: Append-only card transaction log.

from __future__ import annotations

from datetime import datetime
from typing import Optional

from ..records import TRANSACTION_TYPES, TransactionRecord
from ..time_utils import utcnow
from .card_repository import CardRepository
from .errors import ValidationError

"""
Card Transaction Log Invariants

- Append-only audit trail of card state changes.
- No business logic here; callers decide what happened, this records it.
- Entries are written inside the same repository transaction as the state
  change they record, so a rolled-back change leaves no entry behind.
- Ordering for reads is (occurred_at, id).
"""

PERFORMERS = ("admin", "clinic", "system")


def append_card_event(
    repo: CardRepository,
    *,
    card_id: int,
    transaction_type: str,
    performed_by: str,
    performed_by_id: str | int | None = None,
    details: Optional[dict] = None,
    occurred_at: Optional[datetime] = None,
) -> TransactionRecord:
    """
    Append one audit entry for a card.

    - No updates or deletes of existing entries.
    - performed_by_id is stored as text (admin usernames and clinic ids share a column).
    """
    if transaction_type not in TRANSACTION_TYPES:
        raise ValidationError(
            f"Unknown transaction type '{transaction_type}'",
            details={"transaction_type": transaction_type},
        )
    if performed_by not in PERFORMERS:
        raise ValidationError(
            f"Unknown performer '{performed_by}'",
            details={"performed_by": performed_by},
        )

    return repo.insert_transaction_log_entry(
        card_id=card_id,
        transaction_type=transaction_type,
        performed_by=performed_by,
        performed_by_id=str(performed_by_id) if performed_by_id is not None else None,
        details=dict(details or {}),
        occurred_at=occurred_at or utcnow(),
    )


def get_card_history(repo: CardRepository, card_id: int) -> list[TransactionRecord]:
    """Entries for one card, oldest first."""
    return repo.list_transactions(card_id)
