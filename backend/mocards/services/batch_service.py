# Overview: Service-layer operations for card batches; minting, bulk runs and distribution to clinics.

"""
Batch Service

================================================================================
PURPOSE: Mint cards in batches and hand them out to clinics
================================================================================

MINTING (generate_batch):
- One batch row in 'generating', then `count` cards.
- Each card is its own repository transaction: the card, its 8 perks, the
  'created' log entry and the batch progress counter commit together. A
  card therefore never exists without its perks, and cards_generated
  always equals the number of confirmed cards.
- A control number collision (another process minted the same stamp) is
  retried with a newer stamp. Any other failure stops the run and leaves
  the batch in 'generating'; BatchGenerationError reports how far it got.
- When every card is in, the batch flips to 'completed'.

BULK RUNS (generate_batches):
- Large runs (e.g. 10,000 cards at deployment) are split into consecutive
  batches of at most `page_size` cards to bound transaction count per batch.

DISTRIBUTION (distribute_cards):
- Admin moves N unassigned cards of a batch to a clinic
  (unassigned -> pending_location). All-or-nothing: if any card was taken
  concurrently, nothing is distributed.

================================================================================
"""

from __future__ import annotations

import logging
import time
from datetime import datetime
from typing import Callable, Optional

from ..config import get_setting
from ..perk_catalog import PERK_CATALOG
from ..records import (
    CARD_PENDING_LOCATION,
    CARD_UNASSIGNED,
    TX_CREATED,
    TX_DISTRIBUTED,
    BatchRecord,
    CardRecord,
)
from ..time_utils import utcnow
from .card_repository import CardRepository, get_repository
from .concurrency import run_with_configured_retry
from .errors import (
    AlreadyAssignedError,
    BatchGenerationError,
    BatchNotFoundError,
    ClinicInactiveError,
    ClinicNotFoundError,
    DuplicateIdentifierError,
    ValidationError,
)
from .identifier_service import (
    new_batch_number,
    new_batch_stamp,
    new_control_number,
    new_incomplete_passcode,
    normalize_prefix,
    sequence_width,
)
from .ledger_service import append_card_event

logger = logging.getLogger(__name__)


# Fresh stamps tried per card before giving up on a run
MAX_IDENTIFIER_ATTEMPTS = 5


def _validate_count(count, *, name: str = "count") -> int:
    if isinstance(count, bool) or not isinstance(count, int):
        raise ValidationError(f"{name} must be an integer", details={name: count})
    if count < 1:
        raise ValidationError(f"{name} must be >= 1", details={name: count})
    max_size = int(get_setting("CARD_MAX_BATCH_SIZE", 10000))
    if count > max_size:
        raise ValidationError(
            f"{name} must be <= {max_size}",
            details={name: count, "max": max_size},
        )
    return count


def _stamp_of(batch: BatchRecord) -> str:
    return batch.batch_number.rsplit("-", 1)[-1]


def _open_batch(
    repo: CardRepository,
    *,
    requested_by: str,
    count: int,
    batch_prefix: str,
    after_stamp: Optional[str],
    clock: Callable[[], float],
    now: datetime,
) -> BatchRecord:
    stamp = after_stamp
    for _ in range(MAX_IDENTIFIER_ATTEMPTS):
        stamp = new_batch_stamp(after=stamp, clock=clock)
        batch_number = new_batch_number(stamp, prefix=batch_prefix)

        def _op():
            with repo.transaction():
                return repo.create_batch(
                    batch_number=batch_number,
                    total_cards=count,
                    created_by=requested_by,
                    created_at=now,
                )

        try:
            return run_with_configured_retry(_op)
        except DuplicateIdentifierError:
            logger.warning("Batch number %s already taken, retrying with a newer stamp", batch_number)

    raise DuplicateIdentifierError(
        "Could not allocate a unique batch number",
        details={"attempts": MAX_IDENTIFIER_ATTEMPTS},
    )


def _mint_card(
    repo: CardRepository,
    *,
    batch: BatchRecord,
    control_number: str,
    generated_so_far: int,
    requested_by: str,
    now: datetime,
) -> CardRecord:
    def _op():
        with repo.transaction():
            card, perks = repo.create_card_with_perks(
                batch_id=batch.id,
                control_number=control_number,
                incomplete_passcode=new_incomplete_passcode(),
                perk_types=PERK_CATALOG,
                created_at=now,
            )
            append_card_event(
                repo,
                card_id=card.id,
                transaction_type=TX_CREATED,
                performed_by="admin",
                performed_by_id=requested_by,
                details={
                    "batch_id": batch.id,
                    "batch_number": batch.batch_number,
                    "control_number": card.control_number,
                    "perks": [p.perk_type for p in perks],
                },
                occurred_at=now,
            )
            repo.update_batch_progress(batch.id, generated_so_far + 1)
            return card

    return run_with_configured_retry(_op)


def generate_batch(
    requested_by: str,
    count: int,
    *,
    prefix: Optional[str] = None,
    batch_prefix: Optional[str] = None,
    repo: Optional[CardRepository] = None,
    now: Optional[datetime] = None,
    after_stamp: Optional[str] = None,
    clock: Callable[[], float] = time.time,
) -> tuple[BatchRecord, list[CardRecord]]:
    """
    Mint one batch of `count` cards, each with 8 unclaimed perks.

    Args:
        requested_by: admin identifier recorded on the batch and log entries
        count: number of cards (1..CARD_MAX_BATCH_SIZE)
        prefix / batch_prefix: identifier prefixes (default from config)
        after_stamp: force a stamp newer than this one (bulk runs)

    Returns:
        (completed batch, cards in sequence order)

    Raises:
        ValidationError: bad count, prefix or requester (nothing written)
        BatchGenerationError: run stopped part-way; the batch stays 'generating'
    """
    requested_by = (requested_by or "").strip()
    if not requested_by:
        raise ValidationError("requested_by required")
    count = _validate_count(count)

    repo = repo or get_repository()
    now = now or utcnow()
    prefix = normalize_prefix(prefix or get_setting("CARD_CONTROL_PREFIX", "MOC"))
    batch_prefix = normalize_prefix(batch_prefix or get_setting("CARD_BATCH_PREFIX", "MOB"))

    batch = _open_batch(
        repo,
        requested_by=requested_by,
        count=count,
        batch_prefix=batch_prefix,
        after_stamp=after_stamp,
        clock=clock,
        now=now,
    )
    logger.info("Generating batch %s (%d cards) for %s", batch.batch_number, count, requested_by)

    stamp = _stamp_of(batch)
    width = sequence_width(count)
    cards: list[CardRecord] = []

    for seq in range(1, count + 1):
        card = None
        for _ in range(MAX_IDENTIFIER_ATTEMPTS):
            control_number = new_control_number(stamp, seq, prefix=prefix, width=width)
            try:
                card = _mint_card(
                    repo,
                    batch=batch,
                    control_number=control_number,
                    generated_so_far=len(cards),
                    requested_by=requested_by,
                    now=now,
                )
                break
            except DuplicateIdentifierError:
                logger.warning("Control number %s already taken, retrying with a newer stamp", control_number)
                stamp = new_batch_stamp(after=stamp, clock=clock)
            except Exception as exc:
                logger.error(
                    "Batch %s stopped after %d of %d cards: %s",
                    batch.batch_number, len(cards), count, exc,
                )
                raise BatchGenerationError(
                    f"Batch {batch.batch_number} stopped after {len(cards)} of {count} cards",
                    details={"batch_id": batch.id, "cards_generated": len(cards), "cause": str(exc)},
                ) from exc

        if card is None:
            logger.error("Batch %s could not allocate a control number for card %d", batch.batch_number, seq)
            raise BatchGenerationError(
                f"Batch {batch.batch_number} could not allocate a unique control number",
                details={"batch_id": batch.id, "cards_generated": len(cards)},
            )
        cards.append(card)

    def _complete():
        with repo.transaction():
            return repo.complete_batch(batch.id, completed_at=utcnow())

    completed = run_with_configured_retry(_complete)
    if completed is None:
        raise BatchGenerationError(
            f"Batch {batch.batch_number} could not be completed",
            details={"batch_id": batch.id, "cards_generated": len(cards)},
        )

    logger.info("Batch %s completed with %d cards", completed.batch_number, completed.cards_generated)
    return completed, cards


def generate_batches(
    requested_by: str,
    total: int,
    *,
    page_size: Optional[int] = None,
    prefix: Optional[str] = None,
    batch_prefix: Optional[str] = None,
    repo: Optional[CardRepository] = None,
    now: Optional[datetime] = None,
) -> list[BatchRecord]:
    """
    Mint `total` cards as consecutive batches of at most `page_size`.

    Stops at the first failing batch (BatchGenerationError propagates);
    batches completed before it stay completed.
    """
    page_size = _validate_count(page_size or int(get_setting("CARD_BATCH_PAGE_SIZE", 100)), name="page_size")
    if isinstance(total, bool) or not isinstance(total, int) or total < 1:
        raise ValidationError("total must be an integer >= 1", details={"total": total})

    repo = repo or get_repository()
    batches: list[BatchRecord] = []
    remaining = total
    last_stamp: Optional[str] = None

    while remaining > 0:
        size = min(page_size, remaining)
        batch, _cards = generate_batch(
            requested_by,
            size,
            prefix=prefix,
            batch_prefix=batch_prefix,
            repo=repo,
            now=now,
            after_stamp=last_stamp,
        )
        batches.append(batch)
        last_stamp = _stamp_of(batch)
        remaining -= size

    logger.info("Bulk run finished: %d cards in %d batches", total, len(batches))
    return batches


def get_batch(batch_id: int, *, repo: Optional[CardRepository] = None) -> BatchRecord:
    repo = repo or get_repository()
    batch = repo.get_batch(batch_id)
    if batch is None:
        raise BatchNotFoundError(f"Batch {batch_id} not found", details={"batch_id": batch_id})
    return batch


def list_batches(*, limit: int = 50, repo: Optional[CardRepository] = None) -> list[BatchRecord]:
    repo = repo or get_repository()
    return repo.list_batches(limit=limit)


def list_batch_cards(batch_id: int, *, repo: Optional[CardRepository] = None) -> list[CardRecord]:
    repo = repo or get_repository()
    get_batch(batch_id, repo=repo)
    return repo.list_cards(batch_id=batch_id)


def distribute_cards(
    batch_id: int,
    clinic_id: int,
    count: int,
    *,
    performed_by: str,
    repo: Optional[CardRepository] = None,
    now: Optional[datetime] = None,
) -> list[CardRecord]:
    """
    Hand `count` unassigned cards of a batch to a clinic.

    Raises:
        BatchNotFoundError / ClinicNotFoundError / ClinicInactiveError
        ValidationError: fewer than `count` unassigned cards left in the batch
        AlreadyAssignedError: a picked card was taken concurrently (nothing distributed)
    """
    count = _validate_count(count)
    repo = repo or get_repository()
    now = now or utcnow()

    def _op():
        with repo.transaction():
            batch = repo.get_batch(batch_id)
            if batch is None:
                raise BatchNotFoundError(f"Batch {batch_id} not found", details={"batch_id": batch_id})
            clinic = repo.get_clinic(clinic_id)
            if clinic is None:
                raise ClinicNotFoundError(f"Clinic {clinic_id} not found", details={"clinic_id": clinic_id})
            if not clinic.is_active:
                raise ClinicInactiveError(f"Clinic {clinic.clinic_code} is inactive", details={"clinic_id": clinic_id})

            candidates = repo.list_cards(
                batch_id=batch_id,
                statuses=(CARD_UNASSIGNED,),
                unassigned_only=True,
                limit=count,
            )
            if len(candidates) < count:
                raise ValidationError(
                    f"Batch {batch.batch_number} has only {len(candidates)} unassigned cards",
                    details={"batch_id": batch_id, "available": len(candidates), "requested": count},
                )

            distributed = []
            for card in candidates:
                updated = repo.conditional_update_card(
                    card.id,
                    expected={"status": CARD_UNASSIGNED, "assigned_clinic_id": None},
                    fields={
                        "status": CARD_PENDING_LOCATION,
                        "assigned_clinic_id": clinic_id,
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
                    card_id=card.id,
                    transaction_type=TX_DISTRIBUTED,
                    performed_by="admin",
                    performed_by_id=performed_by,
                    details={"clinic_id": clinic_id, "clinic_code": clinic.clinic_code, "batch_id": batch_id},
                    occurred_at=now,
                )
                distributed.append(updated)
            return distributed

    cards = run_with_configured_retry(_op)
    logger.info("Distributed %d cards of batch %s to clinic %s", len(cards), batch_id, clinic_id)
    return cards
