# Overview: Process-local CardRepository used by tests and the engine's unit harness.

"""
In-memory card repository.

One re-entrant lock serialises every transaction, which gives the same
guarantees the SQL repository gets from row locks: a compare-and-set
either sees the current row or waits for the writer holding it. State is
snapshotted when the outermost transaction starts and restored if the
block raises, so a failed activation leaves no quota slot, sale or log
entry behind.
"""

from __future__ import annotations

import copy
import threading
from contextlib import contextmanager
from dataclasses import replace
from typing import Iterator

from ..records import (
    BATCH_COMPLETED,
    BATCH_GENERATING,
    CARD_UNASSIGNED,
    BatchRecord,
    CardRecord,
    ClinicRecord,
    PerkRecord,
    RedemptionRecord,
    SaleRecord,
    TransactionRecord,
)
from ..time_utils import month_bounds, month_key
from .card_repository import CARD_UPDATABLE_FIELDS, CardRepository
from .errors import DuplicateIdentifierError


_TABLES = ("batches", "cards", "perks", "clinics", "sales", "redemptions", "transactions", "sequences")


def _matches(current, expected) -> bool:
    if isinstance(expected, (tuple, list, set, frozenset)):
        return current in expected
    return current == expected


class InMemoryCardRepository(CardRepository):
    """CardRepository backed by dicts of frozen records."""

    def __init__(self):
        self._lock = threading.RLock()
        self._depth = 0
        self.batches: dict[int, BatchRecord] = {}
        self.cards: dict[int, CardRecord] = {}
        self.perks: dict[int, PerkRecord] = {}
        self.clinics: dict[int, ClinicRecord] = {}
        self.sales: dict[int, SaleRecord] = {}
        self.redemptions: dict[int, RedemptionRecord] = {}
        self.transactions: dict[int, TransactionRecord] = {}
        self.sequences: dict[str, int] = {}

    def _next_id(self, table: str) -> int:
        value = self.sequences.get(table, 0) + 1
        self.sequences[table] = value
        return value

    def _snapshot(self) -> dict:
        # Records are immutable; copying the containers is enough
        return {name: copy.copy(getattr(self, name)) for name in _TABLES}

    def _restore(self, snapshot: dict) -> None:
        for name, value in snapshot.items():
            setattr(self, name, value)

    @contextmanager
    def transaction(self) -> Iterator["InMemoryCardRepository"]:
        with self._lock:
            snapshot = self._snapshot() if self._depth == 0 else None
            self._depth += 1
            try:
                yield self
            except BaseException:
                if snapshot is not None:
                    self._restore(snapshot)
                raise
            finally:
                self._depth -= 1

    # -- batches ---------------------------------------------------------

    def create_batch(self, *, batch_number, total_cards, created_by, created_at):
        with self._lock:
            if any(b.batch_number == batch_number for b in self.batches.values()):
                raise DuplicateIdentifierError(
                    f"Batch number '{batch_number}' already exists",
                    details={"batch_number": batch_number},
                )
            batch = BatchRecord(
                id=self._next_id("batches"),
                batch_number=batch_number,
                total_cards=total_cards,
                cards_generated=0,
                status=BATCH_GENERATING,
                created_by=created_by,
                created_at=created_at,
            )
            self.batches[batch.id] = batch
            return batch

    def update_batch_progress(self, batch_id, cards_generated):
        with self._lock:
            batch = self.batches.get(batch_id)
            if batch is None:
                return None
            if cards_generated <= batch.total_cards:
                batch = replace(batch, cards_generated=cards_generated)
                self.batches[batch_id] = batch
            return batch

    def complete_batch(self, batch_id, *, completed_at):
        with self._lock:
            batch = self.batches.get(batch_id)
            if (
                batch is None
                or batch.status != BATCH_GENERATING
                or batch.cards_generated != batch.total_cards
            ):
                return None
            batch = replace(batch, status=BATCH_COMPLETED, completed_at=completed_at)
            self.batches[batch_id] = batch
            return batch

    def get_batch(self, batch_id):
        return self.batches.get(batch_id)

    def list_batches(self, *, limit=50):
        rows = sorted(self.batches.values(), key=lambda b: (b.created_at, b.id), reverse=True)
        return rows[:limit]

    # -- cards and perks -------------------------------------------------

    def create_card_with_perks(self, *, batch_id, control_number, incomplete_passcode,
                               perk_types, created_at):
        with self._lock:
            if self.find_card_by_control_number(control_number) is not None:
                raise DuplicateIdentifierError(
                    f"Control number '{control_number}' already exists",
                    details={"control_number": control_number},
                )
            card = CardRecord(
                id=self._next_id("cards"),
                batch_id=batch_id,
                control_number=control_number,
                incomplete_passcode=incomplete_passcode,
                status=CARD_UNASSIGNED,
                created_at=created_at,
            )
            perks = []
            for perk_type in perk_types:
                perk = PerkRecord(id=self._next_id("perks"), card_id=card.id, perk_type=perk_type)
                perks.append(perk)
            self.cards[card.id] = card
            for perk in perks:
                self.perks[perk.id] = perk
            return card, perks

    def get_card(self, card_id):
        return self.cards.get(card_id)

    def find_card_by_control_number(self, control_number):
        with self._lock:
            for card in self.cards.values():
                if card.control_number == control_number:
                    return card
        return None

    def list_cards(self, *, batch_id=None, clinic_id=None, statuses=None, unassigned_only=False,
                   expires_before=None, limit=None):
        with self._lock:
            rows = sorted(self.cards.values(), key=lambda c: c.id)
        if batch_id is not None:
            rows = [c for c in rows if c.batch_id == batch_id]
        if clinic_id is not None:
            rows = [c for c in rows if c.assigned_clinic_id == clinic_id]
        if statuses is not None:
            wanted = set(statuses)
            rows = [c for c in rows if c.status in wanted]
        if unassigned_only:
            rows = [c for c in rows if c.assigned_clinic_id is None]
        if expires_before is not None:
            rows = [c for c in rows if c.expires_at is not None and c.expires_at < expires_before]
        return rows[:limit] if limit is not None else rows

    def conditional_update_card(self, card_id, *, expected, fields):
        unknown = set(fields) - CARD_UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Card fields not updatable: {', '.join(sorted(unknown))}")
        with self._lock:
            card = self.cards.get(card_id)
            if card is None:
                return None
            if not all(_matches(getattr(card, key), value) for key, value in expected.items()):
                return None
            card = replace(card, **fields)
            self.cards[card_id] = card
            return card

    def get_perk(self, perk_id):
        return self.perks.get(perk_id)

    def list_perks(self, card_id):
        with self._lock:
            return sorted((p for p in self.perks.values() if p.card_id == card_id), key=lambda p: p.id)

    def conditional_claim_perk(self, perk_id, *, clinic_id, claimed_at):
        with self._lock:
            perk = self.perks.get(perk_id)
            if perk is None or perk.claimed:
                return None
            perk = replace(perk, claimed=True, claimed_at=claimed_at, claimed_by_clinic_id=clinic_id)
            self.perks[perk_id] = perk
            return perk

    # -- clinics ---------------------------------------------------------

    def create_clinic(self, *, clinic_code, clinic_name, password_hash, subscription_plan,
                      monthly_card_limit, commission_rate_bps, created_at, owner_name=None,
                      contact_email=None, contact_phone=None, address=None):
        with self._lock:
            if self.find_clinic_by_code(clinic_code) is not None:
                raise DuplicateIdentifierError(
                    f"Clinic code '{clinic_code}' already exists",
                    details={"clinic_code": clinic_code},
                )
            clinic = ClinicRecord(
                id=self._next_id("clinics"),
                clinic_code=clinic_code,
                clinic_name=clinic_name,
                password_hash=password_hash,
                subscription_plan=subscription_plan,
                monthly_card_limit=monthly_card_limit,
                commission_rate_bps=commission_rate_bps,
                created_at=created_at,
                owner_name=owner_name,
                contact_email=contact_email,
                contact_phone=contact_phone,
                address=address,
            )
            self.clinics[clinic.id] = clinic
            return clinic

    def get_clinic(self, clinic_id):
        return self.clinics.get(clinic_id)

    def find_clinic_by_code(self, clinic_code):
        with self._lock:
            for clinic in self.clinics.values():
                if clinic.clinic_code == clinic_code:
                    return clinic
        return None

    def list_clinics(self):
        with self._lock:
            return sorted(self.clinics.values(), key=lambda c: c.id)

    def set_clinic_active(self, clinic_id, is_active):
        with self._lock:
            clinic = self.clinics.get(clinic_id)
            if clinic is None:
                return None
            clinic = replace(clinic, is_active=is_active)
            self.clinics[clinic_id] = clinic
            return clinic

    def reserve_activation_slot(self, clinic_id, *, now):
        period = month_key(now)
        with self._lock:
            clinic = self.clinics.get(clinic_id)
            if clinic is None or not clinic.is_active or clinic.monthly_card_limit <= 0:
                return False
            if clinic.quota_period is not None and clinic.quota_period > period:
                return False
            used = clinic.activations_this_period if clinic.quota_period == period else 0
            if used >= clinic.monthly_card_limit:
                return False
            self.clinics[clinic_id] = replace(clinic, quota_period=period, activations_this_period=used + 1)
            return True

    def add_clinic_revenue(self, clinic_id, amount_cents):
        with self._lock:
            clinic = self.clinics.get(clinic_id)
            if clinic is not None:
                self.clinics[clinic_id] = replace(
                    clinic, total_revenue_cents=clinic.total_revenue_cents + amount_cents
                )

    def count_activations_this_month(self, clinic_id, *, now):
        start, end = month_bounds(now)
        with self._lock:
            return sum(
                1
                for c in self.cards.values()
                if c.assigned_clinic_id == clinic_id
                and c.activated_at is not None
                and start <= c.activated_at < end
            )

    # -- sales, redemptions, audit trail ---------------------------------

    def insert_sale(self, *, clinic_id, card_id, sale_amount_cents, commission_cents, sale_date,
                    payment_method=None, customer_name=None, customer_phone=None,
                    customer_email=None):
        with self._lock:
            if any(s.card_id == card_id for s in self.sales.values()):
                raise DuplicateIdentifierError(
                    "Card already has a recorded sale", details={"card_id": card_id}
                )
            sale = SaleRecord(
                id=self._next_id("sales"),
                clinic_id=clinic_id,
                card_id=card_id,
                sale_amount_cents=sale_amount_cents,
                commission_cents=commission_cents,
                sale_date=sale_date,
                payment_method=payment_method,
                customer_name=customer_name,
                customer_phone=customer_phone,
                customer_email=customer_email,
            )
            self.sales[sale.id] = sale
            return sale

    def list_sales(self, clinic_id, *, since=None, limit=None):
        with self._lock:
            rows = [s for s in self.sales.values() if s.clinic_id == clinic_id]
        if since is not None:
            rows = [s for s in rows if s.sale_date >= since]
        rows.sort(key=lambda s: (s.sale_date, s.id), reverse=True)
        return rows[:limit] if limit is not None else rows

    def insert_redemption(self, *, clinic_id, card_id, perk_id, redeemed_at, service_provided=None,
                          service_value_cents=None, notes=None):
        with self._lock:
            if any(r.perk_id == perk_id for r in self.redemptions.values()):
                raise DuplicateIdentifierError(
                    "Perk already has a recorded redemption", details={"perk_id": perk_id}
                )
            redemption = RedemptionRecord(
                id=self._next_id("redemptions"),
                clinic_id=clinic_id,
                card_id=card_id,
                perk_id=perk_id,
                redeemed_at=redeemed_at,
                service_provided=service_provided,
                service_value_cents=service_value_cents,
                notes=notes,
            )
            self.redemptions[redemption.id] = redemption
            return redemption

    def list_redemptions(self, clinic_id, *, since=None, limit=None):
        with self._lock:
            rows = [r for r in self.redemptions.values() if r.clinic_id == clinic_id]
        if since is not None:
            rows = [r for r in rows if r.redeemed_at >= since]
        rows.sort(key=lambda r: (r.redeemed_at, r.id), reverse=True)
        return rows[:limit] if limit is not None else rows

    def insert_transaction_log_entry(self, *, card_id, transaction_type, performed_by,
                                     performed_by_id, details, occurred_at):
        with self._lock:
            entry = TransactionRecord(
                id=self._next_id("transactions"),
                card_id=card_id,
                transaction_type=transaction_type,
                performed_by=performed_by,
                performed_by_id=performed_by_id,
                details=dict(details or {}),
                occurred_at=occurred_at,
            )
            self.transactions[entry.id] = entry
            return entry

    def list_transactions(self, card_id):
        with self._lock:
            rows = [t for t in self.transactions.values() if t.card_id == card_id]
        return sorted(rows, key=lambda t: (t.occurred_at, t.id))
