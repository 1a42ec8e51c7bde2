# Overview: Persistence boundary for the card engine and its SQLAlchemy implementation.

"""
Card Repository

The engine reads and writes cards, perks, batches, clinics, sales,
redemptions and the audit trail only through CardRepository. Any store that
honours these contracts will do:

- transaction(): everything inside commits together or not at all
- create_card_with_perks(): the card row and all of its perks exist, or none do
- conditional_update_card() / conditional_claim_perk(): compare-and-set; the
  write only happens when the guard still holds, and None tells the caller
  it lost the race
- reserve_activation_slot(): row-level conditional increment of the clinic's
  monthly activation counter; False when the limit is reached

Unique identifier collisions surface as DuplicateIdentifierError, transient
storage failures as RepositoryUnavailableError.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Iterable, Iterator, Optional

from sqlalchemy import case, func, or_, text, update
from sqlalchemy.exc import IntegrityError, OperationalError

from ..extensions import db
from ..models import Card, CardBatch, CardPerk, CardTransaction, Clinic, ClinicSale, PerkRedemption
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
from .errors import DuplicateIdentifierError, RepositoryUnavailableError


CARD_UPDATABLE_FIELDS = frozenset({
    "status",
    "location_code",
    "assigned_clinic_id",
    "activated_at",
    "expires_at",
    "customer_name",
    "customer_phone",
    "customer_email",
    "updated_at",
})


class CardRepository(ABC):
    """Narrow data-access interface consumed by the card services."""

    @abstractmethod
    def transaction(self):
        """Context manager: commit on success, roll back on any exception."""

    # -- batches ---------------------------------------------------------

    @abstractmethod
    def create_batch(self, *, batch_number: str, total_cards: int, created_by: str,
                     created_at: datetime) -> BatchRecord: ...

    @abstractmethod
    def update_batch_progress(self, batch_id: int, cards_generated: int) -> BatchRecord: ...

    @abstractmethod
    def complete_batch(self, batch_id: int, *, completed_at: datetime) -> Optional[BatchRecord]:
        """generating -> completed, only when cards_generated == total_cards."""

    @abstractmethod
    def get_batch(self, batch_id: int) -> Optional[BatchRecord]: ...

    @abstractmethod
    def list_batches(self, *, limit: int = 50) -> list[BatchRecord]: ...

    # -- cards and perks -------------------------------------------------

    @abstractmethod
    def create_card_with_perks(self, *, batch_id: Optional[int], control_number: str,
                               incomplete_passcode: str, perk_types: Iterable[str],
                               created_at: datetime) -> tuple[CardRecord, list[PerkRecord]]: ...

    @abstractmethod
    def get_card(self, card_id: int) -> Optional[CardRecord]: ...

    @abstractmethod
    def find_card_by_control_number(self, control_number: str) -> Optional[CardRecord]: ...

    @abstractmethod
    def list_cards(self, *, batch_id: Optional[int] = None, clinic_id: Optional[int] = None,
                   statuses: Optional[Iterable[str]] = None, unassigned_only: bool = False,
                   expires_before: Optional[datetime] = None,
                   limit: Optional[int] = None) -> list[CardRecord]: ...

    @abstractmethod
    def conditional_update_card(self, card_id: int, *, expected: dict[str, Any],
                                fields: dict[str, Any]) -> Optional[CardRecord]:
        """
        Write `fields` only if every `expected` column still matches.

        An expected value that is a tuple/list/set/frozenset means "one of".
        Returns the updated card, or None when the guard failed.
        """

    @abstractmethod
    def get_perk(self, perk_id: int) -> Optional[PerkRecord]: ...

    @abstractmethod
    def list_perks(self, card_id: int) -> list[PerkRecord]: ...

    @abstractmethod
    def conditional_claim_perk(self, perk_id: int, *, clinic_id: int,
                               claimed_at: datetime) -> Optional[PerkRecord]:
        """claimed false -> true; None if the perk was already claimed."""

    # -- clinics ---------------------------------------------------------

    @abstractmethod
    def create_clinic(self, *, clinic_code: str, clinic_name: str, password_hash: str,
                      subscription_plan: str, monthly_card_limit: int, commission_rate_bps: int,
                      created_at: datetime, owner_name: Optional[str] = None,
                      contact_email: Optional[str] = None, contact_phone: Optional[str] = None,
                      address: Optional[str] = None) -> ClinicRecord: ...

    @abstractmethod
    def get_clinic(self, clinic_id: int) -> Optional[ClinicRecord]: ...

    @abstractmethod
    def find_clinic_by_code(self, clinic_code: str) -> Optional[ClinicRecord]: ...

    @abstractmethod
    def list_clinics(self) -> list[ClinicRecord]: ...

    @abstractmethod
    def set_clinic_active(self, clinic_id: int, is_active: bool) -> Optional[ClinicRecord]: ...

    @abstractmethod
    def reserve_activation_slot(self, clinic_id: int, *, now: datetime) -> bool: ...

    @abstractmethod
    def add_clinic_revenue(self, clinic_id: int, amount_cents: int) -> None: ...

    @abstractmethod
    def count_activations_this_month(self, clinic_id: int, *, now: datetime) -> int: ...

    # -- sales, redemptions, audit trail ---------------------------------

    @abstractmethod
    def insert_sale(self, *, clinic_id: int, card_id: int, sale_amount_cents: int,
                    commission_cents: int, sale_date: datetime,
                    payment_method: Optional[str] = None, customer_name: Optional[str] = None,
                    customer_phone: Optional[str] = None,
                    customer_email: Optional[str] = None) -> SaleRecord: ...

    @abstractmethod
    def list_sales(self, clinic_id: int, *, since: Optional[datetime] = None,
                   limit: Optional[int] = None) -> list[SaleRecord]: ...

    @abstractmethod
    def insert_redemption(self, *, clinic_id: int, card_id: int, perk_id: int,
                          redeemed_at: datetime, service_provided: Optional[str] = None,
                          service_value_cents: Optional[int] = None,
                          notes: Optional[str] = None) -> RedemptionRecord: ...

    @abstractmethod
    def list_redemptions(self, clinic_id: int, *, since: Optional[datetime] = None,
                         limit: Optional[int] = None) -> list[RedemptionRecord]: ...

    @abstractmethod
    def insert_transaction_log_entry(self, *, card_id: int, transaction_type: str,
                                     performed_by: str, performed_by_id: Optional[str],
                                     details: dict, occurred_at: datetime) -> TransactionRecord: ...

    @abstractmethod
    def list_transactions(self, card_id: int) -> list[TransactionRecord]: ...


def get_repository() -> CardRepository:
    """Repository bound to the current Flask-SQLAlchemy session."""
    return SqlCardRepository()


# ================================================================================
# SQLAlchemy implementation
# ================================================================================

def _batch_record(b: CardBatch) -> BatchRecord:
    return BatchRecord(
        id=b.id,
        batch_number=b.batch_number,
        total_cards=b.total_cards,
        cards_generated=b.cards_generated,
        status=b.status,
        created_by=b.created_by,
        created_at=b.created_at,
        completed_at=b.completed_at,
    )


def _card_record(c: Card) -> CardRecord:
    return CardRecord(
        id=c.id,
        batch_id=c.batch_id,
        control_number=c.control_number,
        incomplete_passcode=c.incomplete_passcode,
        status=c.status,
        created_at=c.created_at,
        location_code=c.location_code,
        assigned_clinic_id=c.assigned_clinic_id,
        activated_at=c.activated_at,
        expires_at=c.expires_at,
        customer_name=c.customer_name,
        customer_phone=c.customer_phone,
        customer_email=c.customer_email,
        updated_at=c.updated_at,
    )


def _perk_record(p: CardPerk) -> PerkRecord:
    return PerkRecord(
        id=p.id,
        card_id=p.card_id,
        perk_type=p.perk_type,
        claimed=p.claimed,
        claimed_at=p.claimed_at,
        claimed_by_clinic_id=p.claimed_by_clinic_id,
    )


def _clinic_record(c: Clinic) -> ClinicRecord:
    return ClinicRecord(
        id=c.id,
        clinic_code=c.clinic_code,
        clinic_name=c.clinic_name,
        password_hash=c.password_hash,
        subscription_plan=c.subscription_plan,
        monthly_card_limit=c.monthly_card_limit,
        commission_rate_bps=c.commission_rate_bps,
        created_at=c.created_at,
        owner_name=c.owner_name,
        contact_email=c.contact_email,
        contact_phone=c.contact_phone,
        address=c.address,
        is_active=c.is_active,
        quota_period=c.quota_period,
        activations_this_period=c.activations_this_period,
        total_revenue_cents=c.total_revenue_cents,
    )


def _sale_record(s: ClinicSale) -> SaleRecord:
    return SaleRecord(
        id=s.id,
        clinic_id=s.clinic_id,
        card_id=s.card_id,
        sale_amount_cents=s.sale_amount_cents,
        commission_cents=s.commission_cents,
        sale_date=s.sale_date,
        payment_method=s.payment_method,
        customer_name=s.customer_name,
        customer_phone=s.customer_phone,
        customer_email=s.customer_email,
        status=s.status,
    )


def _redemption_record(r: PerkRedemption) -> RedemptionRecord:
    return RedemptionRecord(
        id=r.id,
        clinic_id=r.clinic_id,
        card_id=r.card_id,
        perk_id=r.perk_id,
        redeemed_at=r.redeemed_at,
        service_provided=r.service_provided,
        service_value_cents=r.service_value_cents,
        notes=r.notes,
    )


def _transaction_record(t: CardTransaction) -> TransactionRecord:
    return TransactionRecord(
        id=t.id,
        card_id=t.card_id,
        transaction_type=t.transaction_type,
        performed_by=t.performed_by,
        performed_by_id=t.performed_by_id,
        details=dict(t.details or {}),
        occurred_at=t.occurred_at,
    )


def _sqlite_write_open(session) -> bool:
    # pysqlite only opens its own transaction at the first DML statement
    return bool(session.connection().connection.driver_connection.in_transaction)


def _guard(column, value):
    if isinstance(value, (tuple, list, set, frozenset)):
        return column.in_(list(value))
    if value is None:
        return column.is_(None)
    return column == value


class SqlCardRepository(CardRepository):
    """
    CardRepository over the Flask-SQLAlchemy session.

    Compare-and-set writes are single UPDATE ... WHERE statements; the
    affected row count decides who won. On SQLite the write lock is taken
    up front (BEGIN IMMEDIATE) since SELECT ... FOR UPDATE is ignored there.
    """

    def __init__(self, session=None):
        self.session = session or db.session

    @contextmanager
    def transaction(self) -> Iterator["SqlCardRepository"]:
        session = self.session
        try:
            if db.engine.dialect.name == "sqlite" and not _sqlite_write_open(session):
                session.execute(text("BEGIN IMMEDIATE"))
            yield self
            session.commit()
        except OperationalError as exc:
            session.rollback()
            raise RepositoryUnavailableError(
                "Card repository temporarily unavailable",
                details={"reason": str(exc.orig) if exc.orig else str(exc)},
            ) from exc
        except Exception:
            session.rollback()
            raise

    # -- batches ---------------------------------------------------------

    def create_batch(self, *, batch_number, total_cards, created_by, created_at):
        batch = CardBatch(
            batch_number=batch_number,
            total_cards=total_cards,
            cards_generated=0,
            status=BATCH_GENERATING,
            created_by=created_by,
            created_at=created_at,
        )
        self.session.add(batch)
        try:
            self.session.flush()
        except IntegrityError as exc:
            raise DuplicateIdentifierError(
                f"Batch number '{batch_number}' already exists",
                details={"batch_number": batch_number},
            ) from exc
        return _batch_record(batch)

    def update_batch_progress(self, batch_id, cards_generated):
        self.session.execute(
            update(CardBatch)
            .where(CardBatch.id == batch_id, CardBatch.total_cards >= cards_generated)
            .values(cards_generated=cards_generated)
            .execution_options(synchronize_session=False)
        )
        return self.get_batch(batch_id)

    def complete_batch(self, batch_id, *, completed_at):
        result = self.session.execute(
            update(CardBatch)
            .where(
                CardBatch.id == batch_id,
                CardBatch.status == BATCH_GENERATING,
                CardBatch.cards_generated == CardBatch.total_cards,
            )
            .values(status=BATCH_COMPLETED, completed_at=completed_at)
            .execution_options(synchronize_session=False)
        )
        if not result.rowcount:
            return None
        return self.get_batch(batch_id)

    def get_batch(self, batch_id):
        batch = self.session.get(CardBatch, batch_id, populate_existing=True)
        return _batch_record(batch) if batch else None

    def list_batches(self, *, limit=50):
        rows = (
            self.session.query(CardBatch)
            .order_by(CardBatch.created_at.desc(), CardBatch.id.desc())
            .limit(limit)
            .all()
        )
        return [_batch_record(b) for b in rows]

    # -- cards and perks -------------------------------------------------

    def create_card_with_perks(self, *, batch_id, control_number, incomplete_passcode,
                               perk_types, created_at):
        card = Card(
            batch_id=batch_id,
            control_number=control_number,
            incomplete_passcode=incomplete_passcode,
            status=CARD_UNASSIGNED,
            created_at=created_at,
        )
        self.session.add(card)
        try:
            self.session.flush()
            perks = [CardPerk(card_id=card.id, perk_type=t, claimed=False) for t in perk_types]
            self.session.add_all(perks)
            self.session.flush()
        except IntegrityError as exc:
            raise DuplicateIdentifierError(
                f"Control number '{control_number}' already exists",
                details={"control_number": control_number},
            ) from exc
        return _card_record(card), [_perk_record(p) for p in perks]

    def get_card(self, card_id):
        card = self.session.get(Card, card_id, populate_existing=True)
        return _card_record(card) if card else None

    def find_card_by_control_number(self, control_number):
        card = (
            self.session.query(Card)
            .populate_existing()
            .filter(Card.control_number == control_number)
            .first()
        )
        return _card_record(card) if card else None

    def list_cards(self, *, batch_id=None, clinic_id=None, statuses=None, unassigned_only=False,
                   expires_before=None, limit=None):
        q = self.session.query(Card).populate_existing()
        if batch_id is not None:
            q = q.filter(Card.batch_id == batch_id)
        if clinic_id is not None:
            q = q.filter(Card.assigned_clinic_id == clinic_id)
        if statuses is not None:
            q = q.filter(Card.status.in_(list(statuses)))
        if unassigned_only:
            q = q.filter(Card.assigned_clinic_id.is_(None))
        if expires_before is not None:
            q = q.filter(Card.expires_at.isnot(None), Card.expires_at < expires_before)
        q = q.order_by(Card.id)
        if limit is not None:
            q = q.limit(limit)
        return [_card_record(c) for c in q.all()]

    def conditional_update_card(self, card_id, *, expected, fields):
        unknown = set(fields) - CARD_UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Card fields not updatable: {', '.join(sorted(unknown))}")

        conditions = [Card.id == card_id]
        conditions.extend(_guard(getattr(Card, key), value) for key, value in expected.items())

        result = self.session.execute(
            update(Card)
            .where(*conditions)
            .values(**fields)
            .execution_options(synchronize_session=False)
        )
        if not result.rowcount:
            return None
        return self.get_card(card_id)

    def get_perk(self, perk_id):
        perk = self.session.get(CardPerk, perk_id, populate_existing=True)
        return _perk_record(perk) if perk else None

    def list_perks(self, card_id):
        rows = (
            self.session.query(CardPerk)
            .populate_existing()
            .filter(CardPerk.card_id == card_id)
            .order_by(CardPerk.id)
            .all()
        )
        return [_perk_record(p) for p in rows]

    def conditional_claim_perk(self, perk_id, *, clinic_id, claimed_at):
        result = self.session.execute(
            update(CardPerk)
            .where(CardPerk.id == perk_id, CardPerk.claimed.is_(False))
            .values(claimed=True, claimed_at=claimed_at, claimed_by_clinic_id=clinic_id)
            .execution_options(synchronize_session=False)
        )
        if not result.rowcount:
            return None
        return self.get_perk(perk_id)

    # -- clinics ---------------------------------------------------------

    def create_clinic(self, *, clinic_code, clinic_name, password_hash, subscription_plan,
                      monthly_card_limit, commission_rate_bps, created_at, owner_name=None,
                      contact_email=None, contact_phone=None, address=None):
        clinic = Clinic(
            clinic_code=clinic_code,
            clinic_name=clinic_name,
            password_hash=password_hash,
            subscription_plan=subscription_plan,
            monthly_card_limit=monthly_card_limit,
            commission_rate_bps=commission_rate_bps,
            owner_name=owner_name,
            contact_email=contact_email,
            contact_phone=contact_phone,
            address=address,
            is_active=True,
            activations_this_period=0,
            total_revenue_cents=0,
            created_at=created_at,
            updated_at=created_at,
        )
        self.session.add(clinic)
        try:
            self.session.flush()
        except IntegrityError as exc:
            raise DuplicateIdentifierError(
                f"Clinic code '{clinic_code}' already exists",
                details={"clinic_code": clinic_code},
            ) from exc
        return _clinic_record(clinic)

    def get_clinic(self, clinic_id):
        clinic = self.session.get(Clinic, clinic_id, populate_existing=True)
        return _clinic_record(clinic) if clinic else None

    def find_clinic_by_code(self, clinic_code):
        clinic = (
            self.session.query(Clinic)
            .populate_existing()
            .filter(Clinic.clinic_code == clinic_code)
            .first()
        )
        return _clinic_record(clinic) if clinic else None

    def list_clinics(self):
        return [_clinic_record(c) for c in self.session.query(Clinic).populate_existing().order_by(Clinic.id).all()]

    def set_clinic_active(self, clinic_id, is_active):
        self.session.execute(
            update(Clinic)
            .where(Clinic.id == clinic_id)
            .values(is_active=is_active)
            .execution_options(synchronize_session=False)
        )
        return self.get_clinic(clinic_id)

    def reserve_activation_slot(self, clinic_id, *, now):
        period = month_key(now)
        result = self.session.execute(
            update(Clinic)
            .where(
                Clinic.id == clinic_id,
                Clinic.is_active.is_(True),
                Clinic.monthly_card_limit > 0,
                # The period never moves backwards
                or_(Clinic.quota_period.is_(None), Clinic.quota_period <= period),
                or_(
                    Clinic.quota_period.is_(None),
                    Clinic.quota_period != period,
                    Clinic.activations_this_period < Clinic.monthly_card_limit,
                ),
            )
            .values(
                # SET expressions read the pre-update row
                activations_this_period=case(
                    (Clinic.quota_period == period, Clinic.activations_this_period + 1),
                    else_=1,
                ),
                quota_period=period,
            )
            .execution_options(synchronize_session=False)
        )
        return bool(result.rowcount)

    def add_clinic_revenue(self, clinic_id, amount_cents):
        self.session.execute(
            update(Clinic)
            .where(Clinic.id == clinic_id)
            .values(total_revenue_cents=Clinic.total_revenue_cents + amount_cents)
            .execution_options(synchronize_session=False)
        )

    def count_activations_this_month(self, clinic_id, *, now):
        start, end = month_bounds(now)
        return (
            self.session.query(func.count(Card.id))
            .filter(
                Card.assigned_clinic_id == clinic_id,
                Card.activated_at.isnot(None),
                Card.activated_at >= start,
                Card.activated_at < end,
            )
            .scalar()
        ) or 0

    # -- sales, redemptions, audit trail ---------------------------------

    def insert_sale(self, *, clinic_id, card_id, sale_amount_cents, commission_cents, sale_date,
                    payment_method=None, customer_name=None, customer_phone=None,
                    customer_email=None):
        sale = ClinicSale(
            clinic_id=clinic_id,
            card_id=card_id,
            sale_amount_cents=sale_amount_cents,
            commission_cents=commission_cents,
            payment_method=payment_method,
            customer_name=customer_name,
            customer_phone=customer_phone,
            customer_email=customer_email,
            status="completed",
            sale_date=sale_date,
        )
        self.session.add(sale)
        self.session.flush()
        return _sale_record(sale)

    def list_sales(self, clinic_id, *, since=None, limit=None):
        q = self.session.query(ClinicSale).filter(ClinicSale.clinic_id == clinic_id)
        if since is not None:
            q = q.filter(ClinicSale.sale_date >= since)
        q = q.order_by(ClinicSale.sale_date.desc(), ClinicSale.id.desc())
        if limit is not None:
            q = q.limit(limit)
        return [_sale_record(s) for s in q.all()]

    def insert_redemption(self, *, clinic_id, card_id, perk_id, redeemed_at, service_provided=None,
                          service_value_cents=None, notes=None):
        redemption = PerkRedemption(
            clinic_id=clinic_id,
            card_id=card_id,
            perk_id=perk_id,
            service_provided=service_provided,
            service_value_cents=service_value_cents,
            notes=notes,
            redeemed_at=redeemed_at,
        )
        self.session.add(redemption)
        self.session.flush()
        return _redemption_record(redemption)

    def list_redemptions(self, clinic_id, *, since=None, limit=None):
        q = self.session.query(PerkRedemption).filter(PerkRedemption.clinic_id == clinic_id)
        if since is not None:
            q = q.filter(PerkRedemption.redeemed_at >= since)
        q = q.order_by(PerkRedemption.redeemed_at.desc(), PerkRedemption.id.desc())
        if limit is not None:
            q = q.limit(limit)
        return [_redemption_record(r) for r in q.all()]

    def insert_transaction_log_entry(self, *, card_id, transaction_type, performed_by,
                                     performed_by_id, details, occurred_at):
        entry = CardTransaction(
            card_id=card_id,
            transaction_type=transaction_type,
            performed_by=performed_by,
            performed_by_id=performed_by_id,
            details=details,
            occurred_at=occurred_at,
        )
        self.session.add(entry)
        self.session.flush()
        return _transaction_record(entry)

    def list_transactions(self, card_id):
        rows = (
            self.session.query(CardTransaction)
            .filter(CardTransaction.card_id == card_id)
            .order_by(CardTransaction.occurred_at, CardTransaction.id)
            .all()
        )
        return [_transaction_record(t) for t in rows]
