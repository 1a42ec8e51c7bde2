"""
Engine-side records for persisted rows.

Repositories return these frozen dataclasses instead of live ORM objects so
that nothing outside a repository write can change stored state. A changed
row is a new record (dataclasses.replace), never an in-place mutation.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from .perk_catalog import perk_label
from .time_utils import to_utc_z


# Card lifecycle states (see services/lifecycle_service.py for transitions)
CARD_UNASSIGNED = "unassigned"
CARD_PENDING_LOCATION = "pending_location"
CARD_READY = "ready"
CARD_ACTIVATED = "activated"
CARD_EXPIRED = "expired"

CARD_STATUSES = (CARD_UNASSIGNED, CARD_PENDING_LOCATION, CARD_READY, CARD_ACTIVATED, CARD_EXPIRED)

BATCH_GENERATING = "generating"
BATCH_COMPLETED = "completed"

# Audit trail entry types
TX_CREATED = "created"
TX_DISTRIBUTED = "distributed"
TX_LOCATION_ASSIGNED = "location_assigned"
TX_ACTIVATED = "activated"
TX_PERK_CLAIMED = "perk_claimed"

TRANSACTION_TYPES = (TX_CREATED, TX_DISTRIBUTED, TX_LOCATION_ASSIGNED, TX_ACTIVATED, TX_PERK_CLAIMED)


@dataclass(frozen=True)
class CustomerInfo:
    name: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> Optional["CustomerInfo"]:
        if not data:
            return None
        return cls(
            name=data.get("customer_name"),
            phone=data.get("customer_phone"),
            email=data.get("customer_email"),
        )


@dataclass(frozen=True)
class BatchRecord:
    id: int
    batch_number: str
    total_cards: int
    cards_generated: int
    status: str
    created_by: str
    created_at: datetime
    completed_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "batch_number": self.batch_number,
            "total_cards": self.total_cards,
            "cards_generated": self.cards_generated,
            "status": self.status,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
            "completed_at": to_utc_z(self.completed_at) if self.completed_at else None,
        }


@dataclass(frozen=True)
class PerkRecord:
    id: int
    card_id: int
    perk_type: str
    claimed: bool = False
    claimed_at: Optional[datetime] = None
    claimed_by_clinic_id: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "card_id": self.card_id,
            "perk_type": self.perk_type,
            "label": perk_label(self.perk_type),
            "claimed": self.claimed,
            "claimed_at": to_utc_z(self.claimed_at) if self.claimed_at else None,
            "claimed_by_clinic_id": self.claimed_by_clinic_id,
        }


@dataclass(frozen=True)
class CardRecord:
    id: int
    batch_id: Optional[int]
    control_number: str
    incomplete_passcode: str
    status: str
    created_at: datetime
    location_code: Optional[str] = None
    assigned_clinic_id: Optional[int] = None
    activated_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    customer_email: Optional[str] = None
    updated_at: Optional[datetime] = None

    @property
    def passcode(self) -> Optional[str]:
        """Location code + incomplete passcode; None until both exist."""
        if self.location_code and self.incomplete_passcode:
            return f"{self.location_code}{self.incomplete_passcode}"
        return None

    def is_expired(self, now: datetime) -> bool:
        if self.status == CARD_EXPIRED:
            return True
        return self.expires_at is not None and now > self.expires_at

    def effective_status(self, now: datetime) -> str:
        """Status with expiry applied lazily (no write)."""
        if self.status == CARD_ACTIVATED and self.is_expired(now):
            return CARD_EXPIRED
        return self.status

    def to_dict(self, *, now: Optional[datetime] = None, include_secrets: bool = False) -> dict:
        data = {
            "id": self.id,
            "batch_id": self.batch_id,
            "control_number": self.control_number,
            "location_code": self.location_code,
            "status": self.effective_status(now) if now else self.status,
            "assigned_clinic_id": self.assigned_clinic_id,
            "activated_at": to_utc_z(self.activated_at) if self.activated_at else None,
            "expires_at": to_utc_z(self.expires_at) if self.expires_at else None,
            "customer_name": self.customer_name,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at) if self.updated_at else None,
        }
        if include_secrets:
            data["incomplete_passcode"] = self.incomplete_passcode
            data["passcode"] = self.passcode
        return data


@dataclass(frozen=True)
class ClinicRecord:
    id: int
    clinic_code: str
    clinic_name: str
    password_hash: str
    subscription_plan: str
    monthly_card_limit: int
    commission_rate_bps: int
    created_at: datetime
    owner_name: Optional[str] = None
    contact_email: Optional[str] = None
    contact_phone: Optional[str] = None
    address: Optional[str] = None
    is_active: bool = True
    quota_period: Optional[str] = None
    activations_this_period: int = 0
    total_revenue_cents: int = 0

    @property
    def commission_rate(self) -> float:
        """Commission rate as a percentage (1000 bps -> 10.0)."""
        return self.commission_rate_bps / 100

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "clinic_code": self.clinic_code,
            "clinic_name": self.clinic_name,
            "owner_name": self.owner_name,
            "contact_email": self.contact_email,
            "contact_phone": self.contact_phone,
            "address": self.address,
            "subscription_plan": self.subscription_plan,
            "monthly_card_limit": self.monthly_card_limit,
            "commission_rate": self.commission_rate,
            "is_active": self.is_active,
            "total_revenue_cents": self.total_revenue_cents,
            "created_at": to_utc_z(self.created_at),
        }


@dataclass(frozen=True)
class SaleRecord:
    id: int
    clinic_id: int
    card_id: int
    sale_amount_cents: int
    commission_cents: int
    sale_date: datetime
    payment_method: Optional[str] = None
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    customer_email: Optional[str] = None
    status: str = "completed"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "clinic_id": self.clinic_id,
            "card_id": self.card_id,
            "sale_amount_cents": self.sale_amount_cents,
            "commission_cents": self.commission_cents,
            "payment_method": self.payment_method,
            "customer_name": self.customer_name,
            "customer_phone": self.customer_phone,
            "customer_email": self.customer_email,
            "status": self.status,
            "sale_date": to_utc_z(self.sale_date),
        }


@dataclass(frozen=True)
class RedemptionRecord:
    id: int
    clinic_id: int
    card_id: int
    perk_id: int
    redeemed_at: datetime
    service_provided: Optional[str] = None
    service_value_cents: Optional[int] = None
    notes: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "clinic_id": self.clinic_id,
            "card_id": self.card_id,
            "perk_id": self.perk_id,
            "service_provided": self.service_provided,
            "service_value_cents": self.service_value_cents,
            "notes": self.notes,
            "redeemed_at": to_utc_z(self.redeemed_at),
        }


@dataclass(frozen=True)
class TransactionRecord:
    id: int
    card_id: int
    transaction_type: str
    performed_by: str
    occurred_at: datetime
    performed_by_id: Optional[str] = None
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "card_id": self.card_id,
            "transaction_type": self.transaction_type,
            "performed_by": self.performed_by,
            "performed_by_id": self.performed_by_id,
            "details": dict(self.details),
            "occurred_at": to_utc_z(self.occurred_at),
        }
