# Overview: Service-layer operations for clinics; onboarding, credentials, activation state and dashboard.

"""
Clinic Service

ONBOARDING:
- Clinic code: first 3 letters of the clinic name (padded with X) plus a
  3-digit suffix, e.g. "Smile Dental" -> SMI482. Retried on collision.
- Temporary password: 12 characters with at least one uppercase letter,
  lowercase letter, digit and symbol. Only the bcrypt hash is stored; the
  plaintext is returned once from create_clinic and never again.
- Monthly card limit and commission rate are copied from the plan at
  creation time.

DASHBOARD:
- Read-only aggregates over the clinic's cards, sales and redemptions for
  the current UTC calendar month.
"""

from __future__ import annotations

import logging
import re
import secrets
import string
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import bcrypt

from ..config import get_setting
from ..records import CARD_ACTIVATED, ClinicRecord
from ..time_utils import month_bounds, month_key, utcnow
from .card_repository import CardRepository, get_repository
from .concurrency import run_with_configured_retry
from .errors import ClinicNotFoundError, DuplicateIdentifierError, ValidationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SubscriptionPlan:
    name: str
    monthly_card_limit: int
    commission_rate_bps: int


SUBSCRIPTION_PLANS = {
    "basic": SubscriptionPlan("basic", 100, 1000),
    "professional": SubscriptionPlan("professional", 500, 1200),
    "enterprise": SubscriptionPlan("enterprise", 2000, 1500),
}

PASSWORD_SYMBOLS = "!@#$%&*"
PASSWORD_LENGTH = 12
MAX_CODE_ATTEMPTS = 10

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


@dataclass(frozen=True)
class ClinicCredentials:
    clinic_code: str
    password: str

    def to_dict(self) -> dict:
        return {"clinic_code": self.clinic_code, "password": self.password}


def hash_password(password: str) -> str:
    salt = bcrypt.gensalt(rounds=int(get_setting("BCRYPT_ROUNDS", 12)))
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # Malformed stored hash
        return False


def new_clinic_code(clinic_name: str) -> str:
    letters = re.sub(r"[^A-Za-z]", "", clinic_name or "")[:3].upper().ljust(3, "X")
    return f"{letters}{100 + secrets.randbelow(900)}"


def new_temporary_password(length: int = PASSWORD_LENGTH) -> str:
    if length < 4:
        raise ValueError("length must be >= 4")
    pools = (string.ascii_uppercase, string.ascii_lowercase, string.digits, PASSWORD_SYMBOLS)
    chars = [secrets.choice(pool) for pool in pools]
    everything = "".join(pools)
    chars.extend(secrets.choice(everything) for _ in range(length - len(chars)))
    secrets.SystemRandom().shuffle(chars)
    return "".join(chars)


def get_plan(plan_name: str) -> SubscriptionPlan:
    plan = SUBSCRIPTION_PLANS.get((plan_name or "").strip().lower())
    if plan is None:
        raise ValidationError(
            f"Unknown subscription plan '{plan_name}'",
            details={"subscription_plan": plan_name, "allowed": sorted(SUBSCRIPTION_PLANS)},
        )
    return plan


def create_clinic(
    clinic_name: str,
    *,
    subscription_plan: str = "basic",
    owner_name: Optional[str] = None,
    contact_email: Optional[str] = None,
    contact_phone: Optional[str] = None,
    address: Optional[str] = None,
    repo: Optional[CardRepository] = None,
    now: Optional[datetime] = None,
) -> tuple[ClinicRecord, ClinicCredentials]:
    """
    Register a clinic on a subscription plan.

    Returns:
        (clinic, credentials); the plaintext password exists only in the credentials
    """
    clinic_name = (clinic_name or "").strip()
    if not clinic_name:
        raise ValidationError("clinic_name required")
    plan = get_plan(subscription_plan)
    if contact_email is not None and not _EMAIL_RE.match(contact_email.strip()):
        raise ValidationError("contact_email is not a valid email address", details={"contact_email": contact_email})

    repo = repo or get_repository()
    now = now or utcnow()
    password = new_temporary_password()
    password_hash = hash_password(password)

    for _ in range(MAX_CODE_ATTEMPTS):
        clinic_code = new_clinic_code(clinic_name)

        def _op():
            with repo.transaction():
                return repo.create_clinic(
                    clinic_code=clinic_code,
                    clinic_name=clinic_name,
                    password_hash=password_hash,
                    subscription_plan=plan.name,
                    monthly_card_limit=plan.monthly_card_limit,
                    commission_rate_bps=plan.commission_rate_bps,
                    created_at=now,
                    owner_name=owner_name,
                    contact_email=contact_email.strip() if contact_email else None,
                    contact_phone=contact_phone,
                    address=address,
                )

        try:
            clinic = run_with_configured_retry(_op)
        except DuplicateIdentifierError:
            logger.warning("Clinic code %s already taken, generating another", clinic_code)
            continue

        logger.info("Clinic %s (%s) created on plan %s", clinic.clinic_code, clinic.clinic_name, plan.name)
        return clinic, ClinicCredentials(clinic_code=clinic.clinic_code, password=password)

    raise DuplicateIdentifierError(
        "Could not allocate a unique clinic code",
        details={"clinic_name": clinic_name, "attempts": MAX_CODE_ATTEMPTS},
    )


def get_clinic(clinic_id: int, *, repo: Optional[CardRepository] = None) -> ClinicRecord:
    repo = repo or get_repository()
    clinic = repo.get_clinic(clinic_id)
    if clinic is None:
        raise ClinicNotFoundError(f"Clinic {clinic_id} not found", details={"clinic_id": clinic_id})
    return clinic


def list_clinics(*, repo: Optional[CardRepository] = None) -> list[ClinicRecord]:
    repo = repo or get_repository()
    return repo.list_clinics()


def verify_clinic_credentials(
    clinic_code: str,
    password: str,
    *,
    repo: Optional[CardRepository] = None,
) -> Optional[ClinicRecord]:
    """
    Return the clinic when code and password match an active clinic, else None.

    Unknown codes and wrong passwords are indistinguishable to the caller.
    """
    repo = repo or get_repository()
    clinic = repo.find_clinic_by_code((clinic_code or "").strip().upper())
    if clinic is None or not clinic.is_active:
        return None
    if not verify_password(password or "", clinic.password_hash):
        return None
    return clinic


def set_clinic_active(
    clinic_id: int,
    is_active: bool,
    *,
    repo: Optional[CardRepository] = None,
) -> ClinicRecord:
    repo = repo or get_repository()

    def _op():
        with repo.transaction():
            clinic = repo.set_clinic_active(clinic_id, bool(is_active))
            if clinic is None:
                raise ClinicNotFoundError(f"Clinic {clinic_id} not found", details={"clinic_id": clinic_id})
            return clinic

    clinic = run_with_configured_retry(_op)
    logger.info("Clinic %s is_active=%s", clinic.clinic_code, clinic.is_active)
    return clinic


def get_clinic_dashboard(
    clinic_id: int,
    *,
    repo: Optional[CardRepository] = None,
    now: Optional[datetime] = None,
) -> dict:
    """
    Read-only summary for the clinic's home screen.

    Active cards use the lazily expired status, so a card past expires_at
    is not counted even when no sweep has persisted it.
    """
    repo = repo or get_repository()
    now = now or utcnow()
    clinic = get_clinic(clinic_id, repo=repo)
    month_start, _month_end = month_bounds(now)

    cards = repo.list_cards(clinic_id=clinic_id)
    active_cards = sum(1 for c in cards if c.effective_status(now) == CARD_ACTIVATED)

    sales = repo.list_sales(clinic_id)
    monthly_sales = [s for s in sales if s.sale_date >= month_start]
    redemptions = repo.list_redemptions(clinic_id)
    monthly_redemptions = [r for r in redemptions if r.redeemed_at >= month_start]

    activations_this_month = repo.count_activations_this_month(clinic_id, now=now)
    used_slots = clinic.activations_this_period if clinic.quota_period == month_key(now) else 0

    return {
        "clinic": clinic.to_dict(),
        "period": month_key(now),
        "total_cards": len(cards),
        "active_cards": active_cards,
        "activations_this_month": activations_this_month,
        "remaining_monthly_limit": max(clinic.monthly_card_limit - used_slots, 0),
        "total_revenue_cents": clinic.total_revenue_cents,
        "monthly_revenue_cents": sum(s.sale_amount_cents for s in monthly_sales),
        "monthly_commission_cents": sum(s.commission_cents for s in monthly_sales),
        "total_perks_redeemed": len(redemptions),
        "monthly_perks_redeemed": len(monthly_redemptions),
    }
