from __future__ import annotations

from ..extensions import db


class Clinic(db.Model):
    """
    Partner clinic that sells, activates and services cards.

    QUOTA: activations_this_period counts activations inside quota_period
    (a 'YYYY-MM' UTC month key). Both columns are only ever changed by one
    conditional UPDATE so concurrent activations cannot overrun
    monthly_card_limit.
    """
    __tablename__ = "clinics"
    __table_args__ = (
        db.UniqueConstraint("clinic_code", name="uq_clinics_code"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    clinic_code = db.Column(db.String(32), nullable=False)
    clinic_name = db.Column(db.String(255), nullable=False)
    password_hash = db.Column(db.String(255), nullable=False)

    owner_name = db.Column(db.String(255), nullable=True)
    contact_email = db.Column(db.String(255), nullable=True)
    contact_phone = db.Column(db.String(32), nullable=True)
    address = db.Column(db.Text, nullable=True)

    subscription_plan = db.Column(db.String(32), nullable=False, default="basic")
    monthly_card_limit = db.Column(db.Integer, nullable=False, default=0)
    commission_rate_bps = db.Column(db.Integer, nullable=False, default=1000)

    quota_period = db.Column(db.String(7), nullable=True)
    activations_this_period = db.Column(db.Integer, nullable=False, default=0)

    # Denormalized aggregate, incremented in the same transaction as each sale
    total_revenue_cents = db.Column(db.Integer, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
