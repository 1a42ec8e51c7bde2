from __future__ import annotations

from ..extensions import db


class ClinicSale(db.Model):
    """
    Card sale recorded at activation time.

    WHY: Commission is fixed at the moment of sale from the clinic's rate then,
    so later plan changes never rewrite history. All amounts in cents.
    """
    __tablename__ = "clinic_sales"
    __table_args__ = (
        db.UniqueConstraint("card_id", name="uq_clinic_sales_card"),
        db.Index("ix_clinic_sales_clinic_date", "clinic_id", "sale_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    clinic_id = db.Column(db.Integer, db.ForeignKey("clinics.id"), nullable=False)
    card_id = db.Column(db.Integer, db.ForeignKey("cards.id"), nullable=False)

    sale_amount_cents = db.Column(db.Integer, nullable=False)
    commission_cents = db.Column(db.Integer, nullable=False)
    payment_method = db.Column(db.String(32), nullable=True)

    customer_name = db.Column(db.String(255), nullable=True)
    customer_phone = db.Column(db.String(32), nullable=True)
    customer_email = db.Column(db.String(255), nullable=True)

    status = db.Column(db.String(16), nullable=False, default="completed")
    sale_date = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())


class PerkRedemption(db.Model):
    """Service delivered against a claimed perk (one per perk)."""
    __tablename__ = "perk_redemptions"
    __table_args__ = (
        db.UniqueConstraint("perk_id", name="uq_perk_redemptions_perk"),
        db.Index("ix_perk_redemptions_clinic_date", "clinic_id", "redeemed_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    clinic_id = db.Column(db.Integer, db.ForeignKey("clinics.id"), nullable=False)
    card_id = db.Column(db.Integer, db.ForeignKey("cards.id"), nullable=False, index=True)
    perk_id = db.Column(db.Integer, db.ForeignKey("card_perks.id"), nullable=False)

    service_provided = db.Column(db.String(255), nullable=True)
    service_value_cents = db.Column(db.Integer, nullable=True)
    notes = db.Column(db.Text, nullable=True)

    redeemed_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
