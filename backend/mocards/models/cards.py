from __future__ import annotations

from ..extensions import db


class CardBatch(db.Model):
    """
    Unit of bulk card generation.

    INVARIANT: cards_generated <= total_cards; equality once status='completed'.
    """
    __tablename__ = "card_batches"
    __table_args__ = (
        db.UniqueConstraint("batch_number", name="uq_card_batches_number"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    batch_number = db.Column(db.String(64), nullable=False)
    total_cards = db.Column(db.Integer, nullable=False)
    cards_generated = db.Column(db.Integer, nullable=False, default=0)
    status = db.Column(db.String(16), nullable=False, default="generating", index=True)  # generating, completed
    created_by = db.Column(db.String(128), nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)


class Card(db.Model):
    """
    Physical loyalty card.

    The secret is assembled in two phases: a 4-digit incomplete passcode at
    generation time, then a 3-letter location code from the clinic. The full
    passcode is never stored separately.
    """
    __tablename__ = "cards"
    __table_args__ = (
        db.UniqueConstraint("control_number", name="uq_cards_control_number"),
        db.Index("ix_cards_clinic_status", "assigned_clinic_id", "status"),
        db.Index("ix_cards_clinic_activated", "assigned_clinic_id", "activated_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    batch_id = db.Column(db.Integer, db.ForeignKey("card_batches.id"), nullable=True, index=True)

    control_number = db.Column(db.String(64), nullable=False)
    incomplete_passcode = db.Column(db.String(4), nullable=False)
    location_code = db.Column(db.String(3), nullable=True)

    # unassigned, pending_location, ready, activated, expired
    status = db.Column(db.String(20), nullable=False, default="unassigned", index=True)

    assigned_clinic_id = db.Column(db.Integer, db.ForeignKey("clinics.id"), nullable=True)
    activated_at = db.Column(db.DateTime(timezone=True), nullable=True)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=True)

    customer_name = db.Column(db.String(255), nullable=True)
    customer_phone = db.Column(db.String(32), nullable=True)
    customer_email = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    batch = db.relationship("CardBatch", backref=db.backref("cards", lazy=True))
    perks = db.relationship("CardPerk", backref="card", lazy=True, order_by="CardPerk.id")


class CardPerk(db.Model):
    """One redeemable benefit on a card. claimed flips false -> true at most once."""
    __tablename__ = "card_perks"
    __table_args__ = (
        db.UniqueConstraint("card_id", "perk_type", name="uq_card_perks_card_type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    card_id = db.Column(db.Integer, db.ForeignKey("cards.id"), nullable=False, index=True)
    perk_type = db.Column(db.String(32), nullable=False)

    claimed = db.Column(db.Boolean, nullable=False, default=False)
    claimed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    claimed_by_clinic_id = db.Column(db.Integer, db.ForeignKey("clinics.id"), nullable=True)
