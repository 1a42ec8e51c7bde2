from __future__ import annotations

from ..extensions import db


class CardTransaction(db.Model):
    """
    Append-only audit trail of card state changes.

    TRANSACTION TYPES:
    - created: card minted in a batch
    - distributed: card handed to a clinic by an admin
    - location_assigned: clinic completed the passcode
    - activated: card sold/bound to a customer
    - perk_claimed: one perk redeemed

    Rows are never updated or deleted.
    """
    __tablename__ = "card_transactions"
    __table_args__ = (
        db.Index("ix_card_transactions_card_occurred", "card_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    card_id = db.Column(db.Integer, db.ForeignKey("cards.id"), nullable=False)
    transaction_type = db.Column(db.String(32), nullable=False, index=True)
    performed_by = db.Column(db.String(32), nullable=False)  # admin, clinic, system
    performed_by_id = db.Column(db.String(128), nullable=True)
    details = db.Column(db.JSON, nullable=False, default=dict)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
