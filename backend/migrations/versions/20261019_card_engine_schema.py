"""Card engine schema: clinics, batches, cards, perks, sales, redemptions, transactions

Revision ID: 20261019_card_engine
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261019_card_engine"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "clinics",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("clinic_code", sa.String(32), nullable=False),
        sa.Column("clinic_name", sa.String(255), nullable=False),
        sa.Column("password_hash", sa.String(255), nullable=False),
        sa.Column("owner_name", sa.String(255), nullable=True),
        sa.Column("contact_email", sa.String(255), nullable=True),
        sa.Column("contact_phone", sa.String(32), nullable=True),
        sa.Column("address", sa.Text(), nullable=True),
        sa.Column("subscription_plan", sa.String(32), nullable=False, server_default="basic"),
        sa.Column("monthly_card_limit", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("commission_rate_bps", sa.Integer(), nullable=False, server_default=sa.text("1000")),
        sa.Column("quota_period", sa.String(7), nullable=True),
        sa.Column("activations_this_period", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("total_revenue_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("clinic_code", name="uq_clinics_code"),
        sqlite_autoincrement=True,
    )

    with op.batch_alter_table("clinics", schema=None) as batch_op:
        batch_op.create_index("ix_clinics_is_active", ["is_active"], unique=False)

    op.create_table(
        "card_batches",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("batch_number", sa.String(64), nullable=False),
        sa.Column("total_cards", sa.Integer(), nullable=False),
        sa.Column("cards_generated", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("status", sa.String(16), nullable=False, server_default="generating"),
        sa.Column("created_by", sa.String(128), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("batch_number", name="uq_card_batches_number"),
        sqlite_autoincrement=True,
    )

    with op.batch_alter_table("card_batches", schema=None) as batch_op:
        batch_op.create_index("ix_card_batches_status", ["status"], unique=False)

    op.create_table(
        "cards",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("batch_id", sa.Integer(), nullable=True),
        sa.Column("control_number", sa.String(64), nullable=False),
        sa.Column("incomplete_passcode", sa.String(4), nullable=False),
        sa.Column("location_code", sa.String(3), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="unassigned"),
        sa.Column("assigned_clinic_id", sa.Integer(), nullable=True),
        sa.Column("activated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("customer_name", sa.String(255), nullable=True),
        sa.Column("customer_phone", sa.String(32), nullable=True),
        sa.Column("customer_email", sa.String(255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["batch_id"], ["card_batches.id"]),
        sa.ForeignKeyConstraint(["assigned_clinic_id"], ["clinics.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("control_number", name="uq_cards_control_number"),
        sqlite_autoincrement=True,
    )

    with op.batch_alter_table("cards", schema=None) as batch_op:
        batch_op.create_index("ix_cards_batch_id", ["batch_id"], unique=False)
        batch_op.create_index("ix_cards_status", ["status"], unique=False)
        batch_op.create_index("ix_cards_clinic_status", ["assigned_clinic_id", "status"], unique=False)
        batch_op.create_index("ix_cards_clinic_activated", ["assigned_clinic_id", "activated_at"], unique=False)

    op.create_table(
        "card_perks",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("card_id", sa.Integer(), nullable=False),
        sa.Column("perk_type", sa.String(32), nullable=False),
        sa.Column("claimed", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("claimed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("claimed_by_clinic_id", sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(["card_id"], ["cards.id"]),
        sa.ForeignKeyConstraint(["claimed_by_clinic_id"], ["clinics.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("card_id", "perk_type", name="uq_card_perks_card_type"),
        sqlite_autoincrement=True,
    )

    with op.batch_alter_table("card_perks", schema=None) as batch_op:
        batch_op.create_index("ix_card_perks_card_id", ["card_id"], unique=False)

    op.create_table(
        "clinic_sales",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("clinic_id", sa.Integer(), nullable=False),
        sa.Column("card_id", sa.Integer(), nullable=False),
        sa.Column("sale_amount_cents", sa.Integer(), nullable=False),
        sa.Column("commission_cents", sa.Integer(), nullable=False),
        sa.Column("payment_method", sa.String(32), nullable=True),
        sa.Column("customer_name", sa.String(255), nullable=True),
        sa.Column("customer_phone", sa.String(32), nullable=True),
        sa.Column("customer_email", sa.String(255), nullable=True),
        sa.Column("status", sa.String(16), nullable=False, server_default="completed"),
        sa.Column("sale_date", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.ForeignKeyConstraint(["clinic_id"], ["clinics.id"]),
        sa.ForeignKeyConstraint(["card_id"], ["cards.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("card_id", name="uq_clinic_sales_card"),
        sqlite_autoincrement=True,
    )

    with op.batch_alter_table("clinic_sales", schema=None) as batch_op:
        batch_op.create_index("ix_clinic_sales_clinic_date", ["clinic_id", "sale_date"], unique=False)

    op.create_table(
        "perk_redemptions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("clinic_id", sa.Integer(), nullable=False),
        sa.Column("card_id", sa.Integer(), nullable=False),
        sa.Column("perk_id", sa.Integer(), nullable=False),
        sa.Column("service_provided", sa.String(255), nullable=True),
        sa.Column("service_value_cents", sa.Integer(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("redeemed_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.ForeignKeyConstraint(["clinic_id"], ["clinics.id"]),
        sa.ForeignKeyConstraint(["card_id"], ["cards.id"]),
        sa.ForeignKeyConstraint(["perk_id"], ["card_perks.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("perk_id", name="uq_perk_redemptions_perk"),
        sqlite_autoincrement=True,
    )

    with op.batch_alter_table("perk_redemptions", schema=None) as batch_op:
        batch_op.create_index("ix_perk_redemptions_card_id", ["card_id"], unique=False)
        batch_op.create_index("ix_perk_redemptions_clinic_date", ["clinic_id", "redeemed_at"], unique=False)

    op.create_table(
        "card_transactions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("card_id", sa.Integer(), nullable=False),
        sa.Column("transaction_type", sa.String(32), nullable=False),
        sa.Column("performed_by", sa.String(32), nullable=False),
        sa.Column("performed_by_id", sa.String(128), nullable=True),
        sa.Column("details", sa.JSON(), nullable=False),
        sa.Column("occurred_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.ForeignKeyConstraint(["card_id"], ["cards.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )

    with op.batch_alter_table("card_transactions", schema=None) as batch_op:
        batch_op.create_index("ix_card_transactions_transaction_type", ["transaction_type"], unique=False)
        batch_op.create_index("ix_card_transactions_card_occurred", ["card_id", "occurred_at"], unique=False)


def downgrade():
    op.drop_table("card_transactions")
    op.drop_table("perk_redemptions")
    op.drop_table("clinic_sales")
    op.drop_table("card_perks")
    op.drop_table("cards")
    op.drop_table("card_batches")
    op.drop_table("clinics")
