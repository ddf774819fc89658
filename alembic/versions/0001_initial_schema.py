"""initial schema

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-19 10:00:00
"""

from typing import Sequence

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0001_initial_schema"
down_revision: str | None = None
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None

NOW = sa.text("TIMEZONE('utc', NOW())")


def upgrade() -> None:
    bind = op.get_bind()

    user_role = postgresql.ENUM("user", "admin", name="user_role", create_type=False)
    auction_status = postgresql.ENUM("active", "ended", "cancelled", name="auction_status", create_type=False)
    vehicle_condition = postgresql.ENUM(
        "new", "like_new", "good", "fair", name="vehicle_condition", create_type=False
    )
    payment_status = postgresql.ENUM(
        "unpaid", "pending", "verified", "rejected", name="payment_status", create_type=False
    )
    payment_method = postgresql.ENUM(
        "bank_transfer", "ewallet", "cash", name="payment_method", create_type=False
    )
    notification_type = postgresql.ENUM(
        "bid", "auction", "payment", "system", name="notification_type", create_type=False
    )

    for enum_type in (
        user_role,
        auction_status,
        vehicle_condition,
        payment_status,
        payment_method,
        notification_type,
    ):
        enum_type.create(bind, checkfirst=True)

    op.create_table(
        "users",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("username", sa.String(length=255), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("first_name", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("last_name", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("phone", sa.String(length=64), nullable=True),
        sa.Column("role", user_role, nullable=False, server_default=sa.text("'user'")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=NOW),
        sa.UniqueConstraint("username", name="uq_users_username"),
        sa.UniqueConstraint("email", name="uq_users_email"),
    )

    op.create_table(
        "auctions",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("starting_price", sa.BigInteger(), nullable=False),
        sa.Column("current_price", sa.BigInteger(), nullable=False),
        sa.Column("minimum_increment", sa.BigInteger(), nullable=False, server_default=sa.text("50000")),
        sa.Column("condition", vehicle_condition, nullable=False),
        sa.Column("location", sa.String(length=255), nullable=False),
        sa.Column("status", auction_status, nullable=False, server_default=sa.text("'active'")),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("seller_user_id", sa.BigInteger(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("winner_user_id", sa.BigInteger(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("archived", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("invoice_number", sa.String(length=64), nullable=True),
        sa.Column("invoice_document", sa.Text(), nullable=True),
        sa.Column("invoice_content_type", sa.String(length=64), nullable=True),
        sa.Column("invoice_issued_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("production_year", sa.SmallInteger(), nullable=True),
        sa.Column("plate_number", sa.String(length=32), nullable=True),
        sa.Column("chassis_number", sa.String(length=64), nullable=True),
        sa.Column("engine_number", sa.String(length=64), nullable=True),
        sa.Column("document_info", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=NOW),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=NOW),
        sa.CheckConstraint("starting_price >= 1", name="auctions_starting_price_positive"),
        sa.CheckConstraint("minimum_increment >= 1", name="auctions_minimum_increment_positive"),
        sa.CheckConstraint("current_price >= starting_price", name="auctions_current_gte_starting"),
        sa.UniqueConstraint("invoice_number", name="uq_auctions_invoice_number"),
    )

    op.create_index("ix_auctions_status_end_time", "auctions", ["status", "end_time"], unique=False)

    op.create_table(
        "bids",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("auction_id", sa.BigInteger(), sa.ForeignKey("auctions.id", ondelete="CASCADE"), nullable=False),
        sa.Column("bidder_user_id", sa.BigInteger(), sa.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("amount", sa.BigInteger(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=NOW),
        sa.CheckConstraint("amount >= 1", name="bids_amount_positive"),
    )

    op.create_index("ix_bids_auction_id", "bids", ["auction_id"], unique=False)
    op.create_index("ix_bids_bidder_user_id", "bids", ["bidder_user_id"], unique=False)
    op.create_index(
        "ix_bids_auction_amount_created",
        "bids",
        ["auction_id", "amount", "created_at"],
        unique=False,
    )

    op.create_table(
        "payments",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("auction_id", sa.BigInteger(), sa.ForeignKey("auctions.id", ondelete="CASCADE"), nullable=False),
        sa.Column("winner_user_id", sa.BigInteger(), sa.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("amount", sa.BigInteger(), nullable=False),
        sa.Column("payment_method", payment_method, nullable=False),
        sa.Column("payment_proof", sa.Text(), nullable=True),
        sa.Column("bank_name", sa.String(length=255), nullable=True),
        sa.Column("account_number", sa.String(length=64), nullable=True),
        sa.Column("account_name", sa.String(length=255), nullable=True),
        sa.Column("status", payment_status, nullable=False, server_default=sa.text("'pending'")),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("release_letter_document", sa.Text(), nullable=True),
        sa.Column("handover_document", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=NOW),
        sa.Column("verified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "verified_by_user_id",
            sa.BigInteger(),
            sa.ForeignKey("users.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.UniqueConstraint("auction_id", name="uq_payments_auction_id"),
        sa.CheckConstraint("amount >= 1", name="payments_amount_positive"),
    )

    op.create_index("ix_payments_status_created_at", "payments", ["status", "created_at"], unique=False)

    op.create_table(
        "notifications",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.BigInteger(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("type", notification_type, nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("data", sa.JSON(), nullable=True),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=NOW),
    )

    op.create_index(
        "ix_notifications_user_created_at",
        "notifications",
        ["user_id", "created_at"],
        unique=False,
    )


def downgrade() -> None:
    bind = op.get_bind()

    op.drop_index("ix_notifications_user_created_at", table_name="notifications")
    op.drop_table("notifications")
    op.drop_index("ix_payments_status_created_at", table_name="payments")
    op.drop_table("payments")
    op.drop_index("ix_bids_auction_amount_created", table_name="bids")
    op.drop_index("ix_bids_bidder_user_id", table_name="bids")
    op.drop_index("ix_bids_auction_id", table_name="bids")
    op.drop_table("bids")
    op.drop_index("ix_auctions_status_end_time", table_name="auctions")
    op.drop_table("auctions")
    op.drop_table("users")

    for name in (
        "notification_type",
        "payment_method",
        "payment_status",
        "vehicle_condition",
        "auction_status",
        "user_role",
    ):
        postgresql.ENUM(name=name).drop(bind, checkfirst=True)
