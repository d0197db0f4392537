"""auction core tables

Revision ID: 5c1d7e2a9b40
Revises:
Create Date: 2026-10-19 10:12:41.208114

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '5c1d7e2a9b40'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade():
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("wallet_address", sa.String(length=64), nullable=False),
        sa.Column("username", sa.String(length=128), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
    )
    op.create_index("ix_users_wallet_address", "users", ["wallet_address"], unique=True)

    op.create_table(
        "nfts",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("token_id", sa.Integer(), nullable=False),
        sa.Column("title", sa.String(length=256), nullable=True),
        sa.Column("owner_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("is_listed", sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
    )
    op.create_index("ix_nfts_token_id", "nfts", ["token_id"], unique=True)

    op.create_table(
        "auctions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("nft_id", sa.Integer(), sa.ForeignKey("nfts.id", ondelete="RESTRICT"), nullable=False, unique=True),
        sa.Column("seller_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("highest_bid", sa.Numeric(38, 18), nullable=True),
        sa.Column("highest_bidder_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("min_bid", sa.Numeric(38, 18), nullable=False),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("settled", sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.CheckConstraint("min_bid >= 0", name="ck_auctions_min_bid_nonnegative"),
    )
    op.create_index("ix_auctions_settled_end_time", "auctions", ["settled", "end_time"])

    op.create_table(
        "bids",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("auction_id", sa.Integer(), sa.ForeignKey("auctions.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("bidder_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("amount", sa.Numeric(38, 18), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.CheckConstraint("amount > 0", name="ck_bids_amount_positive"),
    )
    op.create_index("ix_bids_bidder_created", "bids", ["bidder_id", "created_at"])
    op.create_index("ix_bids_auction", "bids", ["auction_id"])

    op.create_table(
        "action_audit_log",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("action", sa.String(length=64), nullable=False),
        sa.Column("action_key", sa.String(length=128), nullable=False),
        sa.Column("wallet_address", sa.String(length=64), nullable=True),
        sa.Column("auction_id", sa.Integer(), nullable=True),
        sa.Column("tx_hash", sa.String(length=128), nullable=True),
        sa.Column("details_json", sa.JSON(), nullable=False),
    )
    op.create_index("ix_action_audit_key", "action_audit_log", ["action_key"])
    op.create_index("ix_action_audit_auction", "action_audit_log", ["auction_id"])


def downgrade():
    op.drop_index("ix_action_audit_auction", table_name="action_audit_log")
    op.drop_index("ix_action_audit_key", table_name="action_audit_log")
    op.drop_table("action_audit_log")
    op.drop_index("ix_bids_auction", table_name="bids")
    op.drop_index("ix_bids_bidder_created", table_name="bids")
    op.drop_table("bids")
    op.drop_index("ix_auctions_settled_end_time", table_name="auctions")
    op.drop_table("auctions")
    op.drop_index("ix_nfts_token_id", table_name="nfts")
    op.drop_table("nfts")
    op.drop_index("ix_users_wallet_address", table_name="users")
    op.drop_table("users")
