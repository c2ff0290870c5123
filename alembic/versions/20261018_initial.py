"""
Initial database schema for tradeguard.

This migration creates the tables used by the trading-integrity layer:
settlements (one row per transaction leg), items (inventory counters),
offers and orders (delivery commitments read by the limit validator),
generation and consumption profiles, and the trading rules row.  They
correspond to the SQLAlchemy metadata defined in
``tradeguard/src/tradeguard/services/db.py``.

Revision ID: 20261018_initial
Revises:
Create Date: 2026-10-18
"""

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision = "20261018_initial"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Create all tradeguard tables."""
    op.create_table(
        "settlements",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("transaction_id", sa.String(), nullable=False),
        sa.Column("order_item_id", sa.String(), nullable=False),
        sa.Column("role", sa.String(16), nullable=False),
        sa.Column("counterparty_platform_id", sa.String(), nullable=True),
        sa.Column("counterparty_discom_id", sa.String(), nullable=True),
        sa.Column("ledger_synced_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("ledger_data", sa.JSON(), nullable=True),
        sa.Column("settlement_status", sa.String(32), nullable=False, server_default="PENDING"),
        sa.Column("buyer_discom_status", sa.String(16), nullable=False, server_default="PENDING"),
        sa.Column("seller_discom_status", sa.String(16), nullable=False, server_default="PENDING"),
        sa.Column("actual_delivered", sa.Float(), nullable=True),
        sa.Column("contracted_quantity", sa.Float(), nullable=False),
        sa.Column("deviation_kwh", sa.Float(), nullable=True),
        sa.Column("settlement_cycle_id", sa.String(), nullable=True),
        sa.Column("settled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("on_settle_notified", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("transaction_id", "role", name="uq_settlements_transaction_role"),
    )
    op.create_index("ix_settlements_status", "settlements", ["settlement_status"])
    op.create_table(
        "items",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("party_id", sa.String(), nullable=True),
        sa.Column("available_quantity", sa.Float(), nullable=False, server_default="0"),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("available_quantity >= 0", name="ck_items_available_non_negative"),
    )
    op.create_table(
        "offers",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("party_id", sa.String(), nullable=False),
        sa.Column("item_id", sa.String(), nullable=True),
        sa.Column("quantity", sa.Float(), nullable=False),
        sa.Column("delivery_start", sa.DateTime(timezone=True), nullable=False),
        sa.Column("delivery_end", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_offers_party_id", "offers", ["party_id"])
    op.create_table(
        "orders",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("transaction_id", sa.String(), nullable=False),
        sa.Column("buyer_id", sa.String(), nullable=False),
        sa.Column("seller_id", sa.String(), nullable=False),
        sa.Column("item_id", sa.String(), nullable=True),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("quantity", sa.Float(), nullable=False),
        sa.Column("delivery_start", sa.DateTime(timezone=True), nullable=False),
        sa.Column("delivery_end", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_orders_transaction_id", "orders", ["transaction_id"])
    op.create_index("ix_orders_buyer_id", "orders", ["buyer_id"])
    op.create_index("ix_orders_seller_id", "orders", ["seller_id"])
    op.create_table(
        "generation_profiles",
        sa.Column("party_id", sa.String(), primary_key=True),
        sa.Column("capacity_kw", sa.Float(), nullable=False),
    )
    op.create_table(
        "consumption_profiles",
        sa.Column("party_id", sa.String(), primary_key=True),
        sa.Column("sanctioned_load_kw", sa.Float(), nullable=False),
    )
    op.create_table(
        "trading_rules",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("buyer_safety_factor", sa.Float(), nullable=False, server_default="1.0"),
        sa.Column("seller_safety_factor", sa.Float(), nullable=False, server_default="1.0"),
        sa.Column("enable_buyer_limits", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("enable_seller_limits", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )


def downgrade() -> None:
    """Drop all tradeguard tables."""
    op.drop_table("trading_rules")
    op.drop_table("consumption_profiles")
    op.drop_table("generation_profiles")
    op.drop_index("ix_orders_seller_id", table_name="orders")
    op.drop_index("ix_orders_buyer_id", table_name="orders")
    op.drop_index("ix_orders_transaction_id", table_name="orders")
    op.drop_table("orders")
    op.drop_index("ix_offers_party_id", table_name="offers")
    op.drop_table("offers")
    op.drop_table("items")
    op.drop_index("ix_settlements_status", table_name="settlements")
    op.drop_table("settlements")
