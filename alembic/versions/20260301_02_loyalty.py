"""loyalty tiers and points

Revision ID: 20260301_02_loyalty
Revises: 20260301_01
Create Date: 2026-03-01 10:30:00.000000
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = "20260301_02_loyalty"
down_revision = "20260301_01"
branch_labels = None
depends_on = None


def upgrade() -> None:
    tiers = op.create_table(
        "loyalty_tiers",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(length=50), nullable=False, unique=True),
        sa.Column("tier_level", sa.SmallInteger(), nullable=False, unique=True),
        sa.Column("points_required", sa.BigInteger(), nullable=False),
        sa.Column("cashback_rate", sa.Numeric(4, 2), nullable=False),
        sa.Column("points_per_dollar_redemption", sa.Integer(), nullable=False),
        sa.Column("withdrawal_priority", sa.String(length=20), nullable=False, server_default="standard"),
        sa.Column("birthday_bonus", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("has_personal_manager", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("jackpot_ticket_rate", sa.BigInteger(), nullable=False),
        sa.Column("benefits", postgresql.JSONB(astext_type=sa.Text())),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )

    op.create_table(
        "player_loyalty",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.BigInteger(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True),
        sa.Column("current_tier_id", sa.Integer(), sa.ForeignKey("loyalty_tiers.id")),
        sa.Column("total_points_earned", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("available_points", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("lifetime_wagered", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("tier_started_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("last_activity_at", sa.DateTime(timezone=True)),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )

    op.create_table(
        "loyalty_points_transactions",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.BigInteger(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("points", sa.BigInteger(), nullable=False),
        sa.Column("transaction_type", sa.String(length=16), nullable=False),
        sa.Column("source", sa.String(length=100)),
        sa.Column("related_transaction_id", sa.String(length=64)),
        sa.Column("description", sa.String(length=500)),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_loyalty_points_transactions_user_id", "loyalty_points_transactions", ["user_id"])

    op.bulk_insert(
        tiers,
        [
            {"name": "Bronze", "tier_level": 1, "points_required": 0, "cashback_rate": 0.5, "points_per_dollar_redemption": 100, "withdrawal_priority": "standard", "birthday_bonus": 0, "has_personal_manager": False, "jackpot_ticket_rate": 25000},
            {"name": "Silver", "tier_level": 2, "points_required": 500, "cashback_rate": 1.0, "points_per_dollar_redemption": 100, "withdrawal_priority": "standard", "birthday_bonus": 1000, "has_personal_manager": False, "jackpot_ticket_rate": 22500},
            {"name": "Gold", "tier_level": 3, "points_required": 2500, "cashback_rate": 2.0, "points_per_dollar_redemption": 90, "withdrawal_priority": "priority", "birthday_bonus": 2500, "has_personal_manager": False, "jackpot_ticket_rate": 20000},
            {"name": "Platinum", "tier_level": 4, "points_required": 10000, "cashback_rate": 3.0, "points_per_dollar_redemption": 80, "withdrawal_priority": "priority", "birthday_bonus": 5000, "has_personal_manager": True, "jackpot_ticket_rate": 17500},
            {"name": "Diamond", "tier_level": 5, "points_required": 50000, "cashback_rate": 5.0, "points_per_dollar_redemption": 70, "withdrawal_priority": "instant", "birthday_bonus": 10000, "has_personal_manager": True, "jackpot_ticket_rate": 15000},
        ],
    )


def downgrade() -> None:
    op.drop_index("ix_loyalty_points_transactions_user_id", table_name="loyalty_points_transactions")
    op.drop_table("loyalty_points_transactions")
    op.drop_table("player_loyalty")
    op.drop_table("loyalty_tiers")
