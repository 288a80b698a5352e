"""Add jackpot pools, tickets, draws and winners

Revision ID: 20260302_01_jackpot_tables
Revises: 20260301_02_loyalty
Create Date: 2026-03-02 09:00:00.000000
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = "20260302_01_jackpot_tables"
down_revision = "20260301_02_loyalty"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "jackpot_pools",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(length=100), nullable=False, unique=True),
        sa.Column("type", sa.String(length=16), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="USD"),
        sa.Column("current_amount", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("seed_amount", sa.BigInteger(), nullable=False),
        sa.Column("contribution_rate", sa.Numeric(5, 4), nullable=False),
        sa.Column("draw_frequency", sa.String(length=16), nullable=False),
        sa.Column("draw_day_of_week", sa.SmallInteger()),
        sa.Column("draw_time", sa.Time(), nullable=False),
        sa.Column("next_draw_at", sa.DateTime(timezone=True)),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="active"),
        sa.Column("draw_number", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("ticket_counter", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("drawing_started_at", sa.DateTime(timezone=True)),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("current_amount >= 0", name="ck_jackpot_pools_amount_non_negative"),
        sa.CheckConstraint("current_amount >= seed_amount", name="ck_jackpot_pools_amount_above_seed"),
        sa.CheckConstraint("contribution_rate >= 0 AND contribution_rate <= 1", name="ck_jackpot_pools_contribution_rate"),
        sa.CheckConstraint("status IN ('active','drawing','paused')", name="ck_jackpot_pools_status"),
    )
    op.create_index("ix_jackpot_pools_status_next_draw", "jackpot_pools", ["status", "next_draw_at"])

    op.create_table(
        "jackpot_prize_tiers",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("pool_id", sa.BigInteger(), sa.ForeignKey("jackpot_pools.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.String(length=20), nullable=False),
        sa.Column("tier_order", sa.Integer(), nullable=False),
        sa.Column("winner_count", sa.Integer(), nullable=False),
        sa.Column("pool_percentage", sa.Numeric(5, 4), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("pool_id", "tier_order", name="uq_jackpot_prize_tiers_pool_order"),
        sa.CheckConstraint("winner_count > 0", name="ck_jackpot_prize_tiers_winner_count"),
    )

    op.create_table(
        "jackpot_tickets",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("pool_id", sa.BigInteger(), sa.ForeignKey("jackpot_pools.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", sa.BigInteger(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("draw_cycle", sa.Integer(), nullable=False),
        sa.Column("ticket_number", sa.BigInteger(), nullable=False),
        sa.Column("wager_amount", sa.BigInteger(), nullable=False),
        sa.Column("earned_from_transaction_id", sa.String(length=64)),
        sa.Column("draw_eligible", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("earned_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("pool_id", "draw_cycle", "ticket_number", name="uq_jackpot_tickets_pool_cycle_number"),
    )
    op.create_index("ix_jackpot_tickets_eligible", "jackpot_tickets", ["pool_id", "draw_cycle", "draw_eligible"])
    op.create_index("ix_jackpot_tickets_user", "jackpot_tickets", ["user_id", "pool_id"])
    op.create_index("ix_jackpot_tickets_source", "jackpot_tickets", ["pool_id", "earned_from_transaction_id"])

    op.create_table(
        "jackpot_pending_tickets",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("pool_id", sa.BigInteger(), sa.ForeignKey("jackpot_pools.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", sa.BigInteger(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("wager_amount", sa.BigInteger(), nullable=False),
        sa.Column("ticket_cost", sa.BigInteger(), nullable=False),
        sa.Column("source_transaction_id", sa.String(length=64)),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("applied_at", sa.DateTime(timezone=True)),
    )
    op.create_index("ix_jackpot_pending_tickets_pool_applied", "jackpot_pending_tickets", ["pool_id", "applied_at"])

    op.create_table(
        "player_ticket_counts",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("pool_id", sa.BigInteger(), sa.ForeignKey("jackpot_pools.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", sa.BigInteger(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("total_tickets", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("last_ticket_at", sa.DateTime(timezone=True)),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("pool_id", "user_id", name="uq_player_ticket_counts_pool_user"),
    )

    op.create_table(
        "jackpot_draws",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("pool_id", sa.BigInteger(), sa.ForeignKey("jackpot_pools.id", ondelete="CASCADE"), nullable=False),
        sa.Column("draw_number", sa.Integer(), nullable=False),
        sa.Column("total_pool_amount", sa.BigInteger(), nullable=False),
        sa.Column("total_tickets", sa.BigInteger(), nullable=False),
        sa.Column("total_winners", sa.Integer(), nullable=False),
        sa.Column("random_seed", sa.String(length=128), nullable=False),
        sa.Column("prize_tiers", postgresql.JSONB(astext_type=sa.Text())),
        sa.Column("drawn_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("pool_id", "draw_number", name="uq_jackpot_draws_pool_number"),
    )
    op.create_index("ix_jackpot_draws_drawn_at", "jackpot_draws", ["drawn_at"])

    op.create_table(
        "jackpot_winners",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("draw_id", sa.BigInteger(), sa.ForeignKey("jackpot_draws.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", sa.BigInteger(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("tier", sa.String(length=20), nullable=False),
        sa.Column("tier_order", sa.Integer(), nullable=False),
        sa.Column("winning_ticket_number", sa.BigInteger(), nullable=False),
        sa.Column("tickets_held", sa.BigInteger(), nullable=False),
        sa.Column("total_tickets_in_pool", sa.BigInteger(), nullable=False),
        sa.Column("win_odds_percentage", sa.Numeric(9, 4), nullable=False),
        sa.Column("prize_amount", sa.BigInteger(), nullable=False),
        sa.Column("prize_credited", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("credited_transaction_id", sa.BigInteger(), sa.ForeignKey("ledger.id", ondelete="RESTRICT")),
        sa.Column("credited_at", sa.DateTime(timezone=True)),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("draw_id", "winning_ticket_number", name="uq_jackpot_winners_draw_ticket"),
        sa.CheckConstraint(
            "(prize_credited AND credited_transaction_id IS NOT NULL) OR (NOT prize_credited AND credited_transaction_id IS NULL)",
            name="ck_jackpot_winners_credit_consistency",
        ),
    )
    op.create_index("ix_jackpot_winners_draw_id", "jackpot_winners", ["draw_id"])
    op.create_index("ix_jackpot_winners_user", "jackpot_winners", ["user_id"])


def downgrade() -> None:
    op.drop_index("ix_jackpot_winners_user", table_name="jackpot_winners")
    op.drop_index("ix_jackpot_winners_draw_id", table_name="jackpot_winners")
    op.drop_table("jackpot_winners")
    op.drop_index("ix_jackpot_draws_drawn_at", table_name="jackpot_draws")
    op.drop_table("jackpot_draws")
    op.drop_table("player_ticket_counts")
    op.drop_index("ix_jackpot_pending_tickets_pool_applied", table_name="jackpot_pending_tickets")
    op.drop_table("jackpot_pending_tickets")
    op.drop_index("ix_jackpot_tickets_source", table_name="jackpot_tickets")
    op.drop_index("ix_jackpot_tickets_user", table_name="jackpot_tickets")
    op.drop_index("ix_jackpot_tickets_eligible", table_name="jackpot_tickets")
    op.drop_table("jackpot_tickets")
    op.drop_table("jackpot_prize_tiers")
    op.drop_index("ix_jackpot_pools_status_next_draw", table_name="jackpot_pools")
    op.drop_table("jackpot_pools")
