from __future__ import annotations

from datetime import datetime, time
from decimal import Decimal
from enum import Enum

from sqlalchemy import BigInteger, Boolean, CheckConstraint, DateTime, ForeignKey, Index, Integer, JSON, Numeric, SmallInteger, String, Time, UniqueConstraint, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from apps.jackpot.db import Base

JSONType = JSON().with_variant(JSONB, "postgresql")
PKBigInt = BigInteger().with_variant(Integer, "sqlite")


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(PKBigInt, primary_key=True, autoincrement=True)
    external_user_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    username: Mapped[str | None] = mapped_column(String(64))
    banned: Mapped[bool] = mapped_column(Boolean, default=False, server_default="false", nullable=False)
    is_operator: Mapped[bool] = mapped_column(Boolean, default=False, server_default="false", nullable=False)
    last_seen: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=func.now(), server_default=func.now(), nullable=False)


class Wallet(Base):
    __tablename__ = "wallets"
    __table_args__ = (
        UniqueConstraint("user_id", "currency", name="uq_wallets_user_currency"),
        CheckConstraint("balance >= 0", name="ck_wallets_balance_non_negative"),
    )

    id: Mapped[int] = mapped_column(PKBigInt, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(PKBigInt, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    balance: Mapped[int] = mapped_column(BigInteger, default=0, server_default="0", nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=func.now(), server_default=func.now(), onupdate=func.now(), nullable=False)


class Ledger(Base):
    __tablename__ = "ledger"
    __table_args__ = (UniqueConstraint("reference", name="uq_ledger_reference"),)

    id: Mapped[int] = mapped_column(PKBigInt, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(PKBigInt, ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    reason: Mapped[str] = mapped_column(String(64), nullable=False)
    reference: Mapped[str | None] = mapped_column(String(128))
    payload: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=func.now(), server_default=func.now(), nullable=False)


class Event(Base):
    __tablename__ = "events"

    id: Mapped[int] = mapped_column(PKBigInt, primary_key=True, autoincrement=True)
    user_id: Mapped[int | None] = mapped_column(PKBigInt, ForeignKey("users.id", ondelete="CASCADE"), index=True)
    name: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    props: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    source: Mapped[str] = mapped_column(String(16), nullable=False, default="jackpot", server_default="jackpot")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class LoyaltyTier(Base):
    __tablename__ = "loyalty_tiers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    tier_level: Mapped[int] = mapped_column(SmallInteger, unique=True, nullable=False)
    points_required: Mapped[int] = mapped_column(BigInteger, nullable=False)
    cashback_rate: Mapped[Decimal] = mapped_column(Numeric(4, 2), nullable=False)
    points_per_dollar_redemption: Mapped[int] = mapped_column(Integer, nullable=False)
    withdrawal_priority: Mapped[str] = mapped_column(String(20), nullable=False, default="standard", server_default="standard")
    birthday_bonus: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default="0")
    has_personal_manager: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    jackpot_ticket_rate: Mapped[int] = mapped_column(BigInteger, nullable=False)
    benefits: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class PlayerLoyalty(Base):
    __tablename__ = "player_loyalty"

    id: Mapped[int] = mapped_column(PKBigInt, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(PKBigInt, ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False)
    current_tier_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("loyalty_tiers.id"))
    total_points_earned: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default="0")
    available_points: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default="0")
    lifetime_wagered: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default="0")
    tier_started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    last_activity_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())


class LoyaltyTransactionType(str, Enum):
    EARNED = "earned"
    REDEEMED = "redeemed"
    EXPIRED = "expired"
    BONUS = "bonus"
    MANUAL = "manual"


class LoyaltyPointsTransaction(Base):
    __tablename__ = "loyalty_points_transactions"

    id: Mapped[int] = mapped_column(PKBigInt, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(PKBigInt, ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False)
    points: Mapped[int] = mapped_column(BigInteger, nullable=False)
    transaction_type: Mapped[str] = mapped_column(String(16), nullable=False)
    source: Mapped[str | None] = mapped_column(String(100))
    related_transaction_id: Mapped[str | None] = mapped_column(String(64))
    description: Mapped[str | None] = mapped_column(String(500))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class JackpotType(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class JackpotStatus(str, Enum):
    ACTIVE = "active"
    DRAWING = "drawing"
    PAUSED = "paused"


class JackpotPool(Base):
    __tablename__ = "jackpot_pools"
    __table_args__ = (
        CheckConstraint("current_amount >= 0", name="ck_jackpot_pools_amount_non_negative"),
        CheckConstraint("current_amount >= seed_amount", name="ck_jackpot_pools_amount_above_seed"),
        CheckConstraint("contribution_rate >= 0 AND contribution_rate <= 1", name="ck_jackpot_pools_contribution_rate"),
        CheckConstraint("status IN ('active','drawing','paused')", name="ck_jackpot_pools_status"),
        Index("ix_jackpot_pools_status_next_draw", "status", "next_draw_at"),
    )

    id: Mapped[int] = mapped_column(PKBigInt, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    type: Mapped[str] = mapped_column(String(16), nullable=False, default=JackpotType.WEEKLY.value)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD", server_default="USD")
    current_amount: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default="0")
    seed_amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    contribution_rate: Mapped[Decimal] = mapped_column(Numeric(5, 4), nullable=False)
    draw_frequency: Mapped[str] = mapped_column(String(16), nullable=False)
    draw_day_of_week: Mapped[int | None] = mapped_column(SmallInteger)
    draw_time: Mapped[time] = mapped_column(Time, nullable=False)
    next_draw_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=JackpotStatus.ACTIVE.value, server_default=JackpotStatus.ACTIVE.value)
    draw_number: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    ticket_counter: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default="0")
    drawing_started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())


class JackpotPrizeTier(Base):
    __tablename__ = "jackpot_prize_tiers"
    __table_args__ = (
        UniqueConstraint("pool_id", "tier_order", name="uq_jackpot_prize_tiers_pool_order"),
        CheckConstraint("winner_count > 0", name="ck_jackpot_prize_tiers_winner_count"),
    )

    id: Mapped[int] = mapped_column(PKBigInt, primary_key=True, autoincrement=True)
    pool_id: Mapped[int] = mapped_column(PKBigInt, ForeignKey("jackpot_pools.id", ondelete="CASCADE"), nullable=False)
    name: Mapped[str] = mapped_column(String(20), nullable=False)
    tier_order: Mapped[int] = mapped_column(Integer, nullable=False)
    winner_count: Mapped[int] = mapped_column(Integer, nullable=False)
    pool_percentage: Mapped[Decimal] = mapped_column(Numeric(5, 4), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class JackpotTicket(Base):
    __tablename__ = "jackpot_tickets"
    __table_args__ = (
        UniqueConstraint("pool_id", "draw_cycle", "ticket_number", name="uq_jackpot_tickets_pool_cycle_number"),
        Index("ix_jackpot_tickets_eligible", "pool_id", "draw_cycle", "draw_eligible"),
        Index("ix_jackpot_tickets_user", "user_id", "pool_id"),
        Index("ix_jackpot_tickets_source", "pool_id", "earned_from_transaction_id"),
    )

    id: Mapped[int] = mapped_column(PKBigInt, primary_key=True, autoincrement=True)
    pool_id: Mapped[int] = mapped_column(PKBigInt, ForeignKey("jackpot_pools.id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[int] = mapped_column(PKBigInt, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    draw_cycle: Mapped[int] = mapped_column(Integer, nullable=False)
    ticket_number: Mapped[int] = mapped_column(BigInteger, nullable=False)
    wager_amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    earned_from_transaction_id: Mapped[str | None] = mapped_column(String(64))
    draw_eligible: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")
    earned_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class PendingTicketIssue(Base):
    __tablename__ = "jackpot_pending_tickets"
    __table_args__ = (Index("ix_jackpot_pending_tickets_pool_applied", "pool_id", "applied_at"),)

    id: Mapped[int] = mapped_column(PKBigInt, primary_key=True, autoincrement=True)
    pool_id: Mapped[int] = mapped_column(PKBigInt, ForeignKey("jackpot_pools.id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[int] = mapped_column(PKBigInt, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    wager_amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    ticket_cost: Mapped[int] = mapped_column(BigInteger, nullable=False)
    source_transaction_id: Mapped[str | None] = mapped_column(String(64))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    applied_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))


class PlayerTicketCount(Base):
    __tablename__ = "player_ticket_counts"
    __table_args__ = (UniqueConstraint("pool_id", "user_id", name="uq_player_ticket_counts_pool_user"),)

    id: Mapped[int] = mapped_column(PKBigInt, primary_key=True, autoincrement=True)
    pool_id: Mapped[int] = mapped_column(PKBigInt, ForeignKey("jackpot_pools.id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[int] = mapped_column(PKBigInt, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    total_tickets: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default="0")
    last_ticket_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())


class JackpotDraw(Base):
    __tablename__ = "jackpot_draws"
    __table_args__ = (
        UniqueConstraint("pool_id", "draw_number", name="uq_jackpot_draws_pool_number"),
        Index("ix_jackpot_draws_drawn_at", "drawn_at"),
    )

    id: Mapped[int] = mapped_column(PKBigInt, primary_key=True, autoincrement=True)
    pool_id: Mapped[int] = mapped_column(PKBigInt, ForeignKey("jackpot_pools.id", ondelete="CASCADE"), nullable=False)
    draw_number: Mapped[int] = mapped_column(Integer, nullable=False)
    total_pool_amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    total_tickets: Mapped[int] = mapped_column(BigInteger, nullable=False)
    total_winners: Mapped[int] = mapped_column(Integer, nullable=False)
    random_seed: Mapped[str] = mapped_column(String(128), nullable=False)
    prize_tiers: Mapped[list | None] = mapped_column(JSONType, nullable=True)
    drawn_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class JackpotWinner(Base):
    __tablename__ = "jackpot_winners"
    __table_args__ = (
        UniqueConstraint("draw_id", "winning_ticket_number", name="uq_jackpot_winners_draw_ticket"),
        CheckConstraint(
            "(prize_credited AND credited_transaction_id IS NOT NULL) OR (NOT prize_credited AND credited_transaction_id IS NULL)",
            name="ck_jackpot_winners_credit_consistency",
        ),
        Index("ix_jackpot_winners_user", "user_id"),
    )

    id: Mapped[int] = mapped_column(PKBigInt, primary_key=True, autoincrement=True)
    draw_id: Mapped[int] = mapped_column(PKBigInt, ForeignKey("jackpot_draws.id", ondelete="CASCADE"), index=True, nullable=False)
    user_id: Mapped[int] = mapped_column(PKBigInt, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    tier: Mapped[str] = mapped_column(String(20), nullable=False)
    tier_order: Mapped[int] = mapped_column(Integer, nullable=False)
    winning_ticket_number: Mapped[int] = mapped_column(BigInteger, nullable=False)
    tickets_held: Mapped[int] = mapped_column(BigInteger, nullable=False)
    total_tickets_in_pool: Mapped[int] = mapped_column(BigInteger, nullable=False)
    win_odds_percentage: Mapped[Decimal] = mapped_column(Numeric(9, 4), nullable=False)
    prize_amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    prize_credited: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    credited_transaction_id: Mapped[int | None] = mapped_column(PKBigInt, ForeignKey("ledger.id", ondelete="RESTRICT"))
    credited_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Wager(Base):
    __tablename__ = "wagers"
    __table_args__ = (UniqueConstraint("transaction_id", name="uq_wagers_transaction"),)

    id: Mapped[int] = mapped_column(PKBigInt, primary_key=True, autoincrement=True)
    transaction_id: Mapped[str] = mapped_column(String(64), nullable=False)
    user_id: Mapped[int] = mapped_column(PKBigInt, ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False)
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    game: Mapped[str | None] = mapped_column(String(32))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
