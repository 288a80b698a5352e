from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from apps.jackpot.core.events import EventName, track_event
from apps.jackpot.core.money import floor_minor
from apps.jackpot.core.schedule import utcnow
from apps.jackpot.core.wallets import BalanceLedger, WalletLedger
from apps.jackpot.db.models import LoyaltyPointsTransaction, LoyaltyTier, LoyaltyTransactionType, PlayerLoyalty

logger = logging.getLogger(__name__)


class LoyaltyError(Exception):
    pass


class InsufficientPoints(LoyaltyError):
    pass


@dataclass(frozen=True)
class LoyaltyTierSpec:
    name: str
    tier_level: int
    points_required: int
    cashback_rate: Decimal
    points_per_dollar_redemption: int
    withdrawal_priority: str
    birthday_bonus: int
    has_personal_manager: bool
    jackpot_ticket_rate: int


DEFAULT_LOYALTY_TIERS = (
    LoyaltyTierSpec("Bronze", 1, 0, Decimal("0.50"), 100, "standard", 0, False, 25_000),
    LoyaltyTierSpec("Silver", 2, 500, Decimal("1.00"), 100, "standard", 1_000, False, 22_500),
    LoyaltyTierSpec("Gold", 3, 2_500, Decimal("2.00"), 90, "priority", 2_500, False, 20_000),
    LoyaltyTierSpec("Platinum", 4, 10_000, Decimal("3.00"), 80, "priority", 5_000, True, 17_500),
    LoyaltyTierSpec("Diamond", 5, 50_000, Decimal("5.00"), 70, "instant", 10_000, True, 15_000),
)


@dataclass
class PointsAward:
    points: int
    tier: str | None
    upgraded_to: str | None = None


@dataclass
class Redemption:
    points: int
    amount: int
    transaction_id: int


def points_for_wager(wager_amount: int, cashback_rate: Decimal | None, *, unit: int) -> int:
    if wager_amount <= 0:
        return 0
    base = wager_amount // unit
    if cashback_rate:
        return floor_minor(Decimal(base) * (1 + Decimal(str(cashback_rate)) / 100))
    return base


def redemption_value(points: int, points_per_dollar: int) -> int:
    """Minor units paid for ``points`` at the tier's redemption rate."""
    rate = points_per_dollar or 100
    return points * 100 // rate


async def seed_loyalty_tiers(session: AsyncSession, tiers=DEFAULT_LOYALTY_TIERS) -> int:
    existing = set((await session.scalars(select(LoyaltyTier.name))).all())
    added = 0
    for spec in tiers:
        if spec.name in existing:
            continue
        session.add(
            LoyaltyTier(
                name=spec.name,
                tier_level=spec.tier_level,
                points_required=spec.points_required,
                cashback_rate=spec.cashback_rate,
                points_per_dollar_redemption=spec.points_per_dollar_redemption,
                withdrawal_priority=spec.withdrawal_priority,
                birthday_bonus=spec.birthday_bonus,
                has_personal_manager=spec.has_personal_manager,
                jackpot_ticket_rate=spec.jackpot_ticket_rate,
            )
        )
        added += 1
    await session.flush()
    return added


async def list_tiers(session: AsyncSession) -> list[LoyaltyTier]:
    rows = await session.scalars(select(LoyaltyTier).order_by(LoyaltyTier.tier_level))
    return list(rows.all())


def tier_for_points(tiers: list[LoyaltyTier], points: int) -> LoyaltyTier | None:
    eligible = [tier for tier in tiers if tier.points_required <= points]
    if not eligible:
        return None
    return max(eligible, key=lambda tier: tier.tier_level)


def next_tier(tiers: list[LoyaltyTier], current: LoyaltyTier | None) -> LoyaltyTier | None:
    level = current.tier_level if current else 0
    higher = [tier for tier in tiers if tier.tier_level > level]
    return min(higher, key=lambda tier: tier.tier_level) if higher else None


async def ensure_player_loyalty(session: AsyncSession, user_id: int, *, for_update: bool = False) -> PlayerLoyalty:
    stmt = select(PlayerLoyalty).where(PlayerLoyalty.user_id == user_id)
    if for_update:
        stmt = stmt.with_for_update()
    loyalty = await session.scalar(stmt)
    if loyalty is None:
        tier = tier_for_points(await list_tiers(session), 0)
        loyalty = PlayerLoyalty(
            user_id=user_id,
            current_tier_id=tier.id if tier else None,
            total_points_earned=0,
            available_points=0,
            lifetime_wagered=0,
            tier_started_at=utcnow(),
        )
        session.add(loyalty)
        await session.flush()
    return loyalty


async def get_player_tier(session: AsyncSession, user_id: int) -> LoyaltyTier | None:
    loyalty = await session.scalar(select(PlayerLoyalty).where(PlayerLoyalty.user_id == user_id))
    if loyalty is None or loyalty.current_tier_id is None:
        return None
    return await session.get(LoyaltyTier, loyalty.current_tier_id)


async def ticket_cost_for_user(session: AsyncSession, user_id: int, default_cost: int) -> int:
    tier = await get_player_tier(session, user_id)
    if tier is None or tier.jackpot_ticket_rate <= 0:
        return default_cost
    return tier.jackpot_ticket_rate


async def award_points(
    session: AsyncSession,
    user_id: int,
    wager_amount: int,
    *,
    unit: int,
    source: str = "wager",
    related_transaction_id: str | None = None,
) -> PointsAward:
    loyalty = await ensure_player_loyalty(session, user_id, for_update=True)
    tiers = await list_tiers(session)
    current = next((tier for tier in tiers if tier.id == loyalty.current_tier_id), None)
    points = points_for_wager(wager_amount, current.cashback_rate if current else None, unit=unit)
    now = utcnow()
    loyalty.lifetime_wagered += max(wager_amount, 0)
    loyalty.last_activity_at = now
    award = PointsAward(points=points, tier=current.name if current else None)
    if points <= 0:
        await session.flush()
        return award

    loyalty.total_points_earned += points
    loyalty.available_points += points
    session.add(
        LoyaltyPointsTransaction(
            user_id=user_id,
            points=points,
            transaction_type=LoyaltyTransactionType.EARNED.value,
            source=source,
            related_transaction_id=related_transaction_id,
            description=f"Earned from {wager_amount} wagered",
        )
    )
    # tiers only ever move up
    target = tier_for_points(tiers, loyalty.total_points_earned)
    if target is not None and (current is None or target.tier_level > current.tier_level):
        loyalty.current_tier_id = target.id
        loyalty.tier_started_at = now
        award.tier = target.name
        award.upgraded_to = target.name
        logger.info("User %s reached loyalty tier %s", user_id, target.name)
    await session.flush()
    return award


async def redeem_points(
    session: AsyncSession,
    user_id: int,
    points: int,
    *,
    currency: str,
    ledger: BalanceLedger | None = None,
) -> Redemption:
    """Convert available points into balance and commit both sides together."""
    if points <= 0:
        raise LoyaltyError("points must be positive")
    ledger = ledger or WalletLedger()
    try:
        loyalty = await ensure_player_loyalty(session, user_id, for_update=True)
        if loyalty.available_points < points:
            raise InsufficientPoints(f"only {loyalty.available_points} points available")
        tier = await session.get(LoyaltyTier, loyalty.current_tier_id) if loyalty.current_tier_id else None
        amount = redemption_value(points, tier.points_per_dollar_redemption if tier else 100)
        if amount <= 0:
            raise LoyaltyError("too few points to redeem")
        loyalty.available_points -= points
        session.add(
            LoyaltyPointsTransaction(
                user_id=user_id,
                points=-points,
                transaction_type=LoyaltyTransactionType.REDEEMED.value,
                source="redemption",
                description=f"Redeemed for {amount}",
            )
        )
        transaction_id = await ledger.create_credit(
            session,
            user_id=user_id,
            amount=amount,
            currency=currency,
            reason="loyalty_redemption",
            metadata={"points": points},
        )
        await track_event(
            session,
            user_id=user_id,
            name=EventName.POINTS_REDEEMED,
            props={"points": points, "amount": amount, "transaction_id": transaction_id},
        )
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    logger.info("User %s redeemed %s points for %s", user_id, points, amount)
    return Redemption(points=points, amount=amount, transaction_id=transaction_id)


async def get_tier_info(session: AsyncSession, user_id: int) -> dict:
    loyalty = await ensure_player_loyalty(session, user_id)
    tiers = await list_tiers(session)
    current = next((tier for tier in tiers if tier.id == loyalty.current_tier_id), None)
    upcoming = next_tier(tiers, current)
    return {
        "tier": current.name if current else None,
        "tierLevel": current.tier_level if current else 0,
        "totalPoints": loyalty.total_points_earned,
        "availablePoints": loyalty.available_points,
        "lifetimeWagered": loyalty.lifetime_wagered,
        "nextTier": upcoming.name if upcoming else None,
        "pointsToNextTier": max(upcoming.points_required - loyalty.total_points_earned, 0) if upcoming else None,
        "benefits": {
            "cashbackRate": str(current.cashback_rate),
            "withdrawalPriority": current.withdrawal_priority,
            "birthdayBonus": current.birthday_bonus,
            "hasPersonalManager": current.has_personal_manager,
            "jackpotTicketCost": current.jackpot_ticket_rate,
            "pointsPerDollarRedemption": current.points_per_dollar_redemption,
        }
        if current
        else None,
    }
