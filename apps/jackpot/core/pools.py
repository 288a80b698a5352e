from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, time, timedelta
from decimal import Decimal
from typing import Sequence

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from apps.jackpot.core.errors import AlreadyDrawing, InvalidPrizeTiers, PoolNotFound, PoolPaused
from apps.jackpot.core.money import floor_minor
from apps.jackpot.core.schedule import compute_next_draw_at, utcnow
from apps.jackpot.db.models import JackpotPool, JackpotPrizeTier, JackpotStatus, JackpotType

logger = logging.getLogger(__name__)

CONTRIBUTING_STATUSES = (JackpotStatus.ACTIVE.value, JackpotStatus.DRAWING.value)


@dataclass(frozen=True)
class PrizeTierSpec:
    name: str
    tier_order: int
    winner_count: int
    pool_percentage: Decimal


DEFAULT_PRIZE_TIERS = (
    PrizeTierSpec("Grand", 1, 1, Decimal("0.50")),
    PrizeTierSpec("Major", 2, 3, Decimal("0.30")),
    PrizeTierSpec("Minor", 3, 10, Decimal("0.20")),
)


def validate_prize_tiers(tiers: Sequence[PrizeTierSpec]) -> None:
    if not tiers:
        raise InvalidPrizeTiers("at least one prize tier is required")
    orders = [tier.tier_order for tier in tiers]
    if len(set(orders)) != len(orders):
        raise InvalidPrizeTiers("tier_order values must be unique")
    total = Decimal("0")
    for tier in tiers:
        pct = Decimal(str(tier.pool_percentage))
        if tier.winner_count <= 0:
            raise InvalidPrizeTiers(f"tier {tier.name} must select at least one winner")
        if pct <= 0 or pct > 1:
            raise InvalidPrizeTiers(f"tier {tier.name} percentage must be within (0, 1]")
        total += pct
    if total > 1:
        raise InvalidPrizeTiers(f"tier percentages sum to {total}, more than the whole pool")


async def get_pool(session: AsyncSession, pool_id: int, *, for_update: bool = False) -> JackpotPool:
    pool = await session.get(JackpotPool, pool_id, with_for_update=for_update, populate_existing=True)
    if pool is None:
        raise PoolNotFound(f"pool {pool_id} not found")
    return pool


async def get_prize_tiers(session: AsyncSession, pool_id: int) -> list[JackpotPrizeTier]:
    rows = await session.scalars(
        select(JackpotPrizeTier)
        .where(JackpotPrizeTier.pool_id == pool_id)
        .order_by(JackpotPrizeTier.tier_order)
    )
    return list(rows.all())


async def create_pool(
    session: AsyncSession,
    *,
    name: str,
    seed_amount: int,
    contribution_rate: Decimal | str,
    draw_time: time,
    pool_type: str = JackpotType.WEEKLY.value,
    draw_day_of_week: int | None = None,
    currency: str = "USD",
    tiers: Sequence[PrizeTierSpec] = DEFAULT_PRIZE_TIERS,
    now: datetime | None = None,
) -> JackpotPool:
    if seed_amount < 0:
        raise ValueError("seed_amount must not be negative")
    rate = Decimal(str(contribution_rate))
    if rate < 0 or rate > 1:
        raise ValueError("contribution_rate must be within [0, 1]")
    validate_prize_tiers(tiers)
    pool = JackpotPool(
        name=name,
        type=pool_type,
        currency=currency,
        current_amount=seed_amount,
        seed_amount=seed_amount,
        contribution_rate=rate,
        draw_frequency=pool_type,
        draw_day_of_week=draw_day_of_week,
        draw_time=draw_time,
        next_draw_at=compute_next_draw_at(pool_type, draw_time, draw_day_of_week, now or utcnow()),
        status=JackpotStatus.ACTIVE.value,
        draw_number=0,
        ticket_counter=0,
    )
    session.add(pool)
    await session.flush()
    await set_prize_tiers(session, pool.id, tiers)
    return pool


async def set_prize_tiers(session: AsyncSession, pool_id: int, tiers: Sequence[PrizeTierSpec]) -> list[JackpotPrizeTier]:
    validate_prize_tiers(tiers)
    pool = await get_pool(session, pool_id, for_update=True)
    if pool.status == JackpotStatus.DRAWING.value:
        raise AlreadyDrawing("prize tiers cannot change while a draw is running")
    await session.execute(delete(JackpotPrizeTier).where(JackpotPrizeTier.pool_id == pool_id))
    rows = [
        JackpotPrizeTier(
            pool_id=pool_id,
            name=tier.name,
            tier_order=tier.tier_order,
            winner_count=tier.winner_count,
            pool_percentage=Decimal(str(tier.pool_percentage)),
        )
        for tier in sorted(tiers, key=lambda t: t.tier_order)
    ]
    session.add_all(rows)
    await session.flush()
    return rows


async def _raise_for_status(session: AsyncSession, pool_id: int) -> None:
    pool = await get_pool(session, pool_id)
    if pool.status == JackpotStatus.PAUSED.value:
        raise PoolPaused(f"pool {pool_id} is paused")
    raise AlreadyDrawing(f"pool {pool_id} is {pool.status}")


async def _transition(
    session: AsyncSession,
    pool_id: int,
    source: str,
    target: str,
    **values,
) -> bool:
    result = await session.execute(
        update(JackpotPool)
        .where(JackpotPool.id == pool_id, JackpotPool.status == source)
        .values(status=target, updated_at=utcnow(), **values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def begin_draw(session: AsyncSession, pool_id: int, *, now: datetime | None = None) -> JackpotPool:
    """Compare-and-swap ``active -> drawing`` and commit it.

    Raises ``AlreadyDrawing`` when the pool was not active, so two triggers
    for the same pool can never both proceed.
    """
    moved = await _transition(
        session,
        pool_id,
        JackpotStatus.ACTIVE.value,
        JackpotStatus.DRAWING.value,
        drawing_started_at=now or utcnow(),
    )
    if not moved:
        await session.rollback()
        await _raise_for_status(session, pool_id)
    await session.commit()
    return await get_pool(session, pool_id)


async def finish_draw(
    session: AsyncSession,
    pool_id: int,
    *,
    total_pool_amount: int,
    next_draw_at: datetime,
) -> bool:
    """Close the cycle inside the caller's draw transaction; does not commit.

    Contributions that arrived while drawing stay in the pool on top of the
    reseeded amount.
    """
    moved = await _transition(
        session,
        pool_id,
        JackpotStatus.DRAWING.value,
        JackpotStatus.ACTIVE.value,
        current_amount=JackpotPool.seed_amount + (JackpotPool.current_amount - total_pool_amount),
        draw_number=JackpotPool.draw_number + 1,
        ticket_counter=0,
        drawing_started_at=None,
        next_draw_at=next_draw_at,
    )
    return moved


async def revert_draw(session: AsyncSession, pool_id: int) -> bool:
    moved = await _transition(
        session,
        pool_id,
        JackpotStatus.DRAWING.value,
        JackpotStatus.ACTIVE.value,
        drawing_started_at=None,
    )
    await session.commit()
    return moved


async def pause_pool(session: AsyncSession, pool_id: int) -> JackpotPool:
    if not await _transition(session, pool_id, JackpotStatus.ACTIVE.value, JackpotStatus.PAUSED.value):
        await session.rollback()
        await _raise_for_status(session, pool_id)
    await session.commit()
    logger.info("Pool %s paused", pool_id)
    return await get_pool(session, pool_id)


async def resume_pool(session: AsyncSession, pool_id: int, *, now: datetime | None = None) -> JackpotPool:
    pool = await get_pool(session, pool_id)
    if pool.status != JackpotStatus.PAUSED.value:
        return pool
    now = now or utcnow()
    next_draw_at = compute_next_draw_at(pool.draw_frequency, pool.draw_time, pool.draw_day_of_week, now)
    await _transition(
        session,
        pool_id,
        JackpotStatus.PAUSED.value,
        JackpotStatus.ACTIVE.value,
        next_draw_at=next_draw_at,
    )
    await session.commit()
    logger.info("Pool %s resumed, next draw at %s", pool_id, next_draw_at.isoformat())
    return await get_pool(session, pool_id)


async def release_stuck_draws(
    session: AsyncSession,
    *,
    grace_seconds: int,
    now: datetime | None = None,
) -> list[int]:
    cutoff = (now or utcnow()) - timedelta(seconds=grace_seconds)
    stuck = (
        await session.scalars(
            select(JackpotPool.id).where(
                JackpotPool.status == JackpotStatus.DRAWING.value,
                JackpotPool.drawing_started_at.is_not(None),
                JackpotPool.drawing_started_at < cutoff,
            )
        )
    ).all()
    released: list[int] = []
    for pool_id in stuck:
        moved = await _transition(
            session,
            pool_id,
            JackpotStatus.DRAWING.value,
            JackpotStatus.ACTIVE.value,
            drawing_started_at=None,
        )
        if moved:
            released.append(pool_id)
    await session.commit()
    for pool_id in released:
        logger.warning("Pool %s was stuck in drawing longer than %ss; released", pool_id, grace_seconds)
    return released


async def reschedule_pool(session: AsyncSession, pool_id: int, *, now: datetime | None = None) -> datetime | None:
    """Move an active pool's next draw to the following slot without drawing."""
    pool = await get_pool(session, pool_id)
    if pool.status != JackpotStatus.ACTIVE.value:
        return None
    next_draw_at = compute_next_draw_at(pool.draw_frequency, pool.draw_time, pool.draw_day_of_week, now or utcnow())
    await session.execute(
        update(JackpotPool)
        .where(JackpotPool.id == pool_id, JackpotPool.status == JackpotStatus.ACTIVE.value)
        .values(next_draw_at=next_draw_at, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    await session.commit()
    return next_draw_at


async def due_pool_ids(session: AsyncSession, *, now: datetime | None = None) -> list[int]:
    rows = await session.scalars(
        select(JackpotPool.id)
        .where(
            JackpotPool.status == JackpotStatus.ACTIVE.value,
            JackpotPool.next_draw_at.is_not(None),
            JackpotPool.next_draw_at <= (now or utcnow()),
        )
        .order_by(JackpotPool.next_draw_at)
    )
    return list(rows.all())


async def add_contribution(session: AsyncSession, pool: JackpotPool, wager_amount: int) -> int:
    """Route ``contribution_rate`` of a wager into the pool; returns the minor units added."""
    if wager_amount <= 0:
        return 0
    contribution = floor_minor(Decimal(wager_amount) * Decimal(str(pool.contribution_rate)))
    if contribution <= 0:
        return 0
    result = await session.execute(
        update(JackpotPool)
        .where(JackpotPool.id == pool.id, JackpotPool.status.in_(CONTRIBUTING_STATUSES))
        .values(current_amount=JackpotPool.current_amount + contribution, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        return 0
    return contribution
