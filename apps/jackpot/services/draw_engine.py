from __future__ import annotations

import asyncio
import logging
import secrets
import time
from datetime import datetime

from sqlalchemy import delete
from sqlalchemy.exc import SQLAlchemyError

from apps.jackpot.core.draws import WinnerPlan, find_draw, plan_winners, tiers_to_json
from apps.jackpot.core.errors import InvalidPrizeTiers, NoEligibleTickets, PersistenceFailure
from apps.jackpot.core.events import EventName, track_event
from apps.jackpot.core.pools import begin_draw, finish_draw, get_prize_tiers, revert_draw
from apps.jackpot.core.schedule import compute_next_draw_at, utcnow
from apps.jackpot.core.tickets import apply_pending_tickets, load_eligible_tickets
from apps.jackpot.db.models import JackpotDraw, JackpotPool, JackpotWinner, PlayerTicketCount
from apps.jackpot.infra.db import Database
from apps.jackpot.infra.metrics import DRAW_DURATION, DRAWS
from apps.jackpot.infra.settings import Settings, get_settings

logger = logging.getLogger(__name__)


async def _revert(database: Database, pool_id: int) -> None:
    try:
        async with database.session() as session:
            await revert_draw(session, pool_id)
    except SQLAlchemyError:
        logger.exception("Could not revert pool %s to active; the watchdog will release it", pool_id)


async def _persist_draw(
    database: Database,
    pool: JackpotPool,
    *,
    seed: str,
    total_pool_amount: int,
    total_tickets: int,
    tiers: list,
    plans: list[WinnerPlan],
    now: datetime,
) -> JackpotDraw:
    async with database.transaction() as session:
        draw = JackpotDraw(
            pool_id=pool.id,
            draw_number=pool.draw_number + 1,
            total_pool_amount=total_pool_amount,
            total_tickets=total_tickets,
            total_winners=len(plans),
            random_seed=seed,
            prize_tiers=tiers_to_json(tiers),
            drawn_at=now,
        )
        session.add(draw)
        await session.flush()
        session.add_all(
            [
                JackpotWinner(
                    draw_id=draw.id,
                    user_id=plan.user_id,
                    tier=plan.tier,
                    tier_order=plan.tier_order,
                    winning_ticket_number=plan.winning_ticket_number,
                    tickets_held=plan.tickets_held,
                    total_tickets_in_pool=plan.total_tickets_in_pool,
                    win_odds_percentage=plan.win_odds_percentage,
                    prize_amount=plan.prize_amount,
                    prize_credited=False,
                )
                for plan in plans
            ]
        )
        next_draw_at = compute_next_draw_at(pool.draw_frequency, pool.draw_time, pool.draw_day_of_week, now)
        closed = await finish_draw(
            session,
            pool.id,
            total_pool_amount=total_pool_amount,
            next_draw_at=next_draw_at,
        )
        if not closed:
            raise PersistenceFailure(f"pool {pool.id} left drawing before its draw was recorded")
        await session.execute(delete(PlayerTicketCount).where(PlayerTicketCount.pool_id == pool.id))
        await track_event(
            session,
            user_id=None,
            name=EventName.DRAW_COMPLETED,
            props={
                "pool_id": pool.id,
                "draw_number": draw.draw_number,
                "total_pool_amount": total_pool_amount,
                "total_tickets": total_tickets,
                "winners": len(plans),
            },
        )
        for plan in plans:
            await track_event(
                session,
                user_id=plan.user_id,
                name=EventName.PRIZE_WON,
                props={"pool_id": pool.id, "draw_number": draw.draw_number, "tier": plan.tier, "amount": plan.prize_amount},
            )
    return draw


async def _apply_pending(database: Database, pool_id: int) -> None:
    try:
        async with database.transaction() as session:
            await apply_pending_tickets(session, pool_id)
    except SQLAlchemyError:
        logger.exception("Applying deferred tickets to pool %s failed; the scheduler will retry", pool_id)


async def execute_draw(
    database: Database,
    pool_id: int,
    *,
    now: datetime | None = None,
    rng_seed: str | None = None,
    settings: Settings | None = None,
) -> JackpotDraw:
    """Run one draw for ``pool_id`` end to end.

    Raises ``AlreadyDrawing``/``PoolPaused``/``PoolNotFound`` when the pool
    cannot enter ``drawing``, ``NoEligibleTickets`` when the cycle is empty and
    ``PersistenceFailure`` when recording the result failed. In the last case
    the pool is back in ``active`` and the call may be retried.
    """
    settings = settings or get_settings()
    now = now or utcnow()
    started = time.perf_counter()
    label = str(pool_id)

    async with database.session() as session:
        try:
            pool = await begin_draw(session, pool_id, now=now)
        except SQLAlchemyError as exc:
            DRAWS.labels(pool=label, outcome="failed").inc()
            raise PersistenceFailure(f"pool {pool_id} could not enter drawing") from exc
        except Exception:
            DRAWS.labels(pool=label, outcome="rejected").inc()
            raise
    draw_cycle = pool.draw_number + 1

    try:
        async with database.session() as session:
            snapshot = await load_eligible_tickets(session, pool_id, draw_cycle)
            tiers = await get_prize_tiers(session, pool_id)
        if not snapshot:
            await _revert(database, pool_id)
            DRAWS.labels(pool=label, outcome="no_tickets").inc()
            logger.info("Pool %s has no eligible tickets for draw %s", pool_id, draw_cycle)
            raise NoEligibleTickets(f"pool {pool_id} has no eligible tickets")
        if not tiers:
            await _revert(database, pool_id)
            DRAWS.labels(pool=label, outcome="rejected").inc()
            raise InvalidPrizeTiers(f"pool {pool_id} has no prize tiers")

        seed = rng_seed or secrets.token_hex(32)
        total_pool_amount = pool.current_amount
        plans = plan_winners(seed, snapshot, tiers, total_pool_amount)
        draw = await asyncio.wait_for(
            _persist_draw(
                database,
                pool,
                seed=seed,
                total_pool_amount=total_pool_amount,
                total_tickets=len(snapshot),
                tiers=tiers,
                plans=plans,
                now=now,
            ),
            timeout=settings.jackpot_persistence_timeout,
        )
    except (NoEligibleTickets, InvalidPrizeTiers):
        raise
    except (SQLAlchemyError, asyncio.TimeoutError, PersistenceFailure) as exc:
        recorded = await _recorded_draw(database, pool_id, draw_cycle)
        if recorded is not None:
            # the commit landed before the failure surfaced
            logger.warning("Draw %s of pool %s was recorded despite %r", draw_cycle, pool_id, exc)
            draw = recorded
        else:
            await _revert(database, pool_id)
            DRAWS.labels(pool=label, outcome="failed").inc()
            logger.error("Draw %s of pool %s failed: %r", draw_cycle, pool_id, exc)
            if isinstance(exc, PersistenceFailure):
                raise
            raise PersistenceFailure(f"draw {draw_cycle} of pool {pool_id} could not be recorded") from exc
    except Exception:
        await _revert(database, pool_id)
        DRAWS.labels(pool=label, outcome="failed").inc()
        raise

    DRAWS.labels(pool=label, outcome="completed").inc()
    DRAW_DURATION.labels(pool=label).observe(time.perf_counter() - started)
    logger.info(
        "Pool %s draw %s: %s winners from %s tickets, pool %s",
        pool_id,
        draw.draw_number,
        draw.total_winners,
        draw.total_tickets,
        draw.total_pool_amount,
    )
    await _apply_pending(database, pool_id)
    return draw


async def _recorded_draw(database: Database, pool_id: int, draw_number: int) -> JackpotDraw | None:
    try:
        async with database.session() as session:
            return await find_draw(session, pool_id, draw_number)
    except SQLAlchemyError:
        logger.exception("Could not check whether draw %s of pool %s was recorded", draw_number, pool_id)
        return None
