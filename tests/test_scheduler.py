from __future__ import annotations

from datetime import timedelta

import pytest
from sqlalchemy import select

from apps.jackpot.core.pools import begin_draw, get_pool
from apps.jackpot.core.schedule import ensure_utc, utcnow
from apps.jackpot.core.tickets import issue_tickets
from apps.jackpot.db.models import JackpotStatus, JackpotWinner
from apps.jackpot.services.scheduler import DrawScheduler

TICKET_COST = 25_000


@pytest.mark.asyncio
async def test_tick_draws_due_pool_and_credits_winners(database, session, settings, make_user, make_pool):
    now = utcnow()
    pool = await make_pool()
    user = await make_user()
    await issue_tickets(session, pool.id, user.id, 3 * TICKET_COST, ticket_cost=TICKET_COST)
    pool.next_draw_at = now - timedelta(minutes=1)
    pool_id = pool.id
    await session.commit()

    report = await DrawScheduler(database, None, settings).tick(now=now)

    assert list(report.draws) == [pool_id]
    winners = (
        await session.scalars(select(JackpotWinner).where(JackpotWinner.draw_id == report.draws[pool_id]))
    ).all()
    assert len(winners) == 3
    assert all(winner.prize_credited for winner in winners)
    refreshed = await get_pool(session, pool_id)
    assert refreshed.draw_number == 1
    assert ensure_utc(refreshed.next_draw_at) > now


@pytest.mark.asyncio
async def test_tick_reschedules_empty_and_skips_paused(database, session, settings, make_pool):
    now = utcnow()
    empty = await make_pool()
    paused = await make_pool()
    for pool in (empty, paused):
        pool.next_draw_at = now - timedelta(minutes=1)
    paused.status = JackpotStatus.PAUSED.value
    empty_id, paused_id = empty.id, paused.id
    await session.commit()

    report = await DrawScheduler(database, None, settings).tick(now=now)

    assert report.draws == {}
    assert report.skipped == [empty_id]
    assert ensure_utc((await get_pool(session, empty_id)).next_draw_at) > now
    assert ensure_utc((await get_pool(session, paused_id)).next_draw_at) < now
    assert (await get_pool(session, empty_id)).draw_number == 0


@pytest.mark.asyncio
async def test_tick_releases_stuck_draw(database, session, settings, make_pool):
    now = utcnow()
    pool = await make_pool()
    pool_id = pool.id
    await session.commit()
    await begin_draw(session, pool_id, now=now - timedelta(hours=1))

    report = await DrawScheduler(database, None, settings).tick(now=now)

    assert report.released == [pool_id]
    assert (await get_pool(session, pool_id)).status == JackpotStatus.ACTIVE.value
