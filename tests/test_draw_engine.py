from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from apps.jackpot.core.draws import get_draw_winners, matches_recorded, replay_draw
from apps.jackpot.core.errors import AlreadyDrawing, NoEligibleTickets, PersistenceFailure, PoolPaused
from apps.jackpot.core.pools import begin_draw, get_pool, release_stuck_draws, revert_draw
from apps.jackpot.core.schedule import ensure_utc, utcnow
from apps.jackpot.core.tickets import get_ticket_count, issue_tickets
from apps.jackpot.db.models import JackpotDraw, JackpotStatus, JackpotTicket, PlayerTicketCount
from apps.jackpot.services import draw_engine
from apps.jackpot.services.draw_engine import execute_draw

TICKET_COST = 25_000


async def _pool_with_tickets(session, make_user, make_pool, held=(3, 2, 1), amount=None):
    pool = await make_pool()
    users = []
    for count in held:
        user = await make_user()
        users.append(user)
        await issue_tickets(session, pool.id, user.id, count * TICKET_COST, ticket_cost=TICKET_COST)
    if amount is not None:
        pool.current_amount = amount
    await session.commit()
    return pool, users


@pytest.mark.asyncio
async def test_draw_records_winners_and_reseeds_pool(database, session, settings, make_user, make_pool):
    pool, users = await _pool_with_tickets(session, make_user, make_pool, amount=1_500_000)
    held = {users[0].id: 3, users[1].id: 2, users[2].id: 1}
    now = utcnow()

    draw = await execute_draw(database, pool.id, now=now, rng_seed="fixed-seed", settings=settings)

    assert draw.draw_number == 1
    assert draw.total_tickets == 6
    assert draw.total_pool_amount == 1_500_000
    assert draw.total_winners == 6
    assert draw.random_seed == "fixed-seed"

    winners = await get_draw_winners(session, draw.id)
    assert sorted(winner.winning_ticket_number for winner in winners) == [1, 2, 3, 4, 5, 6]
    prizes = {}
    for winner in winners:
        prizes.setdefault(winner.tier, []).append(winner.prize_amount)
        assert winner.tickets_held == held[winner.user_id]
        assert winner.total_tickets_in_pool == 6
        assert winner.prize_credited is False
    assert prizes == {"Grand": [750_000], "Major": [150_000] * 3, "Minor": [30_000] * 2}
    assert sum(winner.prize_amount for winner in winners) < draw.total_pool_amount

    refreshed = await get_pool(session, pool.id)
    assert refreshed.status == JackpotStatus.ACTIVE.value
    assert refreshed.draw_number == 1
    assert refreshed.ticket_counter == 0
    assert refreshed.current_amount == refreshed.seed_amount
    assert refreshed.drawing_started_at is None
    assert ensure_utc(refreshed.next_draw_at) > now
    remaining = await session.scalar(select(func.count(PlayerTicketCount.id)).where(PlayerTicketCount.pool_id == pool.id))
    assert remaining == 0


@pytest.mark.asyncio
async def test_replay_reproduces_recorded_winners(database, session, settings, make_user, make_pool):
    pool, _ = await _pool_with_tickets(session, make_user, make_pool, held=(10, 20, 30, 40))

    draw = await execute_draw(database, pool.id, settings=settings)

    plans = await replay_draw(session, draw.id)
    winners = await get_draw_winners(session, draw.id)
    assert len(plans) == 14
    assert matches_recorded(plans, winners)


@pytest.mark.asyncio
async def test_empty_pool_is_left_untouched(database, session, settings, make_pool):
    pool = await make_pool()
    await session.commit()

    with pytest.raises(NoEligibleTickets):
        await execute_draw(database, pool.id, settings=settings)

    refreshed = await get_pool(session, pool.id)
    assert refreshed.status == JackpotStatus.ACTIVE.value
    assert refreshed.draw_number == 0
    assert refreshed.current_amount == refreshed.seed_amount
    assert await session.scalar(select(func.count(JackpotDraw.id))) == 0


@pytest.mark.asyncio
async def test_drawing_pool_rejects_second_draw(database, session, settings, make_user, make_pool):
    pool, _ = await _pool_with_tickets(session, make_user, make_pool)
    await begin_draw(session, pool.id)

    with pytest.raises(AlreadyDrawing):
        await execute_draw(database, pool.id, settings=settings)

    assert await session.scalar(select(func.count(JackpotDraw.id))) == 0


@pytest.mark.asyncio
async def test_paused_pool_cannot_draw(database, session, settings, make_user, make_pool):
    pool, _ = await _pool_with_tickets(session, make_user, make_pool)
    pool.status = JackpotStatus.PAUSED.value
    await session.commit()

    with pytest.raises(PoolPaused):
        await execute_draw(database, pool.id, settings=settings)


@pytest.mark.asyncio
async def test_concurrent_begin_draw_admits_exactly_one(database, session, make_user, make_pool):
    pool, _ = await _pool_with_tickets(session, make_user, make_pool)

    async def attempt():
        async with database.session() as other:
            return await begin_draw(other, pool.id)

    results = await asyncio.gather(attempt(), attempt(), return_exceptions=True)

    succeeded = [result for result in results if not isinstance(result, BaseException)]
    failed = [result for result in results if isinstance(result, BaseException)]
    assert len(succeeded) == 1
    assert len(failed) == 1
    assert isinstance(failed[0], AlreadyDrawing)
    refreshed = await get_pool(session, pool.id)
    assert refreshed.status == JackpotStatus.DRAWING.value


@pytest.mark.asyncio
async def test_storage_failure_reverts_pool(database, session, settings, make_user, make_pool, monkeypatch):
    pool, _ = await _pool_with_tickets(session, make_user, make_pool)

    async def broken_persist(*args, **kwargs):
        raise OperationalError("INSERT INTO jackpot_draws", {}, Exception("disk I/O error"))

    monkeypatch.setattr(draw_engine, "_persist_draw", broken_persist)

    with pytest.raises(PersistenceFailure):
        await execute_draw(database, pool.id, settings=settings)

    refreshed = await get_pool(session, pool.id)
    assert refreshed.status == JackpotStatus.ACTIVE.value
    assert refreshed.drawing_started_at is None
    assert refreshed.draw_number == 0


@pytest.mark.asyncio
async def test_slow_commit_times_out_and_reverts(database, session, settings, make_user, make_pool, monkeypatch):
    pool, _ = await _pool_with_tickets(session, make_user, make_pool)

    async def stalled_persist(*args, **kwargs):
        await asyncio.sleep(5)

    monkeypatch.setattr(draw_engine, "_persist_draw", stalled_persist)
    fast = settings.model_copy(update={"jackpot_persistence_timeout": 0.05})

    with pytest.raises(PersistenceFailure):
        await execute_draw(database, pool.id, settings=fast)

    refreshed = await get_pool(session, pool.id)
    assert refreshed.status == JackpotStatus.ACTIVE.value


@pytest.mark.asyncio
async def test_tickets_earned_while_drawing_join_next_cycle(database, session, settings, make_user, make_pool):
    pool, users = await _pool_with_tickets(session, make_user, make_pool, held=(2,))
    late = await make_user("late")
    await session.commit()

    await begin_draw(session, pool.id)
    issue = await issue_tickets(session, pool.id, late.id, 2 * TICKET_COST, ticket_cost=TICKET_COST, source_transaction_id="late-1")
    assert issue.deferred is True
    await session.commit()
    await revert_draw(session, pool.id)

    draw = await execute_draw(database, pool.id, settings=settings)

    winners = await get_draw_winners(session, draw.id)
    assert {winner.user_id for winner in winners} == {users[0].id}
    assert draw.total_tickets == 2

    next_cycle = (
        await session.scalars(
            select(JackpotTicket).where(JackpotTicket.pool_id == pool.id, JackpotTicket.draw_cycle == 2)
        )
    ).all()
    assert sorted(ticket.ticket_number for ticket in next_cycle) == [1, 2]
    assert {ticket.user_id for ticket in next_cycle} == {late.id}
    assert await get_ticket_count(session, pool.id, late.id) == 2
    refreshed = await get_pool(session, pool.id)
    assert refreshed.ticket_counter == 2


@pytest.mark.asyncio
async def test_watchdog_releases_only_stuck_pools(session, make_user, make_pool):
    stuck = await make_pool()
    fresh = await make_pool()
    await session.commit()
    now = utcnow()
    await begin_draw(session, stuck.id, now=now - timedelta(hours=1))
    await begin_draw(session, fresh.id, now=now)

    released = await release_stuck_draws(session, grace_seconds=300, now=now)

    assert released == [stuck.id]
    assert (await get_pool(session, stuck.id)).status == JackpotStatus.ACTIVE.value
    assert (await get_pool(session, fresh.id)).status == JackpotStatus.DRAWING.value
