from __future__ import annotations

import pytest
from sqlalchemy import func, select

from apps.jackpot.core.pools import get_pool, pause_pool
from apps.jackpot.core.tickets import get_ticket_count
from apps.jackpot.db.models import JackpotTicket, Wager
from apps.jackpot.services.wagers import WagerRejected, record_wager


@pytest.mark.asyncio
async def test_wager_feeds_pool_tickets_and_points(session, settings, make_user, make_pool):
    pool = await make_pool()
    user = await make_user()
    pool_id, user_id = pool.id, user.id
    await session.commit()

    outcome = await record_wager(session, user_id=user_id, amount=100_000, transaction_id="bet-1", game="slots", settings=settings)

    assert outcome.duplicate is False
    assert outcome.contributions == {pool_id: 500}
    assert outcome.tickets[pool_id].ticket_numbers == [1, 2, 3, 4]
    assert outcome.points.points == 100
    assert (await get_pool(session, pool_id)).current_amount == 1_000_500
    assert await get_ticket_count(session, pool_id, user_id) == 4
    payload = outcome.to_dict()
    assert payload["transactionId"] == "bet-1"
    assert payload["tickets"][str(pool_id)]["tickets"] == [1, 2, 3, 4]


@pytest.mark.asyncio
async def test_replayed_wager_is_ignored(session, settings, make_user, make_pool):
    pool = await make_pool()
    user = await make_user()
    pool_id, user_id = pool.id, user.id
    await session.commit()

    await record_wager(session, user_id=user_id, amount=100_000, transaction_id="bet-9", settings=settings)
    repeat = await record_wager(session, user_id=user_id, amount=100_000, transaction_id="bet-9", settings=settings)

    assert repeat.duplicate is True
    assert (await get_pool(session, pool_id)).current_amount == 1_000_500
    assert await session.scalar(select(func.count(JackpotTicket.id))) == 4
    assert await session.scalar(select(func.count(Wager.id))) == 1


@pytest.mark.asyncio
async def test_paused_pool_gets_nothing(session, settings, make_user, make_pool):
    pool = await make_pool()
    user = await make_user()
    pool_id, user_id = pool.id, user.id
    await session.commit()
    await pause_pool(session, pool_id)

    outcome = await record_wager(session, user_id=user_id, amount=100_000, transaction_id="bet-2", settings=settings)

    assert outcome.contributions == {}
    assert outcome.tickets == {}
    assert (await get_pool(session, pool_id)).current_amount == 1_000_000
    assert outcome.points.points == 100


@pytest.mark.asyncio
async def test_banned_or_unknown_players_are_rejected(session, settings, make_user):
    banned = await make_user(banned=True)
    banned_id = banned.id
    await session.commit()

    with pytest.raises(WagerRejected):
        await record_wager(session, user_id=banned_id, amount=100_000, transaction_id="bet-3", settings=settings)
    with pytest.raises(WagerRejected):
        await record_wager(session, user_id=9_999, amount=100_000, transaction_id="bet-4", settings=settings)
    with pytest.raises(WagerRejected):
        await record_wager(session, user_id=banned_id, amount=0, transaction_id="bet-5", settings=settings)
