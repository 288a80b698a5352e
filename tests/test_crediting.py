from __future__ import annotations

import asyncio

import pytest
from sqlalchemy import func, select

from apps.jackpot.core.crediting import credit_draw, credit_reference, credit_winner
from apps.jackpot.core.draws import get_draw_winners
from apps.jackpot.core.errors import WinnerNotFound
from apps.jackpot.core.tickets import issue_tickets
from apps.jackpot.core.wallets import get_balance
from apps.jackpot.db.models import JackpotWinner, Ledger
from apps.jackpot.services.draw_engine import execute_draw

TICKET_COST = 25_000


async def _drawn_pool(database, session, settings, make_user, make_pool):
    pool = await make_pool()
    alice = await make_user("alice")
    bob = await make_user("bob")
    await issue_tickets(session, pool.id, alice.id, 2 * TICKET_COST, ticket_cost=TICKET_COST)
    await issue_tickets(session, pool.id, bob.id, TICKET_COST, ticket_cost=TICKET_COST)
    pool.current_amount = 2_000_000
    await session.commit()
    draw = await execute_draw(database, pool.id, rng_seed="credit-seed", settings=settings)
    return draw, alice, bob


def test_credit_reference_format() -> None:
    assert credit_reference(12, "Grand", 7) == "jackpot_12_grand_7"


@pytest.mark.asyncio
async def test_credit_winner_is_idempotent(database, session, settings, make_user, make_pool):
    draw, _, _ = await _drawn_pool(database, session, settings, make_user, make_pool)
    winner = (await get_draw_winners(session, draw.id))[0]

    first = await credit_winner(session, winner.id)
    again = await credit_winner(session, winner.id)

    assert first == again
    assert await get_balance(session, winner.user_id, "USD") == winner.prize_amount
    entries = await session.scalar(
        select(func.count(Ledger.id)).where(Ledger.reference == credit_reference(draw.id, winner.tier, winner.id))
    )
    assert entries == 1


@pytest.mark.asyncio
async def test_credit_draw_pays_every_winner_once(database, session, settings, make_user, make_pool):
    draw, alice, bob = await _drawn_pool(database, session, settings, make_user, make_pool)
    winners = await get_draw_winners(session, draw.id)

    report = await credit_draw(database, draw.id, concurrency=settings.jackpot_credit_concurrency)

    assert set(report.credited) == {winner.id for winner in winners}
    assert report.failed == {}
    expected = {alice.id: 0, bob.id: 0}
    for winner in winners:
        expected[winner.user_id] += winner.prize_amount
    assert await get_balance(session, alice.id, "USD") == expected[alice.id]
    assert await get_balance(session, bob.id, "USD") == expected[bob.id]
    refreshed = await session.scalars(
        select(JackpotWinner).where(JackpotWinner.draw_id == draw.id).execution_options(populate_existing=True)
    )
    for winner in refreshed.all():
        assert winner.prize_credited is True
        assert winner.credited_transaction_id == report.credited[winner.id]

    repeat = await credit_draw(database, draw.id)
    assert repeat.credited == {}
    assert await get_balance(session, alice.id, "USD") == expected[alice.id]


@pytest.mark.asyncio
async def test_unknown_winner_raises(session):
    with pytest.raises(WinnerNotFound):
        await credit_winner(session, 4_242)


@pytest.mark.asyncio
async def test_second_session_credit_returns_same_transaction(database, session, settings, make_user, make_pool):
    draw, _, _ = await _drawn_pool(database, session, settings, make_user, make_pool)
    winner = (await get_draw_winners(session, draw.id))[0]
    winner_id, user_id, prize = winner.id, winner.user_id, winner.prize_amount
    reference = credit_reference(draw.id, winner.tier, winner.id)

    async with database.session() as first_session:
        first = await credit_winner(first_session, winner_id)
    async with database.session() as second_session:
        again = await credit_winner(second_session, winner_id)

    assert first == again
    assert await get_balance(session, user_id, "USD") == prize
    assert await session.scalar(select(func.count(Ledger.id)).where(Ledger.reference == reference)) == 1


@pytest.mark.asyncio
async def test_concurrent_credit_pays_once(database, session, settings, make_user, make_pool):
    draw, _, _ = await _drawn_pool(database, session, settings, make_user, make_pool)
    winner = (await get_draw_winners(session, draw.id))[0]
    winner_id, user_id, prize = winner.id, winner.user_id, winner.prize_amount
    reference = credit_reference(draw.id, winner.tier, winner.id)

    async def credit_once() -> int:
        async with database.session() as own_session:
            return await credit_winner(own_session, winner_id)

    results = await asyncio.gather(credit_once(), credit_once())

    assert results[0] == results[1]
    assert await get_balance(session, user_id, "USD") == prize
    assert await session.scalar(select(func.count(Ledger.id)).where(Ledger.reference == reference)) == 1
