from __future__ import annotations

import pytest
from sqlalchemy import func, select

from apps.jackpot.core.errors import PoolNotAcceptingTickets
from apps.jackpot.core.pools import get_pool
from apps.jackpot.core.tickets import (
    apply_pending_tickets,
    count_eligible_tickets,
    get_ticket_count,
    issue_tickets,
    reconcile_ticket_counts,
    tickets_for_wager,
)
from apps.jackpot.db.models import JackpotStatus, JackpotTicket, PendingTicketIssue, PlayerTicketCount

TICKET_COST = 25_000


def test_tickets_for_wager_drops_remainder() -> None:
    assert tickets_for_wager(74_999, TICKET_COST) == 2
    assert tickets_for_wager(24_999, TICKET_COST) == 0
    assert tickets_for_wager(0, TICKET_COST) == 0
    with pytest.raises(ValueError):
        tickets_for_wager(100, 0)


@pytest.mark.asyncio
async def test_ticket_numbers_are_consecutive_across_players(session, make_user, make_pool):
    pool = await make_pool()
    alice = await make_user("alice")
    bob = await make_user("bob")

    first = await issue_tickets(session, pool.id, alice.id, 75_000, ticket_cost=TICKET_COST, source_transaction_id="tx-1")
    second = await issue_tickets(session, pool.id, bob.id, 50_000, ticket_cost=TICKET_COST, source_transaction_id="tx-2")
    third = await issue_tickets(session, pool.id, alice.id, 30_000, ticket_cost=TICKET_COST, source_transaction_id="tx-3")

    assert first.ticket_numbers == [1, 2, 3]
    assert second.ticket_numbers == [4, 5]
    assert third.ticket_numbers == [6]
    assert {ticket.draw_cycle for ticket in first.tickets} == {1}

    assert await get_ticket_count(session, pool.id, alice.id) == 4
    assert await get_ticket_count(session, pool.id, bob.id) == 2
    assert await count_eligible_tickets(session, pool.id, 1) == 6

    refreshed = await get_pool(session, pool.id)
    assert refreshed.ticket_counter == 6


@pytest.mark.asyncio
async def test_small_wager_issues_nothing(session, make_user, make_pool):
    pool = await make_pool()
    user = await make_user()

    issue = await issue_tickets(session, pool.id, user.id, 24_999, ticket_cost=TICKET_COST)

    assert issue.count == 0
    assert issue.deferred is False
    assert await get_ticket_count(session, pool.id, user.id) == 0
    aggregate = await session.scalar(select(PlayerTicketCount).where(PlayerTicketCount.user_id == user.id))
    assert aggregate is None


@pytest.mark.asyncio
async def test_issue_is_idempotent_per_source_transaction(session, make_user, make_pool):
    pool = await make_pool()
    user = await make_user()

    first = await issue_tickets(session, pool.id, user.id, 50_000, ticket_cost=TICKET_COST, source_transaction_id="bet-77")
    repeat = await issue_tickets(session, pool.id, user.id, 50_000, ticket_cost=TICKET_COST, source_transaction_id="bet-77")

    assert repeat.duplicate is True
    assert repeat.ticket_numbers == first.ticket_numbers == [1, 2]
    total = await session.scalar(select(func.count(JackpotTicket.id)).where(JackpotTicket.pool_id == pool.id))
    assert total == 2
    assert await get_ticket_count(session, pool.id, user.id) == 2


@pytest.mark.asyncio
async def test_drawing_pool_defers_issue_until_applied(session, make_user, make_pool):
    pool = await make_pool()
    user = await make_user()
    pool.status = JackpotStatus.DRAWING.value
    await session.flush()

    issue = await issue_tickets(session, pool.id, user.id, 75_000, ticket_cost=TICKET_COST, source_transaction_id="late-bet")

    assert issue.deferred is True
    assert issue.count == 0
    assert issue.pending_id is not None
    assert await session.scalar(select(func.count(JackpotTicket.id))) == 0

    repeat = await issue_tickets(session, pool.id, user.id, 75_000, ticket_cost=TICKET_COST, source_transaction_id="late-bet")
    assert repeat.deferred is True
    assert repeat.pending_id == issue.pending_id
    assert await session.scalar(select(func.count(PendingTicketIssue.id))) == 1

    pool.status = JackpotStatus.ACTIVE.value
    pool.draw_number = 1
    await session.flush()

    applied = await apply_pending_tickets(session, pool.id)

    assert applied == 3
    tickets = (await session.scalars(select(JackpotTicket).order_by(JackpotTicket.ticket_number))).all()
    assert [ticket.ticket_number for ticket in tickets] == [1, 2, 3]
    assert {ticket.draw_cycle for ticket in tickets} == {2}
    pending = await session.get(PendingTicketIssue, issue.pending_id)
    assert pending.applied_at is not None
    assert await apply_pending_tickets(session, pool.id) == 0


@pytest.mark.asyncio
async def test_paused_pool_rejects_tickets(session, make_user, make_pool):
    pool = await make_pool()
    user = await make_user()
    pool.status = JackpotStatus.PAUSED.value
    await session.flush()

    with pytest.raises(PoolNotAcceptingTickets):
        await issue_tickets(session, pool.id, user.id, 50_000, ticket_cost=TICKET_COST)


@pytest.mark.asyncio
async def test_reconcile_repairs_drifted_counts(session, make_user, make_pool):
    pool = await make_pool()
    alice = await make_user("alice")
    bob = await make_user("bob")
    carol = await make_user("carol")
    await issue_tickets(session, pool.id, alice.id, 75_000, ticket_cost=TICKET_COST)
    await issue_tickets(session, pool.id, bob.id, 50_000, ticket_cost=TICKET_COST)

    alice_row = await session.scalar(select(PlayerTicketCount).where(PlayerTicketCount.user_id == alice.id))
    alice_row.total_tickets = 99
    bob_row = await session.scalar(select(PlayerTicketCount).where(PlayerTicketCount.user_id == bob.id))
    await session.delete(bob_row)
    session.add(PlayerTicketCount(pool_id=pool.id, user_id=carol.id, total_tickets=4))
    await session.flush()

    changed = await reconcile_ticket_counts(session, pool.id)

    assert changed == 3
    assert await get_ticket_count(session, pool.id, alice.id) == 3
    assert await get_ticket_count(session, pool.id, bob.id) == 2
    assert await get_ticket_count(session, pool.id, carol.id) == 0
    assert await reconcile_ticket_counts(session, pool.id) == 0
