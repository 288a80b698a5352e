from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from apps.jackpot.core.errors import PoolNotAcceptingTickets
from apps.jackpot.core.pools import get_pool
from apps.jackpot.core.schedule import utcnow
from apps.jackpot.db.models import (
    JackpotPool,
    JackpotStatus,
    JackpotTicket,
    PendingTicketIssue,
    PlayerTicketCount,
)
from apps.jackpot.infra.metrics import TICKETS_DEFERRED, TICKETS_ISSUED

logger = logging.getLogger(__name__)


@dataclass
class TicketIssue:
    pool_id: int
    user_id: int
    tickets: list[JackpotTicket] = field(default_factory=list)
    deferred: bool = False
    pending_id: int | None = None
    duplicate: bool = False

    @property
    def count(self) -> int:
        return len(self.tickets)

    @property
    def ticket_numbers(self) -> list[int]:
        return [ticket.ticket_number for ticket in self.tickets]

    def to_dict(self) -> dict:
        return {
            "poolId": self.pool_id,
            "userId": self.user_id,
            "tickets": self.ticket_numbers,
            "deferred": self.deferred,
            "pendingId": self.pending_id,
            "duplicate": self.duplicate,
        }


@dataclass(frozen=True)
class TicketRef:
    ticket_number: int
    user_id: int


def tickets_for_wager(wager_amount: int, ticket_cost: int) -> int:
    if ticket_cost <= 0:
        raise ValueError("ticket_cost must be positive")
    if wager_amount <= 0:
        return 0
    return wager_amount // ticket_cost


async def _allocate_numbers(session: AsyncSession, pool_id: int, count: int) -> tuple[int, int] | None:
    # The conditional increment is the per-pool serialization point: the row
    # lock it takes orders concurrent issuers and the status guard keeps
    # numbers out of a cycle that is already being drawn.
    row = (
        await session.execute(
            update(JackpotPool)
            .where(JackpotPool.id == pool_id, JackpotPool.status == JackpotStatus.ACTIVE.value)
            .values(ticket_counter=JackpotPool.ticket_counter + count)
            .returning(JackpotPool.ticket_counter, JackpotPool.draw_number)
            .execution_options(synchronize_session=False)
        )
    ).one_or_none()
    if row is None:
        return None
    counter, draw_number = row
    return counter - count + 1, draw_number + 1


async def _existing_for_source(session: AsyncSession, pool_id: int, source_transaction_id: str) -> list[JackpotTicket]:
    rows = await session.scalars(
        select(JackpotTicket)
        .where(
            JackpotTicket.pool_id == pool_id,
            JackpotTicket.earned_from_transaction_id == source_transaction_id,
        )
        .order_by(JackpotTicket.ticket_number)
    )
    return list(rows.all())


async def _pending_for_source(session: AsyncSession, pool_id: int, source_transaction_id: str) -> PendingTicketIssue | None:
    return await session.scalar(
        select(PendingTicketIssue).where(
            PendingTicketIssue.pool_id == pool_id,
            PendingTicketIssue.source_transaction_id == source_transaction_id,
            PendingTicketIssue.applied_at.is_(None),
        )
    )


async def _increment_ticket_count(session: AsyncSession, pool_id: int, user_id: int, count: int, now: datetime) -> None:
    aggregate = await session.scalar(
        select(PlayerTicketCount)
        .where(PlayerTicketCount.pool_id == pool_id, PlayerTicketCount.user_id == user_id)
        .with_for_update()
    )
    if aggregate is None:
        session.add(PlayerTicketCount(pool_id=pool_id, user_id=user_id, total_tickets=count, last_ticket_at=now))
    else:
        aggregate.total_tickets += count
        aggregate.last_ticket_at = now
    await session.flush()


async def _write_tickets(
    session: AsyncSession,
    *,
    pool_id: int,
    user_id: int,
    first_number: int,
    draw_cycle: int,
    count: int,
    wager_amount: int,
    source_transaction_id: str | None,
    now: datetime,
) -> list[JackpotTicket]:
    tickets = [
        JackpotTicket(
            pool_id=pool_id,
            user_id=user_id,
            draw_cycle=draw_cycle,
            ticket_number=first_number + offset,
            wager_amount=wager_amount,
            earned_from_transaction_id=source_transaction_id,
            draw_eligible=True,
            earned_at=now,
        )
        for offset in range(count)
    ]
    session.add_all(tickets)
    await session.flush()
    await _increment_ticket_count(session, pool_id, user_id, count, now)
    TICKETS_ISSUED.labels(pool=str(pool_id)).inc(count)
    return tickets


async def issue_tickets(
    session: AsyncSession,
    pool_id: int,
    user_id: int,
    wager_amount: int,
    *,
    ticket_cost: int,
    source_transaction_id: str | None = None,
    now: datetime | None = None,
) -> TicketIssue:
    """Issue ``wager_amount // ticket_cost`` tickets; the remainder is dropped.

    While the pool is drawing the issuance is queued and reported as
    deferred. Paused pools reject it. Nothing is committed here.
    """
    count = tickets_for_wager(wager_amount, ticket_cost)
    now = now or utcnow()
    result = TicketIssue(pool_id=pool_id, user_id=user_id)

    if source_transaction_id:
        existing = await _existing_for_source(session, pool_id, source_transaction_id)
        if existing:
            result.tickets = existing
            result.duplicate = True
            return result
        pending = await _pending_for_source(session, pool_id, source_transaction_id)
        if pending is not None:
            result.deferred = True
            result.pending_id = pending.id
            result.duplicate = True
            return result

    if count == 0:
        return result

    allocated = await _allocate_numbers(session, pool_id, count)
    if allocated is None:
        pool = await get_pool(session, pool_id)
        if pool.status != JackpotStatus.DRAWING.value:
            raise PoolNotAcceptingTickets(f"pool {pool_id} is {pool.status}")
        pending = PendingTicketIssue(
            pool_id=pool_id,
            user_id=user_id,
            wager_amount=wager_amount,
            ticket_cost=ticket_cost,
            source_transaction_id=source_transaction_id,
        )
        session.add(pending)
        await session.flush()
        TICKETS_DEFERRED.labels(pool=str(pool_id)).inc()
        logger.info("Pool %s is drawing; deferred %s tickets for user %s", pool_id, count, user_id)
        result.deferred = True
        result.pending_id = pending.id
        return result

    first_number, draw_cycle = allocated
    result.tickets = await _write_tickets(
        session,
        pool_id=pool_id,
        user_id=user_id,
        first_number=first_number,
        draw_cycle=draw_cycle,
        count=count,
        wager_amount=wager_amount,
        source_transaction_id=source_transaction_id,
        now=now,
    )
    return result


async def apply_pending_tickets(session: AsyncSession, pool_id: int, *, now: datetime | None = None) -> int:
    """Move issuances queued during a draw into the current cycle."""
    now = now or utcnow()
    pending_rows = (
        await session.scalars(
            select(PendingTicketIssue)
            .where(PendingTicketIssue.pool_id == pool_id, PendingTicketIssue.applied_at.is_(None))
            .order_by(PendingTicketIssue.id)
        )
    ).all()
    issued = 0
    for pending in pending_rows:
        if pending.source_transaction_id and await _existing_for_source(session, pool_id, pending.source_transaction_id):
            pending.applied_at = now
            continue
        count = tickets_for_wager(pending.wager_amount, pending.ticket_cost)
        if count == 0:
            pending.applied_at = now
            continue
        allocated = await _allocate_numbers(session, pool_id, count)
        if allocated is None:
            # drawing again or paused; leave the rest queued
            break
        first_number, draw_cycle = allocated
        await _write_tickets(
            session,
            pool_id=pool_id,
            user_id=pending.user_id,
            first_number=first_number,
            draw_cycle=draw_cycle,
            count=count,
            wager_amount=pending.wager_amount,
            source_transaction_id=pending.source_transaction_id,
            now=now,
        )
        pending.applied_at = now
        issued += count
    await session.flush()
    if issued:
        logger.info("Applied %s deferred tickets to pool %s", issued, pool_id)
    return issued


async def get_ticket_count(session: AsyncSession, pool_id: int, user_id: int) -> int:
    total = await session.scalar(
        select(PlayerTicketCount.total_tickets).where(
            PlayerTicketCount.pool_id == pool_id,
            PlayerTicketCount.user_id == user_id,
        )
    )
    return int(total or 0)


def _eligible_clause(pool_id: int, draw_cycle: int):
    return (
        JackpotTicket.pool_id == pool_id,
        JackpotTicket.draw_cycle == draw_cycle,
        JackpotTicket.draw_eligible.is_(True),
    )


async def count_eligible_tickets(session: AsyncSession, pool_id: int, draw_cycle: int) -> int:
    total = await session.scalar(select(func.count(JackpotTicket.id)).where(*_eligible_clause(pool_id, draw_cycle)))
    return int(total or 0)


async def load_eligible_tickets(session: AsyncSession, pool_id: int, draw_cycle: int) -> list[TicketRef]:
    rows = await session.execute(
        select(JackpotTicket.ticket_number, JackpotTicket.user_id)
        .where(*_eligible_clause(pool_id, draw_cycle))
        .order_by(JackpotTicket.ticket_number)
    )
    return [TicketRef(ticket_number=number, user_id=user_id) for number, user_id in rows.all()]


async def reconcile_ticket_counts(session: AsyncSession, pool_id: int) -> int:
    """Rebuild ``player_ticket_counts`` for the pool's current cycle from the ledger.

    Returns the number of aggregate rows created, corrected or removed.
    """
    pool = await get_pool(session, pool_id)
    draw_cycle = pool.draw_number + 1
    truth = {
        user_id: (int(total), last_at)
        for user_id, total, last_at in (
            await session.execute(
                select(JackpotTicket.user_id, func.count(JackpotTicket.id), func.max(JackpotTicket.earned_at))
                .where(*_eligible_clause(pool_id, draw_cycle))
                .group_by(JackpotTicket.user_id)
            )
        ).all()
    }
    aggregates = (
        await session.scalars(select(PlayerTicketCount).where(PlayerTicketCount.pool_id == pool_id).with_for_update())
    ).all()

    changed = 0
    seen: set[int] = set()
    for aggregate in aggregates:
        seen.add(aggregate.user_id)
        expected = truth.get(aggregate.user_id)
        if expected is None:
            logger.warning(
                "Ticket count drift pool=%s user=%s: aggregate=%s ledger=0",
                pool_id,
                aggregate.user_id,
                aggregate.total_tickets,
            )
            await session.delete(aggregate)
            changed += 1
            continue
        total, last_at = expected
        if aggregate.total_tickets != total:
            logger.warning(
                "Ticket count drift pool=%s user=%s: aggregate=%s ledger=%s",
                pool_id,
                aggregate.user_id,
                aggregate.total_tickets,
                total,
            )
            aggregate.total_tickets = total
            aggregate.last_ticket_at = last_at
            changed += 1
    for user_id, (total, last_at) in truth.items():
        if user_id in seen:
            continue
        logger.warning("Ticket count missing pool=%s user=%s: ledger=%s", pool_id, user_id, total)
        session.add(PlayerTicketCount(pool_id=pool_id, user_id=user_id, total_tickets=total, last_ticket_at=last_at))
        changed += 1
    await session.flush()
    return changed
