from __future__ import annotations

import logging
from dataclasses import dataclass, field

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from apps.jackpot.core.errors import PoolNotAcceptingTickets
from apps.jackpot.core.events import EventName, track_event
from apps.jackpot.core.loyalty import PointsAward, award_points, ticket_cost_for_user
from apps.jackpot.core.pools import CONTRIBUTING_STATUSES, add_contribution
from apps.jackpot.core.tickets import TicketIssue, issue_tickets
from apps.jackpot.db.models import JackpotPool, User
from apps.jackpot.infra.settings import Settings, get_settings
from apps.jackpot.repositories.wagers import record_wager_entry

logger = logging.getLogger(__name__)


class WagerRejected(Exception):
    pass


@dataclass
class WagerOutcome:
    transaction_id: str
    user_id: int
    amount: int
    duplicate: bool = False
    contributions: dict[int, int] = field(default_factory=dict)
    tickets: dict[int, TicketIssue] = field(default_factory=dict)
    points: PointsAward | None = None

    def to_dict(self) -> dict:
        return {
            "transactionId": self.transaction_id,
            "userId": self.user_id,
            "amount": self.amount,
            "duplicate": self.duplicate,
            "contributions": {str(pool_id): value for pool_id, value in self.contributions.items()},
            "tickets": {str(pool_id): issue.to_dict() for pool_id, issue in self.tickets.items()},
            "points": self.points.points if self.points else 0,
            "tier": self.points.tier if self.points else None,
            "tierUpgrade": self.points.upgraded_to if self.points else None,
        }


async def record_wager(
    session: AsyncSession,
    *,
    user_id: int,
    amount: int,
    transaction_id: str,
    game: str | None = None,
    settings: Settings | None = None,
) -> WagerOutcome:
    """Turn a settled wager into pool contributions, jackpot tickets and loyalty points.

    Replaying the same ``transaction_id`` is a no-op. Commits on success.
    """
    settings = settings or get_settings()
    if amount <= 0:
        raise WagerRejected("wager amount must be positive")
    outcome = WagerOutcome(transaction_id=transaction_id, user_id=user_id, amount=amount)
    try:
        user = await session.get(User, user_id)
        if user is None:
            raise WagerRejected(f"user {user_id} not found")
        if user.banned:
            raise WagerRejected(f"user {user_id} is banned")

        _, created = await record_wager_entry(
            session,
            user_id=user_id,
            transaction_id=transaction_id,
            amount=amount,
            game=game,
        )
        if not created:
            await session.rollback()
            outcome.duplicate = True
            return outcome

        ticket_cost = await ticket_cost_for_user(session, user_id, settings.jackpot_default_ticket_cost)
        pools = (
            await session.scalars(
                select(JackpotPool).where(JackpotPool.status.in_(CONTRIBUTING_STATUSES)).order_by(JackpotPool.id)
            )
        ).all()
        for pool in pools:
            outcome.contributions[pool.id] = await add_contribution(session, pool, amount)
            try:
                outcome.tickets[pool.id] = await issue_tickets(
                    session,
                    pool.id,
                    user_id,
                    amount,
                    ticket_cost=ticket_cost,
                    source_transaction_id=transaction_id,
                )
            except PoolNotAcceptingTickets:
                logger.info("Pool %s paused while wager %s was recorded; no tickets", pool.id, transaction_id)
        outcome.points = await award_points(
            session,
            user_id,
            amount,
            unit=settings.loyalty_points_unit,
            related_transaction_id=transaction_id,
        )
        await track_event(
            session,
            user_id=user_id,
            name=EventName.WAGER_RECORDED,
            props={
                "transaction_id": transaction_id,
                "amount": amount,
                "game": game,
                "tickets": {str(pool_id): issue.count for pool_id, issue in outcome.tickets.items()},
            },
        )
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    logger.debug("Recorded wager %s for user %s: %s", transaction_id, user_id, outcome.contributions)
    return outcome
