from __future__ import annotations

import logging
import random
from collections import Counter
from dataclasses import asdict, dataclass
from decimal import Decimal
from typing import Protocol, Sequence

from sqlalchemy import desc, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from apps.jackpot.core.errors import DrawNotFound
from apps.jackpot.core.money import odds_percentage, share_of
from apps.jackpot.core.pools import get_prize_tiers
from apps.jackpot.core.tickets import TicketRef, load_eligible_tickets
from apps.jackpot.db.models import JackpotDraw, JackpotWinner

logger = logging.getLogger(__name__)


class TierLike(Protocol):
    name: str
    tier_order: int
    winner_count: int
    pool_percentage: Decimal


@dataclass(frozen=True)
class Selection:
    tier: str
    tier_order: int
    position: int


@dataclass(frozen=True)
class WinnerPlan:
    user_id: int
    tier: str
    tier_order: int
    winning_ticket_number: int
    tickets_held: int
    total_tickets_in_pool: int
    win_odds_percentage: Decimal
    prize_amount: int

    def to_dict(self) -> dict:
        data = asdict(self)
        data["win_odds_percentage"] = str(self.win_odds_percentage)
        return data


def select_positions(seed: str, total_tickets: int, tiers: Sequence[TierLike]) -> list[Selection]:
    """Pick distinct 1-based snapshot positions for every tier slot.

    Deterministic for a given seed. A position drawn twice is rejected and
    redrawn. Once every ticket has won, remaining slots stay empty.
    """
    rng = random.Random(seed)
    chosen: set[int] = set()
    selections: list[Selection] = []
    for tier in sorted(tiers, key=lambda t: t.tier_order):
        for _ in range(tier.winner_count):
            if len(chosen) >= total_tickets:
                logger.warning(
                    "Only %s tickets for the configured winner slots; tier %s is not fully awarded",
                    total_tickets,
                    tier.name,
                )
                return selections
            position = rng.randint(1, total_tickets)
            while position in chosen:
                position = rng.randint(1, total_tickets)
            chosen.add(position)
            selections.append(Selection(tier=tier.name, tier_order=tier.tier_order, position=position))
    return selections


def prize_per_winner(total_pool_amount: int, tier: TierLike) -> int:
    return share_of(total_pool_amount, tier.pool_percentage, tier.winner_count)


def plan_winners(
    seed: str,
    snapshot: Sequence[TicketRef],
    tiers: Sequence[TierLike],
    total_pool_amount: int,
) -> list[WinnerPlan]:
    total = len(snapshot)
    if total == 0:
        return []
    held = Counter(ticket.user_id for ticket in snapshot)
    prizes = {tier.tier_order: prize_per_winner(total_pool_amount, tier) for tier in tiers}
    plans: list[WinnerPlan] = []
    for selection in select_positions(seed, total, tiers):
        ticket = snapshot[selection.position - 1]
        plans.append(
            WinnerPlan(
                user_id=ticket.user_id,
                tier=selection.tier,
                tier_order=selection.tier_order,
                winning_ticket_number=ticket.ticket_number,
                tickets_held=held[ticket.user_id],
                total_tickets_in_pool=total,
                win_odds_percentage=odds_percentage(held[ticket.user_id], total),
                prize_amount=prizes[selection.tier_order],
            )
        )
    return plans


@dataclass(frozen=True)
class RecordedTier:
    name: str
    tier_order: int
    winner_count: int
    pool_percentage: Decimal


def tiers_to_json(tiers: Sequence[TierLike]) -> list[dict]:
    return [
        {
            "name": tier.name,
            "tier_order": tier.tier_order,
            "winner_count": tier.winner_count,
            "pool_percentage": str(tier.pool_percentage),
        }
        for tier in sorted(tiers, key=lambda t: t.tier_order)
    ]


def tiers_from_json(raw: list[dict]) -> list[RecordedTier]:
    return [
        RecordedTier(
            name=item["name"],
            tier_order=int(item["tier_order"]),
            winner_count=int(item["winner_count"]),
            pool_percentage=Decimal(str(item["pool_percentage"])),
        )
        for item in raw
    ]


async def get_draw(session: AsyncSession, draw_id: int) -> JackpotDraw:
    draw = await session.get(JackpotDraw, draw_id)
    if draw is None:
        raise DrawNotFound(f"draw {draw_id} not found")
    return draw


async def get_draw_winners(session: AsyncSession, draw_id: int) -> list[JackpotWinner]:
    rows = await session.scalars(
        select(JackpotWinner)
        .where(JackpotWinner.draw_id == draw_id)
        .order_by(JackpotWinner.tier_order, JackpotWinner.id)
    )
    return list(rows.all())


async def find_draw(session: AsyncSession, pool_id: int, draw_number: int) -> JackpotDraw | None:
    return await session.scalar(
        select(JackpotDraw).where(JackpotDraw.pool_id == pool_id, JackpotDraw.draw_number == draw_number)
    )


async def list_draws(session: AsyncSession, pool_id: int, *, limit: int = 20, offset: int = 0) -> tuple[list[JackpotDraw], int]:
    total = await session.scalar(select(func.count(JackpotDraw.id)).where(JackpotDraw.pool_id == pool_id))
    rows = await session.scalars(
        select(JackpotDraw)
        .where(JackpotDraw.pool_id == pool_id)
        .order_by(desc(JackpotDraw.draw_number))
        .limit(limit)
        .offset(offset)
    )
    return list(rows.all()), int(total or 0)


async def last_grand_winner(session: AsyncSession, pool_id: int) -> tuple[JackpotDraw, JackpotWinner] | None:
    row = (
        await session.execute(
            select(JackpotDraw, JackpotWinner)
            .join(JackpotWinner, JackpotWinner.draw_id == JackpotDraw.id)
            .where(JackpotDraw.pool_id == pool_id)
            .order_by(desc(JackpotDraw.draw_number), JackpotWinner.tier_order, JackpotWinner.id)
            .limit(1)
        )
    ).first()
    if row is None:
        return None
    return row[0], row[1]


async def replay_draw(session: AsyncSession, draw_id: int) -> list[WinnerPlan]:
    """Recompute a recorded draw from its seed and its cycle's tickets."""
    draw = await get_draw(session, draw_id)
    if draw.prize_tiers:
        tiers: Sequence[TierLike] = tiers_from_json(draw.prize_tiers)
    else:
        tiers = await get_prize_tiers(session, draw.pool_id)
    snapshot = await load_eligible_tickets(session, draw.pool_id, draw.draw_number)
    return plan_winners(draw.random_seed, snapshot, tiers, draw.total_pool_amount)


def matches_recorded(plans: Sequence[WinnerPlan], winners: Sequence[JackpotWinner]) -> bool:
    expected = sorted((p.tier_order, p.winning_ticket_number, p.user_id, p.prize_amount) for p in plans)
    recorded = sorted((w.tier_order, w.winning_ticket_number, w.user_id, w.prize_amount) for w in winners)
    return expected == recorded
