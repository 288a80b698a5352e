from __future__ import annotations

from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from apps.jackpot.core.draws import get_draw, get_draw_winners, last_grand_winner, list_draws
from apps.jackpot.core.money import format_amount, odds_percentage
from apps.jackpot.core.pools import CONTRIBUTING_STATUSES, get_pool, get_prize_tiers
from apps.jackpot.core.schedule import ensure_utc, format_countdown, time_until_draw, utcnow
from apps.jackpot.core.tickets import count_eligible_tickets, get_ticket_count
from apps.jackpot.db.models import JackpotDraw, JackpotPool, JackpotWinner, User


def _iso(value: datetime | None) -> str | None:
    return ensure_utc(value).isoformat() if value else None


def _winner_dict(winner: JackpotWinner, username: str | None = None) -> dict:
    return {
        "id": winner.id,
        "userId": winner.user_id,
        "username": username,
        "tier": winner.tier,
        "tierOrder": winner.tier_order,
        "ticketNumber": winner.winning_ticket_number,
        "ticketsHeld": winner.tickets_held,
        "totalTickets": winner.total_tickets_in_pool,
        "odds": str(winner.win_odds_percentage),
        "prize": winner.prize_amount,
        "prizeFormatted": format_amount(winner.prize_amount),
        "credited": winner.prize_credited,
        "creditedTransactionId": winner.credited_transaction_id,
        "creditedAt": _iso(winner.credited_at),
    }


def _draw_dict(draw: JackpotDraw) -> dict:
    return {
        "id": draw.id,
        "poolId": draw.pool_id,
        "drawNumber": draw.draw_number,
        "totalPool": draw.total_pool_amount,
        "totalPoolFormatted": format_amount(draw.total_pool_amount),
        "totalTickets": draw.total_tickets,
        "totalWinners": draw.total_winners,
        "seed": draw.random_seed,
        "drawnAt": _iso(draw.drawn_at),
    }


async def _usernames(session: AsyncSession, user_ids: set[int]) -> dict[int, str | None]:
    if not user_ids:
        return {}
    rows = await session.execute(select(User.id, User.username).where(User.id.in_(user_ids)))
    return {user_id: username for user_id, username in rows.all()}


async def pool_summary(session: AsyncSession, pool: JackpotPool, *, now: datetime | None = None) -> dict:
    now = now or utcnow()
    total_tickets = await count_eligible_tickets(session, pool.id, pool.draw_number + 1)
    last = await last_grand_winner(session, pool.id)
    last_winner = None
    if last is not None:
        draw, winner = last
        names = await _usernames(session, {winner.user_id})
        last_winner = {
            "username": names.get(winner.user_id),
            "tier": winner.tier,
            "prize": winner.prize_amount,
            "prizeFormatted": format_amount(winner.prize_amount),
            "drawnAt": _iso(draw.drawn_at),
        }
    return {
        "id": pool.id,
        "name": pool.name,
        "type": pool.type,
        "currency": pool.currency,
        "status": pool.status,
        "amount": pool.current_amount,
        "amountFormatted": format_amount(pool.current_amount),
        "seed": pool.seed_amount,
        "contributionRate": str(pool.contribution_rate),
        "drawNumber": pool.draw_number + 1,
        "totalTickets": total_tickets,
        "nextDrawAt": _iso(pool.next_draw_at),
        "countdown": time_until_draw(pool.next_draw_at, now).to_dict(),
        "countdownText": format_countdown(pool.next_draw_at, now),
        "lastWinner": last_winner,
    }


async def list_pools(session: AsyncSession, *, now: datetime | None = None) -> list[dict]:
    pools = (
        await session.scalars(
            select(JackpotPool).where(JackpotPool.status.in_(CONTRIBUTING_STATUSES)).order_by(JackpotPool.next_draw_at)
        )
    ).all()
    return [await pool_summary(session, pool, now=now) for pool in pools]


async def pool_detail(session: AsyncSession, pool_id: int, *, now: datetime | None = None) -> dict:
    pool = await get_pool(session, pool_id)
    data = await pool_summary(session, pool, now=now)
    tiers = await get_prize_tiers(session, pool_id)
    data["tiers"] = [
        {
            "name": tier.name,
            "order": tier.tier_order,
            "winners": tier.winner_count,
            "percentage": str(tier.pool_percentage),
        }
        for tier in tiers
    ]
    return data


async def player_stats(session: AsyncSession, pool_id: int, user_id: int) -> dict:
    pool = await get_pool(session, pool_id)
    tickets = await get_ticket_count(session, pool_id, user_id)
    total = await count_eligible_tickets(session, pool_id, pool.draw_number + 1)
    return {
        "poolId": pool_id,
        "tickets": tickets,
        "totalTickets": total,
        "odds": str(odds_percentage(tickets, total)),
    }


async def draw_history(session: AsyncSession, pool_id: int, *, limit: int = 20, offset: int = 0) -> dict:
    await get_pool(session, pool_id)
    draws, total = await list_draws(session, pool_id, limit=limit, offset=offset)
    return {
        "poolId": pool_id,
        "total": total,
        "limit": limit,
        "offset": offset,
        "draws": [_draw_dict(draw) for draw in draws],
    }


async def draw_detail(session: AsyncSession, draw_id: int) -> dict:
    draw = await get_draw(session, draw_id)
    winners = await get_draw_winners(session, draw_id)
    names = await _usernames(session, {winner.user_id for winner in winners})
    data = _draw_dict(draw)
    data["winners"] = [_winner_dict(winner, names.get(winner.user_id)) for winner in winners]
    return data
