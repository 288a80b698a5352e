from __future__ import annotations

from enum import Enum

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from apps.jackpot.core.schedule import utcnow
from apps.jackpot.db.models import Event


class EventName(str, Enum):
    WAGER_RECORDED = "wager_recorded"
    DRAW_COMPLETED = "jackpot_draw"
    PRIZE_WON = "jackpot_won"
    PRIZE_CREDITED = "jackpot_prize_credited"
    POINTS_REDEEMED = "loyalty_points_redeemed"


async def track_event(
    session: AsyncSession,
    *,
    user_id: int | None,
    name: EventName | str,
    props: dict | None = None,
    source: str = "jackpot",
) -> Event:
    """Append an audit event to the caller's transaction; never commits."""
    event = Event(
        user_id=user_id,
        name=EventName(name).value,
        props=props or {},
        source=source,
        created_at=utcnow(),
    )
    session.add(event)
    return event


async def list_events(
    session: AsyncSession,
    *,
    name: EventName | None = None,
    user_id: int | None = None,
    limit: int = 100,
) -> list[Event]:
    stmt = select(Event).order_by(Event.id.desc()).limit(limit)
    if name is not None:
        stmt = stmt.where(Event.name == name.value)
    if user_id is not None:
        stmt = stmt.where(Event.user_id == user_id)
    return list((await session.scalars(stmt)).all())
