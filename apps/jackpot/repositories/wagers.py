from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from apps.jackpot.db.models import Wager


async def record_wager_entry(
    session: AsyncSession,
    *,
    user_id: int,
    transaction_id: str,
    amount: int,
    game: str | None = None,
) -> tuple[Wager, bool]:
    existing = await session.scalar(select(Wager).where(Wager.transaction_id == transaction_id))
    if existing is not None:
        return existing, False

    wager = Wager(user_id=user_id, transaction_id=transaction_id, amount=amount, game=game)
    session.add(wager)
    await session.flush()
    return wager, True
