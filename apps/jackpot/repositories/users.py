from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from apps.jackpot.core.loyalty import ensure_player_loyalty
from apps.jackpot.core.schedule import utcnow
from apps.jackpot.db.models import User


async def get_or_create_user(
    session: AsyncSession,
    *,
    external_user_id: str,
    username: str | None = None,
    is_operator: bool = False,
) -> User:
    user = await session.scalar(select(User).where(User.external_user_id == external_user_id))
    if user is None:
        user = User(
            external_user_id=external_user_id,
            username=username,
            is_operator=is_operator,
            last_seen=utcnow(),
        )
        session.add(user)
        await session.flush()
        await ensure_player_loyalty(session, user.id)
    else:
        user.username = username or user.username
        user.last_seen = utcnow()
    return user
