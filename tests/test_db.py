from __future__ import annotations

import pytest
from sqlalchemy import func, select

from apps.jackpot.db.models import User


async def _user_count(database) -> int:
    async with database.session() as session:
        return await session.scalar(select(func.count(User.id)))


@pytest.mark.asyncio
async def test_transaction_commits_clean_block(database):
    async with database.transaction() as session:
        session.add(User(external_user_id="ext-commit", username="kept"))

    assert await _user_count(database) == 1


@pytest.mark.asyncio
async def test_transaction_rolls_back_on_error(database):
    with pytest.raises(RuntimeError):
        async with database.transaction() as session:
            session.add(User(external_user_id="ext-rollback", username="dropped"))
            await session.flush()
            raise RuntimeError("boom")

    assert await _user_count(database) == 0
