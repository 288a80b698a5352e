from __future__ import annotations

from datetime import time
from decimal import Decimal

import pytest
import pytest_asyncio

from apps.jackpot.core.loyalty import seed_loyalty_tiers
from apps.jackpot.core.pools import PrizeTierSpec, create_pool
from apps.jackpot.db import Base
from apps.jackpot.db.models import User
from apps.jackpot.infra.db import Database
from apps.jackpot.infra.settings import Settings

TEST_TIERS = (
    PrizeTierSpec("Grand", 1, 1, Decimal("0.50")),
    PrizeTierSpec("Major", 2, 3, Decimal("0.30")),
    PrizeTierSpec("Minor", 3, 10, Decimal("0.20")),
)


@pytest.fixture()
def settings(tmp_path) -> Settings:
    return Settings(
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'jackpot.db'}",
        JACKPOT_PERSISTENCE_TIMEOUT=5,
        JACKPOT_CREDIT_CONCURRENCY=1,
        JACKPOT_SCHEDULER_ENABLED=False,
        JACKPOT_RECONCILE_EVERY=1,
        JWT_SECRET="test-secret",
    )


@pytest_asyncio.fixture()
async def database(settings):
    db = Database(settings)
    async with db.engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    async with db.session() as session:
        await seed_loyalty_tiers(session)
        await session.commit()
    yield db
    await db.dispose()


@pytest_asyncio.fixture()
async def session(database):
    async with database.session() as db:
        yield db


@pytest.fixture()
def make_user(session):
    counter = {"n": 0}

    async def factory(username: str | None = None, *, is_operator: bool = False, banned: bool = False) -> User:
        counter["n"] += 1
        user = User(
            external_user_id=f"ext-{counter['n']}",
            username=username or f"player{counter['n']}",
            is_operator=is_operator,
            banned=banned,
        )
        session.add(user)
        await session.flush()
        return user

    return factory


@pytest.fixture()
def make_pool(session):
    counter = {"n": 0}

    async def factory(
        *,
        seed_amount: int = 1_000_000,
        contribution_rate: str = "0.005",
        tiers=TEST_TIERS,
        pool_type: str = "weekly",
    ):
        counter["n"] += 1
        return await create_pool(
            session,
            name=f"Test Jackpot {counter['n']}",
            seed_amount=seed_amount,
            contribution_rate=contribution_rate,
            draw_time=time(20, 0),
            pool_type=pool_type,
            draw_day_of_week=3 if pool_type == "weekly" else None,
            tiers=tiers,
        )

    return factory
