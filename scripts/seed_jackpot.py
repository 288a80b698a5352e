from __future__ import annotations

import argparse
import asyncio
from datetime import time

from sqlalchemy import select

from apps.jackpot.core.loyalty import seed_loyalty_tiers
from apps.jackpot.core.pools import create_pool
from apps.jackpot.core.security import ROLE_OPERATOR, create_access_token
from apps.jackpot.db import Base
from apps.jackpot.db.models import JackpotPool, JackpotType
from apps.jackpot.infra.db import Database
from apps.jackpot.infra.logging import setup_logging
from apps.jackpot.infra.settings import Settings, get_settings
from apps.jackpot.repositories.users import get_or_create_user

DEFAULT_POOL_NAME = "Weekly Main Jackpot"


async def seed(settings: Settings, *, create_schema: bool, operator: str | None = None) -> None:
    database = Database(settings)
    if create_schema:
        async with database.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
    async with database.session() as session:
        added = await seed_loyalty_tiers(session)
        pool = await session.scalar(select(JackpotPool).where(JackpotPool.name == DEFAULT_POOL_NAME))
        if pool is None:
            pool = await create_pool(
                session,
                name=DEFAULT_POOL_NAME,
                seed_amount=1_000_000,
                contribution_rate="0.005",
                pool_type=JackpotType.WEEKLY.value,
                draw_day_of_week=3,
                draw_time=time(20, 0),
                currency=settings.default_currency,
            )
            print(f"Created pool #{pool.id} '{pool.name}', next draw {pool.next_draw_at.isoformat()}")
        else:
            print(f"Pool '{pool.name}' already exists (#{pool.id})")
        if operator:
            user = await get_or_create_user(session, external_user_id=operator, username=operator, is_operator=True)
            user.is_operator = True
            await session.flush()
            token, ttl = create_access_token(user.id, role=ROLE_OPERATOR)
            print(f"Operator #{user.id} token (valid {ttl}s): {token}")
        await session.commit()
        print(f"Loyalty tiers added: {added}")
    await database.dispose()


def main() -> None:
    parser = argparse.ArgumentParser(description="Seed loyalty tiers and the default weekly jackpot")
    parser.add_argument("--create-schema", action="store_true", help="Create tables without migrations (dev only)")
    parser.add_argument("--operator", metavar="EXTERNAL_ID", help="Create or promote an operator account and print a token")
    args = parser.parse_args()

    settings = get_settings()
    setup_logging(settings.log_level)
    asyncio.run(seed(settings, create_schema=args.create_schema, operator=args.operator))


if __name__ == "__main__":
    main()
