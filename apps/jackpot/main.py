from __future__ import annotations

import uvicorn
from fastapi import FastAPI
from redis.asyncio import Redis

from apps.jackpot.api.http import router as http_router
from apps.jackpot.infra.db import Database
from apps.jackpot.infra.logging import setup_logging
from apps.jackpot.infra.redis import create_redis_pool
from apps.jackpot.infra.settings import Settings, get_settings
from apps.jackpot.services.scheduler import DrawScheduler


def build_app(
    *,
    settings: Settings | None = None,
    database: Database | None = None,
    redis: Redis | None = None,
    with_scheduler: bool = True,
) -> FastAPI:
    settings = settings or get_settings()
    setup_logging(settings.log_level)
    database = database or Database(settings)
    if redis is None and with_scheduler:
        redis = create_redis_pool(settings)
    scheduler = DrawScheduler(database, redis, settings) if with_scheduler else None

    app = FastAPI(title=settings.app_name)
    app.state.database = database
    app.state.redis = redis
    app.state.scheduler = scheduler
    app.include_router(http_router)

    @app.on_event("startup")
    async def on_startup() -> None:
        if scheduler is not None:
            await scheduler.start()

    @app.on_event("shutdown")
    async def on_shutdown() -> None:
        if scheduler is not None:
            await scheduler.stop()
        await database.dispose()
        if redis is not None:
            await redis.close()

    return app


if __name__ == "__main__":
    uvicorn.run("apps.jackpot.main:build_app", factory=True, host="0.0.0.0", port=8000)
