from __future__ import annotations

import asyncio
import contextlib
import logging
import secrets
from dataclasses import dataclass, field
from datetime import datetime

from redis.asyncio import Redis
from sqlalchemy import select

from apps.jackpot.core.crediting import credit_draw, draws_with_uncredited_winners
from apps.jackpot.core.errors import AlreadyDrawing, InvalidPrizeTiers, NoEligibleTickets, PersistenceFailure, PoolPaused
from apps.jackpot.core.pools import due_pool_ids, release_stuck_draws, reschedule_pool
from apps.jackpot.core.schedule import utcnow
from apps.jackpot.core.tickets import apply_pending_tickets, reconcile_ticket_counts
from apps.jackpot.db.models import JackpotPool, JackpotStatus
from apps.jackpot.infra.db import Database
from apps.jackpot.infra.metrics import STUCK_DRAWS_RELEASED
from apps.jackpot.infra.settings import Settings, get_settings
from apps.jackpot.services.draw_engine import execute_draw

logger = logging.getLogger(__name__)


@dataclass
class TickReport:
    released: list[int] = field(default_factory=list)
    draws: dict[int, int] = field(default_factory=dict)
    skipped: list[int] = field(default_factory=list)
    failed: list[int] = field(default_factory=list)
    reconciled: int = 0


class DrawScheduler:
    LOCK_KEY = "jackpot:draw-scheduler"

    def __init__(self, database: Database, redis: Redis | None, settings: Settings | None = None) -> None:
        self._database = database
        self._redis = redis
        self._settings = settings or get_settings()
        self._task: asyncio.Task | None = None
        self._ticks = 0
        self._node_id = secrets.token_hex(8)

    @property
    def lock_ttl(self) -> int:
        return max(int(self._settings.jackpot_scheduler_interval * 3), 5)

    async def start(self) -> None:
        if not self._settings.jackpot_scheduler_enabled:
            logger.info("Draw scheduler disabled")
            return
        if self._task is None:
            self._task = asyncio.create_task(self._loop())
            logger.info("Draw scheduler started on node %s", self._node_id)

    async def stop(self) -> None:
        if self._task:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None

    async def tick(self, now: datetime | None = None) -> TickReport:
        now = now or utcnow()
        report = TickReport()
        self._ticks += 1

        async with self._database.session() as session:
            report.released = await release_stuck_draws(
                session,
                grace_seconds=self._settings.jackpot_draw_grace_seconds,
                now=now,
            )
        if report.released:
            STUCK_DRAWS_RELEASED.inc(len(report.released))

        async with self._database.session() as session:
            due = await due_pool_ids(session, now=now)
        for pool_id in due:
            draw_id = await self._draw_with_retries(pool_id, now, report)
            if draw_id is not None:
                report.draws[pool_id] = draw_id
                await credit_draw(
                    self._database,
                    draw_id,
                    concurrency=self._settings.jackpot_credit_concurrency,
                )

        if self._ticks % max(self._settings.jackpot_reconcile_every, 1) == 0:
            report.reconciled = await self._housekeeping()
        return report

    async def _draw_with_retries(self, pool_id: int, now: datetime, report: TickReport) -> int | None:
        attempts = max(self._settings.jackpot_draw_max_attempts, 1)
        for attempt in range(1, attempts + 1):
            try:
                draw = await execute_draw(self._database, pool_id, now=now, settings=self._settings)
            except (AlreadyDrawing, PoolPaused):
                report.skipped.append(pool_id)
                return None
            except (NoEligibleTickets, InvalidPrizeTiers) as exc:
                logger.info("Skipping draw for pool %s: %s", pool_id, exc)
                async with self._database.session() as session:
                    await reschedule_pool(session, pool_id, now=now)
                report.skipped.append(pool_id)
                return None
            except PersistenceFailure as exc:
                logger.warning("Draw for pool %s failed on attempt %s/%s: %s", pool_id, attempt, attempts, exc)
                continue
            return draw.id
        logger.error("Giving up on draw for pool %s after %s attempts", pool_id, attempts)
        report.failed.append(pool_id)
        return None

    async def _housekeeping(self) -> int:
        changed = 0
        async with self._database.transaction() as session:
            pool_ids = (
                await session.scalars(select(JackpotPool.id).where(JackpotPool.status == JackpotStatus.ACTIVE.value))
            ).all()
            for pool_id in pool_ids:
                await apply_pending_tickets(session, pool_id)
                changed += await reconcile_ticket_counts(session, pool_id)
        async with self._database.session() as session:
            draw_ids = await draws_with_uncredited_winners(session)
        for draw_id in draw_ids:
            await credit_draw(self._database, draw_id, concurrency=self._settings.jackpot_credit_concurrency)
        return changed

    async def _loop(self) -> None:
        if self._redis is None:
            raise RuntimeError("Draw scheduler needs Redis for leader election")
        lock = self._redis.lock(self.LOCK_KEY, timeout=self.lock_ttl)
        while True:
            try:
                acquired = await lock.acquire(blocking=False)
                if not acquired:
                    await asyncio.sleep(self._settings.jackpot_scheduler_interval)
                    continue
                logger.info("Node %s holds the draw scheduler lock", self._node_id)
                try:
                    while True:
                        await self.tick()
                        await lock.extend(self.lock_ttl, replace_ttl=True)
                        await asyncio.sleep(self._settings.jackpot_scheduler_interval)
                finally:
                    if await lock.owned():
                        with contextlib.suppress(Exception):
                            await lock.release()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Draw scheduler tick failed")
                await asyncio.sleep(self._settings.jackpot_scheduler_interval)
