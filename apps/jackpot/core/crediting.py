from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from apps.jackpot.core.errors import PersistenceFailure, WinnerNotFound
from apps.jackpot.core.events import EventName, track_event
from apps.jackpot.core.pools import get_pool
from apps.jackpot.core.schedule import utcnow
from apps.jackpot.core.wallets import BalanceLedger, WalletLedger
from apps.jackpot.db.models import JackpotDraw, JackpotWinner
from apps.jackpot.infra.db import Database
from apps.jackpot.infra.metrics import PRIZES_CREDITED

logger = logging.getLogger(__name__)


def credit_reference(draw_id: int, tier: str, winner_id: int) -> str:
    return f"jackpot_{draw_id}_{tier.lower()}_{winner_id}"


async def _load_winner(session: AsyncSession, winner_id: int, *, for_update: bool = False) -> JackpotWinner:
    winner = await session.get(JackpotWinner, winner_id, with_for_update=for_update, populate_existing=True)
    if winner is None:
        raise WinnerNotFound(f"winner {winner_id} not found")
    return winner


async def credit_winner(session: AsyncSession, winner_id: int, *, ledger: BalanceLedger | None = None) -> int:
    """Credit one winner's prize exactly once and return the ledger transaction id.

    Commits on success. Calling it again for a credited winner returns the
    original transaction id without touching the balance.
    """
    ledger = ledger or WalletLedger()
    try:
        winner = await _load_winner(session, winner_id, for_update=True)
        if winner.prize_credited:
            transaction_id = int(winner.credited_transaction_id)
            logger.info(
                "Duplicate credit attempt for winner %s; already credited as transaction %s",
                winner_id,
                transaction_id,
            )
            # read-only; commit releases the row lock without expiring loaded objects
            await session.commit()
            return transaction_id

        draw = await session.get(JackpotDraw, winner.draw_id)
        pool = await get_pool(session, draw.pool_id)
        transaction_id = await ledger.create_credit(
            session,
            user_id=winner.user_id,
            amount=winner.prize_amount,
            currency=pool.currency,
            reason="jackpot_win",
            reference=credit_reference(draw.id, winner.tier, winner.id),
            metadata={
                "pool_id": pool.id,
                "draw_id": draw.id,
                "draw_number": draw.draw_number,
                "tier": winner.tier,
                "ticket_number": winner.winning_ticket_number,
            },
        )
        winner.prize_credited = True
        winner.credited_transaction_id = transaction_id
        winner.credited_at = utcnow()
        await track_event(
            session,
            user_id=winner.user_id,
            name=EventName.PRIZE_CREDITED,
            props={"draw_id": draw.id, "tier": winner.tier, "amount": winner.prize_amount},
        )
        await session.commit()
    except IntegrityError as exc:
        # a concurrent call won the unique ledger reference
        await session.rollback()
        winner = await _load_winner(session, winner_id)
        if winner.prize_credited:
            logger.info("Winner %s was credited by a concurrent call", winner_id)
            return int(winner.credited_transaction_id)
        raise PersistenceFailure(f"crediting winner {winner_id} failed") from exc
    except SQLAlchemyError as exc:
        await session.rollback()
        raise PersistenceFailure(f"crediting winner {winner_id} failed") from exc

    PRIZES_CREDITED.labels(tier=winner.tier).inc()
    logger.info(
        "Credited %s to user %s for %s prize (winner %s, transaction %s)",
        winner.prize_amount,
        winner.user_id,
        winner.tier,
        winner_id,
        transaction_id,
    )
    return transaction_id


@dataclass
class CreditReport:
    draw_id: int
    credited: dict[int, int] = field(default_factory=dict)
    failed: dict[int, str] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "drawId": self.draw_id,
            "credited": {str(k): v for k, v in self.credited.items()},
            "failed": {str(k): v for k, v in self.failed.items()},
        }


async def uncredited_winner_ids(session: AsyncSession, draw_id: int) -> list[int]:
    rows = await session.scalars(
        select(JackpotWinner.id)
        .where(JackpotWinner.draw_id == draw_id, JackpotWinner.prize_credited.is_(False))
        .order_by(JackpotWinner.tier_order, JackpotWinner.id)
    )
    return list(rows.all())


async def draws_with_uncredited_winners(session: AsyncSession, *, limit: int = 50) -> list[int]:
    rows = await session.scalars(
        select(JackpotWinner.draw_id)
        .where(JackpotWinner.prize_credited.is_(False))
        .group_by(JackpotWinner.draw_id)
        .order_by(JackpotWinner.draw_id)
        .limit(limit)
    )
    return list(rows.all())


async def credit_draw(
    database: Database,
    draw_id: int,
    *,
    ledger: BalanceLedger | None = None,
    concurrency: int = 8,
) -> CreditReport:
    """Credit every uncredited winner of a draw, one session per winner."""
    async with database.session() as session:
        winner_ids = await uncredited_winner_ids(session, draw_id)
    report = CreditReport(draw_id=draw_id)
    if not winner_ids:
        return report

    semaphore = asyncio.Semaphore(max(concurrency, 1))

    async def _credit_one(winner_id: int) -> int:
        async with semaphore:
            async with database.session() as session:
                return await credit_winner(session, winner_id, ledger=ledger)

    results = await asyncio.gather(*(_credit_one(winner_id) for winner_id in winner_ids), return_exceptions=True)
    for winner_id, result in zip(winner_ids, results):
        if isinstance(result, BaseException):
            logger.error("Crediting winner %s of draw %s failed: %s", winner_id, draw_id, result)
            report.failed[winner_id] = str(result)
        else:
            report.credited[winner_id] = result
    return report
