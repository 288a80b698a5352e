from __future__ import annotations

from typing import Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from apps.jackpot.db.models import Ledger, Wallet


class BalanceLedger(Protocol):
    async def create_credit(
        self,
        session: AsyncSession,
        *,
        user_id: int,
        amount: int,
        currency: str,
        reason: str,
        reference: str | None = None,
        metadata: dict | None = None,
    ) -> int:
        """Credit ``amount`` minor units and return the transaction id."""


async def _get_or_create_wallet(session: AsyncSession, user_id: int, currency: str, *, for_update: bool = False) -> Wallet:
    stmt = select(Wallet).where(Wallet.user_id == user_id, Wallet.currency == currency)
    if for_update:
        stmt = stmt.with_for_update()
    wallet = await session.scalar(stmt)
    if wallet is None:
        wallet = Wallet(user_id=user_id, currency=currency, balance=0)
        session.add(wallet)
        await session.flush()
    return wallet


async def _add_ledger_entry(
    session: AsyncSession,
    user_id: int,
    currency: str,
    amount: int,
    reason: str,
    *,
    reference: str | None = None,
    metadata: dict | None = None,
) -> Ledger:
    entry = Ledger(
        user_id=user_id,
        currency=currency,
        amount=amount,
        reason=reason,
        reference=reference,
        payload=metadata,
    )
    session.add(entry)
    await session.flush()
    return entry


async def credit(
    session: AsyncSession,
    user_id: int,
    amount: int,
    *,
    currency: str,
    reason: str = "credit",
    reference: str | None = None,
    metadata: dict | None = None,
) -> Ledger:
    if amount < 0:
        raise ValueError("amount must not be negative")
    wallet = await _get_or_create_wallet(session, user_id, currency, for_update=True)
    entry = await _add_ledger_entry(session, user_id, currency, amount, reason, reference=reference, metadata=metadata)
    wallet.balance += amount
    return entry


async def get_balance(session: AsyncSession, user_id: int, currency: str) -> int:
    balance = await session.scalar(
        select(Wallet.balance).where(Wallet.user_id == user_id, Wallet.currency == currency)
    )
    return int(balance or 0)


class WalletLedger:
    """Default balance ledger backed by ``wallets`` and ``ledger``."""

    async def create_credit(
        self,
        session: AsyncSession,
        *,
        user_id: int,
        amount: int,
        currency: str,
        reason: str,
        reference: str | None = None,
        metadata: dict | None = None,
    ) -> int:
        entry = await credit(
            session,
            user_id,
            amount,
            currency=currency,
            reason=reason,
            reference=reference,
            metadata=metadata,
        )
        return entry.id
