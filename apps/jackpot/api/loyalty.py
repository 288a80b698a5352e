from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel, conint
from sqlalchemy.ext.asyncio import AsyncSession

from apps.jackpot.api.deps import api_rate_limit, get_current_user, get_session, strict_rate_limit
from apps.jackpot.api.errors import HANDLED_ERRORS, as_http_error
from apps.jackpot.core import loyalty as loyalty_core
from apps.jackpot.core.wallets import get_balance
from apps.jackpot.db.models import User
from apps.jackpot.infra.settings import get_settings

router = APIRouter(prefix="/api/loyalty", tags=["loyalty"])


class RedeemRequest(BaseModel):
    points: conint(gt=0)


@router.get("/me", dependencies=[Depends(api_rate_limit)])
async def loyalty_me(
    session: AsyncSession = Depends(get_session),
    user: User = Depends(get_current_user),
):
    info = await loyalty_core.get_tier_info(session, user.id)
    await session.commit()
    return info


@router.post("/redeem", dependencies=[Depends(strict_rate_limit)])
async def loyalty_redeem(
    request: RedeemRequest,
    session: AsyncSession = Depends(get_session),
    user: User = Depends(get_current_user),
):
    currency = get_settings().default_currency
    try:
        redemption = await loyalty_core.redeem_points(session, user.id, int(request.points), currency=currency)
    except HANDLED_ERRORS as exc:
        raise as_http_error(exc)
    return {
        "points": redemption.points,
        "amount": redemption.amount,
        "transactionId": redemption.transaction_id,
        "balance": await get_balance(session, user.id, currency),
    }
