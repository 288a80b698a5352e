from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field, conint
from sqlalchemy.ext.asyncio import AsyncSession

from apps.jackpot.api.deps import get_session, require_operator, strict_rate_limit
from apps.jackpot.api.errors import HANDLED_ERRORS, as_http_error
from apps.jackpot.core import pools as pools_core
from apps.jackpot.core.crediting import credit_draw, credit_winner
from apps.jackpot.core.draws import get_draw, get_draw_winners, matches_recorded, replay_draw
from apps.jackpot.core.tickets import reconcile_ticket_counts
from apps.jackpot.infra.settings import get_settings
from apps.jackpot.services import wagers as wager_service
from apps.jackpot.services.draw_engine import execute_draw
from apps.jackpot.services.jackpot import draw_detail, pool_detail

router = APIRouter(prefix="/api/admin", tags=["admin"], dependencies=[Depends(require_operator)])


class WagerRequest(BaseModel):
    user_id: conint(gt=0)
    amount: conint(gt=0)
    transaction_id: str = Field(min_length=1, max_length=64)
    game: str | None = Field(default=None, max_length=32)


@router.post("/pools/{pool_id}/draw", dependencies=[Depends(strict_rate_limit)])
async def admin_draw(pool_id: int, request: Request, session: AsyncSession = Depends(get_session)):
    database = request.app.state.database
    try:
        draw = await execute_draw(database, pool_id)
    except HANDLED_ERRORS as exc:
        raise as_http_error(exc)
    report = await credit_draw(database, draw.id, concurrency=get_settings().jackpot_credit_concurrency)
    data = await draw_detail(session, draw.id)
    data["crediting"] = report.to_dict()
    return data


@router.post("/pools/{pool_id}/pause")
async def admin_pause(pool_id: int, session: AsyncSession = Depends(get_session)):
    try:
        await pools_core.pause_pool(session, pool_id)
        return await pool_detail(session, pool_id)
    except HANDLED_ERRORS as exc:
        raise as_http_error(exc)


@router.post("/pools/{pool_id}/resume")
async def admin_resume(pool_id: int, session: AsyncSession = Depends(get_session)):
    try:
        await pools_core.resume_pool(session, pool_id)
        return await pool_detail(session, pool_id)
    except HANDLED_ERRORS as exc:
        raise as_http_error(exc)


@router.post("/pools/{pool_id}/reconcile")
async def admin_reconcile(pool_id: int, session: AsyncSession = Depends(get_session)):
    try:
        changed = await reconcile_ticket_counts(session, pool_id)
    except HANDLED_ERRORS as exc:
        raise as_http_error(exc)
    await session.commit()
    return {"poolId": pool_id, "changed": changed}


@router.post("/winners/{winner_id}/credit")
async def admin_credit_winner(winner_id: int, session: AsyncSession = Depends(get_session)):
    try:
        transaction_id = await credit_winner(session, winner_id)
    except HANDLED_ERRORS as exc:
        raise as_http_error(exc)
    return {"winnerId": winner_id, "transactionId": transaction_id}


@router.post("/draws/{draw_id}/credit")
async def admin_credit_draw(draw_id: int, request: Request, session: AsyncSession = Depends(get_session)):
    try:
        await get_draw(session, draw_id)
    except HANDLED_ERRORS as exc:
        raise as_http_error(exc)
    report = await credit_draw(request.app.state.database, draw_id, concurrency=get_settings().jackpot_credit_concurrency)
    return report.to_dict()


@router.get("/draws/{draw_id}/replay")
async def admin_replay(draw_id: int, session: AsyncSession = Depends(get_session)):
    try:
        plans = await replay_draw(session, draw_id)
    except HANDLED_ERRORS as exc:
        raise as_http_error(exc)
    winners = await get_draw_winners(session, draw_id)
    return {
        "drawId": draw_id,
        "matches": matches_recorded(plans, winners),
        "winners": [plan.to_dict() for plan in plans],
    }


@router.post("/wagers")
async def admin_record_wager(
    request: WagerRequest,
    session: AsyncSession = Depends(get_session),
):
    try:
        outcome = await wager_service.record_wager(
            session,
            user_id=int(request.user_id),
            amount=int(request.amount),
            transaction_id=request.transaction_id,
            game=request.game,
        )
    except HANDLED_ERRORS as exc:
        raise as_http_error(exc)
    return outcome.to_dict()
