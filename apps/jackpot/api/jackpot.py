from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from apps.jackpot.api.deps import api_rate_limit, get_current_user, get_session
from apps.jackpot.api.errors import HANDLED_ERRORS, as_http_error
from apps.jackpot.db.models import User
from apps.jackpot.services import jackpot as jackpot_service

router = APIRouter(prefix="/api/jackpot", tags=["jackpot"], dependencies=[Depends(api_rate_limit)])


@router.get("/pools")
async def jackpot_pools(session: AsyncSession = Depends(get_session)):
    return {"pools": await jackpot_service.list_pools(session)}


@router.get("/pools/{pool_id}")
async def jackpot_pool(pool_id: int, session: AsyncSession = Depends(get_session)):
    try:
        return await jackpot_service.pool_detail(session, pool_id)
    except HANDLED_ERRORS as exc:
        raise as_http_error(exc)


@router.get("/pools/{pool_id}/me")
async def jackpot_pool_me(
    pool_id: int,
    session: AsyncSession = Depends(get_session),
    user: User = Depends(get_current_user),
):
    try:
        return await jackpot_service.player_stats(session, pool_id, user.id)
    except HANDLED_ERRORS as exc:
        raise as_http_error(exc)


@router.get("/pools/{pool_id}/draws")
async def jackpot_pool_draws(
    pool_id: int,
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    session: AsyncSession = Depends(get_session),
):
    try:
        return await jackpot_service.draw_history(session, pool_id, limit=limit, offset=offset)
    except HANDLED_ERRORS as exc:
        raise as_http_error(exc)


@router.get("/draws/{draw_id}")
async def jackpot_draw(draw_id: int, session: AsyncSession = Depends(get_session)):
    try:
        return await jackpot_service.draw_detail(session, draw_id)
    except HANDLED_ERRORS as exc:
        raise as_http_error(exc)
