from __future__ import annotations

from fastapi import APIRouter
from fastapi.responses import PlainTextResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from .admin import router as admin_router
from .jackpot import router as jackpot_router
from .loyalty import router as loyalty_router

router = APIRouter()
router.include_router(jackpot_router)
router.include_router(loyalty_router)
router.include_router(admin_router)


@router.get("/health", response_class=PlainTextResponse)
async def healthcheck() -> str:
    return "ok"


@router.get("/metrics")
async def metrics() -> Response:
    data = generate_latest()
    return Response(content=data, media_type=CONTENT_TYPE_LATEST)
