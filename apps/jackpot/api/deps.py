from __future__ import annotations

import hashlib

from fastapi import Depends, HTTPException, Request, Response, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from apps.jackpot.core.security import AuthError, decode_access_token
from apps.jackpot.db.models import User
from apps.jackpot.infra.metrics import RATE_LIMITED
from apps.jackpot.infra.rate_limit import SlidingWindowLimiter
from apps.jackpot.infra.settings import get_settings

security = HTTPBearer(auto_error=True)


async def get_session(request: Request) -> AsyncSession:
    database = getattr(request.app.state, "database", None)
    if database is None:
        raise RuntimeError("Database is not configured")
    async with database.session() as session:
        yield session


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    session: AsyncSession = Depends(get_session),
) -> User:
    try:
        payload = decode_access_token(credentials.credentials)
    except AuthError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc))
    user_id = int(payload.get("sub", 0))
    user = await session.get(User, user_id)
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found")
    if user.banned:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="User banned")
    return user


async def require_operator(user: User = Depends(get_current_user)) -> User:
    if not user.is_operator:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Operator access required")
    return user


def _client_identity(request: Request) -> str:
    auth = request.headers.get("authorization")
    if auth:
        # one window per bearer token, not per proxy address
        return "token:" + hashlib.sha256(auth.encode()).hexdigest()[:16]
    return f"ip:{request.client.host if request.client else 'unknown'}"


def rate_limit(bucket: str):
    async def dependency(request: Request, response: Response) -> None:
        redis = getattr(request.app.state, "redis", None)
        if redis is None:
            return
        settings = get_settings()
        limit = settings.rate_limit_strict if bucket == "strict" else settings.rate_limit_api
        limiter = SlidingWindowLimiter(redis)
        result = await limiter.hit(
            bucket,
            _client_identity(request),
            limit=limit,
            window_seconds=settings.rate_limit_window_seconds,
        )
        if not result.allowed:
            RATE_LIMITED.labels(bucket=bucket).inc()
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail="Too many requests",
                headers={"Retry-After": str(result.retry_after)},
            )
        response.headers["X-RateLimit-Limit"] = str(result.limit)
        response.headers["X-RateLimit-Remaining"] = str(result.remaining)

    return dependency


api_rate_limit = rate_limit("api")
strict_rate_limit = rate_limit("strict")
