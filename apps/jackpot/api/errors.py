from __future__ import annotations

from fastapi import HTTPException, status

from apps.jackpot.core.errors import (
    AlreadyDrawing,
    DrawNotFound,
    InvalidPrizeTiers,
    NoEligibleTickets,
    PersistenceFailure,
    PoolNotAcceptingTickets,
    PoolNotFound,
    PoolPaused,
    WinnerNotFound,
)
from apps.jackpot.core.loyalty import InsufficientPoints, LoyaltyError
from apps.jackpot.services.wagers import WagerRejected

_STATUS_BY_ERROR: tuple[tuple[type[Exception], int], ...] = (
    (PoolNotFound, status.HTTP_404_NOT_FOUND),
    (DrawNotFound, status.HTTP_404_NOT_FOUND),
    (WinnerNotFound, status.HTTP_404_NOT_FOUND),
    (AlreadyDrawing, status.HTTP_409_CONFLICT),
    (PoolPaused, status.HTTP_409_CONFLICT),
    (PoolNotAcceptingTickets, status.HTTP_409_CONFLICT),
    (NoEligibleTickets, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (InvalidPrizeTiers, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (InsufficientPoints, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (LoyaltyError, status.HTTP_400_BAD_REQUEST),
    (WagerRejected, status.HTTP_400_BAD_REQUEST),
    (PersistenceFailure, status.HTTP_503_SERVICE_UNAVAILABLE),
)

HANDLED_ERRORS = tuple(error for error, _ in _STATUS_BY_ERROR)


def as_http_error(error: Exception) -> HTTPException:
    for error_type, code in _STATUS_BY_ERROR:
        if isinstance(error, error_type):
            return HTTPException(status_code=code, detail=str(error) or error_type.__name__)
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Internal error")
