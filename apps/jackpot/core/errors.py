from __future__ import annotations


class JackpotError(Exception):
    pass


class PoolNotFound(JackpotError):
    pass


class PoolPaused(JackpotError):
    pass


class AlreadyDrawing(JackpotError):
    """The pool is not ``active``; another draw holds it or it was never released."""


class PoolNotAcceptingTickets(JackpotError):
    pass


class NoEligibleTickets(JackpotError):
    """Nothing to draw from. The pool is left exactly as it was."""


class PersistenceFailure(JackpotError):
    """Transient storage fault. Retry the whole operation from a clean state."""


class DrawNotFound(JackpotError):
    pass


class WinnerNotFound(JackpotError):
    pass


class InvalidPrizeTiers(JackpotError):
    pass
