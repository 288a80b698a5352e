from __future__ import annotations

from prometheus_client import Counter, Histogram

TICKETS_ISSUED = Counter(
    "jackpot_tickets_issued_total",
    "Jackpot tickets issued to players",
    ["pool"],
)
TICKETS_DEFERRED = Counter(
    "jackpot_tickets_deferred_total",
    "Ticket issuances queued because the pool was drawing",
    ["pool"],
)
DRAWS = Counter(
    "jackpot_draws_total",
    "Draw attempts by outcome",
    ["pool", "outcome"],
)
DRAW_DURATION = Histogram(
    "jackpot_draw_duration_seconds",
    "Wall time of a completed draw",
    ["pool"],
)
PRIZES_CREDITED = Counter(
    "jackpot_prizes_credited_total",
    "Winner prizes credited to player balances",
    ["tier"],
)
STUCK_DRAWS_RELEASED = Counter(
    "jackpot_stuck_draws_released_total",
    "Pools force-reverted from drawing by the watchdog",
)
RATE_LIMITED = Counter(
    "api_rate_limited_total",
    "Requests rejected by the rate limiter",
    ["bucket"],
)
