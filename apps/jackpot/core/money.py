from __future__ import annotations

from decimal import ROUND_DOWN, Decimal

ODDS_QUANT = Decimal("0.0001")


def floor_minor(value: Decimal) -> int:
    """Truncate a Decimal amount to whole minor units (never rounds up)."""
    return int(value.to_integral_value(rounding=ROUND_DOWN))


def share_of(amount: int, fraction: Decimal | str | float, parts: int = 1) -> int:
    if parts <= 0:
        raise ValueError("parts must be positive")
    return floor_minor(Decimal(amount) * Decimal(str(fraction)) / Decimal(parts))


def odds_percentage(tickets_held: int, total_tickets: int) -> Decimal:
    if total_tickets <= 0:
        return Decimal("0").quantize(ODDS_QUANT)
    return (Decimal(tickets_held) / Decimal(total_tickets) * 100).quantize(ODDS_QUANT, rounding=ROUND_DOWN)


def format_amount(amount: int) -> str:
    return f"{Decimal(amount) / 100:.2f}"
