from __future__ import annotations

import argparse
import asyncio

from apps.jackpot.core.draws import get_draw, get_draw_winners, matches_recorded, replay_draw
from apps.jackpot.core.money import format_amount
from apps.jackpot.infra.db import Database
from apps.jackpot.infra.settings import get_settings


async def run(draw_id: int) -> bool:
    database = Database(get_settings())
    try:
        async with database.session() as session:
            draw = await get_draw(session, draw_id)
            plans = await replay_draw(session, draw_id)
            winners = await get_draw_winners(session, draw_id)
    finally:
        await database.dispose()

    print(f"Draw #{draw.id} pool={draw.pool_id} number={draw.draw_number} tickets={draw.total_tickets}")
    for plan in plans:
        print(
            f"  {plan.tier:<8} ticket {plan.winning_ticket_number:>8} user {plan.user_id:>8} "
            f"odds {plan.win_odds_percentage}% prize {format_amount(plan.prize_amount)}"
        )
    matches = matches_recorded(plans, winners)
    print("Replay matches recorded winners" if matches else "REPLAY MISMATCH")
    return matches


def main() -> None:
    parser = argparse.ArgumentParser(description="Recompute a recorded jackpot draw from its seed")
    parser.add_argument("draw_id", type=int, help="jackpot_draws.id to replay")
    args = parser.parse_args()
    matches = asyncio.run(run(args.draw_id))
    raise SystemExit(0 if matches else 1)


if __name__ == "__main__":
    main()
