from __future__ import annotations

import argparse
import secrets
from collections import Counter

from apps.jackpot.core.draws import select_positions
from apps.jackpot.core.pools import DEFAULT_PRIZE_TIERS


def main() -> None:
    parser = argparse.ArgumentParser(description="Check that draw selection is proportional to tickets held")
    parser.add_argument("--tickets", type=int, nargs="+", default=[1, 9, 90], help="Tickets held per player")
    parser.add_argument("--iterations", type=int, default=10_000, help="Number of simulated draws")
    args = parser.parse_args()

    owners = [player for player, held in enumerate(args.tickets) for _ in range(held)]
    total = len(owners)
    grand_wins: Counter[int] = Counter()
    for _ in range(args.iterations):
        selections = select_positions(secrets.token_hex(32), total, DEFAULT_PRIZE_TIERS)
        grand_wins[owners[selections[0].position - 1]] += 1

    for player, held in enumerate(args.tickets):
        expected = held / total
        observed = grand_wins[player] / args.iterations
        print(f"player {player}: tickets={held} expected={expected:.4f} observed={observed:.4f}")


if __name__ == "__main__":
    main()
