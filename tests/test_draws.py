from __future__ import annotations

from decimal import Decimal

import pytest

from apps.jackpot.core.draws import plan_winners, prize_per_winner, select_positions, tiers_from_json, tiers_to_json
from apps.jackpot.core.errors import InvalidPrizeTiers
from apps.jackpot.core.pools import PrizeTierSpec, validate_prize_tiers
from apps.jackpot.core.tickets import TicketRef

SPLIT_TIERS = (
    PrizeTierSpec("Grand", 1, 1, Decimal("0.60")),
    PrizeTierSpec("Major", 2, 3, Decimal("0.30")),
    PrizeTierSpec("Minor", 3, 10, Decimal("0.10")),
)


def _snapshot(*held: int) -> list[TicketRef]:
    refs: list[TicketRef] = []
    number = 1
    for user_id, count in enumerate(held, start=1):
        for _ in range(count):
            refs.append(TicketRef(ticket_number=number, user_id=user_id))
            number += 1
    return refs


def test_prizes_are_floored_per_winner() -> None:
    assert [prize_per_winner(10_000, tier) for tier in SPLIT_TIERS] == [6_000, 1_000, 100]
    assert prize_per_winner(10_001, PrizeTierSpec("Major", 2, 3, Decimal("0.30"))) == 1_000


def test_selection_is_deterministic_and_distinct() -> None:
    first = select_positions("seed-a", 100, SPLIT_TIERS)
    again = select_positions("seed-a", 100, SPLIT_TIERS)
    other = select_positions("seed-b", 100, SPLIT_TIERS)

    assert first == again
    assert first != other
    assert len(first) == 14
    assert len({selection.position for selection in first}) == 14
    assert all(1 <= selection.position <= 100 for selection in first)
    assert [selection.tier for selection in first[:4]] == ["Grand", "Major", "Major", "Major"]


def test_plan_for_ten_thousand_pool() -> None:
    plans = plan_winners("audit-seed", _snapshot(*([5] * 20)), SPLIT_TIERS, 10_000)

    assert len(plans) == 14
    assert len({plan.winning_ticket_number for plan in plans}) == 14
    by_tier = {}
    for plan in plans:
        by_tier.setdefault(plan.tier, []).append(plan.prize_amount)
    assert by_tier == {"Grand": [6_000], "Major": [1_000] * 3, "Minor": [100] * 10}
    assert sum(plan.prize_amount for plan in plans) <= 10_000
    assert all(plan.total_tickets_in_pool == 100 for plan in plans)
    assert all(plan.win_odds_percentage == Decimal("5.0000") for plan in plans)


def test_fewer_tickets_than_slots_fills_tiers_in_order() -> None:
    plans = plan_winners("small", _snapshot(2, 3), SPLIT_TIERS, 10_000)

    assert len(plans) == 5
    assert sorted(plan.winning_ticket_number for plan in plans) == [1, 2, 3, 4, 5]
    assert [plan.tier for plan in plans] == ["Grand", "Major", "Major", "Major", "Minor"]


def test_odds_reflect_tickets_held() -> None:
    plans = plan_winners("odds", _snapshot(1, 3), (PrizeTierSpec("Grand", 1, 4, Decimal("1")),), 1_000)

    odds = {plan.user_id: plan.win_odds_percentage for plan in plans}
    assert odds == {1: Decimal("25.0000"), 2: Decimal("75.0000")}
    assert {plan.tickets_held for plan in plans} == {1, 3}
    assert all(plan.prize_amount == 250 for plan in plans)


def test_empty_snapshot_has_no_winners() -> None:
    assert plan_winners("none", [], SPLIT_TIERS, 10_000) == []


def test_recorded_tiers_round_trip_through_json() -> None:
    restored = tiers_from_json(tiers_to_json(SPLIT_TIERS))
    assert [(tier.name, tier.winner_count, tier.pool_percentage) for tier in restored] == [
        ("Grand", 1, Decimal("0.60")),
        ("Major", 3, Decimal("0.30")),
        ("Minor", 10, Decimal("0.10")),
    ]


@pytest.mark.parametrize(
    "tiers",
    [
        (),
        (PrizeTierSpec("Grand", 1, 1, Decimal("0.70")), PrizeTierSpec("Major", 2, 1, Decimal("0.40"))),
        (PrizeTierSpec("Grand", 1, 1, Decimal("0.20")), PrizeTierSpec("Major", 1, 1, Decimal("0.20"))),
        (PrizeTierSpec("Grand", 1, 0, Decimal("0.20")),),
        (PrizeTierSpec("Grand", 1, 1, Decimal("0")),),
    ],
)
def test_invalid_prize_tiers_are_rejected(tiers) -> None:
    with pytest.raises(InvalidPrizeTiers):
        validate_prize_tiers(tiers)
