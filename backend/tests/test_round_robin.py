"""
Tests for circle-method round-robin pairings.
"""

from itertools import combinations

import pytest

from progression.utils.round_robin import round_robin_pairings, rr_matches_count, rr_round_count


def test_matches_count():
    assert rr_matches_count(0) == 0
    assert rr_matches_count(1) == 0
    assert rr_matches_count(2) == 1
    assert rr_matches_count(4) == 6
    assert rr_matches_count(5) == 10


def test_round_count():
    assert rr_round_count(1) == 0
    assert rr_round_count(2) == 1
    assert rr_round_count(4) == 3
    assert rr_round_count(5) == 5  # odd: one BYE per round


def test_four_team_schedule():
    """Known 4-team order: fixed position 0, rotating rest, even rounds flipped."""
    pairings = round_robin_pairings(4)
    assert [(r, a, b) for r, _, a, b in pairings] == [
        (1, 0, 3),
        (1, 1, 2),
        (2, 2, 0),
        (2, 1, 3),
        (3, 0, 1),
        (3, 2, 3),
    ]


@pytest.mark.parametrize("n", [2, 3, 4, 5, 6, 7, 8])
def test_every_pair_meets_exactly_once(n):
    pairings = round_robin_pairings(n)

    seen = [frozenset((a, b)) for _, _, a, b in pairings]
    assert len(seen) == rr_matches_count(n)
    assert set(seen) == {frozenset(p) for p in combinations(range(n), 2)}


@pytest.mark.parametrize("n", [3, 4, 5, 6, 9])
def test_no_team_plays_twice_in_a_round(n):
    pairings = round_robin_pairings(n)

    for round_index in range(1, rr_round_count(n) + 1):
        teams = [t for r, _, a, b in pairings if r == round_index for t in (a, b)]
        assert len(teams) == len(set(teams))


def test_odd_count_never_pairs_the_bye():
    pairings = round_robin_pairings(5)
    assert all(a < 5 and b < 5 for _, _, a, b in pairings)


def test_fewer_than_two_teams():
    assert round_robin_pairings(0) == []
    assert round_robin_pairings(1) == []
