"""
Round-Robin Pairing Rules

Circle-method pairings used for league and group-stage fixtures.
Every unordered pair of positions meets exactly once; odd sizes get a BYE per round.
"""

from typing import List, Tuple


def rr_matches_count(team_count: int) -> int:
    """Return number of RR matches for n teams: C(n, 2) = n*(n-1)/2."""
    if team_count < 2:
        return 0
    return (team_count * (team_count - 1)) // 2


def rr_round_count(team_count: int) -> int:
    """
    Return number of RR rounds for n teams.
    Even n: n-1 rounds. Odd n: n rounds (with BYE). Fewer than 2 teams: 0.
    """
    if team_count < 2:
        return 0
    if team_count % 2 == 0:
        return team_count - 1
    return team_count


def round_robin_pairings(team_count: int) -> List[Tuple[int, int, int, int]]:
    """
    Round-robin pairings. Returns list of (round_index, sequence_in_round, idx_a, idx_b).
    idx_a, idx_b are 0-based positions in the caller's team order; idx_a plays at home.

    Circle method: fix position 0, rotate the rest. Pair (i, n2-1-i); skip pairs with the BYE.
    Home side alternates for the fixed position so no team is always at home.

    Example (4 teams):
    - Round 1: (0,3), (1,2)
    - Round 2: (2,0), (1,3)
    - Round 3: (0,1), (2,3)
    """
    if team_count < 2:
        return []

    n = team_count
    n2 = n + 1 if n % 2 == 1 else n  # Add BYE for odd n
    half = n2 // 2
    rounds_count = n2 - 1
    bye_idx = n if n % 2 == 1 else -1

    result: List[Tuple[int, int, int, int]] = []
    positions = list(range(n2))

    for round_num in range(1, rounds_count + 1):
        seq = 0
        for i in range(half):
            j = n2 - 1 - i
            a, b = positions[i], positions[j]
            if a == bye_idx or b == bye_idx:
                continue
            seq += 1
            # Even rounds flip the pair so home/away is spread across the schedule
            if round_num % 2 == 0:
                a, b = b, a
            result.append((round_num, seq, a, b))
        # Rotate: keep 0, move last to second, shift others
        positions = [positions[0]] + [positions[-1]] + positions[1:-1]

    return result
