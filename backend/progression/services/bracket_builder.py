"""
Bracket Builder - knockout qualification, round pairings and tie winners.

Pure functions over standings and match lists. Randomness comes from the
caller's random.Random so draws are reproducible.
"""

import logging
import random
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from progression.models.match import Match
from progression.models.tournament import TieBreakStrategy
from progression.services.standings import TeamStanding, rank_standings

logger = logging.getLogger(__name__)

MAX_BRACKET_SIZE = 64


@dataclass(frozen=True)
class QualifiedTeam:
    team_id: int
    group_id: int
    group_rank: int


@dataclass(frozen=True)
class KnockoutPairing:
    home_team_id: int
    away_team_id: int

    def as_tuple(self) -> Tuple[int, int]:
        return (self.home_team_id, self.away_team_id)


@dataclass
class BracketResult:
    pairings: List[KnockoutPairing] = field(default_factory=list)
    opening_pairing: Optional[KnockoutPairing] = None
    unpaired_team_id: Optional[int] = None


def next_power_of_two(n: int) -> int:
    """Bracket size for n qualifiers: 2, 4, 8, 16, 32, capped at 64."""
    for size in (2, 4, 8, 16, 32):
        if n <= size:
            return size
    return MAX_BRACKET_SIZE


# ============================================================================
# Qualification
# ============================================================================


def _group_standings(standings: Sequence[TeamStanding]) -> "OrderedDict[int, List[TeamStanding]]":
    groups: "OrderedDict[int, List[TeamStanding]]" = OrderedDict()
    for standing in standings:
        groups.setdefault(standing.group_id or 0, []).append(standing)
    return groups


def determine_qualified_teams(standings: Sequence[TeamStanding]) -> List[QualifiedTeam]:
    """
    Decide which teams reach the knockout bracket.

    Rules:
    - Groups with <= 2 teams: top 1 qualifies
    - Groups with > 2 teams: top 2 qualify; the next team joins the best-third pool
    - Best thirds (ranked across groups) fill up to next_power_of_two(qualified)
    - If thirds run out, the best remaining teams (ranked across groups) fill the rest
    - Withdrawn teams never qualify
    - More than 64 qualifiers are cut to the best 64

    Returns:
        Qualified teams: direct qualifiers in group order, then fill-ins
    """
    qualified: List[QualifiedTeam] = []
    thirds_pool: List[TeamStanding] = []
    leftovers: List[TeamStanding] = []
    position_in_group: Dict[int, int] = {}
    standing_by_team: Dict[int, TeamStanding] = {}

    for group_id, members in _group_standings(standings).items():
        ranked = rank_standings(members)
        eligible = [s for s in ranked if not s.is_withdrawn]
        quota = 1 if len(ranked) <= 2 else 2

        for position, standing in enumerate(eligible, start=1):
            position_in_group[standing.team_id] = position
            standing_by_team[standing.team_id] = standing

        for standing in eligible[:quota]:
            qualified.append(QualifiedTeam(standing.team_id, group_id, position_in_group[standing.team_id]))

        rest = eligible[quota:]
        if len(ranked) > 2 and rest:
            thirds_pool.append(rest[0])
            rest = rest[1:]
        leftovers.extend(rest)

    target = next_power_of_two(len(qualified))

    ranked_thirds = rank_standings(thirds_pool)
    while len(qualified) < target and ranked_thirds:
        standing = ranked_thirds.pop(0)
        qualified.append(
            QualifiedTeam(standing.team_id, standing.group_id or 0, position_in_group[standing.team_id])
        )

    # Unused thirds compete with the other leftovers for any remaining places
    fill_pool = rank_standings(ranked_thirds + leftovers)
    while len(qualified) < target and fill_pool:
        standing = fill_pool.pop(0)
        qualified.append(
            QualifiedTeam(standing.team_id, standing.group_id or 0, position_in_group[standing.team_id])
        )

    if len(qualified) > MAX_BRACKET_SIZE:
        logger.warning("%d teams qualified; keeping the best %d", len(qualified), MAX_BRACKET_SIZE)
        overall = {s.team_id: i for i, s in enumerate(rank_standings(list(standing_by_team.values())))}
        best = sorted(qualified, key=lambda q: (q.group_rank, overall[q.team_id]))
        keep = {q.team_id for q in best[:MAX_BRACKET_SIZE]}
        qualified = [q for q in qualified if q.team_id in keep]

    return qualified


# ============================================================================
# Pairings
# ============================================================================


def create_pairings(
    qualified: Sequence[QualifiedTeam],
    rng: random.Random,
    opening_home_team_id: Optional[int] = None,
    opening_away_team_id: Optional[int] = None,
) -> BracketResult:
    """
    Pair qualified teams for the first knockout round, avoiding same-group ties.

    The pre-selected opening pair is honoured only when both teams qualified.
    The rest is shuffled; each pick is matched with a random opponent from
    another group, or with the next remaining team when none exists.
    """
    pool = list(qualified)
    opening_pairing: Optional[KnockoutPairing] = None

    if opening_home_team_id is not None and opening_away_team_id is not None:
        pool_ids = {q.team_id for q in pool}
        if opening_home_team_id in pool_ids and opening_away_team_id in pool_ids:
            opening_pairing = KnockoutPairing(opening_home_team_id, opening_away_team_id)
            pool = [q for q in pool if q.team_id not in (opening_home_team_id, opening_away_team_id)]

    rng.shuffle(pool)

    pairings: List[KnockoutPairing] = []
    while len(pool) >= 2:
        home = pool.pop(0)
        cross_group = [q for q in pool if q.group_id != home.group_id]
        away = rng.choice(cross_group) if cross_group else pool[0]
        pool.remove(away)
        pairings.append(KnockoutPairing(home.team_id, away.team_id))

    unpaired = pool[0].team_id if pool else None
    if unpaired is not None:
        logger.warning("Odd number of qualified teams; team %s has no opponent", unpaired)

    return BracketResult(pairings=pairings, opening_pairing=opening_pairing, unpaired_team_id=unpaired)


# ============================================================================
# Winners
# ============================================================================


def pair_legs(round_matches: Sequence[Match]) -> List[Tuple[Match, Optional[Match]]]:
    """
    Group a round's fixtures into ties.

    A return leg is the fixture with the home/away IDs reversed. Fixtures are
    compared by identity, so unsaved matches (id None) pair correctly.
    """
    ties: List[Tuple[Match, Optional[Match]]] = []
    used = set()

    for i, match in enumerate(round_matches):
        if i in used:
            continue
        used.add(i)
        return_leg = None
        for j in range(i + 1, len(round_matches)):
            other = round_matches[j]
            if j in used:
                continue
            if other.home_team_id == match.away_team_id and other.away_team_id == match.home_team_id:
                return_leg = other
                used.add(j)
                break
        ties.append((match, return_leg))

    return ties


def _tie_winner(first_leg: Match, return_leg: Optional[Match], tie_break: TieBreakStrategy) -> int:
    home_id, away_id = first_leg.home_team_id, first_leg.away_team_id

    if return_leg is None:
        if first_leg.home_score == first_leg.away_score:
            return home_id
        return home_id if first_leg.home_score > first_leg.away_score else away_id

    home_aggregate = first_leg.home_score + return_leg.away_score
    away_aggregate = first_leg.away_score + return_leg.home_score
    if home_aggregate != away_aggregate:
        return home_id if home_aggregate > away_aggregate else away_id

    if TieBreakStrategy(tie_break) == TieBreakStrategy.away_goals:
        home_away_goals = return_leg.away_score
        away_away_goals = first_leg.away_score
        if home_away_goals != away_away_goals:
            return home_id if home_away_goals > away_away_goals else away_id

    return home_id


def determine_winners(
    round_matches: Sequence[Match],
    tie_break: TieBreakStrategy = TieBreakStrategy.first_leg_home,
) -> List[int]:
    """
    Winner of every tie in a finished knockout round, in tie order.

    - Two legs: higher aggregate
    - One leg: higher score
    - Level: first_leg_home → first-leg home team;
      away_goals → more away goals (two legs only), then first-leg home team
    """
    return [_tie_winner(first, second, tie_break) for first, second in pair_legs(round_matches)]
