"""
Standings Calculator - ranked tables from finished group/league results.

Only finished fixtures with a group_id, or staged "League"/"Group Stage", count.
Knockout fixtures never touch the table.

Ranking chain:
1. Group (None → 0)
2. Points (desc)
3. Goal difference (desc)
4. Goals for (desc)
5. Red cards (asc)
6. Yellow cards (asc)

Remaining ties keep registration order. Rank restarts at 1 for each group.
"""

from dataclasses import dataclass, replace
from datetime import datetime
from functools import reduce
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from progression.models.match import Match
from progression.models.match_event import MatchEventType
from progression.models.registration import STANDINGS_STATUSES, RegistrationStatus, TeamRegistration

FORM_LENGTH = 5

POINTS_WIN = 3
POINTS_DRAW = 1


@dataclass(frozen=True)
class TeamStanding:
    team_id: int
    team_name: str
    group_id: Optional[int] = None
    played: int = 0
    won: int = 0
    drawn: int = 0
    lost: int = 0
    goals_for: int = 0
    goals_against: int = 0
    points: int = 0
    yellow_cards: int = 0
    red_cards: int = 0
    form: Tuple[str, ...] = ()  # oldest → newest, at most FORM_LENGTH entries
    is_withdrawn: bool = False
    rank: int = 0

    @property
    def goal_difference(self) -> int:
        return self.goals_for - self.goals_against


# ============================================================================
# Fold
# ============================================================================


def _chronological(matches: Iterable[Match]) -> List[Match]:
    """Counted matches in playing order: scheduled date, then round, then input order."""
    counted = [(i, m) for i, m in enumerate(matches) if m.is_finished and m.counts_for_standings]
    counted.sort(
        key=lambda item: (
            item[1].scheduled_at is None,
            item[1].scheduled_at or datetime.min,
            item[1].round_number or 0,
            item[0],
        )
    )
    return [m for _, m in counted]


def _apply_result(tally: TeamStanding, scored: int, conceded: int) -> TeamStanding:
    if scored > conceded:
        outcome = "W"
        changes = {"won": tally.won + 1, "points": tally.points + POINTS_WIN}
    elif scored == conceded:
        outcome = "D"
        changes = {"drawn": tally.drawn + 1, "points": tally.points + POINTS_DRAW}
    else:
        outcome = "L"
        changes = {"lost": tally.lost + 1}

    return replace(
        tally,
        played=tally.played + 1,
        goals_for=tally.goals_for + scored,
        goals_against=tally.goals_against + conceded,
        form=(tally.form + (outcome,))[-FORM_LENGTH:],
        **changes,
    )


def _apply_cards(tally: TeamStanding, match: Match) -> TeamStanding:
    events = [e for e in (match.events or []) if e.team_id == tally.team_id]
    yellows = sum(1 for e in events if e.event_type == MatchEventType.yellow_card)
    reds = sum(1 for e in events if e.event_type == MatchEventType.red_card)
    if not yellows and not reds:
        return tally
    return replace(tally, yellow_cards=tally.yellow_cards + yellows, red_cards=tally.red_cards + reds)


def _fold_match(tallies: Dict[int, TeamStanding], match: Match) -> Dict[int, TeamStanding]:
    updated = dict(tallies)

    sides = (
        (match.home_team_id, match.home_score, match.away_score),
        (match.away_team_id, match.away_score, match.home_score),
    )
    for team_id, scored, conceded in sides:
        if team_id not in updated:
            continue
        updated[team_id] = _apply_cards(_apply_result(updated[team_id], scored, conceded), match)

    return updated


# ============================================================================
# Ranking
# ============================================================================


def _ranking_key(standing: TeamStanding) -> Tuple[int, int, int, int, int]:
    return (
        -standing.points,
        -standing.goal_difference,
        -standing.goals_for,
        standing.red_cards,
        standing.yellow_cards,
    )


def rank_standings(standings: Sequence[TeamStanding]) -> List[TeamStanding]:
    """
    Rank a flat list of standings ignoring groups.

    Used for cross-group comparisons (best third places, qualification fill).
    Stable: ties keep input order. Rank fields are left untouched.
    """
    return sorted(standings, key=_ranking_key)


def calculate_standings(
    matches: Iterable[Match],
    registrations: Iterable[TeamRegistration],
    team_names: Optional[Mapping[int, str]] = None,
) -> List[TeamStanding]:
    """
    Calculate ranked standings for every approved or withdrawn registration.

    Args:
        matches: All tournament matches (knockout and unfinished ones are ignored)
        registrations: Tournament registrations, in registration order
        team_names: Optional team_id → name lookup

    Returns:
        Standings ordered by group then rank, rank restarting per group
    """
    names = team_names or {}
    initial: Dict[int, TeamStanding] = {}
    for registration in registrations:
        if registration.status not in STANDINGS_STATUSES or registration.team_id in initial:
            continue
        initial[registration.team_id] = TeamStanding(
            team_id=registration.team_id,
            team_name=names.get(registration.team_id, f"Team {registration.team_id}"),
            group_id=registration.group_id,
            is_withdrawn=registration.status == RegistrationStatus.withdrawn,
        )

    tallies = reduce(_fold_match, _chronological(matches), initial)

    ordered = sorted(tallies.values(), key=lambda s: (s.group_id or 0,) + _ranking_key(s))

    ranked: List[TeamStanding] = []
    current_group: object = object()
    rank = 0
    for standing in ordered:
        if standing.group_id != current_group:
            current_group = standing.group_id
            rank = 1
        else:
            rank += 1
        ranked.append(replace(standing, rank=rank))

    return ranked
