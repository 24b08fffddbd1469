"""
Match Generator - fixture lists for league, knockout and group-then-knockout tournaments.

Takes tournament config + team IDs in, returns unsaved Match rows out.
All randomness comes from the caller's random.Random; same seed, same fixtures.
"""

import logging
import random
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from progression import settings
from progression.exceptions import ConfigurationError
from progression.models.match import (
    STAGE_GROUP,
    STAGE_LEAGUE,
    STAGE_ROUND_ONE,
    Match,
    MatchStatus,
)
from progression.models.tournament import (
    GROUP_MODES,
    HOME_AWAY_MODES,
    KNOCKOUT_MODES,
    TournamentMode,
)
from progression.services.group_distribution import distribute_teams, validate_distribution
from progression.utils.round_robin import round_robin_pairings, rr_round_count

logger = logging.getLogger(__name__)


@dataclass
class MatchGenerationConfig:
    tournament_id: int
    mode: TournamentMode
    base_date: datetime
    number_of_groups: int = 1
    opening_team_a_id: Optional[int] = None
    opening_team_b_id: Optional[int] = None

    @property
    def has_opening_pair(self) -> bool:
        return self.opening_team_a_id is not None and self.opening_team_b_id is not None

    @property
    def is_home_away(self) -> bool:
        return self.mode in HOME_AWAY_MODES

    def is_opening_pair(self, team_a: int, team_b: int) -> bool:
        if not self.has_opening_pair:
            return False
        return {team_a, team_b} == {self.opening_team_a_id, self.opening_team_b_id}


@dataclass
class MatchGenerationResult:
    matches: List[Match]
    group_assignments: Dict[int, int] = field(default_factory=dict)  # team_id → group_id


@dataclass(frozen=True)
class ManualPairing:
    """Organiser-supplied knockout pairing."""

    home_team_id: int
    away_team_id: int
    round_number: int
    stage_name: str


# ============================================================================
# Entry Point
# ============================================================================


def generate_matches(
    config: MatchGenerationConfig,
    team_ids: Sequence[int],
    rng: random.Random,
) -> MatchGenerationResult:
    """
    Generate all initial fixtures for a tournament.

    Args:
        config: Tournament mode, group count, opening pair and base date
        team_ids: Approved team IDs
        rng: Seedable random source used for every shuffle

    Returns:
        MatchGenerationResult with unsaved matches and team → group assignments
        (assignments are empty for league and knockout modes)

    Raises:
        ConfigurationError: Empty or duplicate team list, invalid opening pair,
            or a group distribution that fails validation
    """
    _validate_inputs(config, team_ids)

    if config.mode in GROUP_MODES:
        return _generate_group_stage(config, team_ids, rng)
    if config.mode in KNOCKOUT_MODES:
        return _generate_knockout(config, team_ids, rng)
    return _generate_league(config, team_ids, rng)


def _validate_inputs(config: MatchGenerationConfig, team_ids: Sequence[int]) -> None:
    if not team_ids:
        raise ConfigurationError("Team list cannot be empty")
    if len(set(team_ids)) != len(team_ids):
        raise ConfigurationError("Duplicate team IDs detected")
    if config.number_of_groups < 1:
        raise ConfigurationError(f"Number of groups must be at least 1, got {config.number_of_groups}")
    if config.has_opening_pair:
        if config.opening_team_a_id == config.opening_team_b_id:
            raise ConfigurationError("Opening teams must be different")
        for team_id in (config.opening_team_a_id, config.opening_team_b_id):
            if team_id not in team_ids:
                raise ConfigurationError(f"Opening team {team_id} is not in the team list")


def _shuffled(items: Iterable[int], rng: random.Random) -> List[int]:
    result = list(items)
    rng.shuffle(result)
    return result


def _opening_first_order(config: MatchGenerationConfig, team_ids: Sequence[int], rng: random.Random) -> List[int]:
    """Opening pair first (kept out of the shuffle), shuffled remainder after it."""
    if not config.has_opening_pair:
        return _shuffled(team_ids, rng)
    opening = [config.opening_team_a_id, config.opening_team_b_id]
    remaining = _shuffled((t for t in team_ids if t not in opening), rng)
    return opening + remaining


# ============================================================================
# League
# ============================================================================


def _generate_league(config: MatchGenerationConfig, team_ids: Sequence[int], rng: random.Random) -> MatchGenerationResult:
    ordered = _opening_first_order(config, team_ids, rng)
    matches = _round_robin_fixtures(
        config,
        ordered,
        group_id=None,
        stage_name=STAGE_LEAGUE,
        first_fixture_index=0,
    )
    _promote_opening_fixture(matches)
    return MatchGenerationResult(matches=matches, group_assignments={})


# ============================================================================
# Knockout
# ============================================================================


def _generate_knockout(config: MatchGenerationConfig, team_ids: Sequence[int], rng: random.Random) -> MatchGenerationResult:
    ordered = _opening_first_order(config, team_ids, rng)
    matches: List[Match] = []

    if len(ordered) % 2 == 1:
        logger.warning(
            "Knockout draw for tournament %s has an odd team count (%d); team %s gets no round 1 fixture",
            config.tournament_id,
            len(ordered),
            ordered[-1],
        )

    # Tie k pairs ordered[2k] and ordered[2k + 1] and kicks off 2k days after base_date
    for i in range(0, len(ordered) - 1, 2):
        home, away = ordered[i], ordered[i + 1]
        kickoff = config.base_date + timedelta(days=i)
        first_leg = create_match(config.tournament_id, home, away, kickoff, None, 1, STAGE_ROUND_ONE)
        if i == 0 and config.has_opening_pair:
            first_leg.is_opening_match = True
        matches.append(first_leg)

        if config.is_home_away:
            matches.append(
                create_match(
                    config.tournament_id,
                    away,
                    home,
                    kickoff + timedelta(days=settings.RETURN_LEG_GAP_DAYS),
                    None,
                    1,
                    STAGE_ROUND_ONE,
                )
            )

    return MatchGenerationResult(matches=matches, group_assignments={})


# ============================================================================
# Groups → Knockout
# ============================================================================


def _generate_group_stage(
    config: MatchGenerationConfig, team_ids: Sequence[int], rng: random.Random
) -> MatchGenerationResult:
    shuffled = _shuffled(team_ids, rng)
    distribution = distribute_teams(
        shuffled,
        config.number_of_groups,
        config.opening_team_a_id if config.has_opening_pair else None,
        config.opening_team_b_id if config.has_opening_pair else None,
    )

    validation = validate_distribution(distribution, shuffled, config.number_of_groups)
    if not validation.is_valid:
        raise ConfigurationError(f"Group distribution failed: {'; '.join(validation.errors)}")

    group_assignments: Dict[int, int] = {}
    for group_id, members in distribution.items():
        for team_id in members:
            group_assignments[team_id] = group_id

    matches: List[Match] = []
    fixture_index = 0

    for group_id in sorted(distribution.keys()):
        members = distribution[group_id]
        group_matches = _round_robin_fixtures(
            config,
            members,
            group_id=group_id,
            stage_name=STAGE_GROUP,
            first_fixture_index=fixture_index,
        )
        fixture_index += len(group_matches)
        _promote_opening_fixture(group_matches)
        matches.extend(group_matches)

    logger.debug(
        "Generated %d group fixtures across %d groups for tournament %s",
        len(matches),
        len(distribution),
        config.tournament_id,
    )
    return MatchGenerationResult(matches=matches, group_assignments=group_assignments)


# ============================================================================
# Shared Helpers
# ============================================================================


def _round_robin_fixtures(
    config: MatchGenerationConfig,
    members: Sequence[int],
    group_id: Optional[int],
    stage_name: str,
    first_fixture_index: int,
) -> List[Match]:
    """
    Round robin among `members`, first legs in matchday order, then (home/away modes)
    the mirrored return legs in the matchdays after them.

    Fixture k of the list is dated base_date + (first_fixture_index + k) * spacing.
    """
    pairings = round_robin_pairings(len(members))
    first_leg_rounds = rr_round_count(len(members))

    legs: List[Tuple[int, int, int]] = []  # (round_number, home, away)
    for round_index, _, idx_a, idx_b in pairings:
        legs.append((round_index, members[idx_a], members[idx_b]))
    if config.is_home_away:
        for round_index, _, idx_a, idx_b in pairings:
            legs.append((first_leg_rounds + round_index, members[idx_b], members[idx_a]))

    fixtures: List[Match] = []
    opening_flagged = False
    for offset, (round_number, home, away) in enumerate(legs):
        kickoff = config.base_date + timedelta(
            days=(first_fixture_index + offset) * settings.FIXTURE_SPACING_DAYS
        )
        match = create_match(config.tournament_id, home, away, kickoff, group_id, round_number, stage_name)
        if not opening_flagged and config.is_opening_pair(home, away):
            match.is_opening_match = True
            opening_flagged = True
        fixtures.append(match)

    return fixtures


def _promote_opening_fixture(fixtures: List[Match]) -> None:
    """
    Move the opening fixture to the front of the list, swapping dates with the
    fixture that held the earliest date (in place).
    """
    opening = next((m for m in fixtures if m.is_opening_match), None)
    if opening is None:
        return

    fixtures.remove(opening)
    if fixtures:
        earliest = min(fixtures, key=lambda m: m.scheduled_at)
        if earliest.scheduled_at < opening.scheduled_at:
            earliest.scheduled_at, opening.scheduled_at = opening.scheduled_at, earliest.scheduled_at
    fixtures.insert(0, opening)


def create_match(
    tournament_id: int,
    home_team_id: int,
    away_team_id: int,
    scheduled_at: Optional[datetime],
    group_id: Optional[int],
    round_number: Optional[int],
    stage_name: str,
) -> Match:
    """Single match-creation kernel: scheduled, 0-0."""
    return Match(
        tournament_id=tournament_id,
        home_team_id=home_team_id,
        away_team_id=away_team_id,
        home_score=0,
        away_score=0,
        status=MatchStatus.scheduled,
        group_id=group_id,
        round_number=round_number,
        stage_name=stage_name,
        is_opening_match=False,
        scheduled_at=scheduled_at,
    )


# ============================================================================
# Knockout Rounds (automatic and manual)
# ============================================================================


def build_knockout_round(
    tournament_id: int,
    pairings: Sequence[Tuple[int, int]],
    round_number: int,
    stage_name: str,
    is_home_away: bool,
    base_date: datetime,
    opening_pairing: Optional[Tuple[int, int]] = None,
) -> List[Match]:
    """
    Build the fixtures of one knockout round.

    Args:
        pairings: (home_team_id, away_team_id) per tie, in bracket order
        round_number: Round number stored on every fixture
        stage_name: "Knockout" | "Final" | ...
        is_home_away: Add the mirrored return leg RETURN_LEG_GAP_DAYS later
        base_date: Kick-off of the first tie; tie i starts i * KNOCKOUT_SLOT_HOURS later
        opening_pairing: Played first and flagged as the opening match

    Returns:
        Unsaved matches, opening tie first when given
    """
    ordered: List[Tuple[int, int]] = []
    if opening_pairing is not None:
        ordered.append(opening_pairing)
    ordered.extend(pairings)

    matches: List[Match] = []
    for i, (home, away) in enumerate(ordered):
        kickoff = base_date + timedelta(hours=i * settings.KNOCKOUT_SLOT_HOURS)
        first_leg = create_match(tournament_id, home, away, kickoff, None, round_number, stage_name)
        if opening_pairing is not None and i == 0:
            first_leg.is_opening_match = True
        matches.append(first_leg)

        if is_home_away:
            matches.append(
                create_match(
                    tournament_id,
                    away,
                    home,
                    kickoff + timedelta(days=settings.RETURN_LEG_GAP_DAYS),
                    None,
                    round_number,
                    stage_name,
                )
            )

    return matches


def generate_manual_knockout(
    tournament_id: int,
    pairings: Iterable[ManualPairing],
    is_home_away: bool,
    base_date: datetime,
) -> List[Match]:
    """
    Knockout fixtures from organiser-supplied pairings.

    Uses the same create_match kernel as automatic generation. Fixtures are
    spread KNOCKOUT_SLOT_HOURS apart; return legs RETURN_LEG_GAP_DAYS after their first leg.
    """
    matches: List[Match] = []
    kickoff = base_date

    for pairing in pairings:
        matches.append(
            create_match(
                tournament_id,
                pairing.home_team_id,
                pairing.away_team_id,
                kickoff,
                None,
                pairing.round_number,
                pairing.stage_name,
            )
        )
        if is_home_away:
            matches.append(
                create_match(
                    tournament_id,
                    pairing.away_team_id,
                    pairing.home_team_id,
                    kickoff + timedelta(days=settings.RETURN_LEG_GAP_DAYS),
                    None,
                    pairing.round_number,
                    pairing.stage_name,
                )
            )
        kickoff = kickoff + timedelta(hours=settings.KNOCKOUT_SLOT_HOURS)

    return matches
