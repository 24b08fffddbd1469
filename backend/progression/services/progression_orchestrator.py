"""
Tournament Progression Orchestrator

Decides what happens after results change:
- Groups finished → qualification (automatic or organiser-confirmed) → knockout round 1
- Knockout round finished → next round, or the final result and a winner
- League finished → standings leader wins

Pure: reads a TournamentSnapshot, returns a ProgressionOutcome. Persistence,
locking and notification belong to the caller (see progression_runner).
"""

import logging
import random
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from pydantic import BaseModel

from progression import settings
from progression.exceptions import ConfigurationError, InsufficientDataError, StateTransitionError
from progression.models.match import (
    STAGE_FINAL,
    STAGE_KNOCKOUT,
    STAGE_SEMI_FINAL,
    Match,
)
from progression.models.registration import RegistrationStatus, TeamRegistration
from progression.models.tournament import (
    GROUP_MODES,
    HOME_AWAY_MODES,
    KNOCKOUT_MODES,
    LEAGUE_MODES,
    SchedulingMode,
    Tournament,
    TournamentMode,
    TournamentStatus,
)
from progression.services.bracket_builder import (
    QualifiedTeam,
    create_pairings,
    determine_qualified_teams,
    determine_winners,
    pair_legs,
)
from progression.services.match_generator import (
    ManualPairing,
    MatchGenerationConfig,
    build_knockout_round,
    generate_manual_knockout,
    generate_matches,
)
from progression.services.standings import calculate_standings
from progression.services.tournament_state import (
    apply_transition,
    is_terminal,
    requires_manual_draw,
    requires_manual_qualification,
)

logger = logging.getLogger(__name__)

# (round_number, is_final_round) -> True when the organiser must draw the round
ManualDrawGate = Callable[[int, bool], bool]


# ============================================================================
# Inputs / Outputs
# ============================================================================


class TournamentProgressionResult(BaseModel):
    """Summary handed to the notification layer after every progression call."""

    tournament_id: Optional[int] = None
    tournament_name: str = ""
    groups_finished: bool = False
    manual_qualification_required: bool = False
    manual_draw_required: bool = False
    manual_draw_round_number: Optional[int] = None
    knockout_round_index: Optional[int] = None  # 1 for the first knockout round, whatever its round_number
    next_round_generated: bool = False
    matches_generated: int = 0
    round_number: Optional[int] = None
    tournament_finalized: bool = False
    winner_team_id: Optional[int] = None
    winner_team_name: Optional[str] = None


class QualificationSelection(BaseModel):
    """Organiser's pick of qualified teams for one group."""

    group_id: int
    qualified_team_ids: List[int]


class ManualDrawPairing(BaseModel):
    """One organiser-drawn knockout tie. stage_name falls back to the round default."""

    home_team_id: int
    away_team_id: int
    stage_name: Optional[str] = None


@dataclass(frozen=True)
class TournamentSnapshot:
    tournament: Tournament
    matches: Sequence[Match]
    registrations: Sequence[TeamRegistration]
    team_names: Mapping[int, str] = field(default_factory=dict)
    now: datetime = field(default_factory=datetime.utcnow)


@dataclass
class ProgressionOutcome:
    result: TournamentProgressionResult
    new_matches: List[Match] = field(default_factory=list)
    new_status: Optional[TournamentStatus] = None
    winner_team_id: Optional[int] = None
    qualified_team_ids: List[int] = field(default_factory=list)
    group_assignments: Dict[int, int] = field(default_factory=dict)  # team_id → group_id
    opening_team_ids: Optional[Tuple[int, int]] = None  # (home, away) chosen by the organiser

    @property
    def has_changes(self) -> bool:
        return bool(
            self.new_matches
            or self.new_status is not None
            or self.qualified_team_ids
            or self.group_assignments
            or self.opening_team_ids is not None
        )


def _base_result(tournament: Tournament) -> TournamentProgressionResult:
    return TournamentProgressionResult(tournament_id=tournament.id, tournament_name=tournament.name)


def _default_gate(tournament: Tournament) -> ManualDrawGate:
    return lambda round_number, is_final_round: requires_manual_draw(
        tournament.scheduling_mode, round_number, is_final_round
    )


def _is_home_away(tournament: Tournament) -> bool:
    return TournamentMode(tournament.mode) in HOME_AWAY_MODES


def _knockout_matches(matches: Sequence[Match]) -> List[Match]:
    return [m for m in matches if m.is_knockout]


def _knockout_round_index(matches: Sequence[Match], round_number: int) -> int:
    """Position of round_number among the knockout rounds (1-based), counting only earlier knockout rounds."""
    earlier = {m.round_number or 0 for m in _knockout_matches(matches) if (m.round_number or 0) < round_number}
    return len(earlier) + 1


# ============================================================================
# Results Changed
# ============================================================================


def on_results_changed(
    snapshot: TournamentSnapshot,
    rng: random.Random,
    manual_draw_gate: Optional[ManualDrawGate] = None,
) -> ProgressionOutcome:
    """
    Advance the tournament after a match result was recorded or edited.

    Args:
        snapshot: Tournament, all its matches, registrations and team names
        rng: Seedable random source for knockout draws
        manual_draw_gate: Override for "must the organiser draw this round?"

    Returns:
        ProgressionOutcome (empty when nothing is due)

    Raises:
        StateTransitionError: A required status change is not allowed from the current status
        ConfigurationError: Invalid data reached a generator
    """
    tournament = snapshot.tournament
    result = _base_result(tournament)

    if is_terminal(tournament.status):
        logger.debug("Tournament %s is %s; nothing to progress", tournament.id, tournament.status)
        return ProgressionOutcome(result=result)

    if not snapshot.matches:
        logger.debug("Tournament %s has no matches yet", tournament.id)
        return ProgressionOutcome(result=result)

    gate = manual_draw_gate or _default_gate(tournament)
    mode = TournamentMode(tournament.mode)

    try:
        if mode in GROUP_MODES and not _knockout_matches(snapshot.matches):
            return _check_group_stage(snapshot, rng, gate, result)

        if mode in LEAGUE_MODES:
            return _check_league(snapshot, result)

        return _check_knockout_round(snapshot, gate, result)
    except InsufficientDataError as exc:
        logger.warning("Progression skipped for tournament %s: %s", tournament.id, exc)
        return ProgressionOutcome(result=_base_result(tournament))


def _check_group_stage(
    snapshot: TournamentSnapshot,
    rng: random.Random,
    gate: ManualDrawGate,
    result: TournamentProgressionResult,
) -> ProgressionOutcome:
    tournament = snapshot.tournament
    group_matches = [m for m in snapshot.matches if m.counts_for_standings]

    if not group_matches or not all(m.is_finished for m in group_matches):
        logger.debug("Tournament %s: group stage still in progress", tournament.id)
        return ProgressionOutcome(result=result)

    result.groups_finished = True
    status = TournamentStatus(tournament.status)
    logger.info("Tournament %s: all %d group matches finished", tournament.id, len(group_matches))

    is_manual = SchedulingMode(tournament.scheduling_mode) == SchedulingMode.manual
    if is_manual and status != TournamentStatus.qualification_confirmed:
        result.manual_qualification_required = True
        if status == TournamentStatus.manual_qualification_pending:
            return ProgressionOutcome(result=result)
        new_status = apply_transition(status, TournamentStatus.manual_qualification_pending)
        logger.info("Tournament %s: waiting for the organiser to confirm qualifiers", tournament.id)
        return ProgressionOutcome(result=result, new_status=new_status)

    if status == TournamentStatus.qualification_confirmed:
        qualified = [
            QualifiedTeam(r.team_id, r.group_id or 0, 0)
            for r in snapshot.registrations
            if r.qualified_for_knockout and r.status == RegistrationStatus.approved
        ]
    else:
        standings = calculate_standings(snapshot.matches, snapshot.registrations, snapshot.team_names)
        qualified = determine_qualified_teams(standings)

    outcome = _generate_first_knockout_round(snapshot, qualified, rng, gate, result, status)
    outcome.qualified_team_ids = [q.team_id for q in qualified]
    return outcome


def _check_league(snapshot: TournamentSnapshot, result: TournamentProgressionResult) -> ProgressionOutcome:
    tournament = snapshot.tournament

    if not all(m.is_finished for m in snapshot.matches):
        logger.debug("Tournament %s: league still in progress", tournament.id)
        return ProgressionOutcome(result=result)

    standings = calculate_standings(snapshot.matches, snapshot.registrations, snapshot.team_names)
    leader = next((s for s in standings if not s.is_withdrawn), None)
    if leader is None:
        raise InsufficientDataError("League finished but no eligible team is in the standings")

    return _finalize(snapshot, result, leader.team_id)


def _check_knockout_round(
    snapshot: TournamentSnapshot,
    gate: ManualDrawGate,
    result: TournamentProgressionResult,
) -> ProgressionOutcome:
    tournament = snapshot.tournament
    knockout = _knockout_matches(snapshot.matches)
    if not knockout:
        logger.debug("Tournament %s has no knockout matches", tournament.id)
        return ProgressionOutcome(result=result)

    latest_round = max(m.round_number or 0 for m in knockout)
    round_matches = [m for m in knockout if (m.round_number or 0) == latest_round]

    if not all(m.is_finished for m in round_matches):
        logger.debug("Tournament %s: knockout round %d still in progress", tournament.id, latest_round)
        return ProgressionOutcome(result=result)

    winners = determine_winners(round_matches, tournament.tie_break_strategy)

    if len(pair_legs(round_matches)) == 1:
        return _finalize(snapshot, result, winners[0])

    if len(winners) < 2:
        raise InsufficientDataError(f"Round {latest_round} produced fewer than two winners")

    next_round = latest_round + 1
    is_final_round = len(winners) == 2

    if gate(next_round, is_final_round):
        return _manual_draw_required(tournament, result, next_round, _knockout_round_index(knockout, next_round))

    if len(winners) % 2 == 1:
        logger.warning(
            "Tournament %s: odd number of winners in round %d; team %s gets no fixture",
            tournament.id,
            latest_round,
            winners[-1],
        )

    pairings = [(winners[i], winners[i + 1]) for i in range(0, len(winners) - 1, 2)]
    new_matches = build_knockout_round(
        tournament.id,
        pairings,
        next_round,
        STAGE_FINAL if is_final_round else STAGE_KNOCKOUT,
        _is_home_away(tournament) and not is_final_round,
        snapshot.now + timedelta(days=settings.KNOCKOUT_LEAD_DAYS),
    )

    new_status = None
    if TournamentStatus(tournament.status) == TournamentStatus.qualification_confirmed:
        new_status = apply_transition(tournament.status, TournamentStatus.active)

    _mark_generated(result, new_matches, next_round, _knockout_round_index(knockout, next_round))
    logger.info(
        "Tournament %s: generated round %d (%d matches)%s",
        tournament.id,
        next_round,
        len(new_matches),
        " - final" if is_final_round else "",
    )
    return ProgressionOutcome(result=result, new_matches=new_matches, new_status=new_status)


# ============================================================================
# Shared Steps
# ============================================================================


def _generate_first_knockout_round(
    snapshot: TournamentSnapshot,
    qualified: Sequence[QualifiedTeam],
    rng: random.Random,
    gate: ManualDrawGate,
    result: TournamentProgressionResult,
    current_status: TournamentStatus,
) -> ProgressionOutcome:
    """
    Knockout round 1 after the group stage.

    current_status may differ from the snapshot when the caller has just
    applied a transition (confirmed qualification).
    """
    tournament = snapshot.tournament
    if len(qualified) < 2:
        raise InsufficientDataError(f"Only {len(qualified)} team(s) qualified for the knockout stage")

    round_number = max((m.round_number or 0 for m in snapshot.matches), default=0) + 1
    is_final_round = len(qualified) == 2

    if gate(round_number, is_final_round):
        outcome = _manual_draw_required(tournament, result, round_number, 1)
        if current_status != TournamentStatus(tournament.status):
            outcome.new_status = current_status
        return outcome

    bracket = create_pairings(qualified, rng, tournament.opening_team_a_id, tournament.opening_team_b_id)
    new_matches = build_knockout_round(
        tournament.id,
        [p.as_tuple() for p in bracket.pairings],
        round_number,
        STAGE_FINAL if is_final_round else STAGE_KNOCKOUT,
        _is_home_away(tournament) and not is_final_round,
        snapshot.now + timedelta(days=settings.KNOCKOUT_LEAD_DAYS),
        opening_pairing=bracket.opening_pairing.as_tuple() if bracket.opening_pairing else None,
    )
    if not new_matches:
        raise InsufficientDataError("Knockout draw produced no fixtures")

    new_status = None
    if current_status == TournamentStatus.qualification_confirmed:
        new_status = apply_transition(current_status, TournamentStatus.active)
    elif current_status != TournamentStatus(tournament.status):
        new_status = current_status

    _mark_generated(result, new_matches, round_number, 1)
    logger.info(
        "Tournament %s: knockout round %d generated for %d qualifiers (%d matches)",
        tournament.id,
        round_number,
        len(qualified),
        len(new_matches),
    )
    return ProgressionOutcome(result=result, new_matches=new_matches, new_status=new_status)


def _manual_draw_required(
    tournament: Tournament, result: TournamentProgressionResult, round_number: int, knockout_index: int
) -> ProgressionOutcome:
    result.manual_draw_required = True
    result.manual_draw_round_number = round_number
    result.knockout_round_index = knockout_index
    logger.info("Tournament %s: round %d must be drawn by the organiser", tournament.id, round_number)
    return ProgressionOutcome(result=result)


def _mark_generated(
    result: TournamentProgressionResult,
    new_matches: List[Match],
    round_number: int,
    knockout_index: Optional[int] = None,
) -> None:
    result.next_round_generated = True
    result.matches_generated = len(new_matches)
    result.round_number = round_number
    result.knockout_round_index = knockout_index


def _finalize(snapshot: TournamentSnapshot, result: TournamentProgressionResult, winner_id: int) -> ProgressionOutcome:
    tournament = snapshot.tournament
    new_status = apply_transition(tournament.status, TournamentStatus.completed)

    result.tournament_finalized = True
    result.winner_team_id = winner_id
    result.winner_team_name = snapshot.team_names.get(winner_id)

    logger.info("Tournament %s finished; winner team %s", tournament.id, winner_id)
    return ProgressionOutcome(result=result, new_status=new_status, winner_team_id=winner_id)


# ============================================================================
# Organiser Operations
# ============================================================================


def _approved_team_ids(registrations: Sequence[TeamRegistration]) -> List[int]:
    team_ids = [r.team_id for r in registrations if r.status == RegistrationStatus.approved]
    if len(team_ids) < 2:
        raise ConfigurationError(f"At least two approved teams are required, got {len(team_ids)}")
    return team_ids


def _initial_fixtures(
    tournament: Tournament,
    team_ids: Sequence[int],
    rng: random.Random,
    base_date: datetime,
    opening_pair: Optional[Tuple[int, int]],
    new_status: TournamentStatus,
) -> ProgressionOutcome:
    mode = TournamentMode(tournament.mode)
    config = MatchGenerationConfig(
        tournament_id=tournament.id,
        mode=mode,
        base_date=base_date,
        number_of_groups=tournament.number_of_groups,
        opening_team_a_id=opening_pair[0] if opening_pair else None,
        opening_team_b_id=opening_pair[1] if opening_pair else None,
    )
    generated = generate_matches(config, team_ids, rng)

    # Only happens when every group holds a single team
    if not generated.matches:
        raise ConfigurationError(
            f"{len(team_ids)} teams in {tournament.number_of_groups} groups produce no group fixtures; "
            "use fewer groups"
        )

    result = _base_result(tournament)
    first_round = min(m.round_number or 1 for m in generated.matches)
    _mark_generated(result, generated.matches, first_round, 1 if mode in KNOCKOUT_MODES else None)

    logger.info(
        "Tournament %s started: %d teams, %d matches, mode=%s",
        tournament.id,
        len(team_ids),
        len(generated.matches),
        mode.value,
    )
    return ProgressionOutcome(
        result=result,
        new_matches=generated.matches,
        new_status=new_status,
        group_assignments=generated.group_assignments,
    )


def start_tournament(
    tournament: Tournament,
    registrations: Sequence[TeamRegistration],
    rng: random.Random,
    base_date: datetime,
) -> ProgressionOutcome:
    """
    Generate the initial fixtures and activate the tournament.

    Only approved registrations take part, in registration order (the
    generator shuffles). Group assignments are returned for group formats.

    Raises:
        StateTransitionError: Tournament cannot become active from its status
        ConfigurationError: Fewer than two approved teams, invalid opening pair,
            or a group split that leaves no fixtures to play
    """
    new_status = apply_transition(tournament.status, TournamentStatus.active)
    team_ids = _approved_team_ids(registrations)
    opening_pair = (
        (tournament.opening_team_a_id, tournament.opening_team_b_id) if tournament.has_opening_pair else None
    )
    return _initial_fixtures(tournament, team_ids, rng, base_date, opening_pair, new_status)


def request_opening_match_selection(tournament: Tournament) -> ProgressionOutcome:
    """
    Hold a closed tournament until the organiser picks the opening match.

    Raises:
        StateTransitionError: Tournament is not registration_closed
    """
    new_status = apply_transition(tournament.status, TournamentStatus.waiting_for_opening_match_selection)
    logger.info("Tournament %s: waiting for the organiser to pick the opening match", tournament.id)
    return ProgressionOutcome(result=_base_result(tournament), new_status=new_status)


def set_opening_match(
    tournament: Tournament,
    registrations: Sequence[TeamRegistration],
    home_team_id: int,
    away_team_id: int,
    rng: random.Random,
    base_date: datetime,
) -> ProgressionOutcome:
    """
    Record the organiser's opening match, generate the fixtures around it and activate the tournament.

    Raises:
        StateTransitionError: Tournament is not waiting for the opening match selection
        ConfigurationError: Home and away are the same team, either team is not
            approved, or the fixtures cannot be generated
    """
    status = TournamentStatus(tournament.status)
    if status != TournamentStatus.waiting_for_opening_match_selection:
        raise StateTransitionError(
            status,
            TournamentStatus.active,
            f"Tournament {tournament.id} is not waiting for an opening match selection",
        )

    if home_team_id == away_team_id:
        raise ConfigurationError("The opening match needs two different teams")

    team_ids = _approved_team_ids(registrations)
    for team_id in (home_team_id, away_team_id):
        if team_id not in team_ids:
            raise ConfigurationError(f"Team {team_id} is not an approved team of tournament {tournament.id}")

    new_status = apply_transition(status, TournamentStatus.active)
    outcome = _initial_fixtures(tournament, team_ids, rng, base_date, (home_team_id, away_team_id), new_status)
    outcome.opening_team_ids = (home_team_id, away_team_id)
    logger.info("Tournament %s: opening match %s vs %s", tournament.id, home_team_id, away_team_id)
    return outcome

def confirm_manual_qualification(
    snapshot: TournamentSnapshot,
    selections: Sequence[QualificationSelection],
    rng: random.Random,
    manual_draw_gate: Optional[ManualDrawGate] = None,
) -> ProgressionOutcome:
    """
    Record the organiser's qualifiers and draw knockout round 1 (unless it must be drawn by hand).

    Raises:
        StateTransitionError: Tournament is not waiting for manual qualification
        ConfigurationError: Empty, duplicate or foreign selections, or fewer than two teams
    """
    tournament = snapshot.tournament
    if not requires_manual_qualification(tournament.scheduling_mode, tournament.status):
        raise StateTransitionError(
            tournament.status,
            TournamentStatus.qualification_confirmed,
            f"Tournament {tournament.id} is not waiting for manual qualification",
        )

    if not selections:
        raise ConfigurationError("At least one group selection is required")

    approved_groups = {
        r.team_id: r.group_id for r in snapshot.registrations if r.status == RegistrationStatus.approved
    }

    qualified: List[QualifiedTeam] = []
    seen = set()
    for selection in selections:
        for position, team_id in enumerate(selection.qualified_team_ids, start=1):
            if team_id in seen:
                raise ConfigurationError(f"Team {team_id} was selected more than once")
            if team_id not in approved_groups or approved_groups[team_id] != selection.group_id:
                raise ConfigurationError(f"Team {team_id} is not an approved team in group {selection.group_id}")
            seen.add(team_id)
            qualified.append(QualifiedTeam(team_id, selection.group_id, position))

    if len(qualified) < 2:
        raise ConfigurationError("At least two teams must qualify for the knockout stage")

    confirmed = apply_transition(tournament.status, TournamentStatus.qualification_confirmed)
    logger.info("Tournament %s: organiser confirmed %d qualifiers", tournament.id, len(qualified))

    result = _base_result(tournament)
    result.groups_finished = True
    gate = manual_draw_gate or _default_gate(tournament)

    outcome = _generate_first_knockout_round(snapshot, qualified, rng, gate, result, confirmed)
    if outcome.new_status is None:
        outcome.new_status = confirmed
    outcome.qualified_team_ids = [q.team_id for q in qualified]
    return outcome


def submit_manual_round(
    snapshot: TournamentSnapshot,
    pairings: Sequence[ManualDrawPairing],
    round_number: int,
) -> ProgressionOutcome:
    """
    Create a knockout round from organiser-drawn pairings.

    Raises:
        StateTransitionError: Tournament is neither active nor qualification_confirmed
        ConfigurationError: Round is drawn automatically, already exists, previous
            round unfinished, or the pairings are empty, repeated or self-paired
    """
    tournament = snapshot.tournament
    status = TournamentStatus(tournament.status)
    if status not in (TournamentStatus.active, TournamentStatus.qualification_confirmed):
        raise StateTransitionError(
            status,
            TournamentStatus.active,
            f"Tournament {tournament.id} must be active or have confirmed qualification to add a round",
        )

    # Round 1 after confirmed qualification is never the final, even with a single tie
    is_final_round = len(pairings) == 1 and status != TournamentStatus.qualification_confirmed
    if not requires_manual_draw(tournament.scheduling_mode, round_number, is_final_round):
        if is_final_round:
            raise ConfigurationError("The final is generated automatically")
        raise ConfigurationError("This tournament draws its rounds automatically")

    knockout = _knockout_matches(snapshot.matches)
    if any(m.round_number == round_number for m in knockout):
        raise ConfigurationError(f"Knockout round {round_number} already has matches")

    earlier = [m for m in knockout if (m.round_number or 0) < round_number]
    if earlier:
        previous_round = max(m.round_number or 0 for m in earlier)
        if not all(m.is_finished for m in earlier if (m.round_number or 0) == previous_round):
            raise ConfigurationError(f"Knockout round {previous_round} is not finished yet")

    if not pairings:
        raise ConfigurationError("At least one pairing is required")

    participants = [team_id for p in pairings for team_id in (p.home_team_id, p.away_team_id)]
    if any(p.home_team_id == p.away_team_id for p in pairings):
        raise ConfigurationError("A team cannot play itself")
    if len(participants) != len(set(participants)):
        raise ConfigurationError("A team appears in more than one pairing")

    default_stage = STAGE_SEMI_FINAL if len(pairings) == 2 else STAGE_KNOCKOUT
    new_matches = generate_manual_knockout(
        tournament.id,
        [
            ManualPairing(p.home_team_id, p.away_team_id, round_number, p.stage_name or default_stage)
            for p in pairings
        ],
        _is_home_away(tournament),
        snapshot.now + timedelta(days=settings.KNOCKOUT_LEAD_DAYS),
    )

    new_status = None
    if status == TournamentStatus.qualification_confirmed:
        new_status = apply_transition(status, TournamentStatus.active)

    result = _base_result(tournament)
    _mark_generated(result, new_matches, round_number, _knockout_round_index(knockout, round_number))
    logger.info(
        "Tournament %s: organiser drew round %d (%d pairings)", tournament.id, round_number, len(pairings)
    )
    return ProgressionOutcome(result=result, new_matches=new_matches, new_status=new_status)
