"""
Progression Runner - SQLModel adapter around the progression orchestrator.

Loads a TournamentSnapshot, calls the pure orchestrator and persists the
ProgressionOutcome in one transaction. No progression rules live here.

Sessions normally come from progression.database.get_session. Caller owns
per-tournament locking. The notifier (if given) is called with the
TournamentProgressionResult only after a successful commit.
"""

import logging
import random
from datetime import datetime
from typing import Callable, List, Optional, Sequence

from sqlalchemy.orm import selectinload
from sqlmodel import Session, select

from progression.models import Match, Team, TeamRegistration, Tournament
from progression.services.progression_orchestrator import (
    ManualDrawPairing,
    ProgressionOutcome,
    QualificationSelection,
    TournamentProgressionResult,
    TournamentSnapshot,
    confirm_manual_qualification,
    on_results_changed,
    request_opening_match_selection,
    set_opening_match,
    start_tournament,
    submit_manual_round,
)

logger = logging.getLogger(__name__)

Notifier = Callable[[TournamentProgressionResult], None]


# ============================================================================
# Load / Apply
# ============================================================================


def _get_tournament(session: Session, tournament_id: int) -> Tournament:
    tournament = session.get(Tournament, tournament_id)
    if not tournament:
        raise ValueError(f"Tournament {tournament_id} not found")
    return tournament


def _registrations(session: Session, tournament_id: int) -> List[TeamRegistration]:
    return list(
        session.exec(
            select(TeamRegistration)
            .where(TeamRegistration.tournament_id == tournament_id)
            .order_by(TeamRegistration.id)
        ).all()
    )


def load_snapshot(session: Session, tournament_id: int, now: Optional[datetime] = None) -> TournamentSnapshot:
    """
    Load everything the orchestrator reads for one tournament.

    Raises:
        ValueError: Tournament does not exist
    """
    tournament = _get_tournament(session, tournament_id)

    matches = list(
        session.exec(
            select(Match)
            .where(Match.tournament_id == tournament_id)
            .options(selectinload(Match.events))
            .order_by(Match.id)
        ).all()
    )
    registrations = _registrations(session, tournament_id)

    team_ids = {r.team_id for r in registrations}
    team_names = {}
    if team_ids:
        teams = session.exec(select(Team).where(Team.id.in_(team_ids))).all()  # type: ignore[attr-defined]
        team_names = {team.id: team.name for team in teams}

    return TournamentSnapshot(
        tournament=tournament,
        matches=matches,
        registrations=registrations,
        team_names=team_names,
        now=now or datetime.utcnow(),
    )


def apply_outcome(session: Session, tournament: Tournament, outcome: ProgressionOutcome) -> None:
    """
    Stage an outcome on the session (no commit).

    Adds new matches, writes status/winner, the opening pair, group
    assignments and qualification flags.
    """
    for match in outcome.new_matches:
        session.add(match)

    if outcome.new_status is not None:
        logger.info("Tournament %s: %s -> %s", tournament.id, tournament.status, outcome.new_status.value)
        tournament.status = outcome.new_status

    if outcome.winner_team_id is not None:
        tournament.winner_team_id = outcome.winner_team_id

    if outcome.opening_team_ids is not None:
        tournament.opening_team_a_id, tournament.opening_team_b_id = outcome.opening_team_ids

    if outcome.group_assignments or outcome.qualified_team_ids:
        qualified = set(outcome.qualified_team_ids)
        for registration in _registrations(session, tournament.id):
            if registration.team_id in outcome.group_assignments:
                registration.group_id = outcome.group_assignments[registration.team_id]
            if registration.team_id in qualified:
                registration.qualified_for_knockout = True
            session.add(registration)

    tournament.updated_at = datetime.utcnow()
    session.add(tournament)
    session.flush()


# ============================================================================
# Transactional Entry Points
# ============================================================================


def _run(
    session: Session,
    tournament_id: int,
    step: Callable[[], ProgressionOutcome],
    notifier: Optional[Notifier],
) -> TournamentProgressionResult:
    """Run one orchestrator step and persist it as a single transaction."""
    try:
        outcome = step()
        if outcome.has_changes:
            apply_outcome(session, _get_tournament(session, tournament_id), outcome)
        session.commit()
    except Exception:
        session.rollback()
        logger.exception("Progression failed for tournament %s, transaction rolled back", tournament_id)
        raise

    if notifier is not None:
        notifier(outcome.result)
    return outcome.result


def run_progression(
    session: Session,
    tournament_id: int,
    rng: Optional[random.Random] = None,
    notifier: Optional[Notifier] = None,
) -> TournamentProgressionResult:
    """Progress a tournament after a result change (call once per recorded result)."""
    rng = rng or random.Random()
    return _run(
        session,
        tournament_id,
        lambda: on_results_changed(load_snapshot(session, tournament_id), rng),
        notifier,
    )


def run_start_tournament(
    session: Session,
    tournament_id: int,
    rng: Optional[random.Random] = None,
    base_date: Optional[datetime] = None,
) -> TournamentProgressionResult:
    """Generate initial fixtures (and groups) and activate the tournament."""
    rng = rng or random.Random()

    def step() -> ProgressionOutcome:
        tournament = _get_tournament(session, tournament_id)
        return start_tournament(
            tournament,
            _registrations(session, tournament_id),
            rng,
            base_date or datetime.utcnow(),
        )

    return _run(session, tournament_id, step, None)


def run_confirm_manual_qualification(
    session: Session,
    tournament_id: int,
    selections: Sequence[QualificationSelection],
    rng: Optional[random.Random] = None,
    notifier: Optional[Notifier] = None,
) -> TournamentProgressionResult:
    rng = rng or random.Random()
    return _run(
        session,
        tournament_id,
        lambda: confirm_manual_qualification(load_snapshot(session, tournament_id), selections, rng),
        notifier,
    )


def run_manual_round(
    session: Session,
    tournament_id: int,
    pairings: Sequence[ManualDrawPairing],
    round_number: int,
    notifier: Optional[Notifier] = None,
) -> TournamentProgressionResult:
    return _run(
        session,
        tournament_id,
        lambda: submit_manual_round(load_snapshot(session, tournament_id), pairings, round_number),
        notifier,
    )


def run_request_opening_match_selection(session: Session, tournament_id: int) -> TournamentProgressionResult:
    return _run(
        session,
        tournament_id,
        lambda: request_opening_match_selection(_get_tournament(session, tournament_id)),
        None,
    )


def run_set_opening_match(
    session: Session,
    tournament_id: int,
    home_team_id: int,
    away_team_id: int,
    rng: Optional[random.Random] = None,
    base_date: Optional[datetime] = None,
) -> TournamentProgressionResult:
    """Store the organiser's opening match and generate the tournament's fixtures."""
    rng = rng or random.Random()

    def step() -> ProgressionOutcome:
        return set_opening_match(
            _get_tournament(session, tournament_id),
            _registrations(session, tournament_id),
            home_team_id,
            away_team_id,
            rng,
            base_date or datetime.utcnow(),
        )

    return _run(session, tournament_id, step, None)
