"""
Tests for the progression orchestrator: group completion, knockout rounds,
finalization, manual qualification and manual draws.
"""

import random
from datetime import datetime

import pytest

from progression.exceptions import ConfigurationError, StateTransitionError
from progression.models.match import Match, MatchStatus
from progression.models.registration import RegistrationStatus, TeamRegistration
from progression.models.tournament import SchedulingMode, Tournament, TournamentMode, TournamentStatus
from progression.services.progression_orchestrator import (
    ManualDrawPairing,
    QualificationSelection,
    TournamentSnapshot,
    confirm_manual_qualification,
    on_results_changed,
    request_opening_match_selection,
    set_opening_match,
    start_tournament,
    submit_manual_round,
)
from progression.services.standings import calculate_standings

NOW = datetime(2026, 6, 1, 12, 0)
BASE = datetime(2026, 6, 10, 18, 0)


def _tournament(mode, status=TournamentStatus.registration_open, scheduling=SchedulingMode.random, groups=1):
    return Tournament(
        id=1,
        name="Spring Cup",
        mode=mode,
        status=status,
        scheduling_mode=scheduling,
        number_of_groups=groups,
    )


def _registrations(team_ids):
    return [
        TeamRegistration(id=i, tournament_id=1, team_id=team_id, status=RegistrationStatus.approved)
        for i, team_id in enumerate(team_ids, start=1)
    ]


def _snapshot(tournament, matches, registrations):
    names = {r.team_id: f"Club {r.team_id}" for r in registrations}
    return TournamentSnapshot(tournament, list(matches), list(registrations), team_names=names, now=NOW)


def _apply(outcome, tournament, registrations, matches):
    """Persist an outcome in memory the way the runner does."""
    matches.extend(outcome.new_matches)
    if outcome.new_status is not None:
        tournament.status = outcome.new_status
    if outcome.winner_team_id is not None:
        tournament.winner_team_id = outcome.winner_team_id
    for registration in registrations:
        if registration.team_id in outcome.group_assignments:
            registration.group_id = outcome.group_assignments[registration.team_id]
        if registration.team_id in outcome.qualified_team_ids:
            registration.qualified_for_knockout = True


def _finish(match, home_score, away_score):
    match.home_score = home_score
    match.away_score = away_score
    match.status = MatchStatus.finished


def _start(tournament, team_ids, seed=1):
    registrations = _registrations(team_ids)
    matches = []
    outcome = start_tournament(tournament, registrations, random.Random(seed), BASE)
    _apply(outcome, tournament, registrations, matches)
    return registrations, matches


# ============================================================================
# End to end
# ============================================================================


def test_groups_then_knockout_end_to_end():
    tournament = _tournament(TournamentMode.groups_knockout_single, groups=2)
    registrations, matches = _start(tournament, [1, 2, 3, 4], seed=3)

    assert tournament.status == TournamentStatus.active
    assert len(matches) == 2

    first, second = matches
    _finish(first, 1, 0)
    _finish(second, 0, 1)
    group_winners = {first.home_team_id, second.away_team_id}

    standings = calculate_standings(matches, registrations)
    assert {s.team_id for s in standings if s.rank == 1} == group_winners

    outcome = on_results_changed(_snapshot(tournament, matches, registrations), random.Random(5))

    assert outcome.result.groups_finished
    assert outcome.result.next_round_generated
    assert set(outcome.qualified_team_ids) == group_winners
    assert len(outcome.new_matches) == 1
    final = outcome.new_matches[0]
    assert {final.home_team_id, final.away_team_id} == group_winners
    assert final.stage_name == "Final"
    assert final.round_number == 2
    assert outcome.result.round_number == 2
    assert outcome.result.knockout_round_index == 1

    _apply(outcome, tournament, registrations, matches)
    assert registrations[0].group_id is not None

    _finish(final, 0, 2)
    outcome = on_results_changed(_snapshot(tournament, matches, registrations), random.Random(5))

    assert outcome.result.tournament_finalized
    assert outcome.new_status == TournamentStatus.completed
    assert outcome.winner_team_id == final.away_team_id
    assert outcome.result.winner_team_name == f"Club {final.away_team_id}"


def test_league_completes_with_standings_leader():
    tournament = _tournament(TournamentMode.league_single)
    registrations, matches = _start(tournament, [1, 2, 3])

    # team 2 wins both of its matches, 1 v 3 is drawn
    for match in matches:
        if match.home_team_id == 2:
            _finish(match, 3, 0)
        elif match.away_team_id == 2:
            _finish(match, 0, 3)
        else:
            _finish(match, 1, 1)

    outcome = on_results_changed(_snapshot(tournament, matches, registrations), random.Random(1))

    assert outcome.result.tournament_finalized
    assert outcome.winner_team_id == 2
    assert outcome.new_status == TournamentStatus.completed


def test_league_in_progress_does_nothing():
    tournament = _tournament(TournamentMode.league_home_away)
    registrations, matches = _start(tournament, [1, 2, 3, 4])
    assert len(matches) == 12

    _finish(matches[0], 2, 0)
    outcome = on_results_changed(_snapshot(tournament, matches, registrations), random.Random(1))

    assert not outcome.has_changes
    assert not outcome.result.tournament_finalized


# ============================================================================
# No-ops and failures
# ============================================================================


class TestNoOps:
    def test_terminal_tournament(self):
        tournament = _tournament(TournamentMode.knockout_single)
        registrations, matches = _start(tournament, [1, 2])
        _finish(matches[0], 1, 0)
        tournament.status = TournamentStatus.cancelled

        outcome = on_results_changed(_snapshot(tournament, matches, registrations), random.Random(1))

        assert not outcome.has_changes
        assert outcome.result.tournament_id == 1

    def test_no_matches(self):
        tournament = _tournament(TournamentMode.knockout_single, status=TournamentStatus.active)
        outcome = on_results_changed(_snapshot(tournament, [], _registrations([1, 2])), random.Random(1))

        assert not outcome.has_changes

    def test_unfinished_group_stage(self):
        tournament = _tournament(TournamentMode.groups_knockout_single, groups=2)
        registrations, matches = _start(tournament, [1, 2, 3, 4, 5, 6])
        _finish(matches[0], 1, 0)

        outcome = on_results_changed(_snapshot(tournament, matches, registrations), random.Random(1))

        assert not outcome.result.groups_finished
        assert outcome.new_matches == []

    def test_snapshot_is_not_mutated(self):
        tournament = _tournament(TournamentMode.knockout_single)
        registrations, matches = _start(tournament, [1, 2, 3, 4])
        for match in matches:
            _finish(match, 2, 1)
        before = [(m.home_team_id, m.away_team_id, m.status) for m in matches]

        snapshot = _snapshot(tournament, matches, registrations)
        on_results_changed(snapshot, random.Random(1))

        assert [(m.home_team_id, m.away_team_id, m.status) for m in snapshot.matches] == before
        assert tournament.status == TournamentStatus.active


def test_too_few_confirmed_qualifiers_is_logged_not_raised():
    tournament = _tournament(TournamentMode.groups_knockout_single, groups=2)
    registrations, matches = _start(tournament, [1, 2, 3, 4])
    for match in matches:
        _finish(match, 1, 0)
    tournament.status = TournamentStatus.qualification_confirmed
    registrations[0].qualified_for_knockout = True

    outcome = on_results_changed(_snapshot(tournament, matches, registrations), random.Random(1))

    assert not outcome.has_changes
    assert not outcome.result.groups_finished


def test_illegal_transition_propagates():
    tournament = _tournament(TournamentMode.league_single)
    registrations, matches = _start(tournament, [1, 2])
    _finish(matches[0], 1, 0)
    tournament.status = TournamentStatus.manual_qualification_pending

    with pytest.raises(StateTransitionError):
        on_results_changed(_snapshot(tournament, matches, registrations), random.Random(1))


# ============================================================================
# Knockout progression
# ============================================================================


class TestKnockoutRounds:
    def test_round_one_to_final_to_winner(self):
        tournament = _tournament(TournamentMode.knockout_single)
        registrations, matches = _start(tournament, [1, 2, 3, 4])
        for match in matches:
            _finish(match, 2, 1)
        winners = [m.home_team_id for m in matches]

        outcome = on_results_changed(_snapshot(tournament, matches, registrations), random.Random(1))

        assert outcome.result.next_round_generated
        assert len(outcome.new_matches) == 1
        final = outcome.new_matches[0]
        assert (final.home_team_id, final.away_team_id) == tuple(winners)
        assert final.stage_name == "Final"
        assert final.round_number == 2
        assert outcome.result.knockout_round_index == 2

        _apply(outcome, tournament, registrations, matches)
        _finish(final, 1, 1)
        outcome = on_results_changed(_snapshot(tournament, matches, registrations), random.Random(1))

        assert outcome.result.tournament_finalized
        assert outcome.winner_team_id == winners[0]

    def test_home_away_rounds_add_return_legs_except_final(self):
        tournament = _tournament(TournamentMode.knockout_home_away)
        registrations, matches = _start(tournament, list(range(1, 9)))
        assert len(matches) == 8
        for match in matches:
            _finish(match, 1, 0)  # level aggregates: first-leg home goes through

        outcome = on_results_changed(_snapshot(tournament, matches, registrations), random.Random(1))
        assert len(outcome.new_matches) == 4
        assert all(m.stage_name == "Knockout" and m.round_number == 2 for m in outcome.new_matches)

        _apply(outcome, tournament, registrations, matches)
        for match in outcome.new_matches:
            _finish(match, 3, 0)

        outcome = on_results_changed(_snapshot(tournament, matches, registrations), random.Random(1))
        assert len(outcome.new_matches) == 1
        assert outcome.new_matches[0].stage_name == "Final"

    def test_round_in_progress_waits(self):
        tournament = _tournament(TournamentMode.knockout_single)
        registrations, matches = _start(tournament, [1, 2, 3, 4])
        _finish(matches[0], 1, 0)

        outcome = on_results_changed(_snapshot(tournament, matches, registrations), random.Random(1))

        assert not outcome.has_changes

    def test_custom_gate_blocks_generation(self):
        tournament = _tournament(TournamentMode.knockout_single)
        registrations, matches = _start(tournament, list(range(1, 9)))
        for match in matches:
            _finish(match, 1, 0)

        outcome = on_results_changed(
            _snapshot(tournament, matches, registrations),
            random.Random(1),
            manual_draw_gate=lambda round_number, is_final: True,
        )

        assert outcome.result.manual_draw_required
        assert outcome.result.manual_draw_round_number == 2
        assert outcome.new_matches == []


# ============================================================================
# Manual scheduling
# ============================================================================


def _manual_groups_finished(team_ids, groups=2):
    tournament = _tournament(TournamentMode.groups_knockout_single, scheduling=SchedulingMode.manual, groups=groups)
    registrations, matches = _start(tournament, team_ids)
    for match in matches:
        _finish(match, 1, 0)
    return tournament, registrations, matches


def _members(registrations, group_id):
    return [r.team_id for r in registrations if r.group_id == group_id]


class TestManualQualification:
    def test_groups_finished_waits_for_organiser(self):
        tournament, registrations, matches = _manual_groups_finished(list(range(1, 9)))

        outcome = on_results_changed(_snapshot(tournament, matches, registrations), random.Random(1))

        assert outcome.result.groups_finished
        assert outcome.result.manual_qualification_required
        assert outcome.new_status == TournamentStatus.manual_qualification_pending
        assert outcome.new_matches == []

        _apply(outcome, tournament, registrations, matches)
        again = on_results_changed(_snapshot(tournament, matches, registrations), random.Random(1))

        assert again.result.manual_qualification_required
        assert again.new_status is None

    def test_two_qualifiers_go_straight_to_final(self):
        tournament, registrations, matches = _manual_groups_finished([1, 2, 3, 4])
        tournament.status = TournamentStatus.manual_qualification_pending
        group_one, group_two = _members(registrations, 1), _members(registrations, 2)

        outcome = confirm_manual_qualification(
            _snapshot(tournament, matches, registrations),
            [
                QualificationSelection(group_id=1, qualified_team_ids=[group_one[0]]),
                QualificationSelection(group_id=2, qualified_team_ids=[group_two[0]]),
            ],
            random.Random(1),
        )

        assert outcome.qualified_team_ids == [group_one[0], group_two[0]]
        assert outcome.new_status == TournamentStatus.active
        assert len(outcome.new_matches) == 1
        assert outcome.new_matches[0].stage_name == "Final"

    def test_four_qualifiers_need_a_manual_draw(self):
        tournament, registrations, matches = _manual_groups_finished(list(range(1, 9)))
        tournament.status = TournamentStatus.manual_qualification_pending
        group_one, group_two = _members(registrations, 1), _members(registrations, 2)

        outcome = confirm_manual_qualification(
            _snapshot(tournament, matches, registrations),
            [
                QualificationSelection(group_id=1, qualified_team_ids=group_one[:2]),
                QualificationSelection(group_id=2, qualified_team_ids=group_two[:2]),
            ],
            random.Random(1),
        )

        assert outcome.new_status == TournamentStatus.qualification_confirmed
        assert outcome.result.manual_draw_required
        # groups of four play three matchdays
        assert outcome.result.manual_draw_round_number == 4
        assert outcome.result.knockout_round_index == 1
        assert outcome.new_matches == []

        _apply(outcome, tournament, registrations, matches)
        drawn = submit_manual_round(
            _snapshot(tournament, matches, registrations),
            [
                ManualDrawPairing(home_team_id=group_one[0], away_team_id=group_two[1]),
                ManualDrawPairing(home_team_id=group_two[0], away_team_id=group_one[1]),
            ],
            round_number=4,
        )

        assert drawn.new_status == TournamentStatus.active
        assert [m.stage_name for m in drawn.new_matches] == ["Semi-final", "Semi-final"]
        assert drawn.result.matches_generated == 2
        assert drawn.result.knockout_round_index == 1

    def test_not_pending(self):
        tournament, registrations, matches = _manual_groups_finished([1, 2, 3, 4])

        with pytest.raises(StateTransitionError):
            confirm_manual_qualification(
                _snapshot(tournament, matches, registrations),
                [QualificationSelection(group_id=1, qualified_team_ids=[1, 2])],
                random.Random(1),
            )

    @pytest.mark.parametrize("case", ["empty", "duplicate", "wrong_group", "single"])
    def test_invalid_selections(self, case):
        tournament, registrations, matches = _manual_groups_finished(list(range(1, 9)))
        tournament.status = TournamentStatus.manual_qualification_pending
        group_one, group_two = _members(registrations, 1), _members(registrations, 2)

        selections = {
            "empty": [],
            "duplicate": [
                QualificationSelection(group_id=1, qualified_team_ids=[group_one[0], group_one[0]]),
            ],
            "wrong_group": [QualificationSelection(group_id=1, qualified_team_ids=[group_one[0], group_two[0]])],
            "single": [QualificationSelection(group_id=1, qualified_team_ids=[group_one[0]])],
        }[case]

        with pytest.raises(ConfigurationError):
            confirm_manual_qualification(_snapshot(tournament, matches, registrations), selections, random.Random(1))


class TestManualDraw:
    def _round_one_finished(self):
        tournament = _tournament(TournamentMode.knockout_single, scheduling=SchedulingMode.manual)
        registrations, matches = _start(tournament, list(range(1, 9)))
        for match in matches:
            _finish(match, 1, 0)
        return tournament, registrations, matches, [m.home_team_id for m in matches]

    def test_manual_rounds_then_automatic_final(self):
        tournament, registrations, matches, winners = self._round_one_finished()

        outcome = on_results_changed(_snapshot(tournament, matches, registrations), random.Random(1))
        assert outcome.result.manual_draw_required
        assert outcome.result.manual_draw_round_number == 2
        assert outcome.new_matches == []

        drawn = submit_manual_round(
            _snapshot(tournament, matches, registrations),
            [
                ManualDrawPairing(home_team_id=winners[0], away_team_id=winners[3]),
                ManualDrawPairing(home_team_id=winners[1], away_team_id=winners[2], stage_name="Quarter-final"),
            ],
            round_number=2,
        )
        assert [m.stage_name for m in drawn.new_matches] == ["Semi-final", "Quarter-final"]
        assert drawn.new_status is None

        _apply(drawn, tournament, registrations, matches)
        for match in drawn.new_matches:
            _finish(match, 0, 1)

        outcome = on_results_changed(_snapshot(tournament, matches, registrations), random.Random(1))
        assert outcome.result.next_round_generated
        final = outcome.new_matches[0]
        assert final.stage_name == "Final"
        assert (final.home_team_id, final.away_team_id) == (winners[3], winners[2])

    def test_round_already_drawn(self):
        tournament, registrations, matches, winners = self._round_one_finished()
        pairings = [
            ManualDrawPairing(home_team_id=winners[0], away_team_id=winners[1]),
            ManualDrawPairing(home_team_id=winners[2], away_team_id=winners[3]),
        ]
        drawn = submit_manual_round(_snapshot(tournament, matches, registrations), pairings, 2)
        _apply(drawn, tournament, registrations, matches)

        with pytest.raises(ConfigurationError):
            submit_manual_round(_snapshot(tournament, matches, registrations), pairings, 2)

    def test_previous_round_unfinished(self):
        tournament, registrations, matches, winners = self._round_one_finished()
        matches[0].status = MatchStatus.live

        with pytest.raises(ConfigurationError):
            submit_manual_round(
                _snapshot(tournament, matches, registrations),
                [
                    ManualDrawPairing(home_team_id=winners[0], away_team_id=winners[1]),
                    ManualDrawPairing(home_team_id=winners[2], away_team_id=winners[3]),
                ],
                2,
            )

    def test_final_is_never_manual(self):
        tournament, registrations, matches, winners = self._round_one_finished()

        with pytest.raises(ConfigurationError):
            submit_manual_round(
                _snapshot(tournament, matches, registrations),
                [ManualDrawPairing(home_team_id=winners[0], away_team_id=winners[1])],
                2,
            )

    @pytest.mark.parametrize("case", ["empty", "self", "repeat"])
    def test_invalid_pairings(self, case):
        tournament, registrations, matches, winners = self._round_one_finished()
        pairings = {
            "empty": [],
            "self": [
                ManualDrawPairing(home_team_id=winners[0], away_team_id=winners[0]),
                ManualDrawPairing(home_team_id=winners[2], away_team_id=winners[3]),
            ],
            "repeat": [
                ManualDrawPairing(home_team_id=winners[0], away_team_id=winners[1]),
                ManualDrawPairing(home_team_id=winners[1], away_team_id=winners[3]),
            ],
        }[case]

        with pytest.raises(ConfigurationError):
            submit_manual_round(_snapshot(tournament, matches, registrations), pairings, 2)

    def test_random_mode_rejects_manual_draw(self):
        tournament = _tournament(TournamentMode.knockout_single)
        registrations, matches = _start(tournament, [1, 2, 3, 4, 5, 6, 7, 8])
        for match in matches:
            _finish(match, 1, 0)

        with pytest.raises(ConfigurationError):
            submit_manual_round(
                _snapshot(tournament, matches, registrations),
                [
                    ManualDrawPairing(home_team_id=matches[0].home_team_id, away_team_id=matches[1].home_team_id),
                    ManualDrawPairing(home_team_id=matches[2].home_team_id, away_team_id=matches[3].home_team_id),
                ],
                2,
            )

    def test_wrong_status(self):
        tournament, registrations, matches, winners = self._round_one_finished()
        tournament.status = TournamentStatus.completed

        with pytest.raises(StateTransitionError):
            submit_manual_round(
                _snapshot(tournament, matches, registrations),
                [ManualDrawPairing(home_team_id=winners[0], away_team_id=winners[1])],
                2,
            )


class TestStartTournament:
    def test_requires_two_approved_teams(self):
        tournament = _tournament(TournamentMode.knockout_single)
        registrations = _registrations([1, 2])
        registrations[1].status = RegistrationStatus.pending_review

        with pytest.raises(ConfigurationError):
            start_tournament(tournament, registrations, random.Random(1), BASE)

    def test_draft_cannot_start(self):
        tournament = _tournament(TournamentMode.knockout_single, status=TournamentStatus.draft)

        with pytest.raises(StateTransitionError):
            start_tournament(tournament, _registrations([1, 2]), random.Random(1), BASE)

    def test_group_assignments_returned(self):
        tournament = _tournament(TournamentMode.groups_knockout_home_away, groups=3)
        outcome = start_tournament(tournament, _registrations(list(range(1, 10))), random.Random(1), BASE)

        assert sorted(outcome.group_assignments) == list(range(1, 10))
        assert set(outcome.group_assignments.values()) == {1, 2, 3}
        assert outcome.new_status == TournamentStatus.active
        assert outcome.result.matches_generated == len(outcome.new_matches) == 18

    def test_single_team_groups_are_rejected(self):
        tournament = _tournament(TournamentMode.groups_knockout_single, groups=4)

        with pytest.raises(ConfigurationError):
            start_tournament(tournament, _registrations([1, 2, 3]), random.Random(1), BASE)
        assert tournament.status == TournamentStatus.registration_open

    def test_knockout_start_is_first_knockout_round(self):
        tournament = _tournament(TournamentMode.knockout_single)
        outcome = start_tournament(tournament, _registrations([1, 2, 3, 4]), random.Random(1), BASE)

        assert outcome.result.round_number == 1
        assert outcome.result.knockout_round_index == 1


# ============================================================================
# Opening match selection
# ============================================================================


def _waiting_for_opening(mode=TournamentMode.knockout_single):
    return _tournament(mode, status=TournamentStatus.waiting_for_opening_match_selection)


class TestOpeningMatchSelection:
    def test_closed_tournament_waits_for_selection(self):
        tournament = _tournament(TournamentMode.knockout_single, status=TournamentStatus.registration_closed)

        outcome = request_opening_match_selection(tournament)

        assert outcome.new_status == TournamentStatus.waiting_for_opening_match_selection
        assert outcome.new_matches == []

    def test_open_tournament_cannot_wait_for_selection(self):
        with pytest.raises(StateTransitionError):
            request_opening_match_selection(_tournament(TournamentMode.knockout_single))

    def test_opening_pair_stored_and_played_first(self):
        tournament = _waiting_for_opening()

        outcome = set_opening_match(tournament, _registrations([1, 2, 3, 4, 5, 6]), 5, 2, random.Random(1), BASE)

        assert outcome.opening_team_ids == (5, 2)
        assert outcome.new_status == TournamentStatus.active
        opening = outcome.new_matches[0]
        assert (opening.home_team_id, opening.away_team_id) == (5, 2)
        assert opening.is_opening_match
        assert opening.scheduled_at == BASE
        assert sum(m.is_opening_match for m in outcome.new_matches) == 1
        assert tournament.opening_team_a_id is None

    def test_opening_pair_placed_in_group_one(self):
        tournament = _tournament(
            TournamentMode.groups_knockout_single,
            status=TournamentStatus.waiting_for_opening_match_selection,
            groups=2,
        )

        outcome = set_opening_match(tournament, _registrations(list(range(1, 9))), 7, 3, random.Random(2), BASE)

        assert outcome.group_assignments[7] == outcome.group_assignments[3] == 1
        first = outcome.new_matches[0]
        assert {first.home_team_id, first.away_team_id} == {7, 3}
        assert first.is_opening_match

    def test_requires_waiting_status(self):
        tournament = _tournament(TournamentMode.knockout_single, status=TournamentStatus.registration_closed)

        with pytest.raises(StateTransitionError):
            set_opening_match(tournament, _registrations([1, 2, 3, 4]), 1, 2, random.Random(1), BASE)

    @pytest.mark.parametrize(
        "home, away",
        [
            (2, 2),  # same team twice
            (1, 9),  # not registered
            (1, 4),  # registration not approved
        ],
    )
    def test_invalid_pair(self, home, away):
        registrations = _registrations([1, 2, 3, 4])
        registrations[3].status = RegistrationStatus.pending_review

        with pytest.raises(ConfigurationError):
            set_opening_match(_waiting_for_opening(), registrations, home, away, random.Random(1), BASE)
