"""
Tournament lifecycle state machine.

Status changes go through one static transition table. validate_transition
reports, apply_transition enforces. Terminal states (completed, cancelled)
allow nothing.
"""

from typing import Dict, FrozenSet, Optional

from progression.exceptions import StateTransitionError
from progression.models.tournament import SchedulingMode, TournamentStatus

ALLOWED_TRANSITIONS: Dict[TournamentStatus, FrozenSet[TournamentStatus]] = {
    TournamentStatus.draft: frozenset(
        {
            TournamentStatus.registration_open,
            TournamentStatus.cancelled,
        }
    ),
    TournamentStatus.registration_open: frozenset(
        {
            TournamentStatus.registration_closed,
            TournamentStatus.active,
            TournamentStatus.cancelled,
        }
    ),
    TournamentStatus.registration_closed: frozenset(
        {
            TournamentStatus.registration_open,
            TournamentStatus.waiting_for_opening_match_selection,
            TournamentStatus.active,
            TournamentStatus.cancelled,
        }
    ),
    TournamentStatus.waiting_for_opening_match_selection: frozenset(
        {
            TournamentStatus.active,
            TournamentStatus.cancelled,
        }
    ),
    TournamentStatus.active: frozenset(
        {
            TournamentStatus.manual_qualification_pending,
            TournamentStatus.completed,
            TournamentStatus.cancelled,
        }
    ),
    TournamentStatus.manual_qualification_pending: frozenset(
        {
            TournamentStatus.qualification_confirmed,
            TournamentStatus.cancelled,
        }
    ),
    TournamentStatus.qualification_confirmed: frozenset(
        {
            TournamentStatus.active,
            TournamentStatus.completed,
            TournamentStatus.cancelled,
        }
    ),
    TournamentStatus.completed: frozenset(),
    TournamentStatus.cancelled: frozenset(),
}

TERMINAL_STATUSES = frozenset({TournamentStatus.completed, TournamentStatus.cancelled})


def _coerce(status) -> Optional[TournamentStatus]:
    try:
        return TournamentStatus(status)
    except ValueError:
        return None


def validate_transition(current, requested) -> Optional[str]:
    """
    Check a status change against the transition table.

    Returns:
        None if allowed, otherwise an error message
    """
    current_status = _coerce(current)
    requested_status = _coerce(requested)

    if current_status is None:
        return f"Unknown tournament status '{current}'"
    if requested_status is None:
        return f"Unknown tournament status '{requested}'"

    if requested_status not in ALLOWED_TRANSITIONS[current_status]:
        allowed = sorted(s.value for s in ALLOWED_TRANSITIONS[current_status])
        allowed_text = ", ".join(allowed) if allowed else "none"
        return (
            f"Cannot change tournament status from '{current_status.value}' to "
            f"'{requested_status.value}' (allowed: {allowed_text})"
        )

    return None


def apply_transition(current, requested) -> TournamentStatus:
    """Return the new status or raise StateTransitionError."""
    error = validate_transition(current, requested)
    if error:
        raise StateTransitionError(current, requested, error)
    return TournamentStatus(requested)


def is_terminal(status) -> bool:
    return _coerce(status) in TERMINAL_STATUSES


def requires_manual_draw(scheduling_mode, round_number: int, is_final_round: bool) -> bool:
    """Manual scheduling draws every knockout round by hand except the final."""
    return SchedulingMode(scheduling_mode) == SchedulingMode.manual and not is_final_round


def requires_manual_qualification(scheduling_mode, status) -> bool:
    return (
        SchedulingMode(scheduling_mode) == SchedulingMode.manual
        and _coerce(status) == TournamentStatus.manual_qualification_pending
    )
