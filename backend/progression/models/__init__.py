from progression.models.match import Match, MatchStatus
from progression.models.match_event import MatchEvent, MatchEventType
from progression.models.registration import RegistrationStatus, TeamRegistration
from progression.models.team import Team
from progression.models.tournament import (
    SchedulingMode,
    TieBreakStrategy,
    Tournament,
    TournamentMode,
    TournamentStatus,
)

__all__ = [
    "Tournament",
    "TournamentStatus",
    "TournamentMode",
    "SchedulingMode",
    "TieBreakStrategy",
    "Team",
    "TeamRegistration",
    "RegistrationStatus",
    "Match",
    "MatchStatus",
    "MatchEvent",
    "MatchEventType",
]
