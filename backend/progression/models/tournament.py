from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import String
from sqlmodel import Column, Field, Relationship, SQLModel

if TYPE_CHECKING:
    from progression.models.match import Match
    from progression.models.registration import TeamRegistration


class TournamentStatus(str, Enum):
    draft = "draft"
    registration_open = "registration_open"
    registration_closed = "registration_closed"
    waiting_for_opening_match_selection = "waiting_for_opening_match_selection"
    active = "active"
    manual_qualification_pending = "manual_qualification_pending"
    qualification_confirmed = "qualification_confirmed"
    completed = "completed"
    cancelled = "cancelled"


class TournamentMode(str, Enum):
    league_single = "league_single"
    league_home_away = "league_home_away"
    knockout_single = "knockout_single"
    knockout_home_away = "knockout_home_away"
    groups_knockout_single = "groups_knockout_single"
    groups_knockout_home_away = "groups_knockout_home_away"


class SchedulingMode(str, Enum):
    random = "random"
    manual = "manual"


class TieBreakStrategy(str, Enum):
    first_leg_home = "first_leg_home"  # level ties go to the (first-leg) home team
    away_goals = "away_goals"  # two-leg ties: away goals first, then first-leg home


LEAGUE_MODES = frozenset({TournamentMode.league_single, TournamentMode.league_home_away})
GROUP_MODES = frozenset({TournamentMode.groups_knockout_single, TournamentMode.groups_knockout_home_away})
KNOCKOUT_MODES = frozenset({TournamentMode.knockout_single, TournamentMode.knockout_home_away})
HOME_AWAY_MODES = frozenset(
    {
        TournamentMode.league_home_away,
        TournamentMode.knockout_home_away,
        TournamentMode.groups_knockout_home_away,
    }
)


class Tournament(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    status: TournamentStatus = Field(default=TournamentStatus.draft, sa_column=Column(String, nullable=False))
    mode: TournamentMode = Field(sa_column=Column(String, nullable=False))
    number_of_groups: int = Field(default=1)
    scheduling_mode: SchedulingMode = Field(default=SchedulingMode.random, sa_column=Column(String, nullable=False))
    tie_break_strategy: TieBreakStrategy = Field(
        default=TieBreakStrategy.first_leg_home, sa_column=Column(String, nullable=False)
    )

    # Organiser-preselected opening match (both or neither)
    opening_team_a_id: Optional[int] = Field(default=None, foreign_key="team.id")
    opening_team_b_id: Optional[int] = Field(default=None, foreign_key="team.id")

    winner_team_id: Optional[int] = Field(default=None, foreign_key="team.id")
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow, sa_column_kwargs={"onupdate": datetime.utcnow})

    # Relationships
    matches: List["Match"] = Relationship(back_populates="tournament")
    registrations: List["TeamRegistration"] = Relationship(back_populates="tournament")

    @property
    def has_opening_pair(self) -> bool:
        return self.opening_team_a_id is not None and self.opening_team_b_id is not None
