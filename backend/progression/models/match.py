from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import String
from sqlmodel import Column, Field, Relationship, SQLModel

if TYPE_CHECKING:
    from progression.models.match_event import MatchEvent
    from progression.models.tournament import Tournament


class MatchStatus(str, Enum):
    scheduled = "scheduled"
    live = "live"
    finished = "finished"
    postponed = "postponed"
    cancelled = "cancelled"


STAGE_LEAGUE = "League"
STAGE_GROUP = "Group Stage"
STAGE_ROUND_ONE = "Round 1"
STAGE_KNOCKOUT = "Knockout"
STAGE_SEMI_FINAL = "Semi-final"
STAGE_FINAL = "Final"

# Stages whose results feed the standings table
STANDINGS_STAGES = frozenset({STAGE_LEAGUE, STAGE_GROUP})


class Match(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    tournament_id: int = Field(foreign_key="tournament.id", index=True)
    home_team_id: int = Field(foreign_key="team.id")
    away_team_id: int = Field(foreign_key="team.id")
    home_score: int = Field(default=0)
    away_score: int = Field(default=0)
    status: MatchStatus = Field(default=MatchStatus.scheduled, sa_column=Column(String, nullable=False))

    group_id: Optional[int] = Field(default=None)  # 1-based group; None for league and knockout
    round_number: Optional[int] = Field(default=None)  # matchday for league/groups, round for knockout
    stage_name: Optional[str] = Field(default=None)  # "League" | "Group Stage" | "Round 1" | "Knockout" | "Final"
    is_opening_match: bool = Field(default=False)
    scheduled_at: Optional[datetime] = Field(default=None)
    created_at: datetime = Field(default_factory=datetime.utcnow)

    # Relationships
    tournament: "Tournament" = Relationship(back_populates="matches")
    events: List["MatchEvent"] = Relationship(back_populates="match")

    @property
    def is_finished(self) -> bool:
        return self.status == MatchStatus.finished

    @property
    def counts_for_standings(self) -> bool:
        """Group or league fixture (knockout fixtures never touch the table)."""
        return self.group_id is not None or self.stage_name in STANDINGS_STAGES

    @property
    def is_knockout(self) -> bool:
        return not self.counts_for_standings
