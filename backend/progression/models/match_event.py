from enum import Enum
from typing import TYPE_CHECKING, Optional

from sqlalchemy import String
from sqlmodel import Column, Field, Relationship, SQLModel

if TYPE_CHECKING:
    from progression.models.match import Match


class MatchEventType(str, Enum):
    goal = "goal"
    yellow_card = "yellow_card"
    red_card = "red_card"


class MatchEvent(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    match_id: int = Field(foreign_key="match.id", index=True)
    team_id: int = Field(foreign_key="team.id")
    event_type: MatchEventType = Field(sa_column=Column(String, nullable=False))
    minute: Optional[int] = Field(default=None)

    # Relationships
    match: "Match" = Relationship(back_populates="events")
