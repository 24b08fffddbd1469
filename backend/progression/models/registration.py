from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Optional

from sqlalchemy import String
from sqlalchemy import UniqueConstraint as SAUniqueConstraint
from sqlmodel import Column, Field, Relationship, SQLModel

if TYPE_CHECKING:
    from progression.models.tournament import Tournament


class RegistrationStatus(str, Enum):
    approved = "approved"
    pending_review = "pending_review"
    rejected = "rejected"
    withdrawn = "withdrawn"


# Registrations that take part in standings (withdrawn teams keep their history)
STANDINGS_STATUSES = frozenset({RegistrationStatus.approved, RegistrationStatus.withdrawn})


class TeamRegistration(SQLModel, table=True):
    __table_args__ = (SAUniqueConstraint("tournament_id", "team_id", name="uq_registration_tournament_team"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    tournament_id: int = Field(foreign_key="tournament.id", index=True)
    team_id: int = Field(foreign_key="team.id", index=True)
    status: RegistrationStatus = Field(
        default=RegistrationStatus.pending_review, sa_column=Column(String, nullable=False)
    )
    group_id: Optional[int] = Field(default=None)  # 1-based, assigned by group distribution
    qualified_for_knockout: bool = Field(default=False)  # set by manual qualification
    created_at: datetime = Field(default_factory=datetime.utcnow)

    # Relationships
    tournament: "Tournament" = Relationship(back_populates="registrations")
