from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import UniqueConstraint as SAUniqueConstraint
from sqlmodel import Field, Relationship, SQLModel

if TYPE_CHECKING:
    from courtplan.models.tournament import Tournament


class CourtStatus(str, Enum):
    available = "available"
    in_use = "in_use"
    maintenance = "maintenance"
    closed = "closed"


# Courts in these states are never handed to the allocation engine
UNSCHEDULABLE_COURT_STATUSES = {CourtStatus.maintenance.value, CourtStatus.closed.value}


class CourtGroup(SQLModel, table=True):
    __tablename__ = "courtgroup"
    __table_args__ = (SAUniqueConstraint("tournament_id", "name", name="uq_courtgroup_tournament_name"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    tournament_id: int = Field(foreign_key="tournament.id", index=True)
    name: str
    sort_order: int = Field(default=0)

    # Relationships
    tournament: "Tournament" = Relationship(back_populates="court_groups")
    courts: List["Court"] = Relationship(back_populates="court_group")


class Court(SQLModel, table=True):
    __table_args__ = (SAUniqueConstraint("tournament_id", "label", name="uq_court_tournament_label"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    tournament_id: int = Field(foreign_key="tournament.id", index=True)
    label: str
    sort_order: int = Field(default=0)
    # A court belongs to at most one group at a time
    court_group_id: Optional[int] = Field(default=None, foreign_key="courtgroup.id", index=True)
    status: str = Field(default=CourtStatus.available.value)  # CourtStatus value
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    # Relationships
    tournament: "Tournament" = Relationship(back_populates="courts")
    court_group: Optional["CourtGroup"] = Relationship(back_populates="courts")
