from datetime import datetime
from typing import TYPE_CHECKING, Optional

from sqlalchemy import UniqueConstraint as SAUniqueConstraint
from sqlmodel import Field, Relationship, SQLModel

if TYPE_CHECKING:
    from courtplan.models.encounter import Encounter


class Allocation(SQLModel, table=True):
    # At most one allocation per encounter
    __table_args__ = (SAUniqueConstraint("encounter_id", name="uq_allocation_encounter"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    encounter_id: int = Field(foreign_key="encounter.id")
    division_id: int = Field(foreign_key="division.id", index=True)
    court_id: int = Field(foreign_key="court.id", index=True)
    start_at: datetime
    end_at: datetime  # start + duration + rest; [start_at, end_at) is the occupied interval
    is_pending: bool = Field(default=True)  # True until the persist step commits it to the encounter
    created_at: datetime = Field(default_factory=datetime.utcnow)

    # Relationships
    encounter: "Encounter" = Relationship(back_populates="allocation")
