from datetime import datetime
from typing import TYPE_CHECKING, Any, Dict, Optional

from sqlalchemy import JSON
from sqlmodel import Column, Field, Relationship, SQLModel

if TYPE_CHECKING:
    from courtplan.models.allocation import Allocation
    from courtplan.models.division import Division

ENCOUNTER_NEW = "New"
ENCOUNTER_IN_PROGRESS = "InProgress"
ENCOUNTER_COMPLETED = "Completed"


class Encounter(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    division_id: int = Field(foreign_key="division.id", index=True)
    # Null for playoff/bracket encounters
    pool_id: Optional[int] = Field(default=None, foreign_key="pool.id", index=True)
    round_number: int = Field(default=1)
    sequence: int = Field(default=0)  # caller-determined scheduling order within a round
    label: Optional[str] = None

    # Nullable until draw/advancement resolves them
    unit_a_id: Optional[int] = Field(default=None, foreign_key="unit.id")
    unit_b_id: Optional[int] = Field(default=None, foreign_key="unit.id")
    is_bye: bool = Field(default=False)

    # Result fields
    status: str = Field(default=ENCOUNTER_NEW)  # New | InProgress | Completed
    score_json: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON, nullable=True))
    winner_unit_id: Optional[int] = Field(default=None, foreign_key="unit.id")
    started_at: Optional[datetime] = Field(default=None)
    completed_at: Optional[datetime] = Field(default=None)

    # Written by the schedule persist step
    court_id: Optional[int] = Field(default=None, foreign_key="court.id")
    scheduled_at: Optional[datetime] = Field(default=None)

    created_at: datetime = Field(default_factory=datetime.utcnow)

    # Relationships
    division: "Division" = Relationship(back_populates="encounters")
    allocation: Optional["Allocation"] = Relationship(
        back_populates="encounter", sa_relationship_kwargs={"uselist": False}
    )
