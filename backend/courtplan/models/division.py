from datetime import datetime
from typing import TYPE_CHECKING, List, Optional

from sqlmodel import Field, Relationship, SQLModel

if TYPE_CHECKING:
    from courtplan.models.encounter import Encounter
    from courtplan.models.pool import Pool
    from courtplan.models.tournament import Tournament
    from courtplan.models.unit import Unit

# Composite division scheduling status (derived by division_lifecycle)
STATUS_NOT_SCHEDULED = "NotScheduled"
STATUS_SCHEDULE_READY = "ScheduleReady"
STATUS_UNITS_ASSIGNED = "UnitsAssigned"
STATUS_POOLS_FINALIZED = "PoolsFinalized"


class Division(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    tournament_id: int = Field(foreign_key="tournament.id", index=True)
    name: str
    playoff_from_pools: int = Field(default=2)  # units per pool that advance
    default_duration_minutes: int = Field(default=20)
    default_rest_minutes: int = Field(default=5)

    # Lifecycle cache, refreshed after every mutating schedule/standings operation
    schedule_ready: bool = Field(default=False)
    units_assigned: bool = Field(default=False)
    schedule_status: str = Field(default=STATUS_NOT_SCHEDULED)

    # Optimistic concurrency stamp for the allocation set; bumped on every mutation
    schedule_revision: int = Field(default=0)

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow, sa_column_kwargs={"onupdate": datetime.utcnow})

    # Relationships
    tournament: "Tournament" = Relationship(back_populates="divisions")
    pools: List["Pool"] = Relationship(back_populates="division")
    units: List["Unit"] = Relationship(back_populates="division")
    encounters: List["Encounter"] = Relationship(back_populates="division")
