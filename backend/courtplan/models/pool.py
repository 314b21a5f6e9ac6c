from datetime import datetime
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import UniqueConstraint as SAUniqueConstraint
from sqlmodel import Field, Relationship, SQLModel

if TYPE_CHECKING:
    from courtplan.models.division import Division
    from courtplan.models.standing import Standing
    from courtplan.models.unit import Unit

POOL_NOT_CALCULATED = "NotCalculated"
POOL_CALCULATED = "Calculated"
POOL_FINALIZED = "Finalized"


class Pool(SQLModel, table=True):
    __table_args__ = (SAUniqueConstraint("division_id", "pool_number", name="uq_pool_division_number"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    division_id: int = Field(foreign_key="division.id", index=True)
    pool_number: int
    name: Optional[str] = None
    status: str = Field(default=POOL_NOT_CALCULATED)  # NotCalculated | Calculated | Finalized
    calculated_at: Optional[datetime] = Field(default=None)
    finalized_at: Optional[datetime] = Field(default=None)

    # Relationships
    division: "Division" = Relationship(back_populates="pools")
    units: List["Unit"] = Relationship(back_populates="pool")
    standings: List["Standing"] = Relationship(back_populates="pool")

    @property
    def display_name(self) -> str:
        return self.name or f"Pool {self.pool_number}"
