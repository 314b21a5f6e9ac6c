from datetime import datetime
from typing import TYPE_CHECKING, Optional

from sqlalchemy import UniqueConstraint as SAUniqueConstraint
from sqlmodel import Field, Relationship, SQLModel

if TYPE_CHECKING:
    from courtplan.models.division import Division
    from courtplan.models.pool import Pool


class Unit(SQLModel, table=True):
    __table_args__ = (SAUniqueConstraint("division_id", "name", name="uq_division_unit_name"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    division_id: int = Field(foreign_key="division.id", index=True)
    # Null until the draw places the unit in a pool
    pool_id: Optional[int] = Field(default=None, foreign_key="pool.id", index=True)
    name: str
    seed: Optional[int] = Field(default=None)  # 1-based registration seed
    created_at: datetime = Field(default_factory=datetime.utcnow)

    # Relationships
    division: "Division" = Relationship(back_populates="units")
    pool: Optional["Pool"] = Relationship(back_populates="units")
