from datetime import datetime
from typing import TYPE_CHECKING, Optional

from sqlalchemy import UniqueConstraint as SAUniqueConstraint
from sqlmodel import Field, Relationship, SQLModel

if TYPE_CHECKING:
    from courtplan.models.pool import Pool


class Standing(SQLModel, table=True):
    __table_args__ = (SAUniqueConstraint("pool_id", "unit_id", name="uq_standing_pool_unit"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    pool_id: int = Field(foreign_key="pool.id", index=True)
    unit_id: int = Field(foreign_key="unit.id", index=True)

    rank: Optional[int] = Field(default=None)  # 1-based, null until calculated
    rank_overridden: bool = Field(default=False)

    matches_played: int = Field(default=0)
    matches_won: int = Field(default=0)
    matches_lost: int = Field(default=0)
    games_won: int = Field(default=0)
    games_lost: int = Field(default=0)
    points_for: int = Field(default=0)
    points_against: int = Field(default=0)
    head_to_head_wins: int = Field(default=0)

    # Frozen at finalize time only
    advanced_to_playoff: bool = Field(default=False)
    overall_rank: Optional[int] = Field(default=None)

    updated_at: datetime = Field(default_factory=datetime.utcnow)

    # Relationships
    pool: "Pool" = Relationship(back_populates="standings")

    @property
    def game_differential(self) -> int:
        return self.games_won - self.games_lost

    @property
    def point_differential(self) -> int:
        return self.points_for - self.points_against
