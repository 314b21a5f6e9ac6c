from datetime import datetime
from typing import TYPE_CHECKING, List, Optional

from sqlmodel import Field, Relationship, SQLModel

if TYPE_CHECKING:
    from courtplan.models.court import Court, CourtGroup
    from courtplan.models.division import Division


class Tournament(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    location: Optional[str] = None
    timezone: str = Field(default="UTC")
    created_at: datetime = Field(default_factory=datetime.utcnow)

    # Relationships
    courts: List["Court"] = Relationship(back_populates="tournament")
    court_groups: List["CourtGroup"] = Relationship(back_populates="tournament")
    divisions: List["Division"] = Relationship(back_populates="tournament")
