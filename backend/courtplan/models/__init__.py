from courtplan.models.allocation import Allocation
from courtplan.models.court import Court, CourtGroup, CourtStatus
from courtplan.models.division import Division
from courtplan.models.encounter import Encounter
from courtplan.models.pool import Pool
from courtplan.models.standing import Standing
from courtplan.models.tournament import Tournament
from courtplan.models.unit import Unit

__all__ = [
    "Tournament",
    "Court",
    "CourtGroup",
    "CourtStatus",
    "Division",
    "Pool",
    "Unit",
    "Encounter",
    "Allocation",
    "Standing",
]
