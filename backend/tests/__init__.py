# Force SQLModel table registration at test discovery time
from courtplan.models.allocation import Allocation  # noqa: F401
from courtplan.models.court import Court, CourtGroup  # noqa: F401
from courtplan.models.division import Division  # noqa: F401
from courtplan.models.encounter import Encounter  # noqa: F401
from courtplan.models.pool import Pool  # noqa: F401
from courtplan.models.standing import Standing  # noqa: F401
from courtplan.models.tournament import Tournament  # noqa: F401
from courtplan.models.unit import Unit  # noqa: F401
