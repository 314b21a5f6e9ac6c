"""
Instant normalization.

Stored instants are naive UTC (models default to datetime.utcnow and
SQLite drops offsets), so every incoming instant is converted to the
same form before it is compared with anything loaded from the database.
"""
from datetime import datetime, timezone
from typing import Optional


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Aware -> converted to UTC with tzinfo dropped. Naive is taken as UTC already."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)
