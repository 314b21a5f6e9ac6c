"""
Query helpers shared by the services.

Depending on the SQLModel/SQLAlchemy version, COUNT(...) comes back as a
bare int or as a 1-tuple/Row; scalar_int() normalizes both.
"""
from typing import Any

from sqlmodel import Session, func, select


def scalar_int(x: Any) -> int:
    """Convert COUNT/aggregate result to int. Handles int or 1-tuple/Row."""
    try:
        return int(x[0])
    except (TypeError, IndexError):
        return int(x)


def count_rows(session: Session, column: Any, *conditions: Any) -> int:
    """COUNT(column) with optional WHERE conditions."""
    stmt = select(func.count(column))
    if conditions:
        stmt = stmt.where(*conditions)
    return scalar_int(session.exec(stmt).one())
