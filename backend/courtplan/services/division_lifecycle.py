"""
Division Lifecycle Coordinator

Thin status cache per division plus the guards that gate schedule and
standings operations:
- schedule_ready: at least one committed allocation
- units_assigned: the division has units and every unit sits in a pool
- schedule_status: NotScheduled -> ScheduleReady -> UnitsAssigned -> PoolsFinalized

refresh_division_status() is called after every mutating operation.
"""

import logging
from typing import Dict, List

from fastapi import HTTPException
from sqlmodel import Session, select

from courtplan.models.allocation import Allocation
from courtplan.models.division import (
    STATUS_NOT_SCHEDULED,
    STATUS_POOLS_FINALIZED,
    STATUS_SCHEDULE_READY,
    STATUS_UNITS_ASSIGNED,
    Division,
)
from courtplan.models.pool import POOL_CALCULATED, POOL_FINALIZED, POOL_NOT_CALCULATED, Pool
from courtplan.models.unit import Unit
from courtplan.services.standings_engine import IllegalTransitionError
from courtplan.utils.sql import count_rows

logger = logging.getLogger(__name__)


def require_division(session: Session, division_id: int) -> Division:
    """
    Get a division or raise 404.

    Raises:
        HTTPException 404: Division not found
    """
    division = session.get(Division, division_id)
    if not division:
        raise HTTPException(status_code=404, detail=f"Division {division_id} not found")
    return division


def require_pool(session: Session, division: Division, pool_id: int) -> Pool:
    """
    Get a pool of the division or raise 404.

    Raises:
        HTTPException 404: Pool not found or doesn't belong to division
    """
    pool = session.get(Pool, pool_id)
    if not pool or pool.division_id != division.id:
        raise HTTPException(status_code=404, detail=f"Pool {pool_id} not found in division {division.id}")
    return pool


def require_pool_not_finalized(pool: Pool) -> None:
    if pool.status == POOL_FINALIZED:
        raise IllegalTransitionError(
            f"POOL_FINALIZED: {pool.display_name} is finalized; reset pools before recalculating"
        )


def require_pool_calculated(pool: Pool) -> None:
    """Manual rank edits are only allowed while the pool is Calculated."""
    if pool.status == POOL_FINALIZED:
        raise IllegalTransitionError(f"POOL_FINALIZED: {pool.display_name} is locked; reset pools first")
    if pool.status != POOL_CALCULATED:
        raise IllegalTransitionError(f"POOL_NOT_CALCULATED: calculate standings for {pool.display_name} first")


def require_can_finalize(division: Division, pools: List[Pool]) -> None:
    """
    Finalize is only legal once a schedule exists and every pool is Calculated.

    Raises:
        IllegalTransitionError: already finalized, no schedule, no pools, or a pool not calculated
    """
    if pools and all(p.status == POOL_FINALIZED for p in pools):
        raise IllegalTransitionError("POOLS_ALREADY_FINALIZED: pools have already been finalized")
    if not division.schedule_ready:
        raise IllegalTransitionError("NO_SCHEDULE: generate and persist a schedule before finalizing pools")
    if not pools:
        raise IllegalTransitionError("NO_POOLS: division has no pools to finalize")
    not_calculated = [p.display_name for p in pools if p.status == POOL_NOT_CALCULATED]
    if not_calculated:
        raise IllegalTransitionError(
            f"POOL_NOT_CALCULATED: calculate standings before finalizing ({', '.join(not_calculated)})"
        )


def refresh_division_status(session: Session, division: Division) -> Division:
    """Recompute the division's lifecycle flags from current rows. Does not commit."""
    committed = count_rows(
        session,
        Allocation.id,
        Allocation.division_id == division.id,
        Allocation.is_pending == False,  # noqa: E712
    )
    unit_count = count_rows(session, Unit.id, Unit.division_id == division.id)
    unpooled = count_rows(session, Unit.id, Unit.division_id == division.id, Unit.pool_id.is_(None))
    pools = session.exec(select(Pool).where(Pool.division_id == division.id)).all()

    division.schedule_ready = committed > 0
    division.units_assigned = unit_count > 0 and unpooled == 0

    if pools and all(p.status == POOL_FINALIZED for p in pools):
        status = STATUS_POOLS_FINALIZED
    elif division.units_assigned:
        status = STATUS_UNITS_ASSIGNED
    elif division.schedule_ready:
        status = STATUS_SCHEDULE_READY
    else:
        status = STATUS_NOT_SCHEDULED

    if status != division.schedule_status:
        logger.info("Division %d status %s -> %s", division.id, division.schedule_status, status)
    division.schedule_status = status
    session.add(division)
    return division


def allowed_operations(division: Division, pools: List[Pool]) -> Dict[str, bool]:
    """Which engine operations the UI layer may offer right now."""
    statuses = [p.status for p in pools]
    any_finalized = POOL_FINALIZED in statuses
    all_finalized = bool(pools) and all(s == POOL_FINALIZED for s in statuses)
    return {
        "can_generate": not all_finalized,
        "can_calculate": bool(pools) and not all_finalized,
        "can_override": POOL_CALCULATED in statuses,
        "can_finalize": (
            division.schedule_ready
            and bool(pools)
            and not all_finalized
            and all(s != POOL_NOT_CALCULATED for s in statuses)
        ),
        "can_reset": any_finalized,
    }
