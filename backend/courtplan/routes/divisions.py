"""
Divisions, pools and units, plus the division lifecycle status view.
"""
import logging
from datetime import datetime
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, field_validator
from sqlmodel import Session, select

from courtplan.database import DEFAULT_MATCH_DURATION_MINUTES, DEFAULT_REST_MINUTES, get_session
from courtplan.models.division import Division
from courtplan.models.pool import POOL_FINALIZED, Pool
from courtplan.models.tournament import Tournament
from courtplan.models.unit import Unit
from courtplan.services.division_lifecycle import (
    allowed_operations,
    refresh_division_status,
    require_division,
    require_pool,
)

logger = logging.getLogger(__name__)

router = APIRouter()


class DivisionCreate(BaseModel):
    name: str
    playoff_from_pools: int = 2
    default_duration_minutes: Optional[int] = None
    default_rest_minutes: Optional[int] = None

    @field_validator("playoff_from_pools", "default_duration_minutes", "default_rest_minutes")
    @classmethod
    def validate_positive(cls, v):
        if v is not None and v < 1:
            raise ValueError("must be a positive integer")
        return v


class DivisionResponse(BaseModel):
    id: int
    tournament_id: int
    name: str
    playoff_from_pools: int
    default_duration_minutes: int
    default_rest_minutes: int
    schedule_ready: bool
    units_assigned: bool
    schedule_status: str
    schedule_revision: int
    created_at: datetime

    class Config:
        from_attributes = True


class PoolCreate(BaseModel):
    pool_number: Optional[int] = None
    name: Optional[str] = None


class PoolResponse(BaseModel):
    id: int
    division_id: int
    pool_number: int
    name: Optional[str]
    status: str
    calculated_at: Optional[datetime] = None
    finalized_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class UnitCreate(BaseModel):
    name: str
    seed: Optional[int] = None
    pool_id: Optional[int] = None


class UnitsCreate(BaseModel):
    units: List[UnitCreate]


class UnitUpdate(BaseModel):
    pool_id: Optional[int] = None
    seed: Optional[int] = None


class UnitResponse(BaseModel):
    id: int
    division_id: int
    pool_id: Optional[int]
    name: str
    seed: Optional[int]

    class Config:
        from_attributes = True


class DivisionStatusResponse(BaseModel):
    division_id: int
    schedule_ready: bool
    units_assigned: bool
    schedule_status: str
    schedule_revision: int
    pools: List[PoolResponse]
    allowed_operations: Dict[str, bool]


def _division_pools(session: Session, division_id: int) -> List[Pool]:
    return list(
        session.exec(select(Pool).where(Pool.division_id == division_id).order_by(Pool.pool_number)).all()
    )


def _check_pool_open(session: Session, division: Division, pool_id: Optional[int]) -> None:
    """Units cannot be moved into or out of a finalized pool."""
    if pool_id is None:
        return
    pool = require_pool(session, division, pool_id)
    if pool.status == POOL_FINALIZED:
        raise HTTPException(status_code=409, detail=f"POOL_FINALIZED: {pool.display_name} is finalized")


@router.post("/tournaments/{tournament_id}/divisions", response_model=DivisionResponse, status_code=201)
def create_division(tournament_id: int, payload: DivisionCreate, session: Session = Depends(get_session)):
    if not session.get(Tournament, tournament_id):
        raise HTTPException(status_code=404, detail=f"Tournament {tournament_id} not found")

    division = Division(
        tournament_id=tournament_id,
        name=payload.name,
        playoff_from_pools=payload.playoff_from_pools,
        default_duration_minutes=payload.default_duration_minutes or DEFAULT_MATCH_DURATION_MINUTES,
        default_rest_minutes=payload.default_rest_minutes or DEFAULT_REST_MINUTES,
    )
    session.add(division)
    session.commit()
    session.refresh(division)
    logger.info("Tournament %d: created division %d (%s)", tournament_id, division.id, division.name)
    return division


@router.get("/divisions/{division_id}", response_model=DivisionResponse)
def get_division(division_id: int, session: Session = Depends(get_session)):
    return require_division(session, division_id)


@router.get("/divisions/{division_id}/status", response_model=DivisionStatusResponse)
def get_division_status(division_id: int, session: Session = Depends(get_session)):
    """Lifecycle flags plus which schedule/standings operations are currently legal"""
    division = require_division(session, division_id)
    pools = _division_pools(session, division_id)
    return DivisionStatusResponse(
        division_id=division.id,
        schedule_ready=division.schedule_ready,
        units_assigned=division.units_assigned,
        schedule_status=division.schedule_status,
        schedule_revision=division.schedule_revision,
        pools=[PoolResponse.model_validate(p) for p in pools],
        allowed_operations=allowed_operations(division, pools),
    )


@router.post("/divisions/{division_id}/pools", response_model=PoolResponse, status_code=201)
def create_pool(division_id: int, payload: PoolCreate, session: Session = Depends(get_session)):
    division = require_division(session, division_id)
    pools = _division_pools(session, division_id)

    pool_number = payload.pool_number
    if pool_number is None:
        pool_number = max((p.pool_number for p in pools), default=0) + 1
    if any(p.pool_number == pool_number for p in pools):
        raise HTTPException(status_code=409, detail=f"Pool {pool_number} already exists")

    pool = Pool(division_id=division.id, pool_number=pool_number, name=payload.name)
    session.add(pool)
    session.flush()
    refresh_division_status(session, division)
    session.commit()
    session.refresh(pool)
    return pool


@router.post("/divisions/{division_id}/units", response_model=List[UnitResponse], status_code=201)
def create_units(division_id: int, payload: UnitsCreate, session: Session = Depends(get_session)):
    """Register units, optionally placing each in a pool"""
    division = require_division(session, division_id)
    if not payload.units:
        raise HTTPException(status_code=422, detail="No units provided")

    names = [u.name.strip() for u in payload.units]
    if any(not n for n in names):
        raise HTTPException(status_code=422, detail="Unit name cannot be empty")
    existing = set(session.exec(select(Unit.name).where(Unit.division_id == division_id)).all())
    duplicates = sorted({n for n in names if n in existing or names.count(n) > 1})
    if duplicates:
        raise HTTPException(status_code=409, detail=f"Duplicate unit names: {duplicates}")

    for pool_id in {u.pool_id for u in payload.units}:
        _check_pool_open(session, division, pool_id)

    created = [
        Unit(division_id=division_id, name=name, seed=item.seed, pool_id=item.pool_id)
        for name, item in zip(names, payload.units)
    ]
    session.add_all(created)
    session.flush()
    refresh_division_status(session, division)
    session.commit()
    for unit in created:
        session.refresh(unit)
    return created


@router.patch("/units/{unit_id}", response_model=UnitResponse)
def update_unit(unit_id: int, payload: UnitUpdate, session: Session = Depends(get_session)):
    """Move a unit into a pool (draw) or change its seed"""
    unit = session.get(Unit, unit_id)
    if not unit:
        raise HTTPException(status_code=404, detail=f"Unit {unit_id} not found")
    division = require_division(session, unit.division_id)

    if "pool_id" in payload.model_fields_set and payload.pool_id != unit.pool_id:
        _check_pool_open(session, division, unit.pool_id)
        _check_pool_open(session, division, payload.pool_id)
        unit.pool_id = payload.pool_id
    if payload.seed is not None:
        unit.seed = payload.seed

    session.add(unit)
    session.flush()
    refresh_division_status(session, division)
    session.commit()
    session.refresh(unit)
    return unit
