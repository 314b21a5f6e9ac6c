"""
Pool standings: calculate, override, finalize, reset.
"""
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlmodel import Session

from courtplan.database import get_session
from courtplan.models.standing import Standing
from courtplan.models.unit import Unit
from courtplan.services.division_lifecycle import require_division
from courtplan.services.standings_engine import IllegalTransitionError, StandingsValidationError
from courtplan.services.standings_service import (
    PoolStandings,
    calculate_standings,
    finalize_pools,
    list_standings,
    override_rank,
    reset_pools,
)

router = APIRouter()


class StandingResponse(BaseModel):
    unit_id: int
    pool_id: int
    rank: Optional[int]
    rank_overridden: bool
    matches_played: int
    matches_won: int
    matches_lost: int
    games_won: int
    games_lost: int
    game_differential: int
    points_for: int
    points_against: int
    point_differential: int
    head_to_head_wins: int
    advanced_to_playoff: bool
    overall_rank: Optional[int] = None


class PoolStandingsResponse(BaseModel):
    pool_id: int
    pool_number: int
    pool_name: str
    status: str
    calculated_at: Optional[datetime] = None
    finalized_at: Optional[datetime] = None
    standings: List[StandingResponse]


class RankOverride(BaseModel):
    pool_rank: int


class FinalizeRequest(BaseModel):
    advance_per_pool: Optional[int] = None


class FinalizeResponse(BaseModel):
    advanced_count: int
    advanced_units: List[StandingResponse]


class ResetResponse(BaseModel):
    success: bool = True
    reset_pool_count: int


def _http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, IllegalTransitionError):
        return HTTPException(status_code=409, detail=str(exc))
    return HTTPException(status_code=422, detail=str(exc))


def _standing(s: Standing) -> StandingResponse:
    return StandingResponse(
        unit_id=s.unit_id,
        pool_id=s.pool_id,
        rank=s.rank,
        rank_overridden=s.rank_overridden,
        matches_played=s.matches_played,
        matches_won=s.matches_won,
        matches_lost=s.matches_lost,
        games_won=s.games_won,
        games_lost=s.games_lost,
        game_differential=s.game_differential,
        points_for=s.points_for,
        points_against=s.points_against,
        point_differential=s.point_differential,
        head_to_head_wins=s.head_to_head_wins,
        advanced_to_playoff=s.advanced_to_playoff,
        overall_rank=s.overall_rank,
    )


def _pool_standings(ps: PoolStandings) -> PoolStandingsResponse:
    return PoolStandingsResponse(
        pool_id=ps.pool.id,
        pool_number=ps.pool.pool_number,
        pool_name=ps.pool.display_name,
        status=ps.pool.status,
        calculated_at=ps.pool.calculated_at,
        finalized_at=ps.pool.finalized_at,
        standings=[_standing(s) for s in ps.standings],
    )


@router.post("/divisions/{division_id}/standings/calculate", response_model=List[PoolStandingsResponse])
def calculate(division_id: int, pool_id: Optional[int] = None, session: Session = Depends(get_session)):
    """Recompute standings from completed encounters. Manual overrides are discarded."""
    division = require_division(session, division_id)
    try:
        result = calculate_standings(session, division, pool_id=pool_id)
    except (IllegalTransitionError, StandingsValidationError) as e:
        raise _http_error(e)
    return [_pool_standings(ps) for ps in result]


@router.get("/divisions/{division_id}/standings", response_model=List[PoolStandingsResponse])
def get_standings(division_id: int, session: Session = Depends(get_session)):
    division = require_division(session, division_id)
    return [_pool_standings(ps) for ps in list_standings(session, division)]


@router.post("/units/{unit_id}/rank", response_model=StandingResponse)
def set_unit_rank(unit_id: int, payload: RankOverride, session: Session = Depends(get_session)):
    """Manually set a unit's pool rank. Only while its pool is Calculated."""
    unit = session.get(Unit, unit_id)
    if not unit:
        raise HTTPException(status_code=404, detail=f"Unit {unit_id} not found")
    try:
        standing = override_rank(session, unit, payload.pool_rank)
    except (IllegalTransitionError, StandingsValidationError) as e:
        raise _http_error(e)
    return _standing(standing)


@router.post("/divisions/{division_id}/standings/finalize", response_model=FinalizeResponse)
def finalize(
    division_id: int,
    payload: Optional[FinalizeRequest] = None,
    session: Session = Depends(get_session),
):
    """
    Freeze advancement: units ranked within playoff_from_pools (or
    advance_per_pool) are marked advanced and given a cross-pool seed.
    """
    division = require_division(session, division_id)
    advance_per_pool = payload.advance_per_pool if payload else None
    try:
        result = finalize_pools(session, division, advance_per_pool=advance_per_pool)
    except (IllegalTransitionError, StandingsValidationError) as e:
        raise _http_error(e)
    return FinalizeResponse(
        advanced_count=result.advanced_count,
        advanced_units=[_standing(s) for s in result.advanced],
    )


@router.post("/divisions/{division_id}/standings/reset", response_model=ResetResponse)
def reset(division_id: int, session: Session = Depends(get_session)):
    """Undo finalize. A no-op when nothing is finalized."""
    division = require_division(session, division_id)
    try:
        count = reset_pools(session, division)
    except IllegalTransitionError as e:
        raise _http_error(e)
    return ResetResponse(success=True, reset_pool_count=count)
