"""
Pool standings lifecycle: calculate, manual override, finalize, reset.

Per-pool state machine:
    NotCalculated --calculate--> Calculated --finalize--> Finalized --reset--> Calculated
    Calculated --calculate--> Calculated (full recompute, overrides discarded)

The Standings Engine is the only authority on which units are marked
advanced_to_playoff; moving them into playoff encounters is left to the
bracket side.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from sqlmodel import Session, select

from courtplan.models.division import Division
from courtplan.models.encounter import ENCOUNTER_COMPLETED, Encounter
from courtplan.models.pool import POOL_CALCULATED, POOL_FINALIZED, Pool
from courtplan.models.standing import Standing
from courtplan.models.unit import Unit
from courtplan.services.division_lifecycle import (
    refresh_division_status,
    require_can_finalize,
    require_pool,
    require_pool_calculated,
    require_pool_not_finalized,
)
from courtplan.services.standings_engine import (
    EncounterResult,
    IllegalTransitionError,
    StandingsValidationError,
    aggregate_results,
    assign_overall_seeds,
    is_advancement_eligible,
    rank_units,
)
from courtplan.utils.sql import count_rows

logger = logging.getLogger(__name__)


@dataclass
class PoolStandings:
    pool: Pool
    standings: List[Standing]


@dataclass
class FinalizeResult:
    advanced_count: int = 0
    advanced: List[Standing] = field(default_factory=list)


def _division_pools(session: Session, division: Division) -> List[Pool]:
    return list(
        session.exec(select(Pool).where(Pool.division_id == division.id).order_by(Pool.pool_number, Pool.id)).all()
    )


def _pool_standings(session: Session, pool: Pool) -> List[Standing]:
    rows = session.exec(select(Standing).where(Standing.pool_id == pool.id)).all()
    # Unranked rows sink to the bottom
    return sorted(rows, key=lambda s: (s.rank is None, s.rank or 0, s.unit_id))


def _encounter_result(encounter: Encounter) -> EncounterResult:
    return EncounterResult(
        encounter_id=encounter.id,
        unit_a_id=encounter.unit_a_id,
        unit_b_id=encounter.unit_b_id,
        winner_unit_id=encounter.winner_unit_id,
        status=encounter.status,
        score_json=encounter.score_json,
        is_bye=encounter.is_bye,
    )


def _calculate_pool(session: Session, pool: Pool) -> List[Standing]:
    """Recompute one pool from scratch. Does not commit."""
    unit_ids = [u.id for u in session.exec(select(Unit).where(Unit.pool_id == pool.id)).all()]
    encounters = session.exec(
        select(Encounter).where(Encounter.pool_id == pool.id, Encounter.status == ENCOUNTER_COMPLETED)
    ).all()
    results = [_encounter_result(e) for e in encounters]

    lines = aggregate_results(unit_ids, results)
    ranked = rank_units(lines.values(), results)

    existing = {s.unit_id: s for s in session.exec(select(Standing).where(Standing.pool_id == pool.id)).all()}
    now = datetime.utcnow()
    standings: List[Standing] = []
    for line in ranked:
        standing = existing.pop(line.unit_id, None) or Standing(pool_id=pool.id, unit_id=line.unit_id)
        standing.rank = line.rank
        standing.rank_overridden = False
        standing.matches_played = line.matches_played
        standing.matches_won = line.matches_won
        standing.matches_lost = line.matches_lost
        standing.games_won = line.games_won
        standing.games_lost = line.games_lost
        standing.points_for = line.points_for
        standing.points_against = line.points_against
        standing.head_to_head_wins = line.head_to_head_wins
        standing.advanced_to_playoff = False
        standing.overall_rank = None
        standing.updated_at = now
        session.add(standing)
        standings.append(standing)

    # Units that left the pool since the last calculation
    for stale in existing.values():
        session.delete(stale)

    pool.status = POOL_CALCULATED
    pool.calculated_at = now
    session.add(pool)
    return standings


def calculate_standings(session: Session, division: Division, pool_id: Optional[int] = None) -> List[PoolStandings]:
    """
    Calculate standings for every pool of the division, or one pool.

    Raises:
        IllegalTransitionError: a targeted pool is Finalized
    """
    pools = [require_pool(session, division, pool_id)] if pool_id is not None else _division_pools(session, division)
    for pool in pools:
        require_pool_not_finalized(pool)

    for pool in pools:
        _calculate_pool(session, pool)

    refresh_division_status(session, division)
    session.commit()

    logger.info("Division %d: calculated standings for %d pools", division.id, len(pools))
    return [PoolStandings(pool=p, standings=_pool_standings(session, p)) for p in pools]


def list_standings(session: Session, division: Division) -> List[PoolStandings]:
    return [PoolStandings(pool=p, standings=_pool_standings(session, p)) for p in _division_pools(session, division)]


def override_rank(session: Session, unit: Unit, pool_rank: int) -> Standing:
    """
    Set a unit's pool rank by hand. Lasts until the next calculate run.

    Raises:
        StandingsValidationError: rank is not a positive integer
        IllegalTransitionError: unit has no pool, or pool is not Calculated
    """
    if pool_rank is None or pool_rank < 1:
        raise StandingsValidationError(f"Pool rank must be a positive integer, got {pool_rank}")
    if unit.pool_id is None:
        raise IllegalTransitionError(f"UNIT_NOT_IN_POOL: unit {unit.id} has not been drawn into a pool")

    pool = session.get(Pool, unit.pool_id)
    require_pool_calculated(pool)

    standing = session.exec(
        select(Standing).where(Standing.pool_id == pool.id, Standing.unit_id == unit.id)
    ).first()
    if standing is None:
        raise IllegalTransitionError(f"POOL_NOT_CALCULATED: no standing for unit {unit.id}; recalculate the pool")

    previous = standing.rank
    standing.rank = pool_rank
    standing.rank_overridden = True
    standing.updated_at = datetime.utcnow()
    session.add(standing)
    session.commit()
    session.refresh(standing)

    logger.info("Unit %d rank overridden in %s: %s -> %d", unit.id, pool.display_name, previous, pool_rank)
    return standing


def finalize_pools(session: Session, division: Division, advance_per_pool: Optional[int] = None) -> FinalizeResult:
    """
    Freeze advancement for every pool of the division.

    Units with rank <= playoff_from_pools (or advance_per_pool when given)
    get advanced_to_playoff=True and a cross-pool overall seed.

    Raises:
        StandingsValidationError: advance_per_pool is not positive
        IllegalTransitionError: see require_can_finalize
    """
    advance_count = advance_per_pool if advance_per_pool is not None else division.playoff_from_pools
    if advance_count is None or advance_count < 1:
        raise StandingsValidationError(f"Advance count must be a positive integer, got {advance_count}")

    pools = _division_pools(session, division)
    require_can_finalize(division, pools)

    per_pool: Dict[int, List[Standing]] = {p.id: _pool_standings(session, p) for p in pools}
    seeds = assign_overall_seeds(
        [[(s.unit_id, s.rank) for s in per_pool[p.id]] for p in pools],
        advance_count,
    )

    now = datetime.utcnow()
    result = FinalizeResult()
    for pool in pools:
        for standing in per_pool[pool.id]:
            eligible = is_advancement_eligible(standing.rank, advance_count)
            standing.advanced_to_playoff = eligible
            standing.overall_rank = seeds.get(standing.unit_id) if eligible else None
            standing.updated_at = now
            session.add(standing)
            if eligible:
                result.advanced.append(standing)
        pool.status = POOL_FINALIZED
        pool.finalized_at = now
        session.add(pool)

    refresh_division_status(session, division)
    session.commit()

    result.advanced.sort(key=lambda s: (s.overall_rank or 0, s.unit_id))
    result.advanced_count = len(result.advanced)
    logger.info(
        "Division %d: finalized %d pools, %d units advancing", division.id, len(pools), result.advanced_count
    )
    return result


def reset_pools(session: Session, division: Division) -> int:
    """
    Undo finalize: Finalized pools go back to Calculated and every
    advancement flag/seed is cleared. Won/lost data is left alone.
    Returns how many pools were reset (0 is a silent no-op).

    Raises:
        IllegalTransitionError: playoff encounters have already been completed
    """
    pools = _division_pools(session, division)
    if not any(pool.status == POOL_FINALIZED for pool in pools):
        logger.info("Division %d: reset requested with no finalized pools", division.id)
        return 0

    # Pool-less encounters are bracket encounters (see create_encounters)
    played_playoffs = count_rows(
        session,
        Encounter.id,
        Encounter.division_id == division.id,
        Encounter.pool_id.is_(None),
        Encounter.status == ENCOUNTER_COMPLETED,
    )
    if played_playoffs:
        raise IllegalTransitionError("PLAYOFFS_STARTED: cannot reset pools after playoff encounters have been played")

    reset_count = 0
    for pool in pools:
        for standing in session.exec(select(Standing).where(Standing.pool_id == pool.id)).all():
            if standing.advanced_to_playoff or standing.overall_rank is not None:
                standing.advanced_to_playoff = False
                standing.overall_rank = None
                session.add(standing)
        if pool.status == POOL_FINALIZED:
            pool.status = POOL_CALCULATED
            pool.finalized_at = None
            session.add(pool)
            reset_count += 1

    refresh_division_status(session, division)
    session.commit()

    logger.info("Division %d: reset %d finalized pools", division.id, reset_count)
    return reset_count
