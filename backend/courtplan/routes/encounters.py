"""
Encounter store: create/list encounters and record results.

Result status: New -> InProgress -> Completed. Completed is terminal.
Scheduling fields (court_id, scheduled_at) are only written by the
schedule persist step, never here.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlmodel import Session, select

from courtplan.database import get_session
from courtplan.models.encounter import ENCOUNTER_COMPLETED, ENCOUNTER_IN_PROGRESS, ENCOUNTER_NEW, Encounter
from courtplan.models.pool import POOL_FINALIZED, Pool
from courtplan.models.unit import Unit
from courtplan.services.allocation_service import require_encounter
from courtplan.services.division_lifecycle import require_division, require_pool
from courtplan.services.score_parser import parse_score

router = APIRouter()


class EncounterCreate(BaseModel):
    pool_id: Optional[int] = None
    round_number: int = 1
    sequence: Optional[int] = None
    label: Optional[str] = None
    unit_a_id: Optional[int] = None
    unit_b_id: Optional[int] = None
    is_bye: bool = False


class EncountersCreate(BaseModel):
    encounters: List[EncounterCreate]


class EncounterResultUpdate(BaseModel):
    status: Optional[str] = None
    score: Optional[Dict[str, Any]] = None
    winner_unit_id: Optional[int] = None


class EncounterResponse(BaseModel):
    id: int
    division_id: int
    pool_id: Optional[int]
    round_number: int
    sequence: int
    label: Optional[str]
    unit_a_id: Optional[int]
    unit_b_id: Optional[int]
    is_bye: bool
    status: str
    score_json: Optional[Dict[str, Any]] = None
    winner_unit_id: Optional[int] = None
    court_id: Optional[int] = None
    scheduled_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    class Config:
        from_attributes = True


def _validate_status_transition(current: str, new: str) -> None:
    if new not in (ENCOUNTER_NEW, ENCOUNTER_IN_PROGRESS, ENCOUNTER_COMPLETED):
        raise HTTPException(status_code=422, detail=f"Invalid status: {new}")
    if current == ENCOUNTER_COMPLETED and new != ENCOUNTER_COMPLETED:
        raise HTTPException(status_code=409, detail="Completed is terminal; cannot revert")
    if new == ENCOUNTER_NEW and current != ENCOUNTER_NEW:
        raise HTTPException(status_code=409, detail="Cannot revert to New")


def _decided_winner(encounter: Encounter, winner_unit_id: Optional[int], score: Optional[Dict[str, Any]]) -> Optional[int]:
    """Explicit winner, else the side that won more games in the score."""
    if winner_unit_id is not None:
        return winner_unit_id
    if encounter.winner_unit_id is not None:
        return encounter.winner_unit_id
    parsed = parse_score(score if score is not None else encounter.score_json)
    if parsed is None or parsed.unit_a_games_won == parsed.unit_b_games_won:
        return None
    return encounter.unit_a_id if parsed.unit_a_games_won > parsed.unit_b_games_won else encounter.unit_b_id


@router.post("/divisions/{division_id}/encounters", response_model=List[EncounterResponse], status_code=201)
def create_encounters(division_id: int, payload: EncountersCreate, session: Session = Depends(get_session)):
    """Add encounters. Sequence defaults to the next free slot in the round."""
    division = require_division(session, division_id)
    if not payload.encounters:
        raise HTTPException(status_code=422, detail="No encounters provided")

    unit_ids = set(session.exec(select(Unit.id).where(Unit.division_id == division_id)).all())
    pool_statuses = session.exec(select(Pool.status).where(Pool.division_id == division_id)).all()
    # Without a pool an encounter is a bracket encounter; brackets follow finalized pools
    bracket_open = not pool_statuses or POOL_FINALIZED in pool_statuses
    existing = session.exec(select(Encounter).where(Encounter.division_id == division_id)).all()
    next_sequence: Dict[int, int] = {}
    for e in existing:
        next_sequence[e.round_number] = max(next_sequence.get(e.round_number, 0), e.sequence + 1)

    created: List[Encounter] = []
    for item in payload.encounters:
        if item.pool_id is not None:
            require_pool(session, division, item.pool_id)
        for uid in (item.unit_a_id, item.unit_b_id):
            if uid is not None and uid not in unit_ids:
                raise HTTPException(status_code=422, detail=f"Unit {uid} not found in division {division_id}")
        if item.unit_a_id is not None and item.unit_a_id == item.unit_b_id:
            raise HTTPException(status_code=422, detail="An encounter needs two different units")
        if item.pool_id is None and not bracket_open:
            raise HTTPException(
                status_code=409,
                detail="POOLS_NOT_FINALIZED: pool encounters need a pool_id; bracket encounters wait for finalized pools",
            )

        sequence = item.sequence
        if sequence is None:
            sequence = next_sequence.get(item.round_number, 0)
        next_sequence[item.round_number] = max(next_sequence.get(item.round_number, 0), sequence + 1)

        encounter = Encounter(
            division_id=division_id,
            pool_id=item.pool_id,
            round_number=item.round_number,
            sequence=sequence,
            label=item.label,
            unit_a_id=item.unit_a_id,
            unit_b_id=item.unit_b_id,
            is_bye=item.is_bye,
        )
        session.add(encounter)
        created.append(encounter)

    session.commit()
    for encounter in created:
        session.refresh(encounter)
    return created


@router.get("/divisions/{division_id}/encounters", response_model=List[EncounterResponse])
def list_encounters(
    division_id: int,
    pool_id: Optional[int] = None,
    session: Session = Depends(get_session),
):
    """Stable order: round, sequence, id"""
    require_division(session, division_id)
    query = select(Encounter).where(Encounter.division_id == division_id)
    if pool_id is not None:
        query = query.where(Encounter.pool_id == pool_id)
    return session.exec(query.order_by(Encounter.round_number, Encounter.sequence, Encounter.id)).all()


@router.patch("/encounters/{encounter_id}/result", response_model=EncounterResponse)
def update_encounter_result(
    encounter_id: int,
    payload: EncounterResultUpdate,
    session: Session = Depends(get_session),
):
    """Update status/score/winner. Completing needs a winner or a deciding score."""
    encounter = require_encounter(session, encounter_id)

    if encounter.pool_id is not None:
        pool = session.get(Pool, encounter.pool_id)
        if pool and pool.status == POOL_FINALIZED:
            raise HTTPException(status_code=409, detail=f"POOL_FINALIZED: {pool.display_name} results are locked")

    if encounter.status == ENCOUNTER_COMPLETED and (payload.score is not None or payload.winner_unit_id is not None):
        raise HTTPException(status_code=409, detail="Completed is terminal; result is locked")

    if payload.winner_unit_id is not None and payload.winner_unit_id not in (encounter.unit_a_id, encounter.unit_b_id):
        raise HTTPException(status_code=422, detail="winner_unit_id must be one of the encounter's units")

    current = encounter.status or ENCOUNTER_NEW

    if payload.status is not None:
        _validate_status_transition(current, payload.status)
        if payload.status == ENCOUNTER_COMPLETED and current != ENCOUNTER_COMPLETED:
            winner = _decided_winner(encounter, payload.winner_unit_id, payload.score)
            if winner is None and not encounter.is_bye:
                raise HTTPException(
                    status_code=422,
                    detail="winner_unit_id or a deciding score is required when completing an encounter",
                )
            encounter.status = ENCOUNTER_COMPLETED
            encounter.winner_unit_id = winner
            encounter.completed_at = datetime.utcnow()
            if encounter.started_at is None:
                encounter.started_at = encounter.completed_at
        elif payload.status == ENCOUNTER_IN_PROGRESS:
            encounter.status = ENCOUNTER_IN_PROGRESS
            if encounter.started_at is None:
                encounter.started_at = datetime.utcnow()

    if payload.score is not None:
        encounter.score_json = payload.score

    if payload.winner_unit_id is not None:
        encounter.winner_unit_id = payload.winner_unit_id

    session.add(encounter)
    session.commit()
    session.refresh(encounter)
    return encounter
