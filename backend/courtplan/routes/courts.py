"""
Court registry: tournaments, courts, court groups.
"""
import logging
from datetime import datetime
from typing import List, Optional, Union

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, field_validator, model_validator
from sqlmodel import Session, select

from courtplan.database import get_session
from courtplan.models.court import Court, CourtGroup, CourtStatus
from courtplan.models.tournament import Tournament
from courtplan.utils.courts import next_sort_order, parse_court_labels

logger = logging.getLogger(__name__)

router = APIRouter()


class TournamentCreate(BaseModel):
    name: str
    location: Optional[str] = None
    timezone: str = "UTC"

    @field_validator("name")
    @classmethod
    def validate_name(cls, v):
        if not v or not v.strip():
            raise ValueError("name is required")
        return v.strip()


class TournamentResponse(BaseModel):
    id: int
    name: str
    location: Optional[str]
    timezone: str
    created_at: datetime

    class Config:
        from_attributes = True


class CourtCreate(BaseModel):
    """Either a single label or a comma-separated/list of labels."""

    label: Optional[str] = None
    labels: Optional[Union[List[str], str]] = None
    court_group_id: Optional[int] = None

    @model_validator(mode="after")
    def validate_labels(self):
        if not self.label and not parse_court_labels(self.labels):
            raise ValueError("label or labels is required")
        return self


class CourtUpdate(BaseModel):
    label: Optional[str] = None
    status: Optional[CourtStatus] = None
    sort_order: Optional[int] = None
    court_group_id: Optional[int] = None


class CourtResponse(BaseModel):
    id: int
    tournament_id: int
    label: str
    sort_order: int
    court_group_id: Optional[int]
    status: str

    class Config:
        from_attributes = True


class CourtGroupCreate(BaseModel):
    name: str
    sort_order: int = 0
    court_ids: Optional[List[int]] = None


class CourtGroupMembership(BaseModel):
    court_ids: List[int]


class CourtGroupResponse(BaseModel):
    id: int
    tournament_id: int
    name: str
    sort_order: int
    court_ids: List[int] = []


def _require_tournament(session: Session, tournament_id: int) -> Tournament:
    tournament = session.get(Tournament, tournament_id)
    if not tournament:
        raise HTTPException(status_code=404, detail=f"Tournament {tournament_id} not found")
    return tournament


def _group_response(session: Session, group: CourtGroup) -> CourtGroupResponse:
    courts = session.exec(
        select(Court).where(Court.court_group_id == group.id).order_by(Court.sort_order, Court.id)
    ).all()
    return CourtGroupResponse(
        id=group.id,
        tournament_id=group.tournament_id,
        name=group.name,
        sort_order=group.sort_order,
        court_ids=[c.id for c in courts],
    )


def _set_group_courts(session: Session, group: CourtGroup, court_ids: List[int]) -> None:
    """Replace the group's membership; list order becomes the court order."""
    ordered_ids = list(dict.fromkeys(court_ids))
    courts = session.exec(select(Court).where(Court.id.in_(ordered_ids))).all() if ordered_ids else []
    by_id = {c.id: c for c in courts if c.tournament_id == group.tournament_id}
    missing = [cid for cid in ordered_ids if cid not in by_id]
    if missing:
        raise HTTPException(status_code=422, detail=f"Courts not found in tournament: {missing}")

    for court in session.exec(select(Court).where(Court.court_group_id == group.id)).all():
        if court.id not in by_id:
            court.court_group_id = None
            session.add(court)

    for position, cid in enumerate(ordered_ids, start=1):
        court = by_id[cid]
        court.court_group_id = group.id
        court.sort_order = position
        court.updated_at = datetime.utcnow()
        session.add(court)


# ============================================================================
# Tournaments
# ============================================================================


@router.post("/tournaments", response_model=TournamentResponse, status_code=201)
def create_tournament(tournament_data: TournamentCreate, session: Session = Depends(get_session)):
    """Create a new tournament"""
    tournament = Tournament(**tournament_data.model_dump())
    session.add(tournament)
    session.commit()
    session.refresh(tournament)
    return tournament


@router.get("/tournaments/{tournament_id}", response_model=TournamentResponse)
def get_tournament(tournament_id: int, session: Session = Depends(get_session)):
    return _require_tournament(session, tournament_id)


# ============================================================================
# Courts
# ============================================================================


@router.post("/tournaments/{tournament_id}/courts", response_model=List[CourtResponse], status_code=201)
def create_courts(tournament_id: int, payload: CourtCreate, session: Session = Depends(get_session)):
    """Add one court, or several at once from "1,2,3" style labels."""
    _require_tournament(session, tournament_id)
    labels = parse_court_labels(payload.labels) if payload.labels else parse_court_labels(payload.label)

    existing = session.exec(select(Court).where(Court.tournament_id == tournament_id)).all()
    taken = {c.label for c in existing}
    duplicates = [label for label in labels if label in taken]
    if duplicates:
        raise HTTPException(status_code=409, detail=f"Court labels already exist: {duplicates}")

    if payload.court_group_id is not None:
        group = session.get(CourtGroup, payload.court_group_id)
        if not group or group.tournament_id != tournament_id:
            raise HTTPException(status_code=404, detail=f"Court group {payload.court_group_id} not found")

    sort_order = next_sort_order([c.sort_order for c in existing])
    created: List[Court] = []
    for offset, label in enumerate(labels):
        court = Court(
            tournament_id=tournament_id,
            label=label,
            sort_order=sort_order + offset,
            court_group_id=payload.court_group_id,
        )
        session.add(court)
        created.append(court)
    session.commit()
    for court in created:
        session.refresh(court)

    logger.info("Tournament %d: added %d courts", tournament_id, len(created))
    return created


@router.get("/tournaments/{tournament_id}/courts", response_model=List[CourtResponse])
def list_courts(tournament_id: int, session: Session = Depends(get_session)):
    _require_tournament(session, tournament_id)
    return session.exec(
        select(Court).where(Court.tournament_id == tournament_id).order_by(Court.sort_order, Court.id)
    ).all()


@router.patch("/courts/{court_id}", response_model=CourtResponse)
def update_court(court_id: int, payload: CourtUpdate, session: Session = Depends(get_session)):
    """Rename, re-order, regroup or change the operational status of a court"""
    court = session.get(Court, court_id)
    if not court:
        raise HTTPException(status_code=404, detail=f"Court {court_id} not found")

    if payload.label is not None:
        label = payload.label.strip()
        if not label:
            raise HTTPException(status_code=422, detail="label cannot be empty")
        clash = session.exec(
            select(Court).where(Court.tournament_id == court.tournament_id, Court.label == label, Court.id != court.id)
        ).first()
        if clash:
            raise HTTPException(status_code=409, detail=f"Court label '{label}' already exists")
        court.label = label

    if payload.court_group_id is not None:
        group = session.get(CourtGroup, payload.court_group_id)
        if not group or group.tournament_id != court.tournament_id:
            raise HTTPException(status_code=404, detail=f"Court group {payload.court_group_id} not found")
        court.court_group_id = group.id

    if payload.sort_order is not None:
        court.sort_order = payload.sort_order

    if payload.status is not None and payload.status.value != court.status:
        logger.info("Court %d (%s) status %s -> %s", court.id, court.label, court.status, payload.status.value)
        court.status = payload.status.value

    court.updated_at = datetime.utcnow()
    session.add(court)
    session.commit()
    session.refresh(court)
    return court


# ============================================================================
# Court groups
# ============================================================================


@router.post("/tournaments/{tournament_id}/court-groups", response_model=CourtGroupResponse, status_code=201)
def create_court_group(tournament_id: int, payload: CourtGroupCreate, session: Session = Depends(get_session)):
    _require_tournament(session, tournament_id)
    name = payload.name.strip()
    if not name:
        raise HTTPException(status_code=422, detail="name is required")
    clash = session.exec(
        select(CourtGroup).where(CourtGroup.tournament_id == tournament_id, CourtGroup.name == name)
    ).first()
    if clash:
        raise HTTPException(status_code=409, detail=f"Court group '{name}' already exists")

    group = CourtGroup(tournament_id=tournament_id, name=name, sort_order=payload.sort_order)
    session.add(group)
    session.flush()
    if payload.court_ids:
        _set_group_courts(session, group, payload.court_ids)
    session.commit()
    session.refresh(group)
    return _group_response(session, group)


@router.get("/tournaments/{tournament_id}/court-groups", response_model=List[CourtGroupResponse])
def list_court_groups(tournament_id: int, session: Session = Depends(get_session)):
    _require_tournament(session, tournament_id)
    groups = session.exec(
        select(CourtGroup)
        .where(CourtGroup.tournament_id == tournament_id)
        .order_by(CourtGroup.sort_order, CourtGroup.id)
    ).all()
    return [_group_response(session, g) for g in groups]


@router.post("/court-groups/{group_id}/courts", response_model=CourtGroupResponse)
def set_court_group_courts(group_id: int, payload: CourtGroupMembership, session: Session = Depends(get_session)):
    """Replace the group's courts. The given order is the allocation order."""
    group = session.get(CourtGroup, group_id)
    if not group:
        raise HTTPException(status_code=404, detail=f"Court group {group_id} not found")
    _set_group_courts(session, group, payload.court_ids)
    session.commit()
    session.refresh(group)
    return _group_response(session, group)
