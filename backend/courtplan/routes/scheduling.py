"""
Division scheduling: propose, stage, persist, remove, clear, estimate, validate.

generate never writes unless stage=true (which honours expected_revision
like apply does); apply only stages pending rows;
persist commits pending rows onto encounters. Send the schedule_revision
returned by a previous call as expected_revision to get a 409 instead of
overwriting a concurrent change.
"""
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from pydantic import BaseModel, field_validator
from sqlmodel import Session

from courtplan.database import get_session
from courtplan.models.allocation import Allocation
from courtplan.services.allocation_engine import (
    AllocationConflict,
    AllocationRecord,
    AllocationValidationError,
    StaleScheduleError,
)
from courtplan.services.allocation_service import (
    PersistResult,
    apply_allocations,
    clear_schedule,
    estimate_schedule,
    generate_schedule,
    list_allocations,
    persist_pending,
    remove_allocation,
    require_encounter,
    validate_schedule,
)
from courtplan.services.division_lifecycle import require_division, require_pool
from courtplan.utils.datetimes import to_naive_utc

router = APIRouter()


class GenerateRequest(BaseModel):
    start: Optional[datetime] = None
    duration_minutes: Optional[int] = None
    rest_minutes: Optional[int] = None
    court_ids: Optional[List[int]] = None
    court_group_id: Optional[int] = None
    encounter_ids: Optional[List[int]] = None
    pool_id: Optional[int] = None
    round_number: Optional[int] = None
    stage: bool = False
    expected_revision: Optional[int] = None

    @field_validator("start")
    @classmethod
    def normalize_start(cls, v):
        return to_naive_utc(v)


class AllocationItem(BaseModel):
    encounter_id: int
    court_id: int
    start: datetime

    @field_validator("start")
    @classmethod
    def normalize_start(cls, v):
        return to_naive_utc(v)


class ApplyRequest(BaseModel):
    allocations: List[AllocationItem]
    duration_minutes: Optional[int] = None
    rest_minutes: Optional[int] = None
    expected_revision: Optional[int] = None


class RevisionRequest(BaseModel):
    expected_revision: Optional[int] = None


class ClearRequest(BaseModel):
    pool_id: Optional[int] = None
    expected_revision: Optional[int] = None


class ProposedAllocation(BaseModel):
    encounter_id: int
    court_id: int
    court_label: str
    start: datetime
    end: datetime
    pending: bool


class ConflictResponse(BaseModel):
    court_id: int
    court_label: str
    instant: datetime
    description: str
    encounter_id: Optional[int] = None
    conflicting_encounter_id: Optional[int] = None
    conflict_type: str


class GenerateResponse(BaseModel):
    proposed_allocations: List[ProposedAllocation]
    conflicts: List[ConflictResponse]
    assigned_count: int
    staged_count: int
    schedule_revision: int


class ApplyResponse(BaseModel):
    staged_count: int
    schedule_revision: int


class PersistFailureResponse(BaseModel):
    encounter_id: int
    reason: str


class PersistResponse(BaseModel):
    persisted_count: int
    failures: List[PersistFailureResponse]
    schedule_revision: int
    still_pending: int


class AllocationResponse(BaseModel):
    id: int
    encounter_id: int
    division_id: int
    court_id: int
    start_at: datetime
    end_at: datetime
    is_pending: bool

    class Config:
        from_attributes = True


class ScheduleResponse(BaseModel):
    division_id: int
    schedule_revision: int
    allocations: List[AllocationResponse]


class ClearResponse(BaseModel):
    cleared_count: int
    schedule_revision: int


class EstimateResponse(BaseModel):
    encounter_count: int
    court_count: int
    duration_minutes: int
    rest_minutes: int
    estimated_minutes: int
    estimated_end: Optional[datetime] = None


class ValidateResponse(BaseModel):
    is_valid: bool
    conflict_count: int
    conflicts: List[ConflictResponse]
    unallocated_encounters: int
    pending_allocations: int


def _http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, StaleScheduleError):
        return HTTPException(status_code=409, detail=f"STALE_SCHEDULE: {exc}")
    return HTTPException(status_code=422, detail=str(exc))


def _conflicts(conflicts: List[AllocationConflict]) -> List[ConflictResponse]:
    return [ConflictResponse(**c.to_dict()) for c in conflicts]


def _proposed(records: List[AllocationRecord], labels: dict) -> List[ProposedAllocation]:
    return [
        ProposedAllocation(
            encounter_id=r.encounter_id,
            court_id=r.court_id,
            court_label=labels.get(r.court_id, str(r.court_id)),
            start=r.start,
            end=r.end,
            pending=r.pending,
        )
        for r in records
    ]


def _persist_response(result: PersistResult) -> PersistResponse:
    return PersistResponse(
        persisted_count=result.persisted_count,
        failures=[PersistFailureResponse(encounter_id=f.encounter_id, reason=f.reason) for f in result.failures],
        schedule_revision=result.schedule_revision,
        still_pending=result.still_pending,
    )


@router.post("/divisions/{division_id}/schedule/generate", response_model=GenerateResponse)
def generate(division_id: int, payload: GenerateRequest, session: Session = Depends(get_session)):
    """
    Propose court/time allocations for unscheduled encounters.

    Courts are filled greedily, earliest-available first. Overlaps with
    existing allocations come back as conflicts; they never block.
    """
    division = require_division(session, division_id)
    if payload.pool_id is not None:
        require_pool(session, division, payload.pool_id)
    try:
        result = generate_schedule(
            session,
            division,
            start=payload.start,
            duration_minutes=payload.duration_minutes,
            rest_minutes=payload.rest_minutes,
            court_ids=payload.court_ids,
            court_group_id=payload.court_group_id,
            encounter_ids=payload.encounter_ids,
            pool_id=payload.pool_id,
            round_number=payload.round_number,
            stage=payload.stage,
            expected_revision=payload.expected_revision,
        )
    except (AllocationValidationError, StaleScheduleError) as e:
        raise _http_error(e)

    labels = {c.id: c.label for c in result.courts}
    return GenerateResponse(
        proposed_allocations=_proposed(result.proposal.proposed, labels),
        conflicts=_conflicts(result.proposal.conflicts),
        assigned_count=result.proposal.assigned_count,
        staged_count=result.staged_count,
        schedule_revision=result.schedule_revision,
    )


@router.post("/divisions/{division_id}/schedule/apply", response_model=ApplyResponse)
def apply(division_id: int, payload: ApplyRequest, session: Session = Depends(get_session)):
    """Stage allocations as pending. Replaces any existing allocation per encounter."""
    division = require_division(session, division_id)
    items = [(a.encounter_id, a.court_id, a.start) for a in payload.allocations]
    try:
        staged = apply_allocations(
            session,
            division,
            items,
            duration_minutes=payload.duration_minutes,
            rest_minutes=payload.rest_minutes,
            expected_revision=payload.expected_revision,
        )
    except (AllocationValidationError, StaleScheduleError) as e:
        raise _http_error(e)
    return ApplyResponse(staged_count=staged, schedule_revision=division.schedule_revision)


@router.post("/divisions/{division_id}/schedule/persist", response_model=PersistResponse)
def persist(
    division_id: int,
    payload: Optional[RevisionRequest] = None,
    session: Session = Depends(get_session),
):
    """Commit pending allocations onto encounters. Failures are per record."""
    division = require_division(session, division_id)
    expected = payload.expected_revision if payload else None
    try:
        result = persist_pending(session, division, expected_revision=expected)
    except StaleScheduleError as e:
        raise _http_error(e)
    return _persist_response(result)


@router.post("/divisions/{division_id}/schedule/allocations", response_model=PersistResponse)
def apply_and_persist(division_id: int, payload: ApplyRequest, session: Session = Depends(get_session)):
    """Stage then persist in one call. The revision check applies to the staging step."""
    division = require_division(session, division_id)
    items = [(a.encounter_id, a.court_id, a.start) for a in payload.allocations]
    try:
        apply_allocations(
            session,
            division,
            items,
            duration_minutes=payload.duration_minutes,
            rest_minutes=payload.rest_minutes,
            expected_revision=payload.expected_revision,
        )
        result = persist_pending(session, division)
    except (AllocationValidationError, StaleScheduleError) as e:
        raise _http_error(e)
    return _persist_response(result)


@router.get("/divisions/{division_id}/schedule", response_model=ScheduleResponse)
def get_schedule(division_id: int, session: Session = Depends(get_session)):
    division = require_division(session, division_id)
    allocations: List[Allocation] = list_allocations(session, division)
    return ScheduleResponse(
        division_id=division.id,
        schedule_revision=division.schedule_revision,
        allocations=[AllocationResponse.model_validate(a) for a in allocations],
    )


@router.delete("/encounters/{encounter_id}/allocation", status_code=204)
def delete_allocation(
    encounter_id: int,
    expected_revision: Optional[int] = None,
    session: Session = Depends(get_session),
):
    """Remove an encounter's allocation, pending or committed. 404 if it has none."""
    require_encounter(session, encounter_id)
    try:
        removed = remove_allocation(session, encounter_id, expected_revision=expected_revision)
    except StaleScheduleError as e:
        raise _http_error(e)
    if not removed:
        raise HTTPException(status_code=404, detail=f"Encounter {encounter_id} has no allocation")
    return Response(status_code=204)


@router.post("/divisions/{division_id}/schedule/clear", response_model=ClearResponse)
def clear(
    division_id: int,
    payload: Optional[ClearRequest] = None,
    session: Session = Depends(get_session),
):
    division = require_division(session, division_id)
    payload = payload or ClearRequest()
    if payload.pool_id is not None:
        require_pool(session, division, payload.pool_id)
    try:
        cleared = clear_schedule(
            session, division, pool_id=payload.pool_id, expected_revision=payload.expected_revision
        )
    except StaleScheduleError as e:
        raise _http_error(e)
    session.refresh(division)
    return ClearResponse(cleared_count=cleared, schedule_revision=division.schedule_revision)


@router.get("/divisions/{division_id}/schedule/estimate", response_model=EstimateResponse)
def estimate(
    division_id: int,
    court_ids: Optional[List[int]] = Query(default=None),
    court_group_id: Optional[int] = None,
    duration_minutes: Optional[int] = None,
    rest_minutes: Optional[int] = None,
    pool_id: Optional[int] = None,
    round_number: Optional[int] = None,
    start: Optional[datetime] = None,
    session: Session = Depends(get_session),
):
    """Advisory: ceil(encounters / courts) * (duration + rest) minutes."""
    division = require_division(session, division_id)
    try:
        result = estimate_schedule(
            session,
            division,
            court_ids=court_ids,
            court_group_id=court_group_id,
            duration_minutes=duration_minutes,
            rest_minutes=rest_minutes,
            pool_id=pool_id,
            round_number=round_number,
            start=to_naive_utc(start),
        )
    except AllocationValidationError as e:
        raise _http_error(e)
    return EstimateResponse(**result)


@router.get("/divisions/{division_id}/schedule/validate", response_model=ValidateResponse)
def validate(division_id: int, session: Session = Depends(get_session)):
    division = require_division(session, division_id)
    result = validate_schedule(session, division)
    result["conflicts"] = _conflicts(result["conflicts"])
    return ValidateResponse(**result)
