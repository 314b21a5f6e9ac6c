"""
Allocation Service - court/time scheduling against the database

Wraps the pure allocation engine with snapshot loading and the three
separate steps of a schedule change:

1. generate_schedule(): propose (optionally stage) allocations
2. apply_allocations(): stage proposals as pending Allocation rows
3. persist_pending(): commit pending rows onto their encounters

Every mutation bumps Division.schedule_revision. Callers that pass
expected_revision get StaleScheduleError instead of silently overwriting
a concurrent change.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence, Tuple

from fastapi import HTTPException
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from courtplan.models.allocation import Allocation
from courtplan.models.court import UNSCHEDULABLE_COURT_STATUSES, Court
from courtplan.models.division import Division
from courtplan.models.encounter import ENCOUNTER_COMPLETED, Encounter
from courtplan.services.allocation_engine import (
    AllocationConflict,
    AllocationRecord,
    AllocationSet,
    AllocationValidationError,
    CourtRef,
    EncounterRef,
    ProposalResult,
    ScheduleConfig,
    StaleScheduleError,
    estimate_completion,
    find_schedule_conflicts,
    propose_allocations,
    resolve_courts,
    validate_config,
)
from courtplan.services.division_lifecycle import refresh_division_status
from courtplan.utils.datetimes import to_naive_utc

logger = logging.getLogger(__name__)


# ============================================================================
# Results
# ============================================================================


@dataclass
class GenerateResult:
    proposal: ProposalResult
    config: ScheduleConfig
    courts: List[CourtRef]
    schedule_revision: int
    staged_count: int = 0


@dataclass
class PersistFailure:
    encounter_id: int
    reason: str


@dataclass
class PersistResult:
    persisted_count: int = 0
    failures: List[PersistFailure] = field(default_factory=list)
    schedule_revision: int = 0
    still_pending: int = 0


# ============================================================================
# Snapshot helpers
# ============================================================================


def _court_ref(court: Court) -> CourtRef:
    return CourtRef(
        id=court.id,
        label=court.label,
        court_group_id=court.court_group_id,
        sort_order=court.sort_order,
        status=court.status,
    )


def _record(alloc: Allocation) -> AllocationRecord:
    return AllocationRecord(
        encounter_id=alloc.encounter_id,
        court_id=alloc.court_id,
        start=alloc.start_at,
        end=alloc.end_at,
        pending=alloc.is_pending,
    )


def _encounter_ref(encounter: Encounter) -> EncounterRef:
    return EncounterRef(
        id=encounter.id,
        unit_a_id=encounter.unit_a_id,
        unit_b_id=encounter.unit_b_id,
        label=encounter.label,
    )


def load_court_refs(session: Session, tournament_id: int) -> List[CourtRef]:
    courts = session.exec(
        select(Court).where(Court.tournament_id == tournament_id).order_by(Court.sort_order, Court.id)
    ).all()
    return [_court_ref(c) for c in courts]


def load_allocations_on_courts(session: Session, court_ids: Sequence[int]) -> List[AllocationRecord]:
    """Every allocation on the given courts, across all divisions (courts are shared)."""
    if not court_ids:
        return []
    rows = session.exec(select(Allocation).where(Allocation.court_id.in_(list(court_ids)))).all()
    return [_record(a) for a in rows]


def check_revision(division: Division, expected_revision: Optional[int]) -> None:
    if expected_revision is not None and expected_revision != division.schedule_revision:
        raise StaleScheduleError(expected_revision, division.schedule_revision)


def _bump_revision(session: Session, division: Division) -> None:
    division.schedule_revision = (division.schedule_revision or 0) + 1
    session.add(division)


def build_config(
    division: Division,
    start: Optional[datetime],
    duration_minutes: Optional[int] = None,
    rest_minutes: Optional[int] = None,
    court_ids: Optional[List[int]] = None,
    court_group_id: Optional[int] = None,
) -> ScheduleConfig:
    """Request values win over the division's defaults."""
    return ScheduleConfig(
        duration_minutes=duration_minutes if duration_minutes is not None else division.default_duration_minutes,
        rest_minutes=rest_minutes if rest_minutes is not None else division.default_rest_minutes,
        start=start,
        court_ids=court_ids,
        court_group_id=court_group_id,
    )


def select_candidates(
    session: Session,
    division: Division,
    encounter_ids: Optional[List[int]] = None,
    pool_id: Optional[int] = None,
    round_number: Optional[int] = None,
) -> List[Encounter]:
    """
    Encounters to schedule, in scheduling order.

    Explicit ids keep the caller's order and must belong to the division.
    Otherwise: every unallocated, non-bye, not-completed encounter of the
    division (optionally filtered by pool/round), by (round, sequence, id).
    """
    if encounter_ids:
        rows = session.exec(select(Encounter).where(Encounter.id.in_(encounter_ids))).all()
        by_id = {e.id: e for e in rows}
        foreign = [eid for eid in encounter_ids if eid not in by_id or by_id[eid].division_id != division.id]
        if foreign:
            raise AllocationValidationError(f"Encounters not found in division {division.id}: {foreign}")
        ordered: List[Encounter] = []
        seen = set()
        for eid in encounter_ids:
            if eid not in seen:
                seen.add(eid)
                ordered.append(by_id[eid])
        return ordered

    allocated = select(Allocation.encounter_id)
    query = select(Encounter).where(
        Encounter.division_id == division.id,
        Encounter.is_bye == False,  # noqa: E712
        Encounter.status != ENCOUNTER_COMPLETED,
        Encounter.id.not_in(allocated),
    )
    if pool_id is not None:
        query = query.where(Encounter.pool_id == pool_id)
    if round_number is not None:
        query = query.where(Encounter.round_number == round_number)
    query = query.order_by(Encounter.round_number, Encounter.sequence, Encounter.id)
    return list(session.exec(query).all())


# ============================================================================
# Generate (propose)
# ============================================================================


def generate_schedule(
    session: Session,
    division: Division,
    start: Optional[datetime],
    duration_minutes: Optional[int] = None,
    rest_minutes: Optional[int] = None,
    court_ids: Optional[List[int]] = None,
    court_group_id: Optional[int] = None,
    encounter_ids: Optional[List[int]] = None,
    pool_id: Optional[int] = None,
    round_number: Optional[int] = None,
    stage: bool = False,
    expected_revision: Optional[int] = None,
) -> GenerateResult:
    """
    Propose allocations for a division. Conflicts are advisory.

    With stage=True the proposals are applied as pending allocations in the
    same call (not persisted), guarded by expected_revision like apply.

    Raises:
        AllocationValidationError: bad config or no usable courts
        StaleScheduleError: stage=True and expected_revision does not match
    """
    if stage:
        check_revision(division, expected_revision)
    config = build_config(division, to_naive_utc(start), duration_minutes, rest_minutes, court_ids, court_group_id)
    validate_config(config)
    courts = resolve_courts(
        load_court_refs(session, division.tournament_id),
        court_ids=config.court_ids,
        court_group_id=config.court_group_id,
    )

    candidates = select_candidates(session, division, encounter_ids, pool_id, round_number)
    existing = load_allocations_on_courts(session, [c.id for c in courts])
    proposal = propose_allocations([_encounter_ref(e) for e in candidates], courts, config, existing)

    logger.info(
        "Division %d: proposed %d allocations on %d courts from %s (%d conflicts)",
        division.id,
        proposal.assigned_count,
        len(courts),
        config.start,
        len(proposal.conflicts),
    )

    result = GenerateResult(
        proposal=proposal,
        config=config,
        courts=courts,
        schedule_revision=division.schedule_revision,
    )
    if stage and proposal.proposed:
        result.staged_count = stage_records(session, division, proposal.proposed)
        result.schedule_revision = division.schedule_revision
    return result


# ============================================================================
# Apply (stage pending)
# ============================================================================


def stage_records(session: Session, division: Division, records: Sequence[AllocationRecord]) -> int:
    """
    Merge records into the persisted allocation set as pending rows.

    Replace-per-encounter: an encounter that already has an allocation gets
    its row overwritten, never a second row. Commits.
    """
    encounter_ids = [r.encounter_id for r in records]
    rows = session.exec(select(Allocation).where(Allocation.encounter_id.in_(encounter_ids))).all()
    rows_by_encounter = {a.encounter_id: a for a in rows}

    allocation_set = AllocationSet(_record(a) for a in rows)
    applied = allocation_set.apply(records)

    for encounter_id in dict.fromkeys(encounter_ids):
        record = allocation_set.get(encounter_id)
        row = rows_by_encounter.get(encounter_id)
        if row is None:
            row = Allocation(
                encounter_id=encounter_id,
                division_id=division.id,
                court_id=record.court_id,
                start_at=record.start,
                end_at=record.end,
            )
        row.division_id = division.id
        row.court_id = record.court_id
        row.start_at = record.start
        row.end_at = record.end
        row.is_pending = True
        session.add(row)

    _bump_revision(session, division)
    refresh_division_status(session, division)
    session.commit()
    session.refresh(division)

    logger.info("Division %d: staged %d pending allocations", division.id, applied)
    return applied


def apply_allocations(
    session: Session,
    division: Division,
    items: Sequence[Tuple[int, int, datetime]],
    duration_minutes: Optional[int] = None,
    rest_minutes: Optional[int] = None,
    expected_revision: Optional[int] = None,
) -> int:
    """
    Stage an ordered list of (encounter_id, court_id, start) as pending allocations.

    Raises:
        AllocationValidationError: empty list, foreign encounter, unknown court, bad duration/rest
        StaleScheduleError: expected_revision does not match
    """
    check_revision(division, expected_revision)
    if not items:
        raise AllocationValidationError("No allocations provided")

    items = [(eid, cid, to_naive_utc(start)) for eid, cid, start in items]
    starts = [start for _, _, start in items]
    config = build_config(division, min(starts) if starts else None, duration_minutes, rest_minutes)
    validate_config(config)

    encounter_ids = [eid for eid, _, _ in items]
    encounters = session.exec(select(Encounter).where(Encounter.id.in_(encounter_ids))).all()
    owned = {e.id for e in encounters if e.division_id == division.id}
    foreign = [eid for eid in encounter_ids if eid not in owned]
    if foreign:
        raise AllocationValidationError(f"Encounters not found in division {division.id}: {foreign}")

    court_ids = {c.id for c in load_court_refs(session, division.tournament_id)}
    unknown_courts = sorted({cid for _, cid, _ in items if cid not in court_ids})
    if unknown_courts:
        raise AllocationValidationError(f"Unknown court ids: {unknown_courts}")

    records = [
        AllocationRecord(encounter_id=eid, court_id=cid, start=start, end=config.slot_end(start), pending=True)
        for eid, cid, start in items
    ]
    return stage_records(session, division, records)


# ============================================================================
# Persist (commit pending onto encounters)
# ============================================================================


def _persist_failure_reason(encounter: Optional[Encounter], court: Optional[Court], division: Division) -> Optional[str]:
    if encounter is None or encounter.division_id != division.id:
        return "ENCOUNTER_NOT_FOUND"
    if encounter.status == ENCOUNTER_COMPLETED:
        return "ENCOUNTER_COMPLETED"
    if court is None:
        return "COURT_NOT_FOUND"
    if court.status in UNSCHEDULABLE_COURT_STATUSES:
        return f"COURT_UNAVAILABLE: {court.label} is {court.status}"
    return None


def persist_pending(
    session: Session,
    division: Division,
    expected_revision: Optional[int] = None,
) -> PersistResult:
    """
    Commit every pending allocation of the division to its encounter.

    Best-effort, one commit per record: a failing record is reported and
    stays pending; records already committed are not rolled back. Callers
    re-submit only the failed subset.

    Raises:
        StaleScheduleError: expected_revision does not match
    """
    check_revision(division, expected_revision)
    division_id = division.id

    rows = session.exec(select(Allocation).where(Allocation.division_id == division_id)).all()
    row_ids = {a.encounter_id: a.id for a in rows}
    allocation_set = AllocationSet(_record(a) for a in rows)

    result = PersistResult()
    for record in allocation_set.pending():
        encounter_id = record.encounter_id
        allocation = session.get(Allocation, row_ids[encounter_id])
        if allocation is None or not allocation.is_pending:
            continue
        encounter = session.get(Encounter, encounter_id)
        court = session.get(Court, allocation.court_id)

        reason = _persist_failure_reason(encounter, court, division)
        if reason:
            logger.warning("Division %d: persist of encounter %d skipped: %s", division_id, encounter_id, reason)
            result.failures.append(PersistFailure(encounter_id=encounter_id, reason=reason))
            continue

        encounter.court_id = allocation.court_id
        encounter.scheduled_at = allocation.start_at
        allocation.is_pending = False
        session.add(encounter)
        session.add(allocation)
        try:
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            logger.error(f"Division {division_id}: persist of encounter {encounter_id} failed: {exc}")
            result.failures.append(PersistFailure(encounter_id=encounter_id, reason=f"DB_ERROR: {exc}"))
            continue
        allocation_set.mark_persisted([encounter_id])
        result.persisted_count += 1

    division = session.get(Division, division_id)
    if result.persisted_count:
        _bump_revision(session, division)
    refresh_division_status(session, division)
    session.commit()
    session.refresh(division)
    result.schedule_revision = division.schedule_revision

    result.still_pending = len(allocation_set.pending())

    logger.info(
        "Division %d: persisted %d allocations, %d failures, %d still pending",
        division_id,
        result.persisted_count,
        len(result.failures),
        result.still_pending,
    )
    return result


# ============================================================================
# Remove / clear
# ============================================================================


def _clear_encounter_slot(session: Session, encounter_id: int) -> None:
    encounter = session.get(Encounter, encounter_id)
    if encounter is not None:
        encounter.court_id = None
        encounter.scheduled_at = None
        session.add(encounter)


def remove_allocation(session: Session, encounter_id: int, expected_revision: Optional[int] = None) -> bool:
    """
    Delete the allocation for an encounter (pending or committed) and free
    its court/time. Returns False when the encounter has no allocation.
    """
    allocation = session.exec(select(Allocation).where(Allocation.encounter_id == encounter_id)).first()
    if allocation is None:
        return False

    division = session.get(Division, allocation.division_id)
    check_revision(division, expected_revision)

    session.delete(allocation)
    _clear_encounter_slot(session, encounter_id)
    session.flush()
    _bump_revision(session, division)
    refresh_division_status(session, division)
    session.commit()

    logger.info("Division %d: removed allocation for encounter %d", division.id, encounter_id)
    return True


def clear_schedule(
    session: Session,
    division: Division,
    pool_id: Optional[int] = None,
    expected_revision: Optional[int] = None,
) -> int:
    """Delete every allocation of the division (optionally one pool). Returns the count removed."""
    check_revision(division, expected_revision)

    query = select(Allocation).where(Allocation.division_id == division.id)
    if pool_id is not None:
        pool_encounters = select(Encounter.id).where(Encounter.pool_id == pool_id)
        query = query.where(Allocation.encounter_id.in_(pool_encounters))
    allocations = session.exec(query).all()

    for allocation in allocations:
        _clear_encounter_slot(session, allocation.encounter_id)
        session.delete(allocation)
    session.flush()

    if allocations:
        _bump_revision(session, division)
    refresh_division_status(session, division)
    session.commit()

    logger.info("Division %d: cleared %d allocations", division.id, len(allocations))
    return len(allocations)


# ============================================================================
# Read-side: list, estimate, validate
# ============================================================================


def list_allocations(session: Session, division: Division) -> List[Allocation]:
    return list(
        session.exec(
            select(Allocation)
            .where(Allocation.division_id == division.id)
            .order_by(Allocation.start_at, Allocation.court_id, Allocation.encounter_id)
        ).all()
    )


def estimate_schedule(
    session: Session,
    division: Division,
    court_ids: Optional[List[int]] = None,
    court_group_id: Optional[int] = None,
    duration_minutes: Optional[int] = None,
    rest_minutes: Optional[int] = None,
    pool_id: Optional[int] = None,
    round_number: Optional[int] = None,
    start: Optional[datetime] = None,
) -> Dict:
    """Advisory completion estimate for the division's unscheduled encounters."""
    config = build_config(division, start, duration_minutes, rest_minutes, court_ids, court_group_id)
    courts = resolve_courts(
        load_court_refs(session, division.tournament_id),
        court_ids=config.court_ids,
        court_group_id=config.court_group_id,
    )
    candidates = select_candidates(session, division, None, pool_id, round_number)
    minutes = estimate_completion(len(candidates), len(courts), config.duration_minutes, config.rest_minutes)
    return {
        "encounter_count": len(candidates),
        "court_count": len(courts),
        "duration_minutes": config.duration_minutes,
        "rest_minutes": config.rest_minutes,
        "estimated_minutes": minutes,
        "estimated_end": start + timedelta(minutes=minutes) if start is not None else None,
    }


def validate_schedule(session: Session, division: Division) -> Dict:
    """
    Audit the division's schedule: court overlaps (including other divisions
    sharing the same courts), unit double-booking, unallocated encounters.
    """
    own = list_allocations(session, division)
    court_ids = sorted({a.court_id for a in own})
    records = load_allocations_on_courts(session, court_ids)
    own_encounter_ids = {a.encounter_id for a in own}

    encounter_rows = []
    if records:
        encounter_rows = session.exec(
            select(Encounter).where(Encounter.id.in_([r.encounter_id for r in records]))
        ).all()
    encounter_refs = {e.id: _encounter_ref(e) for e in encounter_rows}
    court_labels = {c.id: c.label for c in load_court_refs(session, division.tournament_id)}

    conflicts: List[AllocationConflict] = [
        c
        for c in find_schedule_conflicts(records, encounter_refs, court_labels)
        if c.encounter_id in own_encounter_ids or c.conflicting_encounter_id in own_encounter_ids
    ]

    unallocated = session.exec(
        select(Encounter).where(
            Encounter.division_id == division.id,
            Encounter.is_bye == False,  # noqa: E712
            Encounter.id.not_in(select(Allocation.encounter_id)),
        )
    ).all()

    if conflicts:
        logger.warning("Division %d: schedule validation found %d conflicts", division.id, len(conflicts))

    return {
        "is_valid": not conflicts,
        "conflict_count": len(conflicts),
        "conflicts": conflicts,
        "unallocated_encounters": len(unallocated),
        "pending_allocations": sum(1 for a in own if a.is_pending),
    }


def require_encounter(session: Session, encounter_id: int) -> Encounter:
    encounter = session.get(Encounter, encounter_id)
    if not encounter:
        raise HTTPException(status_code=404, detail=f"Encounter {encounter_id} not found")
    return encounter
