"""
Allocation Engine - greedy earliest-available-court assignment

Pure scheduling logic, no database access. Callers load a snapshot of
courts, candidate encounters and existing allocations, hand it to
propose_allocations(), and decide separately whether to apply/persist.

Algorithm:
1. next_available[court] = max(config.start, latest end of committed allocations on that court)
2. For each candidate (caller order): pick the court with the smallest
   next_available (ties -> first listed court), occupy [start, start + duration + rest)
3. Overlaps with existing allocations are reported as advisory conflicts;
   the proposal is still produced.
"""

import logging
import math
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Sequence

from courtplan.models.court import UNSCHEDULABLE_COURT_STATUSES

logger = logging.getLogger(__name__)


# ============================================================================
# Errors
# ============================================================================


class AllocationError(Exception):
    """Base exception for allocation errors"""

    pass


class AllocationValidationError(AllocationError):
    """Validation failed before any allocation was attempted"""

    pass


class StaleScheduleError(AllocationError):
    """The allocation set changed since the caller's snapshot was taken"""

    def __init__(self, expected_revision: int, current_revision: int):
        self.expected_revision = expected_revision
        self.current_revision = current_revision
        super().__init__(
            f"Schedule revision is {current_revision}, request was based on revision {expected_revision}"
        )


# ============================================================================
# Value objects
# ============================================================================


@dataclass(frozen=True)
class CourtRef:
    id: int
    label: str
    court_group_id: Optional[int] = None
    sort_order: int = 0
    status: str = "available"


@dataclass(frozen=True)
class EncounterRef:
    """Scheduling-relevant view of an encounter"""

    id: int
    unit_a_id: Optional[int] = None
    unit_b_id: Optional[int] = None
    label: Optional[str] = None

    @property
    def unit_ids(self) -> List[int]:
        return [u for u in (self.unit_a_id, self.unit_b_id) if u is not None]


@dataclass
class ScheduleConfig:
    duration_minutes: int
    rest_minutes: int
    start: Optional[datetime]
    court_ids: Optional[List[int]] = None
    court_group_id: Optional[int] = None

    @property
    def block_minutes(self) -> int:
        """Minutes a court stays busy per encounter (play + rest)."""
        return self.duration_minutes + self.rest_minutes

    def slot_end(self, start: datetime) -> datetime:
        return start + timedelta(minutes=self.block_minutes)


@dataclass
class AllocationRecord:
    encounter_id: int
    court_id: int
    start: datetime
    end: datetime
    pending: bool = True

    def overlaps(self, start: datetime, end: datetime) -> bool:
        # Half-open [start, end) intervals
        return self.start < end and self.end > start


@dataclass
class AllocationConflict:
    court_id: int
    court_label: str
    instant: datetime
    description: str
    encounter_id: Optional[int] = None
    conflicting_encounter_id: Optional[int] = None
    conflict_type: str = "COURT_OVERLAP"  # COURT_OVERLAP | UNIT_DOUBLE_BOOKED

    def to_dict(self) -> Dict:
        return {
            "court_id": self.court_id,
            "court_label": self.court_label,
            "instant": self.instant,
            "description": self.description,
            "encounter_id": self.encounter_id,
            "conflicting_encounter_id": self.conflicting_encounter_id,
            "conflict_type": self.conflict_type,
        }


@dataclass
class ProposalResult:
    proposed: List[AllocationRecord] = field(default_factory=list)
    conflicts: List[AllocationConflict] = field(default_factory=list)

    @property
    def assigned_count(self) -> int:
        return len(self.proposed)


# ============================================================================
# Validation and court resolution
# ============================================================================


def validate_config(config: ScheduleConfig) -> None:
    """
    Reject a config before any allocation is attempted.

    Raises AllocationValidationError if validation fails.
    """
    if config.start is None:
        raise AllocationValidationError("Start time is required")
    if config.duration_minutes is None or config.duration_minutes <= 0:
        raise AllocationValidationError(f"Match duration must be a positive integer, got {config.duration_minutes}")
    if config.rest_minutes is None or config.rest_minutes <= 0:
        raise AllocationValidationError(f"Rest minutes must be a positive integer, got {config.rest_minutes}")


def resolve_courts(
    courts: Sequence[CourtRef],
    court_ids: Optional[Sequence[int]] = None,
    court_group_id: Optional[int] = None,
) -> List[CourtRef]:
    """
    Resolve the ordered court set for an allocation run.

    Explicit ids keep the caller's order. A group reference yields the
    group's courts by (sort_order, id). Courts under maintenance or closed
    are dropped. An empty result is a validation error.
    """
    by_id = {c.id: c for c in courts}
    if court_ids:
        unknown = [cid for cid in court_ids if cid not in by_id]
        if unknown:
            raise AllocationValidationError(f"Unknown court ids: {unknown}")
        seen = set()
        selected = []
        for cid in court_ids:
            if cid not in seen:
                seen.add(cid)
                selected.append(by_id[cid])
    elif court_group_id is not None:
        selected = sorted(
            (c for c in courts if c.court_group_id == court_group_id),
            key=lambda c: (c.sort_order, c.id),
        )
    else:
        raise AllocationValidationError("No courts selected: provide court ids or a court group")

    available = [c for c in selected if c.status not in UNSCHEDULABLE_COURT_STATUSES]
    if not available:
        raise AllocationValidationError("No available courts in the selected set")
    return available


# ============================================================================
# Proposal
# ============================================================================


def compute_next_available(
    courts: Sequence[CourtRef],
    existing: Iterable[AllocationRecord],
    start: datetime,
) -> Dict[int, datetime]:
    """Earliest free instant per court, considering committed allocations only."""
    next_available = {c.id: start for c in courts}
    for alloc in existing:
        if alloc.pending:
            continue
        if alloc.court_id in next_available and alloc.end > next_available[alloc.court_id]:
            next_available[alloc.court_id] = alloc.end
    return next_available


def propose_allocations(
    candidates: Sequence[EncounterRef],
    courts: Sequence[CourtRef],
    config: ScheduleConfig,
    existing: Sequence[AllocationRecord] = (),
) -> ProposalResult:
    """
    Greedy earliest-available-court assignment.

    Candidates are processed in the given order. Existing allocations that
    belong to a candidate are ignored (the candidate is being re-placed).
    Conflicts are advisory and never block a proposal.
    """
    validate_config(config)
    if not courts:
        raise AllocationValidationError("No available courts in the selected set")

    result = ProposalResult()
    if not candidates:
        return result

    candidate_ids = {c.id for c in candidates}
    context = [a for a in existing if a.encounter_id not in candidate_ids]
    next_available = compute_next_available(courts, context, config.start)
    court_order = {c.id: idx for idx, c in enumerate(courts)}
    labels = {c.id: c.label for c in courts}

    for encounter in candidates:
        # min() keeps the first court on ties, so court list order wins
        court = min(courts, key=lambda c: (next_available[c.id], court_order[c.id]))
        start = next_available[court.id]
        end = config.slot_end(start)

        for other in context:
            if other.court_id == court.id and other.overlaps(start, end):
                conflict = AllocationConflict(
                    court_id=court.id,
                    court_label=labels[court.id],
                    instant=start,
                    description=(
                        f"Encounter {encounter.id} at {start:%H:%M} overlaps encounter "
                        f"{other.encounter_id} ({other.start:%H:%M}-{other.end:%H:%M}) on {labels[court.id]}"
                    ),
                    encounter_id=encounter.id,
                    conflicting_encounter_id=other.encounter_id,
                )
                result.conflicts.append(conflict)
                logger.warning(conflict.description)

        result.proposed.append(
            AllocationRecord(encounter_id=encounter.id, court_id=court.id, start=start, end=end, pending=True)
        )
        next_available[court.id] = end

    logger.debug(
        "Proposed %d allocations on %d courts (%d conflicts)",
        len(result.proposed),
        len(courts),
        len(result.conflicts),
    )
    return result


def estimate_completion(count: int, court_count: int, duration_minutes: int, rest_minutes: int) -> int:
    """
    Advisory upper bound, in minutes, for finishing `count` encounters:
    ceil(count / court_count) * (duration + rest). Performs no assignment.
    """
    if court_count <= 0:
        raise AllocationValidationError("No available courts in the selected set")
    if duration_minutes <= 0 or rest_minutes <= 0:
        raise AllocationValidationError("Duration and rest minutes must be positive integers")
    if count <= 0:
        return 0
    return math.ceil(count / court_count) * (duration_minutes + rest_minutes)


# ============================================================================
# In-memory allocation set (apply / persist bookkeeping)
# ============================================================================


class AllocationSet:
    """Allocation set keyed by encounter id (at most one allocation per encounter)"""

    def __init__(self, records: Iterable[AllocationRecord] = ()):
        self._by_encounter: Dict[int, AllocationRecord] = {}
        for record in records:
            self._by_encounter[record.encounter_id] = record

    def __len__(self) -> int:
        return len(self._by_encounter)

    def __contains__(self, encounter_id: int) -> bool:
        return encounter_id in self._by_encounter

    def get(self, encounter_id: int) -> Optional[AllocationRecord]:
        return self._by_encounter.get(encounter_id)

    def records(self) -> List[AllocationRecord]:
        return sorted(self._by_encounter.values(), key=lambda r: (r.start, r.court_id, r.encounter_id))

    def apply(self, proposals: Iterable[AllocationRecord]) -> int:
        """
        Commit proposals into the set. Any existing allocation for the same
        encounter is replaced, so re-applying a proposal is idempotent.
        Inserted records stay pending until mark_persisted().
        """
        applied = 0
        for proposal in proposals:
            self._by_encounter[proposal.encounter_id] = replace(proposal, pending=True)
            applied += 1
        return applied

    def pending(self) -> List[AllocationRecord]:
        return [r for r in self.records() if r.pending]

    def mark_persisted(self, encounter_ids: Iterable[int]) -> None:
        for eid in encounter_ids:
            record = self._by_encounter.get(eid)
            if record is not None:
                record.pending = False


# ============================================================================
# Full-schedule audit
# ============================================================================


def find_schedule_conflicts(
    allocations: Sequence[AllocationRecord],
    encounters: Dict[int, EncounterRef],
    court_labels: Dict[int, str],
) -> List[AllocationConflict]:
    """
    Audit a complete allocation set.

    Reports every overlapping pair on the same court and every unit that is
    booked into two overlapping allocations. Deterministic order: by court
    overlaps first, then unit double-bookings, each sorted by start time.
    """
    conflicts: List[AllocationConflict] = []

    by_court: Dict[int, List[AllocationRecord]] = {}
    for alloc in allocations:
        by_court.setdefault(alloc.court_id, []).append(alloc)

    for court_id in sorted(by_court):
        ordered = sorted(by_court[court_id], key=lambda a: (a.start, a.encounter_id))
        label = court_labels.get(court_id, f"Court {court_id}")
        for i, current in enumerate(ordered):
            for later in ordered[i + 1 :]:
                if later.start >= current.end:
                    break
                conflicts.append(
                    AllocationConflict(
                        court_id=court_id,
                        court_label=label,
                        instant=later.start,
                        description=(
                            f"Overlapping encounters on {label}: {current.encounter_id} ends at "
                            f"{current.end:%H:%M} but {later.encounter_id} starts at {later.start:%H:%M}"
                        ),
                        encounter_id=current.encounter_id,
                        conflicting_encounter_id=later.encounter_id,
                    )
                )

    by_unit: Dict[int, List[AllocationRecord]] = {}
    for alloc in allocations:
        ref = encounters.get(alloc.encounter_id)
        if ref is None:
            continue
        for unit_id in ref.unit_ids:
            by_unit.setdefault(unit_id, []).append(alloc)

    for unit_id in sorted(by_unit):
        ordered = sorted(by_unit[unit_id], key=lambda a: (a.start, a.encounter_id))
        for i, current in enumerate(ordered):
            for later in ordered[i + 1 :]:
                if later.start >= current.end:
                    break
                label = court_labels.get(later.court_id, f"Court {later.court_id}")
                conflicts.append(
                    AllocationConflict(
                        court_id=later.court_id,
                        court_label=label,
                        instant=later.start,
                        description=(
                            f"Unit {unit_id} is booked in encounter {current.encounter_id} until "
                            f"{current.end:%H:%M} and in encounter {later.encounter_id} at {later.start:%H:%M}"
                        ),
                        encounter_id=current.encounter_id,
                        conflicting_encounter_id=later.encounter_id,
                        conflict_type="UNIT_DOUBLE_BOOKED",
                    )
                )

    return conflicts
