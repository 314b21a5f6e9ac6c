"""Allocation engine: greedy earliest-available court assignment (pure, no DB)."""
from datetime import datetime, timedelta

import pytest

from courtplan.services.allocation_engine import (
    AllocationRecord,
    AllocationSet,
    AllocationValidationError,
    CourtRef,
    EncounterRef,
    ScheduleConfig,
    compute_next_available,
    estimate_completion,
    find_schedule_conflicts,
    propose_allocations,
    resolve_courts,
    validate_config,
)

NINE = datetime(2026, 3, 14, 9, 0)


def _at(hour: int, minute: int) -> datetime:
    return NINE.replace(hour=hour, minute=minute)


def _courts():
    return [CourtRef(id=1, label="A", sort_order=1), CourtRef(id=2, label="B", sort_order=2)]


def _encounters(n: int):
    return [EncounterRef(id=100 + i, unit_a_id=2 * i + 1, unit_b_id=2 * i + 2) for i in range(n)]


def _config(**overrides) -> ScheduleConfig:
    values = dict(duration_minutes=15, rest_minutes=5, start=NINE)
    values.update(overrides)
    return ScheduleConfig(**values)


def test_five_encounters_on_two_courts():
    """5 encounters, 2 courts, 15+5 min from 09:00 -> A 09:00/09:20/09:40, B 09:00/09:20."""
    result = propose_allocations(_encounters(5), _courts(), _config())

    assert result.assigned_count == 5
    assert result.conflicts == []
    placed = [(r.court_id, r.start) for r in result.proposed]
    assert placed == [
        (1, _at(9, 0)),
        (2, _at(9, 0)),
        (1, _at(9, 20)),
        (2, _at(9, 20)),
        (1, _at(9, 40)),
    ]
    by_court = {}
    for r in result.proposed:
        by_court.setdefault(r.court_id, []).append(r.start)
    assert by_court[1] == [_at(9, 0), _at(9, 20), _at(9, 40)]
    assert by_court[2] == [_at(9, 0), _at(9, 20)]


def test_end_is_start_plus_duration_plus_rest():
    result = propose_allocations(_encounters(3), _courts(), _config(duration_minutes=30, rest_minutes=10))
    for record in result.proposed:
        assert record.end == record.start + timedelta(minutes=40)
        assert record.pending is True


def test_ties_go_to_first_court_in_list_order():
    """Court order is the caller's order, not the id order."""
    courts = [CourtRef(id=2, label="B"), CourtRef(id=1, label="A")]
    result = propose_allocations(_encounters(1), courts, _config())
    assert result.proposed[0].court_id == 2


def test_zero_candidates_returns_empty_result():
    result = propose_allocations([], _courts(), _config())
    assert result.proposed == []
    assert result.conflicts == []
    assert result.assigned_count == 0


def test_committed_allocations_push_next_available():
    existing = [AllocationRecord(encounter_id=1, court_id=1, start=NINE, end=_at(9, 45), pending=False)]
    result = propose_allocations(_encounters(2), _courts(), _config(), existing)

    assert [(r.court_id, r.start) for r in result.proposed] == [(2, _at(9, 0)), (2, _at(9, 20))]
    assert result.conflicts == []


def test_pending_allocation_is_reported_as_conflict_not_skipped():
    """Pending rows do not move next_available but overlaps are flagged."""
    existing = [AllocationRecord(encounter_id=1, court_id=1, start=NINE, end=_at(9, 20), pending=True)]
    result = propose_allocations(_encounters(1), [CourtRef(id=1, label="A")], _config(), existing)

    assert result.proposed[0].start == NINE
    assert len(result.conflicts) == 1
    conflict = result.conflicts[0]
    assert conflict.court_label == "A"
    assert conflict.instant == NINE
    assert conflict.encounter_id == 100
    assert conflict.conflicting_encounter_id == 1
    assert conflict.conflict_type == "COURT_OVERLAP"


def test_candidate_own_allocation_is_ignored():
    """Re-placing an already-allocated encounter does not conflict with itself."""
    existing = [AllocationRecord(encounter_id=100, court_id=1, start=_at(10, 0), end=_at(10, 20), pending=False)]
    result = propose_allocations(_encounters(1), _courts(), _config(), existing)

    assert result.proposed[0].court_id == 1
    assert result.proposed[0].start == NINE
    assert result.conflicts == []


def test_back_to_back_slots_do_not_conflict():
    """Intervals are half-open: one ending at 09:20 and one starting at 09:20 touch, not overlap."""
    existing = [AllocationRecord(encounter_id=1, court_id=1, start=_at(9, 20), end=_at(9, 40), pending=True)]
    result = propose_allocations(_encounters(1), [CourtRef(id=1, label="A")], _config())
    assert result.proposed[0].end == _at(9, 20)
    result = propose_allocations(_encounters(1), [CourtRef(id=1, label="A")], _config(), existing)
    assert result.conflicts == []


@pytest.mark.parametrize(
    "overrides,message",
    [
        ({"start": None}, "Start time"),
        ({"duration_minutes": 0}, "duration"),
        ({"rest_minutes": 0}, "Rest"),
        ({"rest_minutes": -5}, "Rest"),
    ],
)
def test_invalid_config_rejected(overrides, message):
    with pytest.raises(AllocationValidationError, match=message):
        validate_config(_config(**overrides))
    with pytest.raises(AllocationValidationError):
        propose_allocations(_encounters(1), _courts(), _config(**overrides))


def test_empty_court_list_rejected():
    with pytest.raises(AllocationValidationError):
        propose_allocations(_encounters(1), [], _config())


def test_compute_next_available_uses_committed_only():
    existing = [
        AllocationRecord(encounter_id=1, court_id=1, start=NINE, end=_at(9, 30), pending=False),
        AllocationRecord(encounter_id=2, court_id=2, start=NINE, end=_at(10, 0), pending=True),
        AllocationRecord(encounter_id=3, court_id=9, start=NINE, end=_at(11, 0), pending=False),
    ]
    assert compute_next_available(_courts(), existing, NINE) == {1: _at(9, 30), 2: NINE}


# ============================================================================
# Court resolution
# ============================================================================


def test_resolve_explicit_ids_keep_caller_order():
    courts = _courts() + [CourtRef(id=3, label="C")]
    resolved = resolve_courts(courts, court_ids=[3, 1, 3])
    assert [c.id for c in resolved] == [3, 1]


def test_resolve_group_orders_by_sort_order():
    courts = [
        CourtRef(id=1, label="A", court_group_id=7, sort_order=2),
        CourtRef(id=2, label="B", court_group_id=7, sort_order=1),
        CourtRef(id=3, label="C", court_group_id=8, sort_order=0),
    ]
    assert [c.id for c in resolve_courts(courts, court_group_id=7)] == [2, 1]


def test_resolve_skips_closed_and_maintenance_courts():
    courts = [
        CourtRef(id=1, label="A", status="closed"),
        CourtRef(id=2, label="B", status="maintenance"),
        CourtRef(id=3, label="C", status="in_use"),
    ]
    assert [c.id for c in resolve_courts(courts, court_ids=[1, 2, 3])] == [3]
    with pytest.raises(AllocationValidationError, match="No available courts"):
        resolve_courts(courts, court_ids=[1, 2])


def test_resolve_requires_a_selection():
    with pytest.raises(AllocationValidationError, match="No courts selected"):
        resolve_courts(_courts())
    with pytest.raises(AllocationValidationError, match="Unknown court ids"):
        resolve_courts(_courts(), court_ids=[99])
    with pytest.raises(AllocationValidationError):
        resolve_courts(_courts(), court_group_id=42)


# ============================================================================
# Estimate
# ============================================================================


def test_estimate_completion():
    assert estimate_completion(5, 2, 15, 5) == 60
    assert estimate_completion(4, 2, 15, 5) == 40
    assert estimate_completion(0, 2, 15, 5) == 0


def test_estimate_completion_rejects_bad_input():
    with pytest.raises(AllocationValidationError):
        estimate_completion(5, 0, 15, 5)
    with pytest.raises(AllocationValidationError):
        estimate_completion(5, 2, 0, 5)


# ============================================================================
# Allocation set
# ============================================================================


def test_apply_replaces_per_encounter_and_is_idempotent():
    proposal = propose_allocations(_encounters(3), _courts(), _config())
    allocations = AllocationSet()

    assert allocations.apply(proposal.proposed) == 3
    assert allocations.apply(proposal.proposed) == 3
    assert len(allocations) == 3

    moved = AllocationRecord(encounter_id=100, court_id=2, start=_at(11, 0), end=_at(11, 20), pending=False)
    allocations.apply([moved])
    assert len(allocations) == 3
    assert allocations.get(100).court_id == 2
    assert allocations.get(100).pending is True


def test_persist_bookkeeping():
    proposal = propose_allocations(_encounters(3), _courts(), _config())
    allocations = AllocationSet()
    allocations.apply(proposal.proposed)

    # Pending in persist order: start, then court
    assert [r.encounter_id for r in allocations.pending()] == [100, 101, 102]

    allocations.mark_persisted([100, 999])
    assert allocations.get(100).pending is False
    assert 999 not in allocations
    assert [r.encounter_id for r in allocations.pending()] == [101, 102]


# ============================================================================
# Schedule audit
# ============================================================================


def test_find_schedule_conflicts_court_and_unit():
    allocations = [
        AllocationRecord(encounter_id=1, court_id=1, start=NINE, end=_at(9, 20)),
        AllocationRecord(encounter_id=2, court_id=1, start=_at(9, 10), end=_at(9, 30)),
        AllocationRecord(encounter_id=3, court_id=2, start=_at(9, 10), end=_at(9, 30)),
        AllocationRecord(encounter_id=4, court_id=2, start=_at(9, 30), end=_at(9, 50)),
    ]
    encounters = {
        1: EncounterRef(id=1, unit_a_id=10, unit_b_id=11),
        2: EncounterRef(id=2, unit_a_id=12, unit_b_id=13),
        3: EncounterRef(id=3, unit_a_id=10, unit_b_id=14),
        4: EncounterRef(id=4, unit_a_id=15, unit_b_id=16),
    }
    conflicts = find_schedule_conflicts(allocations, encounters, {1: "A", 2: "B"})

    assert [(c.conflict_type, c.encounter_id, c.conflicting_encounter_id) for c in conflicts] == [
        ("COURT_OVERLAP", 1, 2),
        ("UNIT_DOUBLE_BOOKED", 1, 3),
    ]
    assert conflicts[0].court_label == "A"
    assert conflicts[0].instant == _at(9, 10)
    assert conflicts[1].court_label == "B"


def test_find_schedule_conflicts_clean_schedule():
    proposal = propose_allocations(_encounters(5), _courts(), _config())
    encounters = {e.id: e for e in _encounters(5)}
    assert find_schedule_conflicts(proposal.proposed, encounters, {1: "A", 2: "B"}) == []
