"""
Standings Engine: pool rankings from completed encounter results.

Pure functions over plain values. The DB-facing lifecycle (calculate,
override, finalize, reset) lives in standings_service.

Ranking key, in order:
  1. matches won (desc)
  2. game differential = games won - games lost (desc)
  3. point differential = points for - points against (desc)
  4. head-to-head wins inside the group still tied on 1-3 (desc)
  5. unit id (asc)

Guarantees:
  - Deterministic (same results -> same ranks, regardless of input order)
  - More matches won always ranks higher, whatever the differentials
"""
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from courtplan.models.encounter import ENCOUNTER_COMPLETED
from courtplan.services.score_parser import parse_score


class StandingsError(Exception):
    """Base exception for standings errors"""

    pass


class StandingsValidationError(StandingsError):
    """Request values rejected before any mutation"""

    pass


class IllegalTransitionError(StandingsError):
    """Operation not allowed in the pool's/division's current lifecycle state"""

    pass


@dataclass(frozen=True)
class EncounterResult:
    """Completed-result view of an encounter"""

    encounter_id: int
    unit_a_id: Optional[int]
    unit_b_id: Optional[int]
    winner_unit_id: Optional[int]
    status: str
    score_json: Optional[dict] = None
    is_bye: bool = False

    @property
    def counts_for_standings(self) -> bool:
        return (
            self.status == ENCOUNTER_COMPLETED
            and not self.is_bye
            and self.unit_a_id is not None
            and self.unit_b_id is not None
        )

    def resolved_winner(self) -> Optional[int]:
        """Explicit winner, else the side that won more games."""
        if self.winner_unit_id in (self.unit_a_id, self.unit_b_id) and self.winner_unit_id is not None:
            return self.winner_unit_id
        parsed = parse_score(self.score_json)
        if parsed is None or parsed.unit_a_games_won == parsed.unit_b_games_won:
            return None
        return self.unit_a_id if parsed.unit_a_games_won > parsed.unit_b_games_won else self.unit_b_id


@dataclass
class StandingLine:
    unit_id: int
    matches_played: int = 0
    matches_won: int = 0
    matches_lost: int = 0
    games_won: int = 0
    games_lost: int = 0
    points_for: int = 0
    points_against: int = 0
    head_to_head_wins: int = 0
    rank: Optional[int] = None

    @property
    def game_differential(self) -> int:
        return self.games_won - self.games_lost

    @property
    def point_differential(self) -> int:
        return self.points_for - self.points_against

    def primary_key(self) -> Tuple[int, int, int]:
        return (self.matches_won, self.game_differential, self.point_differential)


def aggregate_results(unit_ids: Iterable[int], results: Iterable[EncounterResult]) -> Dict[int, StandingLine]:
    """
    Fold completed encounters into per-unit standing lines.

    Only encounters between two units of `unit_ids` count. Byes, incomplete
    encounters and encounters with an unresolved side are skipped.
    """
    lines = {uid: StandingLine(unit_id=uid) for uid in unit_ids}

    for result in results:
        if not result.counts_for_standings:
            continue
        a, b = result.unit_a_id, result.unit_b_id
        if a not in lines or b not in lines:
            continue

        line_a, line_b = lines[a], lines[b]
        line_a.matches_played += 1
        line_b.matches_played += 1

        winner = result.resolved_winner()
        if winner == a:
            line_a.matches_won += 1
            line_b.matches_lost += 1
        elif winner == b:
            line_b.matches_won += 1
            line_a.matches_lost += 1

        parsed = parse_score(result.score_json)
        if parsed is not None:
            line_a.games_won += parsed.unit_a_games_won
            line_a.games_lost += parsed.unit_b_games_won
            line_b.games_won += parsed.unit_b_games_won
            line_b.games_lost += parsed.unit_a_games_won
            line_a.points_for += parsed.unit_a_points
            line_a.points_against += parsed.unit_b_points
            line_b.points_for += parsed.unit_b_points
            line_b.points_against += parsed.unit_a_points

    return lines


def _head_to_head_wins(unit_id: int, group: Sequence[int], results: Sequence[EncounterResult]) -> int:
    """Wins of `unit_id` against the other members of a tied group."""
    opponents = set(group) - {unit_id}
    wins = 0
    for result in results:
        if not result.counts_for_standings:
            continue
        pair = {result.unit_a_id, result.unit_b_id}
        if unit_id not in pair:
            continue
        if not (pair - {unit_id}) & opponents:
            continue
        if result.resolved_winner() == unit_id:
            wins += 1
    return wins


def rank_units(lines: Iterable[StandingLine], results: Sequence[EncounterResult] = ()) -> List[StandingLine]:
    """
    Order standing lines and assign 1-based ranks in place.

    Returns the lines in rank order.
    """
    ordered = sorted(lines, key=lambda l: (-l.matches_won, -l.game_differential, -l.point_differential, l.unit_id))
    for line in ordered:
        line.head_to_head_wins = 0

    ranked: List[StandingLine] = []
    i = 0
    while i < len(ordered):
        j = i + 1
        while j < len(ordered) and ordered[j].primary_key() == ordered[i].primary_key():
            j += 1
        group = ordered[i:j]
        if len(group) > 1:
            member_ids = [l.unit_id for l in group]
            for line in group:
                line.head_to_head_wins = _head_to_head_wins(line.unit_id, member_ids, results)
            group = sorted(group, key=lambda l: (-l.head_to_head_wins, l.unit_id))
        ranked.extend(group)
        i = j

    for position, line in enumerate(ranked, start=1):
        line.rank = position
    return ranked


def is_advancement_eligible(rank: Optional[int], playoff_from_pools: int) -> bool:
    return rank is not None and rank <= playoff_from_pools


def assign_overall_seeds(pool_ranks: Sequence[Sequence[Tuple[int, Optional[int]]]], advance_count: int) -> Dict[int, int]:
    """
    Cross-pool playoff seeding for advancing units.

    `pool_ranks` holds one sequence of (unit_id, rank) per pool, pools in
    pool-number order. Seeds go Pool 1 #1, Pool 2 #1, ..., Pool 1 #2, ...
    Returns {unit_id: overall_seed}.
    """
    seeds: Dict[int, int] = {}
    next_seed = 1
    for rank in range(1, advance_count + 1):
        for pool in pool_ranks:
            # Manual overrides can leave duplicate ranks; lowest unit id first
            for unit_id, unit_rank in sorted(pool, key=lambda p: p[0]):
                if unit_rank == rank and unit_id not in seeds:
                    seeds[unit_id] = next_seed
                    next_seed += 1
    return seeds
