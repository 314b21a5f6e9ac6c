"""
Minimal score parser for game-by-game encounter scores.

Supports formats like:
  "11-7"              → 1 game, points 11-7
  "11-7 9-11 11-4"    → 3 games, points summed
  "11-7, 9-11, 11-4"  → comma-separated variant
  {"display": "11-7"} → extracts display string first
  {"games": [{"a": 11, "b": 7}, ...]} → structured games

Side "a" is the encounter's unit_a, side "b" its unit_b.
Returns None on parse failure (non-fatal).
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple


@dataclass
class ParsedScore:
    games: List[Tuple[int, int]]  # (unit_a_points, unit_b_points) per game
    unit_a_games_won: int
    unit_b_games_won: int
    unit_a_points: int
    unit_b_points: int


def parse_score(score_json: Optional[Dict[str, Any]]) -> Optional[ParsedScore]:
    """Parse a score_json blob into structured game/point counts.

    Returns None if the score cannot be parsed.
    """
    if not score_json:
        return None

    raw: Optional[str] = None
    if isinstance(score_json, str):
        raw = score_json
    elif isinstance(score_json, dict):
        if "games" in score_json and isinstance(score_json["games"], list):
            return _parse_structured_games(score_json["games"])
        raw = str(score_json.get("display") or score_json.get("score") or "")
    if not raw or not raw.strip():
        return None

    return _parse_score_string(raw.strip())


def _summarize(games: List[Tuple[int, int]]) -> ParsedScore:
    return ParsedScore(
        games=games,
        unit_a_games_won=sum(1 for a, b in games if a > b),
        unit_b_games_won=sum(1 for a, b in games if b > a),
        unit_a_points=sum(a for a, _ in games),
        unit_b_points=sum(b for _, b in games),
    )


def _parse_structured_games(games_list: list) -> Optional[ParsedScore]:
    games: List[Tuple[int, int]] = []
    for g in games_list:
        if not isinstance(g, dict):
            return None
        try:
            games.append((int(g.get("a", 0)), int(g.get("b", 0))))
        except (TypeError, ValueError):
            return None
    if not games:
        return None
    return _summarize(games)


def _parse_score_string(raw: str) -> Optional[ParsedScore]:
    """Parse strings like '11-7', '11-7 9-11 11-4', '11-7, 9-11, 11-4'."""
    normalized = raw.replace(",", " ").strip()
    parts = normalized.split()

    games: List[Tuple[int, int]] = []
    for part in parts:
        pair = part.split("-")
        if len(pair) != 2:
            return None
        try:
            a = int(pair[0])
            b = int(pair[1])
        except ValueError:
            return None
        games.append((a, b))

    if not games:
        return None

    return _summarize(games)
