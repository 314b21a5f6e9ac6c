"""Score parser: game-by-game strings and structured games."""
from courtplan.services.score_parser import parse_score


def test_single_game_string():
    parsed = parse_score({"display": "11-7"})
    assert parsed.games == [(11, 7)]
    assert (parsed.unit_a_games_won, parsed.unit_b_games_won) == (1, 0)
    assert (parsed.unit_a_points, parsed.unit_b_points) == (11, 7)


def test_multi_game_space_and_comma_separated():
    spaced = parse_score({"score": "11-7 9-11 11-4"})
    commas = parse_score("11-7, 9-11, 11-4")
    assert spaced.games == commas.games == [(11, 7), (9, 11), (11, 4)]
    assert (spaced.unit_a_games_won, spaced.unit_b_games_won) == (2, 1)
    assert (spaced.unit_a_points, spaced.unit_b_points) == (31, 22)


def test_structured_games():
    parsed = parse_score({"games": [{"a": 5, "b": 11}, {"a": 11, "b": 8}, {"a": 9, "b": 11}]})
    assert (parsed.unit_a_games_won, parsed.unit_b_games_won) == (1, 2)
    assert (parsed.unit_a_points, parsed.unit_b_points) == (25, 30)


def test_unparseable_scores_return_none():
    assert parse_score(None) is None
    assert parse_score({}) is None
    assert parse_score({"display": "   "}) is None
    assert parse_score({"display": "11:7"}) is None
    assert parse_score({"display": "eleven-7"}) is None
    assert parse_score({"games": []}) is None
    assert parse_score({"games": ["11-7"]}) is None
