"""Standings endpoints: calculate, override, finalize, reset and their lifecycle guards."""
from itertools import combinations

import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session

from courtplan.models.division import Division
from courtplan.models.encounter import ENCOUNTER_COMPLETED, Encounter

START = "2026-03-14T09:00:00"


def _make_pool(client: TestClient, division_id: int, names):
    pool = client.post(f"/api/divisions/{division_id}/pools", json={}).json()
    units = client.post(
        f"/api/divisions/{division_id}/units",
        json={"units": [{"name": n, "pool_id": pool["id"]} for n in names]},
    ).json()
    # Round robin; the lower-indexed unit is always side a
    encounters = client.post(
        f"/api/divisions/{division_id}/encounters",
        json={
            "encounters": [
                {"pool_id": pool["id"], "unit_a_id": a["id"], "unit_b_id": b["id"]}
                for a, b in combinations(units, 2)
            ]
        },
    ).json()
    return pool, units, encounters


def _schedule(client: TestClient, division_id: int, court_ids):
    client.post(
        f"/api/divisions/{division_id}/schedule/generate",
        json={"start": START, "court_ids": court_ids, "stage": True},
    )
    client.post(f"/api/divisions/{division_id}/schedule/persist")


def _play_all(client: TestClient, encounters):
    """Side a (the better seed) wins every encounter 11-5 11-7."""
    for e in encounters:
        response = client.patch(
            f"/api/encounters/{e['id']}/result",
            json={"status": "Completed", "score": {"display": "11-5 11-7"}},
        )
        assert response.status_code == 200


@pytest.fixture
def pool_setup(client: TestClient):
    """Division (playoff_from_pools=2) with one scheduled, fully played pool of 4."""
    tournament = client.post("/api/tournaments", json={"name": "Summer Slam"}).json()
    courts = client.post(f"/api/tournaments/{tournament['id']}/courts", json={"labels": "1,2"}).json()
    division = client.post(
        f"/api/tournaments/{tournament['id']}/divisions",
        json={"name": "Mixed 4.0", "playoff_from_pools": 2},
    ).json()
    pool, units, encounters = _make_pool(client, division["id"], ["Alpha", "Bravo", "Charlie", "Delta"])
    _schedule(client, division["id"], [c["id"] for c in courts])
    _play_all(client, encounters)
    return {
        "tournament_id": tournament["id"],
        "division_id": division["id"],
        "court_ids": [c["id"] for c in courts],
        "pool_id": pool["id"],
        "unit_ids": [u["id"] for u in units],
        "encounter_ids": [e["id"] for e in encounters],
    }


def _calculate(client: TestClient, division_id: int, **params):
    return client.post(f"/api/divisions/{division_id}/standings/calculate", params=params)


def test_calculate_ranks_pool(client: TestClient, pool_setup):
    response = _calculate(client, pool_setup["division_id"])
    assert response.status_code == 200
    pools = response.json()
    assert len(pools) == 1
    assert pools[0]["status"] == "Calculated"
    assert pools[0]["pool_name"] == "Pool 1"

    standings = pools[0]["standings"]
    assert [s["unit_id"] for s in standings] == pool_setup["unit_ids"]
    assert [s["rank"] for s in standings] == [1, 2, 3, 4]
    assert [s["matches_won"] for s in standings] == [3, 2, 1, 0]
    top = standings[0]
    assert (top["games_won"], top["games_lost"]) == (6, 0)
    assert top["point_differential"] == 3 * (6 + 4)
    assert all(s["advanced_to_playoff"] is False for s in standings)


def test_calculate_single_pool_and_unknown_pool(client: TestClient, pool_setup):
    division_id = pool_setup["division_id"]
    assert _calculate(client, division_id, pool_id=pool_setup["pool_id"]).status_code == 200
    assert _calculate(client, division_id, pool_id=9999).status_code == 404
    assert _calculate(client, 9999).status_code == 404


def test_get_standings_before_and_after_calculate(client: TestClient, pool_setup):
    division_id = pool_setup["division_id"]
    before = client.get(f"/api/divisions/{division_id}/standings").json()
    assert before[0]["status"] == "NotCalculated"
    assert before[0]["standings"] == []

    _calculate(client, division_id)
    after = client.get(f"/api/divisions/{division_id}/standings").json()
    assert len(after[0]["standings"]) == 4


def test_override_rank(client: TestClient, pool_setup):
    division_id = pool_setup["division_id"]
    fourth = pool_setup["unit_ids"][3]

    not_calculated = client.post(f"/api/units/{fourth}/rank", json={"pool_rank": 1})
    assert not_calculated.status_code == 409
    assert "POOL_NOT_CALCULATED" in not_calculated.json()["detail"]

    _calculate(client, division_id)
    assert client.post(f"/api/units/{fourth}/rank", json={"pool_rank": 0}).status_code == 422
    assert client.post(f"/api/units/{fourth}/rank", json={"pool_rank": -2}).status_code == 422
    assert client.post("/api/units/9999/rank", json={"pool_rank": 1}).status_code == 404

    response = client.post(f"/api/units/{fourth}/rank", json={"pool_rank": 1})
    assert response.status_code == 200
    assert response.json()["rank"] == 1
    assert response.json()["rank_overridden"] is True

    # Recalculation discards manual overrides
    recalculated = _calculate(client, division_id).json()[0]["standings"]
    by_unit = {s["unit_id"]: s for s in recalculated}
    assert by_unit[fourth]["rank"] == 4
    assert by_unit[fourth]["rank_overridden"] is False


def test_finalize_advances_top_two(client: TestClient, session: Session, pool_setup):
    """Pool of 4 with playoff_from_pools=2: ranks 1 and 2 advance, advanced_count=2."""
    division_id = pool_setup["division_id"]
    _calculate(client, division_id)

    response = client.post(f"/api/divisions/{division_id}/standings/finalize")
    assert response.status_code == 200
    data = response.json()
    assert data["advanced_count"] == 2
    assert [s["unit_id"] for s in data["advanced_units"]] == pool_setup["unit_ids"][:2]
    assert [s["overall_rank"] for s in data["advanced_units"]] == [1, 2]

    standings = client.get(f"/api/divisions/{division_id}/standings").json()[0]
    assert standings["status"] == "Finalized"
    assert standings["finalized_at"] is not None
    assert [s["advanced_to_playoff"] for s in standings["standings"]] == [True, True, False, False]

    division = session.get(Division, division_id)
    session.refresh(division)
    assert division.schedule_status == "PoolsFinalized"


def test_finalize_respects_manual_override(client: TestClient, pool_setup):
    division_id = pool_setup["division_id"]
    third = pool_setup["unit_ids"][2]
    _calculate(client, division_id)
    client.post(f"/api/units/{third}/rank", json={"pool_rank": 2})
    client.post(f"/api/units/{pool_setup['unit_ids'][1]}/rank", json={"pool_rank": 3})

    data = client.post(f"/api/divisions/{division_id}/standings/finalize").json()
    assert {s["unit_id"] for s in data["advanced_units"]} == {pool_setup["unit_ids"][0], third}


def test_finalize_with_advance_per_pool(client: TestClient, pool_setup):
    division_id = pool_setup["division_id"]
    _calculate(client, division_id)

    bad = client.post(f"/api/divisions/{division_id}/standings/finalize", json={"advance_per_pool": 0})
    assert bad.status_code == 422

    data = client.post(f"/api/divisions/{division_id}/standings/finalize", json={"advance_per_pool": 1}).json()
    assert data["advanced_count"] == 1


def test_finalize_requires_calculation(client: TestClient, pool_setup):
    response = client.post(f"/api/divisions/{pool_setup['division_id']}/standings/finalize")
    assert response.status_code == 409
    assert "POOL_NOT_CALCULATED" in response.json()["detail"]


def test_finalize_requires_schedule(client: TestClient, pool_setup):
    division_id = pool_setup["division_id"]
    client.post(f"/api/divisions/{division_id}/schedule/clear")
    _calculate(client, division_id)

    response = client.post(f"/api/divisions/{division_id}/standings/finalize")
    assert response.status_code == 409
    assert "NO_SCHEDULE" in response.json()["detail"]


def test_finalized_pool_is_locked(client: TestClient, pool_setup):
    division_id = pool_setup["division_id"]
    _calculate(client, division_id)
    client.post(f"/api/divisions/{division_id}/standings/finalize")

    again = client.post(f"/api/divisions/{division_id}/standings/finalize")
    assert again.status_code == 409
    assert "POOLS_ALREADY_FINALIZED" in again.json()["detail"]

    override = client.post(f"/api/units/{pool_setup['unit_ids'][0]}/rank", json={"pool_rank": 2})
    assert override.status_code == 409
    assert "POOL_FINALIZED" in override.json()["detail"]

    recalc = _calculate(client, division_id)
    assert recalc.status_code == 409

    status = client.get(f"/api/divisions/{division_id}/status").json()
    assert status["allowed_operations"]["can_reset"] is True
    assert status["allowed_operations"]["can_finalize"] is False
    assert status["allowed_operations"]["can_override"] is False


def test_reset_returns_pools_to_calculated(client: TestClient, pool_setup):
    division_id = pool_setup["division_id"]
    _calculate(client, division_id)
    client.post(f"/api/divisions/{division_id}/standings/finalize")

    response = client.post(f"/api/divisions/{division_id}/standings/reset")
    assert response.status_code == 200
    assert response.json() == {"success": True, "reset_pool_count": 1}

    pool = client.get(f"/api/divisions/{division_id}/standings").json()[0]
    assert pool["status"] == "Calculated"
    assert all(s["advanced_to_playoff"] is False for s in pool["standings"])
    assert all(s["overall_rank"] is None for s in pool["standings"])
    # Results are kept
    assert [s["matches_won"] for s in pool["standings"]] == [3, 2, 1, 0]

    status = client.get(f"/api/divisions/{division_id}/status").json()
    assert status["schedule_status"] == "UnitsAssigned"

    # Finalize is allowed again
    assert client.post(f"/api/divisions/{division_id}/standings/finalize").status_code == 200


def test_reset_without_finalize_is_noop(client: TestClient, pool_setup):
    response = client.post(f"/api/divisions/{pool_setup['division_id']}/standings/reset")
    assert response.status_code == 200
    assert response.json()["reset_pool_count"] == 0


def test_reset_refused_after_playoff_encounter_completed(client: TestClient, session: Session, pool_setup):
    division_id = pool_setup["division_id"]
    _calculate(client, division_id)
    client.post(f"/api/divisions/{division_id}/standings/finalize")

    first, second = pool_setup["unit_ids"][:2]
    final = Encounter(
        division_id=division_id,
        pool_id=None,
        label="Final",
        unit_a_id=first,
        unit_b_id=second,
        status=ENCOUNTER_COMPLETED,
        winner_unit_id=first,
    )
    session.add(final)
    session.commit()

    response = client.post(f"/api/divisions/{division_id}/standings/reset")
    assert response.status_code == 409
    assert "PLAYOFFS_STARTED" in response.json()["detail"]


def test_bracket_encounter_after_finalize_blocks_reset_once_played(client: TestClient, pool_setup):
    division_id = pool_setup["division_id"]
    first, second = pool_setup["unit_ids"][:2]
    url = f"/api/divisions/{division_id}/encounters"
    final = {"label": "Final", "unit_a_id": first, "unit_b_id": second}

    assert client.post(url, json={"encounters": [final]}).status_code == 409

    _calculate(client, division_id)
    client.post(f"/api/divisions/{division_id}/standings/finalize")
    created = client.post(url, json={"encounters": [final]})
    assert created.status_code == 201
    final_id = created.json()[0]["id"]

    # Scheduled but unplayed bracket encounters do not block a reset
    assert client.post(f"/api/divisions/{division_id}/standings/reset").json()["reset_pool_count"] == 1
    client.post(f"/api/divisions/{division_id}/standings/finalize")

    client.patch(f"/api/encounters/{final_id}/result", json={"status": "Completed", "winner_unit_id": first})
    response = client.post(f"/api/divisions/{division_id}/standings/reset")
    assert response.status_code == 409
    assert "PLAYOFFS_STARTED" in response.json()["detail"]


def test_reset_without_finalized_pools_ignores_poolless_results(client: TestClient, session: Session):
    tournament = client.post("/api/tournaments", json={"name": "Knockout Only"}).json()
    division = client.post(f"/api/tournaments/{tournament['id']}/divisions", json={"name": "Open"}).json()
    session.add(Encounter(division_id=division["id"], pool_id=None, label="Final", status=ENCOUNTER_COMPLETED))
    session.commit()

    response = client.post(f"/api/divisions/{division['id']}/standings/reset")
    assert response.status_code == 200
    assert response.json() == {"success": True, "reset_pool_count": 0}


def test_finalized_pool_results_are_locked(client: TestClient, pool_setup):
    division_id = pool_setup["division_id"]
    _calculate(client, division_id)
    client.post(f"/api/divisions/{division_id}/standings/finalize")

    response = client.patch(
        f"/api/encounters/{pool_setup['encounter_ids'][0]}/result", json={"score": {"display": "0-11"}}
    )
    assert response.status_code == 409


def test_overall_seeds_across_two_pools(client: TestClient, pool_setup):
    division_id = pool_setup["division_id"]
    pool_2, units_2, encounters_2 = _make_pool(client, division_id, ["Echo", "Foxtrot", "Golf", "Hotel"])
    _schedule(client, division_id, pool_setup["court_ids"])
    _play_all(client, encounters_2)
    _calculate(client, division_id)

    data = client.post(f"/api/divisions/{division_id}/standings/finalize").json()
    assert data["advanced_count"] == 4
    p1, p2 = pool_setup["unit_ids"], [u["id"] for u in units_2]
    assert [(s["unit_id"], s["overall_rank"]) for s in data["advanced_units"]] == [
        (p1[0], 1),
        (p2[0], 2),
        (p1[1], 3),
        (p2[1], 4),
    ]
