"""Court registry endpoints: tournaments, courts, court groups."""
from fastapi.testclient import TestClient


def _tournament(client: TestClient) -> int:
    response = client.post("/api/tournaments", json={"name": "Autumn Classic", "location": "Riverside"})
    assert response.status_code == 201
    return response.json()["id"]


def test_create_and_get_tournament(client: TestClient):
    tournament_id = _tournament(client)
    data = client.get(f"/api/tournaments/{tournament_id}").json()
    assert data["name"] == "Autumn Classic"
    assert data["timezone"] == "UTC"
    assert client.get("/api/tournaments/9999").status_code == 404
    assert client.post("/api/tournaments", json={"name": "  "}).status_code == 422


def test_bulk_create_courts_keeps_label_order(client: TestClient):
    tournament_id = _tournament(client)
    response = client.post(f"/api/tournaments/{tournament_id}/courts", json={"labels": "1, 5,6"})
    assert response.status_code == 201
    courts = response.json()
    assert [c["label"] for c in courts] == ["1", "5", "6"]
    assert [c["sort_order"] for c in courts] == [1, 2, 3]
    assert all(c["status"] == "available" for c in courts)

    single = client.post(f"/api/tournaments/{tournament_id}/courts", json={"label": "Stadium"}).json()
    assert single[0]["sort_order"] == 4

    listed = client.get(f"/api/tournaments/{tournament_id}/courts").json()
    assert [c["label"] for c in listed] == ["1", "5", "6", "Stadium"]


def test_court_labels_must_be_unique_and_present(client: TestClient):
    tournament_id = _tournament(client)
    client.post(f"/api/tournaments/{tournament_id}/courts", json={"labels": ["A", "B"]})

    assert client.post(f"/api/tournaments/{tournament_id}/courts", json={"label": "A"}).status_code == 409
    assert client.post(f"/api/tournaments/{tournament_id}/courts", json={}).status_code == 422
    assert client.post("/api/tournaments/9999/courts", json={"label": "A"}).status_code == 404


def test_update_court_status_and_label(client: TestClient):
    tournament_id = _tournament(client)
    court_a, court_b = client.post(f"/api/tournaments/{tournament_id}/courts", json={"labels": "A,B"}).json()

    response = client.patch(f"/api/courts/{court_a['id']}", json={"status": "maintenance", "label": "Center"})
    assert response.status_code == 200
    assert response.json()["status"] == "maintenance"
    assert response.json()["label"] == "Center"

    assert client.patch(f"/api/courts/{court_a['id']}", json={"status": "flooded"}).status_code == 422
    assert client.patch(f"/api/courts/{court_b['id']}", json={"label": "Center"}).status_code == 409
    assert client.patch("/api/courts/9999", json={"status": "closed"}).status_code == 404


def test_court_groups_membership(client: TestClient):
    tournament_id = _tournament(client)
    courts = client.post(f"/api/tournaments/{tournament_id}/courts", json={"labels": "1,2,3"}).json()
    ids = [c["id"] for c in courts]

    group = client.post(
        f"/api/tournaments/{tournament_id}/court-groups", json={"name": "Front", "court_ids": [ids[2], ids[0]]}
    )
    assert group.status_code == 201
    group = group.json()
    assert group["court_ids"] == [ids[2], ids[0]]

    assert client.post(f"/api/tournaments/{tournament_id}/court-groups", json={"name": "Front"}).status_code == 409

    updated = client.post(f"/api/court-groups/{group['id']}/courts", json={"court_ids": [ids[1]]}).json()
    assert updated["court_ids"] == [ids[1]]

    listed = client.get(f"/api/tournaments/{tournament_id}/court-groups").json()
    assert [g["name"] for g in listed] == ["Front"]

    bad = client.post(f"/api/court-groups/{group['id']}/courts", json={"court_ids": [9999]})
    assert bad.status_code == 422
    assert client.post("/api/court-groups/9999/courts", json={"court_ids": []}).status_code == 404
