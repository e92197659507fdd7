"""
Tests for the Flask JSON API.
"""
import pytest

from board_server import create_app
from lifeboard.session import BoardSession

SECRET = "test-secret"
AUTH = {"X-API-Key": SECRET}


@pytest.fixture
def session(store):
    return BoardSession(store)


@pytest.fixture
def client(session):
    app = create_app(session, SECRET)
    app.config["TESTING"] = True
    return app.test_client()


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Auth
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_missing_key_is_401(client):
    r = client.post("/api/move", json={"studentId": "s1", "from": "active", "to": "backend", "fromIndex": 0, "toIndex": 0})
    assert r.status_code == 401


def test_wrong_key_is_403(client):
    r = client.post("/api/transition/cancel", headers={"X-API-Key": "nope"})
    assert r.status_code == 403


def test_no_secret_configured_is_503(session):
    client = create_app(session, "").test_client()
    r = client.post("/api/transition/cancel", headers=AUTH)
    assert r.status_code == 503


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Read routes
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_board(client):
    r = client.get("/api/board")
    assert r.status_code == 200
    data = r.get_json()
    assert data["board"]["columnOrder"][0] == "active"
    assert data["stats"]["total"] == 9
    assert data["pending"] is None


def test_stats_for_team(client, session):
    session.set_team("s4", "team-a")
    r = client.get("/api/stats?team=team-a")
    assert r.get_json()["by_column"]["backend"] == 1


def test_health(client):
    r = client.get("/health")
    assert r.get_json()["status"] == "ok"


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Mutating routes
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def _move(client, student, source, dest, from_index, to_index):
    return client.post("/api/move", headers=AUTH, json={
        "studentId": student, "from": source, "to": dest,
        "fromIndex": from_index, "toIndex": to_index,
    })


def test_move(client, session):
    r = _move(client, "s1", "active", "backend", 0, 0)
    assert r.status_code == 200
    assert session.snapshot.locate("s1") == ("backend", 0)


def test_move_validation(client):
    r = client.post("/api/move", headers=AUTH, json={"studentId": "s1", "from": "active", "fromIndex": "x"})
    assert r.status_code == 400


def test_stale_move_is_409(client):
    assert _move(client, "s1", "active", "backend", 1, 0).status_code == 409


def test_churn_flow(client, session):
    r = _move(client, "s1", "active", "churned", 0, 0)
    assert r.status_code == 202
    assert r.get_json()["pending"]["requires"] == "churn"

    r = client.post("/api/transition/confirm", headers=AUTH, json={})
    assert r.status_code == 400

    r = client.post("/api/transition/confirm", headers=AUTH, json={"date": "2024-03-01"})
    assert r.status_code == 200
    assert session.snapshot.locate("s1") == ("churned", 0)


def test_cancel(client, session):
    _move(client, "s1", "active", "paused", 0, 0)
    r = client.post("/api/transition/cancel", headers=AUTH)
    assert r.status_code == 200
    assert session.pending_transition is None


def test_add_note(client, session):
    r = client.post("/api/students/s3/notes", headers=AUTH, json={"text": "Renewal call booked", "author": "kim"})
    assert r.status_code == 201
    assert session.snapshot.entities["s3"].notes[-1].author == "kim"


def test_note_for_unknown_student_is_404(client):
    r = client.post("/api/students/ghost/notes", headers=AUTH, json={"text": "hi"})
    assert r.status_code == 404


def test_set_team(client, session):
    r = client.put("/api/students/s2/team", headers=AUTH, json={"team": "team-b"})
    assert r.status_code == 200
    assert session.snapshot.entities["s2"].team == "team-b"
    r = client.put("/api/students/s2/team", headers=AUTH, json={})
    assert r.status_code == 400


def test_reload(client):
    r = client.post("/api/reload", headers=AUTH)
    assert r.status_code == 200
    assert r.get_json()["stats"]["total"] == 9


def test_non_string_team_rejected(client):
    r = client.put("/api/students/s1/team", headers=AUTH, json={"team": 5})
    assert r.status_code == 400
    client.put("/api/students/s2/team", headers=AUTH, json={"team": "north"})
    r = client.get("/api/board")
    assert r.status_code == 200
    assert r.get_json()["teams"] == ["north"]


def test_non_string_pause_reason_is_400(client, session):
    _move(client, "s1", "active", "paused", 0, 0)
    r = client.post("/api/transition/confirm", headers=AUTH, json={"date": "2024-01-01", "reason": 5})
    assert r.status_code == 400
    assert r.get_json()["pending"]["requires"] == "pause"
    assert session.snapshot.locate("s1") == ("active", 0)
