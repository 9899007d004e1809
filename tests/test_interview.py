import pytest
from conftest import auth

SHARE_ALPHABET = set("ABCDEFGHJKLMNPQRSTUVWXYZ23456789")


def _create(client, world, **overrides):
    payload = {"session_name": "Interview Day 1", "session_date": "2026-11-02", "program_id": world["program"]}
    payload.update(overrides)
    return client.post("/api/interview/sessions", json=payload, headers=auth("pd"))


@pytest.fixture()
def session_with_panel(client, world):
    """pd organizes, faculty and resident join; three candidates."""
    r = _create(client, world)
    assert r.status_code == 201, r.json
    session = r.json["session"]

    for who in ("faculty", "resident"):
        r = client.post(
            "/api/interview/sessions/join",
            json={"code": session["share_token"].lower()},
            headers=auth(who, tenant=False),
        )
        assert r.status_code == 200, r.json

    candidates = {}
    for name in ("Avery Applicant", "Bailey Applicant", "Cameron Applicant"):
        r = client.post(
            f"/api/interview/sessions/{session['id']}/candidates",
            json={"candidate_name": name, "medical_school": "State SOM"},
            headers=auth("pd"),
        )
        assert r.status_code == 201
        candidates[name.split()[0]] = r.json["candidate"]["id"]
    return {"id": session["id"], "code": session["share_token"], **candidates}


def _rate(client, who, session_id, candidate_id, eq, pq, iq, **extra):
    return client.post(
        f"/api/interview/sessions/{session_id}/ratings",
        json={"candidate_id": candidate_id, "eq_score": eq, "pq_score": pq, "iq_score": iq, **extra},
        headers=auth(who, tenant=False),
    )


def test_create_session(client, world):
    r = _create(client, world)
    assert r.status_code == 201
    session = r.json["session"]
    assert session["status"] == "active"
    assert session["creator_email"] == "pd@example.com"
    assert len(session["share_token"]) == 8
    assert set(session["share_token"]) <= SHARE_ALPHABET

    r = client.get(f"/api/interview/sessions/{session['id']}", headers=auth("pd"))
    assert r.json["interviewers"] == [
        {"id": r.json["interviewers"][0]["id"], "email": "pd@example.com", "name": "Pat Director", "role": "program_director"}
    ]


def test_create_session_validation(client, world):
    r = _create(client, world, session_name="  ")
    assert r.status_code == 400
    assert r.json["error"] == "Session name is required"

    r = _create(client, world, session_type="panel")
    assert r.status_code == 400

    r = _create(client, world, program_id=world["other_program"])
    assert r.status_code == 403


def test_join_and_membership(client, world, session_with_panel):
    sid = session_with_panel["id"]
    r = client.get(f"/api/interview/sessions/{sid}", headers=auth("faculty", tenant=False))
    assert r.status_code == 200
    roles = {i["email"]: i["role"] for i in r.json["interviewers"]}
    assert roles == {"pd@example.com": "program_director", "fac@example.com": "interviewer", "res@example.com": "resident"}
    assert [c["candidate_name"] for c in r.json["candidates"]] == ["Avery Applicant", "Bailey Applicant", "Cameron Applicant"]

    r = client.get("/api/interview/sessions", headers=auth("faculty", tenant=False))
    assert [x["id"] for x in r.json["sessions"]] == [sid]

    # Joining twice does not add a second seat.
    client.post("/api/interview/sessions/join", json={"code": session_with_panel["code"]}, headers=auth("faculty", tenant=False))
    r = client.get(f"/api/interview/sessions/{sid}", headers=auth("pd"))
    assert len(r.json["interviewers"]) == 3


def test_join_errors(client, world, session_with_panel):
    r = client.post("/api/interview/sessions/join", json={}, headers=auth("viewer", tenant=False))
    assert r.status_code == 400
    assert r.json["error"] == "Session code is required"

    r = client.post("/api/interview/sessions/join", json={"code": "ZZZZZZZZ"}, headers=auth("viewer", tenant=False))
    assert r.status_code == 404

    r = client.patch(f"/api/interview/sessions/{session_with_panel['id']}", json={"status": "completed"}, headers=auth("pd"))
    assert r.status_code == 200
    r = client.post(
        "/api/interview/sessions/join", json={"code": session_with_panel["code"]}, headers=auth("viewer", tenant=False)
    )
    assert r.status_code == 403
    assert r.json["error"] == "This session has been closed."


def test_only_organizer_manages(client, world, session_with_panel):
    sid = session_with_panel["id"]
    r = client.patch(f"/api/interview/sessions/{sid}", json={"status": "completed"}, headers=auth("faculty", tenant=False))
    assert r.status_code == 403
    r = client.post(f"/api/interview/sessions/{sid}/candidates", json={"candidate_name": "X"}, headers=auth("faculty", tenant=False))
    assert r.status_code == 403
    r = client.get(f"/api/interview/sessions/{sid}/review", headers=auth("faculty", tenant=False))
    assert r.status_code == 403

    # Strangers cannot even read it.
    r = client.get(f"/api/interview/sessions/{sid}", headers=auth("viewer", tenant=False))
    assert r.status_code == 403
    r = client.get("/api/interview/sessions/9999", headers=auth("pd"))
    assert r.status_code == 404


def test_rating_create_then_revise(client, world, session_with_panel):
    sid, avery = session_with_panel["id"], session_with_panel["Avery"]
    r = _rate(client, "faculty", sid, avery, 80, 70, 90, notes="Great on teamwork", questions_used={"eq": "Q3"})
    assert r.status_code == 201
    assert r.json["rating"]["total"] == 240
    assert r.json["rating"]["is_revised"] is False

    r = _rate(client, "faculty", sid, avery, 85, 70, 90)
    assert r.status_code == 200
    assert r.json["rating"]["is_revised"] is True
    assert r.json["rating"]["revised_at"] is not None
    assert r.json["rating"]["total"] == 245


def test_rating_validation(client, world, session_with_panel):
    sid, avery = session_with_panel["id"], session_with_panel["Avery"]
    r = _rate(client, "faculty", sid, avery, 101, 70, 90)
    assert r.status_code == 400
    assert r.json["error"] == "eq_score must be an integer from 0 to 100"

    r = _rate(client, "faculty", sid, avery, 80, 70.5, 90)
    assert r.status_code == 400

    r = _rate(client, "faculty", sid, 9999, 80, 70, 90)
    assert r.status_code == 404

    r = client.post(f"/api/interview/sessions/{sid}/ratings", json={"eq_score": 1}, headers=auth("faculty", tenant=False))
    assert r.status_code == 400
    assert r.json["error"] == "Candidate ID is required"

    client.patch(f"/api/interview/sessions/{sid}", json={"status": "archived"}, headers=auth("pd"))
    r = _rate(client, "faculty", sid, avery, 80, 70, 90)
    assert r.status_code == 403


def _score_day(client, panel):
    sid = panel["id"]
    _rate(client, "faculty", sid, panel["Avery"], 85, 70, 90)
    _rate(client, "faculty", sid, panel["Bailey"], 60, 60, 60)
    _rate(client, "faculty", sid, panel["Cameron"], 70, 70, 70)
    _rate(client, "pd", sid, panel["Avery"], 90, 90, 90)
    _rate(client, "pd", sid, panel["Bailey"], 80, 80, 80)


def test_candidate_totals_and_summary(client, world, session_with_panel):
    _score_day(client, session_with_panel)
    sid = session_with_panel["id"]

    r = client.get(f"/api/interview/sessions/{sid}/summary", headers=auth("resident", tenant=False))
    assert r.status_code == 200
    candidates = r.json["candidates"]
    assert [c["candidate_name"] for c in candidates] == ["Avery Applicant", "Bailey Applicant", "Cameron Applicant"]

    avery = candidates[0]
    assert (avery["eq_total"], avery["pq_total"], avery["iq_total"]) == (87.5, 80.0, 90.0)
    assert avery["interview_total"] == 257.5
    assert [c["rank"] for c in candidates] == [1, 2, 2]

    summary = r.json["summary"]
    assert summary["total_candidates"] == 3
    assert summary["candidates_rated"] == 3
    assert summary["total_ratings"] == 5
    assert summary["interviewer_count"] == 2
    assert summary["avg_score"] == 226
    assert summary["min_score"] == 210
    assert summary["max_score"] == 257.5
    assert summary["distribution"] == {"exceptional": 1, "strong": 0, "good": 2, "average": 0, "below_average": 0}


def test_panel_members_see_only_their_own_ratings(client, world, session_with_panel):
    _score_day(client, session_with_panel)
    sid = session_with_panel["id"]

    r = client.get(f"/api/interview/sessions/{sid}/ratings", headers=auth("faculty", tenant=False))
    assert {x["interviewer_email"] for x in r.json["ratings"]} == {"fac@example.com"}
    assert len(r.json["ratings"]) == 3

    r = client.get(f"/api/interview/sessions/{sid}/ratings?candidate_id={session_with_panel['Avery']}", headers=auth("pd"))
    assert len(r.json["ratings"]) == 2


def test_review_normalization_and_resident_exclusion(client, world, session_with_panel):
    _score_day(client, session_with_panel)
    sid = session_with_panel["id"]
    _rate(client, "resident", sid, session_with_panel["Avery"], 50, 50, 50)

    r = client.get(f"/api/interview/sessions/{sid}/review", headers=auth("pd"))
    assert r.status_code == 200
    body = r.json
    assert body["exclude_residents"] is False
    assert body["summary"] == {"total_candidates": 3, "total_ratings": 6, "total_interviewers": 3}
    assert body["interviewers"][0]["email"] == "pd@example.com"

    avery = next(c for c in body["candidates"] if c["id"] == session_with_panel["Avery"])
    assert set(avery["ratings"]) == {"fac@example.com", "pd@example.com", "res@example.com"}
    assert avery["ratings"]["res@example.com"]["is_resident"] is True
    assert avery["scores"]["rating_count"] == 3
    assert avery["scores"]["raw_interview_total"] == 245 + 270 + 150

    # A lone rating has a stddev of 1, so the resident's only score sits on the mean.
    assert body["interviewer_stats"]["res@example.com"]["rating_count"] == 1

    r = client.get(f"/api/interview/sessions/{sid}/review?exclude_residents=true", headers=auth("pd"))
    avery = next(c for c in r.json["candidates"] if c["id"] == session_with_panel["Avery"])
    assert r.json["exclude_residents"] is True
    assert avery["scores"]["rating_count"] == 2
    assert avery["scores"]["raw_interview_total"] == 245 + 270
    # The matrix still shows every rating.
    assert len(avery["ratings"]) == 3
