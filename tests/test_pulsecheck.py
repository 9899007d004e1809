import pytest
from conftest import auth

from app.eqpqiq.db import session_scope
from app.eqpqiq.modules.pulsecheck.models import PulseDepartment, PulseDirector, PulseSite


@pytest.fixture()
def pulse(flask_app, world):
    """A site with one department, two directors and four providers (one without a director)."""
    ids = {}
    with session_scope(flask_app) as s:
        site = PulseSite(health_system_id=world["hs"], name="North Campus", region="North")
        s.add(site)
        s.flush()
        dept = PulseDepartment(site_id=site.id, name="Emergency Department")
        s.add(dept)
        s.flush()
        dana = PulseDirector(name="Dana Director", email="dana@example.com", department_id=dept.id)
        eli = PulseDirector(name="Eli Director", email="eli@example.com", department_id=dept.id)
        s.add_all([dana, eli])
        s.flush()
        ids.update(site=site.id, dept=dept.id, dana=dana.id, eli=eli.id)

    client = flask_app.test_client()
    for key, name, director in (
        ("p1", "Alex Able", ids["dana"]),
        ("p2", "Blair Baker", ids["dana"]),
        ("p3", "Casey Cole", ids["eli"]),
        ("p4", "Drew Dunn", None),
    ):
        r = client.post(
            "/api/pulsecheck/providers",
            json={
                "name": name,
                "email": f"{key}@example.com",
                "provider_type": "physician",
                "credential": "MD",
                "primary_department_id": ids["dept"],
                "primary_director_id": director,
            },
            headers=auth("pd", tenant=False),
        )
        assert r.status_code == 201, r.json
        ids[key] = r.json["provider"]["id"]
    return ids


def _cycle(client, **overrides):
    payload = {"name": "Q1 2026", "start_date": "2026-01-01", "due_date": "2026-03-31"}
    payload.update(overrides)
    return client.post("/api/pulsecheck/cycles", json=payload, headers=auth("pd", tenant=False))


def test_provider_validation(client, pulse):
    headers = auth("pd", tenant=False)
    r = client.post("/api/pulsecheck/providers", json={"name": "Nope"}, headers=headers)
    assert r.status_code == 400
    assert r.json["error"] == "Name, email, provider type, and department are required"

    r = client.post(
        "/api/pulsecheck/providers",
        json={"name": "N", "email": "n@example.com", "provider_type": "nurse", "primary_department_id": pulse["dept"]},
        headers=headers,
    )
    assert r.status_code == 400
    assert "Invalid provider_type" in r.json["error"]

    r = client.post(
        "/api/pulsecheck/providers",
        json={"name": "Alex", "email": "P1@example.com", "provider_type": "apc", "primary_department_id": pulse["dept"]},
        headers=headers,
    )
    assert r.status_code == 409
    assert r.json["duplicate"] is True

    r = client.post(
        "/api/pulsecheck/providers",
        json={"name": "N", "email": "n@example.com", "provider_type": "apc", "primary_department_id": 9999},
        headers=headers,
    )
    assert r.status_code == 404


def test_faculty_can_read_but_not_manage(client, pulse):
    r = client.get("/api/pulsecheck/providers", headers=auth("faculty", tenant=False))
    assert r.status_code == 200
    assert [p["name"] for p in r.json["providers"]] == ["Alex Able", "Blair Baker", "Casey Cole", "Drew Dunn"]

    r = client.get(f"/api/pulsecheck/providers?director_id={pulse['dana']}", headers=auth("faculty", tenant=False))
    assert [p["name"] for p in r.json["providers"]] == ["Alex Able", "Blair Baker"]

    r = client.post(
        "/api/pulsecheck/cycles",
        json={"name": "X", "start_date": "2026-01-01", "due_date": "2026-02-01"},
        headers=auth("faculty", tenant=False),
    )
    assert r.status_code == 403

    r = client.get("/api/pulsecheck/providers", headers=auth("resident", tenant=False))
    assert r.status_code == 403


def test_cycle_seeds_pending_ratings(client, pulse):
    r = _cycle(client)
    assert r.status_code == 201
    assert r.json["ratings_created"] == 3
    assert r.json["cycle"]["status"] == "active"
    assert r.json["cycle"]["created_by"] == "pd@example.com"
    cycle_id = r.json["cycle"]["id"]

    r = client.get(f"/api/pulsecheck/ratings?cycle_id={cycle_id}", headers=auth("faculty", tenant=False))
    ratings = r.json["ratings"]
    assert len(ratings) == 3
    assert {x["status"] for x in ratings} == {"pending"}
    assert {x["provider_id"] for x in ratings} == {pulse["p1"], pulse["p2"], pulse["p3"]}


def test_cycle_validation(client, pulse):
    r = _cycle(client, name="")
    assert r.status_code == 400
    assert r.json["error"] == "Name, start date, and due date are required"

    r = _cycle(client, due_date="2025-12-01")
    assert r.status_code == 400

    r = _cycle(client, reminder_cadence="hourly")
    assert r.status_code == 400
    assert "Invalid reminder_cadence" in r.json["error"]


def test_cycle_update(client, pulse):
    cycle_id = _cycle(client).json["cycle"]["id"]
    headers = auth("pd", tenant=False)

    r = client.patch("/api/pulsecheck/cycles", json={"id": cycle_id, "status": "completed"}, headers=headers)
    assert r.status_code == 200
    assert r.json["cycle"]["status"] == "completed"

    r = client.get("/api/pulsecheck/cycles?status=active", headers=headers)
    assert r.json["cycles"] == []

    r = client.patch("/api/pulsecheck/cycles", json={"id": cycle_id, "status": "paused"}, headers=headers)
    assert r.status_code == 400
    r = client.patch("/api/pulsecheck/cycles", json={"status": "active"}, headers=headers)
    assert r.status_code == 400
    assert r.json["error"] == "Cycle ID is required"
    r = client.patch("/api/pulsecheck/cycles", json={"id": cycle_id, "bogus": 1}, headers=headers)
    assert r.json["error"] == "No valid fields to update"
    r = client.patch("/api/pulsecheck/cycles", json={"id": 9999, "status": "active"}, headers=headers)
    assert r.status_code == 404


def test_rating_upsert_and_totals(client, pulse):
    cycle_id = _cycle(client).json["cycle"]["id"]
    headers = auth("faculty", tenant=False)
    payload = {
        "cycle_id": cycle_id,
        "provider_id": pulse["p1"],
        "director_id": pulse["dana"],
        "eq_empathy_rapport": 5,
        "eq_communication": 4,
        "pq_reliability": 3,
        "strengths": "  Calm under pressure ",
        "status": "completed",
    }
    r = client.post("/api/pulsecheck/ratings", json=payload, headers=headers)
    assert r.status_code == 200
    rating = r.json["rating"]
    # The seeded pending row is updated in place.
    assert r.json["updated"] is True
    assert rating["eq_total"] == 4.5
    assert rating["pq_total"] == 3.0
    assert rating["iq_total"] is None
    assert rating["overall_total"] == 3.75
    assert rating["strengths"] == "Calm under pressure"
    assert rating["completed_at"] is not None

    r = client.get(f"/api/pulsecheck/ratings?cycle_id={cycle_id}", headers=headers)
    assert len(r.json["ratings"]) == 3

    # Outside a cycle a fresh rating is created.
    r = client.post(
        "/api/pulsecheck/ratings",
        json={"provider_id": pulse["p4"], "director_id": pulse["eli"], "iq_procedural": 2},
        headers=headers,
    )
    assert r.json["updated"] is False
    assert r.json["rating"]["status"] == "in_progress"


def test_rating_validation(client, pulse):
    headers = auth("faculty", tenant=False)
    r = client.post("/api/pulsecheck/ratings", json={"provider_id": pulse["p1"]}, headers=headers)
    assert r.status_code == 400
    assert r.json["error"] == "Provider ID and Director ID are required"

    r = client.post(
        "/api/pulsecheck/ratings",
        json={"provider_id": pulse["p1"], "director_id": pulse["dana"], "eq_empathy_rapport": 3.5},
        headers=headers,
    )
    assert r.status_code == 400
    assert r.json["error"] == "eq_empathy_rapport must be an integer from 1 to 5"

    r = client.post(
        "/api/pulsecheck/ratings",
        json={"provider_id": pulse["p1"], "director_id": pulse["dana"], "status": "done"},
        headers=headers,
    )
    assert r.status_code == 400

    r = client.post(
        "/api/pulsecheck/ratings",
        json={"provider_id": 9999, "director_id": pulse["dana"]},
        headers=headers,
    )
    assert r.status_code == 404


def _complete_p1(client, pulse, cycle_id):
    client.post(
        "/api/pulsecheck/ratings",
        json={
            "cycle_id": cycle_id,
            "provider_id": pulse["p1"],
            "director_id": pulse["dana"],
            "eq_empathy_rapport": 4,
            "pq_reliability": 4,
            "iq_clinical_management": 5,
            "status": "completed",
        },
        headers=auth("pd", tenant=False),
    )


def test_report_rollup(client, pulse):
    cycle_id = _cycle(client).json["cycle"]["id"]
    _complete_p1(client, pulse, cycle_id)

    r = client.get(f"/api/pulsecheck/reports?cycle_id={cycle_id}", headers=auth("faculty", tenant=False))
    assert r.status_code == 200
    overall = r.json["overall"]
    assert overall["total_sites"] == 1
    assert overall["total_directors"] == 2
    assert overall["total_providers"] == 4
    assert overall["total_completed_ratings"] == 1
    assert overall["overall_completion_rate"] == 25
    assert overall["average_scores"] == {"eq": 4.0, "pq": 4.0, "iq": 5.0, "overall": 4.33}

    site = r.json["sites"][0]
    assert site["name"] == "North Campus"
    assert site["provider_count"] == 4
    assert site["completion_rate"] == 25

    dept = r.json["departments"][0]
    status = {p["name"]: p["status"] for p in dept["providers"]}
    assert status == {
        "Alex Able": "completed",
        "Blair Baker": "pending",
        "Casey Cole": "pending",
        "Drew Dunn": "not_rated",
    }
    alex = next(p for p in dept["providers"] if p["name"] == "Alex Able")
    assert alex["latest_rating"]["iq"] == 5.0


def test_reminder_summary(client, pulse):
    cycle_id = _cycle(client).json["cycle"]["id"]
    _complete_p1(client, pulse, cycle_id)

    r = client.get(f"/api/pulsecheck/reminders?cycle_id={cycle_id}", headers=auth("faculty", tenant=False))
    assert r.status_code == 200
    assert r.json["stats"] == {
        "total_directors": 2,
        "directors_with_pending": 2,
        "total_pending": 2,
        "total_completed": 1,
    }
    dana = next(x for x in r.json["summaries"] if x["director_name"] == "Dana Director")
    assert dana["pending_providers"] == [{"id": pulse["p2"], "name": "Blair Baker"}]

    r = client.get("/api/pulsecheck/reminders", headers=auth("faculty", tenant=False))
    assert r.status_code == 400
    assert r.json["error"] == "Cycle ID is required"


def test_send_director_reminders(client, pulse, outbox):
    cycle_id = _cycle(client).json["cycle"]["id"]
    headers = auth("pd", tenant=False)

    r = client.post("/api/pulsecheck/reminders", json={"cycle_id": cycle_id}, headers=headers)
    assert r.status_code == 200
    assert r.json["sent"] == 2
    assert r.json["failed"] == 0
    assert sorted(m["to"] for m in outbox) == ["dana@example.com", "eli@example.com"]
    dana_mail = next(m for m in outbox if m["to"] == "dana@example.com")
    assert dana_mail["subject"] == "Pulse Check: 2 review(s) pending"
    assert "Blair Baker" in dana_mail["html"]

    r = client.post(
        "/api/pulsecheck/reminders", json={"cycle_id": cycle_id, "director_ids": [pulse["eli"]]}, headers=headers
    )
    assert r.json["sent"] == 1
    assert len(outbox) == 3

    r = client.get(f"/api/pulsecheck/reminders?cycle_id={cycle_id}", headers=headers)
    assert len(r.json["reminder_history"]) == 3


def test_no_pending_reviews(client, pulse, outbox):
    cycle_id = _cycle(client).json["cycle"]["id"]
    r = client.post(
        "/api/pulsecheck/reminders", json={"cycle_id": cycle_id, "director_ids": [9999]}, headers=auth("pd", tenant=False)
    )
    assert r.json == {"message": "No pending reviews to send reminders for", "sent": 0, "reminders": []}
    assert outbox == []

    r = client.post("/api/pulsecheck/reminders", json={}, headers=auth("pd", tenant=False))
    assert r.status_code == 400


def test_org_structure_built_through_api(client, world):
    headers = auth("pd", tenant=False)

    r = client.post("/api/pulsecheck/admin/sites", json={"region": "South"}, headers=headers)
    assert r.status_code == 400
    assert r.json["error"] == "Site name is required"
    r = client.post(
        "/api/pulsecheck/admin/sites",
        json={"name": "South Campus", "region": "South", "address": "1 Main St", "health_system_id": world["hs"]},
        headers=headers,
    )
    assert r.status_code == 201
    site = r.json["site"]
    assert (site["name"], site["address"], site["is_active"]) == ("South Campus", "1 Main St", True)

    r = client.post("/api/pulsecheck/admin/departments", json={"site_id": site["id"]}, headers=headers)
    assert r.status_code == 400
    assert r.json["error"] == "Site ID and name are required"
    r = client.post("/api/pulsecheck/admin/departments", json={"site_id": 9999, "name": "ED"}, headers=headers)
    assert r.status_code == 404
    r = client.post(
        "/api/pulsecheck/admin/departments",
        json={"site_id": site["id"], "name": "Emergency", "specialty": "EM"},
        headers=headers,
    )
    assert r.status_code == 201
    dept = r.json["department"]

    director = {"department_id": dept["id"], "name": "Gale Director", "email": "Gale@Example.com", "role": "medical_director"}
    r = client.post("/api/pulsecheck/admin/directors", json={**director, "role": "chief"}, headers=headers)
    assert r.status_code == 400
    assert r.json["error"].startswith("Invalid role. Must be one of: regional_director")
    r = client.post("/api/pulsecheck/admin/directors", json=director, headers=headers)
    assert r.status_code == 201
    gale = r.json["director"]
    assert gale["email"] == "gale@example.com"
    r = client.post("/api/pulsecheck/admin/directors", json=director, headers=headers)
    assert r.status_code == 409

    r = client.post(
        "/api/pulsecheck/providers",
        json={
            "name": "Hana Hughes",
            "email": "hana@example.com",
            "provider_type": "apc",
            "primary_department_id": dept["id"],
            "primary_director_id": gale["id"],
        },
        headers=headers,
    )
    assert r.status_code == 201

    r = client.get(f"/api/pulsecheck/admin/departments?site_id={site['id']}", headers=auth("faculty", tenant=False))
    assert [d["name"] for d in r.json["departments"]] == ["Emergency"]
    r = client.get(f"/api/pulsecheck/admin/directors?department_id={dept['id']}", headers=auth("faculty", tenant=False))
    assert [d["email"] for d in r.json["directors"]] == ["gale@example.com"]


def test_org_structure_updates(client, pulse):
    headers = auth("pd", tenant=False)
    r = client.patch(f"/api/pulsecheck/admin/sites/{pulse['site']}", json={"is_active": False}, headers=headers)
    assert r.status_code == 200
    assert r.json["site"]["is_active"] is False

    r = client.patch(f"/api/pulsecheck/admin/departments/{pulse['dept']}", json={"is_active": "no"}, headers=headers)
    assert r.status_code == 400

    r = client.patch(
        f"/api/pulsecheck/admin/directors/{pulse['eli']}",
        json={"role": "regional_director", "name": "Eli Ellis"},
        headers=headers,
    )
    assert r.status_code == 200
    assert (r.json["director"]["role"], r.json["director"]["name"]) == ("regional_director", "Eli Ellis")

    r = client.patch("/api/pulsecheck/admin/directors/9999", json={"name": "x"}, headers=headers)
    assert r.status_code == 404

    r = client.post("/api/pulsecheck/admin/sites", json={"name": "X"}, headers=auth("faculty", tenant=False))
    assert r.status_code == 403
