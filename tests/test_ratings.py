from datetime import date

import pytest
from conftest import auth

from app.eqpqiq import pgy
from app.eqpqiq.modules.ratings.service import is_valid_score, validate_rating_payload


def test_academic_year_boundary():
    assert pgy.academic_year(date(2025, 6, 30)) == 2024
    assert pgy.academic_year(date(2025, 7, 1)) == 2025
    assert pgy.format_academic_year(2025) == "2025-2026"


def test_pgy_level_and_graduation_year():
    assert pgy.pgy_level(2026, date(2026, 2, 15)) == 3
    assert pgy.pgy_level(2028, date(2026, 2, 15)) == 1
    assert pgy.pgy_level(2028, date(2026, 2, 15), program_length=4) == 2
    assert pgy.graduation_year_for_pgy(1, date(2025, 9, 1)) == 2028
    assert pgy.graduation_year_for_pgy(3, date(2025, 9, 1)) == 2026


def test_resident_active_until_june_of_graduation_year():
    assert pgy.is_resident_active(2026, date(2026, 6, 30))
    assert not pgy.is_resident_active(2026, date(2026, 7, 1))


def test_evaluation_period_windows():
    assert pgy.evaluation_period(1, date(2025, 6, 15)) == "Fall"
    assert pgy.evaluation_period(1, date(2025, 12, 1)) == "Spring"
    assert pgy.evaluation_period(2, date(2025, 10, 31)) == "Fall"
    assert pgy.evaluation_period(2, date(2025, 11, 1)) == "Spring"
    assert pgy.evaluation_period(5, date(2025, 10, 1)) is None


def test_period_info():
    assert pgy.period_info(2027, date(2025, 10, 15)) == (2, "Fall", "PGY-2 Fall")
    assert pgy.period_info(2027, date(2026, 3, 1)) == (2, "Spring", "PGY-2 Spring")
    assert pgy.period_info(None, date(2025, 10, 15)) == (None, None, None)
    # Already graduated
    assert pgy.period_info(2020, date(2025, 10, 15)) == (None, None, None)


def test_period_sort_key_orders_labels():
    labels = ["PGY-2 Fall", "PGY-1 Spring", "Unlabeled", "PGY-1 Start", "PGY-1 Fall"]
    assert sorted(labels, key=pgy.period_sort_key) == ["PGY-1 Start", "PGY-1 Fall", "PGY-1 Spring", "PGY-2 Fall", "Unlabeled"]


@pytest.mark.parametrize("value,ok", [(1, True), (5.0, True), (3.5, True), (0.5, False), (5.5, False), (2.25, False), (True, False), ("4", False)])
def test_is_valid_score(value, ok):
    assert is_valid_score(value) is ok


def test_validate_rating_payload():
    errors = validate_rating_payload({"rater_type": "peer"})
    assert "resident_id is required" in errors
    assert 'rater_type must be "faculty" or "self"' in errors
    assert "At least one attribute score is required" in errors

    errors = validate_rating_payload({"resident_id": 1, "rater_type": "faculty", "eq_empathy_positive_interactions": 4})
    assert errors == ["faculty_id is required for faculty ratings"]


def test_faculty_rating_form(client, world):
    payload = {
        "resident_id": world["resident1"],
        "rater_type": "faculty",
        "faculty_id": world["faculty"],
        "evaluation_date": "2025-10-15",
        "eq_empathy_positive_interactions": 4,
        "eq_adaptability_self_awareness": 5,
        "pq_documentation": 3,
        "concerns_goals": "Keep charting timely",
    }
    r = client.post("/api/forms/structured-rating", json=payload, headers=auth("faculty"))
    assert r.status_code == 201, r.json
    rating = r.json["rating"]
    assert rating["pgy_level"] == 2
    assert rating["period"] == "Fall"
    assert rating["period_label"] == "PGY-2 Fall"
    assert rating["eq_avg"] == 4.5
    assert rating["pq_avg"] == 3.0
    assert rating["iq_avg"] is None

    r = client.get(
        f"/api/forms/structured-rating?resident_id={world['resident1']}&period_label=PGY-2%20Fall",
        headers=auth("pd"),
    )
    assert r.json["count"] == 1
    assert r.json["ratings"][0]["faculty_name"] == "Frankie Faculty"


def test_rating_form_validation(client, world):
    r = client.post(
        "/api/forms/structured-rating",
        json={"resident_id": world["resident1"], "rater_type": "self", "iq_knowledge_base": 6},
        headers=auth("resident"),
    )
    assert r.status_code == 400
    assert "Invalid score for iq_knowledge_base" in r.json["error"]

    r = client.post(
        "/api/forms/structured-rating",
        json={"resident_id": 99999, "rater_type": "self", "iq_knowledge_base": 4},
        headers=auth("resident"),
    )
    assert r.status_code == 404


def test_resident_may_only_self_rate_themself(client, world):
    r = client.post(
        "/api/forms/structured-rating",
        json={"resident_id": world["resident1"], "rater_type": "self", "iq_knowledge_base": 4, "evaluation_date": "2025-10-15"},
        headers=auth("resident"),
    )
    assert r.status_code == 201

    r = client.post(
        "/api/forms/structured-rating",
        json={"resident_id": world["resident2"], "rater_type": "self", "iq_knowledge_base": 4},
        headers=auth("resident"),
    )
    assert r.status_code == 403

    r = client.post(
        "/api/forms/structured-rating",
        json={"resident_id": world["resident1"], "rater_type": "faculty", "faculty_id": world["faculty"], "iq_knowledge_base": 4},
        headers=auth("resident"),
    )
    assert r.status_code == 403


def test_list_requires_resident_id(client, world):
    r = client.get("/api/forms/structured-rating", headers=auth("faculty"))
    assert r.status_code == 400
    assert r.json["error"] == "resident_id is required"


def test_faculty_id_must_name_program_faculty(client, world):
    base = {"resident_id": world["resident1"], "rater_type": "faculty", "iq_knowledge_base": 4}

    r = client.post("/api/forms/structured-rating", json={**base, "faculty_id": 9999}, headers=auth("faculty"))
    assert r.status_code == 404
    assert r.json["error"] == "Faculty not found"

    r = client.post("/api/forms/structured-rating", json={**base, "faculty_id": "abc"}, headers=auth("faculty"))
    assert r.status_code == 400
    assert r.json["error"] == "faculty_id must be an integer"

    r = client.post(
        "/api/forms/structured-rating",
        json={**base, "resident_id": "first", "faculty_id": world["faculty"]},
        headers=auth("faculty"),
    )
    assert r.status_code == 400
    assert r.json["error"] == "resident_id must be an integer"
