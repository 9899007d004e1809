from datetime import datetime, timedelta

from conftest import auth

from app.eqpqiq.db import session_scope
from app.eqpqiq.modules.surveys.models import Survey, SurveyRespondent
from app.eqpqiq.modules.surveys.service import due_for_reminder

EQ = {
    "eq_empathy_positive_interactions": 4,
    "eq_adaptability_self_awareness": 4,
    "eq_stress_management_resilience": 4,
    "eq_curiosity_growth_mindset": 4,
    "eq_effectiveness_communication": 4,
}
PQ = {
    "pq_work_ethic_reliability": 3,
    "pq_integrity_accountability": 3.5,
    "pq_teachability_receptiveness": 3,
    "pq_documentation": 3.5,
    "pq_leadership_relationships": 3,
}
IQ = {
    "iq_knowledge_base": 5,
    "iq_analytical_thinking": 5,
    "iq_commitment_learning": 4.5,
    "iq_clinical_flexibility": 4.5,
    "iq_performance_for_level": 5,
}
SCORES = {**EQ, **PQ, **IQ}


def _create_survey(client, world, **extra):
    body = {
        "survey_type": "educator_assessment",
        "title": "Fall evaluations",
        "class_id": world["class_2027"],
        "period_label": "PGY-2 Fall",
        "deadline": "2099-01-01T00:00:00Z",
    }
    body.update(extra)
    r = client.post("/api/surveys", json=body, headers=auth("pd"))
    assert r.status_code == 201, r.json
    return r.json["survey"]


def _distribute(client, survey_id, respondents, **extra):
    r = client.post(
        f"/api/surveys/{survey_id}/distribute",
        json={"respondents": respondents, **extra},
        headers=auth("pd"),
    )
    assert r.status_code == 200, r.json
    return r.json


def _tokens(client, survey_id):
    r = client.get(f"/api/surveys/{survey_id}", headers=auth("pd"))
    assert r.status_code == 200
    return {x["email"]: x["token"] for x in r.json["respondents"]}


EDUCATOR_RESPONDENTS = [
    {"email": "fac@example.com", "name": "Frankie Faculty", "role": "faculty", "rater_type": "core_faculty"},
    {"email": "teach@example.com", "name": "Terry Teacher", "role": "faculty", "rater_type": "teaching_faculty", "guidance_min": 1},
    {"email": "res@example.com", "name": "Riley Resident", "role": "resident", "rater_type": "self"},
]


def test_create_survey_validation(client, world):
    r = client.post("/api/surveys", json={"survey_type": "educator_assessment"}, headers=auth("pd"))
    assert r.status_code == 400
    assert r.json["error"] == "survey_type and title are required"

    r = client.post("/api/surveys", json={"survey_type": "quiz", "title": "x"}, headers=auth("pd"))
    assert r.status_code == 400
    assert "Invalid survey_type" in r.json["error"]

    r = client.post(
        "/api/surveys",
        json={"survey_type": "custom", "title": "x", "remind_every_days": 0},
        headers=auth("pd"),
    )
    assert r.status_code == 400


def test_create_and_list_survey(client, world):
    survey = _create_survey(client, world)
    assert survey["status"] == "draft"
    assert survey["program_id"] == world["program"]
    assert survey["created_by_email"] == "pd@example.com"
    assert survey["deadline"] == "2099-01-01T00:00:00"

    r = client.get("/api/surveys", headers=auth("faculty"))
    assert r.status_code == 200
    assert [x["id"] for x in r.json["surveys"]] == [survey["id"]]
    assert r.json["surveys"][0]["stats"]["total_respondents"] == 0

    r = client.get("/api/surveys?status=bogus", headers=auth("faculty"))
    assert r.status_code == 400


def test_distribute_creates_respondents_assignments_and_emails(client, world, outbox):
    survey = _create_survey(client, world)
    result = _distribute(client, survey["id"], EDUCATOR_RESPONDENTS)

    assert result["respondents_created"] == 3
    assert result["respondents_updated"] == 0
    # Two faculty x two residents in the class of 2027
    assert result["assignments_created"] == 4
    assert result["emails_sent"] == 3
    assert sorted(m["to"] for m in outbox) == ["fac@example.com", "res@example.com", "teach@example.com"]
    assert all(m["subject"] == "Resident Evaluation: Fall evaluations" for m in outbox)
    assert "https://app.test/survey/" in outbox[0]["html"]

    r = client.get(f"/api/surveys/{survey['id']}", headers=auth("pd"))
    body = r.json
    assert body["survey"]["status"] == "active"
    assert body["stats"]["total_respondents"] == 3
    progress = {p["email"]: p for p in body["faculty_progress"]}
    assert progress["fac@example.com"]["total_residents"] == 2
    assert progress["fac@example.com"]["residents_remaining"] == 2
    assert progress["teach@example.com"]["residents_remaining"] == 1


def test_redistribute_keeps_tokens(client, world, outbox):
    survey = _create_survey(client, world)
    _distribute(client, survey["id"], EDUCATOR_RESPONDENTS[:1])
    before = _tokens(client, survey["id"])

    result = _distribute(
        client,
        survey["id"],
        [EDUCATOR_RESPONDENTS[0], {"email": "FAC@example.com", "role": "faculty"}, EDUCATOR_RESPONDENTS[1]],
        send_emails=False,
    )
    assert result["respondents_created"] == 1
    assert result["respondents_updated"] == 1
    assert result["assignments_created"] == 2
    assert result["emails_sent"] == 0
    assert _tokens(client, survey["id"])["fac@example.com"] == before["fac@example.com"]


def test_distribute_requires_respondents(client, world):
    survey = _create_survey(client, world)
    r = client.post(f"/api/surveys/{survey['id']}/distribute", json={"respondents": []}, headers=auth("pd"))
    assert r.status_code == 400
    assert "respondents array is required" in r.json["error"]

    r = client.post(
        f"/api/surveys/{survey['id']}/distribute",
        json={"respondents": [{"email": "x@example.com", "role": "dean"}]},
        headers=auth("pd"),
    )
    assert r.status_code == 400


def test_educator_response_flow(client, world, outbox):
    survey = _create_survey(client, world)
    _distribute(client, survey["id"], EDUCATOR_RESPONDENTS)
    token = _tokens(client, survey["id"])["fac@example.com"]

    r = client.get(f"/api/surveys/respond/{token}")
    assert r.status_code == 200
    form = r.json
    assert form["survey"]["type"] == "educator_assessment"
    assert form["survey"]["program"]["name"] == "Emergency Medicine"
    assert form["respondent"]["status"] == "started"
    assert [x["full_name"] for x in form["residents"]] == ["Riley Resident", "Sam Second"]
    first, second = form["residents"]

    r = client.post(
        f"/api/surveys/respond/{token}",
        json={"action": "submit_rating", "assignment_id": first["assignment_id"], "scores": {**SCORES, "iq_knowledge_base": 4.2}},
    )
    assert r.status_code == 400
    assert "0.5 increments" in r.json["error"]

    r = client.post(
        f"/api/surveys/respond/{token}",
        json={"action": "submit_rating", "assignment_id": first["assignment_id"], "scores": SCORES, "comments": "Strong"},
    )
    assert r.status_code == 200
    assert r.json["all_complete"] is False
    assert r.json["remaining_count"] == 1

    r = client.post(
        f"/api/surveys/respond/{token}",
        json={"action": "submit_rating", "assignment_id": second["assignment_id"], "scores": SCORES},
    )
    assert r.json["all_complete"] is True

    r = client.post(
        f"/api/surveys/respond/{token}",
        json={"action": "submit_rating", "assignment_id": second["assignment_id"], "scores": SCORES},
    )
    assert r.status_code == 409
    assert r.json["error"] == "Survey already completed"

    # Saving progress after completion never moves the status backwards.
    r = client.post(f"/api/surveys/respond/{token}", json={"action": "save_progress", "progress_data": {"step": 1}})
    assert r.status_code == 200
    with session_scope(client.application) as s:
        resp = s.query(SurveyRespondent).filter(SurveyRespondent.token == token).one()
        assert resp.status == "completed"
        assert resp.completed_at is not None


def test_teaching_faculty_done_after_required_minimum(client, world, outbox):
    survey = _create_survey(client, world)
    _distribute(client, survey["id"], EDUCATOR_RESPONDENTS)
    token = _tokens(client, survey["id"])["teach@example.com"]

    form = client.get(f"/api/surveys/respond/{token}").json
    assert all(x["required"] is False for x in form["residents"])
    r = client.post(
        f"/api/surveys/respond/{token}",
        json={"action": "submit_rating", "assignment_id": form["residents"][0]["assignment_id"], "scores": SCORES},
    )
    assert r.json["all_complete"] is True
    assert r.json["remaining_count"] == 0


def test_results_with_gap_analysis(client, world, outbox):
    survey = _create_survey(client, world)
    _distribute(client, survey["id"], EDUCATOR_RESPONDENTS)
    tokens = _tokens(client, survey["id"])

    form = client.get(f"/api/surveys/respond/{tokens['fac@example.com']}").json
    for res in form["residents"]:
        client.post(
            f"/api/surveys/respond/{tokens['fac@example.com']}",
            json={"action": "submit_rating", "assignment_id": res["assignment_id"], "scores": SCORES},
        )

    self_scores = {k: 3 for k in SCORES}
    r = client.post(f"/api/surveys/respond/{tokens['res@example.com']}", json={"action": "submit_self", "scores": self_scores})
    assert r.status_code == 200
    assert r.json["all_complete"] is True

    r = client.get(f"/api/surveys/{survey['id']}/results", headers=auth("faculty"))
    assert r.status_code == 200
    body = r.json
    assert body["completion"]["completed_count"] == 2
    by_name = {x["resident_name"]: x for x in body["results"]}
    riley = by_name["Riley Resident"]
    assert riley["n_faculty_raters"] == 1
    assert riley["faculty_avg"] == {"eq": 4.0, "pq": 3.2, "iq": 4.8}
    assert riley["self_assessment"] == {"eq": 3.0, "pq": 3.0, "iq": 3.0}
    assert riley["gap_analysis"] == {"eq": -1.0, "pq": -0.2, "iq": -1.8}
    assert by_name["Sam Second"]["gap_analysis"] is None
    assert body["class_averages"]["n_residents"] == 2
    assert body["class_averages"]["eq"] == 4.0


def test_self_assessment_distribution_and_submit(client, world, outbox):
    survey = _create_survey(client, world, survey_type="learner_self_assessment", title="Self check", class_id=None)
    result = _distribute(
        client,
        survey["id"],
        [
            {"email": "res@example.com", "role": "resident", "rater_type": "self"},
            {"email": "ghost@example.com", "role": "resident", "rater_type": "self"},
        ],
    )
    assert result["respondents_created"] == 2
    # No resident record exists for ghost@example.com
    assert result["assignments_created"] == 1

    token = _tokens(client, survey["id"])["res@example.com"]
    form = client.get(f"/api/surveys/respond/{token}").json
    assert form["self_resident"]["id"] == world["resident1"]

    r = client.post(
        f"/api/surveys/respond/{token}",
        json={"action": "submit_self", "assignment_id": form["self_resident"]["assignment_id"], "scores": EQ},
    )
    assert r.status_code == 200

    r = client.get(f"/api/forms/structured-rating?resident_id={world['resident1']}", headers=auth("faculty"))
    ratings = r.json["ratings"]
    assert len(ratings) == 1
    assert ratings[0]["rater_type"] == "self"
    assert ratings[0]["eq_avg"] == 4.0
    assert ratings[0]["pq_avg"] is None
    assert ratings[0]["period_label"] == "PGY-2 Fall"


def test_unknown_action_and_bad_token(client, world, outbox):
    survey = _create_survey(client, world)
    _distribute(client, survey["id"], EDUCATOR_RESPONDENTS[:1])
    token = _tokens(client, survey["id"])["fac@example.com"]

    r = client.post(f"/api/surveys/respond/{token}", json={"action": "dance"})
    assert r.status_code == 400
    assert "Unknown action" in r.json["error"]

    r = client.get("/api/surveys/respond/not-a-token")
    assert r.status_code == 404
    assert r.json["error"] == "Invalid or expired survey link"


def test_closed_and_expired_surveys_reject_responses(client, world, outbox):
    survey = _create_survey(client, world)
    _distribute(client, survey["id"], EDUCATOR_RESPONDENTS[:1])
    token = _tokens(client, survey["id"])["fac@example.com"]

    with session_scope(client.application) as s:
        s.get(Survey, survey["id"]).deadline = datetime.utcnow() - timedelta(days=1)
    r = client.get(f"/api/surveys/respond/{token}")
    assert r.status_code == 410
    assert r.json["error"] == "This survey has passed its deadline"

    r = client.patch(f"/api/surveys/{survey['id']}", json={"status": "closed"}, headers=auth("pd"))
    assert r.status_code == 200
    r = client.get(f"/api/surveys/respond/{token}")
    assert r.status_code == 410
    assert r.json["survey_status"] == "closed"
    r = client.post(f"/api/surveys/respond/{token}", json={"action": "complete"})
    assert r.status_code == 410


def test_patch_survey(client, world):
    survey = _create_survey(client, world)
    r = client.patch(f"/api/surveys/{survey['id']}", json={"title": "Renamed", "max_reminders": 2}, headers=auth("pd"))
    assert r.status_code == 200
    assert r.json["survey"]["title"] == "Renamed"
    assert r.json["survey"]["max_reminders"] == 2

    r = client.patch(f"/api/surveys/{survey['id']}", json={"created_at": "x"}, headers=auth("pd"))
    assert r.status_code == 400
    assert r.json["error"] == "No valid fields to update"


def test_manual_reminders(client, world, outbox):
    survey = _create_survey(client, world)
    r = client.post(f"/api/surveys/{survey['id']}/remind", json={}, headers=auth("pd"))
    assert r.status_code == 400
    assert r.json["error"] == "Can only send reminders for active surveys"

    _distribute(client, survey["id"], EDUCATOR_RESPONDENTS)
    outbox.clear()
    r = client.post(f"/api/surveys/{survey['id']}/remind", json={}, headers=auth("pd"))
    assert r.status_code == 200
    assert r.json["reminders_sent"] == 3
    assert all(m["subject"] == "Reminder: Fall evaluations" for m in outbox)

    tokens = _tokens(client, survey["id"])
    r = client.get(f"/api/surveys/{survey['id']}", headers=auth("pd"))
    by_email = {x["email"]: x for x in r.json["respondents"]}
    assert by_email["fac@example.com"]["reminder_count"] == 1

    client.post(f"/api/surveys/respond/{tokens['res@example.com']}", json={"action": "complete"})
    outbox.clear()
    r = client.post(
        f"/api/surveys/{survey['id']}/remind",
        json={"respondent_id": by_email["fac@example.com"]["id"]},
        headers=auth("pd"),
    )
    assert r.json["reminders_sent"] == 1
    assert [m["to"] for m in outbox] == ["fac@example.com"]


def test_cron_requires_secret(client, world):
    r = client.get("/api/cron/survey-reminders")
    assert r.status_code == 401
    r = client.get("/api/cron/survey-reminders", headers={"Authorization": "Bearer wrong"})
    assert r.status_code == 401


def test_cron_sends_due_reminders_once(client, world, outbox):
    survey = _create_survey(client, world)
    _distribute(client, survey["id"], EDUCATOR_RESPONDENTS[:2])
    outbox.clear()

    r = client.get("/api/cron/survey-reminders", headers={"Authorization": "Bearer cron-secret"})
    assert r.status_code == 200
    assert r.json["surveys_processed"] == 1
    assert r.json["reminders_sent"] == 2
    assert len(outbox) == 2

    # Just reminded: nothing is due until remind_every_days has passed.
    r = client.get("/api/cron/survey-reminders", headers={"Authorization": "Bearer cron-secret"})
    assert r.json["surveys_processed"] == 0
    assert r.json["reminders_sent"] == 0


def test_cron_rejects_non_ascii_secret(client, world):
    r = client.get("/api/cron/survey-reminders", headers={"Authorization": "Bearer café"})
    assert r.status_code == 401


def test_non_numeric_ids_rejected(client, world, outbox):
    r = client.post(
        "/api/surveys",
        json={"survey_type": "educator_assessment", "title": "x", "class_id": "fall"},
        headers=auth("pd"),
    )
    assert r.status_code == 400
    assert r.json["error"] == "class_id must be an integer"

    survey = _create_survey(client, world)
    _distribute(client, survey["id"], EDUCATOR_RESPONDENTS[:1])
    r = client.post(f"/api/surveys/{survey['id']}/remind", json={"respondent_id": "abc"}, headers=auth("pd"))
    assert r.status_code == 400
    assert r.json["error"] == "respondent_id must be an integer"


def test_completed_respondent_may_edit_when_allowed(client, world, outbox):
    survey = _create_survey(client, world, settings={"allow_edit_after_submit": True})
    _distribute(client, survey["id"], EDUCATOR_RESPONDENTS[:1])
    token = _tokens(client, survey["id"])["fac@example.com"]

    form = client.get(f"/api/surveys/respond/{token}").json
    assert "existing_scores" not in form
    rating_ids = {}
    for res in form["residents"]:
        r = client.post(
            f"/api/surveys/respond/{token}",
            json={"action": "submit_rating", "assignment_id": res["assignment_id"], "scores": SCORES, "comments": "Strong"},
        )
        rating_ids[res["id"]] = r.json["rating_id"]
    assert r.json["all_complete"] is True

    form = client.get(f"/api/surveys/respond/{token}").json
    assert form["respondent"]["status"] == "completed"
    riley = form["existing_scores"][str(world["resident1"])]
    assert riley["iq_knowledge_base"] == 5
    assert riley["comments"] == "Strong"

    first = next(x for x in form["residents"] if x["id"] == world["resident1"])
    r = client.post(
        f"/api/surveys/respond/{token}",
        json={"action": "submit_rating", "assignment_id": first["assignment_id"], "scores": {**SCORES, "iq_knowledge_base": 3}},
    )
    assert r.status_code == 200
    assert r.json["rating_id"] == rating_ids[world["resident1"]]

    r = client.get(f"/api/forms/structured-rating?resident_id={world['resident1']}", headers=auth("faculty"))
    assert r.json["count"] == 1
    assert r.json["ratings"][0]["iq_knowledge_base"] == 3


def test_manual_reminders_stop_at_max(client, world, outbox):
    survey = _create_survey(client, world, max_reminders=1)
    _distribute(client, survey["id"], EDUCATOR_RESPONDENTS[:1])
    outbox.clear()

    r = client.post(f"/api/surveys/{survey['id']}/remind", json={}, headers=auth("pd"))
    assert r.json["reminders_sent"] == 1

    r = client.post(f"/api/surveys/{survey['id']}/remind", json={}, headers=auth("pd"))
    assert r.json["reminders_sent"] == 0
    assert r.json["message"] == "No respondents need reminders"
    assert len(outbox) == 1


def test_due_for_reminder_rules():
    now = datetime(2026, 3, 10, 12, 0)
    survey = Survey(max_reminders=2, remind_every_days=3)

    def respondent(**kw):
        return SurveyRespondent(**{"status": "pending", "reminder_count": 0, "last_reminded_at": None, **kw})

    assert due_for_reminder(survey, respondent(), now)
    assert due_for_reminder(survey, respondent(status="started", reminder_count=1, last_reminded_at=now - timedelta(days=4)), now)
    assert not due_for_reminder(survey, respondent(reminder_count=1, last_reminded_at=now - timedelta(days=1)), now)
    assert not due_for_reminder(survey, respondent(reminder_count=2, last_reminded_at=now - timedelta(days=10)), now)
    assert not due_for_reminder(survey, respondent(status="completed"), now)
