from __future__ import annotations

import secrets

from flask import Blueprint, current_app, jsonify, request

from app.eqpqiq.db import db_session
from app.eqpqiq.errors import Forbidden, NotFound, Unauthorized, ValidationError
from app.eqpqiq.modules.surveys.models import Survey
from app.eqpqiq.modules.surveys.service import (
    SURVEY_STATUSES,
    create_survey,
    distribute_survey,
    list_surveys,
    load_response_form,
    run_auto_reminders,
    send_reminders,
    submit_response,
    survey_detail,
    survey_results,
    survey_to_dict,
    update_survey,
    validate_survey_payload,
)
from app.eqpqiq.rbac import current_tenant, require_tenant_auth
from app.eqpqiq.security import bearer_token

bp = Blueprint("surveys", __name__)

# Survey management: faculty and above; super admins may work without a tenant URL.
survey_manager = require_tenant_auth(minimum_role="faculty")


def _program_scope(explicit=None) -> int:
    """Tenant program; admins may target another program explicitly."""
    ctx = current_tenant()
    if ctx.is_admin and explicit:
        try:
            return int(explicit)
        except (TypeError, ValueError):
            raise ValidationError("program_id must be an integer") from None
    if ctx.program_id is not None:
        return ctx.program_id
    raise ValidationError("program_id is required")


def _survey_or_404(s, survey_id: int) -> Survey:
    survey = s.get(Survey, survey_id)
    if not survey:
        raise NotFound("Survey not found")
    if not current_tenant().can_access_program(survey.program_id):
        raise Forbidden("Access denied. Survey is not in your program.")
    return survey


# ---------- management ----------
@bp.get("/surveys")
@survey_manager
def surveys_list():
    s = db_session()
    status = (request.args.get("status") or "").strip() or None
    if status and status not in SURVEY_STATUSES:
        raise ValidationError(f"Invalid status. Must be one of: {', '.join(SURVEY_STATUSES)}")
    program_id = _program_scope(request.args.get("program_id"))
    surveys = list_surveys(s, program_id=program_id, status=status)
    return jsonify({"surveys": [survey_to_dict(x, with_stats=True) for x in surveys]})


@bp.post("/surveys")
@survey_manager
def surveys_create():
    s = db_session()
    ctx = current_tenant()
    payload = request.get_json(silent=True) or {}

    errors = validate_survey_payload(payload)
    if errors:
        raise ValidationError(errors[0], extra={"errors": errors})

    program_id = _program_scope(payload.get("program_id"))
    if not ctx.can_access_program(program_id):
        raise Forbidden("Access denied. Program is not in your organization.")
    survey = create_survey(s, payload, ctx.user, program_id=program_id)
    s.commit()
    return jsonify({"survey": survey_to_dict(survey)}), 201


@bp.get("/surveys/<int:survey_id>")
@survey_manager
def surveys_detail(survey_id: int):
    s = db_session()
    survey = _survey_or_404(s, survey_id)
    return jsonify(survey_detail(survey))


@bp.patch("/surveys/<int:survey_id>")
@survey_manager
def surveys_update(survey_id: int):
    s = db_session()
    survey = _survey_or_404(s, survey_id)
    payload = request.get_json(silent=True) or {}
    update_survey(s, survey, payload, current_tenant().user)
    s.commit()
    return jsonify({"survey": survey_to_dict(survey)})


@bp.post("/surveys/<int:survey_id>/distribute")
@survey_manager
def surveys_distribute(survey_id: int):
    s = db_session()
    survey = _survey_or_404(s, survey_id)
    payload = request.get_json(silent=True) or {}
    result = distribute_survey(s, survey, payload, current_tenant().user)
    s.commit()
    return jsonify(result)


@bp.post("/surveys/<int:survey_id>/remind")
@survey_manager
def surveys_remind(survey_id: int):
    s = db_session()
    survey = _survey_or_404(s, survey_id)
    payload = request.get_json(silent=True) or {}
    respondent_id = payload.get("respondent_id")
    if respondent_id is not None:
        try:
            respondent_id = int(respondent_id)
        except (TypeError, ValueError):
            raise ValidationError("respondent_id must be an integer") from None
    result = send_reminders(s, survey, current_tenant().user, respondent_id=respondent_id)
    s.commit()
    return jsonify(result)


@bp.get("/surveys/<int:survey_id>/results")
@survey_manager
def surveys_results(survey_id: int):
    s = db_session()
    survey = _survey_or_404(s, survey_id)
    return jsonify(survey_results(s, survey))


# ---------- respondent access (the token is the credential) ----------
@bp.get("/surveys/respond/<token>")
def respond_get(token: str):
    s = db_session()
    body = load_response_form(s, token)
    s.commit()
    return jsonify(body)


@bp.post("/surveys/respond/<token>")
def respond_post(token: str):
    s = db_session()
    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        raise ValidationError("JSON body is required")
    result = submit_response(s, token, body)
    s.commit()
    return jsonify(result)


# ---------- scheduled ----------
@bp.get("/cron/survey-reminders")
def cron_survey_reminders():
    expected = current_app.config.get("CRON_SECRET") or ""
    provided = bearer_token(request) or ""
    if not expected or not secrets.compare_digest(provided.encode("utf-8"), expected.encode("utf-8")):
        current_app.logger.error("cron.survey_reminders unauthorized: missing or invalid CRON_SECRET")
        raise Unauthorized("Unauthorized")

    s = db_session()
    result = run_auto_reminders(s)
    s.commit()
    return jsonify(result)
