from __future__ import annotations

from flask import Blueprint, jsonify, request

from app.eqpqiq.db import db_session
from app.eqpqiq.errors import Forbidden, NotFound, ValidationError
from app.eqpqiq.modules.interview.models import InterviewSession
from app.eqpqiq.modules.interview.service import (
    add_candidate,
    create_session,
    is_manager,
    is_participant,
    join_session,
    list_ratings,
    list_sessions,
    save_rating,
    session_detail,
    session_review,
    session_summary,
    update_session,
)
from app.eqpqiq.rbac import current_tenant, require_tenant_auth

bp = Blueprint("interview", __name__)

# Interview days run outside the org/program URL space; residents sit on panels too.
interviewer_access = require_tenant_auth(require_tenant=False, allow_resident=True)
interview_organizer = require_tenant_auth(require_tenant=False, minimum_role="faculty")


def _session_or_404(session_id: int, *, manage: bool = False) -> InterviewSession:
    s = db_session()
    session = s.get(InterviewSession, session_id)
    if not session:
        raise NotFound("Session not found")
    ctx = current_tenant()
    if ctx.is_admin:
        return session
    if manage and not is_manager(session, ctx.user):
        raise Forbidden("Access denied. Only the session organizer can do this.")
    if not is_participant(session, ctx.user):
        raise Forbidden("Access denied")
    return session


def _truthy(raw: str | None) -> bool:
    return (raw or "").strip().lower() in ("1", "true", "yes", "on")


@bp.get("/sessions")
@interviewer_access
def sessions_list():
    s = db_session()
    sessions = list_sessions(s, current_tenant().user)
    return jsonify({"sessions": [x.to_dict() for x in sessions]})


@bp.post("/sessions")
@interview_organizer
def sessions_create():
    s = db_session()
    ctx = current_tenant()
    payload = request.get_json(silent=True) or {}
    program_id = payload.get("program_id")
    if program_id is not None:
        try:
            program_id = int(program_id)
        except (TypeError, ValueError):
            raise ValidationError("program_id must be an integer") from None
        if not ctx.can_access_program(program_id):
            raise Forbidden("Access denied. Program is not yours.")
        payload["program_id"] = program_id
    role = "program_director" if ctx.is_program_leadership else "interviewer"
    session = create_session(s, payload, ctx.user, creator_role=role)
    s.commit()
    return jsonify({"session": session.to_dict()}), 201


@bp.post("/sessions/join")
@interviewer_access
def sessions_join():
    s = db_session()
    ctx = current_tenant()
    payload = request.get_json(silent=True) or {}
    session = join_session(
        s,
        payload.get("code") or payload.get("share_token"),
        ctx.user,
        role="resident" if ctx.is_resident else "interviewer",
    )
    s.commit()
    return jsonify({"session_id": session.id, "session_name": session.session_name})


@bp.get("/sessions/<int:session_id>")
@interviewer_access
def sessions_get(session_id: int):
    return jsonify(session_detail(_session_or_404(session_id)))


@bp.patch("/sessions/<int:session_id>")
@interviewer_access
def sessions_update(session_id: int):
    s = db_session()
    session = _session_or_404(session_id, manage=True)
    payload = request.get_json(silent=True) or {}
    update_session(s, session, payload, current_tenant().user)
    s.commit()
    return jsonify({"session": session.to_dict()})


@bp.post("/sessions/<int:session_id>/candidates")
@interviewer_access
def candidates_create(session_id: int):
    s = db_session()
    session = _session_or_404(session_id, manage=True)
    payload = request.get_json(silent=True) or {}
    candidate = add_candidate(s, session, payload, current_tenant().user)
    s.commit()
    return jsonify({"candidate": candidate.to_dict()}), 201


@bp.get("/sessions/<int:session_id>/ratings")
@interviewer_access
def ratings_list(session_id: int):
    ctx = current_tenant()
    session = _session_or_404(session_id)
    candidate_id = request.args.get("candidate_id", type=int)
    email = (request.args.get("interviewer_email") or "").strip() or None
    if not (ctx.is_admin or is_manager(session, ctx.user)):
        # Panel members only see their own scores.
        email = ctx.user.email
    ratings = list_ratings(session, candidate_id=candidate_id, interviewer_email=email)
    return jsonify({"ratings": [r.to_dict() for r in ratings]})


@bp.post("/sessions/<int:session_id>/ratings")
@interviewer_access
def ratings_save(session_id: int):
    s = db_session()
    session = _session_or_404(session_id)
    payload = request.get_json(silent=True) or {}
    rating, created = save_rating(s, session, payload, current_tenant().user)
    s.commit()
    return jsonify({"rating": rating.to_dict()}), 201 if created else 200


@bp.get("/sessions/<int:session_id>/summary")
@interviewer_access
def sessions_summary(session_id: int):
    return jsonify(session_summary(_session_or_404(session_id)))


@bp.get("/sessions/<int:session_id>/review")
@interviewer_access
def sessions_review(session_id: int):
    session = _session_or_404(session_id, manage=True)
    return jsonify(session_review(session, exclude_residents=_truthy(request.args.get("exclude_residents"))))
