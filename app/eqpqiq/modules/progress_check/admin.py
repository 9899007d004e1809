from __future__ import annotations

from flask import Blueprint, jsonify, request

from app.eqpqiq.db import db_session
from app.eqpqiq.errors import Forbidden, NotFound, ValidationError
from app.eqpqiq.models import Resident
from app.eqpqiq.modules.progress_check.service import (
    class_analytics,
    list_residents,
    program_analytics,
    resident_scores,
)
from app.eqpqiq.rbac import current_tenant, faculty_required, resident_access

bp = Blueprint("progress_check", __name__)


def _program_id() -> int:
    ctx = current_tenant()
    explicit = request.args.get("program_id")
    if ctx.is_admin and explicit:
        try:
            return int(explicit)
        except ValueError:
            raise ValidationError("program_id must be an integer") from None
    if ctx.program_id is None:
        raise ValidationError("Could not determine program")
    return ctx.program_id


@bp.get("/progress-check/residents")
@resident_access
def residents_list():
    s = db_session()
    ctx = current_tenant()
    class_year = request.args.get("class_year")
    try:
        year = int(class_year) if class_year else None
    except ValueError:
        raise ValidationError("class_year must be an integer") from None

    # Residents only ever see their own row.
    only_user_id = ctx.user.id if ctx.is_resident else None
    return jsonify(list_residents(s, _program_id(), class_year=year, only_user_id=only_user_id))


@bp.get("/progress-check/residents/<int:resident_id>/scores")
@resident_access
def resident_scores_get(resident_id: int):
    s = db_session()
    resident = s.get(Resident, resident_id)
    if not resident:
        raise NotFound("Resident not found")
    if not current_tenant().can_access_resident(resident):
        raise Forbidden("Access denied. Resident is not in your program.")
    return jsonify(resident_scores(s, resident))


@bp.get("/analytics/scores/program")
@faculty_required
def analytics_program():
    s = db_session()
    return jsonify(program_analytics(s, _program_id()))


@bp.get("/analytics/scores/class/<int:year>")
@faculty_required
def analytics_class(year: int):
    s = db_session()
    return jsonify(class_analytics(s, _program_id(), year))
