from __future__ import annotations

from flask import Blueprint, jsonify, request

from app.eqpqiq.db import db_session
from app.eqpqiq.errors import Forbidden, NotFound, ValidationError
from app.eqpqiq.models import Resident
from app.eqpqiq.modules.ratings.service import create_rating, list_ratings, validate_rating_payload
from app.eqpqiq.rbac import current_tenant, resident_access

bp = Blueprint("ratings", __name__)


def _resident_or_404(s, resident_id) -> Resident:
    try:
        rid = int(resident_id)
    except (TypeError, ValueError):
        raise ValidationError("resident_id must be an integer") from None
    resident = s.get(Resident, rid)
    if not resident:
        raise NotFound("Resident not found")
    if not current_tenant().can_access_resident(resident):
        raise Forbidden("Access denied to this resident.")
    return resident


@bp.get("/forms/structured-rating")
@resident_access
def structured_rating_list():
    s = db_session()
    resident_id = request.args.get("resident_id")
    if not resident_id:
        raise ValidationError("resident_id is required")
    resident = _resident_or_404(s, resident_id)

    ratings = list_ratings(
        s,
        resident.id,
        period_label=(request.args.get("period_label") or "").strip() or None,
        rater_type=(request.args.get("rater_type") or "").strip() or None,
    )
    return jsonify({"ratings": ratings, "count": len(ratings)})


@bp.post("/forms/structured-rating")
@resident_access
def structured_rating_create():
    s = db_session()
    ctx = current_tenant()
    payload = request.get_json(silent=True) or {}

    errors = validate_rating_payload(payload)
    if errors:
        raise ValidationError(errors[0], extra={"errors": errors})

    _resident_or_404(s, payload["resident_id"])
    if payload["rater_type"] == "faculty" and not ctx.is_faculty:
        raise Forbidden("Access denied. Faculty ratings require faculty or above.")

    rating = create_rating(s, payload, ctx.user)
    s.commit()
    return jsonify({"success": True, "rating": rating.to_dict()}), 201
