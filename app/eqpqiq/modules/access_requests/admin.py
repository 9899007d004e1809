from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from app.eqpqiq.db import db_session
from app.eqpqiq.errors import ValidationError
from app.eqpqiq.modules.access_requests.service import (
    DEFAULT_PAGE_SIZE,
    REVIEWER_ROLES,
    approve_access_request,
    list_access_requests,
    reactivate_user,
    reject_access_request,
    resend_invite,
    submit_access_request,
    suspend_user,
)
from app.eqpqiq.rbac import current_tenant, require_tenant_auth

bp = Blueprint("access_requests", __name__)

reviewer_required = require_tenant_auth(require_tenant=False, required_roles=REVIEWER_ROLES)


def _int_arg(name: str, default: int) -> int:
    raw = request.args.get(name)
    if raw in (None, ""):
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValidationError(f"{name} must be an integer") from None


@bp.post("/access-requests")
def access_request_submit():
    s = db_session()
    payload = request.get_json(silent=True) or {}
    req = submit_access_request(
        s,
        payload,
        admin_email=current_app.config["ADMIN_EMAIL"],
        base_url=current_app.config["APP_BASE_URL"],
    )
    s.commit()
    return jsonify(
        {
            "success": True,
            "message": "Your access request has been submitted. You will receive a response within 24 hours.",
            "request_id": req.id,
        }
    )


@bp.get("/admin/requests")
@reviewer_required
def access_requests_list():
    s = db_session()
    return jsonify(
        list_access_requests(
            s,
            status=(request.args.get("status") or "pending").strip(),
            limit=_int_arg("limit", DEFAULT_PAGE_SIZE),
            offset=_int_arg("offset", 0),
        )
    )


@bp.post("/admin/requests/<int:request_id>/approve")
@reviewer_required
def access_request_approve(request_id: int):
    s = db_session()
    ctx = current_tenant()
    payload = request.get_json(silent=True) or {}
    req, user = approve_access_request(
        s,
        request_id,
        payload,
        ctx.user,
        reviewer_role=ctx.role,
        login_url=f"{current_app.config['APP_BASE_URL']}/login",
    )
    s.commit()
    return jsonify(
        {
            "success": True,
            "user_id": user.id,
            "message": f"Account created for {req.full_name}. Welcome email sent.",
        }
    )


@bp.post("/admin/requests/<int:request_id>/reject")
@reviewer_required
def access_request_reject(request_id: int):
    s = db_session()
    payload = request.get_json(silent=True) or {}
    req = reject_access_request(s, request_id, payload, current_tenant().user)
    s.commit()
    return jsonify({"success": True, "message": f"Access request for {req.full_name} has been rejected."})


@bp.post("/admin/users/<int:user_id>/suspend")
@reviewer_required
def user_suspend(user_id: int):
    s = db_session()
    user = suspend_user(s, user_id, current_tenant().user)
    s.commit()
    return jsonify({"success": True, "message": f"User {user.full_name or user.email} has been suspended."})


@bp.post("/admin/users/<int:user_id>/reactivate")
@reviewer_required
def user_reactivate(user_id: int):
    s = db_session()
    user = reactivate_user(s, user_id, current_tenant().user)
    s.commit()
    return jsonify({"success": True, "message": f"User {user.full_name or user.email} has been reactivated."})


@bp.post("/admin/users/<int:user_id>/resend-invite")
@reviewer_required
def user_resend_invite(user_id: int):
    s = db_session()
    _user, email = resend_invite(
        s, user_id, current_tenant().user, login_url=f"{current_app.config['APP_BASE_URL']}/login"
    )
    s.commit()
    return jsonify({"success": True, "message": f"Sign-in details sent to {email}."})
