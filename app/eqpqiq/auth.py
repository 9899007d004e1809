from __future__ import annotations

import uuid
from collections import defaultdict
from datetime import datetime, timedelta

from flask import Blueprint, current_app, g, jsonify, request, session
from werkzeug.security import check_password_hash, generate_password_hash

from app.eqpqiq.audit import record_event
from app.eqpqiq.db import db_session
from app.eqpqiq.errors import Forbidden, NotFound, Unauthorized, ValidationError
from app.eqpqiq.models import ApiToken, User
from app.eqpqiq.security import bearer_token, ensure_csrf_token, hash_token, new_api_token

bp = Blueprint("auth", __name__)
_login_attempts: dict[str, list[datetime]] = defaultdict(list)
_LOGIN_RATE_LIMIT = 5
_LOGIN_RATE_WINDOW = 300  # seconds
MIN_PASSWORD_LENGTH = 8

# Reachable while an account still carries its temporary password.
PASSWORD_CHANGE_ENDPOINTS = ("auth.login_post", "auth.logout", "auth.me", "auth.password_change")
PASSWORD_CHANGE_OPEN_PREFIXES = ("/api/surveys/respond/", "/api/access-requests", "/api/cron/", "/health")


def _check_rate_limit(ip: str) -> bool:
    now = datetime.utcnow()
    cutoff = now - timedelta(seconds=_LOGIN_RATE_WINDOW)
    _login_attempts[ip] = [t for t in _login_attempts[ip] if t > cutoff]
    return len(_login_attempts[ip]) >= _LOGIN_RATE_LIMIT


def _record_attempt(ip: str) -> None:
    _login_attempts[ip].append(datetime.utcnow())


def user_to_dict(user: User) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "full_name": user.full_name,
        "role": user.role,
        "account_status": user.account_status,
        "must_change_password": user.must_change_password,
    }


def _user_from_bearer(raw: str) -> User | None:
    s = db_session()
    tok = s.query(ApiToken).filter(ApiToken.token_hash == hash_token(raw)).one_or_none()
    if not tok or tok.revoked_at is not None:
        return None
    user = tok.user
    if not user or not user.is_active:
        return None
    tok.last_used_at = datetime.utcnow()
    s.commit()
    return user


def load_current_user() -> None:
    """
    Loads g.current_user from the signed session cookie, falling back to an
    `Authorization: Bearer` API token.
    Also assigns a simple per-request request_id (for audit/log correlation).
    """
    if not getattr(g, "request_id", None):
        g.request_id = uuid.uuid4().hex
    g.current_user = None
    g.auth_method = None
    if request.path.startswith(("/static/", "/health", "/healthz")):
        return

    user_id = session.get("user_id")
    if user_id:
        try:
            s = db_session()
            user = s.get(User, int(user_id))
            if not user or not user.is_active:
                session.pop("user_id", None)
            else:
                g.current_user = user
                g.auth_method = "session"
                return
        except Exception as e:
            current_app.logger.error("load_current_user DB error (clearing session): %s", e)
            session.pop("user_id", None)

    raw = bearer_token(request)
    if raw:
        user = _user_from_bearer(raw)
        if user:
            g.current_user = user
            g.auth_method = "token"


def enforce_password_change() -> None:
    """Accounts created with a temporary password may only change it until they do."""
    user = getattr(g, "current_user", None)
    if user is None or not user.must_change_password:
        return
    if request.endpoint in PASSWORD_CHANGE_ENDPOINTS or request.path.startswith(PASSWORD_CHANGE_OPEN_PREFIXES):
        return
    raise Forbidden("Password change required", extra={"must_change_password": True})


def _require_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise Unauthorized("Unauthorized")
    return u


@bp.post("/login")
def login_post():
    payload = request.get_json(silent=True) or request.form
    email = (payload.get("email") or "").strip().lower()
    password = payload.get("password") or ""
    ip = request.remote_addr or "unknown"

    if _check_rate_limit(ip):
        return jsonify({"error": "Too many login attempts. Please wait 5 minutes."}), 429

    _record_attempt(ip)

    try:
        s = db_session()
        user = s.query(User).filter(User.email == email).one_or_none()
        if not user or not user.is_active or not check_password_hash(user.password_hash, password):
            record_event(
                s,
                actor=None,
                action="auth.login_failed",
                entity_type="User",
                entity_id=email,
                reason="Invalid credentials",
                metadata={"email": email},
            )
            s.commit()
            return jsonify({"error": "Invalid credentials."}), 401

        session.clear()
        session["user_id"] = user.id
        session.permanent = True
        _login_attempts[ip].clear()
        user.last_login_at = datetime.utcnow()
        record_event(s, actor=user, action="auth.login", entity_type="User", entity_id=str(user.id))
        s.commit()
        return jsonify({"user": user_to_dict(user), "csrf_token": ensure_csrf_token()})
    except Exception:
        current_app.logger.exception("Login POST crashed (email=%s request_id=%s)", email, getattr(g, "request_id", None))
        raise


@bp.post("/logout")
def logout():
    s = db_session()
    user = getattr(g, "current_user", None)
    if user:
        record_event(s, actor=user, action="auth.logout", entity_type="User", entity_id=str(user.id))
        s.commit()
    session.clear()
    return jsonify({"success": True})


@bp.get("/me")
def me():
    user = _require_user()
    memberships = [
        {
            "health_system_id": m.health_system_id,
            "program_id": m.program_id,
            "role": m.role,
            "status": m.status,
        }
        for m in user.memberships
    ]
    return jsonify({"user": user_to_dict(user), "memberships": memberships})


@bp.post("/tokens")
def tokens_create():
    user = _require_user()
    payload = request.get_json(silent=True) or {}
    name = (payload.get("name") or "").strip() or None

    s = db_session()
    raw = new_api_token()
    tok = ApiToken(user_id=user.id, token_hash=hash_token(raw), name=name)
    s.add(tok)
    s.flush()
    record_event(s, actor=user, action="auth.token_create", entity_type="ApiToken", entity_id=str(tok.id), metadata={"name": name})
    s.commit()
    # The raw value is only ever returned here.
    return jsonify({"id": tok.id, "name": tok.name, "token": raw}), 201


@bp.delete("/tokens/<int:token_id>")
def tokens_revoke(token_id: int):
    user = _require_user()
    s = db_session()
    tok = s.get(ApiToken, token_id)
    if not tok or tok.user_id != user.id:
        raise NotFound("Token not found")
    if tok.revoked_at is not None:
        raise ValidationError("Token already revoked")
    tok.revoked_at = datetime.utcnow()
    record_event(s, actor=user, action="auth.token_revoke", entity_type="ApiToken", entity_id=str(tok.id))
    s.commit()
    return jsonify({"success": True})


@bp.post("/password")
def password_change():
    user = _require_user()
    payload = request.get_json(silent=True) or request.form
    current = payload.get("current_password") or ""
    new = payload.get("new_password") or ""

    s = db_session()
    if not check_password_hash(user.password_hash, current):
        record_event(s, actor=user, action="auth.password_change_failed", entity_type="User", entity_id=str(user.id))
        s.commit()
        raise ValidationError("Current password is incorrect")
    if len(new) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"New password must be at least {MIN_PASSWORD_LENGTH} characters")
    if new == current:
        raise ValidationError("New password must differ from the current one")

    user.password_hash = generate_password_hash(new)
    user.must_change_password = False
    record_event(s, actor=user, action="auth.password_change", entity_type="User", entity_id=str(user.id))
    s.commit()
    return jsonify({"success": True, "user": user_to_dict(user)})
