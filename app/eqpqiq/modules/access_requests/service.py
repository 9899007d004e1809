from __future__ import annotations

import logging
import re
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import func, or_
from werkzeug.security import generate_password_hash

from app.eqpqiq import notifications
from app.eqpqiq.audit import record_event
from app.eqpqiq.errors import ConfigurationError, Conflict, Forbidden, NotFound, ValidationError
from app.eqpqiq.models import AcademicClass, Faculty, HealthSystem, OrganizationMembership, Program, Resident, User
from app.eqpqiq.modules.access_requests.models import AccessRequest
from app.eqpqiq.rbac import ROLE_HIERARCHY
from app.eqpqiq.security import new_temporary_password

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)


EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
REQUEST_STATUSES = ("pending", "approved", "rejected")
REVIEWER_ROLES = ("super_admin", "program_director")
REQUESTABLE_ROLES = ("resident", "faculty", "program_director", "assistant_program_director", "clerkship_director", "viewer")
FACULTY_RECORD_ROLES = ("faculty", "program_director", "assistant_program_director", "clerkship_director")
DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 200


def _clean(value) -> str | None:
    return (str(value).strip() if value is not None else "") or None


def validate_access_request_payload(payload: dict) -> list[str]:
    errors = []
    email = (payload.get("personal_email") or "").strip()
    if not email or not (payload.get("full_name") or "").strip():
        errors.append("Personal email and full name are required")
    elif not EMAIL_RE.match(email):
        errors.append("Invalid email format")
    institutional = (payload.get("institutional_email") or "").strip()
    if institutional and not EMAIL_RE.match(institutional):
        errors.append("Invalid institutional email format")
    role = payload.get("requested_role") or "resident"
    if role not in REQUESTABLE_ROLES:
        errors.append(f"Invalid requested_role. Must be one of: {', '.join(REQUESTABLE_ROLES)}")
    return errors


def _account_exists(s: "Session", email: str) -> bool:
    return (
        s.query(User.id)
        .filter(or_(func.lower(User.email) == email, func.lower(User.personal_email) == email))
        .first()
        is not None
    )


def submit_access_request(s: "Session", payload: dict, *, admin_email: str, base_url: str) -> AccessRequest:
    errors = validate_access_request_payload(payload)
    if errors:
        raise ValidationError(errors[0], extra={"errors": errors})

    email = payload["personal_email"].strip().lower()
    pending = (
        s.query(AccessRequest.id)
        .filter(AccessRequest.personal_email == email, AccessRequest.status == "pending")
        .first()
    )
    if pending:
        raise ValidationError("You already have a pending access request. We will review it shortly.")
    if _account_exists(s, email):
        raise ValidationError("An account with this email already exists. Please login instead.")

    program_id = payload.get("program_id")
    health_system_id = None
    if program_id:
        program = s.get(Program, int(program_id)) if str(program_id).isdigit() else None
        if program is None:
            raise ValidationError("Unknown program_id")
        program_id, health_system_id = program.id, program.health_system_id

    graduation_year = payload.get("graduation_year")
    if graduation_year not in (None, ""):
        try:
            graduation_year = int(graduation_year)
        except (TypeError, ValueError):
            raise ValidationError("graduation_year must be an integer") from None
    else:
        graduation_year = None

    req = AccessRequest(
        personal_email=email,
        institutional_email=(_clean(payload.get("institutional_email")) or "").lower() or None,
        full_name=payload["full_name"].strip(),
        phone=_clean(payload.get("phone")),
        requested_role=payload.get("requested_role") or "resident",
        health_system_id=health_system_id,
        program_id=program_id or None,
        graduation_year=graduation_year,
        medical_school=_clean(payload.get("medical_school")),
        reason=_clean(payload.get("reason")),
        status="pending",
    )
    s.add(req)
    s.flush()
    record_event(
        s,
        actor=None,
        actor_email=email,
        action="access_request.submit",
        entity_type="AccessRequest",
        entity_id=str(req.id),
        metadata={"requested_role": req.requested_role, "program_id": req.program_id},
    )

    subject, html = notifications.access_request_admin(
        full_name=req.full_name,
        email=email,
        requested_role=req.requested_role,
        reason=req.reason,
        review_url=f"{base_url.rstrip('/')}/admin/requests",
    )
    notifications.send_email(admin_email, subject, html)
    subject, html = notifications.access_request_received(full_name=req.full_name)
    notifications.send_email(email, subject, html)
    logger.info("access_request.submit id=%s role=%s", req.id, req.requested_role)
    return req


def list_access_requests(s: "Session", *, status: str = "pending", limit: int = DEFAULT_PAGE_SIZE, offset: int = 0) -> dict:
    if status != "all" and status not in REQUEST_STATUSES:
        raise ValidationError(f"Invalid status. Must be one of: all, {', '.join(REQUEST_STATUSES)}")
    limit = max(1, min(limit, MAX_PAGE_SIZE))
    offset = max(0, offset)

    q = s.query(AccessRequest)
    if status != "all":
        q = q.filter(AccessRequest.status == status)
    total = q.count()
    rows = q.order_by(AccessRequest.created_at.desc(), AccessRequest.id.desc()).offset(offset).limit(limit).all()

    program_ids = {r.program_id for r in rows if r.program_id}
    programs = {p.id: p for p in s.query(Program).filter(Program.id.in_(program_ids)).all()} if program_ids else {}
    items = []
    for r in rows:
        d = r.to_dict()
        p = programs.get(r.program_id)
        d["program"] = {"id": p.id, "name": p.name, "specialty": p.specialty} if p else None
        items.append(d)
    return {"requests": items, "total": total, "limit": limit, "offset": offset}


def _pending_or_error(s: "Session", request_id: int) -> AccessRequest:
    req = s.get(AccessRequest, request_id)
    if not req:
        raise NotFound("Request not found")
    if req.status != "pending":
        raise ValidationError(f"Request already {req.status}")
    return req


def _resolve_placement(s: "Session", req: AccessRequest) -> tuple[HealthSystem, Program | None]:
    program = s.get(Program, req.program_id) if req.program_id else None
    hs_id = req.health_system_id or (program.health_system_id if program else None)
    hs = s.get(HealthSystem, hs_id) if hs_id else None
    if hs is None:
        hs = (
            s.query(HealthSystem)
            .filter(HealthSystem.is_active.is_(True))
            .order_by(HealthSystem.id.asc())
            .first()
        )
    if hs is None:
        raise ConfigurationError("No institution configured")
    if program is None:
        program = (
            s.query(Program)
            .filter(Program.health_system_id == hs.id, Program.is_active.is_(True))
            .order_by(Program.id.asc())
            .first()
        )
    return hs, program


def _class_for(s: "Session", program: Program, graduation_year: int | None) -> AcademicClass | None:
    if graduation_year is None:
        return None
    klass = (
        s.query(AcademicClass)
        .filter(AcademicClass.program_id == program.id, AcademicClass.graduation_year == graduation_year)
        .one_or_none()
    )
    if klass is None:
        klass = AcademicClass(program_id=program.id, graduation_year=graduation_year, name=f"Class of {graduation_year}")
        s.add(klass)
        s.flush()
    return klass


def approve_access_request(
    s: "Session",
    request_id: int,
    payload: dict,
    reviewer: User,
    *,
    reviewer_role: str,
    login_url: str,
) -> tuple[AccessRequest, User]:
    """
    Creates the account (temporary password, must change on first login), an
    organization membership, and the resident or faculty record the role needs.
    """
    req = _pending_or_error(s, request_id)
    role = payload.get("role") or req.requested_role
    if role not in ROLE_HIERARCHY:
        raise ValidationError(f"Unknown role: {role}")
    if ROLE_HIERARCHY[role] > ROLE_HIERARCHY.get(reviewer_role, 0):
        raise ValidationError("Cannot grant a role above your own")
    if _account_exists(s, req.personal_email):
        raise Conflict("An account with this email already exists")

    hs, program = _resolve_placement(s, req)
    temp_password = new_temporary_password()
    now = datetime.utcnow()

    user = User(
        email=req.personal_email,
        personal_email=req.personal_email,
        institutional_email=req.institutional_email,
        full_name=req.full_name,
        password_hash=generate_password_hash(temp_password),
        role=role,
        is_active=True,
        account_status="active",
        must_change_password=True,
    )
    s.add(user)
    s.flush()
    s.add(
        OrganizationMembership(
            user_id=user.id,
            health_system_id=hs.id,
            program_id=program.id if program else None,
            role=role,
            status="active",
        )
    )

    if program is not None and role == "resident":
        klass = _class_for(s, program, req.graduation_year)
        s.add(
            Resident(
                user_id=user.id,
                program_id=program.id,
                class_id=klass.id if klass else None,
                full_name=req.full_name,
                email=req.personal_email,
                medical_school=req.medical_school,
            )
        )
    elif program is not None and role in FACULTY_RECORD_ROLES:
        s.add(Faculty(user_id=user.id, program_id=program.id, full_name=req.full_name, email=req.personal_email))

    req.status = "approved"
    req.reviewed_by_user_id = reviewer.id
    req.reviewed_at = now
    req.admin_notes = _clean(payload.get("admin_notes"))
    req.created_user_id = user.id
    s.flush()

    record_event(
        s,
        actor=reviewer,
        action="access_request.approve",
        entity_type="AccessRequest",
        entity_id=str(req.id),
        metadata={"user_id": user.id, "role": role, "program_id": program.id if program else None},
    )

    subject, html = notifications.access_request_approved(
        full_name=req.full_name,
        email=req.personal_email,
        temp_password=temp_password,
        login_url=login_url,
    )
    notifications.send_email(req.personal_email, subject, html)
    logger.info("access_request.approve id=%s user_id=%s role=%s", req.id, user.id, role)
    return req, user


def reject_access_request(s: "Session", request_id: int, payload: dict, reviewer: User) -> AccessRequest:
    req = _pending_or_error(s, request_id)
    req.status = "rejected"
    req.reviewed_by_user_id = reviewer.id
    req.reviewed_at = datetime.utcnow()
    req.admin_notes = _clean(payload.get("admin_notes"))
    s.flush()

    record_event(
        s,
        actor=reviewer,
        action="access_request.reject",
        entity_type="AccessRequest",
        entity_id=str(req.id),
        reason=req.admin_notes,
        metadata={"email": req.personal_email},
    )
    subject, html = notifications.access_request_rejected(full_name=req.full_name, reason=req.admin_notes)
    notifications.send_email(req.personal_email, subject, html)
    return req


# ---------- account administration ----------

def _user_or_404(s: "Session", user_id: int) -> User:
    user = s.get(User, user_id)
    if not user:
        raise NotFound("User not found")
    return user


def _outranks(admin: User, user: User) -> None:
    if ROLE_HIERARCHY.get(user.role, 0) > ROLE_HIERARCHY.get(admin.role, 0):
        raise Forbidden("Cannot manage an account above your own role")


def suspend_user(s: "Session", user_id: int, admin: User) -> User:
    if user_id == admin.id:
        raise ValidationError("Cannot suspend your own account")
    user = _user_or_404(s, user_id)
    _outranks(admin, user)
    if user.account_status == "suspended":
        raise ValidationError("User is already suspended")
    user.account_status = "suspended"
    user.is_active = False
    record_event(
        s,
        actor=admin,
        action="user.suspend",
        entity_type="User",
        entity_id=str(user.id),
        metadata={"email": user.email},
    )
    logger.info("user.suspend id=%s by=%s", user.id, admin.id)
    return user


def reactivate_user(s: "Session", user_id: int, admin: User) -> User:
    user = _user_or_404(s, user_id)
    if user.account_status == "active" and user.is_active:
        raise ValidationError("User is already active")
    user.account_status = "active"
    user.is_active = True
    record_event(
        s,
        actor=admin,
        action="user.reactivate",
        entity_type="User",
        entity_id=str(user.id),
        metadata={"email": user.email},
    )
    return user


def resend_invite(s: "Session", user_id: int, admin: User, *, login_url: str) -> tuple[User, str]:
    """Issues a fresh temporary password and mails the welcome message again."""
    user = _user_or_404(s, user_id)
    _outranks(admin, user)
    if not user.is_active:
        raise ValidationError("Reactivate the account before resending the invite")
    temp_password = new_temporary_password()
    user.password_hash = generate_password_hash(temp_password)
    user.must_change_password = True
    email = user.personal_email or user.email

    subject, html = notifications.access_request_approved(
        full_name=user.full_name or "User",
        email=user.email,
        temp_password=temp_password,
        login_url=login_url,
    )
    sent = notifications.send_email(email, subject, html)
    record_event(
        s,
        actor=admin,
        action="user.resend_invite",
        entity_type="User",
        entity_id=str(user.id),
        metadata={"email": email, "email_sent": sent},
    )
    return user, email
