from __future__ import annotations

import logging
from datetime import date, datetime
from typing import TYPE_CHECKING, Any

from app.eqpqiq import notifications
from app.eqpqiq.audit import record_event
from app.eqpqiq.errors import Conflict, NotFound, ValidationError
from app.eqpqiq.models import HealthSystem
from app.eqpqiq.modules.pulsecheck.models import (
    PULSE_ITEMS,
    PulseCycle,
    PulseDepartment,
    PulseDirector,
    PulseProvider,
    PulseRating,
    PulseReminder,
    PulseSite,
)

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.eqpqiq.models import User

logger = logging.getLogger(__name__)


PROVIDER_TYPES = ("physician", "apc")
CYCLE_STATUSES = ("active", "completed", "archived")
RATING_STATUSES = ("pending", "in_progress", "completed")
REMINDER_CADENCES = ("daily", "weekly", "biweekly", "monthly")
CYCLE_PATCHABLE_FIELDS = ("name", "description", "start_date", "due_date", "reminder_cadence", "status")
RATING_TEXT_FIELDS = ("notes", "strengths", "areas_for_improvement", "goals")


def parse_date(raw: Any, field: str) -> date | None:
    if raw in (None, ""):
        return None
    try:
        return date.fromisoformat(str(raw).strip()[:10])
    except ValueError as e:
        raise ValidationError(f"{field} must be YYYY-MM-DD") from e


def _int_id(raw: Any, field: str) -> int:
    try:
        return int(raw)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an integer") from None


def _average(values: list[float | None]) -> float | None:
    present = [v for v in values if v is not None]
    if not present:
        return None
    return round(sum(present) / len(present), 2)


# ---------- sites, departments, directors ----------

DIRECTOR_ROLES = (
    "regional_director",
    "medical_director",
    "associate_medical_director",
    "assistant_medical_director",
    "admin_assistant",
)


def site_to_dict(site: PulseSite) -> dict:
    return {
        "id": site.id,
        "name": site.name,
        "region": site.region,
        "address": site.address,
        "health_system_id": site.health_system_id,
        "is_active": site.is_active,
        "created_at": site.created_at.isoformat() if site.created_at else None,
    }


def department_to_dict(d: PulseDepartment) -> dict:
    return {
        "id": d.id,
        "site_id": d.site_id,
        "name": d.name,
        "specialty": d.specialty,
        "is_active": d.is_active,
        "created_at": d.created_at.isoformat() if d.created_at else None,
    }


def director_to_dict(d: PulseDirector) -> dict:
    return {
        "id": d.id,
        "name": d.name,
        "email": d.email,
        "role": d.role,
        "department_id": d.department_id,
        "is_active": d.is_active,
        "created_at": d.created_at.isoformat() if d.created_at else None,
    }


def _text(payload: dict, key: str) -> str | None:
    return (payload.get(key) or "").strip() or None


def _apply_active_flag(obj, updates: dict) -> None:
    if "is_active" in updates:
        if not isinstance(updates["is_active"], bool):
            raise ValidationError("is_active must be true or false")
        obj.is_active = updates["is_active"]


def list_sites(s: "Session") -> list[PulseSite]:
    return s.query(PulseSite).order_by(PulseSite.name.asc()).all()


def create_site(s: "Session", payload: dict, user: "User") -> PulseSite:
    name = _text(payload, "name")
    if not name:
        raise ValidationError("Site name is required")
    health_system_id = None
    if payload.get("health_system_id"):
        health_system_id = _int_id(payload["health_system_id"], "health_system_id")
        if not s.get(HealthSystem, health_system_id):
            raise NotFound("Health system not found")
    site = PulseSite(
        name=name,
        region=_text(payload, "region"),
        address=_text(payload, "address"),
        health_system_id=health_system_id,
        is_active=True,
        created_at=datetime.utcnow(),
    )
    s.add(site)
    s.flush()
    record_event(
        s,
        actor=user,
        action="pulsecheck.site_create",
        entity_type="PulseSite",
        entity_id=str(site.id),
        metadata={"name": name},
    )
    return site


def update_site(s: "Session", site_id: int, updates: dict, user: "User") -> PulseSite:
    site = s.get(PulseSite, site_id)
    if not site:
        raise NotFound("Site not found")
    if "name" in updates:
        site.name = _text(updates, "name") or site.name
    for key in ("region", "address"):
        if key in updates:
            setattr(site, key, _text(updates, key))
    _apply_active_flag(site, updates)
    record_event(
        s,
        actor=user,
        action="pulsecheck.site_update",
        entity_type="PulseSite",
        entity_id=str(site.id),
        metadata={"fields": sorted(updates)},
    )
    return site


def list_departments(s: "Session", *, site_id: int | None = None) -> list[PulseDepartment]:
    q = s.query(PulseDepartment)
    if site_id is not None:
        q = q.filter(PulseDepartment.site_id == site_id)
    return q.order_by(PulseDepartment.name.asc()).all()


def create_department(s: "Session", payload: dict, user: "User") -> PulseDepartment:
    name = _text(payload, "name")
    if not payload.get("site_id") or not name:
        raise ValidationError("Site ID and name are required")
    site_id = _int_id(payload["site_id"], "site_id")
    if not s.get(PulseSite, site_id):
        raise NotFound("Site not found")
    department = PulseDepartment(
        site_id=site_id,
        name=name,
        specialty=_text(payload, "specialty"),
        is_active=True,
        created_at=datetime.utcnow(),
    )
    s.add(department)
    s.flush()
    record_event(
        s,
        actor=user,
        action="pulsecheck.department_create",
        entity_type="PulseDepartment",
        entity_id=str(department.id),
        metadata={"site_id": site_id, "name": name},
    )
    return department


def update_department(s: "Session", department_id: int, updates: dict, user: "User") -> PulseDepartment:
    department = s.get(PulseDepartment, department_id)
    if not department:
        raise NotFound("Department not found")
    if "name" in updates:
        department.name = _text(updates, "name") or department.name
    if "specialty" in updates:
        department.specialty = _text(updates, "specialty")
    _apply_active_flag(department, updates)
    record_event(
        s,
        actor=user,
        action="pulsecheck.department_update",
        entity_type="PulseDepartment",
        entity_id=str(department.id),
        metadata={"fields": sorted(updates)},
    )
    return department


def list_directors(s: "Session", *, department_id: int | None = None) -> list[PulseDirector]:
    q = s.query(PulseDirector)
    if department_id is not None:
        q = q.filter(PulseDirector.department_id == department_id)
    return q.order_by(PulseDirector.name.asc()).all()


def _director_role(raw: Any) -> str:
    if raw not in DIRECTOR_ROLES:
        raise ValidationError(f"Invalid role. Must be one of: {', '.join(DIRECTOR_ROLES)}")
    return raw


def create_director(s: "Session", payload: dict, user: "User") -> PulseDirector:
    name = _text(payload, "name")
    email = (_text(payload, "email") or "").lower()
    if not (payload.get("department_id") and name and email and payload.get("role")):
        raise ValidationError("Department ID, name, email, and role are required")
    role = _director_role(payload["role"])
    department_id = _int_id(payload["department_id"], "department_id")
    if not s.get(PulseDepartment, department_id):
        raise NotFound("Department not found")
    if s.query(PulseDirector.id).filter(PulseDirector.email == email).first():
        raise Conflict("A director with this email already exists", extra={"duplicate": True})

    director = PulseDirector(
        name=name,
        email=email,
        role=role,
        department_id=department_id,
        is_active=True,
        created_at=datetime.utcnow(),
    )
    s.add(director)
    s.flush()
    record_event(
        s,
        actor=user,
        action="pulsecheck.director_create",
        entity_type="PulseDirector",
        entity_id=str(director.id),
        metadata={"email": email, "role": role, "department_id": department_id},
    )
    return director


def update_director(s: "Session", director_id: int, updates: dict, user: "User") -> PulseDirector:
    director = s.get(PulseDirector, director_id)
    if not director:
        raise NotFound("Director not found")
    if "name" in updates:
        director.name = _text(updates, "name") or director.name
    if "role" in updates:
        director.role = _director_role(updates["role"])
    if "department_id" in updates:
        department_id = _int_id(updates["department_id"], "department_id")
        if not s.get(PulseDepartment, department_id):
            raise NotFound("Department not found")
        director.department_id = department_id
    _apply_active_flag(director, updates)
    record_event(
        s,
        actor=user,
        action="pulsecheck.director_update",
        entity_type="PulseDirector",
        entity_id=str(director.id),
        metadata={"fields": sorted(updates)},
    )
    return director


# ---------- providers ----------

def provider_to_dict(p: PulseProvider) -> dict:
    return {
        "id": p.id,
        "name": p.name,
        "email": p.email,
        "provider_type": p.provider_type,
        "credential": p.credential,
        "hire_date": p.hire_date.isoformat() if p.hire_date else None,
        "is_active": p.is_active,
        "primary_department_id": p.primary_department_id,
        "primary_director_id": p.primary_director_id,
        "created_at": p.created_at.isoformat() if p.created_at else None,
    }


def list_providers(s: "Session", *, director_id: int | None = None, department_id: int | None = None) -> list[PulseProvider]:
    q = s.query(PulseProvider).filter(PulseProvider.is_active.is_(True))
    if director_id is not None:
        q = q.filter(PulseProvider.primary_director_id == director_id)
    if department_id is not None:
        q = q.filter(PulseProvider.primary_department_id == department_id)
    return q.order_by(PulseProvider.name.asc()).all()


def validate_provider_payload(payload: dict) -> list[str]:
    errors = []
    if not all(payload.get(k) for k in ("name", "email", "provider_type", "primary_department_id")):
        errors.append("Name, email, provider type, and department are required")
    provider_type = payload.get("provider_type")
    if provider_type and provider_type not in PROVIDER_TYPES:
        errors.append(f"Invalid provider_type. Must be one of: {', '.join(PROVIDER_TYPES)}")
    return errors


def create_provider(s: "Session", payload: dict, user: "User") -> PulseProvider:
    email = payload["email"].strip().lower()
    if s.query(PulseProvider.id).filter(PulseProvider.email == email).first():
        raise Conflict("A provider with this email already exists", extra={"duplicate": True})

    department_id = _int_id(payload["primary_department_id"], "primary_department_id")
    if not s.get(PulseDepartment, department_id):
        raise NotFound("Department not found")
    director_id = payload.get("primary_director_id")
    if director_id:
        director_id = _int_id(director_id, "primary_director_id")
        if not s.get(PulseDirector, director_id):
            raise NotFound("Director not found")

    now = datetime.utcnow()
    provider = PulseProvider(
        name=payload["name"].strip(),
        email=email,
        provider_type=payload["provider_type"],
        credential=(payload.get("credential") or "").strip() or None,
        primary_department_id=department_id,
        primary_director_id=director_id or None,
        hire_date=parse_date(payload.get("hire_date"), "hire_date"),
        is_active=True,
        created_at=now,
        updated_at=now,
    )
    s.add(provider)
    s.flush()
    record_event(
        s,
        actor=user,
        action="pulsecheck.provider_create",
        entity_type="PulseProvider",
        entity_id=str(provider.id),
        metadata={"email": email, "department_id": department_id},
    )
    return provider


# ---------- cycles ----------

def cycle_to_dict(c: PulseCycle) -> dict:
    return {
        "id": c.id,
        "name": c.name,
        "description": c.description,
        "start_date": c.start_date.isoformat() if c.start_date else None,
        "due_date": c.due_date.isoformat() if c.due_date else None,
        "reminder_cadence": c.reminder_cadence,
        "status": c.status,
        "created_by": c.created_by,
        "created_at": c.created_at.isoformat() if c.created_at else None,
    }


def list_cycles(s: "Session", *, status: str | None = None) -> list[PulseCycle]:
    q = s.query(PulseCycle)
    if status:
        q = q.filter(PulseCycle.status == status)
    return q.order_by(PulseCycle.start_date.desc(), PulseCycle.id.desc()).all()


def create_cycle(s: "Session", payload: dict, user: "User") -> tuple[PulseCycle, int]:
    """Creates the cycle and a pending rating for every active provider that has a primary director."""
    if not payload.get("name") or not payload.get("start_date") or not payload.get("due_date"):
        raise ValidationError("Name, start date, and due date are required")
    start = parse_date(payload["start_date"], "start_date")
    due = parse_date(payload["due_date"], "due_date")
    if due < start:
        raise ValidationError("due_date must not be before start_date")
    cadence = payload.get("reminder_cadence") or "weekly"
    if cadence not in REMINDER_CADENCES:
        raise ValidationError(f"Invalid reminder_cadence. Must be one of: {', '.join(REMINDER_CADENCES)}")

    cycle = PulseCycle(
        name=payload["name"].strip(),
        description=(payload.get("description") or "").strip() or None,
        start_date=start,
        due_date=due,
        reminder_cadence=cadence,
        status="active",
        created_by=(payload.get("created_by") or user.email or "").lower() or None,
    )
    s.add(cycle)
    s.flush()

    providers = (
        s.query(PulseProvider)
        .filter(PulseProvider.is_active.is_(True), PulseProvider.primary_director_id.isnot(None))
        .all()
    )
    for p in providers:
        s.add(PulseRating(cycle_id=cycle.id, provider_id=p.id, director_id=p.primary_director_id, status="pending"))
    s.flush()

    record_event(
        s,
        actor=user,
        action="pulsecheck.cycle_create",
        entity_type="PulseCycle",
        entity_id=str(cycle.id),
        metadata={"name": cycle.name, "seeded_ratings": len(providers)},
    )
    logger.info("pulsecheck.cycle_create id=%s seeded=%s", cycle.id, len(providers))
    return cycle, len(providers)


def update_cycle(s: "Session", payload: dict, user: "User") -> PulseCycle:
    if not payload.get("id"):
        raise ValidationError("Cycle ID is required")
    cycle = s.get(PulseCycle, _int_id(payload["id"], "id"))
    if not cycle:
        raise NotFound("Cycle not found")

    updates = {k: payload[k] for k in CYCLE_PATCHABLE_FIELDS if k in payload}
    if not updates:
        raise ValidationError("No valid fields to update")
    if "status" in updates and updates["status"] not in CYCLE_STATUSES:
        raise ValidationError(f"Invalid status. Must be one of: {', '.join(CYCLE_STATUSES)}")
    if "reminder_cadence" in updates and updates["reminder_cadence"] not in REMINDER_CADENCES:
        raise ValidationError(f"Invalid reminder_cadence. Must be one of: {', '.join(REMINDER_CADENCES)}")

    changes = {}
    for key, value in updates.items():
        if key in ("start_date", "due_date"):
            value = parse_date(value, key)
            if value is None:
                raise ValidationError(f"{key} must not be empty")
        old = getattr(cycle, key)
        if old != value:
            changes[key] = {"old": old, "new": value}
            setattr(cycle, key, value)

    record_event(
        s,
        actor=user,
        action="pulsecheck.cycle_update",
        entity_type="PulseCycle",
        entity_id=str(cycle.id),
        metadata={"changes": changes},
    )
    return cycle


# ---------- ratings ----------

def list_ratings(s: "Session", *, director_id=None, cycle_id=None, provider_id=None, status=None) -> list[PulseRating]:
    q = s.query(PulseRating)
    if director_id is not None:
        q = q.filter(PulseRating.director_id == director_id)
    if cycle_id is not None:
        q = q.filter(PulseRating.cycle_id == cycle_id)
    if provider_id is not None:
        q = q.filter(PulseRating.provider_id == provider_id)
    if status:
        q = q.filter(PulseRating.status == status)
    return q.order_by(PulseRating.created_at.desc(), PulseRating.id.desc()).all()


def validate_item_scores(payload: dict) -> list[str]:
    errors = []
    for item in PULSE_ITEMS:
        v = payload.get(item)
        if v is None:
            continue
        if isinstance(v, bool) or not isinstance(v, int) or not 1 <= v <= 5:
            errors.append(f"{item} must be an integer from 1 to 5")
    return errors


def save_rating(s: "Session", payload: dict, user: "User") -> tuple[PulseRating, bool]:
    """Upsert by (provider, director, cycle). Returns (rating, updated)."""
    if not payload.get("provider_id") or not payload.get("director_id"):
        raise ValidationError("Provider ID and Director ID are required")
    errors = validate_item_scores(payload)
    if errors:
        raise ValidationError(errors[0], extra={"errors": errors})
    status = payload.get("status") or "in_progress"
    if status not in RATING_STATUSES:
        raise ValidationError(f"Invalid status. Must be one of: {', '.join(RATING_STATUSES)}")

    provider_id = _int_id(payload["provider_id"], "provider_id")
    director_id = _int_id(payload["director_id"], "director_id")
    cycle_id = _int_id(payload["cycle_id"], "cycle_id") if payload.get("cycle_id") else None
    if not s.get(PulseProvider, provider_id):
        raise NotFound("Provider not found")
    if not s.get(PulseDirector, director_id):
        raise NotFound("Director not found")
    if cycle_id is not None and not s.get(PulseCycle, cycle_id):
        raise NotFound("Cycle not found")

    rating = (
        s.query(PulseRating)
        .filter(
            PulseRating.provider_id == provider_id,
            PulseRating.director_id == director_id,
            PulseRating.cycle_id.is_(None) if cycle_id is None else PulseRating.cycle_id == cycle_id,
        )
        .one_or_none()
    )
    now = datetime.utcnow()
    updated = rating is not None
    if rating is None:
        rating = PulseRating(provider_id=provider_id, director_id=director_id, cycle_id=cycle_id, created_at=now)
        s.add(rating)

    for item in PULSE_ITEMS:
        setattr(rating, item, payload.get(item))
    for field in RATING_TEXT_FIELDS:
        setattr(rating, field, (payload.get(field) or "").strip() or None)
    rating.status = status
    if rating.started_at is None:
        rating.started_at = now
    rating.completed_at = now if status == "completed" else None
    rating.updated_at = now
    s.flush()

    record_event(
        s,
        actor=user,
        action="pulsecheck.rating_update" if updated else "pulsecheck.rating_create",
        entity_type="PulseRating",
        entity_id=str(rating.id),
        metadata={"provider_id": provider_id, "director_id": director_id, "cycle_id": cycle_id, "status": status},
    )
    return rating, updated


# ---------- reports ----------

def _score_block(ratings: list[PulseRating]) -> dict | None:
    if not ratings:
        return None
    return {
        "eq": _average([r.eq_total for r in ratings]),
        "pq": _average([r.pq_total for r in ratings]),
        "iq": _average([r.iq_total for r in ratings]),
        "overall": _average([r.overall_total for r in ratings]),
    }


def _rate(done: int, total: int) -> int:
    return round(done / total * 100) if total else 0


def build_report(s: "Session", *, site_id=None, department_id=None, cycle_id=None) -> dict:
    sites = s.query(PulseSite).filter(PulseSite.is_active.is_(True)).order_by(PulseSite.name.asc()).all()
    dq = s.query(PulseDepartment).filter(PulseDepartment.is_active.is_(True))
    if site_id is not None:
        dq = dq.filter(PulseDepartment.site_id == site_id)
    departments = dq.order_by(PulseDepartment.name.asc()).all()
    dirq = s.query(PulseDirector).filter(PulseDirector.is_active.is_(True))
    if department_id is not None:
        dirq = dirq.filter(PulseDirector.department_id == department_id)
    directors = dirq.order_by(PulseDirector.name.asc()).all()
    providers = list_providers(s)
    all_ratings = list_ratings(s, cycle_id=cycle_id)
    completed = [r for r in all_ratings if r.status == "completed"]

    provider_stats = []
    for p in providers:
        mine = [r for r in all_ratings if r.provider_id == p.id]
        done = [r for r in mine if r.status == "completed"]
        open_ = [r for r in mine if r.status != "completed"]
        latest = max(done, key=lambda r: r.completed_at or datetime.min) if done else None
        provider_stats.append(
            {
                **provider_to_dict(p),
                "status": "pending" if open_ else ("completed" if done else "not_rated"),
                "completed_ratings": len(done),
                "latest_rating": {
                    "eq": latest.eq_total,
                    "pq": latest.pq_total,
                    "iq": latest.iq_total,
                    "overall": latest.overall_total,
                    "completed_at": latest.completed_at.isoformat() if latest.completed_at else None,
                }
                if latest
                else None,
            }
        )

    department_stats = []
    for d in departments:
        dept_providers = [p for p in provider_stats if p["primary_department_id"] == d.id]
        ids = {p["id"] for p in dept_providers}
        dept_ratings = [r for r in completed if r.provider_id in ids]
        department_stats.append(
            {
                "id": d.id,
                "name": d.name,
                "site_id": d.site_id,
                "provider_count": len(dept_providers),
                "director_count": sum(1 for x in directors if x.department_id == d.id),
                "completed_ratings": len(dept_ratings),
                "completion_rate": _rate(len(dept_ratings), len(dept_providers)),
                "average_scores": _score_block(dept_ratings),
                "providers": dept_providers,
            }
        )

    site_stats = []
    for site in sites:
        site_depts = [d for d in department_stats if d["site_id"] == site.id]
        providers_n = sum(d["provider_count"] for d in site_depts)
        completed_n = sum(d["completed_ratings"] for d in site_depts)
        dept_avgs = [d["average_scores"] for d in site_depts if d["average_scores"]]
        avg = None
        if dept_avgs:
            avg = {k: _average([a[k] for a in dept_avgs]) for k in ("eq", "pq", "iq", "overall")}
        site_stats.append(
            {
                "id": site.id,
                "name": site.name,
                "region": site.region,
                "department_count": len(site_depts),
                "provider_count": providers_n,
                "director_count": sum(d["director_count"] for d in site_depts),
                "completed_ratings": completed_n,
                "completion_rate": _rate(completed_n, providers_n),
                "average_scores": avg,
                "departments": site_depts,
            }
        )

    return {
        "sites": site_stats,
        "departments": department_stats,
        "overall": {
            "total_sites": len(sites),
            "total_departments": len(departments),
            "total_directors": len(directors),
            "total_providers": len(providers),
            "total_completed_ratings": len(completed),
            "overall_completion_rate": _rate(len(completed), len(providers)),
            "average_scores": _score_block(completed),
        },
        "directors": [{"id": d.id, "name": d.name, "email": d.email, "role": d.role} for d in directors],
    }


# ---------- director reminders ----------

def _director_summaries(ratings: list[PulseRating]) -> list[dict]:
    by_director: dict[int, list[PulseRating]] = {}
    for r in ratings:
        by_director.setdefault(r.director_id, []).append(r)

    out = []
    for director_id, rs in by_director.items():
        director = rs[0].director
        if director is None:
            continue
        pending = [r for r in rs if r.status != "completed"]
        out.append(
            {
                "director_id": director_id,
                "director_name": director.name,
                "director_email": director.email,
                "pending_count": len(pending),
                "completed_count": len(rs) - len(pending),
                "total_count": len(rs),
                "pending_providers": [
                    {"id": r.provider_id, "name": r.provider.name if r.provider else "Unknown"} for r in pending
                ],
            }
        )
    out.sort(key=lambda x: (-x["pending_count"], x["director_name"]))
    return out


def reminder_to_dict(r: PulseReminder) -> dict:
    return {
        "id": r.id,
        "cycle_id": r.cycle_id,
        "director_id": r.director_id,
        "pending_count": r.pending_count,
        "completed_count": r.completed_count,
        "email_sent": r.email_sent,
        "sent_at": r.sent_at.isoformat() if r.sent_at else None,
    }


def reminder_summary(s: "Session", cycle_id: int) -> dict:
    cycle = s.get(PulseCycle, cycle_id)
    if not cycle:
        raise NotFound("Cycle not found")
    summaries = _director_summaries(list_ratings(s, cycle_id=cycle_id))
    history = (
        s.query(PulseReminder)
        .filter(PulseReminder.cycle_id == cycle_id)
        .order_by(PulseReminder.sent_at.desc(), PulseReminder.id.desc())
        .limit(20)
        .all()
    )
    return {
        "cycle": cycle_to_dict(cycle),
        "summaries": summaries,
        "reminder_history": [reminder_to_dict(r) for r in history],
        "stats": {
            "total_directors": len(summaries),
            "directors_with_pending": sum(1 for x in summaries if x["pending_count"] > 0),
            "total_pending": sum(x["pending_count"] for x in summaries),
            "total_completed": sum(x["completed_count"] for x in summaries),
        },
    }


def send_director_reminders(s: "Session", payload: dict, user: "User") -> dict:
    if not payload.get("cycle_id"):
        raise ValidationError("Cycle ID is required")
    cycle = s.get(PulseCycle, _int_id(payload["cycle_id"], "cycle_id"))
    if not cycle:
        raise NotFound("Cycle not found")

    director_ids = payload.get("director_ids") or []
    if not isinstance(director_ids, list):
        raise ValidationError("director_ids must be a list")
    wanted = {_int_id(d, "director_ids") for d in director_ids}

    ratings = list_ratings(s, cycle_id=cycle.id)
    if wanted:
        ratings = [r for r in ratings if r.director_id in wanted]
    targets = [x for x in _director_summaries(ratings) if x["pending_count"] > 0]
    if not targets:
        return {"message": "No pending reviews to send reminders for", "sent": 0, "reminders": []}

    now = datetime.utcnow()
    reminders = []
    for t in targets:
        subject, html = notifications.pulse_director_reminder(
            director_name=t["director_name"],
            cycle_name=cycle.name,
            due_date=cycle.due_date,
            pending=[p["name"] for p in t["pending_providers"]],
        )
        ok = notifications.send_email(t["director_email"], subject, html)
        reminder = PulseReminder(
            cycle_id=cycle.id,
            director_id=t["director_id"],
            pending_count=t["pending_count"],
            completed_count=t["completed_count"],
            email_sent=ok,
            sent_at=now,
        )
        s.add(reminder)
        reminders.append(reminder)
    s.flush()

    emailed = sum(1 for r in reminders if r.email_sent)
    record_event(
        s,
        actor=user,
        action="pulsecheck.remind",
        entity_type="PulseCycle",
        entity_id=str(cycle.id),
        metadata={"directors": len(reminders), "emails_sent": emailed},
    )
    logger.info("pulsecheck.remind cycle=%s directors=%s emailed=%s", cycle.id, len(reminders), emailed)
    return {
        "message": f"Reminders sent to {emailed} of {len(reminders)} directors",
        "sent": emailed,
        "failed": len(reminders) - emailed,
        "reminders": [reminder_to_dict(r) for r in reminders],
    }
