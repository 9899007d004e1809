from __future__ import annotations

from flask import Blueprint, jsonify, request

from app.eqpqiq.db import db_session
from app.eqpqiq.errors import ValidationError
from app.eqpqiq.modules.pulsecheck.service import (
    build_report,
    create_cycle,
    create_department,
    create_director,
    create_provider,
    create_site,
    cycle_to_dict,
    department_to_dict,
    director_to_dict,
    list_cycles,
    list_departments,
    list_directors,
    list_providers,
    list_sites,
    list_ratings,
    provider_to_dict,
    reminder_summary,
    save_rating,
    send_director_reminders,
    site_to_dict,
    update_cycle,
    update_department,
    update_director,
    update_site,
    validate_provider_payload,
)
from app.eqpqiq.rbac import PROGRAM_LEADERSHIP_ROLES, current_tenant, require_tenant_auth

bp = Blueprint("pulsecheck", __name__)

# Pulse Check spans health-system sites rather than a single program.
pulse_reader = require_tenant_auth(require_tenant=False, minimum_role="faculty")
pulse_manager = require_tenant_auth(require_tenant=False, required_roles=PROGRAM_LEADERSHIP_ROLES)


def _arg_int(name: str) -> int | None:
    raw = (request.args.get(name) or "").strip()
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError:
        raise ValidationError(f"{name} must be an integer") from None


@bp.get("/providers")
@pulse_reader
def providers_list():
    s = db_session()
    providers = list_providers(s, director_id=_arg_int("director_id"), department_id=_arg_int("department_id"))
    return jsonify({"providers": [provider_to_dict(p) for p in providers]})


@bp.post("/providers")
@pulse_manager
def providers_create():
    s = db_session()
    payload = request.get_json(silent=True) or {}
    errors = validate_provider_payload(payload)
    if errors:
        raise ValidationError(errors[0], extra={"errors": errors})
    provider = create_provider(s, payload, current_tenant().user)
    s.commit()
    return jsonify({"provider": provider_to_dict(provider)}), 201


@bp.get("/cycles")
@pulse_reader
def cycles_list():
    s = db_session()
    status = (request.args.get("status") or "").strip() or None
    return jsonify({"cycles": [cycle_to_dict(c) for c in list_cycles(s, status=status)]})


@bp.post("/cycles")
@pulse_manager
def cycles_create():
    s = db_session()
    payload = request.get_json(silent=True) or {}
    cycle, seeded = create_cycle(s, payload, current_tenant().user)
    s.commit()
    return jsonify({"cycle": cycle_to_dict(cycle), "ratings_created": seeded}), 201


@bp.patch("/cycles")
@pulse_manager
def cycles_update():
    s = db_session()
    payload = request.get_json(silent=True) or {}
    cycle = update_cycle(s, payload, current_tenant().user)
    s.commit()
    return jsonify({"cycle": cycle_to_dict(cycle)})


@bp.get("/ratings")
@pulse_reader
def ratings_list():
    s = db_session()
    ratings = list_ratings(
        s,
        director_id=_arg_int("director_id"),
        cycle_id=_arg_int("cycle_id"),
        provider_id=_arg_int("provider_id"),
        status=(request.args.get("status") or "").strip() or None,
    )
    return jsonify({"ratings": [r.to_dict() for r in ratings]})


@bp.post("/ratings")
@pulse_reader
def ratings_save():
    s = db_session()
    payload = request.get_json(silent=True) or {}
    rating, updated = save_rating(s, payload, current_tenant().user)
    s.commit()
    return jsonify({"rating": rating.to_dict(), "updated": updated})


@bp.get("/reports")
@pulse_reader
def reports():
    s = db_session()
    return jsonify(
        build_report(
            s,
            site_id=_arg_int("site_id"),
            department_id=_arg_int("department_id"),
            cycle_id=_arg_int("cycle_id"),
        )
    )


@bp.get("/reminders")
@pulse_reader
def reminders_summary():
    s = db_session()
    cycle_id = _arg_int("cycle_id")
    if cycle_id is None:
        raise ValidationError("Cycle ID is required")
    return jsonify(reminder_summary(s, cycle_id))


@bp.post("/reminders")
@pulse_manager
def reminders_send():
    s = db_session()
    payload = request.get_json(silent=True) or {}
    result = send_director_reminders(s, payload, current_tenant().user)
    s.commit()
    return jsonify(result)


# ---------- org structure: sites > departments > directors ----------
@bp.get("/admin/sites")
@pulse_reader
def sites_list():
    s = db_session()
    return jsonify({"sites": [site_to_dict(x) for x in list_sites(s)]})


@bp.post("/admin/sites")
@pulse_manager
def sites_create():
    s = db_session()
    site = create_site(s, request.get_json(silent=True) or {}, current_tenant().user)
    s.commit()
    return jsonify({"site": site_to_dict(site)}), 201


@bp.patch("/admin/sites/<int:site_id>")
@pulse_manager
def sites_update(site_id: int):
    s = db_session()
    site = update_site(s, site_id, request.get_json(silent=True) or {}, current_tenant().user)
    s.commit()
    return jsonify({"site": site_to_dict(site)})


@bp.get("/admin/departments")
@pulse_reader
def departments_list():
    s = db_session()
    departments = list_departments(s, site_id=_arg_int("site_id"))
    return jsonify({"departments": [department_to_dict(d) for d in departments]})


@bp.post("/admin/departments")
@pulse_manager
def departments_create():
    s = db_session()
    department = create_department(s, request.get_json(silent=True) or {}, current_tenant().user)
    s.commit()
    return jsonify({"department": department_to_dict(department)}), 201


@bp.patch("/admin/departments/<int:department_id>")
@pulse_manager
def departments_update(department_id: int):
    s = db_session()
    department = update_department(s, department_id, request.get_json(silent=True) or {}, current_tenant().user)
    s.commit()
    return jsonify({"department": department_to_dict(department)})


@bp.get("/admin/directors")
@pulse_reader
def directors_list():
    s = db_session()
    directors = list_directors(s, department_id=_arg_int("department_id"))
    return jsonify({"directors": [director_to_dict(d) for d in directors]})


@bp.post("/admin/directors")
@pulse_manager
def directors_create():
    s = db_session()
    director = create_director(s, request.get_json(silent=True) or {}, current_tenant().user)
    s.commit()
    return jsonify({"director": director_to_dict(director)}), 201


@bp.patch("/admin/directors/<int:director_id>")
@pulse_manager
def directors_update(director_id: int):
    s = db_session()
    director = update_director(s, director_id, request.get_json(silent=True) or {}, current_tenant().user)
    s.commit()
    return jsonify({"director": director_to_dict(director)})
