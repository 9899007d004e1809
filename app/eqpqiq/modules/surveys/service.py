"""
Survey campaigns: creation, distribution, token-gated responses, reminders and
result aggregation.

Respondent status only ever moves forward (pending -> started -> completed);
every transition goes through `_advance()`.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any

from flask import current_app
from sqlalchemy import func, or_

from app.eqpqiq import notifications
from app.eqpqiq.audit import record_event
from app.eqpqiq.errors import Conflict, Gone, NotFound, ValidationError
from app.eqpqiq.models import Faculty, Program, Resident, User
from app.eqpqiq.modules.ratings.models import PILLARS, StructuredRating
from app.eqpqiq.modules.ratings.service import FACULTY_RATER_TYPES, save_survey_rating, validate_scores
from app.eqpqiq.modules.surveys.models import Survey, SurveyRespondent, SurveyResidentAssignment
from app.eqpqiq.security import new_respondent_token

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)


SURVEY_TYPES = ("learner_self_assessment", "educator_assessment", "program_intake", "custom")
SURVEY_STATUSES = ("draft", "active", "closed", "archived")
RESPONDENT_ROLES = ("resident", "faculty")
RATER_TYPES = ("core_faculty", "teaching_faculty", "self")
PATCHABLE_FIELDS = (
    "title",
    "description",
    "status",
    "deadline",
    "auto_remind",
    "remind_every_days",
    "max_reminders",
    "settings",
)
RESPONSE_ACTIONS = ("save_progress", "submit_rating", "submit_self", "complete")

DEFAULT_GUIDANCE_MIN = 3
DEFAULT_REMIND_EVERY_DAYS = 3
DEFAULT_MAX_REMINDERS = 5

_STATUS_ORDER = {"pending": 0, "started": 1, "completed": 2}


# ---------- helpers ----------

def parse_deadline(raw: Any) -> datetime | None:
    """ISO date or datetime; aware values are converted to naive UTC."""
    if raw in (None, ""):
        return None
    text = str(raw).strip().replace("Z", "+00:00")
    try:
        dt = datetime.fromisoformat(text)
    except ValueError as e:
        raise ValidationError("deadline must be an ISO-8601 date or datetime") from e
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def _iso(dt: datetime | None) -> str | None:
    return dt.isoformat() if dt else None


def _positive_int(payload: dict, key: str, default: int | None) -> int | None:
    raw = payload.get(key)
    if raw in (None, ""):
        return default
    if isinstance(raw, bool):
        raise ValidationError(f"{key} must be a positive integer")
    try:
        value = int(raw)
    except (TypeError, ValueError):
        raise ValidationError(f"{key} must be a positive integer") from None
    if value < 1:
        raise ValidationError(f"{key} must be a positive integer")
    return value


def _advance(respondent: SurveyRespondent, status: str, now: datetime | None = None) -> None:
    now = now or datetime.utcnow()
    if _STATUS_ORDER[status] < _STATUS_ORDER.get(respondent.status, 0):
        return
    if status in ("started", "completed") and respondent.started_at is None:
        respondent.started_at = now
    if status == "completed" and respondent.status != "completed":
        respondent.completed_at = now
    respondent.status = status


def _lookup_user_by_email(s: "Session", email: str) -> User | None:
    e = email.lower()
    return (
        s.query(User)
        .filter(
            or_(
                func.lower(User.email) == e,
                func.lower(User.personal_email) == e,
                func.lower(User.institutional_email) == e,
            )
        )
        .order_by(User.id.asc())
        .first()
    )


def _resident_for_email(s: "Session", email: str, program_id: int | None = None) -> Resident | None:
    user = _lookup_user_by_email(s, email)
    q = s.query(Resident)
    if program_id is not None:
        q = q.filter(Resident.program_id == program_id)
    if user is not None:
        resident = q.filter(Resident.user_id == user.id).first()
        if resident:
            return resident
    return q.filter(func.lower(Resident.email) == email.lower()).first()


def completion_stats(respondents: list[SurveyRespondent]) -> dict:
    total = len(respondents)
    completed = sum(1 for r in respondents if r.status == "completed")
    started = sum(1 for r in respondents if r.status == "started")
    pending = sum(1 for r in respondents if r.status == "pending")
    return {
        "total_respondents": total,
        "completed_count": completed,
        "started_count": started,
        "pending_count": pending,
        "completion_percentage": round(completed / total * 100) if total else 0,
    }


def survey_to_dict(survey: Survey, *, with_stats: bool = False) -> dict:
    d = {
        "id": survey.id,
        "program_id": survey.program_id,
        "class_id": survey.class_id,
        "survey_type": survey.survey_type,
        "title": survey.title,
        "description": survey.description,
        "period_label": survey.period_label,
        "status": survey.status,
        "deadline": _iso(survey.deadline),
        "auto_remind": survey.auto_remind,
        "remind_every_days": survey.remind_every_days,
        "max_reminders": survey.max_reminders,
        "audience_filter": survey.audience_filter or {},
        "settings": survey.settings or {},
        "created_by_email": survey.created_by_email,
        "created_at": _iso(survey.created_at),
        "updated_at": _iso(survey.updated_at),
    }
    if with_stats:
        d["stats"] = completion_stats(survey.respondents)
    return d


def respondent_to_dict(r: SurveyRespondent) -> dict:
    return {
        "id": r.id,
        "survey_id": r.survey_id,
        "user_id": r.user_id,
        "email": r.email,
        "name": r.name,
        "phone": r.phone,
        "role": r.role,
        "rater_type": r.rater_type,
        "guidance_min": r.guidance_min,
        "token": r.token,
        "status": r.status,
        "started_at": _iso(r.started_at),
        "completed_at": _iso(r.completed_at),
        "reminder_count": r.reminder_count,
        "last_reminded_at": _iso(r.last_reminded_at),
    }


def educator_progress(r: SurveyRespondent) -> dict:
    total = len(r.assignments)
    completed = sum(1 for a in r.assignments if a.status == "completed")
    if r.rater_type == "teaching_faculty":
        # Teaching faculty only owe their guidance minimum.
        remaining = max((r.guidance_min or DEFAULT_GUIDANCE_MIN) - completed, 0)
    else:
        remaining = sum(1 for a in r.assignments if a.status == "pending")
    return {
        "respondent_id": r.id,
        "email": r.email,
        "name": r.name,
        "rater_type": r.rater_type,
        "status": r.status,
        "total_residents": total,
        "residents_completed": completed,
        "residents_remaining": remaining,
    }


# ---------- management ----------

def validate_survey_payload(payload: dict) -> list[str]:
    errors = []
    survey_type = (payload.get("survey_type") or "").strip()
    title = (payload.get("title") or "").strip()
    if not survey_type or not title:
        errors.append("survey_type and title are required")
    if survey_type and survey_type not in SURVEY_TYPES:
        errors.append(f"Invalid survey_type. Must be one of: {', '.join(SURVEY_TYPES)}")
    return errors


def create_survey(s: "Session", payload: dict, user: User, *, program_id: int) -> Survey:
    program = s.get(Program, program_id)
    if not program:
        raise NotFound("Program not found")

    class_id = payload.get("class_id") or None
    if class_id is not None:
        from app.eqpqiq.models import AcademicClass

        try:
            class_id = int(class_id)
        except (TypeError, ValueError):
            raise ValidationError("class_id must be an integer") from None
        klass = s.get(AcademicClass, class_id)
        if not klass or klass.program_id != program.id:
            raise ValidationError("class_id does not belong to this program")
        class_id = klass.id

    now = datetime.utcnow()
    survey = Survey(
        program_id=program.id,
        class_id=class_id,
        survey_type=payload["survey_type"].strip(),
        title=payload["title"].strip(),
        description=(payload.get("description") or "").strip() or None,
        period_label=(payload.get("period_label") or "").strip() or None,
        status="draft",
        deadline=parse_deadline(payload.get("deadline")),
        auto_remind=bool(payload.get("auto_remind", True)),
        remind_every_days=_positive_int(payload, "remind_every_days", DEFAULT_REMIND_EVERY_DAYS),
        max_reminders=_positive_int(payload, "max_reminders", DEFAULT_MAX_REMINDERS),
        audience_filter=payload.get("audience_filter") or {},
        settings=payload.get("settings") or {},
        created_by_email=((payload.get("created_by_email") or user.email) or "").strip().lower(),
        created_by_user_id=user.id,
        created_at=now,
        updated_at=now,
    )
    s.add(survey)
    s.flush()

    record_event(
        s,
        actor=user,
        action="survey.create",
        entity_type="Survey",
        entity_id=str(survey.id),
        metadata={"title": survey.title, "survey_type": survey.survey_type, "program_id": program.id},
    )
    logger.info("survey.create id=%s title=%s", survey.id, survey.title)
    return survey


def list_surveys(s: "Session", *, program_id: int | None, status: str | None = None) -> list[Survey]:
    q = s.query(Survey)
    if program_id is not None:
        q = q.filter(Survey.program_id == program_id)
    if status:
        q = q.filter(Survey.status == status)
    return q.order_by(Survey.created_at.desc(), Survey.id.desc()).all()


def survey_detail(survey: Survey) -> dict:
    respondents = sorted(survey.respondents, key=lambda r: ((r.name or r.email).lower(), r.id))
    details = []
    for r in sorted(respondents, key=lambda r: (r.rater_type or "", (r.name or r.email).lower())):
        d = respondent_to_dict(r)
        d["assignments_total"] = len(r.assignments)
        d["assignments_completed"] = sum(1 for a in r.assignments if a.status == "completed")
        details.append(d)

    faculty_progress = None
    if survey.survey_type == "educator_assessment":
        faculty_progress = [educator_progress(r) for r in respondents if r.role == "faculty"]

    return {
        "survey": survey_to_dict(survey),
        "respondents": [respondent_to_dict(r) for r in respondents],
        "respondent_details": details,
        "faculty_progress": faculty_progress,
        "stats": completion_stats(survey.respondents),
    }


def update_survey(s: "Session", survey: Survey, payload: dict, user: User) -> Survey:
    updates = {k: payload[k] for k in PATCHABLE_FIELDS if k in payload}
    if not updates:
        raise ValidationError("No valid fields to update")

    if "status" in updates and updates["status"] not in SURVEY_STATUSES:
        raise ValidationError(f"Invalid status. Must be one of: {', '.join(SURVEY_STATUSES)}")
    if "title" in updates and not (updates["title"] or "").strip():
        raise ValidationError("title must not be empty")
    if "settings" in updates and not isinstance(updates["settings"] or {}, dict):
        raise ValidationError("settings must be an object")

    changes: dict[str, Any] = {}
    for key, value in updates.items():
        if key == "deadline":
            value = parse_deadline(value)
        elif key in ("remind_every_days", "max_reminders"):
            value = _positive_int(updates, key, getattr(survey, key))
        elif key == "auto_remind":
            value = bool(value)
        elif key == "settings":
            value = value or {}
        elif key in ("title", "description"):
            value = (value or "").strip() or None
        old = getattr(survey, key)
        if old != value:
            changes[key] = {"old": old, "new": value}
            setattr(survey, key, value)

    survey.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="survey.update",
        entity_type="Survey",
        entity_id=str(survey.id),
        metadata={"changes": changes},
    )
    return survey


# ---------- distribution ----------

def _normalize_respondents(raw: Any) -> list[dict]:
    if not isinstance(raw, list) or not raw:
        raise ValidationError("respondents array is required and must not be empty")

    by_email: dict[str, dict] = {}
    for i, r in enumerate(raw):
        if not isinstance(r, dict):
            raise ValidationError(f"respondents[{i}] must be an object")
        email = (r.get("email") or "").strip().lower()
        if not email or "@" not in email:
            raise ValidationError(f"respondents[{i}].email is required")
        role = (r.get("role") or "").strip()
        if role not in RESPONDENT_ROLES:
            raise ValidationError(f"respondents[{i}].role must be one of: {', '.join(RESPONDENT_ROLES)}")
        rater_type = (r.get("rater_type") or "").strip() or None
        if rater_type and rater_type not in RATER_TYPES:
            raise ValidationError(f"respondents[{i}].rater_type must be one of: {', '.join(RATER_TYPES)}")
        guidance = None
        if rater_type == "teaching_faculty":
            guidance = _positive_int(r, "guidance_min", DEFAULT_GUIDANCE_MIN)
        by_email.setdefault(
            email,
            {
                "email": email,
                "name": (r.get("name") or "").strip() or None,
                "phone": (r.get("phone") or "").strip() or None,
                "role": role,
                "rater_type": rater_type,
                "guidance_min": guidance,
                "user_id": r.get("user_id"),
            },
        )
    return list(by_email.values())


def distribute_survey(s: "Session", survey: Survey, payload: dict, user: User) -> dict:
    """
    Upsert respondents by (survey, email), build resident assignments and send
    invitations. Existing respondents keep their token and status.
    """
    entries = _normalize_respondents(payload.get("respondents"))
    send_emails = payload.get("send_emails", True) is not False

    existing = {r.email.lower(): r for r in survey.respondents}
    created = 0
    updated = 0
    touched: list[SurveyRespondent] = []
    for e in entries:
        profile_id = e["user_id"]
        if not profile_id:
            profile = _lookup_user_by_email(s, e["email"])
            profile_id = profile.id if profile else None

        resp = existing.get(e["email"])
        if resp is None:
            resp = SurveyRespondent(
                survey_id=survey.id,
                email=e["email"],
                token=new_respondent_token(),
                status="pending",
                reminder_count=0,
                created_at=datetime.utcnow(),
            )
            s.add(resp)
            survey.respondents.append(resp)
            created += 1
        else:
            updated += 1
        resp.name = e["name"] or resp.name
        resp.phone = e["phone"] or resp.phone
        resp.role = e["role"]
        resp.rater_type = e["rater_type"]
        resp.guidance_min = e["guidance_min"]
        resp.user_id = profile_id or resp.user_id
        touched.append(resp)
    s.flush()

    assignments_created = 0
    if survey.survey_type == "educator_assessment" and survey.class_id:
        assignments_created += _assign_class_residents(s, survey, [r for r in touched if r.role == "faculty"])
    elif survey.survey_type == "learner_self_assessment":
        assignments_created += _assign_self(s, survey, [r for r in touched if r.role == "resident"])
    s.flush()

    emails_sent = 0
    emails_failed = 0
    if send_emails:
        base_url = current_app.config.get("APP_BASE_URL") or ""
        for resp in touched:
            subject, html = notifications.survey_invite(
                name=resp.name,
                survey_title=survey.title,
                survey_type=survey.survey_type,
                url=notifications.survey_url(base_url, resp.token),
                deadline=survey.deadline,
                context=notifications.invite_context(survey.survey_type, resp.rater_type),
            )
            if notifications.send_email(resp.email, subject, html):
                emails_sent += 1
            else:
                emails_failed += 1

    if survey.status == "draft":
        survey.status = "active"
    survey.updated_at = datetime.utcnow()

    record_event(
        s,
        actor=user,
        action="survey.distribute",
        entity_type="Survey",
        entity_id=str(survey.id),
        metadata={
            "respondents_created": created,
            "respondents_updated": updated,
            "assignments_created": assignments_created,
            "emails_sent": emails_sent,
            "emails_failed": emails_failed,
        },
    )
    logger.info(
        "survey.distribute id=%s respondents=%s assignments=%s emails_sent=%s emails_failed=%s",
        survey.id,
        len(touched),
        assignments_created,
        emails_sent,
        emails_failed,
    )
    return {
        "success": True,
        "respondents_created": created,
        "respondents_updated": updated,
        "assignments_created": assignments_created,
        "emails_sent": emails_sent,
        "emails_failed": emails_failed,
    }


def _existing_pairs(s: "Session", survey_id: int) -> set[tuple[int, int]]:
    rows = (
        s.query(SurveyResidentAssignment.respondent_id, SurveyResidentAssignment.resident_id)
        .filter(SurveyResidentAssignment.survey_id == survey_id)
        .all()
    )
    return {(a, b) for a, b in rows}


def _assign_class_residents(s: "Session", survey: Survey, faculty: list[SurveyRespondent]) -> int:
    residents = (
        s.query(Resident)
        .filter(Resident.class_id == survey.class_id, Resident.is_active.is_(True))
        .order_by(Resident.full_name.asc(), Resident.id.asc())
        .all()
    )
    if not residents or not faculty:
        return 0
    seen = _existing_pairs(s, survey.id)
    count = 0
    for fac in faculty:
        required = fac.rater_type != "teaching_faculty"
        for i, resident in enumerate(residents):
            if (fac.id, resident.id) in seen:
                continue
            s.add(
                SurveyResidentAssignment(
                    survey_id=survey.id,
                    respondent_id=fac.id,
                    resident_id=resident.id,
                    display_order=i,
                    required=required,
                    status="pending",
                )
            )
            count += 1
    return count


def _assign_self(s: "Session", survey: Survey, residents: list[SurveyRespondent]) -> int:
    seen = _existing_pairs(s, survey.id)
    count = 0
    for resp in residents:
        resident = _resident_for_email(s, resp.email, survey.program_id)
        if resident is None:
            logger.warning("survey.distribute no resident record for %s (survey %s)", resp.email, survey.id)
            continue
        if (resp.id, resident.id) in seen:
            continue
        s.add(
            SurveyResidentAssignment(
                survey_id=survey.id,
                respondent_id=resp.id,
                resident_id=resident.id,
                display_order=0,
                required=True,
                status="pending",
            )
        )
        count += 1
    return count


# ---------- reminders ----------

def reminder_context(survey: Survey, respondent: SurveyRespondent) -> str:
    if survey.survey_type == "educator_assessment":
        if respondent.status == "started":
            remaining = educator_progress(respondent)["residents_remaining"]
            return f"You have {remaining} resident{'s' if remaining != 1 else ''} left to rate."
        return "You haven't started yet. It takes about 2-3 minutes per resident."
    if survey.survey_type == "learner_self_assessment":
        if respondent.status == "started":
            return "You've started your self-assessment but haven't finished. Your progress is saved."
        return "Please take a few minutes to complete your self-assessment."
    return "Please complete this survey at your earliest convenience."


def _send_reminder(survey: Survey, respondent: SurveyRespondent, now: datetime, config=None) -> bool:
    cfg = config if config is not None else current_app.config
    subject, html = notifications.survey_reminder(
        name=respondent.name,
        survey_title=survey.title,
        url=notifications.survey_url(cfg.get("APP_BASE_URL") or "", respondent.token),
        deadline=survey.deadline,
        context=reminder_context(survey, respondent),
    )
    ok = notifications.send_email(respondent.email, subject, html, config=cfg)
    if ok:
        respondent.reminder_count = (respondent.reminder_count or 0) + 1
        respondent.last_reminded_at = now
    return ok


def send_reminders(s: "Session", survey: Survey, user: User, *, respondent_id: int | None = None) -> dict:
    if survey.status != "active":
        raise ValidationError("Can only send reminders for active surveys")

    limit = survey.max_reminders or DEFAULT_MAX_REMINDERS
    targets = [
        r
        for r in survey.respondents
        if r.status != "completed"
        and (r.reminder_count or 0) < limit
        and (respondent_id is None or r.id == respondent_id)
    ]
    if not targets:
        return {"success": True, "message": "No respondents need reminders", "reminders_sent": 0}

    now = datetime.utcnow()
    sent = 0
    failed = 0
    for r in targets:
        if _send_reminder(survey, r, now):
            sent += 1
        else:
            failed += 1

    record_event(
        s,
        actor=user,
        action="survey.remind",
        entity_type="Survey",
        entity_id=str(survey.id),
        metadata={"sent": sent, "failed": failed, "respondent_id": respondent_id},
    )
    logger.info("survey.remind id=%s sent=%s failed=%s", survey.id, sent, failed)
    return {
        "success": True,
        "reminders_sent": sent,
        "reminders_failed": failed,
        "total_incomplete": len(targets),
    }


def due_for_reminder(survey: Survey, respondent: SurveyRespondent, now: datetime) -> bool:
    if respondent.status not in ("pending", "started"):
        return False
    if (respondent.reminder_count or 0) >= (survey.max_reminders or DEFAULT_MAX_REMINDERS):
        return False
    if respondent.last_reminded_at is None:
        return True
    cutoff = now - timedelta(days=survey.remind_every_days or DEFAULT_REMIND_EVERY_DAYS)
    return respondent.last_reminded_at < cutoff


def run_auto_reminders(s: "Session", *, now: datetime | None = None, config=None) -> dict:
    """One pass over every active auto-remind survey whose deadline has not passed."""
    now = now or datetime.utcnow()
    surveys = (
        s.query(Survey)
        .filter(Survey.status == "active", Survey.auto_remind.is_(True))
        .order_by(Survey.id.asc())
        .all()
    )

    processed = 0
    sent = 0
    failed = 0
    for survey in surveys:
        if survey.deadline_passed(now):
            continue
        due = [r for r in survey.respondents if due_for_reminder(survey, r, now)]
        if not due:
            continue
        processed += 1
        for r in due:
            if _send_reminder(survey, r, now, config=config):
                sent += 1
            else:
                failed += 1

    result = {
        "success": True,
        "surveys_processed": processed,
        "reminders_sent": sent,
        "reminders_failed": failed,
        "timestamp": now.isoformat(),
    }
    record_event(s, actor=None, action="survey.auto_remind", entity_type="Survey", metadata=result)
    logger.info("survey.auto_remind %s", result)
    if failed:
        logger.warning("survey.auto_remind %s email(s) failed to send", failed)
    return result


# ---------- results ----------

def _mean(values: list[float]) -> float | None:
    if not values:
        return None
    return sum(values) / len(values)


def _r2(value: float | None) -> float | None:
    return round(value, 2) if value is not None else None


def survey_results(s: "Session", survey: Survey) -> dict:
    respondents = {r.id: r for r in survey.respondents}
    ratings = []
    if respondents:
        ratings = (
            s.query(StructuredRating)
            .filter(StructuredRating.respondent_id.in_(list(respondents)))
            .order_by(StructuredRating.id.asc())
            .all()
        )

    by_resident: dict[int, dict] = {}
    for rating in ratings:
        entry = by_resident.setdefault(
            rating.resident_id,
            {
                "resident_id": rating.resident_id,
                "resident_name": rating.resident.full_name if rating.resident else "Unknown",
                "faculty_ratings": [],
                "faculty_avg": None,
                "self_assessment": None,
                "gap_analysis": None,
                "n_faculty_raters": 0,
            },
        )
        respondent = respondents.get(rating.respondent_id)
        if rating.rater_type in FACULTY_RATER_TYPES and respondent is not None:
            entry["faculty_ratings"].append(
                {
                    "faculty_email": respondent.email,
                    "faculty_name": respondent.name or respondent.email,
                    "rater_type": rating.rater_type,
                    "eq_avg": rating.eq_avg,
                    "pq_avg": rating.pq_avg,
                    "iq_avg": rating.iq_avg,
                }
            )
        elif rating.rater_type == "self":
            entry["self_assessment"] = {"eq": rating.eq_avg, "pq": rating.pq_avg, "iq": rating.iq_avg}

    for entry in by_resident.values():
        fr = entry["faculty_ratings"]
        entry["n_faculty_raters"] = len(fr)
        if not fr:
            continue
        raw = {p: _mean([r[f"{p}_avg"] for r in fr if r[f"{p}_avg"] is not None]) for p in PILLARS}
        entry["faculty_avg"] = {p: _r2(v) for p, v in raw.items()}
        selfa = entry["self_assessment"]
        if selfa:
            entry["gap_analysis"] = {
                p: _r2(selfa[p] - raw[p]) if selfa[p] is not None and raw[p] is not None else None
                for p in PILLARS
            }

    results = sorted(by_resident.values(), key=lambda e: (e["resident_name"] or "").lower())

    class_averages = None
    with_faculty = [e for e in results if e["faculty_avg"]]
    if with_faculty:
        class_averages = {
            p: _r2(_mean([e["faculty_avg"][p] for e in with_faculty if e["faculty_avg"][p] is not None]))
            for p in PILLARS
        }
        class_averages["n_residents"] = len(with_faculty)

    return {
        "survey": {
            "id": survey.id,
            "title": survey.title,
            "type": survey.survey_type,
            "status": survey.status,
            "period_label": survey.period_label,
            "program_id": survey.program_id,
            "class_id": survey.class_id,
        },
        "completion": completion_stats(survey.respondents),
        "results": results,
        "class_averages": class_averages,
    }


# ---------- respondent access (token-gated) ----------

def respondent_by_token(s: "Session", token: str, *, not_found: str) -> SurveyRespondent:
    respondent = None
    if token:
        respondent = s.query(SurveyRespondent).filter(SurveyRespondent.token == token).one_or_none()
    if respondent is None:
        raise NotFound(not_found)
    return respondent


def load_response_form(s: "Session", token: str) -> dict:
    respondent = respondent_by_token(s, token, not_found="Invalid or expired survey link")
    survey = respondent.survey

    if survey.status in ("closed", "archived"):
        raise Gone("This survey is no longer accepting responses", extra={"survey_status": survey.status})

    can_edit = respondent.status == "completed" and survey.allow_edit_after_submit
    if survey.deadline_passed() and not can_edit:
        raise Gone("This survey has passed its deadline", extra={"deadline": _iso(survey.deadline)})

    residents = []
    if survey.survey_type == "educator_assessment":
        for a in respondent.assignments:
            residents.append(
                {
                    "id": a.resident_id,
                    "display_order": a.display_order,
                    "assignment_id": a.id,
                    "assignment_status": a.status,
                    "required": a.required,
                    "full_name": a.resident.full_name if a.resident else "Unknown",
                    "email": (a.resident.email if a.resident else None) or "",
                }
            )

    existing_scores: dict[str, dict] = {}
    if can_edit:
        ratings = s.query(StructuredRating).filter(StructuredRating.respondent_id == respondent.id).all()
        for rating in ratings:
            existing_scores[str(rating.resident_id)] = {**rating.scores(), "comments": rating.concerns_goals}

    self_resident = None
    if survey.survey_type == "learner_self_assessment" and respondent.assignments:
        a = respondent.assignments[0]
        self_resident = {
            "id": a.resident_id,
            "assignment_id": a.id,
            "full_name": (a.resident.full_name if a.resident else None) or respondent.name or "Unknown",
        }

    program = s.get(Program, survey.program_id)
    _advance(respondent, "started")

    body = {
        "survey": {
            "id": survey.id,
            "type": survey.survey_type,
            "title": survey.title,
            "description": survey.description,
            "deadline": _iso(survey.deadline),
            "period_label": survey.period_label,
            "program": {"id": program.id, "name": program.name, "specialty": program.specialty} if program else None,
            "settings": survey.settings or {},
        },
        "respondent": {
            "id": respondent.id,
            "email": respondent.email,
            "name": respondent.name,
            "role": respondent.role,
            "rater_type": respondent.rater_type,
            "guidance_min": respondent.guidance_min,
            "status": respondent.status,
            "progress_data": respondent.progress_data,
        },
        "residents": residents,
        "self_resident": self_resident,
    }
    if existing_scores:
        body["existing_scores"] = existing_scores
    return body


def submit_response(s: "Session", token: str, body: dict) -> dict:
    respondent = respondent_by_token(s, token, not_found="Invalid survey link")
    survey = respondent.survey
    action = body.get("action")

    if survey.status in ("closed", "archived"):
        raise Gone("Survey is closed")

    if respondent.status == "completed" and action != "save_progress":
        if not (survey.allow_edit_after_submit and not survey.deadline_passed()):
            raise Conflict("Survey already completed")

    if action == "save_progress":
        return _save_progress(s, respondent, body)
    if action == "submit_rating":
        return _submit_rating(s, respondent, body)
    if action == "submit_self":
        return _submit_self(s, respondent, body)
    if action == "complete":
        _advance(respondent, "completed")
        record_event(
            s,
            actor=None,
            actor_email=respondent.email,
            action="survey.respondent_complete",
            entity_type="SurveyRespondent",
            entity_id=str(respondent.id),
            metadata={"survey_id": survey.id},
        )
        return {"success": True, "message": "Survey completed"}
    raise ValidationError(f"Unknown action: {action}. Valid actions: {', '.join(RESPONSE_ACTIONS)}")


def _save_progress(s: "Session", respondent: SurveyRespondent, body: dict) -> dict:
    respondent.progress_data = body.get("progress_data")
    _advance(respondent, "started")
    return {"success": True, "message": "Progress saved"}


def _checked_scores(body: dict) -> dict:
    scores = body.get("scores")
    if not isinstance(scores, dict):
        raise ValidationError("scores must be an object")
    errors = validate_scores(scores)
    if errors:
        raise ValidationError(errors[0], extra={"errors": errors})
    return scores


def _submit_rating(s: "Session", respondent: SurveyRespondent, body: dict) -> dict:
    assignment_id = body.get("assignment_id")
    if not assignment_id or not body.get("scores"):
        raise ValidationError("assignment_id and scores are required")
    scores = _checked_scores(body)

    assignment = next((a for a in respondent.assignments if str(a.id) == str(assignment_id)), None)
    if assignment is None:
        raise NotFound("Assignment not found")

    survey = respondent.survey
    faculty = (
        s.query(Faculty)
        .filter(func.lower(Faculty.email) == respondent.email.lower())
        .order_by((Faculty.program_id == survey.program_id).desc(), Faculty.id.asc())
        .first()
    )
    rater_type = respondent.rater_type if respondent.rater_type in ("core_faculty", "teaching_faculty") else "faculty"

    rating = save_survey_rating(
        s,
        respondent=respondent,
        resident=assignment.resident,
        rater_type=rater_type,
        scores=scores,
        comments=body.get("comments"),
        faculty_id=faculty.id if faculty else None,
        rating_id=assignment.structured_rating_id,
    )

    now = datetime.utcnow()
    assignment.status = "completed"
    assignment.completed_at = assignment.completed_at or now
    assignment.structured_rating_id = rating.id

    outstanding = [a for a in respondent.assignments if a.status == "pending"]
    if respondent.rater_type == "teaching_faculty":
        outstanding = [a for a in outstanding if a.required]
    all_complete = not outstanding
    _advance(respondent, "completed" if all_complete else "started", now)
    s.flush()

    return {
        "success": True,
        "rating_id": rating.id,
        "all_complete": all_complete,
        "remaining_count": len(outstanding),
    }


def _submit_self(s: "Session", respondent: SurveyRespondent, body: dict) -> dict:
    if not body.get("scores"):
        raise ValidationError("scores are required")
    scores = _checked_scores(body)
    survey = respondent.survey

    assignment = None
    assignment_id = body.get("assignment_id")
    if assignment_id:
        assignment = next((a for a in respondent.assignments if str(a.id) == str(assignment_id)), None)
    resident = assignment.resident if assignment else _resident_for_email(s, respondent.email, survey.program_id)
    if resident is None:
        raise ValidationError("Could not determine resident for self-assessment")
    if assignment is None:
        assignment = next((a for a in respondent.assignments if a.resident_id == resident.id), None)

    rating = save_survey_rating(
        s,
        respondent=respondent,
        resident=resident,
        rater_type="self",
        scores=scores,
        comments=body.get("concerns_goals"),
        rating_id=assignment.structured_rating_id if assignment else None,
    )

    now = datetime.utcnow()
    if assignment is not None:
        assignment.status = "completed"
        assignment.completed_at = assignment.completed_at or now
        assignment.structured_rating_id = rating.id
    _advance(respondent, "completed", now)
    s.flush()

    return {"success": True, "rating_id": rating.id, "all_complete": True}
