from __future__ import annotations

from datetime import date, datetime
from typing import TYPE_CHECKING, Any

from app.eqpqiq import pgy
from app.eqpqiq.audit import record_event
from app.eqpqiq.errors import NotFound, ValidationError
from app.eqpqiq.modules.ratings.models import ALL_ATTRIBUTES, PILLARS, StructuredRating

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.eqpqiq.models import Resident, User


FORM_RATER_TYPES = ("faculty", "self")
FACULTY_RATER_TYPES = ("faculty", "core_faculty", "teaching_faculty")


def is_valid_score(value: Any) -> bool:
    """1.0 - 5.0 in 0.5 increments. Booleans are not scores."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    if value < 1.0 or value > 5.0:
        return False
    return (value * 2) % 1 == 0


def validate_scores(scores: dict) -> list[str]:
    errors = []
    for attr in ALL_ATTRIBUTES:
        v = scores.get(attr)
        if v is None:
            continue
        if not is_valid_score(v):
            errors.append(f"Invalid score for {attr}. Must be 1.0-5.0 in 0.5 increments")
    return errors


def provided_attributes(scores: dict) -> list[str]:
    return [attr for attr in ALL_ATTRIBUTES if scores.get(attr) is not None]


def _avg(values: list[float]) -> float | None:
    if not values:
        return None
    return round(sum(values) / len(values), 2)


def apply_scores(rating: StructuredRating, scores: dict) -> None:
    """Copy attribute scores onto the rating and recompute pillar averages."""
    for attr in ALL_ATTRIBUTES:
        setattr(rating, attr, scores.get(attr))
    recompute_averages(rating)


def recompute_averages(rating: StructuredRating) -> None:
    for pillar, attrs in PILLARS.items():
        vals = [getattr(rating, a) for a in attrs if getattr(rating, a) is not None]
        setattr(rating, f"{pillar}_avg", _avg(vals))


def parse_evaluation_date(raw: str | None) -> date:
    if not raw:
        return date.today()
    try:
        return date.fromisoformat(str(raw).strip()[:10])
    except ValueError as e:
        raise ValidationError("evaluation_date must be YYYY-MM-DD") from e


def period_for(s: "Session", resident: "Resident", on: date) -> tuple[int | None, str | None, str | None]:
    from app.eqpqiq.models import Program

    grad = resident.academic_class.graduation_year if resident.academic_class else None
    program = s.get(Program, resident.program_id)
    length = program.program_length if program else pgy.DEFAULT_PROGRAM_LENGTH
    return pgy.period_info(grad, on, length)


def _as_int(value) -> int | None:
    if isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def validate_rating_payload(payload: dict) -> list[str]:
    errors = []
    if not payload.get("resident_id"):
        errors.append("resident_id is required")
    elif _as_int(payload["resident_id"]) is None:
        errors.append("resident_id must be an integer")
    rater_type = payload.get("rater_type")
    if rater_type not in FORM_RATER_TYPES:
        errors.append('rater_type must be "faculty" or "self"')
    if not provided_attributes(payload):
        errors.append("At least one attribute score is required")
    errors.extend(validate_scores(payload))
    if rater_type == "faculty":
        if not payload.get("faculty_id"):
            errors.append("faculty_id is required for faculty ratings")
        elif _as_int(payload["faculty_id"]) is None:
            errors.append("faculty_id must be an integer")
    return errors


def create_rating(s: "Session", payload: dict, user: "User | None") -> StructuredRating:
    """Standalone form submission (outside any survey)."""
    from app.eqpqiq.models import Faculty, Resident

    resident = s.get(Resident, int(payload["resident_id"]))
    if not resident:
        raise NotFound("Resident not found")
    faculty_id = None
    if payload["rater_type"] == "faculty":
        faculty = s.get(Faculty, int(payload["faculty_id"]))
        if not faculty or faculty.program_id != resident.program_id:
            raise NotFound("Faculty not found")
        faculty_id = faculty.id

    on = parse_evaluation_date(payload.get("evaluation_date"))
    level, period, label = period_for(s, resident, on)
    now = datetime.utcnow()
    rating = StructuredRating(
        resident_id=resident.id,
        rater_type=payload["rater_type"],
        faculty_id=faculty_id,
        evaluation_date=on,
        pgy_level=level,
        period=period,
        period_label=label,
        concerns_goals=(payload.get("concerns_goals") or "").strip() or None,
        created_by_user_id=user.id if user else None,
        created_at=now,
        updated_at=now,
    )
    apply_scores(rating, payload)
    s.add(rating)
    s.flush()

    record_event(
        s,
        actor=user,
        action="rating.create",
        entity_type="StructuredRating",
        entity_id=str(rating.id),
        metadata={"resident_id": resident.id, "rater_type": rating.rater_type, "period_label": label},
    )
    return rating


def save_survey_rating(
    s: "Session",
    *,
    respondent,
    resident: "Resident",
    rater_type: str,
    scores: dict,
    comments: str | None,
    faculty_id: int | None = None,
    rating_id: int | None = None,
) -> StructuredRating:
    """
    Insert or update the rating a survey respondent gave one resident.
    (respondent, resident) identifies the row, so a re-submission edits in place.
    """
    rating = s.get(StructuredRating, rating_id) if rating_id else None
    if rating is None:
        rating = (
            s.query(StructuredRating)
            .filter(StructuredRating.respondent_id == respondent.id, StructuredRating.resident_id == resident.id)
            .one_or_none()
        )

    today = date.today()
    level, period, label = period_for(s, resident, today)
    survey = respondent.survey
    now = datetime.utcnow()
    created = rating is None
    if created:
        rating = StructuredRating(
            resident_id=resident.id,
            survey_id=survey.id,
            respondent_id=respondent.id,
            created_at=now,
            created_by_user_id=respondent.user_id,
        )
        s.add(rating)

    rating.rater_type = rater_type
    rating.faculty_id = faculty_id
    rating.evaluation_date = today
    rating.pgy_level = scores.get("pgy_level") or level
    rating.period = scores.get("period") or period
    rating.period_label = survey.period_label or label
    rating.concerns_goals = (comments or "").strip() or None
    rating.updated_at = now
    apply_scores(rating, scores)
    s.flush()

    record_event(
        s,
        actor=None,
        actor_email=respondent.email,
        action="rating.survey_submit" if created else "rating.survey_update",
        entity_type="StructuredRating",
        entity_id=str(rating.id),
        metadata={"survey_id": survey.id, "resident_id": resident.id, "rater_type": rater_type},
    )
    return rating


def list_ratings(s: "Session", resident_id: int, *, period_label: str | None = None, rater_type: str | None = None) -> list[dict]:
    q = s.query(StructuredRating).filter(StructuredRating.resident_id == resident_id)
    if period_label:
        q = q.filter(StructuredRating.period_label == period_label)
    if rater_type:
        q = q.filter(StructuredRating.rater_type == rater_type)
    rows = q.order_by(StructuredRating.evaluation_date.desc(), StructuredRating.id.desc()).all()
    out = []
    for r in rows:
        d = r.to_dict()
        d["faculty_name"] = r.faculty.full_name if r.faculty else None
        out.append(d)
    return out
