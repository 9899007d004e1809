from __future__ import annotations

import logging
from datetime import date, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import or_, select

from app.eqpqiq.audit import record_event
from app.eqpqiq.errors import Forbidden, NotFound, ValidationError
from app.eqpqiq.modules.interview import normalization
from app.eqpqiq.modules.interview.models import (
    InterviewCandidate,
    InterviewRating,
    InterviewSession,
    InterviewSessionInterviewer,
)
from app.eqpqiq.security import new_share_token

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.eqpqiq.models import User

logger = logging.getLogger(__name__)


SESSION_TYPES = ("individual", "group")
SESSION_STATUSES = ("active", "completed", "archived")
CLOSED_STATUSES = ("completed", "archived")
MANAGER_ROLES = ("program_director", "coordinator")
ROLE_ORDER = {"program_director": 0, "coordinator": 1, "interviewer": 2}

# Lower bounds of the interview_total bands (max 300).
DISTRIBUTION_BANDS = (
    ("exceptional", 255),
    ("strong", 225),
    ("good", 195),
    ("average", 165),
)


def _parse_date(raw: Any) -> date | None:
    if raw in (None, ""):
        return None
    try:
        return date.fromisoformat(str(raw).strip()[:10])
    except ValueError as e:
        raise ValidationError("session_date must be YYYY-MM-DD") from e


def is_participant(session: InterviewSession, user: "User") -> bool:
    emails = user.all_emails()
    if session.creator_email in emails:
        return True
    return any(i.interviewer_email in emails for i in session.interviewers)


def is_manager(session: InterviewSession, user: "User") -> bool:
    """Creator, or an interviewer holding a program_director/coordinator seat."""
    emails = user.all_emails()
    if session.creator_email in emails:
        return True
    return any(i.interviewer_email in emails and i.role in MANAGER_ROLES for i in session.interviewers)


def _add_interviewer(s: "Session", session: InterviewSession, user: "User", role: str) -> InterviewSessionInterviewer:
    seat = InterviewSessionInterviewer(
        session_id=session.id,
        user_id=user.id,
        interviewer_email=user.email.lower(),
        interviewer_name=user.full_name or user.email.split("@")[0],
        role=role,
    )
    s.add(seat)
    session.interviewers.append(seat)
    s.flush()
    return seat


# ---------- sessions ----------

def create_session(s: "Session", payload: dict, user: "User", *, creator_role: str = "interviewer") -> InterviewSession:
    name = (payload.get("session_name") or "").strip()
    if not name:
        raise ValidationError("Session name is required")
    session_type = payload.get("session_type") or "individual"
    if session_type not in SESSION_TYPES:
        raise ValidationError(f"Invalid session_type. Must be one of: {', '.join(SESSION_TYPES)}")

    token = new_share_token(8)
    while s.query(InterviewSession.id).filter(InterviewSession.share_token == token).first():
        token = new_share_token(8)

    session = InterviewSession(
        session_name=name,
        session_type=session_type,
        session_date=_parse_date(payload.get("session_date")),
        program_id=payload.get("program_id") or None,
        creator_email=user.email.lower(),
        share_token=token,
        status="active",
    )
    s.add(session)
    s.flush()
    _add_interviewer(s, session, user, creator_role)

    record_event(
        s,
        actor=user,
        action="interview.session_create",
        entity_type="InterviewSession",
        entity_id=str(session.id),
        metadata={"session_type": session_type, "program_id": session.program_id},
    )
    return session


def list_sessions(s: "Session", user: "User") -> list[InterviewSession]:
    emails = sorted(user.all_emails())
    joined = select(InterviewSessionInterviewer.session_id).where(
        InterviewSessionInterviewer.interviewer_email.in_(emails)
    )
    return (
        s.query(InterviewSession)
        .filter(or_(InterviewSession.creator_email.in_(emails), InterviewSession.id.in_(joined)))
        .order_by(InterviewSession.created_at.desc(), InterviewSession.id.desc())
        .all()
    )


def interviewer_to_dict(i: InterviewSessionInterviewer) -> dict:
    return {
        "id": i.id,
        "email": i.interviewer_email,
        "name": i.interviewer_name or i.interviewer_email,
        "role": i.role,
    }


def session_detail(session: InterviewSession) -> dict:
    return {
        "session": session.to_dict(),
        "candidates": [c.to_dict() for c in session.candidates],
        "interviewers": [interviewer_to_dict(i) for i in session.interviewers],
    }


def update_session(s: "Session", session: InterviewSession, payload: dict, user: "User") -> InterviewSession:
    changes = {}
    if "session_name" in payload:
        name = (payload.get("session_name") or "").strip()
        if not name:
            raise ValidationError("Session name is required")
        changes["session_name"] = name
    if "session_date" in payload:
        changes["session_date"] = _parse_date(payload.get("session_date"))
    if "status" in payload:
        if payload["status"] not in SESSION_STATUSES:
            raise ValidationError(f"Invalid status. Must be one of: {', '.join(SESSION_STATUSES)}")
        changes["status"] = payload["status"]
    if not changes:
        raise ValidationError("No valid fields to update")

    for key, value in changes.items():
        setattr(session, key, value)
    record_event(
        s,
        actor=user,
        action="interview.session_update",
        entity_type="InterviewSession",
        entity_id=str(session.id),
        metadata={"changes": changes},
    )
    return session


def join_session(s: "Session", code: str | None, user: "User", *, role: str = "interviewer") -> InterviewSession:
    code = (code or "").strip().upper()
    if not code:
        raise ValidationError("Session code is required")
    session = s.query(InterviewSession).filter(InterviewSession.share_token == code).one_or_none()
    if session is None:
        raise NotFound("Session not found. Please check your session code.")
    if session.status in CLOSED_STATUSES:
        raise Forbidden("This session has been closed.")

    if not is_participant(session, user):
        _add_interviewer(s, session, user, role)
        record_event(
            s,
            actor=user,
            action="interview.session_join",
            entity_type="InterviewSession",
            entity_id=str(session.id),
            metadata={"role": role},
        )
    return session


# ---------- candidates ----------

def add_candidate(s: "Session", session: InterviewSession, payload: dict, user: "User") -> InterviewCandidate:
    name = (payload.get("candidate_name") or "").strip()
    if not name:
        raise ValidationError("Candidate name is required")
    next_order = max((c.sort_order for c in session.candidates), default=0) + 1
    candidate = InterviewCandidate(
        session_id=session.id,
        candidate_name=name,
        candidate_email=(payload.get("candidate_email") or "").strip().lower() or None,
        medical_school=(payload.get("medical_school") or "").strip() or None,
        sort_order=next_order,
    )
    s.add(candidate)
    session.candidates.append(candidate)
    s.flush()
    record_event(
        s,
        actor=user,
        action="interview.candidate_create",
        entity_type="InterviewCandidate",
        entity_id=str(candidate.id),
        metadata={"session_id": session.id},
    )
    return candidate


# ---------- ratings ----------

def validate_interview_scores(payload: dict) -> list[str]:
    errors = []
    for p in normalization.PILLARS:
        v = payload.get(f"{p}_score")
        if v is None:
            continue
        if isinstance(v, bool) or not isinstance(v, int) or not 0 <= v <= 100:
            errors.append(f"{p}_score must be an integer from 0 to 100")
    return errors


def recompute_candidate_totals(candidate: InterviewCandidate) -> None:
    """Pillar totals are means over complete ratings; interview_total is their sum."""
    complete = [r for r in candidate.ratings if r.total is not None]
    if not complete:
        candidate.eq_total = candidate.pq_total = candidate.iq_total = candidate.interview_total = None
        return
    n = len(complete)
    candidate.eq_total = round(sum(r.eq_score for r in complete) / n, 2)
    candidate.pq_total = round(sum(r.pq_score for r in complete) / n, 2)
    candidate.iq_total = round(sum(r.iq_score for r in complete) / n, 2)
    candidate.interview_total = round(candidate.eq_total + candidate.pq_total + candidate.iq_total, 2)


def save_rating(s: "Session", session: InterviewSession, payload: dict, user: "User") -> tuple[InterviewRating, bool]:
    """Upsert the caller's rating of one candidate. Returns (rating, created)."""
    if not payload.get("candidate_id"):
        raise ValidationError("Candidate ID is required")
    try:
        candidate_id = int(payload["candidate_id"])
    except (TypeError, ValueError):
        raise ValidationError("candidate_id must be an integer") from None
    candidate = next((c for c in session.candidates if c.id == candidate_id), None)
    if candidate is None:
        raise NotFound("Candidate not found")
    if session.status in CLOSED_STATUSES:
        raise Forbidden("This session has been closed.")
    errors = validate_interview_scores(payload)
    if errors:
        raise ValidationError(errors[0], extra={"errors": errors})

    email = user.email.lower()
    rating = next((r for r in candidate.ratings if r.interviewer_email == email), None)
    now = datetime.utcnow()
    created = rating is None
    if created:
        rating = InterviewRating(
            candidate_id=candidate.id,
            interviewer_email=email,
            interviewer_user_id=user.id,
            created_at=now,
        )
        s.add(rating)
        candidate.ratings.append(rating)
    else:
        rating.is_revised = True
        rating.revised_at = now

    rating.interviewer_name = user.full_name or email.split("@")[0]
    rating.eq_score = payload.get("eq_score")
    rating.pq_score = payload.get("pq_score")
    rating.iq_score = payload.get("iq_score")
    rating.notes = (payload.get("notes") or "").strip() or None
    questions = payload.get("questions_used")
    rating.questions_used = questions if isinstance(questions, dict) else {}
    rating.updated_at = now

    recompute_candidate_totals(candidate)
    s.flush()
    record_event(
        s,
        actor=user,
        action="interview.rating_create" if created else "interview.rating_update",
        entity_type="InterviewRating",
        entity_id=str(rating.id),
        metadata={"candidate_id": candidate.id, "session_id": session.id},
    )
    return rating, created


def list_ratings(session: InterviewSession, *, candidate_id: int | None = None, interviewer_email: str | None = None) -> list[InterviewRating]:
    out = []
    for c in session.candidates:
        if candidate_id is not None and c.id != candidate_id:
            continue
        for r in c.ratings:
            if interviewer_email and r.interviewer_email != interviewer_email.lower():
                continue
            out.append(r)
    return out


# ---------- summary / review ----------

def score_band(total: float) -> str:
    for band, floor in DISTRIBUTION_BANDS:
        if total >= floor:
            return band
    return "below_average"


def session_summary(session: InterviewSession) -> dict:
    candidates = sorted(
        session.candidates,
        key=lambda c: (c.interview_total is None, -(c.interview_total or 0), c.sort_order),
    )
    ranks = normalization.competition_ranks({c.id: c.interview_total for c in candidates})
    all_ratings = [r for c in candidates for r in c.ratings]

    ranked = []
    for c in candidates:
        ranked.append(
            {
                **c.to_dict(),
                "rank": ranks[c.id] or None,
                "rating_count": len(c.ratings),
                "ratings": [
                    {
                        "interviewer_email": r.interviewer_email,
                        "interviewer_name": r.interviewer_name,
                        "eq_score": r.eq_score,
                        "pq_score": r.pq_score,
                        "iq_score": r.iq_score,
                        "total": r.total,
                        "notes": r.notes,
                    }
                    for r in c.ratings
                ],
            }
        )

    scores = [c.interview_total for c in candidates if c.interview_total is not None]
    distribution = {band: 0 for band, _ in DISTRIBUTION_BANDS}
    distribution["below_average"] = 0
    for total in scores:
        distribution[score_band(total)] += 1

    return {
        "session": session.to_dict(),
        "candidates": ranked,
        "summary": {
            "total_candidates": len(candidates),
            "candidates_rated": len(scores),
            "total_ratings": len(all_ratings),
            "interviewer_count": len({r.interviewer_email for r in all_ratings}),
            "avg_score": round(sum(scores) / len(scores)) if scores else 0,
            "min_score": min(scores) if scores else 0,
            "max_score": max(scores) if scores else 0,
            "distribution": distribution,
        },
    }


def _interviewer_summaries(session: InterviewSession, ratings: list[InterviewRating]) -> list[dict]:
    summary: dict[str, dict] = {}
    for i in session.interviewers:
        summary[i.interviewer_email] = {
            "email": i.interviewer_email,
            "name": i.interviewer_name or i.interviewer_email,
            "role": i.role or "interviewer",
            "candidates_rated": 0,
            "avg_eq": 0,
            "avg_pq": 0,
            "avg_iq": 0,
            "avg_total": 0,
        }
    by_email: dict[str, list[InterviewRating]] = {}
    for r in ratings:
        by_email.setdefault(r.interviewer_email, []).append(r)
        summary.setdefault(
            r.interviewer_email,
            {
                "email": r.interviewer_email,
                "name": r.interviewer_name or r.interviewer_email,
                "role": "interviewer",
                "candidates_rated": 0,
                "avg_eq": 0,
                "avg_pq": 0,
                "avg_iq": 0,
                "avg_total": 0,
            },
        )
    for email, rs in by_email.items():
        row = summary[email]
        row["candidates_rated"] = len(rs)
        valid = [r for r in rs if r.total is not None]
        if valid:
            row["avg_eq"] = round(sum(r.eq_score for r in valid) / len(valid))
            row["avg_pq"] = round(sum(r.pq_score for r in valid) / len(valid))
            row["avg_iq"] = round(sum(r.iq_score for r in valid) / len(valid))
            row["avg_total"] = row["avg_eq"] + row["avg_pq"] + row["avg_iq"]
    return sorted(summary.values(), key=lambda x: ROLE_ORDER.get(x["role"], 2))


def session_review(session: InterviewSession, *, exclude_residents: bool = False) -> dict:
    resident_emails = {i.interviewer_email for i in session.interviewers if i.role == "resident"}
    ratings = [r for c in session.candidates for r in c.ratings]

    inputs = [
        normalization.RatingInput(
            candidate_id=r.candidate_id,
            interviewer_email=r.interviewer_email,
            interviewer_name=r.interviewer_name,
            eq=r.eq_score,
            pq=r.pq_score,
            iq=r.iq_score,
            is_resident=r.interviewer_email in resident_emails,
        )
        for r in ratings
    ]
    scores = {
        row["candidate_id"]: row
        for row in normalization.candidate_scores(
            inputs, [c.id for c in session.candidates], exclude_residents=exclude_residents
        )
    }

    candidates = []
    for c in session.candidates:
        matrix = {
            r.interviewer_email: {
                "eq": r.eq_score,
                "pq": r.pq_score,
                "iq": r.iq_score,
                "total": r.total,
                "notes": r.notes,
                "interviewer_name": r.interviewer_name or r.interviewer_email,
                "is_resident": r.interviewer_email in resident_emails,
            }
            for r in c.ratings
        }
        candidates.append({**c.to_dict(), "ratings": matrix, "rating_count": len(c.ratings), "scores": scores[c.id]})

    stats = normalization.interviewer_stats(inputs)
    return {
        "session": session.to_dict(),
        "candidates": candidates,
        "interviewers": _interviewer_summaries(session, ratings),
        "interviewer_stats": {
            email: {"mean": st.mean, "stddev": st.stddev, "rating_count": st.rating_count}
            for email, st in stats.items()
        },
        "exclude_residents": exclude_residents,
        "summary": {
            "total_candidates": len(session.candidates),
            "total_ratings": len(ratings),
            "total_interviewers": len({*(i.interviewer_email for i in session.interviewers), *(r.interviewer_email for r in ratings)}),
        },
    }
