"""
Resident score dashboards and program/class analytics.

All figures are computed on the fly from structured ratings. Every faculty
rater type (core, teaching, plain faculty) counts as "faculty".
"""
from __future__ import annotations

from collections import defaultdict
from datetime import date
from typing import TYPE_CHECKING, Iterable

from app.eqpqiq import pgy
from app.eqpqiq.errors import NotFound
from app.eqpqiq.models import AcademicClass, Program, Resident
from app.eqpqiq.modules.ratings.models import PILLARS, StructuredRating
from app.eqpqiq.modules.ratings.service import FACULTY_RATER_TYPES

if TYPE_CHECKING:
    from sqlalchemy.orm import Session


def _mean(values: Iterable[float | None]) -> float | None:
    vals = [v for v in values if v is not None]
    if not vals:
        return None
    return sum(vals) / len(vals)


def _r2(value: float | None) -> float | None:
    return round(value, 2) if value is not None else None


def _is_faculty(r: StructuredRating) -> bool:
    return r.rater_type in FACULTY_RATER_TYPES


def compute_averages(ratings: list[StructuredRating]) -> dict | None:
    """Per-attribute and per-pillar means for a group of ratings, or None when empty."""
    if not ratings:
        return None
    out: dict = {}
    for pillar, attrs in PILLARS.items():
        block = {a: _r2(_mean(getattr(r, a) for r in ratings)) for a in attrs}
        block["average"] = _r2(_mean(getattr(r, f"{pillar}_avg") for r in ratings))
        out[pillar] = block
    out["overall"] = _r2(_mean(out[p]["average"] for p in PILLARS))
    out["count"] = len(ratings)
    return out


def trend_data(ratings: list[StructuredRating]) -> list[dict]:
    buckets: dict[str, dict[str, list[float]]] = defaultdict(lambda: defaultdict(list))
    for r in ratings:
        if not r.period_label:
            continue
        who = "faculty" if _is_faculty(r) else ("self" if r.rater_type == "self" else None)
        if who is None:
            continue
        for p in PILLARS:
            v = getattr(r, f"{p}_avg")
            if v is not None:
                buckets[r.period_label][f"{who}_{p}"].append(v)

    out = []
    for label in sorted(buckets, key=lambda lbl: (pgy.period_sort_key(lbl), lbl)):
        vals = buckets[label]
        row: dict = {"period": label}
        for who in ("faculty", "self"):
            for p in PILLARS:
                row[f"{who}_{p}"] = _r2(_mean(vals.get(f"{who}_{p}", [])))
        out.append(row)
    return out


def gap_analysis(faculty: dict | None, self_avgs: dict | None) -> dict | None:
    """faculty - self per pillar; positive means the resident under-rates themself."""
    if not faculty or not self_avgs:
        return None

    def gap(f, s):
        return round(f - s, 2) if f is not None and s is not None else None

    out = {p: gap(faculty[p]["average"], self_avgs[p]["average"]) for p in PILLARS}
    out["overall"] = gap(faculty["overall"], self_avgs["overall"])
    return out


def class_averages(s: "Session", class_id: int | None) -> dict | None:
    """Mean of per-resident faculty averages (each resident weighted equally)."""
    if class_id is None:
        return None
    ratings = (
        s.query(StructuredRating)
        .join(Resident, Resident.id == StructuredRating.resident_id)
        .filter(Resident.class_id == class_id, StructuredRating.rater_type.in_(FACULTY_RATER_TYPES))
        .all()
    )
    if not ratings:
        return None
    by_resident: dict[int, list[StructuredRating]] = defaultdict(list)
    for r in ratings:
        by_resident[r.resident_id].append(r)

    out = {}
    for p in PILLARS:
        per_resident = [_mean(getattr(r, f"{p}_avg") for r in rs) for rs in by_resident.values()]
        out[p] = _r2(_mean(per_resident))
    out["n_residents"] = len(by_resident)
    return out


def resident_info(s: "Session", resident: Resident, on: date | None = None) -> dict:
    klass = resident.academic_class
    grad = klass.graduation_year if klass else None
    program = s.get(Program, resident.program_id)
    length = program.program_length if program else pgy.DEFAULT_PROGRAM_LENGTH
    return {
        "id": resident.id,
        "name": resident.full_name,
        "email": resident.email,
        "medical_school": resident.medical_school,
        "class_id": resident.class_id,
        "graduation_year": grad,
        "class_name": klass.name if klass else None,
        "pgy_level": pgy.pgy_level(grad, on or date.today(), length) if grad else None,
        "is_active": resident.is_active,
        "program_id": resident.program_id,
    }


def resident_scores(s: "Session", resident: Resident) -> dict:
    ratings = (
        s.query(StructuredRating)
        .filter(StructuredRating.resident_id == resident.id)
        .order_by(StructuredRating.evaluation_date.desc(), StructuredRating.id.desc())
        .all()
    )
    faculty = [r for r in ratings if _is_faculty(r)]
    core = [r for r in ratings if r.rater_type == "core_faculty"]
    teaching = [r for r in ratings if r.rater_type == "teaching_faculty"]
    self_ratings = [r for r in ratings if r.rater_type == "self"]

    faculty_avgs = compute_averages(faculty)
    self_avgs = compute_averages(self_ratings)

    recent = []
    for r in ratings[:10]:
        recent.append(
            {
                "id": r.id,
                "rater_type": r.rater_type,
                "evaluation_date": r.evaluation_date.isoformat() if r.evaluation_date else None,
                "period_label": r.period_label,
                "eq_avg": r.eq_avg,
                "pq_avg": r.pq_avg,
                "iq_avg": r.iq_avg,
                "overall_avg": r.overall_avg,
                "comments": r.concerns_goals,
                "faculty_name": (r.faculty.full_name if r.faculty else "Faculty") if r.faculty_id else None,
            }
        )

    return {
        "resident": resident_info(s, resident),
        "trend_data": trend_data(ratings),
        "faculty_averages": faculty_avgs,
        "core_faculty_averages": compute_averages(core),
        "teaching_faculty_averages": compute_averages(teaching),
        "self_averages": self_avgs,
        "gap_analysis": gap_analysis(faculty_avgs, self_avgs),
        "class_averages": class_averages(s, resident.class_id),
        "ratings": {
            "faculty": len(faculty),
            "core_faculty": len(core),
            "teaching_faculty": len(teaching),
            "self": len(self_ratings),
            "total": len(ratings),
            "recent": recent,
        },
    }


def list_residents(s: "Session", program_id: int, *, class_year: int | None = None, only_user_id: int | None = None) -> dict:
    program = s.get(Program, program_id)
    if not program:
        raise NotFound("Program not found")

    q = s.query(Resident).filter(Resident.program_id == program_id)
    if class_year is not None:
        q = q.join(AcademicClass, AcademicClass.id == Resident.class_id).filter(AcademicClass.graduation_year == class_year)
    if only_user_id is not None:
        q = q.filter(Resident.user_id == only_user_id)
    residents = q.order_by(Resident.full_name.asc(), Resident.id.asc()).all()

    ratings_by_resident: dict[int, list[StructuredRating]] = defaultdict(list)
    if residents:
        rows = (
            s.query(StructuredRating)
            .filter(StructuredRating.resident_id.in_([r.id for r in residents]))
            .order_by(StructuredRating.evaluation_date.asc(), StructuredRating.id.asc())
            .all()
        )
        for row in rows:
            ratings_by_resident[row.resident_id].append(row)

    items = []
    for res in residents:
        mine = ratings_by_resident.get(res.id, [])
        fac = [r for r in mine if _is_faculty(r)]
        selfr = [r for r in mine if r.rater_type == "self"]
        periods: list[str] = []
        for r in mine:
            if r.period_label and r.period_label not in periods:
                periods.append(r.period_label)
        info = resident_info(s, res)
        info["current_scores"] = {
            **{f"faculty_{p}_avg": _r2(_mean(getattr(r, f"{p}_avg") for r in fac)) for p in PILLARS},
            "faculty_n_raters": len(fac),
            **{f"self_{p}_avg": _r2(_mean(getattr(r, f"{p}_avg") for r in selfr)) for p in PILLARS},
            "periods": periods,
        }
        items.append(info)

    classes = (
        s.query(AcademicClass)
        .filter(AcademicClass.program_id == program_id)
        .order_by(AcademicClass.graduation_year.asc())
        .all()
    )
    return {
        "program": {"id": program.id, "name": program.name, "specialty": program.specialty},
        "residents": items,
        "classes": [
            {"id": c.id, "graduation_year": c.graduation_year, "name": c.name, "is_active": c.is_active}
            for c in classes
        ],
        "total": len(items),
    }


def _faculty_ratings_for_program(s: "Session", program_id: int):
    return (
        s.query(StructuredRating, AcademicClass.graduation_year)
        .join(Resident, Resident.id == StructuredRating.resident_id)
        .outerjoin(AcademicClass, AcademicClass.id == Resident.class_id)
        .filter(Resident.program_id == program_id, StructuredRating.rater_type.in_(FACULTY_RATER_TYPES))
        .all()
    )


def program_analytics(s: "Session", program_id: int) -> dict:
    rows = _faculty_ratings_for_program(s, program_id)
    ratings = [r for r, _ in rows]

    by_class: dict[int, list[StructuredRating]] = defaultdict(list)
    for r, year in rows:
        if year is not None:
            by_class[year].append(r)

    program_stats = {
        **{f"avg_{p}": _r2(_mean(getattr(r, f"{p}_avg") for r in ratings)) for p in PILLARS},
        "total_residents": len({r.resident_id for r in ratings}),
        "total_ratings": len(ratings),
    }
    class_stats = [
        {
            "class_year": year,
            **{f"avg_{p}": _r2(_mean(getattr(r, f"{p}_avg") for r in rs)) for p in PILLARS},
            "n_residents": len({r.resident_id for r in rs}),
            "n_ratings": len(rs),
        }
        for year, rs in sorted(by_class.items())
    ]
    return {"program_stats": program_stats, "class_stats": class_stats}


def class_analytics(s: "Session", program_id: int, graduation_year: int) -> dict:
    klass = (
        s.query(AcademicClass)
        .filter(AcademicClass.program_id == program_id, AcademicClass.graduation_year == graduation_year)
        .one_or_none()
    )
    if klass is None:
        raise NotFound(f"Class of {graduation_year} not found")

    ratings = (
        s.query(StructuredRating)
        .join(Resident, Resident.id == StructuredRating.resident_id)
        .filter(Resident.class_id == klass.id, StructuredRating.rater_type.in_(FACULTY_RATER_TYPES))
        .all()
    )

    by_period: dict[str, list[StructuredRating]] = defaultdict(list)
    by_resident: dict[int, list[StructuredRating]] = defaultdict(list)
    for r in ratings:
        by_period[r.period_label or "Unlabeled"].append(r)
        by_resident[r.resident_id].append(r)

    periods = [
        {
            "period_label": label,
            **{f"avg_{p}": _r2(_mean(getattr(r, f"{p}_avg") for r in rs)) for p in PILLARS},
            "n_residents": len({r.resident_id for r in rs}),
            "n_ratings": len(rs),
        }
        for label, rs in sorted(by_period.items(), key=lambda kv: (pgy.period_sort_key(kv[0]), kv[0]))
    ]
    residents = []
    for rid, rs in by_resident.items():
        residents.append(
            {
                "resident_id": rid,
                "name": rs[0].resident.full_name if rs[0].resident else None,
                **{f"avg_{p}": _r2(_mean(getattr(r, f"{p}_avg") for r in rs)) for p in PILLARS},
                "n_ratings": len(rs),
            }
        )
    residents.sort(key=lambda x: (x["name"] or "").lower())

    return {
        "class": {"id": klass.id, "graduation_year": klass.graduation_year, "name": klass.name},
        "class_averages": class_averages(s, klass.id),
        "periods": periods,
        "residents": residents,
    }
