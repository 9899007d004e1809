"""
Per-interviewer z-score normalization of interview ratings.

Each interviewer's scores are standardized against that interviewer's own mean
and sample standard deviation, then mapped onto a 0-100 scale centred on 50
(one standard deviation = 15 points).
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable

PILLARS = ("eq", "pq", "iq")

DEFAULT_MEAN = 50.0
DEFAULT_STDDEV = 15.0
NORMALIZED_CENTER = 50
NORMALIZED_SPREAD = 15


@dataclass(frozen=True)
class RatingInput:
    candidate_id: int
    interviewer_email: str
    eq: int | None
    pq: int | None
    iq: int | None
    interviewer_name: str | None = None
    is_resident: bool = False

    @property
    def complete(self) -> bool:
        return self.eq is not None and self.pq is not None and self.iq is not None

    @property
    def total(self) -> int | None:
        return self.eq + self.pq + self.iq if self.complete else None  # type: ignore[operator]


@dataclass(frozen=True)
class InterviewerStats:
    email: str
    mean: dict[str, float]
    stddev: dict[str, float]
    rating_count: int


def mean(values: list[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def sample_stddev(values: list[float]) -> float:
    """Sample standard deviation; 1 when it would be undefined or zero."""
    if len(values) < 2:
        return 1.0
    m = mean(values)
    variance = sum((v - m) ** 2 for v in values) / (len(values) - 1)
    return math.sqrt(variance) or 1.0


def normalize_score(value: float, m: float, sd: float) -> int:
    z = (value - m) / sd if sd else 0.0
    return max(0, min(100, round(NORMALIZED_CENTER + z * NORMALIZED_SPREAD)))


def interviewer_stats(ratings: Iterable[RatingInput]) -> dict[str, InterviewerStats]:
    by_email: dict[str, list[RatingInput]] = {}
    for r in ratings:
        by_email.setdefault(r.interviewer_email, []).append(r)

    out = {}
    for email, rs in by_email.items():
        valid = [r for r in rs if r.complete]
        if not valid:
            out[email] = InterviewerStats(
                email=email,
                mean={p: DEFAULT_MEAN for p in PILLARS},
                stddev={p: DEFAULT_STDDEV for p in PILLARS},
                rating_count=0,
            )
            continue
        cols = {p: [float(getattr(r, p)) for r in valid] for p in PILLARS}
        out[email] = InterviewerStats(
            email=email,
            mean={p: mean(cols[p]) for p in PILLARS},
            stddev={p: sample_stddev(cols[p]) for p in PILLARS},
            rating_count=len(valid),
        )
    return out


def normalize_rating(r: RatingInput, stats: InterviewerStats | None) -> dict:
    if stats is None:
        normalized = {p: getattr(r, p) for p in PILLARS}
    else:
        normalized = {
            p: normalize_score(getattr(r, p), stats.mean[p], stats.stddev[p]) if getattr(r, p) is not None else None
            for p in PILLARS
        }
    norm_total = None
    if all(normalized[p] is not None for p in PILLARS):
        norm_total = sum(normalized[p] for p in PILLARS)
    return {
        "candidate_id": r.candidate_id,
        "interviewer_email": r.interviewer_email,
        "interviewer_name": r.interviewer_name,
        "is_resident": r.is_resident,
        **{f"raw_{p}": getattr(r, p) for p in PILLARS},
        "raw_total": r.total,
        **{f"normalized_{p}": normalized[p] for p in PILLARS},
        "normalized_total": norm_total,
    }


def competition_ranks(scores: dict[int, float | None]) -> dict[int, int]:
    """Standard competition ranking (1, 1, 3) by descending score; unscored entries get 0."""
    ranked = sorted((k for k, v in scores.items() if v is not None), key=lambda k: -scores[k])  # type: ignore[operator]
    out = {k: 0 for k in scores}
    prev = None
    rank = 0
    for position, key in enumerate(ranked, start=1):
        if scores[key] != prev:
            rank = position
            prev = scores[key]
        out[key] = rank
    return out


def candidate_scores(
    ratings: list[RatingInput],
    candidate_ids: Iterable[int],
    *,
    exclude_residents: bool = False,
) -> list[dict]:
    """
    Raw and normalized per-candidate totals with ranks.

    Interviewer statistics always come from every rating the interviewer gave;
    `exclude_residents` only drops resident interviewers from the candidate sums.
    rank_change is positive when normalization moves a candidate up.
    """
    stats = interviewer_stats(ratings)
    normalized = [normalize_rating(r, stats.get(r.interviewer_email)) for r in ratings]
    if exclude_residents:
        normalized = [n for n in normalized if not n["is_resident"]]

    rows: dict[int, dict] = {}
    for cid in candidate_ids:
        mine = [n for n in normalized if n["candidate_id"] == cid]
        raw = [n for n in mine if n["raw_total"] is not None]
        norm = [n for n in mine if n["normalized_total"] is not None]
        row: dict = {"candidate_id": cid, "rating_count": len(mine)}
        for p in PILLARS:
            row[f"raw_{p}_total"] = sum(n[f"raw_{p}"] for n in raw) if raw else None
            row[f"normalized_{p}_total"] = sum(n[f"normalized_{p}"] for n in norm) if norm else None
        row["raw_interview_total"] = sum(n["raw_total"] for n in raw) if raw else None
        row["normalized_interview_total"] = sum(n["normalized_total"] for n in norm) if norm else None
        rows[cid] = row

    raw_ranks = competition_ranks({cid: r["raw_interview_total"] for cid, r in rows.items()})
    norm_ranks = competition_ranks({cid: r["normalized_interview_total"] for cid, r in rows.items()})
    for cid, row in rows.items():
        row["raw_rank"] = raw_ranks[cid]
        row["normalized_rank"] = norm_ranks[cid]
        row["rank_change"] = raw_ranks[cid] - norm_ranks[cid] if raw_ranks[cid] and norm_ranks[cid] else 0
    return list(rows.values())
