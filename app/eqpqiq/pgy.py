"""
Academic-year and PGY (post-graduate year) arithmetic.

The academic year starts July 1: a date in July 2025 .. June 2026 belongs to
academic year 2025.
"""
from __future__ import annotations

import re
from datetime import date

DEFAULT_PROGRAM_LENGTH = 3

# Fall window (inclusive months) per PGY level; everything else is Spring.
_FALL_MONTHS = {
    1: (6, 11),
    2: (5, 10),
    3: (4, 9),
    4: (3, 8),
}

_PERIOD_LABEL_RE = re.compile(r"PGY[\s-]*(\d+)\s*(Start|Fall|Spring)", re.IGNORECASE)
_SEASON_ORDER = {"start": 0, "fall": 1, "spring": 2}


def academic_year(d: date) -> int:
    return d.year if d.month >= 7 else d.year - 1


def format_academic_year(ay: int) -> str:
    return f"{ay}-{ay + 1}"


def pgy_level(graduation_year: int, on: date | None = None, program_length: int = DEFAULT_PROGRAM_LENGTH) -> int:
    """
    >>> pgy_level(2026, date(2026, 2, 15))
    3
    >>> pgy_level(2028, date(2026, 2, 15))
    1
    """
    ay = academic_year(on or date.today())
    years_until_graduation = graduation_year - ay - 1
    return program_length - years_until_graduation


def graduation_year_for_pgy(level: int, on: date | None = None, program_length: int = DEFAULT_PROGRAM_LENGTH) -> int:
    ay = academic_year(on or date.today())
    return ay + 1 + (program_length - level)


def is_resident_active(graduation_year: int, on: date | None = None) -> bool:
    # Class of 2026 finishes at the end of academic year 2025.
    return graduation_year > academic_year(on or date.today())


def active_pgy_levels(program_length: int = DEFAULT_PROGRAM_LENGTH) -> list[int]:
    return list(range(1, program_length + 1))


def evaluation_period(level: int, on: date) -> str | None:
    window = _FALL_MONTHS.get(level)
    if window is None:
        return None
    start, end = window
    return "Fall" if start <= on.month <= end else "Spring"


def period_info(graduation_year: int | None, on: date, program_length: int = DEFAULT_PROGRAM_LENGTH) -> tuple[int | None, str | None, str | None]:
    """(pgy_level, period, period_label) for an evaluation date, or Nones when out of range."""
    if not graduation_year:
        return None, None, None
    level = pgy_level(graduation_year, on, program_length)
    if level < 1 or level > max(program_length, 4):
        return None, None, None
    period = evaluation_period(level, on)
    if not period:
        return level, None, None
    return level, period, f"PGY-{level} {period}"


def period_sort_key(label: str | None) -> int:
    """PGY-1 Start < PGY-1 Fall < PGY-1 Spring < PGY-2 Start ...; unknown labels sort last."""
    m = _PERIOD_LABEL_RE.search(label or "")
    if not m:
        return 999
    return int(m.group(1)) * 10 + _SEASON_ORDER.get(m.group(2).lower(), 3)
