"""
Grading status classification and row filters.

A learner/lesson pair is classified from four raw facts, checked in a fixed
order where the first match wins:

    1. lesson ended, no grade      -> ungraded     (updated = end date)
    2. grade > 0                   -> graded       (updated = grade date)
    3. lesson started, not ended   -> in-progress  (updated = start date)
    4. anything else               -> excluded

A grade of exactly 0 is treated as "no grade".
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Optional, Union

from backend.activity_client import ActivityParser, UserRecord

logger = logging.getLogger(__name__)

STATUS_ALL = "all"


class GradingStatus(str, Enum):
    UNGRADED = "ungraded"
    GRADED = "graded"
    IN_PROGRESS = "in-progress"


DEFAULT_STATUS_FILTER = GradingStatus.UNGRADED


@dataclass(frozen=True)
class ClassifiedResult:
    status: GradingStatus
    updated_at: Optional[datetime]
    grade: Optional[float] = None


@dataclass(frozen=True)
class Included:
    value: Any


class Excluded:
    """A pair that produces no row and is not counted."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "EXCLUDED"


EXCLUDED = Excluded()

Classification = Union[ClassifiedResult, Excluded]


def _grade_is_empty(grade: Optional[float]) -> bool:
    return grade is None or grade == 0


def classify(start_date: Any = None, end_date: Any = None, grade: Any = None,
             grade_date: Any = None) -> Classification:
    has_start = ActivityParser.is_present(start_date)
    has_end = ActivityParser.is_present(end_date)
    numeric_grade = ActivityParser.grade(grade)

    if has_end and _grade_is_empty(numeric_grade):
        return ClassifiedResult(GradingStatus.UNGRADED, ActivityParser.timestamp(end_date), numeric_grade)
    if numeric_grade is not None and numeric_grade > 0:
        return ClassifiedResult(GradingStatus.GRADED, ActivityParser.timestamp(grade_date), numeric_grade)
    if has_start and not has_end:
        return ClassifiedResult(GradingStatus.IN_PROGRESS, ActivityParser.timestamp(start_date), numeric_grade)
    return EXCLUDED


def evaluate_pair(start_date: Any = None, end_date: Any = None, grade: Any = None,
                  grade_date: Any = None) -> Union[Included, Excluded]:
    """classify() behind the start-date gate: never-started pairs are excluded."""
    if not ActivityParser.is_present(start_date):
        return EXCLUDED
    result = classify(start_date, end_date, grade, grade_date)
    if isinstance(result, Excluded):
        return EXCLUDED
    return Included(result)


# ─────────────────────────────────────────────
# FILTERS
# ─────────────────────────────────────────────

def parse_status_filter(value: Any, default: Union[str, GradingStatus] = DEFAULT_STATUS_FILTER) -> Union[str, GradingStatus]:
    """Request value -> "all" or a GradingStatus; unknown or blank -> default."""
    text = str(value).strip().lower() if value is not None else ""
    if text == STATUS_ALL:
        return STATUS_ALL
    try:
        return GradingStatus(text)
    except ValueError:
        if text:
            logger.warning(f"Unknown grading status filter {value!r}, using {default}")
        if isinstance(default, GradingStatus) or default == STATUS_ALL:
            return default
        return GradingStatus(default)


def status_admits(status_filter: Union[str, GradingStatus], status: GradingStatus) -> bool:
    if status_filter == STATUS_ALL:
        return True
    return status_filter == status


def matches_search(user: UserRecord, term: Optional[str]) -> bool:
    """Case-insensitive substring match on login, display name or email."""
    if not term or not term.strip():
        return True
    needle = term.strip().lower()
    return any(
        needle in (field or "").lower()
        for field in (user.login, user.display_name, user.email)
    )
