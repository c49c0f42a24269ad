"""
Grading overview engine.

Turns raw activity facts into the rows and header counts of the grading
overview screen, one request at a time:

    resolver -> evaluate_pair -> status filter -> RowBuilder -> sort / paginate

Candidate pairs are discovered one of two ways, chosen once per request:

  * LessonPinnedResolver: every learner who started the pinned lesson, paged
    and searched by the external user query.
  * AllLessonsResolver:   every lesson with a start fact, paired with the
    first learner who started it; search is applied locally.

SummaryCounter recounts statuses over the same resolver with the same
evaluate_pair(), so header counts never drift from the rows.
"""

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union
from urllib.parse import urlencode

import pandas as pd

from backend.activity_client import (
    ActivityClient,
    ActivityParser,
    UserRecord,
    LESSON_START,
    LESSON_END,
    QUIZ_GRADE,
)
from backend.config import GradingSettings
from backend.status import (
    ClassifiedResult,
    Excluded,
    GradingStatus,
    evaluate_pair,
    matches_search,
    parse_status_filter,
    status_admits,
)

logger = logging.getLogger(__name__)

GRADING_PAGE = "sensei_grading"
SORT_ASC = "asc"
SORT_DESC = "desc"


# ─────────────────────────────────────────────
# DATA MODEL
# ─────────────────────────────────────────────

@dataclass(frozen=True)
class LearnerLessonPair:
    user_id: int
    lesson_id: int


@dataclass(frozen=True)
class FilterCriteria:
    search: str = ""
    status_filter: Union[str, GradingStatus] = GradingStatus.UNGRADED
    course_id: int = 0
    lesson_id: int = 0
    role: str = ""
    page: int = 1
    per_page: int = 25
    sort_column: Optional[str] = None
    sort_direction: str = SORT_ASC

    @property
    def offset(self) -> int:
        if self.page > 0:
            return self.per_page * (self.page - 1)
        return 0

    @classmethod
    def from_request(cls, params: Mapping[str, Any], settings: Optional[GradingSettings] = None) -> "FilterCriteria":
        """
        Build criteria from request parameters
        (s, paged, grading_status, course_id, lesson_id, role, orderby, order).
        Missing or non-numeric ids and page numbers fall back to 0 / first page.
        """
        settings = settings or GradingSettings()
        page = ActivityParser.post_id(params.get("paged"))
        orderby = str(params.get("orderby") or "").strip()
        order = str(params.get("order") or "").strip().lower()
        return cls(
            search=str(params.get("s") or "").strip(),
            status_filter=parse_status_filter(params.get("grading_status"), settings.default_status),
            course_id=max(ActivityParser.post_id(params.get("course_id")), 0),
            lesson_id=max(ActivityParser.post_id(params.get("lesson_id")), 0),
            role=str(params.get("role") or "").strip(),
            page=page if page > 0 else 1,
            per_page=settings.per_page,
            sort_column=orderby if orderby in settings.sortable_columns else None,
            sort_direction=SORT_DESC if order == SORT_DESC else SORT_ASC,
        )


@dataclass(frozen=True)
class ActionLink:
    label: str
    url: str
    style: str = "secondary"


@dataclass
class GradingRow:
    user_id: int
    user_display_name: str
    course_id: int
    course_title: str
    lesson_id: int
    lesson_title: str
    updated_at: Optional[datetime]
    status: GradingStatus
    status_label: str
    grade: Optional[float]
    grade_display: str
    action_link: Optional[ActionLink] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def display_values(self) -> Dict[str, str]:
        """Column key -> presentation string."""
        return {
            "user_login": self.user_display_name,
            "course": self.course_title,
            "lesson": self.lesson_title,
            "updated": self.updated_at.strftime("%Y-%m-%d %H:%M:%S") if self.updated_at else "",
            "user_status": self.status_label,
            "user_grade": self.grade_display,
            "action": self.action_link.label if self.action_link else "",
            **{k: str(v) for k, v in self.extra.items()},
        }


@dataclass
class StatusCounts:
    all: int = 0
    ungraded: int = 0
    graded: int = 0
    in_progress: int = 0

    def as_dict(self) -> Dict[str, int]:
        return {
            "all": self.all,
            GradingStatus.UNGRADED.value: self.ungraded,
            GradingStatus.GRADED.value: self.graded,
            GradingStatus.IN_PROGRESS.value: self.in_progress,
        }


@dataclass
class GradingReport:
    rows: List[GradingRow]
    total_items: int
    counts: StatusCounts
    criteria: FilterCriteria

    @property
    def is_empty(self) -> bool:
        return not self.rows


RowHook = Callable[[GradingRow, int, int], GradingRow]


# ─────────────────────────────────────────────
# PER-REQUEST LOOKUPS
# ─────────────────────────────────────────────

class RequestLookups:
    """Store reads for one report; memoized for the lifetime of this object only."""

    def __init__(self, client: ActivityClient):
        self.client = client
        self._quiz: Dict[int, Optional[int]] = {}
        self._course: Dict[int, int] = {}
        self._titles: Dict[int, str] = {}

    def quiz_id(self, lesson_id: int) -> Optional[int]:
        if lesson_id not in self._quiz:
            quiz_ids = self.client.lesson_quiz_ids(lesson_id)
            # the last attached quiz wins
            self._quiz[lesson_id] = quiz_ids[-1] if quiz_ids else None
        return self._quiz[lesson_id]

    def course_id(self, lesson_id: int) -> int:
        if lesson_id not in self._course:
            self._course[lesson_id] = self.client.lesson_course(lesson_id)
        return self._course[lesson_id]

    def title(self, post_id: int) -> str:
        if not post_id:
            return ""
        if post_id not in self._titles:
            self._titles[post_id] = self.client.get_title(post_id)
        return self._titles[post_id]

    def facts(self, lesson_id: int, user_id: int, quiz_id: Optional[int]) -> Tuple[Optional[str], ...]:
        """(start date, end date, grade, grade date) for one pair."""
        get = self.client.activity_value
        return (
            get(LESSON_START, lesson_id, user_id, field="date"),
            get(LESSON_END, lesson_id, user_id, field="date"),
            get(QUIZ_GRADE, quiz_id, user_id, field="content"),
            get(QUIZ_GRADE, quiz_id, user_id, field="date"),
        )

    def evaluate(self, lesson_id: int, user_id: int):
        quiz_id = self.quiz_id(lesson_id)
        outcome = evaluate_pair(*self.facts(lesson_id, user_id, quiz_id))
        logger.debug(f"Pair user={user_id} lesson={lesson_id} quiz={quiz_id}: {outcome}")
        return quiz_id, outcome


# ─────────────────────────────────────────────
# IDENTITY RESOLVERS
# ─────────────────────────────────────────────

@dataclass
class Candidate:
    user: UserRecord
    lesson_id: int


@dataclass
class CandidatePage:
    candidates: List[Candidate]
    total: int
    # True when the external user query already applied offset/limit
    paginated: bool


class LessonPinnedResolver:
    paginated = True

    def __init__(self, client: ActivityClient, lesson_id: int):
        self.client = client
        self.lesson_id = lesson_id

    def started_user_ids(self) -> List[int]:
        return self.client.activity_ids(LESSON_START, post_id=self.lesson_id, field="user_id")

    def started_pairs(self) -> List[LearnerLessonPair]:
        return [LearnerLessonPair(uid, self.lesson_id) for uid in self.started_user_ids()]

    def candidates(self, criteria: FilterCriteria) -> CandidatePage:
        user_ids = self.started_user_ids()
        if not user_ids:
            logger.info(f"No learners have started lesson {self.lesson_id}")
            return CandidatePage([], 0, self.paginated)
        page = self.client.query_users(
            count=criteria.per_page,
            include_ids=user_ids,
            offset=criteria.offset,
            role=criteria.role,
            search=f"*{criteria.search}*" if criteria.search else "",
            fields="all_with_meta",
        )
        return CandidatePage(
            [Candidate(user, self.lesson_id) for user in page.users],
            page.total,
            self.paginated,
        )


class AllLessonsResolver:
    paginated = False

    def __init__(self, client: ActivityClient):
        self.client = client

    def started_pairs(self) -> List[LearnerLessonPair]:
        """One pair per started lesson: the first learner the store reports."""
        pairs = []
        for lesson_id in self.client.activity_ids(LESSON_START, field="post_id"):
            user_ids = self.client.activity_ids(LESSON_START, post_id=lesson_id, field="user_id")
            if user_ids:
                pairs.append(LearnerLessonPair(user_ids[0], lesson_id))
        return pairs

    def candidates(self, criteria: FilterCriteria) -> CandidatePage:
        found = []
        for pair in self.started_pairs():
            user = self.client.get_user(pair.user_id)
            if user is None:
                # deleted or unreadable account: keep the pair with a blank name
                logger.warning(f"User {pair.user_id} not found for lesson {pair.lesson_id}")
                user = UserRecord(pair.user_id)
            if matches_search(user, criteria.search):
                found.append(Candidate(user, pair.lesson_id))
        return CandidatePage(found, len(found), self.paginated)


Resolver = Union[LessonPinnedResolver, AllLessonsResolver]


def resolver_for(client: ActivityClient, criteria: FilterCriteria) -> Resolver:
    if criteria.lesson_id > 0:
        return LessonPinnedResolver(client, criteria.lesson_id)
    return AllLessonsResolver(client)


# ─────────────────────────────────────────────
# ROWS
# ─────────────────────────────────────────────

def format_grade(grade: Optional[float], no_grade_text: str = "No Grade") -> str:
    if grade is not None and grade > 0:
        return f"{grade:g}%"
    return no_grade_text


class RowBuilder:

    def __init__(self, settings: GradingSettings, lookups: RequestLookups, hooks: Optional[List[RowHook]] = None):
        self.settings = settings
        self.lookups = lookups
        self.hooks = list(hooks or [])

    def action_link(self, status: GradingStatus, user_id: int, quiz_id: Optional[int]) -> Optional[ActionLink]:
        if status == GradingStatus.IN_PROGRESS:
            return None
        query = urlencode({"page": GRADING_PAGE, "user": user_id, "quiz_id": quiz_id or ""})
        url = f"{self.settings.grading_url}?{query}"
        label = self.settings.actions.get(status.value, "")
        style = "primary" if status == GradingStatus.UNGRADED else "secondary"
        return ActionLink(label=label, url=url, style=style)

    def build(self, candidate: Candidate, quiz_id: Optional[int], result: ClassifiedResult) -> GradingRow:
        lesson_id = candidate.lesson_id
        course_id = self.lookups.course_id(lesson_id)
        row = GradingRow(
            user_id=candidate.user.id,
            user_display_name=candidate.user.display_name,
            course_id=course_id,
            course_title=self.lookups.title(course_id),
            lesson_id=lesson_id,
            lesson_title=self.lookups.title(lesson_id),
            updated_at=result.updated_at,
            status=result.status,
            status_label=self.settings.status_label(result.status),
            grade=result.grade,
            grade_display=format_grade(result.grade, self.settings.no_grade_text),
            action_link=self.action_link(result.status, candidate.user.id, quiz_id),
        )
        for hook in self.hooks:
            row = hook(row, lesson_id, candidate.user.id)
        return row


# ─────────────────────────────────────────────
# SORT / PAGINATE
# ─────────────────────────────────────────────

SORT_KEYS: Dict[str, Callable[[GradingRow], Any]] = {
    "user_login": lambda r: r.user_display_name.casefold(),
    "course": lambda r: r.course_title.casefold(),
    "lesson": lambda r: r.lesson_title.casefold(),
    "updated": lambda r: r.updated_at,
    "user_status": lambda r: r.status.value,
    "user_grade": lambda r: r.grade,
}


def sort_rows(rows: List[GradingRow], column: Optional[str], direction: str = SORT_ASC) -> List[GradingRow]:
    """Stable sort on typed keys; rows without a key go last. Unknown column keeps order."""
    if not rows or column not in SORT_KEYS:
        return list(rows)
    keys = pd.Series([SORT_KEYS[column](r) for r in rows])
    if column == "updated":
        keys = pd.to_datetime(keys, utc=True, errors="coerce")
    elif column == "user_grade":
        keys = pd.to_numeric(keys, errors="coerce")
    order = keys.sort_values(ascending=direction != SORT_DESC, kind="mergesort", na_position="last").index
    return [rows[i] for i in order]


def paginate(rows: List[GradingRow], page: int, per_page: int) -> List[GradingRow]:
    offset = per_page * (page - 1) if page > 0 else 0
    return rows[offset:offset + per_page]


# ─────────────────────────────────────────────
# COUNTS
# ─────────────────────────────────────────────

class SummaryCounter:

    def __init__(self, lookups: RequestLookups):
        self.lookups = lookups

    def count(self, resolver: Resolver) -> StatusCounts:
        pairs = resolver.started_pairs()
        tally: Counter = Counter()
        for pair in pairs:
            _, outcome = self.lookups.evaluate(pair.lesson_id, pair.user_id)
            if not isinstance(outcome, Excluded):
                tally[outcome.value.status] += 1
        return StatusCounts(
            all=len(pairs),
            ungraded=tally[GradingStatus.UNGRADED],
            graded=tally[GradingStatus.GRADED],
            in_progress=tally[GradingStatus.IN_PROGRESS],
        )


# ─────────────────────────────────────────────
# ENGINE
# ─────────────────────────────────────────────

class GradingOverview:
    """
    Builds grading overview reports against an activity store.
    Holds no per-request state: every call starts from fresh lookups.
    """

    def __init__(self, client: ActivityClient, settings: Optional[GradingSettings] = None,
                 row_hooks: Optional[List[RowHook]] = None):
        self.client = client
        self.settings = settings or GradingSettings()
        self.row_hooks: List[RowHook] = list(row_hooks or [])

    def register_row_hook(self, hook: RowHook) -> None:
        self.row_hooks.append(hook)

    def criteria_from_request(self, params: Mapping[str, Any]) -> FilterCriteria:
        return FilterCriteria.from_request(params, self.settings)

    def build_rows(self, criteria: FilterCriteria, lookups: Optional[RequestLookups] = None) -> Tuple[List[GradingRow], int]:
        """Return (page of rows, total matching rows)."""
        lookups = lookups or RequestLookups(self.client)
        resolver = resolver_for(self.client, criteria)
        page = resolver.candidates(criteria)
        builder = RowBuilder(self.settings, lookups, self.row_hooks)

        rows: List[GradingRow] = []
        for candidate in page.candidates:
            quiz_id, outcome = lookups.evaluate(candidate.lesson_id, candidate.user.id)
            if isinstance(outcome, Excluded):
                continue
            if not status_admits(criteria.status_filter, outcome.value.status):
                continue
            rows.append(builder.build(candidate, quiz_id, outcome.value))

        rows = sort_rows(rows, criteria.sort_column, criteria.sort_direction)
        if page.paginated:
            return rows, page.total
        return paginate(rows, criteria.page, criteria.per_page), len(rows)

    def summary(self, lesson_id: int = 0, lookups: Optional[RequestLookups] = None) -> StatusCounts:
        lookups = lookups or RequestLookups(self.client)
        resolver = resolver_for(self.client, FilterCriteria(lesson_id=lesson_id))
        return SummaryCounter(lookups).count(resolver)

    def report(self, criteria: FilterCriteria) -> GradingReport:
        lookups = RequestLookups(self.client)
        rows, total = self.build_rows(criteria, lookups)
        counts = self.summary(criteria.lesson_id, lookups)
        logger.info(
            f"Grading report: {len(rows)} rows on page {criteria.page}, {total} total, "
            f"filter={getattr(criteria.status_filter, 'value', criteria.status_filter)}, "
            f"counts={counts.as_dict()}"
        )
        return GradingReport(rows=rows, total_items=total, counts=counts, criteria=criteria)
