"""
Activity store REST client
─────────────────────────────────────────────────────────────────────────────
Reads learner activity facts (lesson start, lesson end, quiz grade), users
and post titles from the LMS activity API:

    GET /activity?type=sensei_lesson_start&post_id=N&field=user_id&limit=N&skip=N
        Response: { "data": [ids...] }
    GET /activity/value?type=...&post_id=N&user_id=N&field=date
        Response: { "value": "2020-01-05 10:00:00" }
    GET /users?number=N&include=1,2&offset=N&role=...&search=*term*
        Response: { "data": [...], "paging": { "count": N } }

Auth: Basic Auth or Bearer token

A failing read is logged and treated as an empty result.
"""

from __future__ import annotations

import os
import re
import logging
import random
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, List, Any, Iterable

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30
DEFAULT_PAGE_SIZE = 500

LESSON_START = "sensei_lesson_start"
LESSON_END = "sensei_lesson_end"
QUIZ_GRADE = "sensei_quiz_grade"


@dataclass(frozen=True)
class UserRecord:
    id: int
    login: str = ""
    display_name: str = ""
    email: str = ""
    roles: tuple = ()

    @classmethod
    def from_api(cls, raw: Dict) -> "UserRecord":
        roles = raw.get("roles") or ()
        if isinstance(roles, str):
            roles = (roles,)
        return cls(
            id=ActivityParser.post_id(raw.get("id")),
            login=raw.get("user_login") or raw.get("login") or "",
            display_name=raw.get("display_name") or "",
            email=raw.get("user_email") or raw.get("email") or "",
            roles=tuple(roles),
        )


@dataclass
class UserPage:
    users: List[UserRecord] = field(default_factory=list)
    total: int = 0


class ActivityParser:
    """Helpers that turn raw store values into typed values."""

    @staticmethod
    def is_present(value: Any) -> bool:
        if value is None:
            return False
        if isinstance(value, str):
            return value.strip() != ""
        return True

    @staticmethod
    def timestamp(value: Any) -> Optional[datetime]:
        if isinstance(value, datetime):
            return value
        if not ActivityParser.is_present(value):
            return None
        try:
            ts_str = str(value).strip().replace("Z", "+00:00")
            ts_str = re.sub(r"(\+\d{2}:\d{2}):\d{2}$", r"\1", ts_str)
            return datetime.fromisoformat(ts_str)
        except ValueError:
            return None

    @staticmethod
    def grade(value: Any) -> Optional[float]:
        """Numeric grade, or None when the value is blank or not a number."""
        if isinstance(value, bool) or not ActivityParser.is_present(value):
            return None
        try:
            return float(str(value).strip())
        except ValueError:
            return None

    @staticmethod
    def post_id(value: Any) -> int:
        """Integer id; anything non-numeric is 0."""
        try:
            return int(str(value).strip())
        except (TypeError, ValueError):
            return 0

    @staticmethod
    def id_list(values: Optional[Iterable]) -> List[int]:
        """Distinct positive ids in first-seen order."""
        ids: List[int] = []
        for value in values or []:
            post_id = ActivityParser.post_id(value)
            if post_id > 0 and post_id not in ids:
                ids.append(post_id)
        return ids


class ActivityClient:
    """
    REST client for the LMS activity API.

    """

    def __init__(
        self,
        endpoint: str,
        username: str = "",
        password: str = "",
        token: str = "",
        timeout: int = DEFAULT_TIMEOUT,
        page_size: int = DEFAULT_PAGE_SIZE,
        max_retries: int = 3,
    ):
        self.endpoint = endpoint.rstrip("/")
        self.username = username or os.getenv("GRADING_API_USERNAME", "")
        self.password = password or os.getenv("GRADING_API_PASSWORD", "")
        self.token = token or os.getenv("GRADING_API_TOKEN", "")
        self.timeout = timeout
        self.page_size = max(page_size, 1)

        self.session = requests.Session()
        retry = Retry(
            total=max_retries,
            backoff_factor=1.0,
            status_forcelist=[429, 500, 502, 503, 504],
            respect_retry_after_header=True,
        )
        adapter = HTTPAdapter(max_retries=retry)
        self.session.mount("https://", adapter)
        self.session.mount("http://", adapter)
        self.session.headers.update({"Accept": "application/json"})
        if self.token:
            self.session.headers["Authorization"] = f"Bearer {self.token}"
        elif self.username:
            self.session.auth = (self.username, self.password)

    def _url(self, path: str) -> str:
        return f"{self.endpoint}/{path.lstrip('/')}"

    def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Optional[Any]:
        """GET a JSON body; any failure is logged and returns None."""
        url = self._url(path)
        try:
            resp = self.session.get(url, params=params, timeout=self.timeout)
            resp.raise_for_status()
            return resp.json()
        except requests.exceptions.RequestException as e:
            logger.warning(f"Activity store read failed: {url} {params}: {e}")
        except ValueError as e:
            logger.warning(f"Activity store returned invalid JSON: {url}: {e}")
        return None

    def _get_list(self, path: str, params: Optional[Dict[str, Any]] = None) -> List[Any]:
        body = self._get(path, params)
        if isinstance(body, dict):
            data = body.get("data", [])
            return data if isinstance(data, list) else []
        if isinstance(body, list):
            return body
        return []

    # ─────────────────────────────────────────────
    # ACTIVITY FACTS
    # ─────────────────────────────────────────────

    def activity_ids(self, kind: str, post_id: Optional[int] = None, field: str = "user_id") -> List[int]:
        """Distinct ids in store order, read page_size at a time until a short page."""
        params: Dict[str, Any] = {"type": kind, "field": field}
        if post_id:
            params["post_id"] = post_id
        values: List[Any] = []
        skip = 0
        while True:
            page = self._get_list("activity", {**params, "limit": self.page_size, "skip": skip})
            values.extend(page)
            if len(page) < self.page_size:
                break
            skip += self.page_size
            logger.debug(f"Activity {kind}/{field}: {len(values)} ids so far, reading from {skip}")
        return ActivityParser.id_list(values)

    def activity_value(self, kind: str, post_id: Optional[int], user_id: int, field: str = "date") -> Optional[str]:
        if not post_id:
            return None
        body = self._get("activity/value", {
            "type": kind, "post_id": post_id, "user_id": user_id, "field": field,
        })
        if not isinstance(body, dict):
            return None
        value = body.get("value")
        return None if value is None else str(value)

    # ─────────────────────────────────────────────
    # USERS
    # ─────────────────────────────────────────────

    def query_users(
        self,
        count: int,
        include_ids: List[int],
        offset: int = 0,
        role: str = "",
        search: str = "",
        fields: str = "all_with_meta",
    ) -> UserPage:
        params: Dict[str, Any] = {
            "number": count,
            "include": ",".join(str(i) for i in include_ids),
            "offset": offset,
            "fields": fields,
        }
        if role:
            params["role"] = role
        if search:
            params["search"] = search
        body = self._get("users", params)
        if not isinstance(body, dict):
            return UserPage()
        users = [UserRecord.from_api(u) for u in body.get("data", []) if isinstance(u, dict)]
        total = body.get("paging", {}).get("count", len(users))
        logger.debug(f"User query: {len(users)} users on page, {total} total")
        return UserPage(users=users, total=ActivityParser.post_id(total))

    def get_user(self, user_id: int) -> Optional[UserRecord]:
        body = self._get(f"users/{user_id}")
        if not isinstance(body, dict) or not body.get("id"):
            return None
        return UserRecord.from_api(body)

    # ─────────────────────────────────────────────
    # POSTS
    # ─────────────────────────────────────────────

    def get_title(self, post_id: int) -> str:
        if not post_id:
            return ""
        body = self._get(f"posts/{post_id}")
        if not isinstance(body, dict):
            return ""
        return body.get("title") or ""

    def lesson_quiz_ids(self, lesson_id: int) -> List[int]:
        return ActivityParser.id_list(
            q.get("id") if isinstance(q, dict) else q
            for q in self._get_list(f"lessons/{lesson_id}/quizzes")
        )

    def lesson_course(self, lesson_id: int) -> int:
        body = self._get(f"lessons/{lesson_id}")
        if not isinstance(body, dict):
            return 0
        return ActivityParser.post_id(body.get("course_id"))

    def get_courses(self) -> List[Dict]:
        return [
            c for c in self._get_list("courses", {"orderby": "title", "order": "desc", "per_page": -1})
            if isinstance(c, dict)
        ]

    def course_lessons(self, course_id: int) -> List[Dict]:
        if not course_id:
            return []
        return [c for c in self._get_list(f"courses/{course_id}/lessons") if isinstance(c, dict)]

    def ping(self) -> bool:
        try:
            resp = self.session.get(self._url("courses"), params={"per_page": 1}, timeout=10)
            return resp.status_code == 200
        except requests.exceptions.RequestException:
            return False


class MockActivityClient(ActivityClient):
    """
    In-memory activity store with the same read interface as ActivityClient.

    records: dicts with subject_id, user_id, kind, timestamp, value
    users:   UserRecord list
    posts:   post_id -> {"title", "type", "course_id", "quiz_ids"}
    """

    def __init__(
        self,
        records: Optional[List[Dict]] = None,
        users: Optional[List[UserRecord]] = None,
        posts: Optional[Dict[int, Dict]] = None,
    ):
        self.endpoint = "mock://local"
        self.timeout = 5
        self.page_size = DEFAULT_PAGE_SIZE
        self.session = None
        self.username = ""
        self.password = ""
        self.token = ""
        self.records: List[Dict] = list(records or [])
        self.users: Dict[int, UserRecord] = {u.id: u for u in users or []}
        self.posts: Dict[int, Dict] = dict(posts or {})
        self.calls: List[str] = []

    def ping(self) -> bool:
        return True

    def add_fact(self, subject_id: int, user_id: int, kind: str, timestamp: Any = None, value: Any = "") -> None:
        self.records.append({
            "subject_id": subject_id, "user_id": user_id, "kind": kind,
            "timestamp": timestamp, "value": value,
        })

    def activity_ids(self, kind: str, post_id: Optional[int] = None, field: str = "user_id") -> List[int]:
        self.calls.append("activity_ids")
        key = "user_id" if field == "user_id" else "subject_id"
        return ActivityParser.id_list(
            r[key] for r in self.records
            if r["kind"] == kind and (not post_id or r["subject_id"] == post_id)
        )

    def activity_value(self, kind: str, post_id: Optional[int], user_id: int, field: str = "date") -> Optional[str]:
        self.calls.append("activity_value")
        if not post_id:
            return None
        for r in self.records:
            if r["kind"] == kind and r["subject_id"] == post_id and r["user_id"] == user_id:
                value = r["timestamp"] if field == "date" else r["value"]
                if isinstance(value, datetime):
                    return value.strftime("%Y-%m-%d %H:%M:%S")
                return None if value is None else str(value)
        return None

    def query_users(
        self,
        count: int,
        include_ids: List[int],
        offset: int = 0,
        role: str = "",
        search: str = "",
        fields: str = "all_with_meta",
    ) -> UserPage:
        self.calls.append("query_users")
        users = [u for u in self.users.values() if not include_ids or u.id in include_ids]
        if role:
            users = [u for u in users if role in u.roles]
        term = search.strip("*").lower()
        if term:
            users = [
                u for u in users
                if term in u.login.lower() or term in u.display_name.lower() or term in u.email.lower()
            ]
        users = sorted(users, key=lambda u: u.login.lower())
        total = len(users)
        offset = max(offset, 0)
        page = users[offset:offset + count] if count and count > 0 else users[offset:]
        return UserPage(users=page, total=total)

    def get_user(self, user_id: int) -> Optional[UserRecord]:
        self.calls.append("get_user")
        return self.users.get(user_id)

    def get_title(self, post_id: int) -> str:
        return self.posts.get(post_id, {}).get("title", "")

    def lesson_quiz_ids(self, lesson_id: int) -> List[int]:
        return ActivityParser.id_list(self.posts.get(lesson_id, {}).get("quiz_ids", []))

    def lesson_course(self, lesson_id: int) -> int:
        return ActivityParser.post_id(self.posts.get(lesson_id, {}).get("course_id"))

    def get_courses(self) -> List[Dict]:
        courses = [
            {"id": pid, "title": p.get("title", "")}
            for pid, p in self.posts.items() if p.get("type") == "course"
        ]
        return sorted(courses, key=lambda c: c["title"], reverse=True)

    def course_lessons(self, course_id: int) -> List[Dict]:
        return [
            {"id": pid, "title": p.get("title", "")}
            for pid, p in self.posts.items()
            if p.get("type") == "lesson" and p.get("course_id") == course_id
        ]

    @classmethod
    def demo(cls, seed: int = 7, n_learners: int = 40) -> "MockActivityClient":
        """Random but reproducible demo store: 3 courses, 4 lessons each."""
        rng = random.Random(seed)
        COURSES = ["Algebra Basics", "Intro to Chemistry", "World History"]
        FIRST = ["Ana", "Ben", "Chloé", "Dev", "Emma", "Farid", "Gita", "Hugo", "Ines", "Jon"]
        LAST = ["Martin", "Okafor", "Dupont", "Singh", "Kowalski", "Nakamura", "Rossi", "Silva"]

        posts: Dict[int, Dict] = {}
        lesson_ids: List[int] = []
        for c, course_title in enumerate(COURSES):
            course_id = 100 + c * 10
            posts[course_id] = {"title": course_title, "type": "course"}
            for n in range(1, 5):
                lesson_id = course_id + n
                quiz_id = 1000 + lesson_id
                posts[lesson_id] = {
                    "title": f"{course_title}: Lesson {n}", "type": "lesson",
                    "course_id": course_id, "quiz_ids": [quiz_id],
                }
                posts[quiz_id] = {"title": f"{course_title}: Quiz {n}", "type": "quiz"}
                lesson_ids.append(lesson_id)

        users = []
        for i in range(1, n_learners + 1):
            first, last = rng.choice(FIRST), rng.choice(LAST)
            users.append(UserRecord(
                id=i,
                login=f"{first.lower()}{last.lower()}{i}",
                display_name=f"{first} {last}",
                email=f"{first.lower()}.{last.lower()}{i}@example.edu",
                roles=("subscriber",) if i % 5 else ("editor",),
            ))

        client = cls(users=users, posts=posts)
        base = datetime(2024, 9, 1, 8, 0, tzinfo=timezone.utc)
        for user in users:
            for lesson_id in rng.sample(lesson_ids, k=rng.randint(1, 5)):
                start = base + timedelta(hours=rng.randint(0, 24 * 60))
                client.add_fact(lesson_id, user.id, LESSON_START, start)
                if rng.random() < 0.7:
                    end = start + timedelta(minutes=rng.randint(10, 600))
                    client.add_fact(lesson_id, user.id, LESSON_END, end)
                    if rng.random() < 0.5:
                        quiz_id = posts[lesson_id]["quiz_ids"][0]
                        graded = end + timedelta(hours=rng.randint(1, 72))
                        client.add_fact(quiz_id, user.id, QUIZ_GRADE, graded, rng.randint(0, 100))
        logger.info(f"Demo store: {len(client.records)} facts, {len(users)} learners")
        return client
