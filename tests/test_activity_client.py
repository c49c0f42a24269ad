from datetime import datetime, timezone

import pytest
import requests

from backend.activity_client import (
    ActivityClient,
    ActivityParser,
    MockActivityClient,
    UserRecord,
    LESSON_START,
    QUIZ_GRADE,
)
from backend.overview import FilterCriteria, GradingOverview
from backend.status import STATUS_ALL


class FakeResponse:
    def __init__(self, body=None, status_code=200):
        self.body = body
        self.status_code = status_code
        self.url = "https://lms.test/api"

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.exceptions.HTTPError(f"{self.status_code} error", response=self)

    def json(self):
        if isinstance(self.body, Exception):
            raise self.body
        return self.body


@pytest.fixture
def client(monkeypatch):
    monkeypatch.delenv("GRADING_API_TOKEN", raising=False)
    monkeypatch.delenv("GRADING_API_USERNAME", raising=False)
    return ActivityClient("https://lms.test/api/", token="secret")


def _route(monkeypatch, client, routes, calls=None):
    def fake_get(url, params=None, timeout=None):
        if calls is not None:
            calls.append((url, params))
        path = url.replace("https://lms.test/api/", "")
        result = routes.get(path)
        if isinstance(result, Exception):
            raise result
        return result if isinstance(result, FakeResponse) else FakeResponse(result)
    monkeypatch.setattr(client.session, "get", fake_get)


def test_auth_header_and_endpoint(client):
    assert client.endpoint == "https://lms.test/api"
    assert client.session.headers["Authorization"] == "Bearer secret"


def test_basic_auth_from_environment(monkeypatch):
    monkeypatch.delenv("GRADING_API_TOKEN", raising=False)
    monkeypatch.setenv("GRADING_API_USERNAME", "grader")
    monkeypatch.setenv("GRADING_API_PASSWORD", "pw")
    client = ActivityClient("https://lms.test/api")
    assert client.session.auth == ("grader", "pw")


def test_activity_ids_params_and_dedup(monkeypatch, client):
    calls = []
    _route(monkeypatch, client, {"activity": {"data": ["7", 3, 7, "x", 0]}}, calls)
    assert client.activity_ids(LESSON_START, post_id=11) == [7, 3]
    url, params = calls[0]
    assert url == "https://lms.test/api/activity"
    assert params == {"type": LESSON_START, "field": "user_id", "post_id": 11, "limit": 500, "skip": 0}


def test_activity_ids_reads_every_page(monkeypatch):
    monkeypatch.delenv("GRADING_API_TOKEN", raising=False)
    monkeypatch.delenv("GRADING_API_USERNAME", raising=False)
    client = ActivityClient("https://lms.test/api", page_size=2)
    pages = {0: [5, 6], 2: [7, 5], 4: [8]}
    skips = []

    def fake_get(url, params=None, timeout=None):
        skips.append(params["skip"])
        assert params["limit"] == 2
        return FakeResponse({"data": pages[params["skip"]]})

    monkeypatch.setattr(client.session, "get", fake_get)
    assert client.activity_ids(LESSON_START, field="post_id") == [5, 6, 7, 8]
    assert skips == [0, 2, 4]


def test_activity_value(monkeypatch, client):
    _route(monkeypatch, client, {"activity/value": {"value": 80}})
    assert client.activity_value(QUIZ_GRADE, 111, 1, field="content") == "80"
    assert client.activity_value(QUIZ_GRADE, None, 1, field="content") is None


def test_query_users(monkeypatch, client):
    calls = []
    body = {
        "data": [{"id": 1, "user_login": "JohnDoe", "display_name": "John Doe",
                  "user_email": "j@x.com", "roles": ["subscriber"]}],
        "paging": {"count": 12},
    }
    _route(monkeypatch, client, {"users": body}, calls)
    page = client.query_users(count=10, include_ids=[1, 2], offset=10, role="subscriber", search="*john*")
    assert page.total == 12
    assert page.users == [UserRecord(1, "JohnDoe", "John Doe", "j@x.com", ("subscriber",))]
    _, params = calls[0]
    assert params["include"] == "1,2"
    assert params["number"] == 10
    assert params["offset"] == 10
    assert params["search"] == "*john*"
    assert params["fields"] == "all_with_meta"


def test_lesson_lookups(monkeypatch, client):
    _route(monkeypatch, client, {
        "lessons/11/quizzes": {"data": [{"id": 110}, {"id": 111}]},
        "lessons/11": {"id": 11, "course_id": "10"},
        "posts/10": {"id": 10, "title": "Biology 101"},
    })
    assert client.lesson_quiz_ids(11) == [110, 111]
    assert client.lesson_course(11) == 10
    assert client.get_title(10) == "Biology 101"
    assert client.get_title(0) == ""


@pytest.mark.parametrize("failure", [
    requests.exceptions.ConnectionError("down"),
    FakeResponse({"error": "boom"}, status_code=500),
    FakeResponse(ValueError("not json")),
])
def test_failed_reads_are_empty(monkeypatch, client, failure):
    _route(monkeypatch, client, {
        "activity": failure, "activity/value": failure, "users": failure,
        "users/1": failure, "posts/1": failure, "lessons/1": failure, "courses": failure,
    })
    assert client.activity_ids(LESSON_START, field="post_id") == []
    assert client.activity_value(LESSON_START, 1, 1) is None
    assert client.query_users(count=10, include_ids=[1]).users == []
    assert client.get_user(1) is None
    assert client.get_title(1) == ""
    assert client.lesson_course(1) == 0
    assert client.get_courses() == []


def test_unreachable_store_gives_empty_report(monkeypatch, client):
    _route(monkeypatch, client, {"activity": requests.exceptions.ConnectionError("down")})
    report = GradingOverview(client).report(FilterCriteria(status_filter=STATUS_ALL))
    assert report.rows == []
    assert report.counts.as_dict() == {"all": 0, "ungraded": 0, "graded": 0, "in-progress": 0}


# === parser ===

def test_parser_timestamp_formats():
    assert ActivityParser.timestamp("2020-01-05 10:00:00") == datetime(2020, 1, 5, 10)
    assert ActivityParser.timestamp("2020-01-05T10:00:00Z") == datetime(2020, 1, 5, 10, tzinfo=timezone.utc)
    assert ActivityParser.timestamp("yesterday") is None
    assert ActivityParser.timestamp("") is None


def test_parser_grade():
    assert ActivityParser.grade(" 75 ") == 75.0
    assert ActivityParser.grade("") is None
    assert ActivityParser.grade("n/a") is None
    assert ActivityParser.grade(None) is None


# === mock store ===

def test_mock_courses_ordered_by_title_desc(posts):
    client = MockActivityClient(posts=posts)
    assert [c["title"] for c in client.get_courses()] == ["Physics", "Biology 101"]
    assert [l["id"] for l in client.course_lessons(10)] == [11, 12]


def test_demo_store_is_reproducible():
    a = MockActivityClient.demo(seed=1, n_learners=5)
    b = MockActivityClient.demo(seed=1, n_learners=5)
    assert a.records == b.records
    assert a.activity_ids(LESSON_START, field="post_id")
