import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from backend.activity_client import (
    MockActivityClient,
    UserRecord,
    LESSON_START,
    LESSON_END,
    QUIZ_GRADE,
)
from backend.config import GradingSettings
from backend.overview import GradingOverview


@pytest.fixture
def settings():
    return GradingSettings(per_page=10)


@pytest.fixture
def users():
    return [
        UserRecord(1, "JohnDoe", "John Doe", "j@x.com", ("subscriber",)),
        UserRecord(2, "asmith", "Alice Smith", "alice@school.edu", ("subscriber",)),
        UserRecord(3, "bwayne", "Bruce Wayne", "bruce@school.edu", ("editor",)),
        UserRecord(4, "cnever", "Carla Never", "carla@school.edu", ("subscriber",)),
    ]


@pytest.fixture
def posts():
    return {
        10: {"title": "Biology 101", "type": "course"},
        11: {"title": "Cells", "type": "lesson", "course_id": 10, "quiz_ids": [111]},
        12: {"title": "Genetics", "type": "lesson", "course_id": 10, "quiz_ids": [112]},
        20: {"title": "Physics", "type": "course"},
        21: {"title": "Motion", "type": "lesson", "course_id": 20, "quiz_ids": [120, 121]},
    }


@pytest.fixture
def store(users, posts):
    """
    Lesson 11: John ungraded, Alice graded (75), Bruce in progress.
    Lesson 12: Alice in progress (first learner), John in progress.
    Lesson 21: Bruce ended with a grade of 0.
    Carla never started anything.
    """
    client = MockActivityClient(users=users, posts=posts)
    client.add_fact(11, 1, LESSON_START, "2020-01-01")
    client.add_fact(11, 1, LESSON_END, "2020-01-05")
    client.add_fact(11, 2, LESSON_START, "2020-02-01")
    client.add_fact(11, 2, LESSON_END, "2020-02-02")
    client.add_fact(111, 2, QUIZ_GRADE, "2020-02-10", "75")
    client.add_fact(11, 3, LESSON_START, "2020-03-01")
    client.add_fact(12, 2, LESSON_START, "2020-04-01")
    client.add_fact(12, 1, LESSON_START, "2020-04-02")
    client.add_fact(21, 3, LESSON_START, "2020-05-01")
    client.add_fact(21, 3, LESSON_END, "2020-05-02")
    client.add_fact(121, 3, QUIZ_GRADE, "2020-05-03", "0")
    return client


@pytest.fixture
def engine(store, settings):
    return GradingOverview(store, settings)
