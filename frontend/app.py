"""
Grading Overview
Run with: streamlit run frontend/app.py
"""

import sys
import logging
from pathlib import Path

import streamlit as st

ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(ROOT))

from backend.activity_client import ActivityClient, MockActivityClient
from backend.config import load_settings
from backend.overview import GradingOverview, SORT_ASC, SORT_DESC
from frontend.components import (
    status_nav_options,
    status_pie,
    grading_table,
    pagination_caption,
    page_count,
    reset_page_on_change,
    select_index,
)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

st.set_page_config(page_title="Grading", layout="wide", initial_sidebar_state="expanded")


@st.cache_resource
def get_settings():
    return load_settings()


@st.cache_resource
def get_demo_client():
    return MockActivityClient.demo()


settings = get_settings()


def get_client(use_mock: bool, endpoint: str, token: str):
    if use_mock:
        return get_demo_client()
    return ActivityClient(
        endpoint=endpoint,
        username=settings.api.username,
        password=settings.api.password,
        token=token,
        timeout=settings.api.timeout,
        page_size=settings.api.page_size,
    )


# ─────────────────────────────────────────────────────────────────────────────
# SIDEBAR
# ─────────────────────────────────────────────────────────────────────────────

with st.sidebar:
    st.markdown("#### Activity store")
    use_mock = st.toggle("Use Mock / Demo Data", value=True, help="Toggle off to connect to the LMS API")
    if not use_mock:
        endpoint = st.text_input("API Endpoint", value=settings.api.endpoint)
        token = st.text_input("Bearer Token", type="password", value=settings.api.token)
    else:
        endpoint = token = ""

    client = get_client(use_mock, endpoint, token)
    if not use_mock and not client.ping():
        st.warning("Activity store unreachable; the report will be empty.")

    st.divider()
    st.markdown("#### Sort")
    sort_labels = {key: settings.columns.get(key) or key for key in settings.sortable_columns}
    orderby = st.selectbox(
        "Sort by", [""] + list(sort_labels), format_func=lambda k: sort_labels.get(k, "Discovery order"),
    )
    order = st.radio("Direction", [SORT_ASC, SORT_DESC], horizontal=True)
    role = st.text_input("Role", help="Only applied when a lesson is selected")


# ─────────────────────────────────────────────────────────────────────────────
# HEADER: COURSE / LESSON SELECTORS
# ─────────────────────────────────────────────────────────────────────────────

st.title("Grading")

courses = client.get_courses()
course_ids = [0] + [c["id"] for c in courses]
course_titles = {c["id"]: c.get("title", "") for c in courses}

col_course, col_lesson, col_search = st.columns(3)
with col_course:
    course_id = st.selectbox(
        "Course", course_ids,
        format_func=lambda cid: course_titles.get(cid, "Select a course"),
    )
with col_lesson:
    lessons = client.course_lessons(course_id) if course_id else []
    lesson_ids = [0] + [l["id"] for l in lessons]
    lesson_titles = {l["id"]: l.get("title", "") for l in lessons}
    lesson_id = st.selectbox(
        "Lesson", lesson_ids,
        format_func=lambda lid: lesson_titles.get(lid, "All lessons" if course_id else "← Select a course"),
        disabled=not course_id,
    )
with col_search:
    search = st.text_input("Search learners")

engine = GradingOverview(client, settings)
counts = engine.summary(lesson_id)

nav = status_nav_options(counts, settings)
grading_status = st.radio(
    "Status", list(nav),
    index=select_index(list(nav), settings.default_status),
    format_func=lambda k: nav[k], horizontal=True, label_visibility="collapsed",
)

page = reset_page_on_change(
    st.session_state, (search, grading_status, course_id, lesson_id, role, orderby, order),
)
criteria = engine.criteria_from_request({
    "s": search,
    "paged": page,
    "grading_status": grading_status,
    "course_id": course_id,
    "lesson_id": lesson_id,
    "role": role,
    "orderby": orderby,
    "order": order,
})
rows, total_items = engine.build_rows(criteria)
n_pages = page_count(total_items, criteria.per_page)
if criteria.page > n_pages:
    # data shrank under the current page
    st.session_state["paged"] = n_pages
    st.rerun()


# ─────────────────────────────────────────────────────────────────────────────
# TABLE
# ─────────────────────────────────────────────────────────────────────────────

col_table, col_chart = st.columns([3, 1])
with col_table:
    grading_table(rows, settings)
    col_caption, col_page = st.columns([3, 1])
    with col_caption:
        st.caption(pagination_caption(criteria.page, criteria.per_page, total_items))
    with col_page:
        st.number_input("Page", min_value=1, max_value=n_pages, key="paged")
with col_chart:
    status_pie(counts, settings)
