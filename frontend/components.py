"""
Reusable Streamlit UI components for the grading overview.
"""

import math
from typing import Dict, List, MutableMapping, Optional, Tuple, Union
from urllib.parse import quote

import streamlit as st
import plotly.graph_objects as go
import pandas as pd

from backend.config import GradingSettings
from backend.overview import GradingRow, StatusCounts
from backend.status import GradingStatus, STATUS_ALL

# ─────────────────────────────────────────────
# COLOR PALETTE
# ─────────────────────────────────────────────

STATUS_COLORS = {
    GradingStatus.UNGRADED.value: "#F59E0B",
    GradingStatus.GRADED.value: "#22C55E",
    GradingStatus.IN_PROGRESS.value: "#4F8EF7",
}

NAV_ORDER = [STATUS_ALL, GradingStatus.UNGRADED.value, GradingStatus.GRADED.value, GradingStatus.IN_PROGRESS.value]


# ─────────────────────────────────────────────
# HELPER FUNCTIONS
# ─────────────────────────────────────────────

def status_nav_options(counts: StatusCounts, settings: GradingSettings) -> Dict[str, str]:
    """Filter key -> "Label (count)" in header order."""
    values = counts.as_dict()
    return {key: f"{settings.status_label(key)} ({values[key]})" for key in NAV_ORDER}


def rows_dataframe(rows: List[GradingRow], settings: GradingSettings) -> pd.DataFrame:
    """Presentation table: one column per configured header, plus the action URL.

    The action label rides in the URL fragment so the link column can show it.
    """
    columns = list(settings.columns.keys())
    records = []
    for row in rows:
        values = row.display_values()
        record = {settings.columns[key] or key: values.get(key, "") for key in columns}
        link = row.action_link
        record["link"] = f"{link.url}#{quote(link.label)}" if link else None
        records.append(record)
    headers = [settings.columns[key] or key for key in columns] + ["link"]
    return pd.DataFrame(records, columns=headers)


def page_count(total: int, per_page: int) -> int:
    return max(math.ceil(total / per_page), 1) if per_page > 0 else 1


def reset_page_on_change(state: MutableMapping, filters: Tuple, key: str = "paged") -> int:
    """Back to page 1 whenever the filter set differs from the previous run."""
    if state.get(f"{key}_filters") != filters:
        state[f"{key}_filters"] = filters
        state[key] = 1
    return state.get(key, 1)


# ─────────────────────────────────────────────
# CHARTS
# ─────────────────────────────────────────────

PLOTLY_LAYOUT = dict(
    paper_bgcolor="rgba(0,0,0,0)",
    plot_bgcolor="rgba(0,0,0,0)",
    font=dict(family="Space Grotesk, sans-serif", color="#8B92B0", size=11),
    margin=dict(l=10, r=10, t=30, b=30),
    legend=dict(bgcolor="rgba(0,0,0,0)", font=dict(color="#8B92B0")),
)


def status_pie(counts: StatusCounts, settings: GradingSettings, height: int = 250):
    values = counts.as_dict()
    keys = [k for k in NAV_ORDER if k != STATUS_ALL and values[k] > 0]
    if not keys:
        st.caption("No data")
        return
    fig = go.Figure(go.Pie(
        labels=[settings.status_label(k) for k in keys],
        values=[values[k] for k in keys],
        marker=dict(colors=[STATUS_COLORS[k] for k in keys], line=dict(color="#0A0C14", width=2)),
        textfont=dict(color="#C0C8E8", size=11),
        hole=0.4,
    ))
    fig.update_layout(**PLOTLY_LAYOUT, height=height, showlegend=True)
    st.plotly_chart(fig, use_container_width=True, config={"displayModeBar": False})


# ─────────────────────────────────────────────
# TABLE
# ─────────────────────────────────────────────

def grading_table(rows: List[GradingRow], settings: GradingSettings):
    if not rows:
        st.info(settings.no_items_text)
        return
    df = rows_dataframe(rows, settings)
    action_header = settings.columns.get("action") or "action"
    st.dataframe(
        df.drop(columns=[action_header], errors="ignore"),
        hide_index=True,
        use_container_width=True,
        column_config={
            "link": st.column_config.LinkColumn(action_header, display_text=r"#(.+)$"),
        },
    )


def pagination_caption(page: int, per_page: int, total: int) -> str:
    if total == 0:
        return "0 items"
    first = per_page * (page - 1) + 1
    last = min(per_page * page, total)
    return f"{first}–{last} of {total} items"


def select_index(options: List[Union[int, str]], selected: Optional[Union[int, str]]) -> int:
    try:
        return options.index(selected)
    except ValueError:
        return 0
