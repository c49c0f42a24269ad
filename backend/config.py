"""
Grading overview settings, loaded from config/grading.yaml.
Connection details may be supplied or overridden through the environment.
"""

import os
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Union

import yaml

from backend.status import GradingStatus, STATUS_ALL

logger = logging.getLogger(__name__)

ROOT = Path(__file__).parent.parent
DEFAULT_CONFIG_PATH = ROOT / "config" / "grading.yaml"

DEFAULT_COLUMNS = {
    "user_login": "Learner",
    "course": "Course",
    "lesson": "Lesson",
    "updated": "Updated",
    "user_status": "Status",
    "user_grade": "Grade",
    "action": "",
}

DEFAULT_STATUS_LABELS = {
    STATUS_ALL: "All",
    GradingStatus.UNGRADED.value: "Ungraded",
    GradingStatus.GRADED.value: "Graded",
    GradingStatus.IN_PROGRESS.value: "In Progress",
}

DEFAULT_ACTIONS = {
    GradingStatus.UNGRADED.value: "Grade quiz",
    GradingStatus.GRADED.value: "Review grade",
}


@dataclass
class ApiSettings:
    endpoint: str = ""
    username: str = ""
    password: str = ""
    token: str = ""
    timeout: int = 30
    page_size: int = 500


@dataclass
class GradingSettings:
    per_page: int = 25
    default_status: Union[str, GradingStatus] = GradingStatus.UNGRADED
    grading_url: str = "/wp-admin/admin.php"
    columns: Dict[str, str] = field(default_factory=lambda: dict(DEFAULT_COLUMNS))
    sortable_columns: List[str] = field(default_factory=lambda: [k for k in DEFAULT_COLUMNS if k != "action"])
    status_labels: Dict[str, str] = field(default_factory=lambda: dict(DEFAULT_STATUS_LABELS))
    actions: Dict[str, str] = field(default_factory=lambda: dict(DEFAULT_ACTIONS))
    no_grade_text: str = "No Grade"
    no_items_text: str = "No learners/quizzes found."
    api: ApiSettings = field(default_factory=ApiSettings)

    def status_label(self, status: Union[str, GradingStatus]) -> str:
        key = status.value if isinstance(status, GradingStatus) else status
        return self.status_labels.get(key, key)


def _positive_int(raw, default: int, name: str) -> int:
    try:
        value = int(raw)
    except (TypeError, ValueError):
        logger.warning(f"Invalid {name} {raw!r} in config, using {default}")
        return default
    if value <= 0:
        logger.warning(f"{name} must be positive, got {value}; using {default}")
        return default
    return value


def _status_default(raw) -> Union[str, GradingStatus]:
    if raw == STATUS_ALL:
        return STATUS_ALL
    try:
        return GradingStatus(raw)
    except ValueError:
        logger.warning(f"Invalid default_status {raw!r} in config, using ungraded")
        return GradingStatus.UNGRADED


def load_settings(path: Optional[Union[str, Path]] = None) -> GradingSettings:
    config_path = Path(path) if path else DEFAULT_CONFIG_PATH
    data: Dict = {}
    if config_path.exists():
        with open(config_path, "r") as f:
            data = yaml.safe_load(f) or {}
        logger.debug(f"Loaded grading settings from {config_path}")
    else:
        logger.warning(f"Config file {config_path} not found, using defaults")

    defaults = GradingSettings()
    api_data = data.get("api") or {}
    api = ApiSettings(
        endpoint=os.getenv("GRADING_API_ENDPOINT", "") or api_data.get("endpoint", ""),
        username=os.getenv("GRADING_API_USERNAME", ""),
        password=os.getenv("GRADING_API_PASSWORD", ""),
        token=os.getenv("GRADING_API_TOKEN", ""),
        timeout=_positive_int(api_data.get("timeout", 30), 30, "api.timeout"),
        page_size=_positive_int(api_data.get("page_size", 500), 500, "api.page_size"),
    )

    columns = {**defaults.columns, **(data.get("columns") or {})}
    sortable = [c for c in data.get("sortable_columns", defaults.sortable_columns) if c in columns]

    return GradingSettings(
        per_page=_positive_int(data.get("per_page", defaults.per_page), defaults.per_page, "per_page"),
        default_status=_status_default(data.get("default_status", GradingStatus.UNGRADED.value)),
        grading_url=data.get("grading_url") or defaults.grading_url,
        columns=columns,
        sortable_columns=sortable,
        status_labels={**defaults.status_labels, **(data.get("status_labels") or {})},
        actions={**defaults.actions, **(data.get("actions") or {})},
        no_grade_text=data.get("no_grade_text", defaults.no_grade_text),
        no_items_text=data.get("no_items_text", defaults.no_items_text),
        api=api,
    )
