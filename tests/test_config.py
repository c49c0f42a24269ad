from backend.config import DEFAULT_CONFIG_PATH, GradingSettings, load_settings
from backend.status import GradingStatus, STATUS_ALL


def test_shipped_config_loads(monkeypatch):
    monkeypatch.delenv("GRADING_API_ENDPOINT", raising=False)
    settings = load_settings(DEFAULT_CONFIG_PATH)
    assert settings.per_page == 25
    assert settings.default_status == GradingStatus.UNGRADED
    assert settings.columns["user_login"] == "Learner"
    assert "action" not in settings.sortable_columns
    assert settings.status_label(GradingStatus.IN_PROGRESS) == "In Progress"
    assert settings.no_items_text == "No learners/quizzes found."
    assert settings.api.endpoint.startswith("https://")


def test_missing_file_uses_defaults(tmp_path):
    settings = load_settings(tmp_path / "nope.yaml")
    assert settings == GradingSettings(api=settings.api)


def test_overrides_and_invalid_values(tmp_path, monkeypatch):
    monkeypatch.setenv("GRADING_API_ENDPOINT", "https://override.test/api")
    monkeypatch.setenv("GRADING_API_TOKEN", "tok")
    path = tmp_path / "grading.yaml"
    path.write_text(
        "per_page: lots\n"
        "default_status: all\n"
        "sortable_columns: [updated, not_a_column]\n"
        "status_labels:\n"
        "  graded: Marked\n"
        "api:\n"
        "  endpoint: https://file.test/api\n"
        "  timeout: -1\n"
    )
    settings = load_settings(path)
    assert settings.per_page == 25
    assert settings.default_status == STATUS_ALL
    assert settings.sortable_columns == ["updated"]
    assert settings.status_label("graded") == "Marked"
    assert settings.status_label("ungraded") == "Ungraded"
    assert settings.api.endpoint == "https://override.test/api"
    assert settings.api.token == "tok"
    assert settings.api.timeout == 30


def test_unknown_default_status_falls_back(tmp_path):
    path = tmp_path / "grading.yaml"
    path.write_text("default_status: pending\n")
    assert load_settings(path).default_status == GradingStatus.UNGRADED
